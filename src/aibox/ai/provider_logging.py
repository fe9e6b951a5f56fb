"""Shared provider log-message helpers."""

from __future__ import annotations

import logging

from ..logging import log_event, summarize_text


def log_provider_warning(provider: str, message: str) -> None:
    log_event(
        "provider_log",
        level=logging.WARNING,
        provider=provider,
        message=message,
    )


def log_skipped_fragment(provider: str, payload: str, error: Exception) -> None:
    """Record a stream fragment that could not be decoded."""
    log_event(
        "stream_fragment_skipped",
        level=logging.WARNING,
        provider=provider,
        reason=f"{type(error).__name__}: {error}",
        fragment=summarize_text(payload, limit=200),
    )


def log_finish_reason(provider: str, finish_reason: str | None) -> None:
    """Warn about truncated or filtered completions."""
    if finish_reason in ("length", "max_tokens"):
        log_provider_warning(provider, "Response truncated due to max_tokens limit")
    elif finish_reason == "content_filter":
        log_provider_warning(provider, "Response stopped by content filter")


def unexpected_error_message(error: Exception) -> str:
    """Build standardized unexpected-error message."""
    return f"Unexpected error: {type(error).__name__}: {error}"
