"""Shared helpers for provider implementations."""

from __future__ import annotations

import json
from collections.abc import Sequence

import anthropic
import httpx
import openai

from ..errors import AiboxError, AuthError, NetworkError, ProviderError
from .provider_logging import unexpected_error_message
from .types import ChatTurn

AUTH_STATUS_CODES = (401, 403)

# Exceptions a provider call may raise that translate_error understands.
PROVIDER_EXCEPTIONS = (httpx.HTTPError, openai.APIError, anthropic.APIError)


def format_chat_messages(turns: Sequence[ChatTurn]) -> list[dict[str, str]]:
    """Convert chat turns into simple role/content payloads."""
    return [turn.to_message() for turn in turns]


def response_error_detail(response: httpx.Response) -> str:
    """Best-effort readable error text from an already-read response body."""
    try:
        data = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError, httpx.ResponseNotRead):
        data = None

    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        for key in ("error_description", "error", "message"):
            if data.get(key):
                return str(data[key])

    try:
        text = response.text.strip()
    except httpx.ResponseNotRead:
        text = ""
    return text or response.reason_phrase or "request failed"


def status_error(response: httpx.Response, *, context: str) -> AiboxError:
    """Map a non-success HTTP response to AuthError or ProviderError."""
    detail = response_error_detail(response)
    message = f"{context} failed ({response.status_code}): {detail}"
    if response.status_code in AUTH_STATUS_CODES:
        return AuthError(message)
    return ProviderError(message, status_code=response.status_code)


def translate_error(error: BaseException) -> AiboxError:
    """Map SDK and transport exceptions onto the aibox error taxonomy.

    Callers only pass exceptions listed in PROVIDER_EXCEPTIONS; anything
    else is reported as an unexpected provider failure.
    """
    if isinstance(error, AiboxError):
        return error

    # SDK connection errors include their timeout subclasses.
    if isinstance(error, (openai.APIConnectionError, anthropic.APIConnectionError)):
        return NetworkError(f"Connection failed: {error}")

    if isinstance(
        error,
        (
            openai.AuthenticationError,
            openai.PermissionDeniedError,
            anthropic.AuthenticationError,
            anthropic.PermissionDeniedError,
        ),
    ):
        return AuthError(f"Authentication failed: {error.message}")

    if isinstance(error, (openai.APIStatusError, anthropic.APIStatusError)):
        return ProviderError(
            f"API error ({error.status_code}): {error.message}",
            status_code=error.status_code,
        )

    if isinstance(error, httpx.HTTPStatusError):
        return status_error(error.response, context="Request")

    if isinstance(error, httpx.TransportError):
        return NetworkError(f"Connection failed: {type(error).__name__}: {error}")

    return ProviderError(unexpected_error_message(error))


def is_retryable_http_error(error: BaseException) -> bool:
    """Transport failures, throttling and 5xx responses are worth retrying."""
    if isinstance(error, httpx.TransportError):
        return True
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        return status == 429 or status >= 500
    return False
