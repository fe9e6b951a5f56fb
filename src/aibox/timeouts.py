"""Centralized timeout policy and helpers."""

from __future__ import annotations

import math
from typing import Any

import httpx


DEFAULT_TIMEOUT_SEC = 30

# Shared HTTP timeout buckets.
HTTP_CONNECT_TIMEOUT_SEC = 10.0
HTTP_WRITE_TIMEOUT_SEC = 15.0
HTTP_POOL_TIMEOUT_SEC = 5.0

# Retry/backoff timing for idempotent GET-style calls only.
STANDARD_RETRY_ATTEMPTS = 3
RETRY_BACKOFF_INITIAL_SEC = 1.0
RETRY_BACKOFF_MAX_SEC = 10.0


def normalize_timeout(value: Any, fallback: int | float = DEFAULT_TIMEOUT_SEC) -> int | float:
    """Normalize timeout-like values to non-negative finite int/float."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        normalized = float(fallback)
    else:
        normalized = float(value)
    if not math.isfinite(normalized) or normalized < 0:
        normalized = float(fallback)
    if normalized.is_integer():
        return int(normalized)
    return normalized


def build_httpx_timeout(read_timeout_sec: int | float) -> httpx.Timeout | None:
    """Build httpx timeout config for provider and auth clients.

    A read timeout of 0 means "wait forever" and disables all buckets.
    """
    timeout_sec = normalize_timeout(read_timeout_sec)
    if timeout_sec <= 0:
        return None
    return httpx.Timeout(
        connect=HTTP_CONNECT_TIMEOUT_SEC,
        read=timeout_sec,
        write=HTTP_WRITE_TIMEOUT_SEC,
        pool=HTTP_POOL_TIMEOUT_SEC,
    )
