"""Render log records as ``=== event ===`` blocks of ``key: value`` lines."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any

from .schema import DEFAULT_EVENT_KEY_ORDER, EVENT_KEY_ORDER

HTTPX_REQUEST_FORMAT = 'HTTP Request: %s %s "%s %d %s"'


def _event_payload(message: str) -> dict[str, Any] | None:
    """Decode a ``log_event`` JSON message; None for plain text."""
    if not (message.startswith("{") and message.endswith("}")):
        return None
    try:
        payload = json.loads(message)
    except ValueError:
        return None
    return payload if isinstance(payload, dict) else None


def _httpx_request_fields(record: logging.LogRecord) -> dict[str, Any] | None:
    """Split httpx's one-line request log into fields."""
    if record.name != "httpx" or str(record.msg) != HTTPX_REQUEST_FORMAT:
        return None
    if not isinstance(record.args, tuple) or len(record.args) != 5:
        return None
    method, url, version, status, reason = record.args
    return {
        "event": "httpx_request",
        "http_method": str(method),
        "http_url": str(url),
        "http_version": str(version),
        "http_status": status if isinstance(status, int) else str(status),
        "http_reason": str(reason),
    }


class StructuredTextFormatter(logging.Formatter):
    """Format every record as a block keyed by its event name.

    ``log_event`` payloads keep their own fields; any other record becomes
    an event named after its logger. Keys follow ``EVENT_KEY_ORDER``, then
    the rest alphabetically; None values are dropped.
    """

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._entries = 0

    def _fields(self, record: logging.LogRecord) -> dict[str, Any]:
        message = record.getMessage()
        fields = _event_payload(message) or _httpx_request_fields(record)
        if fields is None:
            fields = {"event": record.name, "message": message}
        fields.setdefault(
            "ts", datetime.fromtimestamp(record.created).astimezone().isoformat()
        )
        fields["level"] = record.levelname
        fields["logger"] = record.name
        return fields

    def format(self, record: logging.LogRecord) -> str:
        fields = self._fields(record)
        event = str(fields.pop("event", record.name))
        preferred = EVENT_KEY_ORDER.get(event, DEFAULT_EVENT_KEY_ORDER)
        present = {key: value for key, value in fields.items() if value is not None}
        keys = [key for key in preferred if key in present]
        keys += sorted(key for key in present if key not in preferred)

        lines = [f"=== {event} ==="]
        lines.extend(f"{key}: {str(present[key])}".replace("\n", "\\n") for key in keys)
        if record.exc_info:
            lines.append("traceback:")
            lines.append(self.formatException(record.exc_info))

        self._entries += 1
        body = "\n".join(lines)
        # Blank line between entries, none after the last.
        return body if self._entries == 1 else "\n" + body
