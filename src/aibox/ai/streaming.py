"""Incremental decoding of streamed chat responses.

Backends stream either server-sent events (OpenAI-compatible endpoints,
Claude) or line-delimited JSON (the local Ollama daemon). Both are reduced
to a sequence of raw payload strings here; each provider then turns one
payload into a ``Fragment``. A payload that fails to parse raises
``ValueError`` so the caller can skip it and keep reading.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, AsyncIterator

OPENAI_DONE_MARKER = "[DONE]"


@dataclass(frozen=True, slots=True)
class SSEEvent:
    """One dispatched server-sent event."""

    data: str
    event: str | None = None


class SSEDecoder:
    """Assemble server-sent events from individual lines.

    ``data:`` lines accumulate until a blank line dispatches the event.
    Comments and ``id:``/``retry:`` fields are ignored.
    """

    def __init__(self) -> None:
        self._data: list[str] = []
        self._event: str | None = None

    def feed(self, line: str) -> SSEEvent | None:
        line = line.rstrip("\r\n")
        if not line:
            return self._dispatch()
        if line.startswith(":"):
            return None

        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "data":
            self._data.append(value)
        elif field == "event":
            self._event = value
        return None

    def flush(self) -> SSEEvent | None:
        """Dispatch whatever is pending when the connection closes."""
        return self._dispatch()

    def _dispatch(self) -> SSEEvent | None:
        if not self._data:
            self._event = None
            return None
        event = SSEEvent(data="\n".join(self._data), event=self._event)
        self._data = []
        self._event = None
        return event


async def iter_sse_payloads(lines: AsyncIterator[str]) -> AsyncIterator[str]:
    """Yield the data payload of each server-sent event, in arrival order."""
    decoder = SSEDecoder()
    async for line in lines:
        event = decoder.feed(line)
        if event is not None:
            yield event.data
    trailing = decoder.flush()
    if trailing is not None:
        yield trailing.data


async def iter_json_lines(lines: AsyncIterator[str]) -> AsyncIterator[str]:
    """Yield each non-blank line of a line-delimited JSON body."""
    async for line in lines:
        stripped = line.strip()
        if stripped:
            yield stripped


@dataclass(frozen=True, slots=True)
class Fragment:
    """Decoded meaning of one streamed payload."""

    text: str = ""
    end: bool = False
    error: str | None = None
    finish_reason: str | None = None


def load_json_object(payload: str) -> dict[str, Any]:
    """Parse a payload that must be a JSON object."""
    data = json.loads(payload)
    if not isinstance(data, dict):
        raise ValueError("stream fragment is not a JSON object")
    return data


def error_message(value: Any) -> str:
    """Pull a readable message out of an ``error`` member."""
    if isinstance(value, dict):
        message = value.get("message") or value.get("type")
        if message:
            return str(message)
    return str(value)


def optional_text(value: Any) -> str:
    """Validate an optional text member of a fragment."""
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError("stream fragment text is not a string")
    return value


def parse_openai_fragment(payload: str) -> Fragment:
    """Decode one chat-completions chunk (OpenAI-compatible wire format)."""
    if payload.strip() == OPENAI_DONE_MARKER:
        return Fragment(end=True)

    data = load_json_object(payload)
    if data.get("error"):
        return Fragment(error=error_message(data["error"]))

    choices = data.get("choices")
    if choices is None or choices == []:
        # Usage-only chunks carry no choices.
        return Fragment()
    if not isinstance(choices, list) or not isinstance(choices[0], dict):
        raise ValueError("stream fragment has malformed choices")

    choice = choices[0]
    delta = choice.get("delta") or {}
    if not isinstance(delta, dict):
        raise ValueError("stream fragment has malformed delta")
    return Fragment(
        text=optional_text(delta.get("content")),
        finish_reason=choice.get("finish_reason"),
    )
