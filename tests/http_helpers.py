"""HTTP simulation helpers shared by the test modules."""

from __future__ import annotations

import json
from typing import Any, AsyncIterator, Callable, Iterable

import httpx

Handler = Callable[[httpx.Request], httpx.Response]


def mock_http_client(handler: Handler) -> httpx.AsyncClient:
    """AsyncClient whose requests are answered by ``handler``."""
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def sse_body(payloads: Iterable[Any]) -> bytes:
    """Encode payloads as server-sent events (dicts become JSON)."""
    events = []
    for payload in payloads:
        data = payload if isinstance(payload, str) else json.dumps(payload)
        events.append(f"data: {data}\n\n")
    return "".join(events).encode("utf-8")


def sse_response(payloads: Iterable[Any]) -> httpx.Response:
    return httpx.Response(
        200,
        content=sse_body(payloads),
        headers={"content-type": "text/event-stream"},
    )


def openai_chunk(content: str | None = None, finish_reason: str | None = None) -> dict[str, Any]:
    delta = {} if content is None else {"content": content}
    return {
        "id": "chatcmpl-1",
        "object": "chat.completion.chunk",
        "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}],
    }


async def byte_stream(parts: list[bytes], error: Exception | None = None) -> AsyncIterator[bytes]:
    """Response body that yields ``parts`` and then optionally fails."""
    for part in parts:
        yield part
    if error is not None:
        raise error


class RequestRecorder:
    """Collects requests seen by a mock transport handler."""

    def __init__(self, handler: Handler) -> None:
        self.handler = handler
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)

    def paths(self) -> list[str]:
        return [request.url.path for request in self.requests]
