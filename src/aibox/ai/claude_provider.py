"""Claude (Anthropic) messages provider."""

from __future__ import annotations

from collections.abc import Sequence
from contextlib import aclosing, asynccontextmanager
from typing import Any, AsyncIterator

import httpx
from anthropic import AsyncAnthropic

from ..constants import DEFAULT_CLAUDE_BASE_URL, DEFAULT_CLAUDE_MAX_TOKENS
from ..timeouts import DEFAULT_TIMEOUT_SEC, build_httpx_timeout
from .catalog import static_models
from .streaming import (
    Fragment,
    error_message,
    iter_sse_payloads,
    load_json_object,
    optional_text,
)
from .types import ChatTurn, ModelInfo, ProviderKind, Role


class ClaudeProvider:
    """Claude (Anthropic) provider implementation."""

    kind = ProviderKind.CLAUDE
    discovers_models = False

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = DEFAULT_CLAUDE_BASE_URL,
        timeout: int | float = DEFAULT_TIMEOUT_SEC,
        max_tokens: int = DEFAULT_CLAUDE_MAX_TOKENS,
        http_client: httpx.AsyncClient | None = None,
    ):
        """Initialize Claude provider.

        Args:
            api_key: Anthropic API key
            base_url: API root (default ``https://api.anthropic.com``)
            timeout: Read timeout in seconds (0 = no timeout)
            max_tokens: Output token cap sent with every request
            http_client: Shared client; the caller keeps ownership
        """
        # Disable SDK retries; chat requests are never replayed.
        self.client = AsyncAnthropic(
            api_key=api_key,
            base_url=base_url,
            timeout=build_httpx_timeout(timeout),
            max_retries=0,
            http_client=http_client,
        )
        self.base_url = base_url
        self.timeout = timeout
        self.max_tokens = max_tokens
        self._owns_client = http_client is None

    def format_messages(
        self, turns: Sequence[ChatTurn]
    ) -> tuple[str | None, list[dict[str, str]]]:
        """Split turns into Claude's separate system prompt and message list.

        Returns:
            Tuple of (system prompt or None, non-system messages in order)
        """
        system_parts: list[str] = []
        messages: list[dict[str, str]] = []
        for turn in turns:
            if turn.role == Role.SYSTEM:
                system_parts.append(turn.text)
            else:
                messages.append(turn.to_message())
        system = "\n\n".join(system_parts) if system_parts else None
        return system, messages

    @asynccontextmanager
    async def open_stream(
        self, model_id: str, turns: Sequence[ChatTurn]
    ) -> AsyncIterator[AsyncIterator[str]]:
        system, messages = self.format_messages(turns)

        # Claude handles system prompt separately
        kwargs: dict[str, Any] = {
            "model": model_id,
            "messages": messages,
            "max_tokens": self.max_tokens,
            "stream": True,
        }
        if system:
            kwargs["system"] = system

        async with self.client.messages.with_streaming_response.create(**kwargs) as response:
            async with aclosing(iter_sse_payloads(response.iter_lines())) as payloads:
                yield payloads

    @staticmethod
    def parse_fragment(payload: str) -> Fragment:
        """Decode one Messages API stream event."""
        data = load_json_object(payload)
        event_type = data.get("type")
        if not isinstance(event_type, str):
            raise ValueError("stream event has no type")

        if event_type == "content_block_delta":
            delta = data.get("delta")
            if not isinstance(delta, dict):
                raise ValueError("content_block_delta without delta")
            return Fragment(text=optional_text(delta.get("text")))
        if event_type == "message_delta":
            delta = data.get("delta") or {}
            if not isinstance(delta, dict):
                raise ValueError("message_delta with malformed delta")
            return Fragment(finish_reason=delta.get("stop_reason"))
        if event_type == "message_stop":
            return Fragment(end=True)
        if event_type == "error":
            return Fragment(error=error_message(data.get("error")))
        # message_start, content_block_start/stop, ping
        return Fragment()

    async def list_models(self) -> list[ModelInfo]:
        return static_models(self.kind)

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.close()
