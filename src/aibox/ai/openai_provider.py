"""OpenAI-compatible chat completions provider."""

from __future__ import annotations

from collections.abc import Sequence
from contextlib import aclosing, asynccontextmanager
from typing import AsyncIterator

import httpx
from openai import AsyncOpenAI

from ..constants import DEFAULT_OPENAI_BASE_URL
from ..timeouts import DEFAULT_TIMEOUT_SEC, build_httpx_timeout
from .catalog import static_models
from .provider_utils import format_chat_messages
from .streaming import Fragment, iter_sse_payloads, parse_openai_fragment
from .types import ChatTurn, ModelInfo, ProviderKind


class OpenAIProvider:
    """OpenAI chat completions and any endpoint speaking the same protocol."""

    kind = ProviderKind.OPENAI
    discovers_models = False

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = DEFAULT_OPENAI_BASE_URL,
        timeout: int | float = DEFAULT_TIMEOUT_SEC,
        http_client: httpx.AsyncClient | None = None,
        default_headers: dict[str, str] | None = None,
    ):
        """Initialize the provider.

        Args:
            api_key: Bearer credential for the endpoint
            base_url: API root, e.g. ``https://api.openai.com/v1``
            timeout: Read timeout in seconds (0 = no timeout)
            http_client: Shared client; the caller keeps ownership
            default_headers: Extra headers sent with every request
        """
        # SDK retries are disabled; chat requests are never replayed.
        self.client = AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=build_httpx_timeout(timeout),
            max_retries=0,
            http_client=http_client,
            default_headers=default_headers,
        )
        self.base_url = base_url
        self.timeout = timeout
        self._owns_client = http_client is None

    def format_messages(self, turns: Sequence[ChatTurn]) -> list[dict[str, str]]:
        return format_chat_messages(turns)

    @asynccontextmanager
    async def open_stream(
        self, model_id: str, turns: Sequence[ChatTurn]
    ) -> AsyncIterator[AsyncIterator[str]]:
        """Dispatch a streaming chat request and expose its raw payloads.

        Status failures surface when the context is entered, before any
        payload is read. Leaving the context closes the connection.
        """
        async with self.client.chat.completions.with_streaming_response.create(
            model=model_id,
            messages=self.format_messages(turns),
            stream=True,
        ) as response:
            async with aclosing(iter_sse_payloads(response.iter_lines())) as payloads:
                yield payloads

    @staticmethod
    def parse_fragment(payload: str) -> Fragment:
        return parse_openai_fragment(payload)

    async def list_models(self) -> list[ModelInfo]:
        return static_models(self.kind)

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.close()
