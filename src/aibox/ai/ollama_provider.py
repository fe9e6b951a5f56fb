"""Local Ollama daemon provider (native chat API)."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from contextlib import aclosing, asynccontextmanager
from typing import Any, AsyncIterator

import httpx
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

from ..constants import DEFAULT_OLLAMA_HOST
from ..errors import ProviderError
from ..logging import before_sleep_log_event
from ..timeouts import (
    DEFAULT_TIMEOUT_SEC,
    RETRY_BACKOFF_INITIAL_SEC,
    RETRY_BACKOFF_MAX_SEC,
    STANDARD_RETRY_ATTEMPTS,
    build_httpx_timeout,
)
from .catalog import model_info
from .provider_utils import (
    format_chat_messages,
    is_retryable_http_error,
    status_error,
    translate_error,
)
from .streaming import (
    Fragment,
    error_message,
    iter_json_lines,
    load_json_object,
    optional_text,
)
from .types import ChatTurn, ModelInfo, ProviderKind


class OllamaProvider:
    """Chat against a local Ollama daemon; no credential is needed."""

    kind = ProviderKind.OLLAMA
    discovers_models = True

    def __init__(
        self,
        host: str = DEFAULT_OLLAMA_HOST,
        *,
        timeout: int | float = DEFAULT_TIMEOUT_SEC,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.host = host.rstrip("/")
        self.timeout = timeout
        self._owns_client = http_client is None
        self.client = http_client or httpx.AsyncClient(timeout=build_httpx_timeout(timeout))

    def format_messages(self, turns: Sequence[ChatTurn]) -> list[dict[str, str]]:
        return format_chat_messages(turns)

    @asynccontextmanager
    async def open_stream(
        self, model_id: str, turns: Sequence[ChatTurn]
    ) -> AsyncIterator[AsyncIterator[str]]:
        payload = {
            "model": model_id,
            "messages": self.format_messages(turns),
            "stream": True,
        }
        async with self.client.stream("POST", f"{self.host}/api/chat", json=payload) as response:
            if response.is_error:
                await response.aread()
                raise status_error(response, context="Ollama chat")
            async with aclosing(iter_json_lines(response.aiter_lines())) as payloads:
                yield payloads

    @staticmethod
    def parse_fragment(payload: str) -> Fragment:
        """Decode one line of the ``/api/chat`` stream."""
        data = load_json_object(payload)
        if data.get("error"):
            return Fragment(error=error_message(data["error"]))

        message = data.get("message") or {}
        if not isinstance(message, dict):
            raise ValueError("stream line has malformed message")
        text = optional_text(message.get("content"))
        if data.get("done") is True:
            return Fragment(text=text, end=True, finish_reason=data.get("done_reason"))
        return Fragment(text=text)

    @retry(
        retry=retry_if_exception(is_retryable_http_error),
        wait=wait_exponential_jitter(
            initial=RETRY_BACKOFF_INITIAL_SEC,
            max=RETRY_BACKOFF_MAX_SEC,
        ),
        stop=stop_after_attempt(STANDARD_RETRY_ATTEMPTS),
        before_sleep=before_sleep_log_event(
            provider="ollama",
            operation="_fetch_tags",
            level=logging.WARNING,
        ),
        reraise=True,
    )
    async def _fetch_tags(self) -> Any:
        """GET ``/api/tags`` with retry logic (idempotent)."""
        response = await self.client.get(f"{self.host}/api/tags")
        response.raise_for_status()
        return response.json()

    async def list_models(self) -> list[ModelInfo]:
        """Query the daemon for installed models."""
        try:
            data = await self._fetch_tags()
        except httpx.HTTPError as e:
            raise translate_error(e) from e
        except json.JSONDecodeError as e:
            raise ProviderError(f"Ollama returned an invalid model list: {e}") from e

        entries = data.get("models") if isinstance(data, dict) else None
        if not isinstance(entries, list):
            raise ProviderError("Ollama returned an invalid model list")

        models: list[ModelInfo] = []
        for entry in entries:
            name = entry.get("name") if isinstance(entry, dict) else None
            if isinstance(name, str) and name:
                models.append(model_info(self.kind, name))
        return models

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()
