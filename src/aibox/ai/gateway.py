"""Provider resolution, unified streaming chat and model discovery."""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Protocol

import httpx

from ..constants import (
    DEFAULT_CLAUDE_BASE_URL,
    DEFAULT_CLAUDE_MAX_TOKENS,
    DEFAULT_OLLAMA_HOST,
    DEFAULT_OPENAI_BASE_URL,
    SETTING_CLAUDE_API_KEY,
    SETTING_CLAUDE_BASE_URL,
    SETTING_OLLAMA_HOST,
    SETTING_OPENAI_API_KEY,
    SETTING_OPENAI_BASE_URL,
)
from ..errors import AiboxError, AuthError, Cancelled, ConfigError, ProviderError
from ..logging import estimate_turn_chars, extract_http_error_context, log_event
from ..settings import SettingsStore
from ..timeouts import DEFAULT_TIMEOUT_SEC, build_httpx_timeout
from .catalog import static_models
from .claude_provider import ClaudeProvider
from .copilot_provider import CopilotProvider
from .ollama_provider import OllamaProvider
from .openai_provider import OpenAIProvider
from .provider_logging import log_finish_reason, log_skipped_fragment
from .provider_utils import PROVIDER_EXCEPTIONS, translate_error
from .types import ChatTurn, ModelInfo, ModelRef, ProviderKind, StreamEvent

ProviderInstance = OpenAIProvider | ClaudeProvider | OllamaProvider | CopilotProvider

ProviderClass = (
    type[OpenAIProvider]
    | type[ClaudeProvider]
    | type[OllamaProvider]
    | type[CopilotProvider]
)

PROVIDER_CLASSES: dict[ProviderKind, ProviderClass] = {
    ProviderKind.OPENAI: OpenAIProvider,
    ProviderKind.CLAUDE: ClaudeProvider,
    ProviderKind.OLLAMA: OllamaProvider,
    ProviderKind.COPILOT: CopilotProvider,
}


class TokenSource(Protocol):
    """Supplies the short-lived API token for the token-gated provider."""

    async def get_api_token(self) -> str:
        ...


@dataclass(frozen=True, slots=True)
class Backend:
    """A resolved model reference bound to a ready provider instance."""

    ref: ModelRef
    provider: ProviderInstance

    @property
    def kind(self) -> ProviderKind:
        return self.ref.provider

    @property
    def model_id(self) -> str:
        return self.ref.model_id


class ProviderGateway:
    """Resolve model references and run chat requests against any backend.

    Provider instances are cached per kind and rebuilt when their connection
    settings change (for Copilot, whenever a fresh API token is issued). All
    of them share one ``httpx.AsyncClient``.
    """

    def __init__(
        self,
        settings: SettingsStore,
        credentials: TokenSource | None = None,
        *,
        timeout: int | float = DEFAULT_TIMEOUT_SEC,
        claude_max_tokens: int = DEFAULT_CLAUDE_MAX_TOKENS,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.settings = settings
        self.credentials = credentials
        self.timeout = timeout
        self.claude_max_tokens = claude_max_tokens
        self._owns_http_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(
            timeout=build_httpx_timeout(timeout)
        )
        self._providers: dict[ProviderKind, tuple[tuple[Any, ...], ProviderInstance]] = {}
        self._lock = threading.Lock()
        self._connection_resolvers: dict[
            ProviderKind, Callable[[], Awaitable[dict[str, Any]]]
        ] = {
            ProviderKind.OPENAI: self._openai_connection,
            ProviderKind.CLAUDE: self._claude_connection,
            ProviderKind.OLLAMA: self._ollama_connection,
            ProviderKind.COPILOT: self._copilot_connection,
        }

    # ------------------------------------------------------------------
    # Connection settings per provider kind
    # ------------------------------------------------------------------

    def _require_setting(self, key: str, label: str) -> str:
        value = self.settings.get(key)
        if not value:
            raise ConfigError(f"{label} is not configured (setting '{key}')")
        return value

    async def _openai_connection(self) -> dict[str, Any]:
        return {
            "api_key": self._require_setting(SETTING_OPENAI_API_KEY, "OpenAI API key"),
            "base_url": self.settings.get(SETTING_OPENAI_BASE_URL) or DEFAULT_OPENAI_BASE_URL,
        }

    async def _claude_connection(self) -> dict[str, Any]:
        return {
            "api_key": self._require_setting(SETTING_CLAUDE_API_KEY, "Claude API key"),
            "base_url": self.settings.get(SETTING_CLAUDE_BASE_URL) or DEFAULT_CLAUDE_BASE_URL,
            "max_tokens": self.claude_max_tokens,
        }

    async def _ollama_connection(self) -> dict[str, Any]:
        return {"host": self.settings.get(SETTING_OLLAMA_HOST) or DEFAULT_OLLAMA_HOST}

    async def _copilot_connection(self) -> dict[str, Any]:
        if self.credentials is None:
            raise AuthError("Copilot credentials are not available")
        return {"api_token": await self.credentials.get_api_token()}

    async def _provider_for(self, kind: ProviderKind) -> ProviderInstance:
        connection = await self._connection_resolvers[kind]()
        cache_key = tuple(sorted(connection.items()))
        with self._lock:
            cached = self._providers.get(kind)
            if cached is not None and cached[0] == cache_key:
                return cached[1]
            provider = PROVIDER_CLASSES[kind](
                **connection,
                timeout=self.timeout,
                http_client=self.http_client,
            )
            self._providers[kind] = (cache_key, provider)
            return provider

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def resolve(self, model: str | ModelRef) -> Backend:
        """Resolve a model reference to a backend ready for requests.

        Raises:
            ConfigError: Unknown provider prefix or missing connection setting
            AuthError: Copilot token is missing or could not be refreshed
            NetworkError: Copilot token exchange could not reach GitHub
        """
        ref = model if isinstance(model, ModelRef) else ModelRef.parse(model)
        provider = await self._provider_for(ref.provider)
        return Backend(ref=ref, provider=provider)

    async def chat_stream(
        self,
        backend: Backend,
        turns: Sequence[ChatTurn],
        *,
        cancel: asyncio.Event | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Stream a chat completion as delta events plus one terminal event.

        Failures after dispatch never raise; they end the stream with a
        terminal event carrying the error. Fragments that cannot be decoded
        are logged and skipped.
        """
        provider = backend.provider
        provider_name = backend.kind.value
        started = time.perf_counter()
        first_delta_at: float | None = None
        delta_count = 0
        output_chars = 0
        skipped = 0
        failure: BaseException | None = None
        terminal: StreamEvent | None = None

        log_event(
            "ai_request",
            level=logging.INFO,
            provider=provider_name,
            model=backend.model_id,
            turn_count=len(turns),
            input_chars=estimate_turn_chars(list(turns)),
        )

        if cancel is not None and cancel.is_set():
            terminal = StreamEvent.finished(Cancelled("Stream cancelled"))
        else:
            try:
                async with provider.open_stream(backend.model_id, turns) as payloads:
                    async for payload in payloads:
                        if cancel is not None and cancel.is_set():
                            terminal = StreamEvent.finished(Cancelled("Stream cancelled"))
                            break
                        try:
                            fragment = provider.parse_fragment(payload)
                        except ValueError as e:
                            skipped += 1
                            log_skipped_fragment(provider_name, payload, e)
                            continue

                        if fragment.error is not None:
                            terminal = StreamEvent.finished(ProviderError(fragment.error))
                            break
                        log_finish_reason(provider_name, fragment.finish_reason)
                        if fragment.text:
                            if first_delta_at is None:
                                first_delta_at = time.perf_counter()
                            delta_count += 1
                            output_chars += len(fragment.text)
                            yield StreamEvent.text(fragment.text)
                        if fragment.end:
                            terminal = StreamEvent.finished()
                            break
            except AiboxError as e:
                failure = e
                terminal = StreamEvent.finished(e)
            except PROVIDER_EXCEPTIONS as e:
                failure = e
                terminal = StreamEvent.finished(translate_error(e))

        if terminal is None:
            # Body ended cleanly without an end-of-stream marker.
            terminal = StreamEvent.finished()

        latency_ms = round((time.perf_counter() - started) * 1000, 1)
        if terminal.error is None or isinstance(terminal.error, Cancelled):
            log_event(
                "ai_response",
                level=logging.INFO,
                provider=provider_name,
                model=backend.model_id,
                latency_ms=latency_ms,
                ttft_ms=(
                    round((first_delta_at - started) * 1000, 1)
                    if first_delta_at is not None
                    else None
                ),
                delta_count=delta_count,
                output_chars=output_chars,
                skipped_fragments=skipped,
                cancelled=terminal.error is not None,
            )
        else:
            log_event(
                "ai_error",
                level=logging.ERROR,
                provider=provider_name,
                model=backend.model_id,
                latency_ms=latency_ms,
                delta_count=delta_count,
                error_type=type(terminal.error).__name__,
                error=str(terminal.error),
                **(extract_http_error_context(failure) if failure is not None else {}),
            )

        yield terminal

    async def chat(self, backend: Backend, turns: Sequence[ChatTurn]) -> str:
        """Return the full response text, raising the terminal error if any."""
        parts: list[str] = []
        async for event in self.chat_stream(backend, turns):
            if event.error is not None:
                raise event.error
            parts.append(event.delta)
        return "".join(parts)

    async def fetch_models(self, kind: ProviderKind | str) -> list[ModelInfo]:
        """List models for a provider kind.

        Ollama and Copilot are queried over the network; OpenAI and Claude
        return the static registry without any call.
        """
        if not isinstance(kind, ProviderKind):
            kind = ProviderKind.parse(kind)

        if PROVIDER_CLASSES[kind].discovers_models:
            provider = await self._provider_for(kind)
            models = await provider.list_models()
            source = "network"
        else:
            models = static_models(kind)
            source = "static"

        log_event(
            "models_fetched",
            level=logging.INFO,
            provider=kind.value,
            model_count=len(models),
            source=source,
        )
        return models

    async def aclose(self) -> None:
        """Release provider instances and the shared HTTP client."""
        with self._lock:
            providers = [provider for _, provider in self._providers.values()]
            self._providers.clear()
        for provider in providers:
            await provider.aclose()
        if self._owns_http_client:
            await self.http_client.aclose()
