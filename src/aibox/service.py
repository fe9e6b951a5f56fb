"""Application facade wiring the gateway, credentials and knowledge base."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Sequence
from typing import AsyncIterator, Callable

import httpx

from .ai import ChatTurn, ModelInfo, ModelRef, ProviderGateway, ProviderKind, Role, StreamEvent
from .auth import CredentialManager, CredentialPhase, DeviceCode, PollResult
from .config import AppConfig
from .constants import (
    DEFAULT_OPENAI_BASE_URL,
    SETTING_DEFAULT_MODEL,
    SETTING_EMBEDDING_MODEL,
    SETTING_OPENAI_API_KEY,
    SETTING_OPENAI_BASE_URL,
)
from .errors import ConfigError
from .rag import (
    ChunkRepository,
    DocumentRecord,
    EmbeddingClient,
    FixedWindowChunker,
    InMemoryChunkRepository,
    KnowledgeBase,
    ScoredChunk,
    SqliteChunkRepository,
    VectorStore,
)
from .settings import JsonSettingsStore, KeyringSettingsStore, SettingsStore
from .timeouts import build_httpx_timeout


def last_user_text(turns: Sequence[ChatTurn]) -> str | None:
    """Text of the most recent user turn, used as the retrieval query."""
    for turn in reversed(turns):
        if turn.role == Role.USER:
            return turn.text
    return None


class AiBox:
    """One instance of each component, shared by every operation.

    All outbound HTTP goes through a single ``httpx.AsyncClient``; call
    ``aclose`` (or use ``async with``) to release it.
    """

    def __init__(
        self,
        config: AppConfig,
        settings: SettingsStore,
        *,
        repository: ChunkRepository | None = None,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.settings = settings
        self._owns_http_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(
            timeout=build_httpx_timeout(config.timeout)
        )
        self.credentials = CredentialManager(
            settings,
            client_id=config.copilot_client_id,
            safety_margin_sec=config.token_safety_margin_sec,
            timeout=config.timeout,
            http_client=self.http_client,
            clock=clock,
        )
        self.gateway = ProviderGateway(
            settings,
            self.credentials,
            timeout=config.timeout,
            claude_max_tokens=config.claude_max_tokens,
            http_client=self.http_client,
        )
        self.knowledge = KnowledgeBase(
            VectorStore.open(repository if repository is not None else InMemoryChunkRepository()),
            self._embedding_client,
            chunker=FixedWindowChunker(config.chunk_size, config.chunk_overlap),
            batch_size=config.embedding_batch_size,
            default_top_k=config.retrieval_top_k,
        )

    @classmethod
    def from_config(cls, config: AppConfig) -> AiBox:
        """Build the facade over the configured settings file and database."""
        settings: SettingsStore = JsonSettingsStore(config.resolved_path(config.settings_file))
        if config.use_keyring:
            settings = KeyringSettingsStore(settings)
        repository = SqliteChunkRepository(config.resolved_path(config.database_file))
        return cls(config, settings, repository=repository)

    async def __aenter__(self) -> AiBox:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    def _embedding_client(self) -> EmbeddingClient:
        api_key = self.settings.get(SETTING_OPENAI_API_KEY)
        if not api_key:
            raise ConfigError(
                f"OpenAI API key is required for the knowledge base (setting '{SETTING_OPENAI_API_KEY}')"
            )
        return EmbeddingClient(
            api_key,
            base_url=self.settings.get(SETTING_OPENAI_BASE_URL) or DEFAULT_OPENAI_BASE_URL,
            model=self.settings.get(SETTING_EMBEDDING_MODEL) or self.config.embedding_model,
            timeout=self.config.timeout,
            http_client=self.http_client,
        )

    def default_model(self) -> str | None:
        """Model used when the caller names none (settings override config)."""
        return self.settings.get(SETTING_DEFAULT_MODEL) or self.config.default_model

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    async def chat_stream(
        self,
        model: str | ModelRef,
        turns: Sequence[ChatTurn],
        *,
        use_knowledge: bool = False,
        top_k: int | None = None,
        cancel: asyncio.Event | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Stream a chat reply, optionally augmented with retrieved context.

        Resolution and retrieval failures raise before anything is sent;
        later failures arrive as the terminal event's error.
        """
        backend = await self.gateway.resolve(model)
        request_turns = list(turns)
        if use_knowledge:
            query = last_user_text(request_turns)
            if query:
                results = await self.knowledge.retrieve(query, top_k)
                context = self.knowledge.build_context_turn(results)
                if context is not None:
                    request_turns.insert(0, context)

        async for event in self.gateway.chat_stream(backend, request_turns, cancel=cancel):
            yield event

    async def chat(
        self,
        model: str | ModelRef,
        turns: Sequence[ChatTurn],
        *,
        use_knowledge: bool = False,
        top_k: int | None = None,
    ) -> str:
        """Return the whole reply; a terminal error is raised."""
        parts: list[str] = []
        async for event in self.chat_stream(
            model, turns, use_knowledge=use_knowledge, top_k=top_k
        ):
            if event.error is not None:
                raise event.error
            parts.append(event.delta)
        return "".join(parts)

    async def list_models(self, provider: ProviderKind | str) -> list[ModelInfo]:
        return await self.gateway.fetch_models(provider)

    # ------------------------------------------------------------------
    # Knowledge base
    # ------------------------------------------------------------------

    async def ingest_document(
        self,
        raw_text: str,
        document_id: str | None = None,
        filename: str | None = None,
    ) -> int:
        return await self.knowledge.ingest_document(raw_text, document_id, filename)

    async def retrieve(self, query_text: str, top_k: int | None = None) -> list[ScoredChunk]:
        return await self.knowledge.retrieve(query_text, top_k)

    def list_documents(self) -> list[DocumentRecord]:
        return self.knowledge.list_documents()

    def delete_document(self, document_id: str) -> int:
        return self.knowledge.delete_document(document_id)

    # ------------------------------------------------------------------
    # Copilot login
    # ------------------------------------------------------------------

    async def start_login(self) -> DeviceCode:
        return await self.credentials.start_login()

    async def poll_login(self, device_code: str | DeviceCode) -> PollResult:
        return await self.credentials.poll_login(device_code)

    def logout(self) -> None:
        self.credentials.logout()

    def is_logged_in(self) -> bool:
        return self.credentials.is_logged_in()

    @property
    def credential_state(self) -> CredentialPhase:
        return self.credentials.state

    async def aclose(self) -> None:
        await self.gateway.aclose()
        await self.credentials.aclose()
        if self._owns_http_client:
            await self.http_client.aclose()
