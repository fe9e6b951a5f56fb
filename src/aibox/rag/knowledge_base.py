"""Document ingestion and retrieval over the vector store."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Sequence
from datetime import datetime, timezone

import numpy as np

from ..ai.types import ChatTurn
from ..constants import DEFAULT_EMBEDDING_BATCH_SIZE, DEFAULT_RETRIEVAL_TOP_K
from ..errors import DocumentExistsError
from ..logging import log_event
from .chunker import FixedWindowChunker
from .embedding import EmbeddingClient
from .types import Document, DocumentRecord, ScoredChunk
from .vector_store import VectorStore, check_dimension

CONTEXT_PREAMBLE = (
    "Use the following excerpts from the user's documents when they are "
    "relevant to the question. Ignore them when they are not."
)


class KnowledgeBase:
    """Chunk, embed and store documents; answer similarity queries.

    The embedding client is obtained lazily from ``embedder_factory`` so the
    current API key and base URL are read at call time.
    """

    def __init__(
        self,
        store: VectorStore,
        embedder_factory: Callable[[], EmbeddingClient],
        *,
        chunker: FixedWindowChunker | None = None,
        batch_size: int = DEFAULT_EMBEDDING_BATCH_SIZE,
        default_top_k: int = DEFAULT_RETRIEVAL_TOP_K,
    ):
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self.store = store
        self.embedder_factory = embedder_factory
        self.chunker = chunker or FixedWindowChunker()
        self.batch_size = batch_size
        self.default_top_k = default_top_k

    def _ensure_new_document(self, document_id: str) -> None:
        if self.store.repository.has_document(document_id):
            raise DocumentExistsError(document_id)

    async def _embed_batched(self, texts: Sequence[str]) -> list[np.ndarray]:
        embedder = self.embedder_factory()
        vectors: list[np.ndarray] = []
        dimension = self.store.dimension
        for start in range(0, len(texts), self.batch_size):
            batch = texts[start : start + self.batch_size]
            batch_vectors = await embedder.embed(batch, expected_dimension=dimension)
            if dimension is None and batch_vectors:
                dimension = int(batch_vectors[0].shape[0])
            vectors.extend(batch_vectors)
        return vectors

    async def ingest_document(
        self,
        raw_text: str,
        document_id: str | None = None,
        filename: str | None = None,
    ) -> int:
        """Chunk, embed and store a document; returns the chunk count.

        Every batch is embedded before anything is stored, so a failed
        embedding call leaves the store unchanged. A failed insert removes
        whatever part of the document was already written.

        Raises:
            ValueError: The document has no non-whitespace text
            DocumentExistsError: ``document_id`` is already stored
            DimensionMismatchError: The vectors do not fit the store
        """
        if not raw_text.strip():
            raise ValueError("Document is empty")

        document = Document(
            id=document_id or str(uuid.uuid4()),
            raw_text=raw_text,
            filename=filename,
        )
        self._ensure_new_document(document.id)
        chunks = self.chunker.chunk_document(document)
        vectors = await self._embed_batched([chunk.content for chunk in chunks])

        # The store may have changed while the batches were embedded.
        self._ensure_new_document(document.id)
        check_dimension(vectors[0], self.store.dimension)

        self.store.repository.add_document(
            DocumentRecord(
                id=document.id,
                filename=filename,
                chunk_count=len(chunks),
                created_at=datetime.now(timezone.utc).isoformat(),
            )
        )
        try:
            for chunk, vector in zip(chunks, vectors, strict=True):
                self.store.insert(chunk, vector)
        except Exception:
            self.store.remove_document(document.id)
            raise

        log_event(
            "document_ingested",
            level=logging.INFO,
            document_id=document.id,
            filename=filename,
            chunk_count=len(chunks),
            dimension=self.store.dimension,
        )
        return len(chunks)

    async def retrieve(self, query_text: str, top_k: int | None = None) -> list[ScoredChunk]:
        """Embed the query and return the most similar stored chunks."""
        k = self.default_top_k if top_k is None else top_k
        if k <= 0 or len(self.store) == 0 or not query_text.strip():
            return []

        embedder = self.embedder_factory()
        [query_vector] = await embedder.embed(
            [query_text], expected_dimension=self.store.dimension
        )
        results = self.store.search(query_vector, k)
        log_event(
            "retrieval",
            level=logging.INFO,
            top_k=k,
            candidate_count=len(self.store),
            result_count=len(results),
            best_score=round(results[0].score, 4) if results else None,
        )
        return results

    def list_documents(self) -> list[DocumentRecord]:
        return self.store.repository.list_documents()

    def delete_document(self, document_id: str) -> int:
        return self.store.remove_document(document_id)

    @staticmethod
    def build_context_turn(results: Sequence[ScoredChunk]) -> ChatTurn | None:
        """Render retrieval results as a system turn, or None when empty."""
        if not results:
            return None
        excerpts = [
            f"[{position}] {result.chunk.content}"
            for position, result in enumerate(results, start=1)
        ]
        return ChatTurn.system("\n\n".join([CONTEXT_PREAMBLE, *excerpts]))
