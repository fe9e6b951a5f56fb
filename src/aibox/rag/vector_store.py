"""Append-only in-memory vector index with cosine-similarity search."""

from __future__ import annotations

import threading
from dataclasses import dataclass

import numpy as np

from ..errors import DimensionMismatchError
from .repository import ChunkRepository, InMemoryChunkRepository
from .types import Chunk, ScoredChunk


def check_dimension(vector: np.ndarray, expected: int | None) -> None:
    """Reject a vector whose length differs from the stored dimension."""
    if expected is not None and vector.shape[0] != expected:
        raise DimensionMismatchError(expected, int(vector.shape[0]))


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Compute cosine similarity between two vectors (0.0 if either norm is 0)."""
    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return float(np.clip(np.dot(a, b) / (norm_a * norm_b), -1.0, 1.0))


@dataclass(frozen=True, slots=True)
class _StoredVector:
    chunk: Chunk
    vector: np.ndarray
    norm: float


class VectorStore:
    """Brute-force nearest-neighbour search over embedded chunks.

    Chunks are appended, never modified; a document's chunks can only be
    removed together. Searches read an immutable snapshot of the record list,
    so a concurrent insert is observed either completely or not at all.
    """

    def __init__(self, repository: ChunkRepository | None = None) -> None:
        self.repository = repository if repository is not None else InMemoryChunkRepository()
        self._records: tuple[_StoredVector, ...] = ()
        self._ids: set[str] = set()
        self._dimension: int | None = None
        self._lock = threading.Lock()

    @classmethod
    def open(cls, repository: ChunkRepository) -> VectorStore:
        """Build a store over a repository, loading chunks already persisted."""
        store = cls(repository)
        records: list[_StoredVector] = []
        for chunk in repository.load_chunks():
            if chunk.embedding is None:
                continue
            vector = store._prepare(chunk.embedding)
            check_dimension(vector, store._dimension)
            store._dimension = int(vector.shape[0])
            records.append(store._record(chunk, vector))
            store._ids.add(chunk.id)
        store._records = tuple(records)
        return store

    @property
    def dimension(self) -> int | None:
        return self._dimension

    def __len__(self) -> int:
        return len(self._records)

    @staticmethod
    def _prepare(vector: np.ndarray | list[float]) -> np.ndarray:
        array = np.array(vector, dtype=np.float64)
        if array.ndim != 1 or array.shape[0] == 0:
            raise ValueError("embedding must be a non-empty 1-D vector")
        array.setflags(write=False)
        return array

    def _record(self, chunk: Chunk, vector: np.ndarray) -> _StoredVector:
        return _StoredVector(
            chunk=Chunk(
                id=chunk.id,
                document_id=chunk.document_id,
                content=chunk.content,
                chunk_index=chunk.chunk_index,
                embedding=vector,
            ),
            vector=vector,
            norm=float(np.linalg.norm(vector)),
        )

    def insert(self, chunk: Chunk, vector: np.ndarray | list[float]) -> None:
        """Persist an embedded chunk, then make it visible to searches.

        Raises:
            DimensionMismatchError: Vector length differs from stored vectors
            ValueError: The chunk was already inserted or the vector is empty
        """
        prepared = self._prepare(vector)
        with self._lock:
            if chunk.id in self._ids:
                raise ValueError(f"Chunk {chunk.id} is already stored")
            check_dimension(prepared, self._dimension)
            self.repository.add_chunk(chunk, prepared)
            self._dimension = int(prepared.shape[0])
            self._ids.add(chunk.id)
            self._records = self._records + (self._record(chunk, prepared),)

    def search(self, query_vector: np.ndarray | list[float], top_k: int) -> list[ScoredChunk]:
        """Return up to ``top_k`` chunks by descending cosine similarity.

        Ties keep insertion order. ``top_k <= 0`` or an empty store yields [].
        """
        records = self._records
        if top_k <= 0 or not records:
            return []

        query = self._prepare(query_vector)
        check_dimension(query, records[0].vector.shape[0])

        matrix = np.stack([record.vector for record in records])
        norms = np.array([record.norm for record in records])
        query_norm = float(np.linalg.norm(query))
        denominators = norms * query_norm
        dots = matrix @ query
        scores = np.zeros(len(records))
        nonzero = denominators > 0
        scores[nonzero] = np.clip(dots[nonzero] / denominators[nonzero], -1.0, 1.0)

        # Stable sort on the negated score keeps insertion order among ties.
        order = np.argsort(-scores, kind="stable")[:top_k]
        return [
            ScoredChunk(chunk=records[i].chunk, score=float(scores[i]))
            for i in order
        ]

    def remove_document(self, document_id: str) -> int:
        """Drop every chunk of a document; returns how many were removed."""
        with self._lock:
            self.repository.delete_document(document_id)
            kept = tuple(r for r in self._records if r.chunk.document_id != document_id)
            removed = len(self._records) - len(kept)
            self._records = kept
            self._ids = {r.chunk.id for r in kept}
            if not kept:
                self._dimension = None
        return removed
