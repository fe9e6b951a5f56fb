"""Shared retrieval domain models."""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np


@dataclass(frozen=True, slots=True)
class Document:
    """A source document before chunking."""

    id: str
    raw_text: str
    filename: str | None = None


@dataclass(frozen=True, slots=True)
class DocumentRecord:
    """Stored document summary used for listings."""

    id: str
    filename: str | None
    chunk_count: int
    created_at: str


@dataclass(frozen=True, slots=True)
class Chunk:
    """A contiguous slice of a document.

    ``embedding`` is attached once, when the chunk enters the vector store.
    """

    id: str
    document_id: str
    content: str
    chunk_index: int
    embedding: np.ndarray | None = field(default=None, compare=False, repr=False)


@dataclass(frozen=True, slots=True)
class ScoredChunk:
    """A retrieval result; ``score`` is the cosine similarity to the query."""

    chunk: Chunk
    score: float
