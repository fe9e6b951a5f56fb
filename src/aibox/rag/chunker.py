"""Fixed-size sliding-window chunking over characters."""

from __future__ import annotations

import uuid

from ..constants import DEFAULT_CHUNK_OVERLAP, DEFAULT_CHUNK_SIZE
from .types import Chunk, Document


def chunk_spans(length: int, window: int, overlap: int) -> list[tuple[int, int]]:
    """Return ``(start, end)`` offsets of every window over ``length`` chars.

    Window ``i`` starts at ``i * (window - overlap)``. The last window is the
    first one that reaches the end of the text, clipped to ``length``.
    """
    if window <= 0:
        raise ValueError("window must be positive")
    if not 0 <= overlap < window:
        raise ValueError("overlap must be >= 0 and less than window")

    step = window - overlap
    spans: list[tuple[int, int]] = []
    start = 0
    while start < length:
        end = min(start + window, length)
        spans.append((start, end))
        if end >= length:
            break
        start += step
    return spans


def chunk_text(
    text: str,
    window: int = DEFAULT_CHUNK_SIZE,
    overlap: int = DEFAULT_CHUNK_OVERLAP,
) -> list[str]:
    """Split text into overlapping windows; empty text yields no chunks."""
    return [text[start:end] for start, end in chunk_spans(len(text), window, overlap)]


class FixedWindowChunker:
    """Positional chunker: no tokenization, no whitespace trimming."""

    def __init__(
        self,
        window: int = DEFAULT_CHUNK_SIZE,
        overlap: int = DEFAULT_CHUNK_OVERLAP,
    ) -> None:
        if window <= 0:
            raise ValueError("window must be positive")
        if not 0 <= overlap < window:
            raise ValueError("overlap must be >= 0 and less than window")
        self.window = window
        self.overlap = overlap

    def chunk(self, text: str) -> list[str]:
        return chunk_text(text, self.window, self.overlap)

    def chunk_document(self, document: Document) -> list[Chunk]:
        return [
            Chunk(
                id=str(uuid.uuid4()),
                document_id=document.id,
                content=content,
                chunk_index=index,
            )
            for index, content in enumerate(self.chunk(document.raw_text))
        ]
