"""Persistence for documents and embedded chunks."""

from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Protocol

import numpy as np

from .types import Chunk, DocumentRecord

SCHEMA = """
CREATE TABLE IF NOT EXISTS documents (
    id          TEXT PRIMARY KEY,
    filename    TEXT,
    chunk_count INTEGER NOT NULL DEFAULT 0,
    created_at  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS chunks (
    seq         INTEGER PRIMARY KEY AUTOINCREMENT,
    id          TEXT NOT NULL UNIQUE,
    document_id TEXT NOT NULL REFERENCES documents(id) ON DELETE CASCADE,
    chunk_index INTEGER NOT NULL,
    content     TEXT NOT NULL,
    embedding   BLOB NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_chunks_document ON chunks(document_id);
"""

EMBEDDING_DTYPE = np.dtype("<f4")


def encode_embedding(vector: np.ndarray) -> bytes:
    """Serialize a vector as little-endian float32."""
    return np.asarray(vector, dtype=EMBEDDING_DTYPE).tobytes()


def decode_embedding(blob: bytes) -> np.ndarray:
    return np.frombuffer(blob, dtype=EMBEDDING_DTYPE).astype(np.float64)


class ChunkRepository(Protocol):
    """Storage collaborator behind the vector store."""

    def add_document(self, record: DocumentRecord) -> None:
        ...

    def has_document(self, document_id: str) -> bool:
        ...

    def add_chunk(self, chunk: Chunk, embedding: np.ndarray) -> None:
        ...

    def load_chunks(self) -> list[Chunk]:
        ...

    def list_documents(self) -> list[DocumentRecord]:
        ...

    def delete_document(self, document_id: str) -> None:
        ...


class InMemoryChunkRepository:
    """Process-local repository for tests and throwaway sessions."""

    def __init__(self) -> None:
        self._documents: dict[str, DocumentRecord] = {}
        self._chunks: list[Chunk] = []
        self._lock = threading.Lock()

    def add_document(self, record: DocumentRecord) -> None:
        with self._lock:
            self._documents[record.id] = record

    def has_document(self, document_id: str) -> bool:
        with self._lock:
            return document_id in self._documents

    def add_chunk(self, chunk: Chunk, embedding: np.ndarray) -> None:
        stored = Chunk(
            id=chunk.id,
            document_id=chunk.document_id,
            content=chunk.content,
            chunk_index=chunk.chunk_index,
            embedding=np.array(embedding, dtype=np.float64),
        )
        with self._lock:
            self._chunks.append(stored)

    def load_chunks(self) -> list[Chunk]:
        with self._lock:
            return list(self._chunks)

    def list_documents(self) -> list[DocumentRecord]:
        with self._lock:
            return sorted(self._documents.values(), key=lambda r: r.created_at, reverse=True)

    def delete_document(self, document_id: str) -> None:
        with self._lock:
            self._documents.pop(document_id, None)
            self._chunks = [c for c in self._chunks if c.document_id != document_id]


class SqliteChunkRepository:
    """SQLite-backed repository; embeddings are stored as float32 BLOBs."""

    def __init__(self, path: Path | str):
        self.path = Path(path).expanduser()
        self._lock = threading.Lock()
        self.initialize()

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database connections."""
        conn = sqlite3.connect(self.path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def initialize(self) -> None:
        """Create schema if not exists."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock, self.connection() as conn:
            conn.executescript(SCHEMA)

    def add_document(self, record: DocumentRecord) -> None:
        with self._lock, self.connection() as conn:
            conn.execute(
                """INSERT INTO documents (id, filename, chunk_count, created_at)
                   VALUES (?, ?, ?, ?)""",
                (record.id, record.filename, record.chunk_count, record.created_at),
            )

    def has_document(self, document_id: str) -> bool:
        with self._lock, self.connection() as conn:
            row = conn.execute(
                "SELECT 1 FROM documents WHERE id = ?", (document_id,)
            ).fetchone()
        return row is not None

    def add_chunk(self, chunk: Chunk, embedding: np.ndarray) -> None:
        with self._lock, self.connection() as conn:
            conn.execute(
                """INSERT INTO chunks (id, document_id, chunk_index, content, embedding)
                   VALUES (?, ?, ?, ?, ?)""",
                (
                    chunk.id,
                    chunk.document_id,
                    chunk.chunk_index,
                    chunk.content,
                    encode_embedding(embedding),
                ),
            )

    def load_chunks(self) -> list[Chunk]:
        """Load every embedded chunk in insertion order."""
        with self._lock, self.connection() as conn:
            rows = conn.execute(
                """SELECT id, document_id, chunk_index, content, embedding
                   FROM chunks ORDER BY seq"""
            ).fetchall()
        return [
            Chunk(
                id=row["id"],
                document_id=row["document_id"],
                content=row["content"],
                chunk_index=row["chunk_index"],
                embedding=decode_embedding(row["embedding"]),
            )
            for row in rows
        ]

    def list_documents(self) -> list[DocumentRecord]:
        with self._lock, self.connection() as conn:
            rows = conn.execute(
                """SELECT id, filename, chunk_count, created_at
                   FROM documents ORDER BY created_at DESC"""
            ).fetchall()
        return [
            DocumentRecord(
                id=row["id"],
                filename=row["filename"],
                chunk_count=row["chunk_count"],
                created_at=row["created_at"],
            )
            for row in rows
        ]

    def delete_document(self, document_id: str) -> None:
        with self._lock, self.connection() as conn:
            conn.execute("DELETE FROM documents WHERE id = ?", (document_id,))
