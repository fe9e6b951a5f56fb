"""Tests for SQLite chunk persistence."""

from __future__ import annotations

import numpy as np

from aibox.rag import Chunk, DocumentRecord, SqliteChunkRepository, VectorStore
from aibox.rag.repository import decode_embedding, encode_embedding


def record(document_id: str, created_at: str = "2026-01-01T00:00:00+00:00") -> DocumentRecord:
    return DocumentRecord(id=document_id, filename=f"{document_id}.md", chunk_count=2, created_at=created_at)


def test_embedding_blob_is_little_endian_float32() -> None:
    blob = encode_embedding(np.array([1.0, -0.5]))
    assert blob == np.array([1.0, -0.5], dtype="<f4").tobytes()
    assert len(blob) == 8
    np.testing.assert_allclose(decode_embedding(blob), [1.0, -0.5])


def test_chunks_survive_reopen(tmp_path) -> None:
    path = tmp_path / "kb" / "aibox.db"
    repository = SqliteChunkRepository(path)
    repository.add_document(record("doc"))
    store = VectorStore.open(repository)
    store.insert(Chunk("c1", "doc", "first", 0), [0.25, 0.5, 1.0])
    store.insert(Chunk("c2", "doc", "second", 1), [1.0, 0.0, 0.0])

    reopened = VectorStore.open(SqliteChunkRepository(path))

    assert len(reopened) == 2
    assert reopened.dimension == 3
    [best] = reopened.search([1.0, 0.0, 0.0], top_k=1)
    assert best.chunk.id == "c2"
    assert best.chunk.content == "second"
    assert best.chunk.chunk_index == 1


def test_delete_document_cascades_to_chunks(tmp_path) -> None:
    repository = SqliteChunkRepository(tmp_path / "aibox.db")
    repository.add_document(record("keep", "2026-01-01T00:00:00+00:00"))
    repository.add_document(record("drop", "2026-01-02T00:00:00+00:00"))
    repository.add_chunk(Chunk("k1", "keep", "k", 0), np.array([1.0]))
    repository.add_chunk(Chunk("d1", "drop", "d", 0), np.array([1.0]))

    repository.delete_document("drop")

    assert [chunk.id for chunk in repository.load_chunks()] == ["k1"]
    assert [document.id for document in repository.list_documents()] == ["keep"]


def test_documents_listed_newest_first(tmp_path) -> None:
    repository = SqliteChunkRepository(tmp_path / "aibox.db")
    repository.add_document(record("old", "2026-01-01T00:00:00+00:00"))
    repository.add_document(record("new", "2026-03-01T00:00:00+00:00"))

    assert [document.id for document in repository.list_documents()] == ["new", "old"]
