"""Retrieval-augmented generation: chunking, embeddings and vector search."""

from .chunker import FixedWindowChunker, chunk_spans, chunk_text
from .embedding import EmbeddingClient
from .knowledge_base import KnowledgeBase
from .repository import ChunkRepository, InMemoryChunkRepository, SqliteChunkRepository
from .types import Chunk, Document, DocumentRecord, ScoredChunk
from .vector_store import VectorStore, cosine_similarity

__all__ = [
    "Chunk",
    "ChunkRepository",
    "Document",
    "DocumentRecord",
    "EmbeddingClient",
    "FixedWindowChunker",
    "InMemoryChunkRepository",
    "KnowledgeBase",
    "ScoredChunk",
    "SqliteChunkRepository",
    "VectorStore",
    "chunk_spans",
    "chunk_text",
    "cosine_similarity",
]
