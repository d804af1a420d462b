"""In-process vector store, scored by cosine similarity."""

from __future__ import annotations

import logging
import math
import threading
from typing import Sequence

from retrieval_datastore.datastore.base import VectorStoreBase
from retrieval_datastore.errors import BackendRejected
from retrieval_datastore.models import (
    DocumentChunk,
    DocumentChunkMetadata,
    DocumentChunkWithScore,
    DocumentMetadataFilter,
    QueryResult,
    QueryWithEmbedding,
    parse_date,
)

logger = logging.getLogger(__name__)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two equal-length vectors (0.0 for zero vectors)."""
    if len(a) != len(b):
        raise BackendRejected(f"Embedding dimension mismatch: {len(a)} != {len(b)}")
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


def matches_filter(metadata: DocumentChunkMetadata, filter: DocumentMetadataFilter | None) -> bool:
    """Return ``True`` if *metadata* satisfies every field set on *filter*."""
    if filter is None:
        return True

    for field in ("document_id", "source", "source_id", "author"):
        expected = getattr(filter, field)
        if expected is not None and getattr(metadata, field) != expected:
            return False

    if filter.start_date is None and filter.end_date is None:
        return True

    try:
        created_at = parse_date(metadata.created_at)
    except ValueError:
        return False
    if created_at is None:
        return False

    try:
        start = parse_date(filter.start_date)
        end = parse_date(filter.end_date)
    except ValueError as exc:
        raise BackendRejected(f"Invalid date in filter: {exc}") from exc
    if start is not None and created_at < start:
        return False
    if end is not None and created_at > end:
        return False
    return True


class InMemoryVectorStore(VectorStoreBase):
    """Dict-backed store keeping chunks in process memory.

    Suitable for tests and small corpora; search is a linear scan.
    """

    def __init__(self, collection_name: str = "memory") -> None:
        super().__init__(collection_name)
        self._chunks: dict[str, DocumentChunk] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._chunks)

    @property
    def chunks(self) -> list[DocumentChunk]:
        """Snapshot of the stored chunks in insertion order."""
        with self._lock:
            return list(self._chunks.values())

    # -- VectorStoreBase overrides --------------------------------------------

    def upsert(self, chunks: dict[str, list[DocumentChunk]]) -> list[str]:
        with self._lock:
            for doc_chunks in chunks.values():
                for chunk in doc_chunks:
                    if chunk.embedding is None:
                        raise BackendRejected(f"Chunk {chunk.id} has no embedding")
                    self._chunks[chunk.id] = chunk
        return list(chunks)

    def query(self, queries: list[QueryWithEmbedding]) -> list[QueryResult]:
        with self._lock:
            stored = list(self._chunks.values())

        results: list[QueryResult] = []
        for query in queries:
            scored = [
                DocumentChunkWithScore(
                    **chunk.model_dump(),
                    score=cosine_similarity(query.embedding, chunk.embedding or []),
                )
                for chunk in stored
                if matches_filter(chunk.metadata, query.filter)
            ]
            scored.sort(key=lambda c: c.score, reverse=True)
            results.append(QueryResult(query=query.query, results=scored[: query.top_k]))
        return results

    def delete(
        self,
        ids: list[str] | None = None,
        filter: DocumentMetadataFilter | None = None,
        delete_all: bool = False,
    ) -> bool:
        with self._lock:
            if delete_all:
                self._chunks.clear()
                return True

            doc_ids = set(ids or [])
            doomed = [
                chunk_id
                for chunk_id, chunk in self._chunks.items()
                if chunk.metadata.document_id in doc_ids
                or (filter is not None and not filter.is_empty() and matches_filter(chunk.metadata, filter))
            ]
            for chunk_id in doomed:
                del self._chunks[chunk_id]
        logger.debug("Deleted %d chunks from %s", len(doomed), self.collection_name)
        return True

    def health_check(self) -> bool:
        return True
