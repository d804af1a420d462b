"""Chroma implementation of the vector-store abstraction."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator

import chromadb

from retrieval_datastore.config import settings
from retrieval_datastore.datastore.base import VectorStoreBase
from retrieval_datastore.errors import BackendError, BackendRejected, BackendUnavailable
from retrieval_datastore.models import (
    DocumentChunk,
    DocumentChunkMetadata,
    DocumentChunkWithScore,
    DocumentMetadataFilter,
    QueryResult,
    QueryWithEmbedding,
    to_unix_timestamp,
)

logger = logging.getLogger(__name__)

_TIMESTAMP_KEY = "created_at_ts"


@contextmanager
def _translate_errors(action: str) -> Iterator[None]:
    """Re-raise chromadb / transport failures as backend errors."""
    try:
        yield
    except BackendError:
        raise
    except (ValueError, TypeError) as exc:
        raise BackendRejected(f"Chroma rejected {action}: {exc}") from exc
    except Exception as exc:
        raise BackendUnavailable(f"Chroma {action} failed: {exc}") from exc


def _chunk_to_chroma_metadata(metadata: DocumentChunkMetadata) -> dict[str, Any]:
    """Flatten chunk metadata to Chroma scalars (``None`` values dropped)."""
    meta = metadata.model_dump(mode="json", exclude_none=True)
    try:
        timestamp = to_unix_timestamp(metadata.created_at)
    except ValueError:
        logger.warning("Unparseable created_at %r; date filters will skip it", metadata.created_at)
        timestamp = None
    if timestamp is not None:
        meta[_TIMESTAMP_KEY] = timestamp
    return meta


def _chroma_metadata_to_chunk(meta: dict[str, Any] | None) -> DocumentChunkMetadata:
    fields = DocumentChunkMetadata.model_fields
    return DocumentChunkMetadata(**{k: v for k, v in (meta or {}).items() if k in fields})


def _build_chroma_where(filter: DocumentMetadataFilter | None) -> dict[str, Any] | None:
    """Convert a :class:`DocumentMetadataFilter` to Chroma ``where`` syntax."""
    if filter is None:
        return None

    clauses: list[dict[str, Any]] = []
    for field, value in filter.model_dump(mode="json", exclude_none=True).items():
        if field == "start_date":
            clauses.append({_TIMESTAMP_KEY: {"$gte": to_unix_timestamp(value)}})
        elif field == "end_date":
            clauses.append({_TIMESTAMP_KEY: {"$lte": to_unix_timestamp(value)}})
        else:
            clauses.append({field: {"$eq": value}})

    if not clauses:
        return None
    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}


class ChromaVectorStore(VectorStoreBase):
    """Chroma-backed vector store.

    Parameters
    ----------
    collection_name:
        Name of the Chroma collection.
    host:
        Chroma server hostname.
    port:
        Chroma server port.
    distance:
        HNSW space used when the collection is created (``cosine``, ``l2``
        or ``ip``).
    client:
        Pre-built chromadb client (e.g. ``chromadb.EphemeralClient()``);
        overrides *host* / *port*.
    upsert_batch_size:
        Max records per Chroma upsert call.
    """

    def __init__(
        self,
        collection_name: str = settings.chroma_collection,
        *,
        host: str = settings.chroma_host,
        port: int = settings.chroma_port,
        distance: str = settings.chroma_distance,
        client: Any | None = None,
        upsert_batch_size: int = settings.chroma_upsert_batch_size,
    ) -> None:
        super().__init__(collection_name)
        self._distance = distance
        self._upsert_batch_size = upsert_batch_size
        with _translate_errors("connect"):
            self._client = client if client is not None else chromadb.HttpClient(host=host, port=port)
            self._collection = self._get_collection()

    def _get_collection(self) -> Any:
        return self._client.get_or_create_collection(
            name=self.collection_name,
            metadata={"hnsw:space": self._distance},
        )

    # -- VectorStoreBase overrides --------------------------------------------

    def upsert(self, chunks: dict[str, list[DocumentChunk]]) -> list[str]:
        ids: list[str] = []
        embeddings: list[list[float]] = []
        documents: list[str] = []
        metadatas: list[dict[str, Any]] = []

        for doc_chunks in chunks.values():
            for chunk in doc_chunks:
                if chunk.embedding is None:
                    raise BackendRejected(f"Chunk {chunk.id} has no embedding")
                ids.append(chunk.id)
                embeddings.append(chunk.embedding)
                documents.append(chunk.text)
                metadatas.append(_chunk_to_chroma_metadata(chunk.metadata))

        for start in range(0, len(ids), self._upsert_batch_size):
            end = start + self._upsert_batch_size
            with _translate_errors("upsert"):
                self._collection.upsert(
                    ids=ids[start:end],
                    embeddings=embeddings[start:end],
                    documents=documents[start:end],
                    metadatas=metadatas[start:end],
                )
            logger.debug("Upserted chunks %d-%d into %s", start, min(end, len(ids)), self.collection_name)

        logger.info("Upserted %d chunks for %d documents", len(ids), len(chunks))
        return list(chunks)

    def query(self, queries: list[QueryWithEmbedding]) -> list[QueryResult]:
        return [self._query_one(query) for query in queries]

    def _query_one(self, query: QueryWithEmbedding) -> QueryResult:
        try:
            where = _build_chroma_where(query.filter)
        except ValueError as exc:
            raise BackendRejected(f"Invalid date in filter: {exc}") from exc

        with _translate_errors("query"):
            raw = self._collection.query(
                query_embeddings=[query.embedding],
                n_results=query.top_k,
                where=where,
                include=["documents", "metadatas", "distances"],
            )

        ids = (raw.get("ids") or [[]])[0]
        docs = (raw.get("documents") or [[]])[0]
        metas = (raw.get("metadatas") or [[]])[0]
        distances = (raw.get("distances") or [[]])[0]

        hits: list[DocumentChunkWithScore] = []
        for chunk_id, text, meta, dist in zip(ids, docs, metas, distances):
            hits.append(
                DocumentChunkWithScore(
                    id=chunk_id,
                    text=text or "",
                    metadata=_chroma_metadata_to_chunk(meta),
                    # Chroma returns distances; map to a higher-is-better score.
                    score=1.0 / (1.0 + dist),
                )
            )
        hits.sort(key=lambda h: h.score, reverse=True)
        return QueryResult(query=query.query, results=hits[: query.top_k])

    def delete(
        self,
        ids: list[str] | None = None,
        filter: DocumentMetadataFilter | None = None,
        delete_all: bool = False,
    ) -> bool:
        if delete_all:
            with _translate_errors("delete_all"):
                self._client.delete_collection(self.collection_name)
                self._collection = self._get_collection()
            logger.info("Cleared collection %s", self.collection_name)
            return True

        # Two passes remove the union of both selections.
        if ids:
            with _translate_errors("delete"):
                self._collection.delete(where={"document_id": {"$in": list(ids)}})

        try:
            where = _build_chroma_where(filter)
        except ValueError as exc:
            raise BackendRejected(f"Invalid date in filter: {exc}") from exc
        if where is not None:
            with _translate_errors("delete"):
                self._collection.delete(where=where)
        return True

    def health_check(self) -> bool:
        try:
            self._client.heartbeat()
            return True
        except Exception:
            logger.warning("Chroma health-check failed", exc_info=True)
            return False
