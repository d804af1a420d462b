"""Datastore: upsert / query / delete over any :class:`VectorStoreBase`.

Usage::

    from retrieval_datastore.datastore import Datastore, InMemoryVectorStore

    datastore = Datastore(InMemoryVectorStore(), embed=my_embed_fn, tokenizer=tok)
    datastore.upsert([{"id": "d1", "text": "Some long text ..."}])
    results = datastore.query([{"query": "what is in d1?", "top_k": 2}])

Upsert replaces documents: every chunk of a document id that is being
upserted is deleted before the new chunks are inserted. If the process dies
or the embedding step fails after those deletes, the affected document ids
are left with no chunks at all until they are upserted again; nothing
restores the previous chunks.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Iterable, Mapping

from pydantic import ValidationError

from retrieval_datastore.config import settings
from retrieval_datastore.datastore.base import VectorStoreBase
from retrieval_datastore.errors import BackendError, InvalidDocumentError
from retrieval_datastore.ingestion.embedder import (
    EmbeddingFunction,
    embed_in_batches,
    get_document_chunks,
)
from retrieval_datastore.ingestion.metadata import coerce_metadata
from retrieval_datastore.ingestion.tokenizer import Tokenizer, get_tokenizer
from retrieval_datastore.models import (
    Document,
    DocumentMetadataFilter,
    Query,
    QueryResult,
    QueryWithEmbedding,
)

logger = logging.getLogger(__name__)

MetadataExtractor = Callable[[str], Mapping[str, Any]]
PiiScreener = Callable[[str], bool]


def _validate(model: type, items: Iterable[Any], kind: str) -> list[Any]:
    validated = []
    for i, item in enumerate(items):
        if isinstance(item, model):
            validated.append(item)
            continue
        try:
            validated.append(model.model_validate(item))
        except ValidationError as exc:
            raise InvalidDocumentError(f"Invalid {kind} at index {i}: {exc}") from exc
    return validated


class Datastore:
    """Chunking, embedding and replace-on-upsert sequencing over a backend.

    Parameters
    ----------
    store:
        Backend that persists and searches chunks.
    embed:
        Embedding function: ordered texts in, one vector per text out.
    tokenizer:
        Tokenizer for chunking. Defaults to the cached ``tiktoken`` one.
    embedding_batch_size:
        Texts per embedding call.
    embedding_max_concurrency:
        Embedding calls allowed in flight at once.
    delete_max_concurrency:
        Pre-upsert deletes allowed in flight at once.
    metadata_extractor:
        Optional ``text -> dict`` collaborator used to fill in metadata for
        documents that have none. Its failures never abort an upsert.
    pii_screener:
        Optional ``text -> bool`` collaborator; documents it flags (or fails
        on) are left out of the upsert.
    """

    def __init__(
        self,
        store: VectorStoreBase,
        embed: EmbeddingFunction,
        tokenizer: Tokenizer | None = None,
        *,
        embedding_batch_size: int = settings.embedding_batch_size,
        embedding_max_concurrency: int = settings.embedding_max_concurrency,
        delete_max_concurrency: int = settings.delete_max_concurrency,
        metadata_extractor: MetadataExtractor | None = None,
        pii_screener: PiiScreener | None = None,
    ) -> None:
        self.store = store
        self.embed = embed
        self.tokenizer = tokenizer if tokenizer is not None else get_tokenizer()
        self.embedding_batch_size = embedding_batch_size
        self.embedding_max_concurrency = embedding_max_concurrency
        self.delete_max_concurrency = delete_max_concurrency
        self.metadata_extractor = metadata_extractor
        self.pii_screener = pii_screener

    # -- public API -----------------------------------------------------------

    def upsert(
        self,
        documents: Iterable[Document | Mapping[str, Any]],
        chunk_size: int | None = None,
    ) -> list[str]:
        """Insert or replace *documents*; return the written document ids.

        1. Existing chunks of every document that carries an id are deleted
           (concurrently); all deletes finish before anything else happens.
        2. Documents are chunked and embedded.
        3. The embedded chunks are handed to the backend.
        """
        docs = _validate(Document, documents, "document")
        docs = [self._enrich(doc) for doc in docs if not self._is_flagged(doc)]

        self._delete_existing([doc.id for doc in docs if doc.id is not None])

        chunks = get_document_chunks(
            docs,
            self.embed,
            self.tokenizer,
            chunk_size,
            batch_size=self.embedding_batch_size,
            max_concurrency=self.embedding_max_concurrency,
        )
        document_ids = self.store.upsert(chunks)
        logger.info("Upserted %d documents into %s", len(document_ids), self.store.collection_name)
        return document_ids

    def query(self, queries: Iterable[Query | Mapping[str, Any]]) -> list[QueryResult]:
        """Embed each query and return one :class:`QueryResult` per query, in order."""
        validated: list[Query] = _validate(Query, queries, "query")
        if not validated:
            return []

        embeddings = embed_in_batches(
            [q.query for q in validated],
            self.embed,
            batch_size=self.embedding_batch_size,
            max_concurrency=self.embedding_max_concurrency,
        )
        with_embeddings = [
            QueryWithEmbedding(**q.model_dump(), embedding=embedding)
            for q, embedding in zip(validated, embeddings)
        ]
        results = self.store.query(with_embeddings)
        if len(results) != len(with_embeddings):
            raise BackendError(
                f"Backend returned {len(results)} results for {len(with_embeddings)} queries"
            )
        return results

    def delete(
        self,
        ids: list[str] | None = None,
        filter: DocumentMetadataFilter | Mapping[str, Any] | None = None,
        delete_all: bool = False,
    ) -> bool:
        """Delete by document ids, by metadata filter, or everything.

        ``delete_all`` takes precedence. Given both ``ids`` and ``filter``,
        chunks matching either are removed.
        """
        if filter is not None and not isinstance(filter, DocumentMetadataFilter):
            try:
                filter = DocumentMetadataFilter.model_validate(filter)
            except ValidationError as exc:
                raise InvalidDocumentError(f"Invalid filter: {exc}") from exc
        if filter is not None and filter.is_empty():
            filter = None

        if delete_all:
            return self.store.delete(delete_all=True)
        if not ids and filter is None:
            raise ValueError("Please provide one of: ids, filter, or delete_all")
        return self.store.delete(ids=list(ids) if ids else None, filter=filter, delete_all=False)

    def health_check(self) -> bool:
        return self.store.health_check()

    # -- internals ------------------------------------------------------------

    def _delete_existing(self, document_ids: list[str]) -> None:
        unique_ids = list(dict.fromkeys(document_ids))
        if not unique_ids:
            return

        workers = min(self.delete_max_concurrency, len(unique_ids))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [
                pool.submit(
                    self.store.delete,
                    filter=DocumentMetadataFilter(document_id=document_id),
                    delete_all=False,
                )
                for document_id in unique_ids
            ]
        # The pool has joined; surface the first failure before any insert.
        for future in futures:
            future.result()
        logger.debug("Deleted existing chunks for %d documents", len(unique_ids))

    def _is_flagged(self, document: Document) -> bool:
        if self.pii_screener is None or not document.text.strip():
            return False
        try:
            flagged = bool(self.pii_screener(document.text))
        except Exception:
            logger.warning("PII screening failed for document %s; skipping it", document.id, exc_info=True)
            return True
        if flagged:
            logger.warning("PII detected in document %s; skipping it", document.id)
        return flagged

    def _enrich(self, document: Document) -> Document:
        if self.metadata_extractor is None or document.metadata is not None or not document.text.strip():
            return document
        try:
            raw = self.metadata_extractor(document.text)
            metadata = coerce_metadata(dict(raw))
        except Exception:
            logger.warning("Metadata extraction failed for document %s", document.id, exc_info=True)
            return document
        return document.model_copy(update={"metadata": metadata})
