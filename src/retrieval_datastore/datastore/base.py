"""Abstract base class for vector-store backends.

Adding a new backend (Pinecone, Weaviate, Qdrant …) only requires
subclassing :class:`VectorStoreBase` and implementing its abstract
methods. Chunking, embedding and delete-before-insert sequencing live in
:class:`~retrieval_datastore.datastore.datastore.Datastore`, which takes a
backend instance rather than being subclassed.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from retrieval_datastore.models import (
    DocumentChunk,
    DocumentMetadataFilter,
    QueryResult,
    QueryWithEmbedding,
)


class VectorStoreBase(ABC):
    """Backend-agnostic vector-store interface.

    Implementations report failures as
    :class:`~retrieval_datastore.errors.BackendUnavailable` or
    :class:`~retrieval_datastore.errors.BackendRejected`.

    Parameters
    ----------
    collection_name:
        Logical name of the collection / index / namespace.
    """

    def __init__(self, collection_name: str) -> None:
        self.collection_name = collection_name

    # -- required overrides ---------------------------------------------------

    @abstractmethod
    def upsert(self, chunks: dict[str, list[DocumentChunk]]) -> list[str]:
        """Insert embedded chunks grouped by document id.

        Returns the ids of the documents that were written.
        """
        ...

    @abstractmethod
    def query(self, queries: list[QueryWithEmbedding]) -> list[QueryResult]:
        """Search for each query's embedding.

        Must return exactly one :class:`QueryResult` per query, in input
        order, each holding at most ``query.top_k`` chunks sorted by
        descending score and restricted to ``query.filter``.
        """
        ...

    @abstractmethod
    def delete(
        self,
        ids: list[str] | None = None,
        filter: DocumentMetadataFilter | None = None,
        delete_all: bool = False,
    ) -> bool:
        """Delete chunks.

        * ``delete_all`` removes everything and ignores the other arguments.
        * ``ids`` are **document** ids; all of their chunks are removed.
        * When both ``ids`` and ``filter`` are given, the union of the two
          selections is removed.

        Returns ``True`` on success.
        """
        ...

    @abstractmethod
    def health_check(self) -> bool:
        """Return ``True`` when the backend is reachable and ready."""
        ...
