"""Build a :class:`Datastore` from the global settings."""

from __future__ import annotations

import logging

from retrieval_datastore.config import settings
from retrieval_datastore.datastore.base import VectorStoreBase
from retrieval_datastore.datastore.datastore import Datastore
from retrieval_datastore.ingestion.embedder import EmbeddingFunction, get_embedding_function

logger = logging.getLogger(__name__)


def get_vector_store(name: str = settings.datastore) -> VectorStoreBase:
    """Return the backend named *name* (``"chroma"`` or ``"memory"``)."""
    if name == "chroma":
        from retrieval_datastore.datastore.chroma_store import ChromaVectorStore

        return ChromaVectorStore()
    if name == "memory":
        from retrieval_datastore.datastore.memory_store import InMemoryVectorStore

        return InMemoryVectorStore()
    raise ValueError(f"Unsupported datastore: {name!r}. Use 'chroma' or 'memory'.")


def get_datastore(
    store: VectorStoreBase | None = None,
    embed: EmbeddingFunction | None = None,
) -> Datastore:
    """Return a :class:`Datastore` wired from settings.

    Any collaborator passed explicitly replaces the configured one.
    """
    store = store if store is not None else get_vector_store()
    embed = embed if embed is not None else get_embedding_function()
    logger.info("Datastore backend: %s (%s)", type(store).__name__, store.collection_name)
    return Datastore(store, embed)
