"""
Datastore: upsert / query / delete over pluggable vector-store backends.

Public surface
--------------
- :class:`Datastore`: orchestrator (chunking, embedding, replace-on-upsert).
- :class:`VectorStoreBase`: abstract backend (subclass for Pinecone, etc.).
- :class:`InMemoryVectorStore`: in-process backend.
- :class:`ChromaVectorStore`: Chroma backend.
- :func:`get_datastore`: settings-driven factory.
"""

from retrieval_datastore.datastore.base import VectorStoreBase
from retrieval_datastore.datastore.datastore import Datastore
from retrieval_datastore.datastore.factory import get_datastore, get_vector_store
from retrieval_datastore.datastore.memory_store import InMemoryVectorStore

__all__ = [
    "ChromaVectorStore",
    "Datastore",
    "InMemoryVectorStore",
    "VectorStoreBase",
    "get_datastore",
    "get_vector_store",
]


def __getattr__(name: str):  # noqa: ANN001
    """Lazy-import ChromaVectorStore to avoid pulling in chromadb at import time."""
    if name == "ChromaVectorStore":
        from retrieval_datastore.datastore.chroma_store import ChromaVectorStore

        return ChromaVectorStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
