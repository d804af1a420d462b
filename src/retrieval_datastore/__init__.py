"""Document chunking, embedding and vector-store upsert / query / delete."""

from retrieval_datastore.models import (
    Document,
    DocumentChunk,
    DocumentChunkMetadata,
    DocumentChunkWithScore,
    DocumentMetadata,
    DocumentMetadataFilter,
    Query,
    QueryResult,
    QueryWithEmbedding,
    Source,
)

__all__ = [
    "Document",
    "DocumentChunk",
    "DocumentChunkMetadata",
    "DocumentChunkWithScore",
    "DocumentMetadata",
    "DocumentMetadataFilter",
    "Query",
    "QueryResult",
    "QueryWithEmbedding",
    "Source",
]
