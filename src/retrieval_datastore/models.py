"""Domain models for documents, chunks, queries and query results."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field, StrictStr


class Source(str, Enum):
    """Where a document came from."""

    email = "email"
    file = "file"
    chat = "chat"


class DocumentMetadata(BaseModel):
    """Optional descriptive metadata attached to a document."""

    source: Source | None = None
    source_id: str | None = None
    url: str | None = None
    created_at: str | None = None
    author: str | None = None


class DocumentChunkMetadata(DocumentMetadata):
    """Document metadata plus a back-reference to the owning document."""

    document_id: str | None = None


class DocumentChunk(BaseModel):
    """A bounded piece of a document's text, the unit of storage and search.

    ``embedding`` is assigned once, during the upsert that created the chunk.
    """

    id: str
    text: str
    metadata: DocumentChunkMetadata
    embedding: list[float] | None = None


class DocumentChunkWithScore(DocumentChunk):
    """A chunk returned by a search, with its backend-defined relevance score."""

    score: float


class Document(BaseModel):
    """Input document.

    Attributes
    ----------
    id:
        Caller-chosen identifier. When omitted a random one is generated at
        chunking time and nothing is deleted before insertion.
    text:
        Full text. Must be a real string; empty text yields no chunks.
    metadata:
        Optional metadata copied onto every chunk.
    """

    id: StrictStr | None = None
    text: StrictStr = ""
    metadata: DocumentMetadata | None = None


class DocumentMetadataFilter(BaseModel):
    """Conjunctive filter over chunk metadata.

    Every field that is set must match. ``start_date`` / ``end_date`` are
    inclusive bounds on the chunk's ``created_at``.
    """

    document_id: str | None = None
    source: Source | None = None
    source_id: str | None = None
    author: str | None = None
    start_date: str | None = None
    end_date: str | None = None

    def is_empty(self) -> bool:
        return not self.model_dump(exclude_none=True)


class Query(BaseModel):
    """A natural-language query with an optional filter."""

    query: StrictStr
    filter: DocumentMetadataFilter | None = None
    top_k: int = Field(default=3, ge=1)


class QueryWithEmbedding(Query):
    embedding: list[float]


class QueryResult(BaseModel):
    """Results for one query, ordered by descending score."""

    query: str
    results: list[DocumentChunkWithScore] = Field(default_factory=list)


_UNIX_TIMESTAMP = re.compile(r"-?\d+(\.\d+)?")


def parse_date(value: str | int | float | None) -> datetime | None:
    """Parse an ISO-8601 date/datetime string or a unix timestamp.

    Timestamps may be numbers or numeric strings (``"1700000000"``) and are
    read as seconds. Naive values are interpreted as UTC. Returns ``None``
    for ``None`` or empty strings and raises ``ValueError`` for anything
    unparseable.
    """
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    text = value.strip()
    if _UNIX_TIMESTAMP.fullmatch(text):
        return datetime.fromtimestamp(float(text), tz=timezone.utc)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def to_unix_timestamp(value: str | int | float | None) -> int | None:
    """Return *value* as whole unix seconds, or ``None`` if it is unset."""
    parsed = parse_date(value)
    return int(parsed.timestamp()) if parsed is not None else None
