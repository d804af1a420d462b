"""Text chunking: token windows cut at sentence boundaries.

A chunk is built from a window of ``chunk_size`` tokens. When the decoded
window contains a sentence terminator (``.``, ``?``, ``!`` or a newline)
past ``min_chunk_size_chars`` characters, the window is cut right after the
last one and only the tokens of the kept text are consumed; the remainder
starts the next window.
"""

from __future__ import annotations

import logging
from typing import Iterable, Sequence
from uuid import uuid4

from retrieval_datastore.config import settings
from retrieval_datastore.ingestion.tokenizer import Tokenizer
from retrieval_datastore.models import Document, DocumentChunk, DocumentChunkMetadata

logger = logging.getLogger(__name__)

SENTENCE_BOUNDARIES = (".", "?", "!", "\n")


def last_boundary_index(text: str) -> int:
    """Return the index of the last sentence terminator in *text*, or ``-1``."""
    return max(text.rfind(mark) for mark in SENTENCE_BOUNDARIES)


def normalize_chunk_text(text: str) -> str:
    """Collapse newlines into spaces and strip surrounding whitespace."""
    return text.replace("\n", " ").strip()


def consumed_token_count(tokenizer: Tokenizer, chunk_text: str) -> int:
    """Number of leading tokens a (possibly truncated) window accounts for.

    Truncating the decoded text does not map back onto a token offset, so
    the kept text is re-encoded and its length is what the cursor advances
    by. Always at least one token so the splitter makes progress.
    """
    return max(1, len(tokenizer.encode(chunk_text)))


def get_text_chunks(
    text: str,
    tokenizer: Tokenizer,
    chunk_size: int | None = None,
    *,
    min_chunk_size_chars: int | None = None,
    min_chunk_length_to_embed: int | None = None,
    max_num_chunks: int | None = None,
) -> list[str]:
    """Split *text* into chunks of roughly *chunk_size* tokens.

    Parameters
    ----------
    text:
        Text to split.
    tokenizer:
        Tokenizer defining what a token is.
    chunk_size:
        Window size in tokens (defaults to ``settings.chunk_size``).
    min_chunk_size_chars:
        A sentence terminator only ends a chunk when it sits past this
        character offset.
    min_chunk_length_to_embed:
        Normalized chunks of this length or shorter are discarded.
    max_num_chunks:
        Hard cap on produced windows; whatever is left afterwards becomes a
        single final chunk.

    Returns
    -------
    list[str]
        Normalized chunk texts in document order.
    """
    if chunk_size is None:
        chunk_size = settings.chunk_size
    if chunk_size < 1:
        raise ValueError(f"chunk_size must be at least 1, got {chunk_size}")
    if min_chunk_size_chars is None:
        min_chunk_size_chars = settings.min_chunk_size_chars
    if min_chunk_length_to_embed is None:
        min_chunk_length_to_embed = settings.min_chunk_length_to_embed
    if max_num_chunks is None:
        max_num_chunks = settings.max_num_chunks

    if not text.strip():
        return []

    tokens = tokenizer.encode(text)
    chunks: list[str] = []

    while tokens and len(chunks) < max_num_chunks:
        window = tokens[:chunk_size]
        chunk_text = tokenizer.decode(window)

        if not chunk_text.strip():
            tokens = tokens[len(window):]
            continue

        boundary = last_boundary_index(chunk_text)
        if boundary > min_chunk_size_chars:
            chunk_text = chunk_text[: boundary + 1]

        normalized = normalize_chunk_text(chunk_text)
        if len(normalized) > min_chunk_length_to_embed:
            chunks.append(normalized)

        tokens = tokens[consumed_token_count(tokenizer, chunk_text):]

    if tokens:
        logger.warning(
            "Reached max_num_chunks=%d; folding %d remaining tokens into one chunk",
            max_num_chunks,
            len(tokens),
        )
        remaining = normalize_chunk_text(tokenizer.decode(tokens))
        if len(remaining) > min_chunk_length_to_embed:
            chunks.append(remaining)

    return chunks


def create_document_chunks(
    document: Document,
    tokenizer: Tokenizer,
    chunk_size: int | None = None,
) -> tuple[list[DocumentChunk], str]:
    """Chunk one document.

    Returns ``(chunks, document_id)``; the id is ``document.id`` (even when
    empty) or, if unset, a fresh random one. Chunk ids are
    ``"{document_id}_{index}"`` so re-chunking the same text with the same
    parameters reproduces them.
    """
    document_id = document.id if document.id is not None else uuid4().hex
    if not document.text.strip():
        return [], document_id

    base = document.metadata.model_dump() if document.metadata else {}
    texts = get_text_chunks(document.text, tokenizer, chunk_size)

    chunks = [
        DocumentChunk(
            id=f"{document_id}_{i}",
            text=text,
            metadata=DocumentChunkMetadata(**base, document_id=document_id),
        )
        for i, text in enumerate(texts)
    ]
    return chunks, document_id


def chunk_documents(
    documents: Iterable[Document],
    tokenizer: Tokenizer,
    chunk_size: int | None = None,
) -> dict[str, list[DocumentChunk]]:
    """Chunk *documents* independently, keyed by document id in input order.

    Documents without chunks are still present, mapped to an empty list.
    """
    chunks: dict[str, list[DocumentChunk]] = {}
    for document in documents:
        doc_chunks, document_id = create_document_chunks(document, tokenizer, chunk_size)
        chunks[document_id] = doc_chunks
    logger.debug(
        "Chunked %d documents into %d chunks",
        len(chunks),
        sum(len(c) for c in chunks.values()),
    )
    return chunks


def flatten_chunks(chunks: dict[str, Sequence[DocumentChunk]]) -> list[DocumentChunk]:
    """Flatten a per-document mapping, preserving document and chunk order."""
    return [chunk for doc_chunks in chunks.values() for chunk in doc_chunks]
