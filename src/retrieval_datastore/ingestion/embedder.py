"""Embedding functions and the batched, order-preserving embedding step."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Callable, Iterable, Sequence

from retrieval_datastore.config import settings
from retrieval_datastore.errors import (
    EmbeddingError,
    EmbeddingRateLimited,
    EmbeddingUnavailable,
    is_rate_limit,
)
from retrieval_datastore.ingestion.chunker import chunk_documents, flatten_chunks
from retrieval_datastore.models import Document, DocumentChunk

if TYPE_CHECKING:
    from retrieval_datastore.ingestion.tokenizer import Tokenizer

logger = logging.getLogger(__name__)

EmbeddingFunction = Callable[[list[str]], list[list[float]]]


def get_embedding_function(
    provider: str = settings.embedding_provider,
    model: str = settings.embedding_model,
) -> EmbeddingFunction:
    """Return the configured embedding function.

    ``"huggingface"`` uses a local sentence-transformer,
    ``"openai"`` the OpenAI embeddings API. Provider errors are translated
    into :class:`~retrieval_datastore.errors.EmbeddingError` kinds.
    """
    if provider == "huggingface":
        from langchain_huggingface import HuggingFaceEmbeddings

        embedder = HuggingFaceEmbeddings(model_name=model)
    elif provider == "openai":
        from langchain_openai import OpenAIEmbeddings

        embedder = OpenAIEmbeddings(model=model, api_key=settings.openai_api_key or None)
    else:
        raise ValueError(f"Unsupported embedding provider: {provider!r}")

    logger.info("Using %s embeddings: %s", provider, model)
    return translate_embedding_errors(embedder.embed_documents)


def translate_embedding_errors(embed: EmbeddingFunction) -> EmbeddingFunction:
    """Wrap *embed* so that provider exceptions surface as embedding errors."""

    def _embed(texts: list[str]) -> list[list[float]]:
        try:
            return embed(texts)
        except EmbeddingError:
            raise
        except Exception as exc:
            if is_rate_limit(exc):
                raise EmbeddingRateLimited(str(exc)) from exc
            raise EmbeddingUnavailable(str(exc)) from exc

    return _embed


def _embed_batch(embed: EmbeddingFunction, batch: list[str]) -> list[list[float]]:
    vectors = translate_embedding_errors(embed)(batch)
    if len(vectors) != len(batch):
        raise EmbeddingUnavailable(
            f"Embedding function returned {len(vectors)} vectors for {len(batch)} texts"
        )
    return list(vectors)


def embed_in_batches(
    texts: Sequence[str],
    embed: EmbeddingFunction,
    *,
    batch_size: int = settings.embedding_batch_size,
    max_concurrency: int = settings.embedding_max_concurrency,
) -> list[list[float]]:
    """Embed *texts* in consecutive batches of at most *batch_size*.

    Batches are independent and run on up to *max_concurrency* threads;
    results are reassembled in batch order so the output is aligned 1:1
    with *texts*. The first failing batch fails the whole call.
    """
    if batch_size < 1:
        raise ValueError("batch_size must be >= 1")
    if not texts:
        return []

    batches = [list(texts[i : i + batch_size]) for i in range(0, len(texts), batch_size)]
    workers = min(max_concurrency, len(batches))
    logger.debug("Embedding %d texts in %d batches (workers=%d)", len(texts), len(batches), workers)

    if workers <= 1:
        results = [_embed_batch(embed, batch) for batch in batches]
    else:
        with ThreadPoolExecutor(max_workers=workers) as pool:
            results = list(pool.map(lambda batch: _embed_batch(embed, batch), batches))

    embeddings: list[list[float]] = []
    for batch_embeddings in results:
        embeddings.extend(batch_embeddings)
    return embeddings


def get_document_chunks(
    documents: Iterable[Document],
    embed: EmbeddingFunction,
    tokenizer: Tokenizer,
    chunk_size: int | None = None,
    *,
    batch_size: int = settings.embedding_batch_size,
    max_concurrency: int = settings.embedding_max_concurrency,
) -> dict[str, list[DocumentChunk]]:
    """Chunk *documents* and attach an embedding to every chunk.

    Returns a mapping from document id to its chunks (input order). When no
    document produced a chunk the embedding function is not called.
    """
    chunks = chunk_documents(documents, tokenizer, chunk_size)
    all_chunks = flatten_chunks(chunks)
    if not all_chunks:
        return chunks

    embeddings = embed_in_batches(
        [chunk.text for chunk in all_chunks],
        embed,
        batch_size=batch_size,
        max_concurrency=max_concurrency,
    )
    for chunk, embedding in zip(all_chunks, embeddings):
        chunk.embedding = embedding

    logger.info("Embedded %d chunks from %d documents", len(all_chunks), len(chunks))
    return chunks
