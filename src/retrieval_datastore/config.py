"""Shared configuration loaded from environment / ``.env``."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application-wide settings, populated from env vars or .env file."""

    # LLM (metadata extraction / PII screening)
    openai_api_key: str = Field(default="", description="OpenAI API key (or dummy value for local vLLM)")
    llm_model_name: str = Field(default="gpt-4o-mini", description="Chat model used by the LLM collaborators")
    llm_base_url: str = Field(
        default="",
        description=(
            "Base URL of an OpenAI-compatible chat API. Leave empty to use "
            "OpenAI cloud."
        ),
    )

    # Embedding
    embedding_provider: str = Field(default="huggingface", description="'huggingface' or 'openai'")
    embedding_model: str = "sentence-transformers/all-MiniLM-L6-v2"
    embedding_batch_size: int = Field(default=128, ge=1)
    embedding_max_concurrency: int = Field(default=1, ge=1)

    # Chunking
    tokenizer_encoding: str = "cl100k_base"
    chunk_size: int = Field(default=200, ge=1, description="Target chunk size in tokens")
    min_chunk_size_chars: int = Field(default=350, ge=0)
    min_chunk_length_to_embed: int = Field(default=5, ge=0)
    max_num_chunks: int = Field(default=10_000, ge=1)

    # Datastore
    datastore: str = Field(default="chroma", description="'chroma' or 'memory'")
    delete_max_concurrency: int = Field(default=8, ge=1)

    # Chroma
    chroma_host: str = "localhost"
    chroma_port: int = 8000
    chroma_collection: str = "retrieval_datastore"
    chroma_distance: str = "cosine"
    chroma_upsert_batch_size: int = Field(default=1000, ge=1)

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


# Singleton: import `settings` wherever needed.
settings = Settings()
