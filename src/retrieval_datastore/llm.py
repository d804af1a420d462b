"""LLM initialisation: single place to swap providers.

Supports two modes:

1. **OpenAI cloud** (default): set ``OPENAI_API_KEY``.
2. **OpenAI-compatible endpoint**: set ``LLM_BASE_URL`` (vLLM, LiteLLM
   proxy, ...). ``ChatOpenAI`` works unchanged against it.
"""

from __future__ import annotations

import logging

from langchain_openai import ChatOpenAI

from retrieval_datastore.config import settings

logger = logging.getLogger(__name__)


def get_llm(temperature: float = 0.0) -> ChatOpenAI:
    """Return the configured chat model.

    A dummy API key (``"EMPTY"``) is used against a custom base URL when no
    key is configured, since LangChain requires a non-empty value.
    """
    kwargs: dict = {
        "model": settings.llm_model_name,
        "temperature": temperature,
    }

    if settings.llm_base_url:
        logger.info("Using OpenAI-compatible endpoint: %s", settings.llm_base_url)
        kwargs["base_url"] = settings.llm_base_url
        kwargs["api_key"] = settings.openai_api_key or "EMPTY"
    else:
        kwargs["api_key"] = settings.openai_api_key

    return ChatOpenAI(**kwargs)
