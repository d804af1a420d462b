"""LLM-backed metadata extraction and PII screening.

Both collaborators return best-effort output from a language model. Their
replies are treated as untrusted: malformed JSON yields no metadata, and
individual invalid fields are dropped rather than failing the document.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from langchain_core.messages import HumanMessage, SystemMessage
from pydantic import ValidationError

from retrieval_datastore.models import DocumentMetadata, Source

if TYPE_CHECKING:
    from langchain_core.language_models import BaseChatModel

logger = logging.getLogger(__name__)

_METADATA_PROMPT = """\
Given a document from a user, try to extract the following metadata:
- source: string, one of {sources}
- url: string or don't specify
- created_at: string or don't specify
- author: string or don't specify

Respond with a JSON containing the extracted metadata in key value pairs. \
If you don't find a metadata field, don't specify it."""

_PII_PROMPT = """\
You can only respond with the word "True" or "False", where your answer \
indicates whether the text in the user's message contains PII.
Do not explain your answer, and do not use punctuation.
Your task is to identify whether the text extracted from your company files \
contains sensitive PII information that should not be shared with the broader \
company. Here are some things to look out for:
- An email address that identifies a specific person in either the local-part or the domain
- The postal address of a private residence (must include at least a street name)
- The postal address of a public place (must include either a street name or business name)
- Notes about hiring decisions with mentioned names of candidates.
The user will send a document for you to analyze."""


def _complete(llm: BaseChatModel | None, system: str, content: str) -> str:
    if llm is None:
        from retrieval_datastore.llm import get_llm

        llm = get_llm(temperature=0.0)
    response = llm.invoke([SystemMessage(content=system), HumanMessage(content=content)])
    completion = response.content if isinstance(response.content, str) else str(response.content)
    logger.debug("Completion: %.200s", completion)
    return completion.strip()


def _strip_fences(text: str) -> str:
    """Remove a surrounding ```json ... ``` fence if present."""
    cleaned = text.strip()
    if cleaned.startswith("```"):
        first_newline = cleaned.index("\n") if "\n" in cleaned else 3
        cleaned = cleaned[first_newline + 1 :]
        if cleaned.endswith("```"):
            cleaned = cleaned[:-3]
        cleaned = cleaned.strip()
    return cleaned


def parse_metadata_response(text: str) -> dict[str, Any]:
    """Parse an LLM reply into a dict; anything but a JSON object gives ``{}``."""
    try:
        parsed = json.loads(_strip_fences(text))
    except json.JSONDecodeError:
        logger.warning("Could not parse metadata JSON from LLM: %.200s", text)
        return {}
    if not isinstance(parsed, dict):
        logger.warning("LLM metadata reply is not a JSON object: %.200s", text)
        return {}
    return parsed


def extract_metadata_from_document(text: str, llm: BaseChatModel | None = None) -> dict[str, Any]:
    """Ask the LLM for ``source``, ``url``, ``created_at`` and ``author``."""
    sources = ", ".join(s.value for s in Source)
    completion = _complete(llm, _METADATA_PROMPT.format(sources=sources), text)
    return parse_metadata_response(completion)


def coerce_metadata(raw: dict[str, Any]) -> DocumentMetadata:
    """Build :class:`DocumentMetadata` from untrusted *raw*, field by field.

    Unknown keys are ignored and values that fail validation are dropped.
    """
    fields: dict[str, Any] = {}
    for name in DocumentMetadata.model_fields:
        if raw.get(name) in (None, ""):
            continue
        try:
            DocumentMetadata(**{name: raw[name]})
        except ValidationError:
            logger.warning("Dropping invalid metadata field %s=%r", name, raw[name])
            continue
        fields[name] = raw[name]
    return DocumentMetadata(**fields)


def screen_text_for_pii(text: str, llm: BaseChatModel | None = None) -> bool:
    """Return ``True`` when the LLM judges *text* to contain PII."""
    completion = _complete(llm, _PII_PROMPT, text)
    return "True" in completion
