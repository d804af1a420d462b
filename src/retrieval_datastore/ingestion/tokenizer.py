"""Tokenizer adapter used by the chunk splitter."""

from __future__ import annotations

from functools import lru_cache
from typing import Protocol, Sequence

import tiktoken

from retrieval_datastore.config import settings


class Tokenizer(Protocol):
    """Deterministic, reversible text ↔ token-id mapping."""

    def encode(self, text: str) -> list[int]: ...

    def decode(self, tokens: Sequence[int]) -> str: ...


class TiktokenTokenizer:
    """:class:`Tokenizer` backed by a ``tiktoken`` encoding.

    Parameters
    ----------
    encoding_name:
        Name of the ``tiktoken`` encoding, e.g. ``"cl100k_base"``.
    """

    def __init__(self, encoding_name: str = settings.tokenizer_encoding) -> None:
        self.encoding_name = encoding_name
        self._encoding = tiktoken.get_encoding(encoding_name)

    def encode(self, text: str) -> list[int]:
        # Special-token markers in user text are encoded as ordinary text.
        return self._encoding.encode(text, disallowed_special=())

    def decode(self, tokens: Sequence[int]) -> str:
        return self._encoding.decode(list(tokens))

    def __repr__(self) -> str:
        return f"TiktokenTokenizer({self.encoding_name!r})"


@lru_cache(maxsize=None)
def get_tokenizer(encoding_name: str = settings.tokenizer_encoding) -> TiktokenTokenizer:
    """Return a process-wide cached :class:`TiktokenTokenizer`."""
    return TiktokenTokenizer(encoding_name)
