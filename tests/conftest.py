"""Shared pytest configuration and fixtures."""

from __future__ import annotations

import re
import zlib
from typing import Sequence

import pytest

from retrieval_datastore.ingestion.tokenizer import TiktokenTokenizer


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: marks tests requiring external services")


class WordTokenizer:
    """Deterministic reversible tokenizer: words, single whitespace chars, punctuation.

    Every punctuation mark and whitespace character is its own token, so any
    prefix ending on one re-encodes to exactly the tokens it came from.
    """

    _pattern = re.compile(r"\w+|\s|[^\w\s]")

    def __init__(self) -> None:
        self._ids: dict[str, int] = {}
        self._vocab: list[str] = []

    def encode(self, text: str) -> list[int]:
        tokens = []
        for piece in self._pattern.findall(text):
            if piece not in self._ids:
                self._ids[piece] = len(self._vocab)
                self._vocab.append(piece)
            tokens.append(self._ids[piece])
        return tokens

    def decode(self, tokens: Sequence[int]) -> str:
        return "".join(self._vocab[t] for t in tokens)


def text_vector(text: str) -> list[float]:
    """Deterministic 3-d vector derived from *text*."""
    return [float(len(text)), float(zlib.crc32(text.encode()) % 1000), 1.0]


class FakeEmbedder:
    """Embedding function recording every batch it is called with."""

    def __init__(self) -> None:
        self.calls: list[list[str]] = []

    def __call__(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        return [text_vector(t) for t in texts]


@pytest.fixture()
def tokenizer() -> WordTokenizer:
    return WordTokenizer()


@pytest.fixture()
def fake_embed() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture(scope="session")
def tiktoken_tokenizer() -> TiktokenTokenizer:
    """Real cl100k_base tokenizer; skipped when the encoding cannot be loaded."""
    try:
        return TiktokenTokenizer("cl100k_base")
    except Exception as exc:  # encoding files are downloaded on first use
        pytest.skip(f"tiktoken encoding unavailable: {exc}")
