"""Shared pytest fixtures."""

from __future__ import annotations

import logging
import re

import pytest

from ragcore.db.connection import Database
from ragcore.db.schema import initialize
from ragcore.embedding.base import BaseEmbeddingClient
from ragcore.embedding.retry import RetryPolicy

DIM = 4

_WORD_RE = re.compile(r"\S+")


class WordTokenizer:
    """Deterministic tokenizer: one token per whitespace-delimited word."""

    def spans(self, text: str) -> list[tuple[int, int]]:
        return [m.span() for m in _WORD_RE.finditer(text)]

    def count(self, text: str) -> int:
        return len(_WORD_RE.findall(text))


class FakeEmbeddingClient(BaseEmbeddingClient):
    """Embedding client with a scripted provider call.

    Vectors are derived from the text so equal texts embed equally. ``fail``
    holds exceptions raised by the next calls, in order.
    """

    provider = "fake"

    def __init__(self, dimension: int = DIM, batch_size: int = 10, retry_policy=None) -> None:
        super().__init__(
            "fake-embed",
            embedding_dimension=dimension,
            batch_size=batch_size,
            retry_policy=retry_policy or RetryPolicy(max_retries=1, base_delay_ms=0),
        )
        self.calls: list[list[str]] = []
        self.fail: list[Exception] = []
        self.vectors: dict[str, list[float]] = {}

    @property
    def litellm_model(self) -> str:
        return "fake/fake-embed"

    def vector_for(self, text: str) -> list[float]:
        if text in self.vectors:
            return self.vectors[text]
        seed = sum(ord(c) for c in text) or 1
        return [float((seed * (i + 3)) % 17 + 1) for i in range(self.embedding_dimension)]

    async def _embed_call(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        if self.fail:
            raise self.fail.pop(0)
        return [self.vector_for(t) for t in texts]


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / ".ragcore.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def word_tokenizer():
    return WordTokenizer()


@pytest.fixture
def fake_client():
    return FakeEmbeddingClient()


@pytest.fixture
def make_client():
    """Factory for FakeEmbeddingClient with custom dimension / batch / policy."""
    return FakeEmbeddingClient


@pytest.fixture(autouse=True)
def _reset_ragcore_logger():
    """Undo configure_logging() from CLI tests so caplog sees ragcore records."""
    yield
    logger = logging.getLogger("ragcore")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
