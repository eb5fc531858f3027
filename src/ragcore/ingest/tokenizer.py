"""Token counting and token spans for the chunker.

Chunk windows are measured in model tokens, so the chunker needs more than a
count: it needs the character span of every token to cut the source text on
token boundaries. ``TiktokenTokenizer`` wraps a tiktoken encoding;
``ApproximateTokenizer`` is the dependency-free fallback (4 characters per
token) used when an encoding cannot be loaded.
"""

from __future__ import annotations

import logging
import re
from functools import lru_cache
from typing import Protocol, runtime_checkable

import tiktoken

logger = logging.getLogger(__name__)

DEFAULT_ENCODING = "cl100k_base"

_APPROX_TOKEN_RE = re.compile(r"\s*\S{1,4}")


@runtime_checkable
class Tokenizer(Protocol):
    """Anything that can split text into token spans."""

    def spans(self, text: str) -> list[tuple[int, int]]:
        """Return the ``(start, end)`` character span of every token, in order."""
        ...

    def count(self, text: str) -> int:
        """Return the number of tokens in *text*."""
        ...


class TiktokenTokenizer:
    """Tokenizer backed by a tiktoken encoding."""

    def __init__(self, encoding_name: str = DEFAULT_ENCODING) -> None:
        self.encoding_name = encoding_name
        self._encoding = tiktoken.get_encoding(encoding_name)

    def spans(self, text: str) -> list[tuple[int, int]]:
        if not text:
            return []
        tokens = self._encoding.encode(text, disallowed_special=())
        _, offsets = self._encoding.decode_with_offsets(tokens)
        ends = offsets[1:] + [len(text)]
        return [(start, max(start, end)) for start, end in zip(offsets, ends)]

    def count(self, text: str) -> int:
        if not text:
            return 0
        return len(self._encoding.encode(text, disallowed_special=()))

    def __repr__(self) -> str:
        return f"TiktokenTokenizer({self.encoding_name!r})"


class ApproximateTokenizer:
    """Approximate tokenizer: 4 characters ≈ 1 token.

    Each token is up to four non-space characters plus any whitespace before
    them; trailing whitespace is folded into the last token.
    """

    def spans(self, text: str) -> list[tuple[int, int]]:
        spans = [m.span() for m in _APPROX_TOKEN_RE.finditer(text)]
        if spans and spans[-1][1] < len(text):
            spans[-1] = (spans[-1][0], len(text))
        return spans

    def count(self, text: str) -> int:
        return len(_APPROX_TOKEN_RE.findall(text))

    def __repr__(self) -> str:
        return "ApproximateTokenizer()"


def encoding_for_model(model_id: str) -> str:
    """Return the tiktoken encoding name used to measure text for *model_id*.

    ``gpt-4o`` family models use ``o200k_base``; every other model (OpenAI
    embedding models, gpt-4, gpt-3.5 and the approximations used for Ollama
    and Azure AI Foundry deployments) uses ``cl100k_base``.
    """
    name = model_id.rsplit("/", 1)[-1].lower()
    if name.startswith("gpt-4o") or name.startswith("o1") or name.startswith("o3"):
        return "o200k_base"
    return DEFAULT_ENCODING


@lru_cache(maxsize=8)
def _tokenizer_for_encoding(encoding_name: str) -> Tokenizer:
    try:
        return TiktokenTokenizer(encoding_name)
    except Exception as exc:  # tiktoken raises ValueError or network errors on first load
        logger.warning(
            "Could not load tiktoken encoding %s (%s); using 4-chars-per-token approximation",
            encoding_name,
            exc,
        )
        return ApproximateTokenizer()


def get_tokenizer(model_id: str = "") -> Tokenizer:
    """Return a shared tokenizer suitable for *model_id*.

    Tokenizers are cached per encoding. When tiktoken cannot load the
    encoding (no network on first use, unknown name) the approximation is
    returned instead and a warning is logged.
    """
    return _tokenizer_for_encoding(encoding_for_model(model_id))
