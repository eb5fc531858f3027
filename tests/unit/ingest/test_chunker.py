"""Tests for the token-window chunker."""

from __future__ import annotations

import re
import warnings

import pytest

from ragcore.errors import CapacityWarning, ValidationError
from ragcore.ingest.chunker import Chunker, ChunkOptions, ChunkSet, TextChunk
from ragcore.ingest.tokenizer import ApproximateTokenizer


def _words(n: int) -> str:
    return " ".join(f"w{i}" for i in range(n))


@pytest.fixture
def chunker(word_tokenizer):
    return Chunker(word_tokenizer)


# ------------------------------------------------------------------
# Options
# ------------------------------------------------------------------


def test_options_defaults():
    opts = ChunkOptions()
    assert (opts.chunk_size, opts.chunk_overlap, opts.max_chunks_per_file) == (512, 128, 200)
    assert opts.stride == 384


@pytest.mark.parametrize(
    "kwargs",
    [
        {"chunk_size": 0},
        {"chunk_size": 10, "chunk_overlap": 10},
        {"chunk_size": 10, "chunk_overlap": -1},
        {"max_chunks_per_file": 0},
    ],
)
def test_options_invalid(kwargs):
    with pytest.raises(ValidationError):
        ChunkOptions(**kwargs)


# ------------------------------------------------------------------
# Window layout
# ------------------------------------------------------------------


def test_600_tokens_two_chunks_second_starts_at_384(chunker):
    text = _words(600)
    result = chunker.chunk(text, ChunkOptions(512, 128))

    assert isinstance(result, ChunkSet)
    assert len(result.chunks) == 2
    first, second = result.chunks
    assert first.token_count == 512
    assert second.token_count == 600 - 384
    assert second.text.startswith("w384 ")
    assert second.start_offset == text.index(" w384 ") + 1
    assert second.text.endswith("w599")
    assert [c.chunk_index for c in result.chunks] == [0, 1]
    assert result.capped is False
    assert result.total_windows == 2


def test_short_text_single_chunk(chunker):
    result = chunker.chunk("Short text.", ChunkOptions(512, 128))
    assert len(result) == 1
    assert result.chunks[0] == TextChunk(text="Short text.", token_count=2, start_offset=0, chunk_index=0)


def test_exactly_chunk_size_single_chunk(chunker):
    result = chunker.chunk(_words(512), ChunkOptions(512, 128))
    assert len(result) == 1
    assert result.chunks[0].token_count == 512


@pytest.mark.parametrize("text", ["", "   ", "\n\t  \n"])
def test_empty_or_whitespace_yields_nothing(chunker, text):
    result = chunker.chunk(text)
    assert result.chunks == []
    assert list(chunker.iter_chunks(text)) == []


def test_leading_whitespace_offset(chunker):
    result = chunker.chunk("   hello world")
    assert result.chunks[0].text == "hello world"
    assert result.chunks[0].start_offset == 3


def test_chunks_never_exceed_chunk_size(chunker):
    result = chunker.chunk(_words(1000), ChunkOptions(100, 30, 200))
    assert all(c.token_count <= 100 for c in result.chunks)


def test_no_gaps_between_chunks(chunker):
    text = _words(350)
    result = chunker.chunk(text, ChunkOptions(100, 20))
    covered = set()
    for c in result.chunks:
        covered.update(c.text.split())
    assert covered == set(text.split())
    for prev, nxt in zip(result.chunks, result.chunks[1:]):
        assert nxt.start_offset <= prev.start_offset + len(prev.text)


# ------------------------------------------------------------------
# Word boundaries (approximate tokenizer splits words into several tokens)
# ------------------------------------------------------------------


def _prose() -> str:
    words = ["configuration", "is", "loaded", "from", "layered", "yaml", "files",
             "environment", "overrides", "win", "a", "retrieval", "pipeline"]
    return " ".join(words[i % len(words)] for i in range(300))


def test_chunks_do_not_start_or_end_mid_word():
    text = _prose()
    result = Chunker(ApproximateTokenizer()).chunk(text, ChunkOptions(20, 5))
    assert len(result) > 1
    for c in result.chunks:
        end = c.start_offset + len(c.text)
        assert text[c.start_offset:end] == c.text
        assert c.start_offset == 0 or text[c.start_offset - 1].isspace()
        assert end == len(text) or text[end].isspace()
        assert c.token_count <= 20


def test_word_longer_than_window_is_split():
    text = "x" * 40
    result = Chunker(ApproximateTokenizer()).chunk(text, ChunkOptions(3, 1))
    assert len(result) > 1
    assert all(c.token_count <= 3 for c in result.chunks)
    assert "".join(c.text for c in result.chunks) == text


# ------------------------------------------------------------------
# Cap
# ------------------------------------------------------------------


def test_cap_truncates_and_warns(chunker):
    with pytest.warns(CapacityWarning, match="max_chunks_per_file=3"):
        result = chunker.chunk(_words(10), ChunkOptions(2, 0, 3), label="repo:big.txt")
    assert len(result.chunks) == 3
    assert result.total_windows == 5
    assert result.capped is True
    assert [c.chunk_index for c in result.chunks] == [0, 1, 2]


def test_cap_warning_is_not_an_error(chunker):
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", CapacityWarning)
        result = chunker.chunk(_words(10), ChunkOptions(2, 0, 1))
    assert len(result.chunks) == 1


def test_at_cap_does_not_warn(chunker):
    with warnings.catch_warnings():
        warnings.simplefilter("error", CapacityWarning)
        result = chunker.chunk(_words(6), ChunkOptions(2, 0, 3))
    assert len(result.chunks) == 3
    assert result.capped is False


def test_iter_chunks_matches_chunk(chunker):
    text = _words(700)
    opts = ChunkOptions(128, 32)
    assert list(chunker.iter_chunks(text, opts)) == chunker.chunk(text, opts).chunks


def test_iter_chunks_caps(chunker):
    with pytest.warns(CapacityWarning):
        chunks = list(chunker.iter_chunks(_words(10), ChunkOptions(2, 0, 2)))
    assert len(chunks) == 2


# ------------------------------------------------------------------
# Whitespace tokens
# ------------------------------------------------------------------


class WhitespaceTokenTokenizer:
    """Emits every whitespace character as its own token, like tiktoken's newline runs."""

    _RE = re.compile(r"\S+|\s")

    def spans(self, text: str) -> list[tuple[int, int]]:
        return [m.span() for m in self._RE.finditer(text)]

    def count(self, text: str) -> int:
        return len(self.spans(text))


BLANK_PADDED = "alpha beta" + "\n" * 40 + "gamma delta"


def test_whitespace_only_windows_are_dropped():
    result = Chunker(WhitespaceTokenTokenizer()).chunk(BLANK_PADDED, ChunkOptions(8, 2))

    assert [c.text for c in result.chunks] == ["alpha beta", "gamma", "gamma delta"]
    assert [c.chunk_index for c in result.chunks] == [0, 1, 2]
    assert result.total_windows == 3
    assert result.capped is False
    for c in result.chunks:
        assert BLANK_PADDED[c.start_offset:c.start_offset + len(c.text)] == c.text


def test_iter_chunks_drops_whitespace_only_windows():
    chunker = Chunker(WhitespaceTokenTokenizer())
    opts = ChunkOptions(8, 2)
    assert list(chunker.iter_chunks(BLANK_PADDED, opts)) == chunker.chunk(BLANK_PADDED, opts).chunks


def test_cap_counts_only_non_blank_chunks():
    with warnings.catch_warnings():
        warnings.simplefilter("error", CapacityWarning)
        result = Chunker(WhitespaceTokenTokenizer()).chunk(BLANK_PADDED, ChunkOptions(8, 2, 3))
    assert len(result.chunks) == 3
