"""Token-window chunker with word-boundary snapping.

Text is tokenized once. Windows of ``chunk_size`` tokens advance by
``chunk_size - chunk_overlap`` tokens. Window edges are pulled back onto word
boundaries so that no chunk starts or ends in the middle of a word and no
chunk exceeds ``chunk_size`` tokens. A single word longer than a whole window
is split at a token boundary. Windows that hold only whitespace are dropped
and the remaining chunks are numbered consecutively.

Files producing more than ``max_chunks_per_file`` windows are truncated to the
first ``max_chunks_per_file`` chunks and a ``CapacityWarning`` is emitted.
"""

from __future__ import annotations

import logging
import warnings
from collections.abc import Iterator
from dataclasses import dataclass, field

from ragcore.errors import CapacityWarning, ValidationError
from ragcore.ingest.tokenizer import Tokenizer, get_tokenizer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChunkOptions:
    """Chunking parameters. Validated on construction."""

    chunk_size: int = 512
    chunk_overlap: int = 128
    max_chunks_per_file: int = 200

    def __post_init__(self) -> None:
        if self.chunk_size < 1:
            raise ValidationError("chunk_size must be >= 1")
        if not 0 <= self.chunk_overlap < self.chunk_size:
            raise ValidationError("chunk_overlap must be >= 0 and < chunk_size")
        if self.max_chunks_per_file < 1:
            raise ValidationError("max_chunks_per_file must be >= 1")

    @property
    def stride(self) -> int:
        return self.chunk_size - self.chunk_overlap


@dataclass
class TextChunk:
    text: str
    token_count: int
    start_offset: int
    chunk_index: int


@dataclass
class ChunkSet:
    """Result of chunking one text."""

    chunks: list[TextChunk] = field(default_factory=list)
    total_windows: int = 0
    capped: bool = False

    def __len__(self) -> int:
        return len(self.chunks)

    def __iter__(self) -> Iterator[TextChunk]:
        return iter(self.chunks)


class Chunker:
    """Split text into overlapping token windows.

    Args:
        tokenizer: Tokenizer used to measure and cut the text. Defaults to the
            shared ``cl100k_base`` tokenizer.
    """

    def __init__(self, tokenizer: Tokenizer | None = None) -> None:
        self.tokenizer = tokenizer or get_tokenizer()

    def chunk(
        self,
        text: str,
        options: ChunkOptions | None = None,
        *,
        label: str = "",
    ) -> ChunkSet:
        """Chunk *text* into a ``ChunkSet``.

        Args:
            text: Full text of one file.
            options: Chunking parameters (defaults: 512 / 128 / 200).
            label: File identity used in log and warning messages.

        Returns:
            ChunkSet with at most ``max_chunks_per_file`` chunks. ``capped`` is
            True and ``total_windows`` exceeds ``len(chunks)`` when the cap
            was applied.
        """
        options = options or ChunkOptions()
        if not text or not text.strip():
            return ChunkSet()

        spans = self.tokenizer.spans(text)
        produced = list(self._chunks(text, spans, options, label))
        capped = len(produced) > options.max_chunks_per_file
        if capped:
            self._warn_capped(label, len(produced), options.max_chunks_per_file)
        return ChunkSet(
            chunks=produced[: options.max_chunks_per_file],
            total_windows=len(produced),
            capped=capped,
        )

    def iter_chunks(
        self,
        text: str,
        options: ChunkOptions | None = None,
        *,
        label: str = "",
    ) -> Iterator[TextChunk]:
        """Yield chunks lazily. Same windows and cap as ``chunk()``."""
        options = options or ChunkOptions()
        if not text or not text.strip():
            return

        spans = self.tokenizer.spans(text)
        for chunk in self._chunks(text, spans, options, label):
            if chunk.chunk_index >= options.max_chunks_per_file:
                self._warn_capped(label, None, options.max_chunks_per_file)
                return
            yield chunk

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _is_word_boundary(text: str, spans: list[tuple[int, int]], token: int) -> bool:
        """True if a cut before token index *token* does not split a word."""
        if token <= 0 or token >= len(spans):
            return True
        pos = spans[token][0]
        if pos <= 0 or pos >= len(text):
            return True
        return text[pos - 1].isspace() or text[pos].isspace()

    def _windows(
        self,
        text: str,
        spans: list[tuple[int, int]],
        options: ChunkOptions,
        label: str,
    ) -> Iterator[tuple[int, int]]:
        """Yield ``(start_token, end_token)`` half-open windows."""
        n = len(spans)
        start = 0
        while start < n:
            end = min(start + options.chunk_size, n)
            if end < n:
                cut = end
                while cut > start and not self._is_word_boundary(text, spans, cut):
                    cut -= 1
                if cut == start:
                    logger.debug(
                        "%s: word longer than %d tokens split at token %d",
                        label or "<text>",
                        options.chunk_size,
                        end,
                    )
                else:
                    end = cut
            yield start, end
            if end >= n:
                return

            # Next window never starts after this one ends.
            nxt = min(start + options.stride, end)
            while nxt > start and not self._is_word_boundary(text, spans, nxt):
                nxt -= 1
            start = nxt if nxt > start else end

    def _chunks(
        self,
        text: str,
        spans: list[tuple[int, int]],
        options: ChunkOptions,
        label: str,
    ) -> Iterator[TextChunk]:
        """Yield non-blank chunks with consecutive indices."""
        index = 0
        for start, end in self._windows(text, spans, options, label):
            chunk = self._make_chunk(text, spans, start, end, index)
            # Whitespace-only windows (runs of blank-line tokens) carry nothing to embed.
            if not chunk.text:
                continue
            yield chunk
            index += 1

    def _make_chunk(
        self,
        text: str,
        spans: list[tuple[int, int]],
        start: int,
        end: int,
        index: int,
    ) -> TextChunk:
        char_start = spans[start][0]
        char_end = spans[end - 1][1]
        raw = text[char_start:char_end]
        stripped = raw.lstrip()
        return TextChunk(
            text=stripped.rstrip(),
            token_count=end - start,
            start_offset=char_start + (len(raw) - len(stripped)),
            chunk_index=index,
        )

    @staticmethod
    def _warn_capped(label: str, total: int | None, cap: int) -> None:
        name = label or "<text>"
        if total is None:
            message = f"{name}: more than {cap} chunks; truncated to the first {cap}"
        else:
            message = f"{name}: {total} chunks exceed max_chunks_per_file={cap}; truncated to the first {cap}"
        logger.warning(message)
        warnings.warn(message, CapacityWarning, stacklevel=3)
