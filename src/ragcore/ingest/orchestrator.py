"""Batch ingestion: validate → chunk → embed → upsert, per file.

Files are processed concurrently up to ``parallelism``. Each file goes through
the four stages in order; a failure in any stage is recorded against that file
(with its stage and the provider name) and, unless ``continue_on_error`` is
off, the batch carries on with the next file.

A file's chunks are replaced in a single store transaction, and re-ingestion
of the same ``(repo_url, file_path)`` within one service is serialized by a
per-file lock, so a file is always stored either entirely old or entirely new.
Locks belong to the running event loop and are dropped once no task holds or
waits for them.

``chunk_and_embed()`` runs the chunking and embedding stages for one text and
returns the vectors without storing anything.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import AsyncIterator, Iterable
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any

from ragcore.db.models import ChunkRecord
from ragcore.db.store import VectorStore
from ragcore.embedding.base import BaseEmbeddingClient
from ragcore.errors import (
    DimensionMismatchError,
    OperationCancelledError,
    ProviderError,
    StorageError,
    ValidationError,
)
from ragcore.ingest.chunker import Chunker, ChunkOptions, ChunkSet
from ragcore.ingest.metadata import enrich_metadata
from ragcore.ingest.tokenizer import Tokenizer, get_tokenizer

logger = logging.getLogger(__name__)

DEFAULT_MAX_TEXT_BYTES = 5 * 1024 * 1024

STAGE_VALIDATION = "validation"
STAGE_CHUNKING = "chunking"
STAGE_EMBEDDING = "embedding"
STAGE_UPSERT = "upsert"


@dataclass
class IngestionDocument:
    """One file to ingest.

    ``embeddings`` holds caller-computed vectors, one per chunk the file
    produces. When set, the provider is not called for this file.
    """

    repo_url: str
    file_path: str
    text: str
    title: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    file_type: str | None = None
    is_code: bool | None = None
    is_implementation: bool | None = None
    embeddings: list[list[float]] | None = None

    @property
    def label(self) -> str:
        return f"{self.repo_url}:{self.file_path}"


@dataclass
class IngestionError:
    """Why one file failed."""

    file: str
    stage: str
    message: str
    exception_type: str
    provider: str = ""
    retryable: bool = False


@dataclass
class ChunkEmbedding:
    """One chunk of ``chunk_and_embed()`` with its vector."""

    text: str
    embedding: list[float]
    chunk_index: int
    token_count: int
    start_offset: int


@dataclass
class IngestionResult:
    """Per-file counters of one ``ingest()`` call."""

    success_count: int = 0
    failure_count: int = 0
    total_chunks: int = 0
    duration_ms: float = 0.0
    errors: list[IngestionError] = field(default_factory=list)
    ingested_files: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    incomplete_files: list[str] = field(default_factory=list)
    cancelled: bool = False

    @property
    def total_processed(self) -> int:
        return self.success_count + self.failure_count

    @property
    def is_fully_successful(self) -> bool:
        return self.failure_count == 0 and not self.incomplete_files

    @property
    def is_fully_failed(self) -> bool:
        return self.failure_count > 0 and self.success_count == 0

    @property
    def documents_per_second(self) -> float:
        if self.duration_ms <= 0:
            return 0.0
        return self.total_processed / (self.duration_ms / 1000.0)


@dataclass
class _FileLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class _FileFailed(Exception):
    def __init__(self, error: IngestionError) -> None:
        super().__init__(error.message)
        self.error = error


class IngestionService:
    """Turn documents into stored, embedded chunks.

    Args:
        store: Destination vector store.
        client: Embedding client; its retry policy wraps every provider call.
        tokenizer: Tokenizer for chunk windows. Defaults to the one matching
            the client's model.
        chunk_options: Window size, overlap and per-file cap.
        parallelism: Maximum files processed at once.
        continue_on_error: Default for ``ingest()``.
        max_text_bytes: Larger files fail validation.
        metadata_defaults: Metadata applied under every file's own metadata.
    """

    def __init__(
        self,
        store: VectorStore,
        client: BaseEmbeddingClient,
        *,
        tokenizer: Tokenizer | None = None,
        chunk_options: ChunkOptions | None = None,
        parallelism: int = 4,
        continue_on_error: bool = True,
        max_text_bytes: int = DEFAULT_MAX_TEXT_BYTES,
        metadata_defaults: dict[str, Any] | None = None,
    ) -> None:
        if parallelism < 1:
            raise ValidationError("parallelism must be >= 1")
        self.store = store
        self.client = client
        self.chunker = Chunker(tokenizer or get_tokenizer(client.model_id))
        self.chunk_options = chunk_options or ChunkOptions()
        self.parallelism = parallelism
        self.continue_on_error = continue_on_error
        self.max_text_bytes = max_text_bytes
        self.metadata_defaults = dict(metadata_defaults or {})
        self._file_locks: dict[tuple[asyncio.AbstractEventLoop, str, str], _FileLock] = {}

    @classmethod
    def from_config(cls, cfg, store: VectorStore, client: BaseEmbeddingClient) -> IngestionService:
        """Build from a ``RagConfig``."""
        return cls(
            store,
            client,
            chunk_options=ChunkOptions(
                chunk_size=cfg.chunking.chunk_size,
                chunk_overlap=cfg.chunking.chunk_overlap,
                max_chunks_per_file=cfg.chunking.max_chunks_per_file,
            ),
            parallelism=cfg.ingestion.parallelism,
            continue_on_error=cfg.ingestion.continue_on_error,
            max_text_bytes=cfg.ingestion.max_text_bytes,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def ingest(
        self,
        documents: Iterable[IngestionDocument],
        *,
        continue_on_error: bool | None = None,
        cancel: asyncio.Event | None = None,
    ) -> IngestionResult:
        """Ingest *documents* and return per-file counters.

        Args:
            documents: Files to ingest.
            continue_on_error: Override the service default. When False the
                first failure stops the batch and is re-raised.
            cancel: Cooperative cancellation. Files not yet committed when it
                is set are reported in ``incomplete_files``.

        Raises:
            Exception: Only with ``continue_on_error=False``: the first
                per-file failure, unwrapped.
        """
        keep_going = self.continue_on_error if continue_on_error is None else continue_on_error
        docs = list(documents)
        result = IngestionResult()
        semaphore = asyncio.Semaphore(self.parallelism)
        abort = asyncio.Event()
        first_failure: list[BaseException] = []
        started = time.perf_counter()

        async def run(doc: IngestionDocument) -> None:
            async with semaphore:
                if abort.is_set() or (cancel is not None and cancel.is_set()):
                    result.incomplete_files.append(doc.label)
                    return
                try:
                    chunk_set = await self._ingest_file(doc, cancel)
                except OperationCancelledError:
                    logger.info("%s: cancelled before commit", doc.label)
                    result.incomplete_files.append(doc.label)
                    return
                except _FileFailed as failure:
                    result.failure_count += 1
                    result.errors.append(failure.error)
                    if not keep_going and not abort.is_set():
                        abort.set()
                        first_failure.append(failure.__cause__ or failure)
                    return

                result.success_count += 1
                result.total_chunks += len(chunk_set.chunks)
                result.ingested_files.append(doc.label)
                if chunk_set.capped:
                    result.warnings.append(
                        f"{doc.label}: {chunk_set.total_windows} chunks exceed "
                        f"max_chunks_per_file={self.chunk_options.max_chunks_per_file}; "
                        f"stored the first {len(chunk_set.chunks)}"
                    )

        await asyncio.gather(*(run(doc) for doc in docs))

        result.cancelled = cancel is not None and cancel.is_set()
        result.duration_ms = (time.perf_counter() - started) * 1000.0
        logger.info(
            "Ingested %d/%d file(s), %d chunk(s), %d failed, %d incomplete in %.0f ms",
            result.success_count,
            len(docs),
            result.total_chunks,
            result.failure_count,
            len(result.incomplete_files),
            result.duration_ms,
        )
        if first_failure:
            raise first_failure[0]
        return result

    async def chunk_and_embed(
        self,
        text: str,
        *,
        chunk_options: ChunkOptions | None = None,
        label: str = "",
        cancel: asyncio.Event | None = None,
    ) -> list[ChunkEmbedding]:
        """Chunk *text* and embed every chunk without storing anything.

        Args:
            text: Text to chunk. Empty or blank text returns an empty list.
            chunk_options: Override the service's chunking parameters.
            label: Name used in log and capacity-warning messages.
            cancel: Cooperative cancellation for the provider calls.

        Returns:
            One ``ChunkEmbedding`` per chunk, in chunk order.

        Raises:
            ProviderError: Embedding failed after retries and cache fallback.
            OperationCancelledError: *cancel* was set.
        """
        if not text or not text.strip():
            return []
        started = time.perf_counter()
        chunk_set = await asyncio.to_thread(
            self.chunker.chunk, text, chunk_options or self.chunk_options, label=label
        )
        vectors = await self.client.embed_batch(
            [c.text for c in chunk_set.chunks], cancel=cancel
        )
        logger.info(
            "Chunked and embedded %s: %d chunk(s) in %.0f ms",
            label or "<text>",
            len(chunk_set.chunks),
            (time.perf_counter() - started) * 1000.0,
        )
        return [
            ChunkEmbedding(
                text=chunk.text,
                embedding=vector,
                chunk_index=chunk.chunk_index,
                token_count=chunk.token_count,
                start_offset=chunk.start_offset,
            )
            for chunk, vector in zip(chunk_set.chunks, vectors)
        ]

    # ------------------------------------------------------------------
    # Per-file pipeline
    # ------------------------------------------------------------------

    async def _ingest_file(
        self, doc: IngestionDocument, cancel: asyncio.Event | None
    ) -> ChunkSet:
        stage = STAGE_VALIDATION
        try:
            self._validate(doc)
            async with self._file_lock(doc.repo_url, doc.file_path):
                stage = STAGE_CHUNKING
                chunk_set = await asyncio.to_thread(
                    self.chunker.chunk, doc.text, self.chunk_options, label=doc.label
                )
                if not chunk_set.chunks:
                    raise ValidationError(f"{doc.label}: no chunks produced")

                stage = STAGE_EMBEDDING
                if doc.embeddings is not None:
                    vectors = self._supplied_vectors(doc, chunk_set)
                else:
                    vectors = await self.client.embed_batch(
                        [c.text for c in chunk_set.chunks], cancel=cancel
                    )
                if cancel is not None and cancel.is_set():
                    raise OperationCancelledError(f"{doc.label}: cancelled before upsert")

                stage = STAGE_UPSERT
                records = self._build_records(doc, chunk_set, vectors)
                await asyncio.to_thread(
                    self.store.replace_file_chunks, doc.repo_url, doc.file_path, records
                )
        except OperationCancelledError:
            raise
        except Exception as exc:
            error = self._describe(doc, stage, exc)
            logger.error(
                "%s: %s failed [%s]: %s",
                doc.label,
                stage,
                error.provider or "-",
                error.message,
            )
            raise _FileFailed(error) from exc

        logger.debug("%s: stored %d chunk(s)", doc.label, len(chunk_set.chunks))
        return chunk_set

    @contextlib.asynccontextmanager
    async def _file_lock(self, repo_url: str, file_path: str) -> AsyncIterator[None]:
        """Hold the lock of one file within the running loop."""
        key = (asyncio.get_running_loop(), repo_url, file_path)
        entry = self._file_locks.get(key)
        if entry is None:
            entry = self._file_locks[key] = _FileLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._file_locks[key]

    def _supplied_vectors(self, doc: IngestionDocument, chunk_set: ChunkSet) -> list[list[float]]:
        vectors = doc.embeddings or []
        if len(vectors) != len(chunk_set.chunks):
            raise ValidationError(
                f"{doc.label}: {len(vectors)} supplied embedding(s) for "
                f"{len(chunk_set.chunks)} chunk(s)"
            )
        for vector in vectors:
            if len(vector) != self.store.dimension:
                raise DimensionMismatchError(self.store.dimension, len(vector), doc.label)
        return [list(v) for v in vectors]

    def _validate(self, doc: IngestionDocument) -> None:
        if not doc.repo_url or not doc.repo_url.strip():
            raise ValidationError("repo_url is required")
        if not doc.file_path or not doc.file_path.strip():
            raise ValidationError("file_path is required")
        if not doc.text or not doc.text.strip():
            raise ValidationError(f"{doc.label}: text is empty")
        size = len(doc.text.encode("utf-8"))
        if size > self.max_text_bytes:
            raise ValidationError(
                f"{doc.label}: text is {size / (1024 * 1024):.2f} MiB, "
                f"limit is {self.max_text_bytes / (1024 * 1024):.2f} MiB"
            )

    def _build_records(
        self,
        doc: IngestionDocument,
        chunk_set: ChunkSet,
        vectors: list[list[float]],
    ) -> list[ChunkRecord]:
        metadata = enrich_metadata(
            doc.repo_url,
            doc.file_path,
            doc.text,
            doc.metadata,
            defaults=self.metadata_defaults,
            file_type=doc.file_type,
            is_code=doc.is_code,
            is_implementation=doc.is_implementation,
        )
        title = doc.title or PurePosixPath(doc.file_path.replace("\\", "/")).name
        total = len(chunk_set.chunks)
        return [
            ChunkRecord(
                repo_url=doc.repo_url,
                file_path=doc.file_path,
                chunk_index=chunk.chunk_index,
                total_chunks=total,
                title=title,
                text=chunk.text,
                token_count=chunk.token_count,
                file_type=metadata["file_type"],
                is_code=metadata["is_code"],
                is_implementation=metadata["is_implementation"],
                embedding=vector,
                metadata={**metadata, "start_offset": chunk.start_offset},
            )
            for chunk, vector in zip(chunk_set.chunks, vectors)
        ]

    def _describe(self, doc: IngestionDocument, stage: str, exc: Exception) -> IngestionError:
        calls_provider = stage == STAGE_EMBEDDING and doc.embeddings is None
        provider = getattr(exc, "provider", "") or (self.client.provider if calls_provider else "")
        return IngestionError(
            file=doc.label,
            stage=stage,
            message=str(exc),
            exception_type=type(exc).__name__,
            provider=provider,
            retryable=isinstance(exc, (ProviderError, StorageError)),
        )
