"""Domain models for the ragcore vector store."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class ChunkRecord:
    """One stored chunk of one file.

    Identity is ``(repo_url, file_path, chunk_index)``; ``id`` is the SQLite
    row id assigned on first insert and reused on update.
    """

    repo_url: str
    file_path: str
    chunk_index: int
    text: str
    embedding: list[float]
    total_chunks: int = 1
    title: str = ""
    token_count: int = 0
    file_type: str = ""
    is_code: bool = False
    is_implementation: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: str | None = None
    updated_at: str | None = None
    id: int | None = None  # set after insert; None for unsaved records

    @property
    def identity(self) -> tuple[str, str, int]:
        return (self.repo_url, self.file_path, self.chunk_index)


@dataclass
class ScoredChunk:
    """A query hit: the stored record and its cosine similarity to the query."""

    record: ChunkRecord
    score: float

    @property
    def file_key(self) -> tuple[str, str]:
        return (self.record.repo_url, self.record.file_path)
