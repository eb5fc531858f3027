"""ragcore database layer."""

from ragcore.db.connection import Database
from ragcore.db.migrations import MIGRATIONS, run_migrations
from ragcore.db.models import ChunkRecord, ScoredChunk
from ragcore.db.schema import initialize
from ragcore.db.store import VectorStore
from ragcore.db.vectors import VEC_TABLE, ensure_vec_table

__all__ = [
    "ChunkRecord",
    "Database",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
    "ScoredChunk",
    "VEC_TABLE",
    "VectorStore",
    "ensure_vec_table",
]
