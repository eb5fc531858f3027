"""sqlite-vec index table management and vector helpers."""

from __future__ import annotations

import math
import re
import sqlite3
import struct

from sqlite_vec import serialize_float32

from ragcore.errors import DimensionMismatchError, ValidationError

VEC_TABLE = "vec_chunks"

_DIM_RE = re.compile(r"float\[(\d+)\]")


def has_vec_extension(conn: sqlite3.Connection) -> bool:
    """Return True if sqlite-vec functions are available on *conn*."""
    try:
        conn.execute("SELECT vec_version()").fetchone()
    except sqlite3.OperationalError:
        return False
    return True


def vec_table_dimension(conn: sqlite3.Connection, table: str = VEC_TABLE) -> int | None:
    """Return the declared dimension of *table*, or None if it does not exist."""
    row = conn.execute(
        "SELECT sql FROM sqlite_master WHERE type='table' AND name=?", (table,)
    ).fetchone()
    if row is None:
        return None
    match = _DIM_RE.search(row[0] or "")
    return int(match.group(1)) if match else None


def ensure_vec_table(conn: sqlite3.Connection, dimensions: int, table: str = VEC_TABLE) -> str:
    """Create the cosine-distance vec0 index table if it doesn't already exist.

    Args:
        conn: Active database connection (sqlite-vec must be loaded).
        dimensions: Embedding vector dimensions (e.g. 1536 for text-embedding-3-small).
        table: Table name.

    Returns:
        The table name.

    Raises:
        ValidationError: *dimensions* < 1.
        DimensionMismatchError: The table exists with another dimension.
    """
    if dimensions < 1:
        raise ValidationError(f"dimensions must be >= 1, got {dimensions}")

    existing = vec_table_dimension(conn, table)
    if existing is None:
        conn.execute(
            f"CREATE VIRTUAL TABLE {table} USING vec0("
            f"embedding float[{dimensions}] distance_metric=cosine)"
        )
        conn.commit()
    elif existing != dimensions:
        raise DimensionMismatchError(existing, dimensions, f"existing index table {table}")

    return table


def drop_vec_table(conn: sqlite3.Connection, table: str = VEC_TABLE) -> None:
    conn.execute(f"DROP TABLE IF EXISTS {table}")


def serialize(vector: list[float]) -> bytes:
    """Pack *vector* as little-endian float32, the format sqlite-vec reads."""
    return serialize_float32(vector)


def deserialize(blob: bytes) -> list[float]:
    """Inverse of ``serialize()``."""
    return list(struct.unpack(f"{len(blob) // 4}f", blob))


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Cosine similarity of two equal-length vectors; 0.0 if either is all zeros."""
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot / (norm_a * norm_b)
