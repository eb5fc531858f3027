"""Database initialization."""

from __future__ import annotations

import sqlite3

from ragcore.db.migrations import MIGRATIONS, run_migrations

CURRENT_VERSION = MIGRATIONS[-1][0]


def initialize(conn: sqlite3.Connection) -> None:
    """Initialize the database schema via the migration runner (idempotent)."""
    run_migrations(conn)


def table_exists(conn: sqlite3.Connection, name: str) -> bool:
    """Return True if a table (or virtual table) called *name* exists."""
    row = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type='table' AND name=?", (name,)
    ).fetchone()
    return row is not None
