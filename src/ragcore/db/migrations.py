"""Forward-only migration runner for the ragcore database schema.

The vec table (vec_chunks) is NOT migration-managed: its dimension comes from
configuration, so it is created by ensure_vec_table().
"""

from __future__ import annotations

import sqlite3

# schema_version is the bootstrap table, created before migrations run.
_CREATE_SCHEMA_VERSION = """
CREATE TABLE IF NOT EXISTS schema_version (
    version     INTEGER NOT NULL,
    applied_at  DATETIME NOT NULL DEFAULT (datetime('now'))
)
"""

_V1_SQL = """
CREATE TABLE IF NOT EXISTS chunks (
    id                  INTEGER PRIMARY KEY,
    repo_url            TEXT NOT NULL,
    file_path           TEXT NOT NULL,
    chunk_index         INTEGER NOT NULL CHECK (chunk_index >= 0),
    total_chunks        INTEGER NOT NULL DEFAULT 1 CHECK (total_chunks >= 1),
    title               TEXT NOT NULL DEFAULT '',
    text                TEXT NOT NULL,
    token_count         INTEGER NOT NULL DEFAULT 0,
    file_type           TEXT NOT NULL DEFAULT '',
    is_code             INTEGER NOT NULL DEFAULT 0,
    is_implementation   INTEGER NOT NULL DEFAULT 0,
    metadata            TEXT NOT NULL DEFAULT '{}',
    embedding           BLOB NOT NULL,
    created_at          TEXT NOT NULL,
    updated_at          TEXT NOT NULL,
    UNIQUE (repo_url, file_path, chunk_index)
);

CREATE INDEX IF NOT EXISTS idx_chunks_file ON chunks (repo_url, file_path);
"""

_V2_SQL = """
CREATE INDEX IF NOT EXISTS idx_chunks_file_type ON chunks (file_type);
"""

# Append-only. Each entry: (version: int, sql: str).
# executescript() issues an implicit COMMIT before running.
MIGRATIONS: list[tuple[int, str]] = [
    (1, _V1_SQL),
    (2, _V2_SQL),
]


def current_version(conn: sqlite3.Connection) -> int:
    """Return the highest applied migration version (0 for a fresh database)."""
    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    return row[0] if row[0] is not None else 0


def run_migrations(conn: sqlite3.Connection) -> None:
    """Apply all pending migrations in ascending version order.

    Idempotent: safe to call on a database at any version.
    The vec table is NOT managed here; use ensure_vec_table() instead.
    """
    conn.execute(_CREATE_SCHEMA_VERSION)
    conn.commit()

    current = current_version(conn)

    for version, sql in MIGRATIONS:
        if version > current:
            conn.executescript(sql)
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (version,)
            )
            conn.commit()
