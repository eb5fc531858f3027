"""Vector store: chunk persistence and cosine similarity search.

Chunks live in the ``chunks`` table with their embedding as a float32 BLOB.
The sqlite-vec ``vec_chunks`` table (rowid = chunks.id) is the ANN index used
for unfiltered queries; filtered queries score the filtered rows with
``vec_distance_cosine``. Without the extension, scoring happens in-process.
"""

from __future__ import annotations

import json
import logging
import re
import sqlite3
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from ragcore.db.connection import Database
from ragcore.db.models import ChunkRecord, ScoredChunk
from ragcore.db.schema import initialize
from ragcore.db.vectors import (
    VEC_TABLE,
    cosine_similarity,
    deserialize,
    drop_vec_table,
    ensure_vec_table,
    has_vec_extension,
    serialize,
)
from ragcore.errors import DimensionMismatchError, StorageError, ValidationError

logger = logging.getLogger(__name__)

# Filter keys matched against real columns; anything else goes to metadata JSON.
_COLUMN_FILTERS = frozenset(
    {"repo_url", "file_path", "title", "file_type", "is_code", "is_implementation"}
)
_METADATA_KEY_RE = re.compile(r"^[A-Za-z0-9_.\-]+$")

_SELECT_COLUMNS = """
    id, repo_url, file_path, chunk_index, total_chunks, title, text, token_count,
    file_type, is_code, is_implementation, metadata, embedding, created_at, updated_at
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


class VectorStore:
    """Persistent, thread-safe store of embedded chunks.

    Args:
        conn: Open connection with the schema initialized (see
            ragcore.db.schema.initialize) and ``sqlite3.Row`` row factory.
        dimension: Length every stored and query embedding must have.
    """

    def __init__(self, conn: sqlite3.Connection, dimension: int = 1536) -> None:
        if dimension < 1:
            raise ValidationError(f"dimension must be >= 1, got {dimension}")
        self._conn = conn
        self.dimension = dimension
        self._lock = threading.RLock()
        self.native_vectors = has_vec_extension(conn)
        if self.native_vectors:
            with self._errors("create index table"):
                ensure_vec_table(conn, dimension)

    @classmethod
    def open(cls, db_path: Path | str, dimension: int = 1536) -> VectorStore:
        """Open (creating if needed) the database at *db_path*."""
        conn = Database(db_path).connect()
        initialize(conn)
        return cls(conn, dimension)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    def query(
        self,
        embedding: Sequence[float],
        k: int = 10,
        filters: dict[str, Any] | None = None,
    ) -> list[ScoredChunk]:
        """Return up to *k* chunks by descending cosine similarity.

        Args:
            embedding: Query vector of length ``dimension``.
            k: Maximum number of hits (>= 1).
            filters: ``repo_url``, ``file_path`` and other column names, or
                any metadata key. String values containing ``%`` or ``_`` are
                matched with SQL LIKE, everything else with equality.

        Returns:
            Hits with ``score = 1 - cosine distance``; ``[]`` if nothing matches.

        Raises:
            ValidationError: *k* < 1 or the embedding is empty or all zeros.
            DimensionMismatchError: Wrong embedding length.
            StorageError: The database rejected the query.
        """
        if k < 1:
            raise ValidationError(f"k must be >= 1, got {k}")
        vector = [float(x) for x in embedding]
        self._check_dimension(vector, "query embedding")
        if not any(vector):
            raise ValidationError("query embedding has zero magnitude")

        where, params = _build_filters(filters or {})
        with self._lock, self._errors("query"):
            if not self.native_vectors:
                return self._query_in_process(vector, k, where, params)
            if where:
                return self._query_filtered(vector, k, where, params)
            return self._query_knn(vector, k)

    def _query_knn(self, vector: list[float], k: int) -> list[ScoredChunk]:
        rows = self._conn.execute(
            f"SELECT rowid, distance FROM {VEC_TABLE} "
            "WHERE embedding MATCH ? AND k = ? ORDER BY distance",
            (serialize(vector), k),
        ).fetchall()
        if not rows:
            return []
        distances = {row["rowid"]: row["distance"] for row in rows}
        placeholders = ",".join("?" * len(distances))
        records = {
            r.id: r
            for r in map(
                _row_to_record,
                self._conn.execute(
                    f"SELECT {_SELECT_COLUMNS} FROM chunks WHERE id IN ({placeholders})",
                    list(distances),
                ).fetchall(),
            )
        }
        hits = [
            ScoredChunk(records[rowid], 1.0 - distance)
            for rowid, distance in distances.items()
            if rowid in records
        ]
        hits.sort(key=lambda h: h.score, reverse=True)
        return hits

    def _query_filtered(
        self, vector: list[float], k: int, where: str, params: list[Any]
    ) -> list[ScoredChunk]:
        rows = self._conn.execute(
            f"SELECT {_SELECT_COLUMNS}, vec_distance_cosine(embedding, ?) AS distance "
            f"FROM chunks WHERE {where} ORDER BY distance, id LIMIT ?",
            [serialize(vector), *params, k],
        ).fetchall()
        return [ScoredChunk(_row_to_record(row), 1.0 - row["distance"]) for row in rows]

    def _query_in_process(
        self, vector: list[float], k: int, where: str, params: list[Any]
    ) -> list[ScoredChunk]:
        sql = f"SELECT {_SELECT_COLUMNS} FROM chunks"
        if where:
            sql += f" WHERE {where}"
        hits = [
            ScoredChunk(record, cosine_similarity(vector, record.embedding))
            for record in map(_row_to_record, self._conn.execute(sql, params).fetchall())
        ]
        hits.sort(key=lambda h: h.score, reverse=True)
        return hits[:k]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert(self, record: ChunkRecord) -> int:
        """Insert or update *record* by ``(repo_url, file_path, chunk_index)``.

        ``created_at`` of an existing row is preserved; ``updated_at`` is
        refreshed. The chunk row and its index row are written in one
        transaction.

        Returns:
            The chunk id.

        Raises:
            ValidationError: Malformed identity.
            DimensionMismatchError: Wrong embedding length. Nothing is written.
            StorageError: The database rejected the write.
        """
        self._validate(record)
        with self._lock, self._errors("upsert"), self._conn:
            return self._upsert_locked(record)

    def upsert_many(self, records: Sequence[ChunkRecord]) -> list[int]:
        """Upsert every record in one transaction (all or nothing)."""
        for record in records:
            self._validate(record)
        with self._lock, self._errors("upsert"), self._conn:
            return [self._upsert_locked(r) for r in records]

    def delete_chunks(self, repo_url: str, file_path: str) -> int:
        """Delete every chunk of one file. Returns the number deleted."""
        with self._lock, self._errors("delete"), self._conn:
            return self._delete_file_locked(repo_url, file_path)

    def replace_file_chunks(
        self, repo_url: str, file_path: str, records: Sequence[ChunkRecord]
    ) -> list[int]:
        """Replace every chunk of one file with *records*, atomically.

        Stale chunks with indexes beyond the new count are removed; readers
        never see a mix of old and new chunks.

        Raises:
            ValidationError: A record belongs to another file or its
                ``total_chunks`` differs from ``len(records)``.
        """
        for record in records:
            self._validate(record)
            if (record.repo_url, record.file_path) != (repo_url, file_path):
                raise ValidationError(
                    f"record {record.repo_url}:{record.file_path} does not belong to {repo_url}:{file_path}"
                )
            if record.total_chunks != len(records):
                raise ValidationError(
                    f"total_chunks={record.total_chunks} but {len(records)} record(s) given"
                )
        with self._lock, self._errors("replace"), self._conn:
            removed = self._delete_file_locked(repo_url, file_path)
            ids = [self._upsert_locked(r) for r in records]
        logger.debug(
            "%s:%s replaced %d chunk(s) with %d", repo_url, file_path, removed, len(ids)
        )
        return ids

    def delete(self, chunk_id: int) -> bool:
        """Delete one chunk by id. Returns True if it existed."""
        with self._lock, self._errors("delete"), self._conn:
            if self.native_vectors:
                self._conn.execute(f"DELETE FROM {VEC_TABLE} WHERE rowid = ?", (chunk_id,))
            cur = self._conn.execute("DELETE FROM chunks WHERE id = ?", (chunk_id,))
            return cur.rowcount > 0

    def delete_repo(self, repo_url: str) -> int:
        """Delete every chunk of *repo_url*. Returns the number deleted."""
        with self._lock, self._errors("delete"), self._conn:
            ids = [
                r["id"]
                for r in self._conn.execute(
                    "SELECT id FROM chunks WHERE repo_url = ?", (repo_url,)
                ).fetchall()
            ]
            self._delete_ids_locked(ids)
            return len(ids)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def count(self, repo_url: str | None = None, file_path: str | None = None) -> int:
        """Number of stored chunks, optionally restricted to a repo or a file."""
        sql, params = "SELECT COUNT(*) FROM chunks", []
        clauses = []
        if repo_url is not None:
            clauses.append("repo_url = ?")
            params.append(repo_url)
        if file_path is not None:
            clauses.append("file_path = ?")
            params.append(file_path)
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        with self._lock, self._errors("count"):
            return self._conn.execute(sql, params).fetchone()[0]

    def get_file_chunks(self, repo_url: str, file_path: str) -> list[ChunkRecord]:
        """Chunks of one file ordered by ``chunk_index``."""
        with self._lock, self._errors("read"):
            rows = self._conn.execute(
                f"SELECT {_SELECT_COLUMNS} FROM chunks "
                "WHERE repo_url = ? AND file_path = ? ORDER BY chunk_index",
                (repo_url, file_path),
            ).fetchall()
        return [_row_to_record(r) for r in rows]

    def list_files(self, repo_url: str | None = None) -> list[tuple[str, str, int]]:
        """``(repo_url, file_path, chunk_count)`` for every stored file."""
        sql = "SELECT repo_url, file_path, COUNT(*) AS n FROM chunks"
        params: list[Any] = []
        if repo_url is not None:
            sql += " WHERE repo_url = ?"
            params.append(repo_url)
        sql += " GROUP BY repo_url, file_path ORDER BY repo_url, file_path"
        with self._lock, self._errors("read"):
            rows = self._conn.execute(sql, params).fetchall()
        return [(r["repo_url"], r["file_path"], r["n"]) for r in rows]

    # ------------------------------------------------------------------
    # Index maintenance
    # ------------------------------------------------------------------

    def rebuild_index(self) -> bool:
        """Drop and re-create the ANN index from stored embeddings.

        Never raises: failures are logged and reported as False.
        """
        if not self.native_vectors:
            logger.info("sqlite-vec not loaded; nothing to rebuild (in-process search)")
            return True
        with self._lock:
            try:
                self._conn.execute("BEGIN")
                drop_vec_table(self._conn)
                self._conn.execute(
                    f"CREATE VIRTUAL TABLE {VEC_TABLE} USING vec0("
                    f"embedding float[{self.dimension}] distance_metric=cosine)"
                )
                rows = self._conn.execute("SELECT id, embedding FROM chunks").fetchall()
                skipped = 0
                for row in rows:
                    if len(row["embedding"]) != self.dimension * 4:
                        skipped += 1
                        continue
                    self._conn.execute(
                        f"INSERT INTO {VEC_TABLE}(rowid, embedding) VALUES (?, ?)",
                        (row["id"], row["embedding"]),
                    )
                self._conn.commit()
            except sqlite3.Error as exc:
                self._conn.rollback()
                logger.error("Index rebuild failed: %s", exc)
                return False
        if skipped:
            logger.warning("Index rebuild skipped %d chunk(s) with a foreign dimension", skipped)
        logger.info("Index rebuilt from %d chunk(s)", len(rows) - skipped)
        return True

    # ------------------------------------------------------------------
    # Internals (caller holds self._lock)
    # ------------------------------------------------------------------

    def _upsert_locked(self, record: ChunkRecord) -> int:
        now = _now()
        blob = serialize([float(x) for x in record.embedding])
        row = self._conn.execute(
            """
            INSERT INTO chunks (
                repo_url, file_path, chunk_index, total_chunks, title, text,
                token_count, file_type, is_code, is_implementation, metadata,
                embedding, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(repo_url, file_path, chunk_index) DO UPDATE SET
                total_chunks      = excluded.total_chunks,
                title             = excluded.title,
                text              = excluded.text,
                token_count       = excluded.token_count,
                file_type         = excluded.file_type,
                is_code           = excluded.is_code,
                is_implementation = excluded.is_implementation,
                metadata          = excluded.metadata,
                embedding         = excluded.embedding,
                updated_at        = excluded.updated_at
            RETURNING id, created_at, updated_at
            """,
            (
                record.repo_url,
                record.file_path,
                record.chunk_index,
                record.total_chunks,
                record.title,
                record.text,
                record.token_count,
                record.file_type,
                int(record.is_code),
                int(record.is_implementation),
                json.dumps(record.metadata, default=str),
                blob,
                now,
                now,
            ),
        ).fetchone()
        chunk_id = row["id"]
        if self.native_vectors:
            # vec0 has no upsert; replace the index row explicitly.
            self._conn.execute(f"DELETE FROM {VEC_TABLE} WHERE rowid = ?", (chunk_id,))
            self._conn.execute(
                f"INSERT INTO {VEC_TABLE}(rowid, embedding) VALUES (?, ?)", (chunk_id, blob)
            )
        record.id = chunk_id
        record.created_at = row["created_at"]
        record.updated_at = row["updated_at"]
        return chunk_id

    def _delete_file_locked(self, repo_url: str, file_path: str) -> int:
        ids = [
            r["id"]
            for r in self._conn.execute(
                "SELECT id FROM chunks WHERE repo_url = ? AND file_path = ?",
                (repo_url, file_path),
            ).fetchall()
        ]
        self._delete_ids_locked(ids)
        return len(ids)

    def _delete_ids_locked(self, ids: list[int]) -> None:
        if not ids:
            return
        placeholders = ",".join("?" * len(ids))
        if self.native_vectors:
            self._conn.execute(f"DELETE FROM {VEC_TABLE} WHERE rowid IN ({placeholders})", ids)
        self._conn.execute(f"DELETE FROM chunks WHERE id IN ({placeholders})", ids)

    def _check_dimension(self, vector: Sequence[float], context: str) -> None:
        if len(vector) != self.dimension:
            raise DimensionMismatchError(self.dimension, len(vector), context)

    def _validate(self, record: ChunkRecord) -> None:
        if not record.repo_url or not record.file_path:
            raise ValidationError("repo_url and file_path must not be empty")
        if record.chunk_index < 0:
            raise ValidationError(f"chunk_index must be >= 0, got {record.chunk_index}")
        if record.total_chunks < 1:
            raise ValidationError(f"total_chunks must be >= 1, got {record.total_chunks}")
        self._check_dimension(
            record.embedding, f"{record.repo_url}:{record.file_path}#{record.chunk_index}"
        )

    @contextmanager
    def _errors(self, action: str) -> Iterator[None]:
        try:
            yield
        except sqlite3.Error as exc:
            logger.error("Vector store %s failed: %s", action, exc)
            raise StorageError(f"Vector store {action} failed: {exc}") from exc


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def _build_filters(filters: dict[str, Any]) -> tuple[str, list[Any]]:
    """Translate a filter dict into a WHERE clause and its parameters."""
    clauses: list[str] = []
    params: list[Any] = []
    for key, value in filters.items():
        if key in _COLUMN_FILTERS:
            target = key
        elif _METADATA_KEY_RE.match(key):
            target = "json_extract(metadata, ?)"
            params.append(f'$."{key}"')
        else:
            raise ValidationError(f"Invalid filter key: {key!r}")

        if value is None:
            clauses.append(f"{target} IS NULL")
        elif isinstance(value, str) and ("%" in value or "_" in value):
            clauses.append(f"{target} LIKE ?")
            params.append(value)
        else:
            clauses.append(f"{target} = ?")
            params.append(int(value) if isinstance(value, bool) else value)
    return " AND ".join(clauses), params


def _row_to_record(row: sqlite3.Row) -> ChunkRecord:
    return ChunkRecord(
        id=row["id"],
        repo_url=row["repo_url"],
        file_path=row["file_path"],
        chunk_index=row["chunk_index"],
        total_chunks=row["total_chunks"],
        title=row["title"],
        text=row["text"],
        token_count=row["token_count"],
        file_type=row["file_type"],
        is_code=bool(row["is_code"]),
        is_implementation=bool(row["is_implementation"]),
        metadata=json.loads(row["metadata"] or "{}"),
        embedding=deserialize(row["embedding"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )
