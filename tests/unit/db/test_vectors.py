"""Tests for the sqlite-vec index table and vector helpers."""

from __future__ import annotations

import pytest

from ragcore.db.vectors import (
    VEC_TABLE,
    cosine_similarity,
    deserialize,
    drop_vec_table,
    ensure_vec_table,
    has_vec_extension,
    serialize,
    vec_table_dimension,
)
from ragcore.errors import DimensionMismatchError, ValidationError


@pytest.fixture
def vec_db(tmp_db):
    if not has_vec_extension(tmp_db):
        pytest.skip("sqlite-vec not loadable")
    return tmp_db


# --- ensure_vec_table ---

def test_ensure_vec_table_creates_table(vec_db):
    assert ensure_vec_table(vec_db, dimensions=4) == VEC_TABLE
    assert vec_table_dimension(vec_db) == 4


def test_ensure_vec_table_idempotent(vec_db):
    ensure_vec_table(vec_db, dimensions=4)
    ensure_vec_table(vec_db, dimensions=4)
    assert vec_table_dimension(vec_db) == 4


def test_ensure_vec_table_dimension_conflict(vec_db):
    ensure_vec_table(vec_db, dimensions=4)
    with pytest.raises(DimensionMismatchError) as exc_info:
        ensure_vec_table(vec_db, dimensions=8)
    assert (exc_info.value.expected, exc_info.value.actual) == (4, 8)


def test_ensure_vec_table_invalid_dimensions(vec_db):
    with pytest.raises(ValidationError, match="dimensions"):
        ensure_vec_table(vec_db, dimensions=0)


def test_vec_table_cosine_lookup(vec_db):
    ensure_vec_table(vec_db, dimensions=4)
    vec_db.execute(
        f"INSERT INTO {VEC_TABLE}(rowid, embedding) VALUES (42, ?)", (serialize([0.1, 0.2, 0.3, 0.4]),)
    )
    vec_db.execute(
        f"INSERT INTO {VEC_TABLE}(rowid, embedding) VALUES (7, ?)", (serialize([-0.4, 0.3, -0.2, 0.1]),)
    )
    row = vec_db.execute(
        f"SELECT rowid, distance FROM {VEC_TABLE} WHERE embedding MATCH ? AND k = 1",
        (serialize([0.2, 0.4, 0.6, 0.8]),),
    ).fetchone()
    assert row["rowid"] == 42
    assert row["distance"] == pytest.approx(0.0, abs=1e-5)


def test_drop_vec_table(vec_db):
    ensure_vec_table(vec_db, dimensions=4)
    drop_vec_table(vec_db)
    assert vec_table_dimension(vec_db) is None


# --- helpers ---

def test_serialize_round_trip():
    blob = serialize([1.0, -2.5, 0.0])
    assert len(blob) == 12
    assert deserialize(blob) == [1.0, -2.5, 0.0]


@pytest.mark.parametrize(
    "a, b, expected",
    [
        ([1, 0], [1, 0], 1.0),
        ([1, 0], [0, 1], 0.0),
        ([1, 0], [-1, 0], -1.0),
        ([0, 0], [1, 0], 0.0),
    ],
)
def test_cosine_similarity(a, b, expected):
    assert cosine_similarity(a, b) == pytest.approx(expected)
