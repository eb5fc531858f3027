"""Tests for the dense retriever."""

from __future__ import annotations

import asyncio

import pytest

from ragcore.config import RagConfig
from ragcore.db.models import ChunkRecord
from ragcore.db.store import VectorStore
from ragcore.errors import DimensionMismatchError, ValidationError
from ragcore.rag.retriever import RetrieverConfig, retrieve

REPO = "https://github.com/acme/widgets"
QUERY = "how is configuration loaded"


@pytest.fixture
def store(tmp_db):
    return VectorStore(tmp_db, dimension=4)


@pytest.fixture
def client(fake_client):
    fake_client.vectors[QUERY] = [1.0, 0.0, 0.0, 0.0]
    return fake_client


def _seed(store: VectorStore, rows) -> None:
    for path, index, vector, repo in rows:
        store.upsert(
            ChunkRecord(
                repo_url=repo,
                file_path=path,
                chunk_index=index,
                text=f"{path}#{index}",
                embedding=vector,
                total_chunks=3,
            )
        )


def test_retriever_config_from_config():
    cfg = RagConfig()
    cfg.retrieval.top_k = 20
    cfg.retrieval.max_context_documents = 3
    assert RetrieverConfig.from_config(cfg) == RetrieverConfig(top_k=20, max_context_documents=3)


def test_retrieve_one_hit_per_file(store, client):
    _seed(
        store,
        [
            ("config.md", 0, [1.0, 0.0, 0.0, 0.0], REPO),
            ("config.md", 1, [0.9, 0.1, 0.0, 0.0], REPO),
            ("config.md", 2, [0.8, 0.2, 0.0, 0.0], REPO),
            ("cli.md", 0, [0.7, 0.3, 0.0, 0.0], REPO),
            ("unrelated.md", 0, [0.0, 0.0, 1.0, 0.0], REPO),
        ],
    )
    results = asyncio.run(retrieve(QUERY, client, store, RetrieverConfig(top_k=10, max_context_documents=2)))

    assert [(r.record.file_path, r.record.chunk_index) for r in results] == [
        ("config.md", 0),
        ("cli.md", 0),
    ]
    assert results[0].score == pytest.approx(1.0, abs=1e-5)
    assert client.calls == [[QUERY]]


def test_retrieve_with_filters(store, client):
    _seed(
        store,
        [
            ("a.md", 0, [1.0, 0.0, 0.0, 0.0], REPO),
            ("b.md", 0, [1.0, 0.0, 0.0, 0.0], "https://github.com/acme/other"),
        ],
    )
    results = asyncio.run(retrieve(QUERY, client, store, filters={"repo_url": REPO}))
    assert [r.record.repo_url for r in results] == [REPO]


def test_retrieve_top_k_bounds_candidates(store, client):
    _seed(store, [(f"f{i}.md", 0, [1.0, float(i), 0.0, 0.0], REPO) for i in range(6)])
    results = asyncio.run(retrieve(QUERY, client, store, RetrieverConfig(top_k=2, max_context_documents=5)))
    assert len(results) == 2


def test_retrieve_empty_store(store, client):
    assert asyncio.run(retrieve(QUERY, client, store)) == []


@pytest.mark.parametrize("query", ["", "   "])
def test_retrieve_rejects_blank_query(store, client, query):
    with pytest.raises(ValidationError):
        asyncio.run(retrieve(query, client, store))
    assert client.calls == []


def test_retrieve_dimension_mismatch(store, make_client):
    client = make_client(dimension=3)
    with pytest.raises(DimensionMismatchError):
        asyncio.run(retrieve(QUERY, client, store))
