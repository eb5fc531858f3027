"""CLI fixtures: offline config, fake embedding client, word tokenizer."""

from __future__ import annotations

from unittest.mock import patch

import pytest
from rich.console import Console

from ragcore.config import RagConfig


@pytest.fixture
def cli_config(tmp_path):
    cfg = RagConfig()
    cfg.embedding.dimension = 4
    cfg.storage.db_path = str(tmp_path / ".ragcore.db")
    return cfg


@pytest.fixture
def cli_client(make_client):
    return make_client()


@pytest.fixture(autouse=True)
def wide_console():
    """Keep rich tables on one line per row so assertions can match cell text."""
    wide = Console(width=200)
    with (
        patch("ragcore.cli.ingest.console", wide),
        patch("ragcore.cli.query.console", wide),
    ):
        yield wide


@pytest.fixture
def offline(cli_config, cli_client, word_tokenizer):
    """Patch config loading, provider creation and tokenizer lookup."""
    with (
        patch("ragcore.cli.ingest.load_config", return_value=cli_config),
        patch("ragcore.cli.ingest.create_embedding_client", return_value=cli_client) as create,
        patch("ragcore.ingest.orchestrator.get_tokenizer", return_value=word_tokenizer),
    ):
        yield create
