"""ragcore query / ragcore reindex commands."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.console import Console
from rich.table import Table

from ragcore.cli.errors import err_dimension_mismatch, err_no_db
from ragcore.cli.ingest import build_client_or_exit, load_config_or_exit, open_store_or_exit
from ragcore.errors import DimensionMismatchError, RagCoreError
from ragcore.rag.retriever import RetrieverConfig, retrieve

console = Console()

_PREVIEW_CHARS = 120


def query_cmd(
    text: Annotated[str, typer.Argument(help="Natural-language query.")],
    repo_url: Annotated[
        str | None,
        typer.Option("--repo-url", help="Only search this repository."),
    ] = None,
    path: Annotated[
        str | None,
        typer.Option("--path", help="File path or SQL LIKE pattern (e.g. 'src/%.py')."),
    ] = None,
    top_k: Annotated[
        int | None,
        typer.Option("--top-k", min=1, help="Raw hits fetched before deduplication."),
    ] = None,
    max_files: Annotated[
        int | None,
        typer.Option("--max-files", min=1, help="Distinct files returned."),
    ] = None,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the vector database."),
    ] = None,
) -> None:
    """Search the vector store and show the best chunk of each matching file."""
    cfg = load_config_or_exit()
    db_path = Path(db) if db else Path(cfg.storage.db_path)
    if not db_path.exists():
        console.print(err_no_db(str(db_path)))
        raise typer.Exit(1)

    retriever_cfg = RetrieverConfig.from_config(cfg)
    if top_k:
        retriever_cfg.top_k = top_k
    if max_files:
        retriever_cfg.max_context_documents = max_files

    filters: dict[str, Any] = {}
    if repo_url:
        filters["repo_url"] = repo_url
    if path:
        filters["file_path"] = path

    client = build_client_or_exit(cfg)
    store = open_store_or_exit(db_path, cfg)
    try:
        hits = asyncio.run(retrieve(text, client, store, retriever_cfg, filters=filters or None))
    except DimensionMismatchError as exc:
        console.print(err_dimension_mismatch(exc.expected, exc.actual))
        raise typer.Exit(1) from exc
    except RagCoreError as exc:
        console.print(f"[red]Error:[/] {exc}")
        raise typer.Exit(1) from exc
    finally:
        store.close()

    if not hits:
        console.print("[yellow]No matching chunks.[/]")
        return

    table = Table(title=f"Top {len(hits)} file(s)")
    table.add_column("#", justify="right")
    table.add_column("Score", justify="right")
    table.add_column("File")
    table.add_column("Chunk", justify="right")
    table.add_column("Preview")
    for rank, hit in enumerate(hits, start=1):
        record = hit.record
        preview = " ".join(record.text.split())[:_PREVIEW_CHARS]
        table.add_row(
            str(rank),
            f"{hit.score:.3f}",
            f"{record.repo_url}:{record.file_path}",
            f"{record.chunk_index + 1}/{record.total_chunks}",
            preview,
        )
    console.print(table)


def reindex_cmd(
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the vector database."),
    ] = None,
) -> None:
    """Rebuild the vector index from stored embeddings."""
    cfg = load_config_or_exit()
    db_path = Path(db) if db else Path(cfg.storage.db_path)
    if not db_path.exists():
        console.print(err_no_db(str(db_path)))
        raise typer.Exit(1)

    store = open_store_or_exit(db_path, cfg)
    try:
        ok = store.rebuild_index()
        count = store.count()
    finally:
        store.close()

    if not ok:
        console.print("[red]Error:[/] Index rebuild failed; the previous index is unchanged.\n"
                      "  Re-run with --verbose for details.")
        raise typer.Exit(1)
    console.print(f"[green]✓[/] Index rebuilt ({count} chunk(s))")
