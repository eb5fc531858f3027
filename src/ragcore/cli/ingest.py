"""ragcore ingest: chunk, embed and store text files for one repository.

Sources are files or directories. Directories are expanded to the text and
code files they contain (``--recursive`` for subdirectories). Each file is
stored under ``--repo-url`` with its path relative to the source directory.
"""

from __future__ import annotations

import asyncio
import fnmatch
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from ragcore.cli.errors import (
    err_config,
    err_dimension_mismatch,
    err_no_api_key,
    err_unknown_provider,
)
from ragcore.config import ConfigError, RagConfig, load_config
from ragcore.db.store import VectorStore
from ragcore.embedding.base import BaseEmbeddingClient
from ragcore.embedding.cache import EmbeddingCache
from ragcore.embedding.factory import create_embedding_client
from ragcore.errors import DimensionMismatchError, RagCoreError, UnknownProviderError
from ragcore.ingest.metadata import CODE_EXTENSIONS
from ragcore.ingest.orchestrator import IngestionDocument, IngestionResult, IngestionService

console = Console()

_TEXT_EXTS = {".txt", ".md", ".markdown", ".rst", ".text", ".json", ".yaml", ".yml", ".toml", ".ini", ".cfg", ".xml", ".html", ".css", ".sql"}
_ALL_FILE_EXTS = _TEXT_EXTS | {f".{ext}" for ext in CODE_EXTENSIONS}


def ingest_cmd(
    repo_url: Annotated[
        str,
        typer.Option("--repo-url", help="Repository the files belong to (stored with every chunk)."),
    ],
    source: Annotated[
        list[str] | None,
        typer.Option("--source", "-s", help="File or directory to ingest (repeatable)."),
    ] = None,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the vector database (created if missing)."),
    ] = None,
    recursive: Annotated[
        bool,
        typer.Option("--recursive", help="Recurse into subdirectories (max 10 levels)."),
    ] = False,
    exclude: Annotated[
        list[str] | None,
        typer.Option("--exclude", help="Glob pattern to exclude (repeatable)."),
    ] = None,
    parallelism: Annotated[
        int | None,
        typer.Option("--parallelism", min=1, help="Files processed concurrently."),
    ] = None,
    fail_fast: Annotated[
        bool,
        typer.Option("--fail-fast", help="Stop at the first failed file."),
    ] = False,
) -> None:
    """Ingest files into the vector store."""
    sources = source or []
    if not sources:
        console.print("[red]Error:[/] No --source specified. Use --source PATH.")
        raise typer.Exit(1)

    cfg = load_config_or_exit()
    files = _expand_sources(sources, recursive=recursive, exclude=exclude or [])
    if not files:
        console.print("[yellow]No supported files found to ingest.[/]")
        raise typer.Exit(0)

    documents = [_read_document(repo_url, path, root) for path, root in files]
    documents = [d for d in documents if d is not None]

    client = build_client_or_exit(cfg)
    store = open_store_or_exit(Path(db) if db else Path(cfg.storage.db_path), cfg)
    service = IngestionService.from_config(cfg, store, client)
    if parallelism:
        service.parallelism = parallelism

    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            transient=True,
            console=console,
        ) as prog:
            prog.add_task(f"Ingesting {len(documents)} file(s)…", total=None)
            result = asyncio.run(
                service.ingest(documents, continue_on_error=False if fail_fast else None)
            )
    except RagCoreError as exc:
        console.print(f"[red]Error:[/] {exc}")
        raise typer.Exit(1) from exc
    finally:
        store.close()

    _print_summary(result)
    if result.failure_count:
        raise typer.Exit(1)


# ------------------------------------------------------------------
# Shared setup helpers (also used by query / reindex)
# ------------------------------------------------------------------


def load_config_or_exit() -> RagConfig:
    try:
        return load_config()
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from exc


def build_client_or_exit(cfg: RagConfig) -> BaseEmbeddingClient:
    """Create the configured embedding client with a fresh fallback cache."""
    try:
        return create_embedding_client(cfg, cache=EmbeddingCache.from_config(cfg.cache))
    except UnknownProviderError as exc:
        console.print(err_unknown_provider(exc.name, exc.supported))
        raise typer.Exit(1) from exc
    except ConfigError as exc:
        if "API key" in str(exc):
            console.print(err_no_api_key(cfg.embedding.provider))
        else:
            console.print(err_config(str(exc)))
        raise typer.Exit(1) from exc


def open_store_or_exit(db_path: Path, cfg: RagConfig) -> VectorStore:
    try:
        return VectorStore.open(db_path, cfg.embedding.dimension)
    except DimensionMismatchError as exc:
        console.print(err_dimension_mismatch(exc.expected, exc.actual))
        raise typer.Exit(1) from exc
    except RagCoreError as exc:
        console.print(f"[red]Error:[/] {exc}")
        raise typer.Exit(1) from exc


# ------------------------------------------------------------------
# Source expansion
# ------------------------------------------------------------------


def _expand_sources(
    sources: list[str], recursive: bool, exclude: list[str]
) -> list[tuple[Path, Path]]:
    """Expand directories to ``(file, root)`` pairs; files are their own root's children."""
    result: list[tuple[Path, Path]] = []
    for src in sources:
        p = Path(src)
        if p.is_dir():
            files = _scan_dir(p, recursive=recursive, exclude=exclude, depth=0)
            if not files:
                console.print(f"[yellow]No supported files found in directory:[/] {src}")
            result.extend((f, p) for f in files)
        elif p.is_file():
            result.append((p, p.parent))
        else:
            console.print(f"[yellow]Skipping missing source:[/] {src}")
    return result


def _scan_dir(
    directory: Path,
    recursive: bool,
    exclude: list[str],
    depth: int,
    max_depth: int = 10,
) -> list[Path]:
    """Return supported files in *directory* (optionally recursive)."""
    if depth > max_depth:
        return []
    files: list[Path] = []
    try:
        entries = sorted(directory.iterdir())
    except PermissionError:
        return []
    for entry in entries:
        if entry.name.startswith(".") or any(fnmatch.fnmatch(entry.name, pat) for pat in exclude):
            continue
        if entry.is_file() and entry.suffix.lower() in _ALL_FILE_EXTS:
            files.append(entry)
        elif entry.is_dir() and recursive and depth < max_depth:
            files.extend(
                _scan_dir(entry, recursive=recursive, exclude=exclude, depth=depth + 1)
            )
    return files


def _read_document(repo_url: str, path: Path, root: Path) -> IngestionDocument | None:
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except OSError as exc:
        console.print(f"  [red]✗ Cannot read[/] {path}: {exc}")
        return None
    return IngestionDocument(
        repo_url=repo_url,
        file_path=path.relative_to(root).as_posix(),
        text=text,
    )


# ------------------------------------------------------------------
# Summary
# ------------------------------------------------------------------


def _print_summary(result: IngestionResult) -> None:
    console.print(
        f"[green]✓[/] {result.success_count} file(s), {result.total_chunks} chunk(s) "
        f"in {result.duration_ms / 1000:.1f}s"
    )
    for warning in result.warnings:
        console.print(f"  [yellow]⚠[/] {warning}")
    for label in result.incomplete_files:
        console.print(f"  [dim]↷ Incomplete:[/] {label}")

    if not result.errors:
        return
    table = Table(title=f"{result.failure_count} failed file(s)", show_lines=False)
    table.add_column("File")
    table.add_column("Stage")
    table.add_column("Provider")
    table.add_column("Error")
    for error in result.errors:
        table.add_row(error.file, error.stage, error.provider or "-", error.message)
    console.print(table)
