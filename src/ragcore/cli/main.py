"""ragcore CLI entry point."""

from __future__ import annotations

import importlib.metadata
from typing import Annotated

import typer

from ragcore.cli.ingest import ingest_cmd
from ragcore.cli.query import query_cmd, reindex_cmd
from ragcore.log import configure_logging


def _installed_version() -> str:
    try:
        return importlib.metadata.version("ragcore")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"ragcore {_installed_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="ragcore",
    help=(
        "ragcore: ingestion and retrieval core for repository RAG.\n\n"
        "  ragcore ingest   Chunk, embed and store files.\n"
        "  ragcore query    Search stored chunks, one hit per file."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show debug logs."),
    ] = False,
) -> None:
    """ragcore: ingestion and retrieval core for repository RAG."""
    configure_logging("DEBUG" if verbose else "WARNING")


app.command("ingest")(ingest_cmd)
app.command("query")(query_cmd)
app.command("reindex")(reindex_cmd)


@app.command("version")
def version_cmd() -> None:
    """Show the installed ragcore version."""
    typer.echo(f"ragcore {_installed_version()}")


if __name__ == "__main__":
    app()
