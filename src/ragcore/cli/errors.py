"""ragcore rich error messages: actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from ragcore.cli.errors import err_no_api_key, err_no_db
    console.print(err_no_api_key("openai"))
    raise typer.Exit(1)
"""

from __future__ import annotations

_KEY_ENV: dict[str, str] = {
    "openai": "OPENAI_API_KEY",
    "azure": "AZURE_OPENAI_API_KEY",
    "foundry": "AZURE_OPENAI_API_KEY",
    "azureopenai": "AZURE_OPENAI_API_KEY",
}


def err_no_api_key(provider: str) -> str:
    """No API key for *provider*.

    Example:
        No API key for 'openai'. Set:  export OPENAI_API_KEY=sk-...
    """
    env_var = _KEY_ENV.get(provider.lower(), f"{provider.upper()}_API_KEY")
    return (
        f"[red]Error:[/] No API key for '{provider}'.\n"
        f"  Set:  export {env_var}=..."
    )


def err_no_db(db_path: str = ".ragcore.db") -> str:
    """No database at *db_path*."""
    return (
        f"[red]Error:[/] No database found at '{db_path}'.\n"
        "  Run:  ragcore ingest --repo-url URL --source PATH  (or pass --db)"
    )


def err_unknown_provider(name: str, supported: list[str]) -> str:
    """Configured embedding provider is not registered."""
    return (
        f"[red]Error:[/] Unknown embedding provider '{name}'.\n"
        f"  Supported: {', '.join(supported)}\n"
        "  Set embedding.provider in ragcore.yaml or RAGCORE_EMBEDDING_PROVIDER."
    )


def err_dimension_mismatch(expected: int, actual: int) -> str:
    """Configured embedding dimension does not match the model or the database."""
    return (
        f"[red]Error:[/] Embedding dimension mismatch: expected {expected}, got {actual}.\n"
        "  Set embedding.dimension in ragcore.yaml to the model's output size,\n"
        "  or use a fresh --db for a model with a different dimension."
    )


def err_config(message: str) -> str:
    """Invalid or forbidden configuration value."""
    return (
        f"[red]Error:[/] {message}\n"
        "  Fix ragcore.yaml (or ~/.ragcore/config.yaml) and retry."
    )
