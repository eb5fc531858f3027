"""ragcore configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site, not in this module)
  2. Environment variables  (RAGCORE_EMBEDDING_PROVIDER, RAGCORE_EMBEDDING_MODEL, RAGCORE_DB)
  3. Per-project ragcore.yaml  (in the project directory)
  4. Global ~/.ragcore/config.yaml  (defaults only, no API keys)
  5. Hardcoded defaults

Global config must never contain API keys; use environment variables instead.
All YAML reads use yaml.safe_load(), never yaml.load().
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".ragcore"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "ragcore.yaml"

# Fields that suggest an API key are forbidden in global config.
# Does NOT match legitimate config keys like max_tokens or chunk_size.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"  # api_key, api-key, api_secret, apikey
    r"|_token$"                  # github_token, access_token (suffix)
    r"|^token$"                  # exactly "token"
    r"|_secret$"                 # client_secret (suffix)
    r"|^secret$"                 # exactly "secret"
    r"|passw(?:ord|d)"           # password, passwd
    r"|credential",              # credential, credentials
    re.IGNORECASE,
)

# Known top-level sections; unknown keys produce a warning
_KNOWN_SECTIONS: frozenset[str] = frozenset(
    ["chunking", "embedding", "retry", "cache", "retrieval", "ingestion", "storage"]
)

MAX_BATCH_SIZE = 100


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class ChunkingCfg:
    """Sliding-window chunking (ragcore.yaml: chunking:).

    Attributes:
        chunk_size: Maximum tokens per chunk.
        chunk_overlap: Tokens shared by consecutive chunks (~25 % by default).
        max_chunks_per_file: Chunks kept per file; the rest are dropped with a warning.
    """

    chunk_size: int = 512
    chunk_overlap: int = 128
    max_chunks_per_file: int = 200


@dataclass
class EmbeddingCfg:
    """Embedding provider configuration (ragcore.yaml: embedding:).

    Attributes:
        provider: Provider name or alias (openai | foundry | azure | azureopenai | ollama).
        model: Model id as the provider knows it (no litellm prefix).
        dimension: Vector length every stored embedding must have.
        batch_size: Texts sent per provider call (1-100).
        api_base: Endpoint override (Azure endpoint, Ollama daemon URL, proxy).
        api_version: Azure OpenAI API version.
        deployment: Azure deployment name (defaults to ``model``).
    """

    provider: str = "openai"
    model: str = "text-embedding-3-small"
    dimension: int = 1536
    batch_size: int = 10
    api_base: str | None = None
    api_version: str | None = None
    deployment: str | None = None


@dataclass
class RetryCfg:
    """Provider retry policy (ragcore.yaml: retry:)."""

    max_retries: int = 3
    base_delay_ms: int = 100
    multiplier: float = 2.0
    jitter_factor: float = 0.20
    max_delay_ms: int = 10_000
    use_cache_fallback: bool = True


@dataclass
class CacheCfg:
    """Embedding fallback cache (ragcore.yaml: cache:)."""

    ttl_seconds: float = 3_600.0
    max_entries: int = 10_000
    sweep_interval_seconds: float = 300.0


@dataclass
class RetrievalCfg:
    """Retrieval configuration (ragcore.yaml: retrieval:)."""

    top_k: int = 10
    max_context_documents: int = 5


@dataclass
class IngestionCfg:
    """Batch ingestion configuration (ragcore.yaml: ingestion:)."""

    parallelism: int = 4
    continue_on_error: bool = True
    max_text_bytes: int = 5 * 1024 * 1024


@dataclass
class StorageCfg:
    """Vector store location (ragcore.yaml: storage:)."""

    db_path: str = ".ragcore.db"


@dataclass
class RagConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    chunking: ChunkingCfg = field(default_factory=ChunkingCfg)
    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    retry: RetryCfg = field(default_factory=RetryCfg)
    cache: CacheCfg = field(default_factory=CacheCfg)
    retrieval: RetrievalCfg = field(default_factory=RetrievalCfg)
    ingestion: IngestionCfg = field(default_factory=IngestionCfg)
    storage: StorageCfg = field(default_factory=StorageCfg)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any API-key-like key names."""

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _API_KEY_RE.search(str(k)):
                    raise ConfigError(
                        f"Global config '{source}' contains a forbidden key '{full}'.\n"
                        f"  API keys must be set via environment variables, not config files.\n"
                        f"  Remove '{full}' from {source.name} and use:\n"
                        f"    export {str(k).upper().replace('-', '_')}=<value>"
                    )
                _scan(v, full)

    _scan(data, "")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}'; ignored.",
                UserWarning,
                stacklevel=4,
            )


def validate_config(cfg: RagConfig) -> None:
    """Raise ConfigError if any numeric setting is out of range."""
    ch = cfg.chunking
    if ch.chunk_size < 1:
        raise ConfigError(f"chunking.chunk_size must be >= 1, got {ch.chunk_size}")
    if not 0 <= ch.chunk_overlap < ch.chunk_size:
        raise ConfigError(
            f"chunking.chunk_overlap must be in [0, chunk_size), got {ch.chunk_overlap}"
        )
    if ch.max_chunks_per_file < 1:
        raise ConfigError(
            f"chunking.max_chunks_per_file must be >= 1, got {ch.max_chunks_per_file}"
        )

    em = cfg.embedding
    if em.dimension < 1:
        raise ConfigError(f"embedding.dimension must be >= 1, got {em.dimension}")
    if not 1 <= em.batch_size <= MAX_BATCH_SIZE:
        raise ConfigError(
            f"embedding.batch_size must be in [1, {MAX_BATCH_SIZE}], got {em.batch_size}"
        )

    rt = cfg.retry
    if rt.max_retries < 1:
        raise ConfigError(f"retry.max_retries must be >= 1, got {rt.max_retries}")
    if rt.base_delay_ms < 0 or rt.max_delay_ms < 0:
        raise ConfigError("retry delays must be >= 0")
    if rt.multiplier < 1.0:
        raise ConfigError(f"retry.multiplier must be >= 1.0, got {rt.multiplier}")
    if not 0.0 <= rt.jitter_factor < 1.0:
        raise ConfigError(f"retry.jitter_factor must be in [0.0, 1.0), got {rt.jitter_factor}")

    ca = cfg.cache
    if ca.ttl_seconds <= 0:
        raise ConfigError(f"cache.ttl_seconds must be > 0, got {ca.ttl_seconds}")
    if ca.max_entries < 1:
        raise ConfigError(f"cache.max_entries must be >= 1, got {ca.max_entries}")

    if cfg.retrieval.top_k < 1:
        raise ConfigError(f"retrieval.top_k must be >= 1, got {cfg.retrieval.top_k}")
    if cfg.retrieval.max_context_documents < 1:
        raise ConfigError(
            "retrieval.max_context_documents must be >= 1, "
            f"got {cfg.retrieval.max_context_documents}"
        )
    if cfg.ingestion.parallelism < 1:
        raise ConfigError(
            f"ingestion.parallelism must be >= 1, got {cfg.ingestion.parallelism}"
        )


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _opt_str(value: Any) -> str | None:
    return None if value is None else str(value)


def _cfg_from_dict(data: dict[str, Any]) -> RagConfig:
    """Build a *RagConfig* from a merged raw YAML dict."""
    cfg = RagConfig()

    try:
        if "chunking" in data:
            c = data["chunking"] or {}
            cfg.chunking = ChunkingCfg(
                chunk_size=int(c.get("chunk_size", cfg.chunking.chunk_size)),
                chunk_overlap=int(c.get("chunk_overlap", cfg.chunking.chunk_overlap)),
                max_chunks_per_file=int(
                    c.get("max_chunks_per_file", cfg.chunking.max_chunks_per_file)
                ),
            )

        if "embedding" in data:
            e = data["embedding"] or {}
            cfg.embedding = EmbeddingCfg(
                provider=str(e.get("provider", cfg.embedding.provider)).lower(),
                model=str(e.get("model", cfg.embedding.model)),
                dimension=int(e.get("dimension", cfg.embedding.dimension)),
                batch_size=int(e.get("batch_size", cfg.embedding.batch_size)),
                api_base=_opt_str(e.get("api_base")),
                api_version=_opt_str(e.get("api_version")),
                deployment=_opt_str(e.get("deployment")),
            )

        if "retry" in data:
            r = data["retry"] or {}
            cfg.retry = RetryCfg(
                max_retries=int(r.get("max_retries", cfg.retry.max_retries)),
                base_delay_ms=int(r.get("base_delay_ms", cfg.retry.base_delay_ms)),
                multiplier=float(r.get("multiplier", cfg.retry.multiplier)),
                jitter_factor=float(r.get("jitter_factor", cfg.retry.jitter_factor)),
                max_delay_ms=int(r.get("max_delay_ms", cfg.retry.max_delay_ms)),
                use_cache_fallback=bool(
                    r.get("use_cache_fallback", cfg.retry.use_cache_fallback)
                ),
            )

        if "cache" in data:
            ca = data["cache"] or {}
            cfg.cache = CacheCfg(
                ttl_seconds=float(ca.get("ttl_seconds", cfg.cache.ttl_seconds)),
                max_entries=int(ca.get("max_entries", cfg.cache.max_entries)),
                sweep_interval_seconds=float(
                    ca.get("sweep_interval_seconds", cfg.cache.sweep_interval_seconds)
                ),
            )

        if "retrieval" in data:
            rv = data["retrieval"] or {}
            cfg.retrieval = RetrievalCfg(
                top_k=int(rv.get("top_k", cfg.retrieval.top_k)),
                max_context_documents=int(
                    rv.get("max_context_documents", cfg.retrieval.max_context_documents)
                ),
            )

        if "ingestion" in data:
            i = data["ingestion"] or {}
            cfg.ingestion = IngestionCfg(
                parallelism=int(i.get("parallelism", cfg.ingestion.parallelism)),
                continue_on_error=bool(
                    i.get("continue_on_error", cfg.ingestion.continue_on_error)
                ),
                max_text_bytes=int(i.get("max_text_bytes", cfg.ingestion.max_text_bytes)),
            )

        if "storage" in data:
            s = data["storage"] or {}
            cfg.storage = StorageCfg(db_path=str(s.get("db_path", cfg.storage.db_path)))
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid config value: {exc}") from exc

    return cfg


def _apply_env_overrides(cfg: RagConfig) -> RagConfig:
    """Apply RAGCORE_* environment variable overrides."""
    if provider := os.environ.get("RAGCORE_EMBEDDING_PROVIDER"):
        cfg.embedding.provider = provider.lower()
    if model := os.environ.get("RAGCORE_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if db := os.environ.get("RAGCORE_DB"):
        cfg.storage.db_path = db
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> RagConfig:
    """Load and return a merged *RagConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *ragcore.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Returns:
        Fully merged and validated *RagConfig*.

    Raises:
        ConfigError: If global config contains API-key-like fields or a
            value is out of range.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    # Layer 1: global config
    if global_path.exists():
        raw_global = yaml.safe_load(global_path.read_text(encoding="utf-8")) or {}
        _check_no_api_keys(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    # Layer 2: per-project config
    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = yaml.safe_load(project_cfg_path.read_text(encoding="utf-8")) or {}
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _cfg_from_dict(merged)

    # Layer 3: env var overrides
    cfg = _apply_env_overrides(cfg)

    validate_config(cfg)
    return cfg


def ensure_global_config(
    global_config_path: Path | None = None,
) -> Path:
    """Create ``~/.ragcore/config.yaml`` with defaults if it does not exist.

    Creates parent directory with mode 0o700 and the config file with
    mode 0o600 (owner-readable only).

    Args:
        global_config_path: Override path (for testing).

    Returns:
        Path to the global config file.
    """
    target = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    target.parent.mkdir(mode=0o700, parents=True, exist_ok=True)

    if not target.exists():
        content = (
            "# ragcore global configuration: defaults only.\n"
            "# NEVER store API keys here, use environment variables:\n"
            "#   export OPENAI_API_KEY=sk-...\n"
            "#   export AZURE_OPENAI_API_KEY=...\n"
            "\n"
            "embedding:\n"
            "  provider: openai\n"
            "  model: text-embedding-3-small\n"
            "  dimension: 1536\n"
            "\n"
            "chunking:\n"
            "  chunk_size: 512\n"
            "  chunk_overlap: 128\n"
            "  max_chunks_per_file: 200\n"
        )
        target.write_text(content, encoding="utf-8")
        target.chmod(0o600)

    return target
