"""Build the configured embedding client.

``PROVIDERS`` maps every accepted provider name (aliases included) to a
builder taking the embedding config and the retry policy. Registering a new
provider is one entry in this dict.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from ragcore.config import EmbeddingCfg, RagConfig, RetryCfg
from ragcore.embedding.base import BaseEmbeddingClient
from ragcore.embedding.cache import EmbeddingCache
from ragcore.embedding.providers import (
    AzureEmbeddingClient,
    OllamaEmbeddingClient,
    OpenAIEmbeddingClient,
)
from ragcore.embedding.retry import RetryPolicy
from ragcore.errors import UnknownProviderError

logger = logging.getLogger(__name__)

Builder = Callable[[EmbeddingCfg, RetryPolicy], BaseEmbeddingClient]


def _openai(cfg: EmbeddingCfg, policy: RetryPolicy) -> BaseEmbeddingClient:
    return OpenAIEmbeddingClient(
        cfg.model,
        api_base=cfg.api_base,
        embedding_dimension=cfg.dimension,
        batch_size=cfg.batch_size,
        retry_policy=policy,
    )


def _azure(cfg: EmbeddingCfg, policy: RetryPolicy) -> BaseEmbeddingClient:
    return AzureEmbeddingClient(
        cfg.model,
        endpoint=cfg.api_base,
        api_version=cfg.api_version,
        deployment=cfg.deployment,
        embedding_dimension=cfg.dimension,
        batch_size=cfg.batch_size,
        retry_policy=policy,
    )


def _ollama(cfg: EmbeddingCfg, policy: RetryPolicy) -> BaseEmbeddingClient:
    return OllamaEmbeddingClient(
        cfg.model,
        endpoint=cfg.api_base,
        embedding_dimension=cfg.dimension,
        batch_size=cfg.batch_size,
        retry_policy=policy,
    )


PROVIDERS: dict[str, Builder] = {
    "openai": _openai,
    "foundry": _azure,
    "azure": _azure,
    "azureopenai": _azure,
    "ollama": _ollama,
}


def supported_providers() -> list[str]:
    """Sorted list of accepted provider names, aliases included."""
    return sorted(PROVIDERS)


def create_embedding_client(
    cfg: RagConfig | EmbeddingCfg,
    *,
    retry_policy: RetryPolicy | None = None,
    cache: EmbeddingCache | None = None,
) -> BaseEmbeddingClient:
    """Return the embedding client for the configured provider.

    Args:
        cfg: Full config (its ``embedding``/``retry`` sections are used) or an
            ``EmbeddingCfg`` alone.
        retry_policy: Policy to inject. Built from the retry config when omitted.
        cache: Cache for the built policy. Ignored when *retry_policy* is given.

    Raises:
        UnknownProviderError: The provider name is not registered.
        ConfigError: Credentials or endpoint for the provider are missing.
    """
    if isinstance(cfg, RagConfig):
        embedding_cfg, retry_cfg = cfg.embedding, cfg.retry
    else:
        embedding_cfg, retry_cfg = cfg, RetryCfg()

    name = (embedding_cfg.provider or "").strip().lower()
    builder = PROVIDERS.get(name)
    if builder is None:
        raise UnknownProviderError(embedding_cfg.provider, supported_providers())

    policy = retry_policy or RetryPolicy.from_config(retry_cfg, cache)
    client = builder(embedding_cfg, policy)
    logger.info(
        "Embedding provider %s (%s), dimension %d",
        name,
        client.litellm_model,
        client.embedding_dimension,
    )
    return client
