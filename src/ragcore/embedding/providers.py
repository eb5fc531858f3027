"""Embedding provider adapters (OpenAI, Azure OpenAI / AI Foundry, Ollama).

Every adapter routes through ``litellm.aembedding``; they differ only in the
litellm model prefix and in how endpoint and credentials are resolved.
LiteLLM's own retries are disabled (``num_retries=0``): retries belong to the
injected ``RetryPolicy`` so that backoff, cancellation and cache fallback
behave the same for every provider.
"""

from __future__ import annotations

import logging
import os
from typing import Any

import litellm

from ragcore.config import ConfigError
from ragcore.embedding.base import BaseEmbeddingClient, MalformedResponseError
from ragcore.embedding.retry import RetryPolicy

logger = logging.getLogger(__name__)

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True

OLLAMA_DEFAULT_ENDPOINT = "http://localhost:11434"


# ------------------------------------------------------------------
# Provider → env var mapping
# ------------------------------------------------------------------

_PROVIDER_ENV: dict[str, tuple[str, ...]] = {
    "openai": ("OPENAI_API_KEY",),
    "azure": ("AZURE_OPENAI_API_KEY", "AZURE_API_KEY"),
    "ollama": (),  # Local, no key required
}


def _env_first(names: tuple[str, ...]) -> str | None:
    for name in names:
        if value := os.getenv(name):
            return value
    return None


def _extract_vectors(response: Any) -> list[list[float]]:
    """Return the vectors of a litellm EmbeddingResponse in input order."""
    data = getattr(response, "data", None)
    if data is None and isinstance(response, dict):
        data = response.get("data")
    if not isinstance(data, list):
        raise MalformedResponseError("embedding response has no data list")

    items: list[tuple[int, list[float]]] = []
    for position, item in enumerate(data):
        if isinstance(item, dict):
            vector = item.get("embedding")
            index = item.get("index", position)
        else:
            vector = getattr(item, "embedding", None)
            index = getattr(item, "index", position)
        if not isinstance(vector, list):
            raise MalformedResponseError(f"embedding response item {position} has no vector")
        items.append((index if isinstance(index, int) else position, vector))

    items.sort(key=lambda pair: pair[0])
    return [[float(x) for x in vector] for _, vector in items]


class _LiteLLMEmbeddingClient(BaseEmbeddingClient):
    """Shared ``litellm.aembedding`` call; subclasses supply model and kwargs."""

    def _call_kwargs(self) -> dict[str, Any]:
        return {}

    async def _embed_call(self, texts: list[str]) -> list[list[float]]:
        kwargs = {k: v for k, v in self._call_kwargs().items() if v is not None}
        response = await litellm.aembedding(
            model=self.litellm_model,
            input=texts,
            num_retries=0,
            **kwargs,
        )
        return _extract_vectors(response)


class OpenAIEmbeddingClient(_LiteLLMEmbeddingClient):
    """Hosted OpenAI embeddings (``openai/<model>``).

    Args:
        model_id: e.g. ``text-embedding-3-small``.
        api_key: Defaults to ``OPENAI_API_KEY``.
        api_base: Optional endpoint override (proxy, compatible server).
    """

    provider = "openai"

    def __init__(
        self,
        model_id: str = "text-embedding-3-small",
        *,
        api_key: str | None = None,
        api_base: str | None = None,
        embedding_dimension: int = 1536,
        batch_size: int = 10,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        super().__init__(model_id, embedding_dimension, batch_size, retry_policy)
        self.api_key = api_key or _env_first(_PROVIDER_ENV["openai"])
        if not self.api_key:
            raise ConfigError(
                "OpenAI API key not configured. Set the OPENAI_API_KEY environment variable."
            )
        self.api_base = api_base
        logger.debug("Initialized OpenAI embedding client model=%s endpoint=%s", model_id, api_base)

    @property
    def litellm_model(self) -> str:
        return f"openai/{self.model_id}"

    def _call_kwargs(self) -> dict[str, Any]:
        return {"api_key": self.api_key, "api_base": self.api_base}


class AzureEmbeddingClient(_LiteLLMEmbeddingClient):
    """Azure OpenAI / Azure AI Foundry deployments (``azure/<deployment>``).

    Args:
        model_id: Model the deployment serves (used for cache keys and logs).
        endpoint: Defaults to ``AZURE_OPENAI_ENDPOINT``. Required.
        api_key: Defaults to ``AZURE_OPENAI_API_KEY`` then ``AZURE_API_KEY``.
        api_version: Azure OpenAI REST API version.
        deployment: Deployment name. Defaults to *model_id*.
    """

    provider = "azure"

    def __init__(
        self,
        model_id: str = "text-embedding-3-small",
        *,
        endpoint: str | None = None,
        api_key: str | None = None,
        api_version: str | None = None,
        deployment: str | None = None,
        embedding_dimension: int = 1536,
        batch_size: int = 10,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        super().__init__(model_id, embedding_dimension, batch_size, retry_policy)
        self.endpoint = endpoint or os.getenv("AZURE_OPENAI_ENDPOINT")
        if not self.endpoint:
            raise ConfigError(
                "Azure OpenAI endpoint not configured. Set embedding.api_base in ragcore.yaml "
                "or the AZURE_OPENAI_ENDPOINT environment variable."
            )
        self.api_key = api_key or _env_first(_PROVIDER_ENV["azure"])
        if not self.api_key:
            raise ConfigError(
                "Azure OpenAI API key not configured. Set the AZURE_OPENAI_API_KEY environment variable."
            )
        self.api_version = api_version or os.getenv("AZURE_OPENAI_API_VERSION")
        self.deployment = deployment or model_id
        logger.debug(
            "Initialized Azure embedding client deployment=%s endpoint=%s",
            self.deployment,
            self.endpoint,
        )

    @property
    def litellm_model(self) -> str:
        return f"azure/{self.deployment}"

    def _call_kwargs(self) -> dict[str, Any]:
        return {
            "api_key": self.api_key,
            "api_base": self.endpoint,
            "api_version": self.api_version,
        }


class OllamaEmbeddingClient(_LiteLLMEmbeddingClient):
    """Local Ollama daemon (``ollama/<model>``). No API key.

    Vectors are not padded or truncated: a model whose output length differs
    from ``embedding_dimension`` is rejected.
    """

    provider = "ollama"

    def __init__(
        self,
        model_id: str = "nomic-embed-text",
        *,
        endpoint: str | None = None,
        embedding_dimension: int = 768,
        batch_size: int = 10,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        super().__init__(model_id, embedding_dimension, batch_size, retry_policy)
        self.endpoint = endpoint or os.getenv("OLLAMA_ENDPOINT") or OLLAMA_DEFAULT_ENDPOINT
        logger.debug("Initialized Ollama embedding client model=%s endpoint=%s", model_id, self.endpoint)

    @property
    def litellm_model(self) -> str:
        return f"ollama/{self.model_id}"

    def _call_kwargs(self) -> dict[str, Any]:
        return {"api_base": self.endpoint}
