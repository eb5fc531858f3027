"""Embedding providers, retry policy and fallback cache."""

from ragcore.embedding.base import BaseEmbeddingClient
from ragcore.embedding.cache import EmbeddingCache
from ragcore.embedding.factory import PROVIDERS, create_embedding_client, supported_providers
from ragcore.embedding.providers import (
    AzureEmbeddingClient,
    OllamaEmbeddingClient,
    OpenAIEmbeddingClient,
)
from ragcore.embedding.retry import RetryPolicy

__all__ = [
    "AzureEmbeddingClient",
    "BaseEmbeddingClient",
    "EmbeddingCache",
    "OllamaEmbeddingClient",
    "OpenAIEmbeddingClient",
    "PROVIDERS",
    "RetryPolicy",
    "create_embedding_client",
    "supported_providers",
]
