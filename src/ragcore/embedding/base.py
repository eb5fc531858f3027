"""Abstract embedding client shared by every provider adapter."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Sequence

from ragcore.config import MAX_BATCH_SIZE
from ragcore.embedding.retry import RetryPolicy
from ragcore.errors import DimensionMismatchError, ValidationError

logger = logging.getLogger(__name__)


class MalformedResponseError(RuntimeError):
    """Provider answered, but not with one vector per input. Retryable."""


class BaseEmbeddingClient(ABC):
    """Batching, retry and dimension checks around one provider call.

    Subclasses implement ``_embed_call()``: one request for up to
    ``batch_size`` texts returning one vector per text, in order.

    Args:
        model_id: Model identifier as configured (no litellm prefix).
        embedding_dimension: Required length of every returned vector.
        batch_size: Texts per provider call, clamped to ``[1, 100]``.
        retry_policy: Policy wrapping every provider call. Defaults to a
            cache-less ``RetryPolicy()``.
    """

    provider: str = ""

    def __init__(
        self,
        model_id: str,
        embedding_dimension: int = 1536,
        batch_size: int = 10,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        if not model_id:
            raise ValidationError("model_id must not be empty")
        if embedding_dimension < 1:
            raise ValidationError("embedding_dimension must be >= 1")
        self.model_id = model_id
        self.embedding_dimension = embedding_dimension
        self.batch_size = max(1, min(MAX_BATCH_SIZE, batch_size))
        self.retry_policy = retry_policy or RetryPolicy()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def embed(self, text: str, *, cancel: asyncio.Event | None = None) -> list[float]:
        """Embed a single text.

        Raises:
            ValidationError: *text* is empty or whitespace.
            DimensionMismatchError: The provider returned a vector of the wrong length.
            ProviderError: Retries and cache fallback exhausted.
            OperationCancelledError: *cancel* was set.
        """
        _check_text(text, 0)
        vectors = await self._embed_with_retry([text], cancel)
        return vectors[0]

    async def embed_batch(
        self,
        texts: Sequence[str],
        *,
        cancel: asyncio.Event | None = None,
    ) -> list[list[float]]:
        """Embed *texts*, ``batch_size`` per provider call. Order is preserved."""
        return [vector async for vector in self.iter_embed_batch(texts, cancel=cancel)]

    async def iter_embed_batch(
        self,
        texts: Sequence[str],
        *,
        cancel: asyncio.Event | None = None,
    ) -> AsyncIterator[list[float]]:
        """Yield one vector per text, in input order, one provider call per batch."""
        for i, text in enumerate(texts):
            _check_text(text, i)
        for offset in range(0, len(texts), self.batch_size):
            batch = list(texts[offset : offset + self.batch_size])
            for vector in await self._embed_with_retry(batch, cancel):
                yield vector

    # ------------------------------------------------------------------
    # Provider hook
    # ------------------------------------------------------------------

    @property
    @abstractmethod
    def litellm_model(self) -> str:
        """Model string passed to litellm, e.g. ``openai/text-embedding-3-small``."""

    @abstractmethod
    async def _embed_call(self, texts: list[str]) -> list[list[float]]:
        """Perform one provider request for *texts*."""

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _embed_with_retry(
        self,
        texts: list[str],
        cancel: asyncio.Event | None,
    ) -> list[list[float]]:
        async def operation() -> list[list[float]]:
            vectors = await self._embed_call(texts)
            if len(vectors) != len(texts):
                raise MalformedResponseError(
                    f"{self.provider} returned {len(vectors)} embedding(s) for {len(texts)} input(s)"
                )
            for vector in vectors:
                if len(vector) != self.embedding_dimension:
                    raise DimensionMismatchError(
                        self.embedding_dimension, len(vector), f"{self.provider}/{self.model_id}"
                    )
            return vectors

        return await self.retry_policy.execute(
            operation, texts, self.model_id, self.provider, cancel=cancel
        )

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(model_id={self.model_id!r}, "
            f"dimension={self.embedding_dimension}, batch_size={self.batch_size})"
        )


def _check_text(text: str, index: int) -> None:
    if not isinstance(text, str) or not text.strip():
        raise ValidationError(f"Text at index {index} is empty")
