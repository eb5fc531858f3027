"""Retry with exponential backoff, jitter and cache fallback for provider calls.

Attempt 1 runs immediately. Before attempt ``n >= 2`` the policy waits::

    min(max_delay_ms, base_delay_ms * multiplier ** (n - 2)) * U(1 - jitter, 1 + jitter)

The wait is an asyncio wait on the cancel event, so a cancellation request
interrupts it at once. When every attempt fails, texts that are all present in
the cache are served from it; otherwise a ``ProviderError`` is raised.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable, Sequence

from ragcore.embedding.cache import EmbeddingCache
from ragcore.errors import OperationCancelledError, ProviderError, ValidationError

logger = logging.getLogger(__name__)

Operation = Callable[[], Awaitable[list[list[float]]]]


class RetryPolicy:
    """Retry/fallback policy shared by every embedding adapter.

    Args:
        max_retries: Total number of attempts (>= 1).
        base_delay_ms: Delay before the second attempt.
        multiplier: Backoff factor between consecutive delays.
        jitter_factor: Relative jitter in ``[0, 1)``.
        max_delay_ms: Upper bound of the un-jittered delay.
        use_cache_fallback: Serve cached vectors once every attempt failed.
        cache: Cache written on success and read on fallback.
        rng: Random source for jitter, injectable for tests.
    """

    def __init__(
        self,
        max_retries: int = 3,
        base_delay_ms: float = 100,
        multiplier: float = 2.0,
        jitter_factor: float = 0.20,
        max_delay_ms: float = 10_000,
        use_cache_fallback: bool = True,
        cache: EmbeddingCache | None = None,
        rng: random.Random | None = None,
    ) -> None:
        if max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        if base_delay_ms < 0 or max_delay_ms < 0:
            raise ValueError("delays must be >= 0")
        if multiplier < 1.0:
            raise ValueError("multiplier must be >= 1.0")
        if not 0.0 <= jitter_factor < 1.0:
            raise ValueError("jitter_factor must be in [0.0, 1.0)")
        self.max_retries = max_retries
        self.base_delay_ms = base_delay_ms
        self.multiplier = multiplier
        self.jitter_factor = jitter_factor
        self.max_delay_ms = max_delay_ms
        self.use_cache_fallback = use_cache_fallback
        self.cache = cache
        self._rng = rng or random.Random()

    @classmethod
    def from_config(cls, cfg, cache: EmbeddingCache | None = None) -> RetryPolicy:
        """Build from a ``RetryCfg``."""
        return cls(
            max_retries=cfg.max_retries,
            base_delay_ms=cfg.base_delay_ms,
            multiplier=cfg.multiplier,
            jitter_factor=cfg.jitter_factor,
            max_delay_ms=cfg.max_delay_ms,
            use_cache_fallback=cfg.use_cache_fallback,
            cache=cache,
        )

    # ------------------------------------------------------------------
    # Delays
    # ------------------------------------------------------------------

    def nominal_delay_ms(self, attempt: int) -> float:
        """Un-jittered delay in milliseconds before *attempt* (1-based)."""
        if attempt < 2:
            return 0.0
        return min(self.max_delay_ms, self.base_delay_ms * self.multiplier ** (attempt - 2))

    def compute_delay(self, attempt: int) -> float:
        """Jittered delay in seconds before *attempt* (1-based)."""
        nominal = self.nominal_delay_ms(attempt)
        if nominal == 0.0:
            return 0.0
        factor = self._rng.uniform(1.0 - self.jitter_factor, 1.0 + self.jitter_factor)
        return nominal * factor / 1000.0

    def expected_delays(self) -> list[float]:
        """Nominal delays in seconds between the configured attempts."""
        return [self.nominal_delay_ms(n) / 1000.0 for n in range(2, self.max_retries + 1)]

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(
        self,
        operation: Operation,
        texts: Sequence[str],
        model_id: str,
        provider: str,
        *,
        cancel: asyncio.Event | None = None,
    ) -> list[list[float]]:
        """Run *operation* under the policy.

        Args:
            operation: Zero-argument coroutine factory performing one provider
                call for *texts*; returns one vector per text.
            texts: Inputs of the call, used as cache keys.
            model_id: Model identifier, part of the cache key.
            provider: Provider name for logs and errors.
            cancel: Cooperative cancellation signal.

        Returns:
            One vector per text, from the provider or from the cache fallback.

        Raises:
            ValidationError: The operation rejected its input (not retried).
            OperationCancelledError: *cancel* was set before or between attempts.
            ProviderError: Every attempt failed and the cache could not cover
                every text.
        """
        last_exc: Exception | None = None
        attempts = 0

        for attempt in range(1, self.max_retries + 1):
            if attempt > 1:
                delay = self.compute_delay(attempt)
                logger.debug(
                    "Retry %d/%d for embedding [%s] after %.0f ms",
                    attempt, self.max_retries, provider, delay * 1000,
                )
                await self._wait(delay, cancel)
            _check_cancel(cancel)

            attempts = attempt
            try:
                vectors = await operation()
            except (ValidationError, OperationCancelledError):
                raise
            except Exception as exc:
                last_exc = exc
                logger.warning(
                    "Attempt %d/%d failed for embedding [%s] model=%s: %s",
                    attempt, self.max_retries, provider, model_id, exc,
                )
                continue

            if self.cache is not None:
                for text, vector in zip(texts, vectors):
                    self.cache.set(text, model_id, vector)
            return vectors

        if self.use_cache_fallback and self.cache is not None:
            cached = [self.cache.get(text, model_id) for text in texts]
            if cached and all(v is not None for v in cached):
                logger.info(
                    "All %d attempts failed for embedding [%s]; served %d vector(s) from cache",
                    attempts, provider, len(cached),
                )
                return cached  # type: ignore[return-value]
            logger.warning(
                "Cache fallback unavailable for embedding [%s]: %d of %d text(s) cached",
                provider, sum(v is not None for v in cached), len(cached),
            )

        raise ProviderError(
            f"Embedding [{provider}] model '{model_id}' failed after {attempts} attempt(s): {last_exc}",
            provider=provider,
            model_id=model_id,
            attempts=attempts,
        ) from last_exc

    @staticmethod
    async def _wait(delay: float, cancel: asyncio.Event | None) -> None:
        if cancel is None:
            await asyncio.sleep(delay)
            return
        try:
            await asyncio.wait_for(cancel.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
        raise OperationCancelledError("Embedding cancelled while waiting to retry")


def _check_cancel(cancel: asyncio.Event | None) -> None:
    if cancel is not None and cancel.is_set():
        raise OperationCancelledError("Embedding cancelled")
