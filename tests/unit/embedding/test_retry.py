"""Tests for the retry / cache-fallback policy."""

from __future__ import annotations

import asyncio
import random

import pytest

from ragcore.config import RetryCfg
from ragcore.embedding.cache import EmbeddingCache
from ragcore.embedding.retry import RetryPolicy
from ragcore.errors import OperationCancelledError, ProviderError, ValidationError

TEXTS = ["alpha", "beta"]
VECTORS = [[1.0, 0.0], [0.0, 1.0]]


class ScriptedOperation:
    """Fails with the queued exceptions, then returns VECTORS."""

    def __init__(self, *failures: Exception) -> None:
        self.failures = list(failures)
        self.calls = 0

    async def __call__(self) -> list[list[float]]:
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return [list(v) for v in VECTORS]


def _run(policy: RetryPolicy, op, texts=TEXTS, cancel=None):
    return asyncio.run(policy.execute(op, texts, "m1", "openai", cancel=cancel))


def _fast(**kwargs) -> RetryPolicy:
    kwargs.setdefault("base_delay_ms", 0)
    return RetryPolicy(**kwargs)


# ------------------------------------------------------------------
# Delays
# ------------------------------------------------------------------


def test_nominal_delays_double():
    policy = RetryPolicy(max_retries=4, base_delay_ms=100, multiplier=2.0)
    assert [policy.nominal_delay_ms(n) for n in (1, 2, 3, 4)] == [0.0, 100, 200, 400]
    assert policy.expected_delays() == [0.1, 0.2, 0.4]


def test_nominal_delay_capped():
    policy = RetryPolicy(max_retries=10, base_delay_ms=1000, max_delay_ms=3000)
    assert policy.nominal_delay_ms(8) == 3000


def test_jitter_within_bounds():
    policy = RetryPolicy(base_delay_ms=100, jitter_factor=0.2, rng=random.Random(7))
    for _ in range(50):
        assert 0.08 <= policy.compute_delay(2) <= 0.12


def test_jitter_is_reproducible_with_seed():
    a = RetryPolicy(rng=random.Random(42))
    b = RetryPolicy(rng=random.Random(42))
    assert [a.compute_delay(n) for n in (2, 3)] == [b.compute_delay(n) for n in (2, 3)]


def test_first_attempt_has_no_delay():
    assert RetryPolicy().compute_delay(1) == 0.0


@pytest.mark.parametrize(
    "kwargs",
    [
        {"max_retries": 0},
        {"base_delay_ms": -1},
        {"multiplier": 0.5},
        {"jitter_factor": 1.0},
    ],
)
def test_invalid_policy(kwargs):
    with pytest.raises(ValueError):
        RetryPolicy(**kwargs)


def test_from_config():
    cache = EmbeddingCache()
    policy = RetryPolicy.from_config(RetryCfg(max_retries=5, base_delay_ms=50), cache)
    assert policy.max_retries == 5
    assert policy.base_delay_ms == 50
    assert policy.cache is cache


# ------------------------------------------------------------------
# Execution
# ------------------------------------------------------------------


def test_success_first_try():
    op = ScriptedOperation()
    assert _run(_fast(), op) == VECTORS
    assert op.calls == 1


def test_success_after_transient_failures():
    op = ScriptedOperation(RuntimeError("429"), RuntimeError("503"))
    assert _run(_fast(max_retries=3), op) == VECTORS
    assert op.calls == 3


def test_exhaustion_raises_provider_error():
    boom = RuntimeError("503 Service Unavailable")
    op = ScriptedOperation(boom, boom, boom)
    with pytest.raises(ProviderError) as exc_info:
        _run(_fast(max_retries=3), op)
    err = exc_info.value
    assert err.provider == "openai"
    assert err.model_id == "m1"
    assert err.attempts == 3
    assert err.__cause__ is boom
    assert "openai" in str(err)
    assert op.calls == 3


def test_validation_error_not_retried():
    op = ScriptedOperation(ValidationError("bad input"))
    with pytest.raises(ValidationError):
        _run(_fast(max_retries=3), op)
    assert op.calls == 1


def test_success_populates_cache():
    cache = EmbeddingCache()
    _run(_fast(cache=cache), ScriptedOperation())
    assert cache.get("alpha", "m1") == VECTORS[0]
    assert cache.get("beta", "m1") == VECTORS[1]


def test_cache_fallback_when_every_text_cached():
    cache = EmbeddingCache()
    cache.set("alpha", "m1", [5.0, 5.0])
    cache.set("beta", "m1", [6.0, 6.0])
    op = ScriptedOperation(RuntimeError("down"), RuntimeError("down"))
    assert _run(_fast(max_retries=2, cache=cache), op) == [[5.0, 5.0], [6.0, 6.0]]


def test_partial_cache_is_not_used():
    cache = EmbeddingCache()
    cache.set("alpha", "m1", [5.0, 5.0])
    op = ScriptedOperation(RuntimeError("down"))
    with pytest.raises(ProviderError):
        _run(_fast(max_retries=1, cache=cache), op)


def test_cache_fallback_disabled():
    cache = EmbeddingCache()
    for text in TEXTS:
        cache.set(text, "m1", [1.0, 1.0])
    op = ScriptedOperation(RuntimeError("down"))
    with pytest.raises(ProviderError):
        _run(_fast(max_retries=1, cache=cache, use_cache_fallback=False), op)


def test_cache_is_per_model():
    cache = EmbeddingCache()
    for text in TEXTS:
        cache.set(text, "other-model", [1.0, 1.0])
    with pytest.raises(ProviderError):
        _run(_fast(max_retries=1, cache=cache), ScriptedOperation(RuntimeError("down")))


# ------------------------------------------------------------------
# Cancellation
# ------------------------------------------------------------------


def test_cancel_before_first_attempt():
    async def scenario():
        cancel = asyncio.Event()
        cancel.set()
        op = ScriptedOperation()
        with pytest.raises(OperationCancelledError):
            await RetryPolicy().execute(op, TEXTS, "m1", "openai", cancel=cancel)
        return op.calls

    assert asyncio.run(scenario()) == 0


def test_cancel_interrupts_retry_delay():
    policy = RetryPolicy(max_retries=3, base_delay_ms=60_000, max_delay_ms=60_000)

    async def scenario():
        loop = asyncio.get_running_loop()
        cancel = asyncio.Event()
        op = ScriptedOperation(RuntimeError("down"))
        loop.call_later(0.05, cancel.set)
        started = loop.time()
        with pytest.raises(OperationCancelledError):
            await policy.execute(op, TEXTS, "m1", "openai", cancel=cancel)
        return loop.time() - started, op.calls

    elapsed, calls = asyncio.run(scenario())
    assert elapsed < 5.0
    assert calls == 1


def test_retry_waits_without_cancel_event():
    policy = RetryPolicy(max_retries=2, base_delay_ms=10, jitter_factor=0.0)
    op = ScriptedOperation(RuntimeError("once"))
    assert _run(policy, op) == VECTORS
    assert op.calls == 2
