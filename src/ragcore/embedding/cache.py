"""In-memory embedding cache with TTL and a size cap.

Keys are ``"<model_id>:<sha256(model_id:text)>"``. Each entry records its
model id, so one model's entries can be cleared without touching the others,
including ids that share a ``name:tag`` prefix. Expired entries are dropped
lazily on read, by an opportunistic sweep at most once per ``sweep_interval``
seconds, and optionally by a background sweeper thread.

The cache is owned by whoever builds the embedding clients and injected into
them; there is no module-level instance.
"""

from __future__ import annotations

import hashlib
import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    model_id: str
    vector: list[float]
    expires_at: float


def cache_key(text: str, model_id: str) -> str:
    """Return the cache key for *text* embedded with *model_id*."""
    digest = hashlib.sha256(f"{model_id}:{text}".encode("utf-8")).hexdigest()
    return f"{model_id}:{digest}"


class EmbeddingCache:
    """Thread-safe TTL cache of embedding vectors.

    Args:
        ttl_seconds: Default lifetime of an entry.
        max_entries: Capacity. Oldest-inserted entries are evicted first.
        sweep_interval: Minimum seconds between opportunistic sweeps, and the
            period of the background sweeper.
        clock: Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        ttl_seconds: float = 3600,
        max_entries: int = 10_000,
        sweep_interval: float = 300,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._entries: OrderedDict[str, _Entry] = OrderedDict()
        self._lock = threading.Lock()
        self._last_sweep = clock()
        self._stop = threading.Event()
        self._sweeper: threading.Thread | None = None

    @classmethod
    def from_config(cls, cfg) -> EmbeddingCache:
        """Build from a ``CacheCfg``."""
        return cls(
            ttl_seconds=cfg.ttl_seconds,
            max_entries=cfg.max_entries,
            sweep_interval=cfg.sweep_interval_seconds,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get(self, text: str, model_id: str) -> list[float] | None:
        """Return the cached vector, or None if absent or expired."""
        key = cache_key(text, model_id)
        with self._lock:
            now = self._clock()
            self._maybe_sweep(now)
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expires_at <= now:
                del self._entries[key]
                return None
            return list(entry.vector)

    def set(
        self,
        text: str,
        model_id: str,
        vector: list[float],
        ttl: float | None = None,
    ) -> None:
        """Store *vector*; evicts the oldest entries while at capacity."""
        key = cache_key(text, model_id)
        with self._lock:
            now = self._clock()
            self._maybe_sweep(now)
            self._entries.pop(key, None)
            while len(self._entries) >= self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("Evicted cache entry %s", evicted)
            lifetime = self.ttl_seconds if ttl is None else ttl
            self._entries[key] = _Entry(model_id, list(vector), now + lifetime)

    def remove(self, text: str, model_id: str) -> bool:
        """Drop one entry. Returns True if it existed."""
        with self._lock:
            return self._entries.pop(cache_key(text, model_id), None) is not None

    def clear(self, model_id: str | None = None) -> int:
        """Remove every entry, or only those of *model_id*. Returns the count removed."""
        with self._lock:
            if model_id is None:
                removed = len(self._entries)
                self._entries.clear()
                return removed
            keys = [k for k, e in self._entries.items() if e.model_id == model_id]
            for key in keys:
                del self._entries[key]
            return len(keys)

    def sweep(self) -> int:
        """Remove every expired entry. Returns the count removed."""
        with self._lock:
            return self._sweep_locked(self._clock())

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # ------------------------------------------------------------------
    # Background sweeper
    # ------------------------------------------------------------------

    def start_sweeper(self) -> None:
        """Start a daemon thread that sweeps every ``sweep_interval`` seconds."""
        if self._sweeper is not None and self._sweeper.is_alive():
            return
        self._stop.clear()
        self._sweeper = threading.Thread(
            target=self._run_sweeper, name="ragcore-cache-sweeper", daemon=True
        )
        self._sweeper.start()

    def stop_sweeper(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout)
            self._sweeper = None

    def __enter__(self) -> EmbeddingCache:
        self.start_sweeper()
        return self

    def __exit__(self, *exc) -> None:
        self.stop_sweeper()

    # ------------------------------------------------------------------
    # Internals (caller holds self._lock)
    # ------------------------------------------------------------------

    def _maybe_sweep(self, now: float) -> None:
        if now - self._last_sweep >= self.sweep_interval:
            self._sweep_locked(now)

    def _sweep_locked(self, now: float) -> int:
        expired = [k for k, e in self._entries.items() if e.expires_at <= now]
        for key in expired:
            del self._entries[key]
        self._last_sweep = now
        if expired:
            logger.debug("Swept %d expired cache entries", len(expired))
        return len(expired)

    def _run_sweeper(self) -> None:
        while not self._stop.wait(self.sweep_interval):
            self.sweep()
