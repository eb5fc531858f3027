"""Error taxonomy for the ingestion and retrieval core.

ValidationError    bad input (empty text, dimension mismatch, malformed file
                   identity). Fails immediately, never retried.
ProviderError      embedding provider failure that survived every retry
                   attempt and the cache fallback.
StorageError       persistence rejection or index-engine failure.
CapacityWarning    chunk cap reached. A warning, not an error.
"""

from __future__ import annotations

from ragcore.config import ConfigError


class RagCoreError(Exception):
    """Base class for every error raised by ragcore."""


class ValidationError(RagCoreError, ValueError):
    """Raised when input is invalid. Never retried."""


class DimensionMismatchError(ValidationError):
    """Raised when a vector's length differs from the configured dimension."""

    def __init__(self, expected: int, actual: int, context: str = "") -> None:
        self.expected = expected
        self.actual = actual
        suffix = f" ({context})" if context else ""
        super().__init__(
            f"Embedding dimension mismatch: expected {expected}, got {actual}{suffix}"
        )


class ProviderError(RagCoreError):
    """Raised when an embedding provider call fails after retries and cache fallback."""

    def __init__(self, message: str, *, provider: str, model_id: str = "", attempts: int = 0) -> None:
        self.provider = provider
        self.model_id = model_id
        self.attempts = attempts
        super().__init__(message)


class UnknownProviderError(ConfigError):
    """Raised when the configured embedding provider name is not registered."""

    def __init__(self, name: str, supported: list[str]) -> None:
        self.name = name
        self.supported = supported
        super().__init__(
            f"Unknown embedding provider: '{name}'. "
            f"Supported providers: {', '.join(supported)}."
        )


class StorageError(RagCoreError):
    """Raised when the vector store rejects a read or write."""


class OperationCancelledError(RagCoreError):
    """Raised when a cooperative cancellation signal is observed."""


class CapacityWarning(UserWarning):
    """Emitted when a file produces more chunks than ``max_chunks_per_file``."""


__all__ = [
    "CapacityWarning",
    "ConfigError",
    "DimensionMismatchError",
    "OperationCancelledError",
    "ProviderError",
    "RagCoreError",
    "StorageError",
    "UnknownProviderError",
    "ValidationError",
]
