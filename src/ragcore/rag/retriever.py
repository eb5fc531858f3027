"""Dense retriever: embed the query, search the vector store, one hit per file.

Flow:
  1. The query is embedded with the same client (model, dimension) used at ingest.
  2. ``VectorStore.query`` returns the ``top_k`` nearest chunks, optionally
     filtered by repo, path pattern or metadata.
  3. ``dedupe`` keeps the best chunk of each file, capped at
     ``max_context_documents`` files.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from ragcore.db.models import ScoredChunk
from ragcore.db.store import VectorStore
from ragcore.embedding.base import BaseEmbeddingClient
from ragcore.errors import ValidationError
from ragcore.rag.dedup import dedupe

logger = logging.getLogger(__name__)


@dataclass
class RetrieverConfig:
    """Configuration for the retriever.

    Attributes:
        top_k: Raw hits fetched from the store before deduplication.
        max_context_documents: Distinct files returned.
    """

    top_k: int = 10
    max_context_documents: int = 5

    @classmethod
    def from_config(cls, cfg) -> RetrieverConfig:
        """Build from a ``RagConfig``."""
        return cls(
            top_k=cfg.retrieval.top_k,
            max_context_documents=cfg.retrieval.max_context_documents,
        )


async def retrieve(
    query: str,
    client: BaseEmbeddingClient,
    store: VectorStore,
    config: RetrieverConfig | None = None,
    *,
    filters: dict[str, Any] | None = None,
    cancel: asyncio.Event | None = None,
) -> list[ScoredChunk]:
    """Return the best chunk of up to ``max_context_documents`` files, best-first.

    Raises:
        ValidationError: *query* is blank.
        DimensionMismatchError: The client and the store disagree on dimension.
        ProviderError: The query could not be embedded.
        StorageError: The store rejected the query.
    """
    if not query or not query.strip():
        raise ValidationError("query must not be empty")
    config = config or RetrieverConfig()

    embedding = await client.embed(query, cancel=cancel)
    hits = await asyncio.to_thread(store.query, embedding, config.top_k, filters)
    results = dedupe(hits, config.max_context_documents)
    logger.debug(
        "Query matched %d chunk(s) across %d file(s)", len(hits), len(results)
    )
    return results
