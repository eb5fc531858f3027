"""Retrieval: vector search plus per-file deduplication."""

from ragcore.rag.dedup import dedupe
from ragcore.rag.retriever import RetrieverConfig, retrieve

__all__ = ["RetrieverConfig", "dedupe", "retrieve"]
