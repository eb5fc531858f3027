"""ragcore ingest pipeline: tokenizer, chunker, metadata enrichment, orchestrator."""

from ragcore.ingest.chunker import Chunker, ChunkOptions, ChunkSet, TextChunk
from ragcore.ingest.orchestrator import (
    IngestionDocument,
    IngestionError,
    IngestionResult,
    IngestionService,
)
from ragcore.ingest.tokenizer import (
    ApproximateTokenizer,
    TiktokenTokenizer,
    Tokenizer,
    get_tokenizer,
)

__all__ = [
    "ApproximateTokenizer",
    "Chunker",
    "ChunkOptions",
    "ChunkSet",
    "IngestionDocument",
    "IngestionError",
    "IngestionResult",
    "IngestionService",
    "TextChunk",
    "TiktokenTokenizer",
    "Tokenizer",
    "get_tokenizer",
]
