"""Collapse query hits to the best chunk per file."""

from __future__ import annotations

from collections.abc import Iterable

from ragcore.db.models import ScoredChunk
from ragcore.errors import ValidationError

DEFAULT_MAX_DISTINCT_FILES = 5


def dedupe(
    results: Iterable[ScoredChunk],
    max_distinct_files: int = DEFAULT_MAX_DISTINCT_FILES,
) -> list[ScoredChunk]:
    """Keep the highest-scoring hit of each ``(repo_url, file_path)``.

    The survivors are sorted by descending score and truncated to
    *max_distinct_files*, so one large file cannot fill the whole context.
    On equal scores the hit seen first wins, both within a file and in the
    final ordering.

    Raises:
        ValidationError: *max_distinct_files* < 1.
    """
    if max_distinct_files < 1:
        raise ValidationError(f"max_distinct_files must be >= 1, got {max_distinct_files}")

    best: dict[tuple[str, str], ScoredChunk] = {}
    for hit in results:
        current = best.get(hit.file_key)
        if current is None or hit.score > current.score:
            best[hit.file_key] = hit

    ranked = sorted(best.values(), key=lambda h: h.score, reverse=True)
    return ranked[:max_distinct_files]
