"""Deterministic reranking of retrieved sources.

dedupe by source id (keep higher score) → sort by score desc → tie-break by
source id asc → truncate to n. Same input list always yields the same output.
"""

from __future__ import annotations

from collections.abc import Iterable

from assistant_engine.core.logging import get_logger
from assistant_engine.core.schemas_assistant import RetrievedSource

logger = get_logger(__name__)

DEFAULT_TOP_N = 12


def _dedupe(candidates: Iterable[RetrievedSource]) -> list[RetrievedSource]:
    """Keep one candidate per source id, the one with the higher score."""
    best: dict[str, RetrievedSource] = {}
    for candidate in candidates:
        existing = best.get(candidate.source_id)
        if existing is None:
            best[candidate.source_id] = candidate
            continue
        # equal scores: lower type name wins so the choice never depends on arrival order
        if (candidate.similarity_score, existing.source_type) > (
            existing.similarity_score,
            candidate.source_type,
        ):
            best[candidate.source_id] = candidate
    return list(best.values())


def rerank(candidates: Iterable[RetrievedSource], n: int = DEFAULT_TOP_N) -> list[RetrievedSource]:
    """Merge, dedupe and order candidates into at most ``n`` sources.

    Args:
        candidates: Sources from every retrieval sub-query, in any order
        n: Maximum number of sources to keep

    Returns:
        New list, strictly ordered by (-score, source_id)
    """
    if n <= 0:
        return []

    unique = _dedupe(candidates)
    ranked = sorted(unique, key=lambda s: (-s.similarity_score, s.source_id))

    if len(ranked) > n:
        logger.debug(f"Reranked {len(unique)} unique sources → top {n}")
    return ranked[:n]
