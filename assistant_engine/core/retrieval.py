"""Context retrieval for assistant questions.

Two sub-queries run concurrently for every question:

    vector      embed query → search_rag_context RPC (pgvector, user/market scoped)
    structured  keywords table (explicit keyword ids + market keywords matching query words)

A failing sub-query is logged and skipped. Only when BOTH fail does retrieve()
raise RetrievalError. Every row crossing the data-store boundary is validated
into a RetrievedSource; rows that don't validate are dropped with a warning.

Usage:
    from assistant_engine.core.retrieval import retrieve

    result = await retrieve(
        query="best gift keywords for mothers day",
        user_id="0b7e...",
        capability=Capability.KEYWORD_INSIGHTS,
        filters=RetrievalFilters(market="etsy"),
    )
"""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from assistant_engine.core.capability_detector import retrieval_scope
from assistant_engine.core.embeddings import embed_query_async
from assistant_engine.core.logging import get_logger
from assistant_engine.core.schemas_assistant import (
    AskContext,
    Capability,
    RetrievedSource,
    SourceType,
)
from assistant_engine.db.supabase_client import get_supabase

logger = get_logger(__name__)

DEFAULT_TOP_K = 40

# Words too common to say anything about which keyword a question is about
_STOPWORDS = frozenset(
    {
        "a", "an", "and", "are", "best", "can", "do", "does", "for", "from",
        "good", "how", "i", "in", "is", "it", "me", "my", "of", "on", "or",
        "should", "the", "this", "to", "what", "which", "why", "with", "you",
        "keyword", "keywords",
    }
)
_WORD_RE = re.compile(r"[a-z0-9']+")
_MAX_QUERY_WORDS = 6

_KEYWORD_COLUMNS = (
    "id, term, market, demand_index, competition_score, "
    "ai_opportunity_score, trend_momentum, created_at"
)


class RetrievalError(Exception):
    """Raised when every retrieval sub-query failed."""


@dataclass
class RetrievalFilters:
    """Structured scope for a retrieval call."""

    market: str | None = None
    time_from: datetime | None = None
    time_to: datetime | None = None
    keyword_ids: list[str] = field(default_factory=list)
    source_types: list[SourceType] | None = None

    @classmethod
    def from_context(cls, context: AskContext | None) -> RetrievalFilters:
        if context is None:
            return cls()
        time_range = context.time_range
        return cls(
            market=context.market,
            time_from=time_range.from_ if time_range else None,
            time_to=time_range.to if time_range else None,
            keyword_ids=[str(k) for k in context.keyword_ids or []],
        )


@dataclass
class RetrievalResult:
    """Candidates from all sub-queries, best first, before dedupe."""

    candidates: list[RetrievedSource] = field(default_factory=list)
    vector_count: int = 0
    structured_count: int = 0
    failed: list[str] = field(default_factory=list)  # names of sub-queries that errored


# =============================================================================
# Row validation
# =============================================================================


def _validate_rows(rows: list[dict[str, Any]], origin: str) -> list[RetrievedSource]:
    """Validate raw rows, dropping the ones that don't fit RetrievedSource."""
    sources: list[RetrievedSource] = []
    dropped = 0
    for row in rows:
        try:
            sources.append(RetrievedSource.model_validate(row))
        except ValidationError as e:
            dropped += 1
            logger.debug(f"Dropped invalid {origin} row: {e.errors()[:1]}")
    if dropped:
        logger.warning(f"Dropped {dropped}/{len(rows)} invalid rows from {origin} retrieval")
    return sources


def query_terms(query: str) -> list[str]:
    """Significant lower-cased words of a question, in order, deduplicated."""
    seen: list[str] = []
    for word in _WORD_RE.findall(query.lower()):
        word = word.strip("'")
        if len(word) < 3 or word in _STOPWORDS or word in seen:
            continue
        seen.append(word)
    return seen[:_MAX_QUERY_WORDS]


def _keyword_row_to_source(row: dict[str, Any], score: float) -> dict[str, Any]:
    return {
        "source_id": row.get("id"),
        "source_type": "keyword",
        "source_label": row.get("term"),
        "similarity_score": score,
        "metadata": {
            "market": row.get("market"),
            "demand": row.get("demand_index"),
            "competition": row.get("competition_score"),
            "opportunity": row.get("ai_opportunity_score"),
            "trend": row.get("trend_momentum"),
        },
        "owner_scope": "global",
    }


def _term_overlap_score(term: str, words: list[str]) -> float:
    """Word-overlap relevance for a keyword matched by text rather than by vector."""
    term_lower = (term or "").lower()
    overlap = sum(1 for w in words if w in term_lower)
    if not overlap:
        return 0.0
    return min(0.5 + overlap * 0.1, 0.9)


# =============================================================================
# Sub-queries
# =============================================================================


async def _vector_search(
    query: str,
    user_id: str,
    capability: Capability,
    filters: RetrievalFilters,
    top_k: int,
) -> list[RetrievedSource]:
    """Embed the question and run the search_rag_context RPC."""
    embedding = await embed_query_async(query)

    params: dict[str, Any] = {
        "p_query_embedding": embedding,
        "p_user_id": user_id,
        "p_capability": capability.value,
        "p_source_types": filters.source_types or retrieval_scope(capability),
        "p_market": filters.market,
        "p_time_range_from": filters.time_from.isoformat() if filters.time_from else None,
        "p_time_range_to": filters.time_to.isoformat() if filters.time_to else None,
        "p_top_k": top_k,
    }

    def _run() -> list[dict[str, Any]]:
        return get_supabase().rpc("search_rag_context", params).execute().data or []

    rows = await asyncio.to_thread(_run)
    return _validate_rows(rows, "vector")


async def _structured_search(
    query: str,
    filters: RetrievalFilters,
    top_k: int,
) -> list[RetrievedSource]:
    """Look up keyword records named explicitly or matching the question's words."""
    words = query_terms(query)

    def _by_ids() -> list[dict[str, Any]]:
        if not filters.keyword_ids:
            return []
        response = (
            get_supabase()
            .table("keywords")
            .select(_KEYWORD_COLUMNS)
            .in_("id", filters.keyword_ids)
            .limit(top_k)
            .execute()
        )
        return response.data or []

    def _by_terms() -> list[dict[str, Any]]:
        if not words:
            return []
        query_builder = (
            get_supabase()
            .table("keywords")
            .select(_KEYWORD_COLUMNS)
            .or_(",".join(f"term.ilike.*{w}*" for w in words))
        )
        if filters.market:
            query_builder = query_builder.eq("market", filters.market)
        if filters.time_from:
            query_builder = query_builder.gte("created_at", filters.time_from.isoformat())
        if filters.time_to:
            query_builder = query_builder.lte("created_at", filters.time_to.isoformat())
        response = (
            query_builder.order("ai_opportunity_score", desc=True).limit(top_k).execute()
        )
        return response.data or []

    explicit_rows, matched_rows = await asyncio.gather(
        asyncio.to_thread(_by_ids),
        asyncio.to_thread(_by_terms),
    )

    # keywords the user pointed at directly are maximally relevant
    rows = [_keyword_row_to_source(r, 1.0) for r in explicit_rows]
    for row in matched_rows:
        score = _term_overlap_score(row.get("term", ""), words)
        if score > 0:
            rows.append(_keyword_row_to_source(row, score))

    return _validate_rows(rows, "structured")


# =============================================================================
# Public API
# =============================================================================


async def retrieve(
    query: str,
    user_id: str,
    capability: Capability,
    filters: RetrievalFilters | None = None,
    top_k: int = DEFAULT_TOP_K,
) -> RetrievalResult:
    """Gather candidate evidence for a question.

    Args:
        query: The user's question
        user_id: Owner used for row-level scoping of user/team sources
        capability: Resolved capability, narrows the source types searched
        filters: Optional market / time range / explicit keyword ids
        top_k: Upper bound on the number of candidates returned

    Returns:
        RetrievalResult with at most top_k candidates, best first

    Raises:
        RetrievalError: If both the vector and the structured sub-query failed
    """
    filters = filters or RetrievalFilters()
    if top_k <= 0:
        return RetrievalResult()

    vector, structured = await asyncio.gather(
        _vector_search(query, user_id, capability, filters, top_k),
        _structured_search(query, filters, top_k),
        return_exceptions=True,
    )

    failed: list[str] = []
    if isinstance(vector, Exception):
        logger.warning(f"Vector retrieval failed: {vector}")
        failed.append("vector")
        vector = []
    if isinstance(structured, Exception):
        logger.warning(f"Structured retrieval failed: {structured}")
        failed.append("structured")
        structured = []

    if len(failed) == 2:
        raise RetrievalError("All retrieval sub-queries failed")

    candidates = sorted(
        [*vector, *structured],
        key=lambda s: (-s.similarity_score, s.source_id),
    )[:top_k]

    logger.info(
        f"Retrieved {len(candidates)} candidates "
        f"(vector={len(vector)}, structured={len(structured)}, failed={failed or 'none'})",
        extra={"extra_data": {"capability": capability.value, "market": filters.market}},
    )

    return RetrievalResult(
        candidates=candidates,
        vector_count=len(vector),
        structured_count=len(structured),
        failed=failed,
    )
