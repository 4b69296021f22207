"""Prompt assembly for grounded answers under a token budget.

Layout:
    system   identity block + capability block (or a stored override)
    prompt   === RETRIEVED CONTEXT ===
             === CONVERSATION HISTORY ===
             === CURRENT USER QUERY ===
             === INSTRUCTIONS ===

When the estimate exceeds the budget, history goes first (oldest turn first),
then sources from the lowest-ranked end. The current question is never dropped.
"""

import math
from dataclasses import dataclass

from assistant_engine.context.prompt_blocks import (
    BLOCK_IDENTITY,
    BLOCK_INSTRUCTIONS,
    NO_SOURCES_TEXT,
    capability_block,
)
from assistant_engine.core.logging import get_logger
from assistant_engine.core.schemas_assistant import Capability, HistoryTurn, RetrievedSource

logger = get_logger(__name__)

DEFAULT_TOKEN_BUDGET = 6000

# (label, metadata keys checked in order, suffix)
_METRICS: list[tuple[str, tuple[str, ...], str]] = [
    ("Demand", ("demand", "demand_index"), ""),
    ("Competition", ("competition", "competition_score"), ""),
    ("Trend", ("trend", "trend_momentum"), "%"),
    ("Opportunity", ("opportunity", "ai_opportunity_score"), ""),
]


@dataclass
class BuiltPrompt:
    system: str
    prompt: str
    estimated_tokens: int
    sources_used: int
    history_used: int
    truncated: bool = False

    @property
    def text(self) -> str:
        """Single-string form for backends without a separate system field."""
        return combine(self.system, self.prompt)


def combine(system: str, prompt: str) -> str:
    """System and prompt as one string. The budget is measured on this form."""
    return f"=== SYSTEM INSTRUCTIONS ===\n{system}\n\n{prompt}"


def estimate_tokens(text: str) -> int:
    """Rough token estimate: ~4 chars per token, rounded up."""
    if not text:
        return 0
    return math.ceil(len(text) / 4)


def _metric_line(metadata: dict) -> str:
    details = []
    for label, keys, suffix in _METRICS:
        value = next((metadata[k] for k in keys if metadata.get(k) is not None), None)
        if value is not None:
            details.append(f"{label}: {value}{suffix}")
    return ", ".join(details)


def format_sources(sources: list[RetrievedSource]) -> str:
    """Render ranked sources as a numbered evidence list."""
    if not sources:
        return NO_SOURCES_TEXT

    lines = [f"Retrieved {len(sources)} relevant sources:", ""]
    for index, source in enumerate(sources, start=1):
        lines.append(f'{index}. [{source.source_type.upper()}] "{source.source_label}"')
        metrics = _metric_line(source.metadata)
        if metrics:
            lines.append(f"   {metrics}")
        lines.append(f"   Similarity: {source.similarity_score * 100:.1f}%")
    return "\n".join(lines)


def format_history(history: list[HistoryTurn]) -> str:
    lines = []
    for turn in history:
        speaker = "User" if turn.role == "user" else "Assistant"
        lines.append(f"{speaker}: {turn.content}")
    return "\n".join(lines)


def _render(
    sources: list[RetrievedSource],
    history: list[HistoryTurn],
    user_message: str,
) -> str:
    sections = ["=== RETRIEVED CONTEXT ===", format_sources(sources), ""]
    if history:
        sections += ["=== CONVERSATION HISTORY ===", format_history(history), ""]
    sections += [
        "=== CURRENT USER QUERY ===",
        user_message,
        "",
        "=== INSTRUCTIONS ===",
        BLOCK_INSTRUCTIONS,
    ]
    return "\n".join(sections)


def build_system(capability: Capability, system_override: str | None = None) -> str:
    role = system_override.strip() if system_override and system_override.strip() else capability_block(capability)
    return f"{BLOCK_IDENTITY}\n{role}"


def build_prompt(
    capability: Capability,
    sources: list[RetrievedSource],
    history: list[HistoryTurn],
    user_message: str,
    budget: int = DEFAULT_TOKEN_BUDGET,
    system_override: str | None = None,
) -> BuiltPrompt:
    """Assemble the prompt, shrinking history then sources until it fits.

    Args:
        capability: Selects the capability block
        sources: Reranked sources, best first
        history: Prior turns, oldest first
        user_message: The current question, always kept verbatim
        budget: Token ceiling for the combined system + prompt text
        system_override: Replaces the capability block when set

    Returns:
        BuiltPrompt. ``truncated`` is set when anything was dropped. If the
        question alone exceeds the budget the result is still over budget.
    """
    system = build_system(capability, system_override)

    kept_sources = list(sources)
    kept_history = list(history)
    prompt = _render(kept_sources, kept_history, user_message)

    while estimate_tokens(combine(system, prompt)) > budget:
        if kept_history:
            kept_history.pop(0)
        elif kept_sources:
            kept_sources.pop()
        else:
            break
        prompt = _render(kept_sources, kept_history, user_message)

    total = estimate_tokens(combine(system, prompt))
    truncated = len(kept_sources) < len(sources) or len(kept_history) < len(history)

    if truncated:
        logger.info(
            f"Prompt truncated to fit {budget} tokens: "
            f"history {len(history)}→{len(kept_history)}, sources {len(sources)}→{len(kept_sources)}"
        )
    if total > budget:
        logger.warning(f"Prompt still over budget after truncation: {total}/{budget} tokens")

    logger.debug(
        f"Prompt built for {capability.value}: ~{total} tokens",
        extra={"extra_data": {"sources": len(kept_sources), "history": len(kept_history)}},
    )

    return BuiltPrompt(
        system=system,
        prompt=prompt,
        estimated_tokens=total,
        sources_used=len(kept_sources),
        history_used=len(kept_history),
        truncated=truncated,
    )
