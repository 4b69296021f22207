"""Heuristic capability detection for assistant questions.

Pure and deterministic: an ordered list of phrase rules is scored against the
lower-cased message; the highest score wins and ties go to the rule listed
first. Messages matching nothing fall back to GENERAL_CHAT.
"""

import re

from assistant_engine.core.logging import get_logger
from assistant_engine.core.schemas_assistant import Capability, SourceType

logger = get_logger(__name__)

DEFAULT_CAPABILITY = Capability.GENERAL_CHAT

# Order matters: earlier rules win ties.
CAPABILITY_RULES: list[tuple[Capability, list[str]]] = [
    (
        Capability.COMPLIANCE_CHECK,
        [
            "compliance",
            "trademark",
            "copyright",
            "violation",
            "policy",
            "prohibited",
            "banned",
            "infring",
            "allowed to sell",
            "suspended",
        ],
    ),
    (
        Capability.ALERT_EXPLANATION,
        [
            "alert",
            "warning",
            "risk",
            "flagged",
            "notification",
            "why did i get",
        ],
    ),
    (
        Capability.COMPETITOR_INTEL,
        [
            "competitor",
            "competing",
            "competition listing",
            "other seller",
            "top seller",
            "bestseller",
            "similar shop",
            "shop performance",
            "pricing strategy",
        ],
    ),
    (
        Capability.KEYWORD_INSIGHTS,
        [
            "keyword",
            "search term",
            "search volume",
            "term",
            "tags",
            "why is",
            "what does",
            "explain",
            "meaning of",
            "related keyword",
        ],
    ),
    (
        Capability.MARKET_BRIEF,
        [
            "market",
            "niche",
            "industry",
            "overview",
            "trend",
            "opportunit",
            "brief",
            "state of",
            "demand",
        ],
    ),
    (
        Capability.RECOMMENDATIONS,
        [
            "recommend",
            "suggest",
            "should i",
            "what should",
            "improve",
            "optimi",
            "ideas",
            "best way",
        ],
    ),
    (
        Capability.SUPPORT_DOCS,
        [
            "how do i",
            "how to",
            "where can i",
            "help with",
            "account",
            "billing",
            "subscription",
            "extension",
            "documentation",
            "settings",
        ],
    ),
]

# Phrases match at a word start so "tags" does not fire on "vintage".
_COMPILED_RULES: list[tuple[Capability, list[re.Pattern[str]]]] = [
    (capability, [re.compile(r"\b" + re.escape(phrase)) for phrase in phrases])
    for capability, phrases in CAPABILITY_RULES
]

# Corpus source types each capability prefers at retrieval time
RETRIEVAL_SCOPES: dict[Capability, list[SourceType]] = {
    Capability.KEYWORD_INSIGHTS: ["keyword", "alert"],
    Capability.MARKET_BRIEF: ["keyword", "doc"],
    Capability.COMPETITOR_INTEL: ["listing", "keyword"],
    Capability.ALERT_EXPLANATION: ["alert", "doc"],
    Capability.RECOMMENDATIONS: ["keyword", "listing", "doc"],
    Capability.COMPLIANCE_CHECK: ["alert", "doc"],
    Capability.SUPPORT_DOCS: ["doc"],
    Capability.GENERAL_CHAT: ["doc", "keyword", "listing", "alert"],
}


def score_capabilities(message: str) -> dict[Capability, int]:
    """Count matching phrases per capability (rule order preserved)."""
    normalized = (message or "").lower().strip()
    return {
        capability: sum(1 for pattern in patterns if pattern.search(normalized))
        for capability, patterns in _COMPILED_RULES
    }


def detect(message: str) -> Capability:
    """Map a free-text question to a capability."""
    scores = score_capabilities(message)

    detected = DEFAULT_CAPABILITY
    best = 0
    for capability, score in scores.items():
        # strict ">" keeps the earliest rule on ties
        if score > best:
            best = score
            detected = capability

    logger.debug(
        f"Capability detected: {detected.value} (score={best})",
        extra={"extra_data": {"message_preview": (message or "")[:50]}},
    )
    return detected


def resolve_capability(explicit: Capability | None, message: str) -> Capability:
    """An explicit capability from the caller always overrides detection."""
    if explicit is not None:
        return explicit
    return detect(message)


def retrieval_scope(capability: Capability) -> list[SourceType]:
    """Source types to search for a capability."""
    return list(RETRIEVAL_SCOPES.get(capability, ["doc"]))
