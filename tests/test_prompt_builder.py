"""Tests for prompt assembly under a token budget."""

from assistant_engine.context.prompt_blocks import BLOCK_IDENTITY, CAPABILITY_BLOCKS
from assistant_engine.context.prompt_builder import (
    build_prompt,
    estimate_tokens,
    format_history,
    format_sources,
)
from assistant_engine.core.schemas_assistant import Capability, HistoryTurn, RetrievedSource


def _src(i: int, **metadata) -> RetrievedSource:
    return RetrievedSource(
        source_id=f"src-{i}",
        source_type="keyword",
        source_label=f"keyword number {i}",
        similarity_score=0.9 - i * 0.01,
        metadata=metadata,
    )


def _history(n: int) -> list[HistoryTurn]:
    return [
        HistoryTurn(role="user" if i % 2 == 0 else "assistant", content=f"turn {i} " + "x" * 200)
        for i in range(n)
    ]


class TestEstimateTokens:
    def test_four_chars_per_token_rounded_up(self):
        assert estimate_tokens("") == 0
        assert estimate_tokens("abcd") == 1
        assert estimate_tokens("abcde") == 2

    def test_monotonic(self):
        texts = ["a" * n for n in range(0, 200, 7)]
        counts = [estimate_tokens(t) for t in texts]
        assert counts == sorted(counts)


class TestFormatting:
    def test_sources_include_label_metrics_and_similarity(self):
        text = format_sources([_src(1, demand_index=0.8, competition_score=0.3, trend_momentum=12)])
        assert '[KEYWORD] "keyword number 1"' in text
        assert "Demand: 0.8" in text
        assert "Competition: 0.3" in text
        assert "Trend: 12%" in text
        assert "Similarity: 89.0%" in text

    def test_history_labels_speakers(self):
        text = format_history([HistoryTurn(role="user", content="hi"), HistoryTurn(role="assistant", content="hello")])
        assert text == "User: hi\nAssistant: hello"


class TestBuildPrompt:
    def test_sections_present_in_order(self):
        built = build_prompt(Capability.KEYWORD_INSIGHTS, [_src(1)], _history(2), "best gift keywords")
        prompt = built.prompt
        positions = [
            prompt.index("=== RETRIEVED CONTEXT ==="),
            prompt.index("=== CONVERSATION HISTORY ==="),
            prompt.index("=== CURRENT USER QUERY ==="),
            prompt.index("=== INSTRUCTIONS ==="),
        ]
        assert positions == sorted(positions)
        assert BLOCK_IDENTITY in built.system
        assert CAPABILITY_BLOCKS[Capability.KEYWORD_INSIGHTS] in built.system
        assert built.truncated is False

    def test_system_override_replaces_capability_block(self):
        built = build_prompt(
            Capability.KEYWORD_INSIGHTS, [_src(1)], [], "q", system_override="Custom role text"
        )
        assert "Custom role text" in built.system
        assert CAPABILITY_BLOCKS[Capability.KEYWORD_INSIGHTS] not in built.system

    def test_fits_budget_and_drops_history_first(self):
        sources = [_src(i) for i in range(12)]
        history = _history(10)
        full = build_prompt(Capability.KEYWORD_INSIGHTS, sources, history, "q", budget=100_000)

        budget = full.estimated_tokens - 200
        built = build_prompt(Capability.KEYWORD_INSIGHTS, sources, history, "q", budget=budget)

        assert built.estimated_tokens <= budget
        assert built.truncated is True
        assert built.sources_used == 12
        assert built.history_used < 10
        # the oldest turns go first
        assert "turn 9" in built.prompt
        assert "turn 0" not in built.prompt

    def test_drops_lowest_ranked_sources_after_history(self):
        sources = [_src(i) for i in range(12)]
        no_history = build_prompt(Capability.KEYWORD_INSIGHTS, sources, [], "q", budget=100_000)

        budget = no_history.estimated_tokens - 40
        built = build_prompt(Capability.KEYWORD_INSIGHTS, sources, _history(4), "q", budget=budget)

        assert built.estimated_tokens <= budget
        assert built.history_used == 0
        assert 0 < built.sources_used < 12
        assert '"keyword number 0"' in built.prompt
        assert '"keyword number 11"' not in built.prompt

    def test_user_message_never_dropped(self):
        question = "q" * 4000
        built = build_prompt(Capability.GENERAL_CHAT, [_src(1)], _history(3), question, budget=50)
        assert question in built.prompt
        assert built.history_used == 0
        assert built.sources_used == 0
        assert built.truncated is True

    def test_budget_property_across_sizes(self):
        sources = [_src(i, demand_index=i) for i in range(12)]
        history = _history(10)
        for budget in range(600, 3000, 150):
            built = build_prompt(Capability.MARKET_BRIEF, sources, history, "state of the niche?", budget=budget)
            assert built.estimated_tokens <= budget

    def test_combined_text_is_what_the_budget_measures(self):
        sources = [_src(i, demand_index=0.5, competition_score=0.3) for i in range(12)]
        history = [
            HistoryTurn(role="user" if i % 2 == 0 else "assistant", content="h" * 400)
            for i in range(10)
        ]
        for budget in range(250, 2500, 7):
            built = build_prompt(Capability.KEYWORD_INSIGHTS, sources, history, "which to target?", budget=budget)
            assert estimate_tokens(built.text) == built.estimated_tokens
            if built.sources_used or built.history_used:
                assert estimate_tokens(built.text) <= budget
