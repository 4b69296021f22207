"""Token and cost accounting for generation calls."""

from uuid import UUID

from assistant_engine.core.logging import get_logger
from assistant_engine.db.supabase_client import get_supabase

logger = get_logger(__name__)

# Pricing per 1M tokens: (input, output)
MODEL_PRICING: dict[str, tuple[float, float]] = {
    "claude-haiku-4-5-20251001": (0.80, 4.0),
    "claude-3-5-haiku-20241022": (0.80, 4.0),
    "claude-sonnet-4-5-20250929": (3.0, 15.0),
    "claude-sonnet-4-20250514": (3.0, 15.0),
}


def estimate_cost(model: str, tokens_input: int, tokens_output: int) -> float:
    """Estimate cost in USD. Unknown models (self-hosted endpoints) cost $0."""
    pricing = MODEL_PRICING.get(model)
    if not pricing:
        return 0.0
    input_rate, output_rate = pricing
    cost = (tokens_input * input_rate / 1_000_000) + (tokens_output * output_rate / 1_000_000)
    return round(cost, 6)


def log_llm_usage(
    workflow: str,
    model: str,
    provider: str,
    tokens_input: int,
    tokens_output: int,
    duration_ms: int = 0,
    user_id: UUID | str | None = None,
    thread_id: UUID | str | None = None,
    fallback: bool = False,
) -> None:
    """Log a generation call to llm_usage_log. Fire-and-forget."""
    try:
        estimated_cost = estimate_cost(model, tokens_input, tokens_output)

        row = {
            "workflow": workflow,
            "model": model,
            "provider": provider,
            "tokens_input": tokens_input,
            "tokens_output": tokens_output,
            "estimated_cost_usd": estimated_cost,
            "duration_ms": duration_ms,
            "fallback": fallback,
        }
        if user_id:
            row["user_id"] = str(user_id)
        if thread_id:
            row["thread_id"] = str(thread_id)

        get_supabase().table("llm_usage_log").insert(row).execute()

        logger.debug(
            f"LLM usage logged: {workflow} model={model} "
            f"tokens={tokens_input}+{tokens_output} cost=${estimated_cost:.4f}"
        )
    except Exception as e:
        # Never fail the main operation due to logging
        logger.error(f"Failed to log LLM usage: {e}")
