"""Training sample capture for consenting users.

collect() runs after the response has been sent (FastAPI BackgroundTasks).
It never raises and never retries: a lost sample is acceptable, a failed
request because of sample capture is not.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from assistant_engine.context.prompt_builder import estimate_tokens
from assistant_engine.core.config import get_settings
from assistant_engine.core.logging import get_logger
from assistant_engine.core.schemas_assistant import RetrievedSource
from assistant_engine.db.supabase_client import get_supabase

logger = get_logger(__name__)


@dataclass(frozen=True)
class TrainingSample:
    user_id: str
    message_id: str
    prompt: str
    response: str
    capability: str
    sources: list[RetrievedSource] = field(default_factory=list)
    market: str | None = None
    latency_ms: int = 0
    model_id: str | None = None
    collected_at: datetime = field(default_factory=lambda: datetime.now(UTC))


def is_eligible(user_id: str) -> bool:
    """Whether answers for this user may be kept for training.

    Requires the global switch and an explicit opt-in on the user's profile.
    Any lookup failure counts as "not eligible".
    """
    if not get_settings().TRAINING_CAPTURE_ENABLED:
        return False

    try:
        response = (
            get_supabase()
            .table("user_profiles")
            .select("training_opt_in")
            .eq("user_id", str(user_id))
            .limit(1)
            .execute()
        )
    except Exception as e:
        logger.warning(f"Training eligibility lookup failed for user {user_id}: {e}")
        return False

    if not response.data:
        return False
    return response.data[0].get("training_opt_in") is True


def _context_json(sample: TrainingSample) -> dict[str, Any]:
    return {
        "capability": sample.capability,
        "market": sample.market,
        "sources": [
            {
                "id": s.source_id,
                "type": s.source_type,
                "label": s.source_label,
                "score": s.similarity_score,
            }
            for s in sample.sources
        ],
    }


def collect(sample: TrainingSample) -> None:
    """Write a request/response pair to the training tables. Fire-and-forget."""
    try:
        supabase = get_supabase()

        request = (
            supabase.table("training_requests")
            .insert(
                {
                    "user_id": sample.user_id,
                    "message_id": sample.message_id,
                    "prompt": sample.prompt,
                    "context_json": _context_json(sample),
                    "capability": sample.capability,
                    "market": sample.market or "general",
                    "requested_at": sample.collected_at.isoformat(),
                }
            )
            .execute()
        )
        if not request.data:
            logger.error(f"Training request insert returned no row for message {sample.message_id}")
            return

        request_id = request.data[0]["id"]
        supabase.table("training_responses").insert(
            {
                "request_id": request_id,
                "model_name": sample.model_id or "unknown",
                "output_json": {"answer": sample.response},
                "generated_at": sample.collected_at.isoformat(),
                "latency_ms": sample.latency_ms,
                "success": True,
                "tokens_in": estimate_tokens(sample.prompt),
                "tokens_out": estimate_tokens(sample.response),
            }
        ).execute()

        logger.debug(f"Training sample collected for message {sample.message_id} (request {request_id})")
    except Exception as e:
        logger.error(f"Training sample collection failed for message {sample.message_id}: {e}")
