"""Database operations for rag_feedback."""

from uuid import UUID

from assistant_engine.core.logging import get_logger
from assistant_engine.db.supabase_client import get_supabase

logger = get_logger(__name__)


def create_feedback(
    message_id: str | UUID,
    user_id: str | UUID,
    rating: str,
    feedback_text: str | None = None,
) -> dict:
    """Record a rating for an assistant message."""
    supabase = get_supabase()
    row: dict = {
        "message_id": str(message_id),
        "user_id": str(user_id),
        "rating": rating,
    }
    if feedback_text:
        row["feedback_text"] = feedback_text

    result = supabase.table("rag_feedback").insert(row).execute()
    if not result.data:
        raise ValueError("No data returned from feedback insert")
    logger.info(f"Feedback '{rating}' recorded for message {message_id}")
    return result.data[0]
