"""Database operations for rag_threads and rag_messages.

Messages are append-only: there is no update or delete path for them here.
message_count and last_message_at on the thread are bumped by an insert
trigger in the database, not by this module.
"""

from typing import Any
from uuid import UUID

from assistant_engine.core.logging import get_logger
from assistant_engine.core.schemas_assistant import HistoryTurn, MessageRecord, ThreadRecord
from assistant_engine.db.supabase_client import get_supabase

logger = get_logger(__name__)

TITLE_MAX_LENGTH = 100


class ThreadNotFoundError(Exception):
    """Thread does not exist or is owned by someone else."""


def get_thread(thread_id: str | UUID, user_id: str | UUID) -> ThreadRecord | None:
    """Get a thread if it belongs to user_id."""
    supabase = get_supabase()
    response = (
        supabase.table("rag_threads")
        .select("*")
        .eq("id", str(thread_id))
        .eq("user_id", str(user_id))
        .limit(1)
        .execute()
    )
    if not response.data:
        return None
    return ThreadRecord.model_validate(response.data[0])


def create_thread(user_id: str | UUID, metadata: dict[str, Any] | None = None) -> ThreadRecord:
    """Create an untitled thread."""
    supabase = get_supabase()
    response = (
        supabase.table("rag_threads")
        .insert({"user_id": str(user_id), "metadata": metadata or {}})
        .execute()
    )
    if not response.data:
        raise ValueError("No data returned from thread insert")
    thread = ThreadRecord.model_validate(response.data[0])
    logger.info(f"Created thread {thread.id} for user {user_id}")
    return thread


def ensure_thread(user_id: str | UUID, thread_id: str | UUID | None = None) -> ThreadRecord:
    """Load a thread the user owns, or create one when no id is given.

    Raises:
        ThreadNotFoundError: If thread_id is given but not owned by user_id
    """
    if thread_id is None:
        return create_thread(user_id)

    thread = get_thread(thread_id, user_id)
    if thread is None:
        # same error whether missing or foreign, so ids can't be probed
        raise ThreadNotFoundError(f"Thread {thread_id} not found")
    return thread


def update_thread_title(thread: ThreadRecord, title: str) -> ThreadRecord:
    """Title a thread from its first message. Later calls are no-ops."""
    if thread.title or thread.message_count > 0:
        return thread

    title = " ".join(title.split())[:TITLE_MAX_LENGTH]
    if not title:
        return thread

    supabase = get_supabase()
    response = (
        supabase.table("rag_threads")
        .update({"title": title})
        .eq("id", thread.id)
        .is_("title", "null")
        .execute()
    )
    if not response.data:
        return thread
    return ThreadRecord.model_validate(response.data[0])


def _insert_message(row: dict[str, Any]) -> MessageRecord:
    supabase = get_supabase()
    response = supabase.table("rag_messages").insert(row).execute()
    if not response.data:
        raise ValueError("No data returned from message insert")
    return MessageRecord.model_validate(response.data[0])


def insert_user_message(
    thread_id: str | UUID,
    content: str,
    capability: str | None = None,
    context_json: dict[str, Any] | None = None,
) -> MessageRecord:
    """Append the user's question to a thread."""
    return _insert_message(
        {
            "thread_id": str(thread_id),
            "role": "user",
            "content": content,
            "capability": capability,
            "context_json": context_json or {},
        }
    )


def insert_assistant_message(
    thread_id: str | UUID,
    content: str,
    capability: str,
    model_id: str | None,
    generation_metadata: dict[str, Any],
    flags: dict[str, Any],
    retrieved_source_ids: list[dict[str, Any]],
    training_eligible: bool = False,
) -> MessageRecord:
    """Append an answer (generated, fallback or insufficient-context) to a thread."""
    return _insert_message(
        {
            "thread_id": str(thread_id),
            "role": "assistant",
            "content": content,
            "capability": capability,
            "model_id": model_id,
            "generation_metadata": generation_metadata,
            "flags": flags,
            "retrieved_source_ids": retrieved_source_ids,
            "training_eligible": training_eligible,
        }
    )


def load_thread_history(thread_id: str | UUID, limit: int = 10) -> list[HistoryTurn]:
    """Most recent ``limit`` turns of a thread, oldest first."""
    if limit <= 0:
        return []
    supabase = get_supabase()
    response = (
        supabase.table("rag_messages")
        .select("role, content, created_at")
        .eq("thread_id", str(thread_id))
        .is_("deleted_at", "null")
        .order("created_at", desc=True)
        .limit(limit)
        .execute()
    )
    rows = list(reversed(response.data or []))
    return [HistoryTurn.model_validate(r) for r in rows]


def list_threads(
    user_id: str | UUID,
    limit: int = 20,
    include_archived: bool = False,
) -> list[ThreadRecord]:
    """List a user's threads, most recently updated first."""
    supabase = get_supabase()
    query = (
        supabase.table("rag_threads")
        .select("*")
        .eq("user_id", str(user_id))
        .order("updated_at", desc=True)
        .limit(limit)
    )
    if not include_archived:
        query = query.eq("archived", False)
    response = query.execute()
    return [ThreadRecord.model_validate(r) for r in response.data or []]


def list_thread_messages(
    thread_id: str | UUID,
    user_id: str | UUID,
    limit: int = 100,
) -> list[MessageRecord]:
    """All messages of an owned thread, oldest first.

    Raises:
        ThreadNotFoundError: If the thread is not owned by user_id
    """
    if get_thread(thread_id, user_id) is None:
        raise ThreadNotFoundError(f"Thread {thread_id} not found")

    supabase = get_supabase()
    response = (
        supabase.table("rag_messages")
        .select("*")
        .eq("thread_id", str(thread_id))
        .is_("deleted_at", "null")
        .order("created_at")
        .limit(limit)
        .execute()
    )
    return [MessageRecord.model_validate(r) for r in response.data or []]


def get_message_owner(message_id: str | UUID) -> str | None:
    """User id owning the thread a message belongs to."""
    supabase = get_supabase()
    response = (
        supabase.table("rag_messages")
        .select("id, rag_threads!inner(user_id)")
        .eq("id", str(message_id))
        .limit(1)
        .execute()
    )
    if not response.data:
        return None
    thread = response.data[0].get("rag_threads") or {}
    return thread.get("user_id")


def archive_thread(thread_id: str | UUID, user_id: str | UUID) -> ThreadRecord:
    """Flag a thread archived. Its messages are left untouched.

    Raises:
        ThreadNotFoundError: If the thread is not owned by user_id
    """
    supabase = get_supabase()
    response = (
        supabase.table("rag_threads")
        .update({"archived": True})
        .eq("id", str(thread_id))
        .eq("user_id", str(user_id))
        .execute()
    )
    if not response.data:
        raise ThreadNotFoundError(f"Thread {thread_id} not found")
    logger.info(f"Archived thread {thread_id}")
    return ThreadRecord.model_validate(response.data[0])
