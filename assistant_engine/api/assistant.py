"""API endpoints for the research assistant."""

import logging
from uuid import UUID, uuid4

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from fastapi.responses import JSONResponse

from assistant_engine.api.errors import error_response
from assistant_engine.core.auth import AuthContext, require_auth
from assistant_engine.core.config import get_settings
from assistant_engine.core.logging import get_logger, log_with_context
from assistant_engine.core.orchestrator import AssistantOrchestrator, get_orchestrator
from assistant_engine.core.outcomes import (
    AssistantAnswer,
    InfraFailure,
    NotFound,
    QuotaExceeded,
    ValidationFailed,
)
from assistant_engine.core.schemas_assistant import (
    AskRequest,
    AskResponse,
    FeedbackRequest,
    Flags,
    MessageOut,
    QuotaUsageResponse,
    ThreadRecord,
    ThreadSummary,
)
from assistant_engine.core.training_collector import collect
from assistant_engine.db import feedback as feedback_db
from assistant_engine.db import quota as quota_db
from assistant_engine.db import threads as threads_db
from assistant_engine.db.threads import ThreadNotFoundError

logger = get_logger(__name__)

router = APIRouter(prefix="/assistant")


def _thread_summary(thread: ThreadRecord) -> ThreadSummary:
    return ThreadSummary(
        id=thread.id,
        title=thread.title,
        message_count=thread.message_count,
        archived=thread.archived,
        created_at=thread.created_at,
        last_message_at=thread.last_message_at,
    )


@router.post("/ask", response_model=AskResponse)
async def ask(
    body: AskRequest,
    background_tasks: BackgroundTasks,
    auth: AuthContext = Depends(require_auth),
    orchestrator: AssistantOrchestrator = Depends(get_orchestrator),
):
    """Answer a question from retrieved marketplace data."""
    request_id = uuid4().hex[:12]
    started_at = orchestrator.clock()
    outcome = await orchestrator.ask(auth.user_id, body, started_at=started_at)

    log_with_context(
        logger,
        logging.INFO,
        "Ask finished",
        request_id=request_id,
        user_id=auth.user_id,
        outcome=type(outcome).__name__,
        elapsed_ms=int((orchestrator.clock() - started_at) * 1000),
    )

    if isinstance(outcome, AssistantAnswer):
        if outcome.training_sample is not None:
            background_tasks.add_task(collect, outcome.training_sample)
        return outcome.response

    if isinstance(outcome, QuotaExceeded):
        return error_response(
            403,
            "quota_exceeded",
            outcome.message,
            retryable=False,
            used=outcome.used,
            limit=outcome.limit,
        )
    if isinstance(outcome, NotFound):
        return error_response(404, "not_found", outcome.message)
    if isinstance(outcome, ValidationFailed):
        return error_response(422, "validation_error", outcome.message)
    if isinstance(outcome, InfraFailure):
        return error_response(
            500,
            "generation_failed",
            "Failed to generate a response. Please try again.",
            retryable=True,
        )

    logger.error(f"Unhandled ask outcome: {type(outcome).__name__}")
    return error_response(500, "internal_error", "Unexpected error")


@router.get("/threads", response_model=list[ThreadSummary])
def list_threads(
    limit: int = Query(20, ge=1, le=100),
    include_archived: bool = Query(False, alias="includeArchived"),
    auth: AuthContext = Depends(require_auth),
):
    """List the caller's conversation threads."""
    threads = threads_db.list_threads(auth.user_id, limit=limit, include_archived=include_archived)
    return [_thread_summary(t) for t in threads]


@router.get("/threads/{thread_id}/messages", response_model=list[MessageOut])
def list_thread_messages(
    thread_id: UUID,
    limit: int = Query(100, ge=1, le=500),
    auth: AuthContext = Depends(require_auth),
):
    """Messages of one thread, oldest first."""
    try:
        messages = threads_db.list_thread_messages(thread_id, auth.user_id, limit=limit)
    except ThreadNotFoundError:
        raise HTTPException(status_code=404, detail="Thread not found")

    return [
        MessageOut(
            id=m.id,
            role=m.role,
            content=m.content,
            capability=m.capability,
            flags=Flags.model_validate(m.flags) if m.flags else None,
            created_at=m.created_at,
        )
        for m in messages
    ]


@router.post("/threads/{thread_id}/archive", response_model=ThreadSummary)
def archive_thread(
    thread_id: UUID,
    auth: AuthContext = Depends(require_auth),
):
    """Archive a thread. Messages are kept."""
    try:
        thread = threads_db.archive_thread(thread_id, auth.user_id)
    except ThreadNotFoundError:
        raise HTTPException(status_code=404, detail="Thread not found")
    return _thread_summary(thread)


@router.post("/feedback", status_code=201)
def submit_feedback(
    body: FeedbackRequest,
    auth: AuthContext = Depends(require_auth),
) -> JSONResponse:
    """Rate an assistant answer."""
    owner = threads_db.get_message_owner(body.message_id)
    if owner != auth.user_id:
        raise HTTPException(status_code=404, detail="Message not found")

    row = feedback_db.create_feedback(
        message_id=body.message_id,
        user_id=auth.user_id,
        rating=body.rating,
        feedback_text=body.feedback_text,
    )
    return JSONResponse(status_code=201, content={"id": row.get("id"), "success": True})


@router.get("/quota", response_model=QuotaUsageResponse)
def get_quota(auth: AuthContext = Depends(require_auth)):
    """This month's assistant usage for the caller."""
    key = get_settings().QUOTA_KEY
    usage = quota_db.get_usage(auth.user_id, key)
    return QuotaUsageResponse(
        key=usage.key,
        used=usage.used,
        limit=usage.limit,
        remaining=usage.remaining,
        period_start=usage.period_start.isoformat(),
    )
