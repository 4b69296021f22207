"""Ask pipeline: one question in, one persisted answer out.

    Received → QuotaChecked → ThreadReady → CapabilityKnown → Retrieved
    → Reranked → PromptBuilt → Generated → Persisted → (async) TrainingCollected

Short-circuits:
    quota refused          → QuotaExceeded, nothing else written
    unknown/foreign thread → NotFound
    no usable sources      → fixed "no reliable data" answer, generation skipped
    backend failure        → contained by GenerationClient (fallback text)
    anything else          → InfraFailure, reported to error tracking

Synchronous Supabase calls run in worker threads; no lock is held across any
network call.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from functools import lru_cache
from typing import Any

from assistant_engine.context.prompt_builder import BuiltPrompt, build_prompt
from assistant_engine.core.analytics import capture_exception, track_server_event
from assistant_engine.core.capability_detector import resolve_capability
from assistant_engine.core.config import Settings, get_settings
from assistant_engine.core.generation import GenerationClient, GenerationResult, get_generation_client
from assistant_engine.core.logging import get_logger, log_with_context
from assistant_engine.core.outcomes import (
    AssistantAnswer,
    AssistantOutcome,
    InfraFailure,
    NotFound,
    QuotaExceeded,
)
from assistant_engine.core.reranker import rerank
from assistant_engine.core.retrieval import RetrievalFilters, RetrievalResult, retrieve
from assistant_engine.core.schemas_assistant import (
    AskRequest,
    AskResponse,
    Capability,
    Flags,
    ModelInfo,
    References,
    RetrievedSource,
    ThreadRecord,
    Usage,
)
from assistant_engine.core.training_collector import TrainingSample, is_eligible
from assistant_engine.db import prompt_configs as prompt_configs_db
from assistant_engine.db import quota as quota_db
from assistant_engine.db import threads as threads_db
from assistant_engine.db.threads import ThreadNotFoundError

logger = get_logger(__name__)

# Fewer ranked sources than this and the question is answered with NO_DATA_ANSWER
MIN_SOURCES_FOR_ANSWER = 1

NO_DATA_ANSWER = "No reliable data for this query at the moment."

Retriever = Callable[..., Awaitable[RetrievalResult]]

_REFERENCE_FIELDS = {
    "keyword": "keywords",
    "listing": "listings",
    "alert": "alerts",
    "doc": "docs",
}


def build_references(sources: list[RetrievedSource]) -> References:
    """Group source ids by type."""
    grouped: dict[str, list[str]] = {name: [] for name in _REFERENCE_FIELDS.values()}
    for source in sources:
        grouped[_REFERENCE_FIELDS[source.source_type]].append(source.source_id)
    return References(**grouped)


def _source_ids(sources: list[RetrievedSource]) -> list[dict[str, Any]]:
    return [
        {"id": s.source_id, "type": s.source_type, "score": s.similarity_score}
        for s in sources
    ]


class AssistantOrchestrator:
    """Runs the ask pipeline with injected collaborators."""

    def __init__(
        self,
        generation: GenerationClient,
        retriever: Retriever = retrieve,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.generation = generation
        self.retriever = retriever
        self.settings = settings or get_settings()
        self.clock = clock

    async def ask(
        self,
        user_id: str,
        request: AskRequest,
        started_at: float | None = None,
    ) -> AssistantOutcome:
        """Answer one question.

        Args:
            user_id: Authenticated user
            request: Validated request body
            started_at: clock() reading at request entry; the generation
                deadline is measured from here

        Returns:
            AssistantAnswer, QuotaExceeded, NotFound or InfraFailure
        """
        settings = self.settings
        started = started_at if started_at is not None else self.clock()
        deadline = started + settings.REQUEST_DEADLINE_SECONDS
        stage = "quota"

        try:
            quota = await asyncio.to_thread(quota_db.consume, user_id, settings.QUOTA_KEY)
            if isinstance(quota, QuotaExceeded):
                track_server_event(
                    user_id,
                    "assistant_quota_exceeded",
                    {"key": quota.key, "used": quota.used, "limit": quota.limit},
                )
                return quota
            if isinstance(quota, InfraFailure):
                self._report(quota.error, user_id, quota.stage)
                return quota

            stage = "thread"
            try:
                thread = await asyncio.to_thread(
                    threads_db.ensure_thread,
                    user_id,
                    str(request.thread_id) if request.thread_id else None,
                )
            except ThreadNotFoundError:
                return NotFound("Thread not found")

            capability = resolve_capability(request.capability, request.message)

            history = await asyncio.to_thread(
                threads_db.load_thread_history, thread.id, settings.HISTORY_MESSAGE_LIMIT
            )
            thread = await asyncio.to_thread(threads_db.update_thread_title, thread, request.message)
            await asyncio.to_thread(
                threads_db.insert_user_message,
                thread.id,
                request.message,
                capability.value,
                self._context_json(request),
            )

            stage = "retrieval"
            filters = RetrievalFilters.from_context(request.context)
            retrieval = await self.retriever(
                request.message,
                user_id,
                capability,
                filters,
                settings.RETRIEVAL_TOP_K,
            )
            ranked = rerank(retrieval.candidates, settings.RERANK_TOP_N)

            if len(ranked) < MIN_SOURCES_FOR_ANSWER:
                stage = "persist"
                return await self._insufficient_context(user_id, thread, capability, started)

            stage = "prompt"
            override = await asyncio.to_thread(self._prompt_override, capability)
            built = build_prompt(
                capability,
                ranked,
                history,
                request.message,
                budget=settings.PROMPT_TOKEN_BUDGET,
                system_override=override,
            )
            if built.sources_used < MIN_SOURCES_FOR_ANSWER:
                stage = "persist"
                return await self._insufficient_context(user_id, thread, capability, started)
            used_sources = ranked[: built.sources_used]

            stage = "generation"
            options = request.options
            max_tokens = (options.max_tokens if options else None) or settings.DEFAULT_MAX_TOKENS
            temperature = options.temperature if options and options.temperature is not None else settings.DEFAULT_TEMPERATURE
            result = await self.generation.generate(
                built,
                max_tokens=max_tokens,
                temperature=temperature,
                timeout=deadline - self.clock(),
                sources=used_sources,
                user_id=user_id,
                thread_id=thread.id,
            )

            stage = "persist"
            eligible = False
            if not result.fallback:
                eligible = await asyncio.to_thread(is_eligible, user_id)

            return await self._persist_answer(
                user_id=user_id,
                thread=thread,
                capability=capability,
                built=built,
                sources=used_sources,
                result=result,
                temperature=temperature,
                eligible=eligible,
                market=filters.market,
            )

        except Exception as e:
            log_with_context(
                logger,
                logging.ERROR,
                f"Ask pipeline failed: {type(e).__name__}",
                exc_info=True,
                user_id=user_id,
                stage=stage,
            )
            self._report(e, user_id, stage)
            return InfraFailure(stage=stage, error=e)

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _context_json(request: AskRequest) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if request.context:
            data = request.context.model_dump(mode="json", by_alias=True, exclude_none=True)
        if request.meta:
            data["meta"] = request.meta.model_dump(mode="json", exclude_none=True)
        if request.capability:
            data["requestedCapability"] = request.capability.value
        return data

    @staticmethod
    def _prompt_override(capability: Capability) -> str | None:
        try:
            return prompt_configs_db.get_active_instructions(capability.value)
        except Exception as e:
            logger.warning(f"Prompt override lookup failed for {capability.value}: {e}")
            return None

    @staticmethod
    def _report(error: BaseException, user_id: str, stage: str) -> None:
        capture_exception(error, user_id=user_id, properties={"stage": stage, "feature": "assistant_ask"})

    async def _insufficient_context(
        self,
        user_id: str,
        thread: ThreadRecord,
        capability: Capability,
        started: float,
    ) -> AssistantAnswer:
        flags = Flags(used_rag=False, fallback_to_generic=False, insufficient_context=True)
        message = await asyncio.to_thread(
            threads_db.insert_assistant_message,
            thread.id,
            NO_DATA_ANSWER,
            capability.value,
            None,
            {"tokens_in": 0, "tokens_out": 0, "latency_ms": 0},
            flags.model_dump(by_alias=True),
            [],
            False,
        )
        logger.info(f"No usable sources for {capability.value}, answered without generation")
        track_server_event(user_id, "assistant_insufficient_context", {"capability": capability.value})

        return AssistantAnswer(
            response=AskResponse(
                thread_id=thread.id,
                message_id=message.id,
                answer=NO_DATA_ANSWER,
                capability=capability,
                sources=[],
                references=References(),
                model=ModelInfo(
                    id=self.generation.model_id,
                    usage=Usage(),
                    latency_ms=int((self.clock() - started) * 1000),
                ),
                flags=flags,
            )
        )

    async def _persist_answer(
        self,
        *,
        user_id: str,
        thread: ThreadRecord,
        capability: Capability,
        built: BuiltPrompt,
        sources: list[RetrievedSource],
        result: GenerationResult,
        temperature: float,
        eligible: bool,
        market: str | None,
    ) -> AssistantAnswer:
        flags = Flags(
            used_rag=bool(sources),
            fallback_to_generic=result.fallback,
            insufficient_context=False,
        )
        message = await asyncio.to_thread(
            threads_db.insert_assistant_message,
            thread.id,
            result.text,
            capability.value,
            result.model_id,
            {
                "tokens_in": result.input_tokens,
                "tokens_out": result.output_tokens,
                "latency_ms": result.latency_ms,
                "temperature": temperature,
                "prompt_truncated": built.truncated,
            },
            flags.model_dump(by_alias=True),
            _source_ids(sources),
            eligible,
        )

        track_server_event(
            user_id,
            "assistant_answered",
            {
                "capability": capability.value,
                "sources": len(sources),
                "fallback": result.fallback,
                "latency_ms": result.latency_ms,
            },
        )

        sample = None
        if eligible:
            sample = TrainingSample(
                user_id=user_id,
                message_id=message.id,
                prompt=built.text,
                response=result.text,
                capability=capability.value,
                sources=sources,
                market=market,
                latency_ms=result.latency_ms,
                model_id=result.model_id,
            )

        return AssistantAnswer(
            response=AskResponse(
                thread_id=thread.id,
                message_id=message.id,
                answer=result.text,
                capability=capability,
                sources=[s.to_out() for s in sources],
                references=build_references(sources),
                model=ModelInfo(
                    id=result.model_id,
                    usage=Usage(input_tokens=result.input_tokens, output_tokens=result.output_tokens),
                    latency_ms=result.latency_ms,
                ),
                flags=flags,
            ),
            training_sample=sample,
        )


@lru_cache(maxsize=1)
def get_orchestrator() -> AssistantOrchestrator:
    """One orchestrator per process, wired to the configured backend."""
    return AssistantOrchestrator(generation=get_generation_client())
