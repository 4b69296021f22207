"""Pydantic schemas for the assistant (request/response contract and stored records).

Everything that crosses a process boundary (HTTP bodies, Supabase rows, RPC
results) is validated through these models before business logic sees it.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class Capability(str, Enum):
    """Intent categories that select system instructions and output shape."""

    KEYWORD_INSIGHTS = "keyword_insights"
    MARKET_BRIEF = "market_brief"
    COMPETITOR_INTEL = "competitor_intel"
    ALERT_EXPLANATION = "alert_explanation"
    RECOMMENDATIONS = "recommendations"
    COMPLIANCE_CHECK = "compliance_check"
    SUPPORT_DOCS = "support_docs"
    GENERAL_CHAT = "general_chat"


SourceType = Literal["keyword", "listing", "alert", "doc"]
OwnerScope = Literal["user", "team", "global"]


class CamelModel(BaseModel):
    """Base for wire models: snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# Request
# ============================================================================


class TimeRange(BaseModel):
    from_: datetime = Field(..., alias="from")
    to: datetime

    model_config = ConfigDict(populate_by_name=True)

    @model_validator(mode="after")
    def _ordered(self) -> "TimeRange":
        if self.from_ > self.to:
            raise ValueError("timeRange.from must not be after timeRange.to")
        return self


class AskContext(CamelModel):
    """Optional structured scope attached to a question."""

    marketplaces: list[str] | None = Field(default=None, max_length=5)
    time_range: TimeRange | None = None
    keyword_ids: list[UUID] | None = Field(default=None, max_length=50)
    listing_ids: list[UUID] | None = Field(default=None, max_length=20)
    alert_ids: list[UUID] | None = Field(default=None, max_length=10)

    @property
    def market(self) -> str | None:
        """Primary marketplace used for retrieval scoping."""
        return self.marketplaces[0] if self.marketplaces else None


class AskOptions(CamelModel):
    max_tokens: int | None = Field(default=None, ge=256, le=2048)
    temperature: float | None = Field(default=None, ge=0.0, le=1.0)
    language: str | None = Field(default=None, min_length=2, max_length=2)


class AskMeta(CamelModel):
    client: Literal["web", "extension", "api"] | None = None
    version: str | None = None


class AskRequest(CamelModel):
    """Inbound question for POST /v1/assistant/ask."""

    message: str = Field(..., min_length=1, max_length=4000)
    thread_id: UUID | None = None
    capability: Capability | None = None
    context: AskContext | None = None
    options: AskOptions | None = None
    meta: AskMeta | None = None

    @field_validator("message")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("message must not be blank")
        return value


class FeedbackRequest(CamelModel):
    message_id: UUID
    rating: Literal["positive", "negative", "neutral"]
    feedback_text: str | None = Field(default=None, max_length=2000)


# ============================================================================
# Response
# ============================================================================


class SourceOut(CamelModel):
    id: str
    type: SourceType
    label: str
    score: float


class References(CamelModel):
    keywords: list[str] = Field(default_factory=list)
    listings: list[str] = Field(default_factory=list)
    alerts: list[str] = Field(default_factory=list)
    docs: list[str] = Field(default_factory=list)


class Usage(CamelModel):
    input_tokens: int = 0
    output_tokens: int = 0


class ModelInfo(CamelModel):
    id: str
    usage: Usage = Field(default_factory=Usage)
    latency_ms: int = 0


class Flags(CamelModel):
    used_rag: bool = False
    fallback_to_generic: bool = False
    insufficient_context: bool = False


class AskResponse(CamelModel):
    thread_id: str
    message_id: str
    answer: str
    capability: Capability
    sources: list[SourceOut] = Field(default_factory=list)
    references: References = Field(default_factory=References)
    model: ModelInfo
    flags: Flags = Field(default_factory=Flags)


class ErrorBody(BaseModel):
    code: str
    message: str
    retryable: bool | None = None
    used: int | None = None
    limit: int | None = None


class ErrorEnvelope(BaseModel):
    error: ErrorBody


class QuotaUsageResponse(CamelModel):
    key: str
    used: int
    limit: int
    remaining: int | None = None
    period_start: str


class ThreadSummary(CamelModel):
    id: str
    title: str | None = None
    message_count: int = 0
    archived: bool = False
    created_at: str | None = None
    last_message_at: str | None = None


class MessageOut(CamelModel):
    id: str
    role: Literal["user", "assistant"]
    content: str
    capability: str | None = None
    flags: Flags | None = None
    created_at: str | None = None


# ============================================================================
# Stored records / transient retrieval values
# ============================================================================


class ThreadRecord(BaseModel):
    """Row of rag_threads."""

    model_config = ConfigDict(extra="ignore")

    id: str
    user_id: str
    title: str | None = None
    message_count: int = 0
    archived: bool = False
    created_at: str | None = None
    updated_at: str | None = None
    last_message_at: str | None = None


class MessageRecord(BaseModel):
    """Row of rag_messages. Immutable once written."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str
    thread_id: str
    role: Literal["user", "assistant"]
    content: str
    capability: str | None = None
    context_json: dict[str, Any] | None = None
    model_id: str | None = None
    generation_metadata: dict[str, Any] | None = None
    flags: dict[str, Any] | None = None
    retrieved_source_ids: list[dict[str, Any]] | None = None
    training_eligible: bool = False
    created_at: str | None = None


class HistoryTurn(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class RetrievedSource(BaseModel):
    """One unit of retrieved evidence, alive for a single request."""

    model_config = ConfigDict(extra="ignore")

    source_id: str = Field(..., min_length=1)
    source_type: SourceType
    source_label: str = "Untitled"
    similarity_score: float = 0.0
    metadata: dict[str, Any] = Field(default_factory=dict)
    owner_scope: OwnerScope = "global"

    @field_validator("source_id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> Any:
        return str(value) if isinstance(value, UUID | int) else value

    @field_validator("similarity_score", mode="before")
    @classmethod
    def _clamp_score(cls, value: Any) -> float:
        score = float(value or 0.0)
        return min(1.0, max(0.0, score))

    @field_validator("source_label", mode="before")
    @classmethod
    def _label(cls, value: Any) -> str:
        text = str(value or "").strip()
        return text[:100] if text else "Untitled"

    def to_out(self) -> SourceOut:
        return SourceOut(
            id=self.source_id,
            type=self.source_type,
            label=self.source_label,
            score=self.similarity_score,
        )
