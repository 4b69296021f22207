"""Tagged results exchanged between layers of the assistant pipeline.

Each layer returns one of these explicitly; the API layer switches on the
type to pick a status code instead of catching specific exception classes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Union

if TYPE_CHECKING:
    from assistant_engine.core.schemas_assistant import AskResponse
    from assistant_engine.core.training_collector import TrainingSample


@dataclass(frozen=True)
class QuotaGranted:
    key: str
    used: int
    limit: int  # -1 = unlimited

    @property
    def unlimited(self) -> bool:
        return self.limit == -1


@dataclass(frozen=True)
class QuotaExceeded:
    key: str
    used: int
    limit: int

    @property
    def message(self) -> str:
        return (
            f"Assistant quota exceeded for {self.key}: {self.used}/{self.limit}. "
            "Upgrade your plan for more questions."
        )


@dataclass(frozen=True)
class ValidationFailed:
    message: str


@dataclass(frozen=True)
class NotFound:
    message: str


@dataclass(frozen=True)
class InfraFailure:
    """Data store or other infrastructure failure. The only retryable class."""

    stage: str
    error: BaseException = field(repr=False)


@dataclass
class AssistantAnswer:
    response: AskResponse
    training_sample: TrainingSample | None = None


QuotaOutcome = Union[QuotaGranted, QuotaExceeded, InfraFailure]
AssistantOutcome = Union[AssistantAnswer, QuotaExceeded, ValidationFailed, NotFound, InfraFailure]
