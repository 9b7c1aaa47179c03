"""
Run Event Data Models

Events streamed by the Checkmate backend while a test run executes. Every
event carries a ``type`` tag that selects its shape.
"""
import logging
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator

logger = logging.getLogger(__name__)

StepOutcome = Literal["passed", "failed", "skipped"]
RunOutcome = Literal["passed", "failed", "cancelled"]


class RunStartedEvent(BaseModel):
    """A run attempt (original or retry) has started."""

    type: Literal["run_started"] = "run_started"
    run_id: int
    test_case_id: Optional[int] = None
    total_steps: int = 0
    retry_attempt: int = 0
    max_retries: int = 0
    original_run_id: Optional[int] = None

    class Config:
        extra = "allow"


class StepStartedEvent(BaseModel):
    """A step began executing."""

    type: Literal["step_started"] = "step_started"
    step_number: int
    action: str = "unknown"
    target: Optional[str] = None
    value: Optional[str] = None
    description: Optional[str] = None
    fixture_name: Optional[str] = None

    class Config:
        extra = "allow"


class StepCompletedEvent(BaseModel):
    """A step finished. The backend sends the duration as ``duration``."""

    type: Literal["step_completed"] = "step_completed"
    step_number: int
    action: str = "unknown"
    status: StepOutcome
    duration_ms: int = Field(default=0, alias="duration")
    error: Optional[str] = None
    screenshot: Optional[str] = None  # base64
    target: Optional[str] = None
    value: Optional[str] = None
    fixture_name: Optional[str] = None
    retried: Optional[bool] = None

    @field_validator("duration_ms", mode="before")
    @classmethod
    def whole_milliseconds(cls, value: Any) -> Any:
        if value is None:
            return 0
        if isinstance(value, float):
            return int(round(value))
        return value

    class Config:
        extra = "allow"
        populate_by_name = True


class RunCompletedEvent(BaseModel):
    """A run attempt reached a terminal status."""

    type: Literal["run_completed"] = "run_completed"
    run_id: Optional[int] = None
    status: RunOutcome
    pass_count: Optional[int] = None
    error_count: Optional[int] = None
    summary: Optional[str] = None
    retry_attempt: int = 0
    max_retries: int = 0

    class Config:
        extra = "allow"


class RetryScheduledEvent(BaseModel):
    """The backend will run another attempt of the same test."""

    type: Literal["retry_scheduled"] = "retry_scheduled"
    original_run_id: int
    retry_attempt: int
    reason: str = ""

    class Config:
        extra = "allow"


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    message: str


class WarningEvent(BaseModel):
    type: Literal["warning"] = "warning"
    message: str


class UnrecognizedEvent(BaseModel):
    """A well-formed payload whose ``type`` is not one we know."""

    type: Literal["unrecognized"] = "unrecognized"
    original_type: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)


KnownEvent = Annotated[
    Union[
        RunStartedEvent,
        StepStartedEvent,
        StepCompletedEvent,
        RunCompletedEvent,
        RetryScheduledEvent,
        ErrorEvent,
        WarningEvent,
    ],
    Field(discriminator="type"),
]

DecodedEvent = Union[
    RunStartedEvent,
    StepStartedEvent,
    StepCompletedEvent,
    RunCompletedEvent,
    RetryScheduledEvent,
    ErrorEvent,
    WarningEvent,
    UnrecognizedEvent,
]

KNOWN_EVENT_TYPES = frozenset({
    "run_started",
    "step_started",
    "step_completed",
    "run_completed",
    "retry_scheduled",
    "error",
    "warning",
})

_known_event_adapter = TypeAdapter(KnownEvent)


def parse_event(payload: Any) -> Optional[DecodedEvent]:
    """
    Convert one decoded JSON payload into a typed event.

    Args:
        payload: Parsed JSON value from a ``data:`` line

    Returns:
        The typed event, an ``UnrecognizedEvent`` for unknown tags, or None
        when the payload is malformed and must be dropped
    """
    if not isinstance(payload, dict):
        logger.warning(f"[SSE] Dropping non-object payload: {payload!r}")
        return None

    event_type = payload.get("type")
    if event_type not in KNOWN_EVENT_TYPES:
        return UnrecognizedEvent(
            original_type=event_type if isinstance(event_type, str) else None,
            payload=payload,
        )

    try:
        return _known_event_adapter.validate_python(payload)
    except ValidationError as e:
        logger.warning(f"[SSE] Dropping malformed {event_type} event: {e.error_count()} error(s)")
        return None
