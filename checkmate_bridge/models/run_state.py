"""
Run State Data Models
"""
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, computed_field

RunStatus = Literal["pending", "running", "passed", "failed", "cancelled"]
StepStatus = Literal["pending", "running", "passed", "failed", "skipped"]

TERMINAL_RUN_STATUSES = ("passed", "failed", "cancelled")


class StepState(BaseModel):
    """Live state of a single step within one run attempt."""

    step_number: int
    action: str = "unknown"
    target: Optional[str] = None
    value: Optional[str] = None
    status: StepStatus = "running"
    duration_ms: int = 0
    error: Optional[str] = None
    screenshot: Optional[str] = None
    retried: Optional[bool] = None
    fixture_name: Optional[str] = None


class Notice(BaseModel):
    """Diagnostic message surfaced by the backend."""

    level: Literal["error", "warning"]
    message: str
    run_id: Optional[int] = None


class RunSnapshot(BaseModel):
    """Folded view of one run attempt."""

    run_id: Optional[int] = None
    test_case_id: Optional[int] = None
    status: RunStatus = "pending"
    total_steps: int = 0
    retry_attempt: int = 0
    max_retries: int = 0
    original_run_id: Optional[int] = None
    retry_reason: Optional[str] = None
    summary: Optional[str] = None
    reported_pass_count: Optional[int] = None
    reported_error_count: Optional[int] = None
    completed: bool = False
    incomplete: bool = False
    step_index: Dict[int, StepState] = Field(default_factory=dict, exclude=True)

    @computed_field
    @property
    def steps(self) -> List[StepState]:
        return [self.step_index[n] for n in sorted(self.step_index)]

    @computed_field
    @property
    def pass_count(self) -> int:
        if self.reported_pass_count is not None:
            return self.reported_pass_count
        return sum(1 for step in self.step_index.values() if step.status == "passed")

    @computed_field
    @property
    def error_count(self) -> int:
        if self.reported_error_count is not None:
            return self.reported_error_count
        return sum(
            1 for step in self.step_index.values()
            if step.status in ("failed", "skipped")
        )

    @computed_field
    @property
    def total_duration_ms(self) -> int:
        return sum(step.duration_ms for step in self.step_index.values())

    @property
    def chain_id(self) -> Optional[int]:
        """Identifier shared by every attempt of the same retry chain."""
        return self.original_run_id if self.original_run_id is not None else self.run_id

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_RUN_STATUSES
