"""
Run State Machine - Folds run events into RunSnapshot values

Events are applied strictly in arrival order. Each run attempt gets its own
RunSnapshot; a retry starts a new snapshot linked to the first attempt by
``original_run_id`` and leaves the previous one untouched. Once an attempt
reports ``run_completed``, step and completion events are ignored until the
next ``run_started``.
"""
import logging
from dataclasses import dataclass
from typing import AsyncIterable, AsyncIterator, Iterable, List, Optional

from ..models.events import (
    DecodedEvent,
    ErrorEvent,
    RetryScheduledEvent,
    RunCompletedEvent,
    RunStartedEvent,
    StepCompletedEvent,
    StepStartedEvent,
    UnrecognizedEvent,
    WarningEvent,
)
from ..models.run_state import Notice, RunSnapshot, StepState

logger = logging.getLogger(__name__)

INCOMPLETE_SUMMARY = "Event stream ended before the run completed"
SUPERSEDED_SUMMARY = "Superseded by a new run attempt before completing"


@dataclass
class RunUpdate:
    """What a single event changed, for live progress reporting."""

    event: DecodedEvent
    snapshot: Optional[RunSnapshot] = None
    step: Optional[StepState] = None
    notice: Optional[Notice] = None
    new_attempt: bool = False
    terminal: bool = False
    retry_scheduled: bool = False


class RunStateMachine:
    """
    Tracks the live state of a run and its retry chain.

    Attributes:
        current: Snapshot of the attempt currently receiving events
        retired: Earlier attempts, oldest first; never modified again
        notices: Error and warning messages seen so far
        retry_pending: Last retry announcement not yet followed by a new attempt
    """

    def __init__(self):
        self.current: Optional[RunSnapshot] = None
        self.retired: List[RunSnapshot] = []
        self.notices: List[Notice] = []
        self.retry_pending: Optional[RetryScheduledEvent] = None
        self.events_applied = 0

    @property
    def retry_chain(self) -> List[RunSnapshot]:
        """Every attempt observed, in order."""
        chain = list(self.retired)
        if self.current is not None:
            chain.append(self.current)
        return chain

    def apply(self, event: DecodedEvent) -> RunUpdate:
        """
        Apply one event to the current run attempt.

        Args:
            event: Next event from the stream

        Returns:
            Description of what changed
        """
        self.events_applied += 1

        if isinstance(event, RunStartedEvent):
            return self._on_run_started(event)
        if isinstance(event, StepStartedEvent):
            return self._on_step_started(event)
        if isinstance(event, StepCompletedEvent):
            return self._on_step_completed(event)
        if isinstance(event, RunCompletedEvent):
            return self._on_run_completed(event)
        if isinstance(event, RetryScheduledEvent):
            return self._on_retry_scheduled(event)
        if isinstance(event, (ErrorEvent, WarningEvent)):
            return self._on_notice(event)
        if isinstance(event, UnrecognizedEvent):
            logger.debug(f"Ignoring unrecognized event type {event.original_type!r}")
            return RunUpdate(event=event, snapshot=self.current)
        raise TypeError(f"Unsupported event: {event!r}")

    def add_notice(self, level: str, message: str) -> Notice:
        notice = Notice(
            level=level,
            message=message,
            run_id=self.current.run_id if self.current else None,
        )
        self.notices.append(notice)
        return notice

    def finish(self) -> RunSnapshot:
        """
        Close the run once the event source is exhausted.

        A run that never reported ``run_completed`` is marked incomplete and
        failed; it is never reported as passed.
        """
        if self.current is None:
            self.current = RunSnapshot()
        if not self.current.is_terminal:
            self._mark_incomplete(self.current, INCOMPLETE_SUMMARY)
        return self.current

    def fold(self, events: Iterable[DecodedEvent]) -> RunSnapshot:
        """Apply a complete event sequence and return the final snapshot."""
        for event in events:
            self.apply(event)
        return self.finish()

    async def fold_stream(self, events: AsyncIterable[DecodedEvent]) -> AsyncIterator[RunUpdate]:
        """Apply events as they arrive, yielding an update for each one."""
        async for event in events:
            yield self.apply(event)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _on_run_started(self, event: RunStartedEvent) -> RunUpdate:
        previous = self.current
        if previous is not None and (previous.run_id is not None or previous.step_index):
            if not previous.is_terminal:
                self._mark_incomplete(previous, SUPERSEDED_SUMMARY)
            self.retired.append(previous)

        original_run_id = event.original_run_id
        retry_reason = None
        if self.retry_pending is not None:
            if original_run_id is None:
                original_run_id = self.retry_pending.original_run_id
            retry_reason = self.retry_pending.reason
            self.retry_pending = None

        self.current = RunSnapshot(
            run_id=event.run_id,
            test_case_id=event.test_case_id,
            status="running",
            total_steps=event.total_steps,
            retry_attempt=event.retry_attempt,
            max_retries=event.max_retries,
            original_run_id=original_run_id,
            retry_reason=retry_reason,
        )
        logger.debug(
            f"Run {event.run_id} started (attempt {event.retry_attempt}/{event.max_retries}, "
            f"{event.total_steps} steps)"
        )
        return RunUpdate(event=event, snapshot=self.current, new_attempt=True)

    def _on_step_started(self, event: StepStartedEvent) -> RunUpdate:
        if self._is_finished():
            return self._ignore_late(event)
        snapshot = self._active_snapshot()
        step = snapshot.step_index.get(event.step_number)
        if step is None:
            step = StepState(
                step_number=event.step_number,
                action=event.action,
                target=event.target,
                value=event.value,
                status="running",
                fixture_name=event.fixture_name,
            )
            snapshot.step_index[event.step_number] = step
        else:
            # duplicate or late start; the status stays as it was
            step.action = event.action
            step.target = event.target
            step.value = event.value
        return RunUpdate(event=event, snapshot=snapshot, step=step)

    def _on_step_completed(self, event: StepCompletedEvent) -> RunUpdate:
        if self._is_finished():
            return self._ignore_late(event)
        snapshot = self._active_snapshot()
        step = snapshot.step_index.get(event.step_number)
        if step is None:
            step = StepState(
                step_number=event.step_number,
                action=event.action,
                target=event.target,
                value=event.value,
                fixture_name=event.fixture_name,
            )
            snapshot.step_index[event.step_number] = step

        step.status = event.status
        step.duration_ms = event.duration_ms
        step.error = event.error
        step.screenshot = event.screenshot
        step.retried = event.retried
        return RunUpdate(event=event, snapshot=snapshot, step=step)

    def _on_run_completed(self, event: RunCompletedEvent) -> RunUpdate:
        if self._is_finished():
            return self._ignore_late(event)
        snapshot = self._active_snapshot()
        if snapshot.run_id is None:
            snapshot.run_id = event.run_id
        snapshot.status = event.status
        snapshot.reported_pass_count = event.pass_count
        snapshot.reported_error_count = event.error_count
        snapshot.summary = event.summary
        if "retry_attempt" in event.model_fields_set:
            snapshot.retry_attempt = event.retry_attempt
        if "max_retries" in event.model_fields_set:
            snapshot.max_retries = event.max_retries
        snapshot.completed = True
        snapshot.incomplete = False
        logger.debug(f"Run {snapshot.run_id} completed: {event.status}")
        return RunUpdate(event=event, snapshot=snapshot, terminal=True)

    def _on_retry_scheduled(self, event: RetryScheduledEvent) -> RunUpdate:
        self.retry_pending = event
        logger.info(
            f"Retry {event.retry_attempt} scheduled for run {event.original_run_id}: {event.reason}"
        )
        return RunUpdate(event=event, snapshot=self.current, retry_scheduled=True)

    def _on_notice(self, event) -> RunUpdate:
        notice = self.add_notice(event.type, event.message)
        return RunUpdate(event=event, snapshot=self.current, notice=notice)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _is_finished(self) -> bool:
        return self.current is not None and self.current.is_terminal

    def _ignore_late(self, event: DecodedEvent) -> RunUpdate:
        # a finished attempt stays frozen until the next run_started
        logger.warning(
            f"Ignoring {event.type} for run {self.current.run_id}: "
            f"attempt already {self.current.status}"
        )
        return RunUpdate(event=event, snapshot=self.current)

    def _active_snapshot(self) -> RunSnapshot:
        if self.current is None:
            # step events without a run_started
            self.current = RunSnapshot(status="running")
        elif self.current.status == "pending":
            self.current.status = "running"
        return self.current

    @staticmethod
    def _mark_incomplete(snapshot: RunSnapshot, summary: str):
        snapshot.status = "failed"
        snapshot.incomplete = True
        if not snapshot.summary:
            snapshot.summary = summary
