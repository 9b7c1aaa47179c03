"""
Run Orchestrator - Drives event streams through the run state machine
"""
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Sequence

from ..config import settings
from ..models.events import DecodedEvent
from ..models.report import RunReport, TestCaseInfo
from ..models.run_state import RunSnapshot
from ..models.test_case import TestStep
from ..stream.client import CheckmateClient, EventStream
from ..stream.errors import StreamInterruptedError
from ..utils.helpers import format_duration
from .state_machine import RunStateMachine

StreamOpener = Callable[[], Awaitable[EventStream]]


@dataclass
class RunOutcome:
    """Events and folded state collected from one orchestrated run."""

    machine: RunStateMachine
    events: List[DecodedEvent] = field(default_factory=list)
    exchanges: int = 0

    @property
    def snapshot(self) -> RunSnapshot:
        return self.machine.finish()


class RunOrchestrator:
    """
    Coordinates a run:
    - Opens the event stream
    - Feeds events into a RunStateMachine
    - Reopens the stream when the backend scheduled a retry but closed the
      stream before the retry started
    """

    def __init__(self, client: CheckmateClient):
        self.name = "Orchestrator"
        self.client = client
        self.logger = logging.getLogger(f"{__name__}.{self.name}")

    async def run_test_case(
        self,
        test_case_id: int,
        browser: Optional[str] = None,
        max_retries: Optional[int] = None,
        retry_mode: Optional[str] = None,
    ) -> RunOutcome:
        """
        Execute a stored test case to completion.

        Args:
            test_case_id: Test case to execute
            browser: Browser engine name
            max_retries: Retries allowed, defaults to settings.DEFAULT_MAX_RETRIES
            retry_mode: Retry strategy, defaults to settings.DEFAULT_RETRY_MODE

        Returns:
            Collected events and the folded run state
        """
        if max_retries is None:
            max_retries = settings.DEFAULT_MAX_RETRIES
        retry_mode = retry_mode or settings.DEFAULT_RETRY_MODE

        async def open_stream() -> EventStream:
            return await self.client.execute_test_case(
                test_case_id,
                browser=browser,
                max_retries=max_retries,
                retry_mode=retry_mode,
            )

        self.log_info(f"Running test case {test_case_id} (max {max_retries} retries, {retry_mode})")
        return await self.drive(open_stream, max_retries)

    async def run_steps(
        self,
        project_id: int,
        steps: Sequence[TestStep],
        browser: Optional[str] = None,
        fixture_ids: Optional[Sequence[int]] = None,
    ) -> RunOutcome:
        """Execute ad-hoc steps to completion. No client-side retries."""

        async def open_stream() -> EventStream:
            return await self.client.execute_steps(
                project_id, steps, browser=browser, fixture_ids=fixture_ids
            )

        self.log_info(f"Running {len(steps)} steps in project {project_id}")
        return await self.drive(open_stream, max_retries=0)

    async def drive(self, open_stream: StreamOpener, max_retries: int) -> RunOutcome:
        """
        Consume streams until the run is final.

        Args:
            open_stream: Opens a fresh event stream for one exchange
            max_retries: How many extra exchanges a pending retry may trigger

        Returns:
            The outcome, with the state machine already finished
        """
        outcome = RunOutcome(machine=RunStateMachine())
        machine = outcome.machine

        while True:
            stream = await open_stream()
            outcome.exchanges += 1
            try:
                async with stream:
                    async for event in stream:
                        self.log_debug(f"[SSE] {event.type}")
                        outcome.events.append(event)
                        machine.apply(event)
            except StreamInterruptedError as e:
                self.log_error(str(e))
                machine.add_notice("error", str(e))
                break

            pending = machine.retry_pending
            if pending is None:
                break
            if outcome.exchanges > max_retries:
                self.log_info(f"Retry {pending.retry_attempt} pending but retry budget is spent")
                break
            self.log_info(f"Stream closed with retry {pending.retry_attempt} pending; reopening")

        snapshot = machine.finish()
        self.log_info(
            f"Run {snapshot.run_id} finished: {snapshot.status} "
            f"({len(machine.retry_chain)} attempt(s), {outcome.exchanges} exchange(s))"
        )
        return outcome

    def log_info(self, message: str):
        self.logger.info(f"[{self.name}] {message}")

    def log_error(self, message: str):
        self.logger.error(f"[{self.name}] {message}")

    def log_debug(self, message: str):
        self.logger.debug(f"[{self.name}] {message}")


def build_report(
    test_case: TestCaseInfo,
    outcome: RunOutcome,
    query: Optional[str] = None,
    generated_steps: Optional[Sequence[TestStep]] = None,
) -> RunReport:
    """
    Assemble the report returned to the model-driven client.

    Args:
        test_case: Identity of the executed test
        outcome: Result of RunOrchestrator
        query: Natural language query, for natural language runs
        generated_steps: Steps built from the query

    Returns:
        RunReport with a plain text summary
    """
    snapshot = outcome.snapshot
    machine = outcome.machine
    summary = snapshot.summary or "Test completed"

    text = f"Test: {test_case.name}\nStatus: {snapshot.status}\n{summary}"
    if snapshot.steps:
        text += (
            f"\n{snapshot.pass_count} passed, {snapshot.error_count} failed"
            f" in {format_duration(snapshot.total_duration_ms)}"
        )
    if len(machine.retry_chain) > 1:
        text += f"\nAttempts: {len(machine.retry_chain)}"

    return RunReport(
        test_case=test_case,
        query=query,
        generated_steps=list(generated_steps or []),
        events=[event.model_dump(mode="json", by_alias=True) for event in outcome.events],
        status=snapshot.status,
        summary=summary,
        snapshot=snapshot,
        retry_chain=machine.retry_chain,
        notices=machine.notices,
        text=text,
    )
