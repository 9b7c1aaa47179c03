"""Runner package"""
from .orchestrator import RunOrchestrator, RunOutcome, build_report
from .state_machine import RunStateMachine, RunUpdate

__all__ = ["RunOrchestrator", "RunOutcome", "build_report", "RunStateMachine", "RunUpdate"]
