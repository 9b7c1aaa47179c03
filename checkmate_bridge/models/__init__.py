"""Models package"""
from .events import DecodedEvent, parse_event
from .run_state import Notice, RunSnapshot, StepState
from .test_case import BuildResponse, Fixture, Project, TestCase, TestStep
from .report import RunReport

__all__ = [
    "DecodedEvent",
    "parse_event",
    "Notice",
    "RunSnapshot",
    "StepState",
    "BuildResponse",
    "Fixture",
    "Project",
    "TestCase",
    "TestStep",
    "RunReport",
]
