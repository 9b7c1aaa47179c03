"""
Request Data Models for the bridge's HTTP endpoints
"""
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, PositiveInt

from .test_case import TestStep

BrowserName = Literal["chromium", "firefox", "webkit", "chromium-headless"]
RetryMode = Literal["simple", "intelligent"]


class RunStreamRequest(BaseModel):
    """Body of the test case streaming proxy."""

    browser: Optional[BrowserName] = None


class ExecuteStepsRequest(BaseModel):
    """Body of the direct step execution proxy."""

    project_id: PositiveInt
    steps: List[TestStep] = Field(..., min_length=1)
    browser: Optional[BrowserName] = None
    fixture_ids: Optional[List[PositiveInt]] = None


class RunTestRequest(BaseModel):
    browser: Optional[BrowserName] = None
    max_retries: int = Field(default=2, ge=0, le=10)
    retry_mode: RetryMode = "intelligent"


class NaturalTestRequest(BaseModel):
    query: str = Field(..., min_length=1, description="Natural language description of the test")
    fixture_ids: Optional[List[PositiveInt]] = None
    browser: Optional[BrowserName] = None
