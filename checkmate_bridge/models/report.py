"""
Run Report Data Model
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .run_state import Notice, RunSnapshot
from .test_case import TestStep


class TestCaseInfo(BaseModel):
    """Test identity shown alongside a run."""

    id: Optional[int] = None
    name: str
    description: Optional[str] = None


class RunReport(BaseModel):
    """Everything a caller needs to render a finished run."""

    test_case: TestCaseInfo
    query: Optional[str] = None
    generated_steps: List[TestStep] = Field(default_factory=list)
    events: List[Dict[str, Any]] = Field(default_factory=list)
    status: str = "unknown"
    summary: str = "Test completed"
    snapshot: Optional[RunSnapshot] = None
    retry_chain: List[RunSnapshot] = Field(default_factory=list)
    notices: List[Notice] = Field(default_factory=list)
    text: str = ""
