"""Shared fixtures: a fake Checkmate backend built on httpx.MockTransport."""

from __future__ import annotations

import asyncio
import json
from typing import Callable, Iterable, List, Optional

import httpx
import pytest

from checkmate_bridge.stream.client import CheckmateClient

BASE_URL = "http://checkmate.test"
ENDLESS_CAP = 10_000


class RecordingStream(httpx.AsyncByteStream):
    """Upstream body that records how far it was read and how often it was closed."""

    def __init__(
        self,
        chunks: Iterable[bytes],
        endless: bool = False,
        fail_with: Optional[Exception] = None,
    ):
        self.chunks = list(chunks)
        self.endless = endless
        self.fail_with = fail_with
        self.sent = 0
        self.close_count = 0

    async def __aiter__(self):
        for chunk in self.chunks:
            self.sent += 1
            yield chunk
            await asyncio.sleep(0)
        if self.fail_with is not None:
            raise self.fail_with
        while self.endless and self.sent < ENDLESS_CAP:
            self.sent += 1
            yield b": keepalive\n\n"
            await asyncio.sleep(0)

    async def aclose(self):
        self.close_count += 1

    @property
    def drained(self) -> bool:
        return self.sent >= ENDLESS_CAP


def sse(*events: dict) -> bytes:
    """Encode events the way the Checkmate backend frames them."""
    return b"".join(f"data: {json.dumps(e)}\n\n".encode("utf-8") for e in events)


def stream_response(stream: RecordingStream, status_code: int = 200) -> httpx.Response:
    return httpx.Response(
        status_code,
        headers={"content-type": "text/event-stream"},
        stream=stream,
    )


def make_client(handler: Callable[[httpx.Request], httpx.Response]) -> CheckmateClient:
    http_client = httpx.AsyncClient(
        transport=httpx.MockTransport(handler),
        base_url=BASE_URL,
    )
    return CheckmateClient(base_url=BASE_URL, http_client=http_client)


def run(coro):
    """Run a coroutine to completion on a fresh event loop."""
    return asyncio.run(coro)


async def collect(stream) -> List:
    return [event async for event in stream]


RUN_PASSED = [
    {"type": "run_started", "run_id": 7, "test_case_id": 3, "total_steps": 2,
     "retry_attempt": 0, "max_retries": 2, "original_run_id": None},
    {"type": "step_started", "step_number": 1, "action": "navigate", "value": "https://example.com"},
    {"type": "step_completed", "step_number": 1, "action": "navigate", "status": "passed",
     "duration": 250, "error": None, "screenshot": None},
    {"type": "step_started", "step_number": 2, "action": "click", "target": "#login"},
    {"type": "step_completed", "step_number": 2, "action": "click", "status": "passed",
     "duration": 150, "error": None, "screenshot": None, "retried": True},
    {"type": "run_completed", "run_id": 7, "status": "passed", "pass_count": 2,
     "error_count": 0, "summary": "All steps passed", "retry_attempt": 0, "max_retries": 2},
]


@pytest.fixture
def passed_run_events() -> List[dict]:
    return [dict(e) for e in RUN_PASSED]
