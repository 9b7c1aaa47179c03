"""
Checkmate Client - REST and streaming access to the Checkmate backend
"""
import logging
from collections import deque
from typing import Any, Deque, Dict, List, Optional, Sequence, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from ..config import settings
from ..models.events import DecodedEvent
from ..models.test_case import BuildResponse, Fixture, Project, TestCase, TestStep
from ..utils.helpers import decode_body, preview_body
from .decoder import SSEDecoder
from .errors import (
    CheckmateAPIError,
    CheckmateError,
    EmptyStreamError,
    InvalidResponseError,
    StreamInterruptedError,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

SSE_HEADERS = {
    "Content-Type": "application/json",
    "Accept": "text/event-stream",
    # the relay forwards bytes as-is, so they must arrive unencoded
    "Accept-Encoding": "identity",
}


class EventStream:
    """
    Lazy, cancellable sequence of events from one streaming exchange.

    Owns the upstream response until the stream is exhausted or closed.
    Closing early tears the connection down instead of reading it to the end.

    Usage:
        async with await client.execute_test_case(12) as stream:
            async for event in stream:
                ...
    """

    def __init__(self, response: httpx.Response):
        self._response = response
        self._chunks = response.aiter_bytes()
        self._decoder = SSEDecoder()
        self._pending: Deque[DecodedEvent] = deque()
        self._exhausted = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def status_code(self) -> int:
        return self._response.status_code

    def __aiter__(self) -> "EventStream":
        return self

    async def __anext__(self) -> DecodedEvent:
        while not self._pending:
            if self._exhausted or self._closed:
                raise StopAsyncIteration

            try:
                chunk = await self._chunks.__anext__()
            except StopAsyncIteration:
                self._exhausted = True
                self._pending.extend(self._decoder.finish())
                await self.aclose()
                continue
            except httpx.RequestError as e:
                await self.aclose()
                raise StreamInterruptedError(f"Event stream interrupted: {e}") from e

            self._pending.extend(self._decoder.feed(chunk))

        return self._pending.popleft()

    async def aclose(self):
        """Release the upstream connection. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        if not self._exhausted:
            logger.debug("[SSE] Closing event stream before end of stream")
            self._pending.clear()
        await self._chunks.aclose()
        await self._response.aclose()

    async def __aenter__(self) -> "EventStream":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()


class CheckmateClient:
    """Client for the Checkmate test execution API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
    ):
        """
        Initialize the client.

        Args:
            base_url: Checkmate API root. Defaults to settings.CHECKMATE_URL
            http_client: Pre-built httpx client (tests pass a mock transport)
            timeout: Timeout in seconds for non-streaming calls
        """
        self.base_url = (base_url or settings.CHECKMATE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.REQUEST_TIMEOUT
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(self.timeout),
        )

    async def aclose(self):
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "CheckmateClient":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    async def list_projects(self) -> List[Project]:
        data = await self._get_json("/api/projects", "list projects")
        return self._validate_list(Project, data, "list projects")

    async def get_project(self, project_id: int) -> Project:
        what = f"get project {project_id}"
        data = await self._get_json(f"/api/projects/{project_id}", what)
        return self._validate(Project, data, what)

    # ------------------------------------------------------------------
    # Test cases
    # ------------------------------------------------------------------

    async def list_test_cases(self, project_id: int) -> List[TestCase]:
        data = await self._get_json(f"/api/test-cases/project/{project_id}", "list test cases")
        return self._validate_list(TestCase, data, "list test cases")

    async def get_test_case(self, test_case_id: int) -> TestCase:
        what = f"get test case {test_case_id}"
        data = await self._get_json(f"/api/test-cases/{test_case_id}", what)
        return self._validate(TestCase, data, what)

    # ------------------------------------------------------------------
    # Fixtures
    # ------------------------------------------------------------------

    async def list_fixtures(self, project_id: int) -> List[Fixture]:
        data = await self._get_json(f"/api/projects/{project_id}/fixtures", "list fixtures")
        return self._validate_list(Fixture, data, "list fixtures")

    async def get_fixture(self, fixture_id: int) -> Fixture:
        what = f"get fixture {fixture_id}"
        data = await self._get_json(f"/api/fixtures/{fixture_id}", what)
        return self._validate(Fixture, data, what)

    # ------------------------------------------------------------------
    # Build test from natural language
    # ------------------------------------------------------------------

    async def build_test(
        self,
        project_id: int,
        natural_query: str,
        fixture_ids: Optional[Sequence[int]] = None,
    ) -> BuildResponse:
        """
        Ask the backend to turn a natural language query into test steps.

        Args:
            project_id: Project the test belongs to
            natural_query: Plain language description of the test
            fixture_ids: Fixtures the caller wants applied

        Returns:
            The generated test case and any clarification message
        """
        response = await self._send(
            "POST",
            f"/api/agent/projects/{project_id}/build",
            json={"message": natural_query, "fixture_ids": list(fixture_ids or [])},
        )
        if not response.is_success:
            raise CheckmateAPIError(
                f"Failed to build test: {response.text}", response.status_code, response.text
            )
        return self._validate(BuildResponse, self._json(response, "build test"), "build test")

    # ------------------------------------------------------------------
    # Streaming execution
    # ------------------------------------------------------------------

    async def execute_test_case(
        self,
        test_case_id: int,
        browser: Optional[str] = None,
        max_retries: Optional[int] = None,
        retry_mode: Optional[str] = None,
    ) -> EventStream:
        """
        Start a stored test case and stream its progress.

        Args:
            test_case_id: Test case to execute
            browser: Browser engine name
            max_retries: Retries the backend may schedule on failure
            retry_mode: Retry strategy, "simple" unless given

        Returns:
            An open EventStream
        """
        body: Dict[str, Any] = {}
        if browser:
            body["browser"] = browser
        if max_retries is not None:
            body["retry"] = {
                "max_retries": max_retries,
                "retry_mode": retry_mode or "simple",
            }
        return await self._open_event_stream(
            f"/api/test-cases/{test_case_id}/runs/stream", body, "execute test case"
        )

    async def execute_steps(
        self,
        project_id: int,
        steps: Sequence[TestStep],
        browser: Optional[str] = None,
        fixture_ids: Optional[Sequence[int]] = None,
    ) -> EventStream:
        """Run ad-hoc steps without a stored test case and stream their progress."""
        body: Dict[str, Any] = {
            "project_id": project_id,
            "steps": [step.model_dump(exclude_none=True) for step in steps],
        }
        if browser:
            body["browser"] = browser
        if fixture_ids:
            body["fixture_ids"] = list(fixture_ids)
        return await self._open_event_stream("/api/test-runs/execute/stream", body, "execute steps")

    async def open_upstream(self, path: str, body: Dict[str, Any]) -> httpx.Response:
        """
        Send a streaming POST and return the response with its body unread.

        The caller owns the response and must close it.
        """
        request = self._client.build_request(
            "POST",
            path,
            json=body,
            headers=SSE_HEADERS,
            timeout=httpx.Timeout(self.timeout, read=None),
        )
        return await self._client.send(request, stream=True)

    async def _open_event_stream(self, path: str, body: Dict[str, Any], what: str) -> EventStream:
        try:
            response = await self.open_upstream(path, body)
        except httpx.RequestError as e:
            raise CheckmateError(f"Failed to {what}: {e}") from e

        if not response.is_success:
            try:
                error_text = decode_body(await response.aread())
            finally:
                await response.aclose()
            logger.error(f"[SSE] {what} failed ({response.status_code}): {preview_body(error_text)}")
            raise CheckmateAPIError(
                f"Failed to {what}: {error_text or response.reason_phrase}",
                response.status_code,
                error_text,
            )

        if response.status_code == 204:
            await response.aclose()
            raise EmptyStreamError(f"Failed to {what}: no response body")

        return EventStream(response)

    # ------------------------------------------------------------------
    # Health check
    # ------------------------------------------------------------------

    async def health_check(self) -> bool:
        try:
            response = await self._client.get("/health")
        except httpx.HTTPError as e:
            logger.debug(f"Checkmate health check failed: {e}")
            return False
        return response.is_success

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            return await self._client.request(method, path, **kwargs)
        except httpx.RequestError as e:
            raise CheckmateError(f"Checkmate API unreachable at {self.base_url}: {e}") from e

    async def _get_json(self, path: str, what: str) -> Any:
        response = await self._send("GET", path)
        if not response.is_success:
            raise CheckmateAPIError(
                f"Failed to {what}: {response.reason_phrase}", response.status_code, response.text
            )
        return self._json(response, what)

    @staticmethod
    def _json(response: httpx.Response, what: str) -> Any:
        try:
            return response.json()
        except ValueError as e:
            logger.error(f"[API] {what}: response is not JSON: {preview_body(response.content)}")
            raise InvalidResponseError(f"Failed to {what}: response is not JSON") from e

    @staticmethod
    def _validate(model: Type[ModelT], data: Any, what: str) -> ModelT:
        try:
            return model.model_validate(data)
        except ValidationError as e:
            logger.error(f"[API] {what}: unexpected {model.__name__} shape: {e}")
            raise InvalidResponseError(
                f"Failed to {what}: invalid {model.__name__} data ({e.error_count()} error(s))"
            ) from e

    @classmethod
    def _validate_list(cls, model: Type[ModelT], data: Any, what: str) -> List[ModelT]:
        if not isinstance(data, list):
            raise InvalidResponseError(f"Failed to {what}: expected a list, got {type(data).__name__}")
        return [cls._validate(model, item, what) for item in data]
