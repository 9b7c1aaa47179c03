"""Tests for CheckmateClient and EventStream lifecycle."""

from __future__ import annotations

import json

import httpx
import pytest

from checkmate_bridge.models.test_case import TestStep as Step
from checkmate_bridge.stream.errors import (
    CheckmateAPIError,
    CheckmateError,
    EmptyStreamError,
    InvalidResponseError,
    StreamInterruptedError,
)
from conftest import RUN_PASSED, RecordingStream, collect, make_client, run, sse, stream_response


class TestExecuteTestCase:
    def test_request_shape(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["path"] = request.url.path
            seen["accept"] = request.headers["accept"]
            seen["body"] = json.loads(request.content)
            return stream_response(RecordingStream([sse(*RUN_PASSED)]))

        async def scenario():
            client = make_client(handler)
            stream = await client.execute_test_case(3, browser="firefox", max_retries=2)
            return await collect(stream)

        events = run(scenario())
        assert seen["method"] == "POST"
        assert seen["path"] == "/api/test-cases/3/runs/stream"
        assert seen["accept"] == "text/event-stream"
        assert seen["body"] == {
            "browser": "firefox",
            "retry": {"max_retries": 2, "retry_mode": "simple"},
        }
        assert [e.type for e in events] == [e["type"] for e in RUN_PASSED]

    def test_body_omits_unset_options(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return stream_response(RecordingStream([]))

        async def scenario():
            stream = await make_client(handler).execute_test_case(3)
            return await collect(stream)

        assert run(scenario()) == []
        assert seen["body"] == {}

    def test_non_success_status_fails_fast_with_body(self):
        upstream = RecordingStream([b"internal kaboom"])

        def handler(request):
            return httpx.Response(500, stream=upstream)

        async def scenario():
            await make_client(handler).execute_test_case(3)

        with pytest.raises(CheckmateAPIError) as excinfo:
            run(scenario())
        assert excinfo.value.status_code == 500
        assert excinfo.value.body == "internal kaboom"
        assert "internal kaboom" in str(excinfo.value)
        assert upstream.close_count == 1

    def test_no_content_response_raises_empty_stream(self):
        def handler(request):
            return httpx.Response(204)

        async def scenario():
            await make_client(handler).execute_test_case(3)

        with pytest.raises(EmptyStreamError):
            run(scenario())

    def test_unreachable_backend_raises_checkmate_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async def scenario():
            await make_client(handler).execute_test_case(3)

        with pytest.raises(CheckmateError, match="connection refused"):
            run(scenario())


class TestExecuteSteps:
    def test_request_shape(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return stream_response(RecordingStream([sse(RUN_PASSED[0])]))

        async def scenario():
            client = make_client(handler)
            steps = [Step(action="navigate", value="https://example.com")]
            stream = await client.execute_steps(5, steps, browser="webkit", fixture_ids=[2])
            return await collect(stream)

        events = run(scenario())
        assert seen["path"] == "/api/test-runs/execute/stream"
        assert seen["body"] == {
            "project_id": 5,
            "steps": [{"action": "navigate", "value": "https://example.com"}],
            "browser": "webkit",
            "fixture_ids": [2],
        }
        assert events[0].type == "run_started"


class TestEventStreamLifecycle:
    def test_exhaustion_releases_handle_once(self):
        upstream = RecordingStream([sse(*RUN_PASSED)])

        async def scenario():
            stream = await make_client(lambda r: stream_response(upstream)).execute_test_case(3)
            events = await collect(stream)
            await stream.aclose()
            return stream, events

        stream, events = run(scenario())
        assert len(events) == len(RUN_PASSED)
        assert stream.closed
        assert upstream.close_count == 1

    def test_early_abandonment_cancels_upstream(self):
        upstream = RecordingStream([sse(*RUN_PASSED)], endless=True)

        async def scenario():
            client = make_client(lambda r: stream_response(upstream))
            async with await client.execute_test_case(3) as stream:
                async for event in stream:
                    if event.type == "step_started":
                        break
            await stream.aclose()

        run(scenario())
        assert upstream.close_count == 1
        assert not upstream.drained

    def test_iteration_after_close_stops(self):
        upstream = RecordingStream([sse(*RUN_PASSED)], endless=True)

        async def scenario():
            stream = await make_client(lambda r: stream_response(upstream)).execute_test_case(3)
            first = await stream.__anext__()
            await stream.aclose()
            return first, await collect(stream)

        first, rest = run(scenario())
        assert first.type == "run_started"
        assert rest == []
        assert upstream.close_count == 1

    def test_final_frame_without_newline_is_delivered(self):
        tail = b'data: {"type": "run_completed", "status": "passed"}'
        upstream = RecordingStream([sse(*RUN_PASSED[:5]), tail])

        async def scenario():
            stream = await make_client(lambda r: stream_response(upstream)).execute_test_case(3)
            return await collect(stream)

        events = run(scenario())
        assert events[-1].type == "run_completed"

    def test_mid_stream_failure_raises_interrupted(self):
        upstream = RecordingStream(
            [sse(*RUN_PASSED[:2])],
            fail_with=httpx.ReadError("connection reset"),
        )

        async def scenario():
            stream = await make_client(lambda r: stream_response(upstream)).execute_test_case(3)
            received = []
            with pytest.raises(StreamInterruptedError):
                async for event in stream:
                    received.append(event)
            return stream, received

        stream, received = run(scenario())
        assert [e.type for e in received] == ["run_started", "step_started"]
        assert stream.closed
        assert upstream.close_count == 1

    def test_mid_stream_decoding_failure_raises_interrupted(self):
        upstream = RecordingStream([b"not gzip at all"])

        def handler(request):
            return httpx.Response(
                200,
                headers={"content-type": "text/event-stream", "content-encoding": "gzip"},
                stream=upstream,
            )

        async def scenario():
            stream = await make_client(handler).execute_test_case(3)
            with pytest.raises(StreamInterruptedError):
                await collect(stream)
            return stream

        stream = run(scenario())
        assert stream.closed
        assert upstream.close_count == 1


class TestCatalog:
    def test_list_test_cases_parses_json_columns(self):
        def handler(request):
            assert request.url.path == "/api/test-cases/project/1"
            return httpx.Response(200, json=[{
                "id": 4,
                "project_id": 1,
                "name": "Login",
                "natural_query": "log in",
                "steps": json.dumps([{"action": "click", "target": "#go", "value": None}]),
                "tags": json.dumps(["smoke"]),
                "fixture_ids": None,
                "priority": "high",
                "status": "active",
            }])

        cases = run(make_client(handler).list_test_cases(1))
        assert cases[0].steps[0].target == "#go"
        assert cases[0].tags == ["smoke"]
        assert cases[0].fixture_ids == []

    def test_get_fixture_parses_setup_steps(self):
        def handler(request):
            return httpx.Response(200, json={
                "id": 2, "project_id": 1, "name": "admin login",
                "setup_steps": json.dumps([{"action": "navigate", "value": "/login"}]),
                "scope": "session", "cache_ttl_seconds": 600,
            })

        fixture = run(make_client(handler).get_fixture(2))
        assert fixture.setup_steps[0].action == "navigate"

    def test_get_project_error_carries_status(self):
        def handler(request):
            return httpx.Response(404, json={"detail": "missing"})

        with pytest.raises(CheckmateAPIError) as excinfo:
            run(make_client(handler).get_project(99))
        assert excinfo.value.status_code == 404
        assert "get project 99" in str(excinfo.value)

    def test_build_test(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "test_case": {
                    "name": "Dashboard loads",
                    "natural_query": "check dashboard",
                    "priority": "medium",
                    "tags": [],
                    "steps": [{"action": "navigate", "target": None, "value": "/dashboard"}],
                    "fixture_ids": [3],
                },
                "message": None,
                "needs_clarification": False,
            })

        result = run(make_client(handler).build_test(1, "check dashboard"))
        assert seen["path"] == "/api/agent/projects/1/build"
        assert seen["body"] == {"message": "check dashboard", "fixture_ids": []}
        assert result.test_case.fixture_ids == [3]

    def test_build_test_error_includes_body(self):
        def handler(request):
            return httpx.Response(422, text="query too vague")

        with pytest.raises(CheckmateAPIError, match="query too vague"):
            run(make_client(handler).build_test(1, "?"))

    def test_health_check(self):
        assert run(make_client(lambda r: httpx.Response(200, json={})).health_check()) is True
        assert run(make_client(lambda r: httpx.Response(503)).health_check()) is False

    def test_health_check_unreachable(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        assert run(make_client(handler).health_check()) is False

    def test_malformed_json_column_raises_invalid_response(self):
        def handler(request):
            return httpx.Response(200, json={
                "id": 4, "project_id": 1, "name": "Login", "steps": "[{not json",
            })

        with pytest.raises(InvalidResponseError, match="get test case 4"):
            run(make_client(handler).get_test_case(4))

    def test_non_json_body_raises_invalid_response(self):
        def handler(request):
            return httpx.Response(200, text="<html>gateway</html>")

        with pytest.raises(InvalidResponseError, match="list projects"):
            run(make_client(handler).list_projects())

    def test_listing_that_is_not_a_list_raises_invalid_response(self):
        def handler(request):
            return httpx.Response(200, json={"detail": "oops"})

        with pytest.raises(InvalidResponseError, match="expected a list"):
            run(make_client(handler).list_fixtures(1))
