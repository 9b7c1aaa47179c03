"""
FastAPI Main Application - Checkmate Bridge
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Path
from fastapi.middleware.cors import CORSMiddleware

from .config import settings
from .models.report import TestCaseInfo
from .models.requests import ExecuteStepsRequest, NaturalTestRequest, RunStreamRequest, RunTestRequest
from .runner.orchestrator import RunOrchestrator, build_report
from .stream.client import CheckmateClient
from .stream.errors import CheckmateAPIError, CheckmateError
from .stream.relay import StreamRelay
from .utils.helpers import timestamp_now

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format='%(asctime)s - %(levelname)s - %(name)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.client = CheckmateClient(settings.CHECKMATE_URL)
    logger.info(f"Checkmate API: {settings.CHECKMATE_URL}")
    try:
        yield
    finally:
        await app.state.client.aclose()


app = FastAPI(
    title=settings.APP_NAME,
    description="Streams Checkmate browser test runs to model-driven clients",
    version=settings.APP_VERSION,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_client() -> CheckmateClient:
    return app.state.client


def _http_error(e: CheckmateError) -> HTTPException:
    if isinstance(e, CheckmateAPIError) and e.status_code == 404:
        return HTTPException(status_code=404, detail=str(e))
    return HTTPException(status_code=502, detail=str(e))


@app.get("/health")
async def health_check(client: CheckmateClient = Depends(get_client)):
    """Health check endpoint"""
    checkmate_healthy = await client.health_check()
    return {
        "status": "ok",
        "name": settings.APP_NAME,
        "checkmate": "connected" if checkmate_healthy else "unavailable",
        "checkmateUrl": client.base_url,
        "timestamp": timestamp_now(),
    }


# Catalog endpoints
@app.get("/api/projects")
async def list_projects(client: CheckmateClient = Depends(get_client)):
    """
    List all projects with their test case counts.
    """
    logger.info("[Tool] list_projects called")
    try:
        projects = await client.list_projects()
    except CheckmateError as e:
        logger.error(f"[Tool] list_projects failed: {e}")
        raise _http_error(e)

    async def enrich(project):
        try:
            test_cases = await client.list_test_cases(project.id)
        except CheckmateError as e:
            logger.warning(f"[Tool] Could not count test cases for project {project.id}: {e}")
            return {**project.model_dump(), "test_case_count": 0, "active_count": 0}
        return {
            **project.model_dump(),
            "test_case_count": len(test_cases),
            "active_count": sum(1 for tc in test_cases if tc.status == "active"),
        }

    enriched = await asyncio.gather(*(enrich(p) for p in projects))
    if enriched:
        text = "\n".join(
            f"- {p['name']} ({p['test_case_count']} tests) - {p['base_url']}" for p in enriched
        )
    else:
        text = "No projects found."
    return {"projects": enriched, "text": f"Projects:\n{text}"}


@app.get("/api/projects/{project_id}/test-cases")
async def list_test_cases(
    project_id: int = Path(..., gt=0),
    client: CheckmateClient = Depends(get_client),
):
    """
    List all test cases in a project.
    """
    logger.info(f"[Tool] list_test_cases called for project {project_id}")
    try:
        project, test_cases = await asyncio.gather(
            client.get_project(project_id),
            client.list_test_cases(project_id),
        )
    except CheckmateError as e:
        logger.error(f"[Tool] list_test_cases failed: {e}")
        raise _http_error(e)

    if test_cases:
        lines = "\n".join(f"- [{tc.id}] {tc.name} ({tc.status}, {tc.priority})" for tc in test_cases)
    else:
        lines = f'No test cases found in project "{project.name}".'
    return {
        "project": project,
        "test_cases": test_cases,
        "text": f'Test cases in "{project.name}":\n{lines}',
    }


# Run endpoints
@app.post("/api/test-cases/{test_case_id}/run")
async def run_test(
    request: Optional[RunTestRequest] = None,
    test_case_id: int = Path(..., gt=0),
    client: CheckmateClient = Depends(get_client),
):
    """
    Execute a test case and return its folded run state.
    """
    request = request or RunTestRequest()
    logger.info(f"[Tool] run_test called for test case {test_case_id}")
    try:
        test_case = await client.get_test_case(test_case_id)
        outcome = await RunOrchestrator(client).run_test_case(
            test_case_id,
            browser=request.browser,
            max_retries=request.max_retries,
            retry_mode=request.retry_mode,
        )
    except CheckmateError as e:
        logger.error(f"[Tool] run_test failed: {e}")
        raise _http_error(e)

    info = TestCaseInfo(id=test_case.id, name=test_case.name, description=test_case.description)
    return build_report(info, outcome)


@app.post("/api/projects/{project_id}/natural-test")
async def run_natural_test(
    request: NaturalTestRequest,
    project_id: int = Path(..., gt=0),
    client: CheckmateClient = Depends(get_client),
):
    """
    Build steps from a natural language query and execute them.
    """
    logger.info(f'[Tool] run_natural_test called: "{request.query}" in project {project_id}')
    try:
        build = await client.build_test(project_id, request.query, request.fixture_ids)
        steps = build.test_case.steps
        if not steps:
            raise HTTPException(
                status_code=400,
                detail=build.message or "No test steps could be generated from the query",
            )
        # fixtures chosen by the builder take precedence
        fixture_ids = build.test_case.fixture_ids or request.fixture_ids or []
        logger.info(f"[Build] Generated {len(steps)} steps, fixtures: {fixture_ids}")

        outcome = await RunOrchestrator(client).run_steps(
            project_id, steps, browser=request.browser, fixture_ids=fixture_ids
        )
    except CheckmateError as e:
        logger.error(f"[Tool] run_natural_test failed: {e}")
        raise _http_error(e)

    info = TestCaseInfo(name=request.query, description=f"Natural language test: {request.query}")
    return build_report(info, outcome, query=request.query, generated_steps=steps)


# SSE proxy endpoints
@app.post("/proxy/test-cases/{test_case_id}/runs/stream")
async def proxy_test_case_stream(
    request: Optional[RunStreamRequest] = None,
    test_case_id: int = Path(..., gt=0),
    client: CheckmateClient = Depends(get_client),
):
    """
    Relay a test case run's event stream from Checkmate.
    """
    request = request or RunStreamRequest()
    logger.info(f"[Proxy] SSE request for test case {test_case_id}")
    return await StreamRelay(client).forward(
        f"/api/test-cases/{test_case_id}/runs/stream",
        {"browser": request.browser or settings.DEFAULT_BROWSER},
    )


@app.post("/proxy/test-runs/execute/stream")
async def proxy_execute_stream(
    request: ExecuteStepsRequest,
    client: CheckmateClient = Depends(get_client),
):
    """
    Relay a direct step execution's event stream from Checkmate.
    """
    logger.info(f"[Proxy] SSE request for execute steps in project {request.project_id}")
    return await StreamRelay(client).forward(
        "/api/test-runs/execute/stream",
        request.model_dump(mode="json", exclude_none=True),
    )


def run():
    import uvicorn
    uvicorn.run(app, host=settings.HOST, port=settings.PORT, log_level=settings.LOG_LEVEL.lower())


if __name__ == "__main__":
    run()
