"""
FastAPI surface for the orchestration engine.

Endpoints:
- POST /orchestrations: start a plan (202), 400 for an empty plan,
  503 when no execution engine is registered
- GET /orchestrations/{id}/status: lifecycle status plus applied adaptations
- GET /orchestrations/{id}/progress: progress snapshot
- POST /orchestrations/{id}/pause|resume|cancel: ``{"accepted": bool}``
- GET /orchestrations/{id}/result: final result (200), 202 while running,
  404 for unknown IDs
- GET /health: version, uptime and active orchestration count

Usage:
    $ uvicorn crossflow.api.server:app --host 0.0.0.0 --port 8000

    $ curl -X POST http://localhost:8000/orchestrations \
      -H 'Content-Type: application/json' \
      -d '{"scenario": "order flow", "steps": [{"step_id": "s1", "kind": "rest_call", "target": "orders"}]}'
    {"orchestration_id": "orch-1718...-3f2a9c1b", "status": "running"}

The execution engine is supplied by the embedding application:

    container = get_container()
    container.register_singleton("execution_engine", MyEngine())
"""

import time
import uuid
from collections import OrderedDict
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .. import __version__
from ..config.container import Container, get_container
from ..core.errors import EngineNotConfiguredError, InvalidPlanError
from ..core.orchestrator import OrchestrationHandle, Orchestrator
from ..core.state_machine import OrchestrationStatus
from ..models import (
    AssertionRule,
    AssertionSeverity,
    RetryPolicy,
    StepType,
    TestConfiguration,
    TestPlan,
    TestResult,
    TestStep,
)
from ..observability.logging import get_logger, setup_logging
from ..observability.tracing import TracingManager

logger = get_logger(__name__)


class RetryPolicyModel(BaseModel):
    max_attempts: int = Field(3, ge=1)
    initial_delay: float = Field(1.0, ge=0)
    max_delay: float = Field(30.0, ge=0)
    backoff_multiplier: float = Field(2.0, ge=1.0)


class StepModel(BaseModel):
    step_id: str = Field(..., min_length=1)
    kind: StepType
    target: str = Field(..., min_length=1)
    input_payload: dict[str, Any] = Field(default_factory=dict)
    timeout: float = Field(30.0, gt=0, description="Step timeout in seconds")
    retry_policy: RetryPolicyModel = Field(default_factory=RetryPolicyModel)
    description: str = ""

    def to_step(self) -> TestStep:
        return TestStep(
            step_id=self.step_id,
            kind=self.kind,
            target=self.target,
            input_payload=self.input_payload,
            timeout=self.timeout,
            retry_policy=RetryPolicy(**self.retry_policy.model_dump()),
            description=self.description,
        )


class AssertionModel(BaseModel):
    rule_id: str = Field(..., min_length=1)
    condition: str
    expected_value: Any = None
    severity: AssertionSeverity = AssertionSeverity.ERROR
    description: str = ""
    enabled: bool = True

    def to_rule(self) -> AssertionRule:
        return AssertionRule(**self.model_dump())


class PlanRequest(BaseModel):
    """Request model for starting an orchestration."""

    plan_id: str | None = Field(None, description="Generated when omitted")
    scenario: str = Field(..., min_length=1, max_length=5000)
    steps: list[StepModel] = Field(default_factory=list)
    assertions: list[AssertionModel] = Field(default_factory=list)
    test_data: dict[str, Any] = Field(default_factory=dict)

    def to_plan(self) -> TestPlan:
        return TestPlan(
            plan_id=self.plan_id or f"plan-{uuid.uuid4().hex[:12]}",
            scenario=self.scenario,
            steps=[s.to_step() for s in self.steps],
            assertions=[a.to_rule() for a in self.assertions],
            test_data=self.test_data,
            configuration=TestConfiguration(),
        )


class StartResponse(BaseModel):
    orchestration_id: str
    status: str


class StatusResponse(BaseModel):
    orchestration_id: str
    status: str
    adaptations: list[dict[str, Any]] = Field(default_factory=list)


class ControlResponse(BaseModel):
    orchestration_id: str
    accepted: bool


class HealthResponse(BaseModel):
    status: str
    version: str
    uptime_seconds: float
    active_orchestrations: int
    components: dict[str, str]


class ResultStore:
    """Bounded map of orchestration ID to handle, oldest dropped first."""

    def __init__(self, retention: int):
        self.retention = retention
        self._handles: OrderedDict[str, OrchestrationHandle] = OrderedDict()

    def add(self, handle: OrchestrationHandle) -> None:
        self._handles[handle.orchestration_id] = handle
        while len(self._handles) > self.retention:
            self._handles.popitem(last=False)

    def get(self, orchestration_id: str) -> OrchestrationHandle | None:
        return self._handles.get(orchestration_id)


def result_to_dict(result: TestResult) -> dict[str, Any]:
    data = jsonable_encoder(result)
    data["execution_time"] = result.execution_time
    return data


def _get_orchestrator(request: Request) -> Orchestrator:
    container: Container = request.app.state.container
    try:
        return container.get("orchestrator")
    except EngineNotConfiguredError as e:
        raise HTTPException(status_code=503, detail=str(e)) from e


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    container: Container = app.state.container
    settings = container.settings

    setup_logging(settings.observability.log_level)
    logger.info("Starting crossflow API server...", environment=settings.environment)

    tracing: TracingManager | None = None
    if settings.observability.enable_tracing:
        try:
            tracing = TracingManager(
                settings.observability.service_name, settings.observability.service_version
            )
            tracing.initialize(otlp_endpoint=settings.observability.otlp_endpoint)
        except Exception as e:
            logger.error(f"Failed to initialize tracing: {e}")
            tracing = None

    app.state.startup_time = time.time()
    logger.info("crossflow API server ready")

    yield

    logger.info("Shutting down crossflow API server...")
    await container.cleanup()
    if tracing is not None:
        tracing.shutdown()


def create_app(container: Container | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    container = container or get_container()
    settings = container.settings

    app = FastAPI(
        title="crossflow",
        description="Orchestration and correlation engine for cross-service test plans",
        version=__version__,
        docs_url="/docs" if settings.api.enable_docs else None,
        redoc_url="/redoc" if settings.api.enable_docs else None,
        lifespan=lifespan,
    )
    app.state.container = container
    app.state.results = ResultStore(settings.api.result_retention)

    if settings.api.enable_cors:
        cors_origins = settings.api.cors_origins
        if "*" in cors_origins and settings.is_production():
            logger.warning("Wildcard CORS disabled in production")
            cors_origins = []

        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["authorization", "content-type", "x-request-id"],
        )

    @app.get("/health", response_model=HealthResponse)
    async def health_check_endpoint(request: Request) -> HealthResponse:
        startup_time = getattr(app.state, "startup_time", time.time())
        components = {"config": "healthy"}
        active = 0
        try:
            orchestrator = container.get("orchestrator")
            components["orchestrator"] = "healthy"
            active = len(orchestrator.active_orchestration_ids())
        except EngineNotConfiguredError:
            components["orchestrator"] = "not_configured"

        return HealthResponse(
            status="healthy" if components["orchestrator"] == "healthy" else "degraded",
            version=__version__,
            uptime_seconds=max(0.0, time.time() - startup_time),
            active_orchestrations=active,
            components=components,
        )

    @app.post("/orchestrations", response_model=StartResponse, status_code=202)
    async def start_orchestration_endpoint(
        plan_request: PlanRequest, request: Request
    ) -> StartResponse:
        orchestrator = _get_orchestrator(request)
        plan = plan_request.to_plan()
        try:
            handle = orchestrator.start(plan)
        except InvalidPlanError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e

        app.state.results.add(handle)
        logger.info(
            "Orchestration accepted",
            orchestration_id=handle.orchestration_id,
            plan_id=plan.plan_id,
        )
        return StartResponse(
            orchestration_id=handle.orchestration_id,
            status=orchestrator.status(handle.orchestration_id).value,
        )

    @app.get("/orchestrations/{orchestration_id}/status", response_model=StatusResponse)
    async def status_endpoint(orchestration_id: str, request: Request) -> StatusResponse:
        orchestrator = _get_orchestrator(request)
        orchestration = orchestrator.get_orchestration(orchestration_id)
        adaptations = []
        if orchestration is not None:
            adaptations = [jsonable_encoder(a) for a in orchestration.adaptations]
        return StatusResponse(
            orchestration_id=orchestration_id,
            status=orchestrator.status(orchestration_id).value,
            adaptations=adaptations,
        )

    @app.get("/orchestrations/{orchestration_id}/progress")
    async def progress_endpoint(orchestration_id: str, request: Request) -> dict[str, Any]:
        orchestrator = _get_orchestrator(request)
        return orchestrator.progress(orchestration_id).to_dict()

    @app.post("/orchestrations/{orchestration_id}/pause", response_model=ControlResponse)
    async def pause_endpoint(orchestration_id: str, request: Request) -> ControlResponse:
        accepted = _get_orchestrator(request).pause(orchestration_id)
        return ControlResponse(orchestration_id=orchestration_id, accepted=accepted)

    @app.post("/orchestrations/{orchestration_id}/resume", response_model=ControlResponse)
    async def resume_endpoint(orchestration_id: str, request: Request) -> ControlResponse:
        accepted = _get_orchestrator(request).resume(orchestration_id)
        return ControlResponse(orchestration_id=orchestration_id, accepted=accepted)

    @app.post("/orchestrations/{orchestration_id}/cancel", response_model=ControlResponse)
    async def cancel_endpoint(orchestration_id: str, request: Request) -> ControlResponse:
        accepted = _get_orchestrator(request).cancel(orchestration_id)
        return ControlResponse(orchestration_id=orchestration_id, accepted=accepted)

    @app.get("/orchestrations/{orchestration_id}/result")
    async def result_endpoint(orchestration_id: str) -> JSONResponse:
        handle = app.state.results.get(orchestration_id)
        if handle is None:
            raise HTTPException(status_code=404, detail=f"Unknown orchestration {orchestration_id}")
        if not handle.done():
            status = container.get("orchestrator").status(orchestration_id)
            if status is OrchestrationStatus.NOT_FOUND:
                # Evicted but the task has not reported back yet
                status = OrchestrationStatus.RUNNING
            return JSONResponse(
                status_code=202,
                content={"orchestration_id": orchestration_id, "status": status.value},
            )
        if handle.result.cancelled():
            raise HTTPException(status_code=409, detail="Orchestration task was cancelled")
        return JSONResponse(content=result_to_dict(handle.result.result()))

    return app


app = create_app()
