"""
Shared fixtures: fakes for the collaborator protocols, plan builders and
settings with poll intervals shrunk so end-to-end tests finish quickly.
"""

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from crossflow.config.settings import (
    AdaptationConfig,
    OrchestratorConfig,
    ProgressConfig,
    Settings,
    get_settings,
)
from crossflow.core.interfaces import OracleReply
from crossflow.models import (
    AssertionRule,
    AssertionSeverity,
    RetryPolicy,
    StepType,
    TestPlan,
    TestResult,
    TestStatus,
    TestStep,
)
from crossflow.observability.logging import clear_correlation_id


class FakeEngine:
    """Execution engine that sleeps, then returns a fixed verdict (or raises)."""

    def __init__(self, delay: float = 0.05, status: TestStatus = TestStatus.PASSED, error=None):
        self.delay = delay
        self.status = status
        self.error = error
        self.plans: list[TestPlan] = []
        self.started = asyncio.Event()
        self.release: asyncio.Event | None = None

    async def execute_test(self, plan: TestPlan) -> TestResult:
        self.plans.append(plan)
        self.started.set()
        start = datetime.now(UTC)
        if self.release is not None:
            await self.release.wait()
        else:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return TestResult(
            plan_id=plan.plan_id,
            status=self.status,
            start_time=start,
            end_time=datetime.now(UTC),
        )


class ScriptedOracle:
    """Decision oracle replying with a fixed text and counting calls."""

    def __init__(self, text: str = "no adaptation needed", success: bool = True):
        self.text = text
        self.success = success
        self.prompts: list[str] = []

    @property
    def calls(self) -> int:
        return len(self.prompts)

    async def ask(self, prompt: str) -> OracleReply:
        self.prompts.append(prompt)
        return OracleReply(
            text=self.text,
            success=self.success,
            error_message=None if self.success else "model offline",
        )


class FailingOracle:
    """Decision oracle whose every call raises."""

    def __init__(self):
        self.calls = 0

    async def ask(self, prompt: str) -> OracleReply:
        self.calls += 1
        raise ConnectionError("oracle unreachable")


class ManualClock:
    """Deterministic clock for the trackers."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 1, 1, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def build_plan(
    steps: int = 3,
    plan_id: str = "plan-1",
    targets: list[str] | None = None,
    timeout: float = 30.0,
    max_attempts: int = 3,
    severities: list[AssertionSeverity] | None = None,
) -> TestPlan:
    targets = targets or [f"service-{i}" for i in range(steps)]
    return TestPlan(
        plan_id=plan_id,
        scenario="order is placed and confirmed",
        steps=[
            TestStep(
                step_id=f"step-{i + 1}",
                kind=StepType.REST_CALL,
                target=targets[i % len(targets)],
                timeout=timeout,
                retry_policy=RetryPolicy(max_attempts=max_attempts),
            )
            for i in range(steps)
        ],
        assertions=[
            AssertionRule(rule_id=f"rule-{i}", condition="status == 200", severity=severity)
            for i, severity in enumerate(severities or [])
        ],
        test_data={"order_id": "o-123"},
    )


@pytest.fixture(autouse=True)
def reset_global_state():
    """Keep cached settings and the correlation context from leaking between tests."""
    get_settings.cache_clear()
    clear_correlation_id()
    yield
    get_settings.cache_clear()
    clear_correlation_id()


@pytest.fixture
def make_plan():
    return build_plan


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def fast_settings() -> Settings:
    return Settings(
        orchestrator=OrchestratorConfig(poll_interval=0.01, progress_retention=60.0),
        progress=ProgressConfig(average_step_duration=10.0),
        adaptation=AdaptationConfig(oracle_timeout=1.0),
    )


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def oracle() -> ScriptedOracle:
    return ScriptedOracle()


@pytest.fixture
def failing_oracle() -> FailingOracle:
    return FailingOracle()
