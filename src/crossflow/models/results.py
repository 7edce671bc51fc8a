"""
Execution results reported by the execution engine.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from .plan import AssertionSeverity


class TestStatus(Enum):
    """Verdict of a test run or of a single step."""

    __test__ = False

    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"
    TIMEOUT = "timeout"


class InteractionStatus(Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    TIMEOUT = "timeout"
    SKIPPED = "skipped"


@dataclass
class ServiceInteraction:
    """One call made against a target while executing a step."""

    target: str
    status: InteractionStatus
    response_time_ms: float = 0.0
    correlation_id: str | None = None
    step_id: str | None = None
    error_message: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def succeeded(self) -> bool:
        return self.status is InteractionStatus.SUCCESS

    @property
    def failed(self) -> bool:
        return self.status in (InteractionStatus.FAILURE, InteractionStatus.TIMEOUT)


@dataclass
class StepResult:
    step_id: str
    status: TestStatus
    attempt_count: int = 1
    execution_time_ms: float = 0.0
    output: Any = None
    error_message: str | None = None


@dataclass
class AssertionResult:
    rule_id: str
    passed: bool
    severity: AssertionSeverity = AssertionSeverity.ERROR
    actual_value: Any = None
    expected_value: Any = None
    message: str = ""


@dataclass
class TestResult:
    """Final verdict of a plan execution."""

    __test__ = False

    plan_id: str
    status: TestStatus
    start_time: datetime | None = None
    end_time: datetime | None = None
    step_results: list[StepResult] = field(default_factory=list)
    assertion_results: list[AssertionResult] = field(default_factory=list)
    interactions: list[ServiceInteraction] = field(default_factory=list)
    error_message: str | None = None
    correlation_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def passed(self) -> bool:
        return self.status is TestStatus.PASSED

    @property
    def execution_time(self) -> float:
        """Wall-clock duration in seconds, 0 when either bound is missing."""
        if self.start_time is None or self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @classmethod
    def failure(
        cls,
        plan_id: str,
        error_message: str,
        start_time: datetime | None = None,
        correlation_id: str | None = None,
    ) -> "TestResult":
        """Synthesize a failed result for an execution that raised."""
        return cls(
            plan_id=plan_id,
            status=TestStatus.FAILED,
            start_time=start_time,
            end_time=datetime.now(UTC),
            error_message=error_message,
            correlation_id=correlation_id,
        )
