"""
Test plan model.

Plans are frozen: adaptation builds a new plan with ``dataclasses.replace``
instead of mutating the one being executed, so every version of a plan
stays available for audit.
"""

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class StepType(Enum):
    """Kind of work a step performs."""

    KAFKA_EVENT = "kafka_event"
    REST_CALL = "rest_call"
    DATABASE_CHECK = "database_check"
    ASSERTION = "assertion"
    WAIT = "wait"
    SETUP = "setup"
    CLEANUP = "cleanup"


class AssertionSeverity(Enum):
    """Assertion severity, ordered from least to most strict."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

    def relaxed(self) -> "AssertionSeverity":
        """One level down, never below WARNING (INFO is left as is)."""
        if self is AssertionSeverity.CRITICAL:
            return AssertionSeverity.ERROR
        if self is AssertionSeverity.ERROR:
            return AssertionSeverity.WARNING
        return self


@dataclass(frozen=True)
class RetryPolicy:
    """Retry behaviour for a single step."""

    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 30.0
    backoff_multiplier: float = 2.0


@dataclass(frozen=True)
class ExpectedOutcome:
    """An outcome a step is expected to produce."""

    outcome_id: str
    description: str = ""
    expected_value: Any = None
    condition: str | None = None


@dataclass(frozen=True)
class AssertionRule:
    """A plan-level assertion evaluated by the execution engine."""

    rule_id: str
    condition: str
    expected_value: Any = None
    severity: AssertionSeverity = AssertionSeverity.ERROR
    description: str = ""
    enabled: bool = True


@dataclass(frozen=True)
class TestStep:
    """One step of a plan targeting a queue topic, HTTP service or database."""

    __test__ = False

    step_id: str
    kind: StepType
    target: str
    input_payload: dict[str, Any] = field(default_factory=dict)
    timeout: float = 30.0
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    expected_outcomes: tuple[ExpectedOutcome, ...] = ()
    description: str = ""


@dataclass(frozen=True)
class TestConfiguration:
    """Execution knobs carried through adaptation untouched."""

    __test__ = False

    default_timeout: float = 30.0
    max_retries: int = 3
    parallel_execution: bool = False
    fail_fast: bool = True
    environment: str = "test"
    properties: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class TestPlan:
    """An ordered sequence of steps plus assertion rules."""

    __test__ = False

    plan_id: str
    scenario: str
    steps: tuple[TestStep, ...]
    assertions: tuple[AssertionRule, ...] = ()
    test_data: dict[str, Any] = field(default_factory=dict)
    configuration: TestConfiguration = field(default_factory=TestConfiguration)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def __post_init__(self):
        # Accept lists from callers but store tuples
        object.__setattr__(self, "steps", tuple(self.steps))
        object.__setattr__(self, "assertions", tuple(self.assertions))

    @property
    def targets(self) -> list[str]:
        """Distinct step targets in plan order."""
        seen: list[str] = []
        for step in self.steps:
            if step.target not in seen:
                seen.append(step.target)
        return seen

    def derive(self, **changes: Any) -> "TestPlan":
        """Return a new plan with the given fields replaced."""
        return replace(self, **changes)
