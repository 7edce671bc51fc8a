"""Plan, result and learning records shared by the engine and its collaborators."""

from .learning import ExecutionHistory, PatternQuery, PatternType, TestPattern
from .plan import (
    AssertionRule,
    AssertionSeverity,
    ExpectedOutcome,
    RetryPolicy,
    StepType,
    TestConfiguration,
    TestPlan,
    TestStep,
)
from .results import (
    AssertionResult,
    InteractionStatus,
    ServiceInteraction,
    StepResult,
    TestResult,
    TestStatus,
)

__all__ = [
    "AssertionResult",
    "AssertionRule",
    "AssertionSeverity",
    "ExecutionHistory",
    "ExpectedOutcome",
    "InteractionStatus",
    "PatternQuery",
    "PatternType",
    "RetryPolicy",
    "ServiceInteraction",
    "StepResult",
    "StepType",
    "TestConfiguration",
    "TestPattern",
    "TestPlan",
    "TestResult",
    "TestStatus",
    "TestStep",
]
