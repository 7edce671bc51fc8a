"""
Collaborator interfaces consumed by the orchestration core.

Concrete protocol adapters (queue producers/consumers, HTTP clients,
document stores) live outside this package and only need to satisfy
these protocols.
"""

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from ..models import ExecutionHistory, PatternQuery, TestPattern, TestPlan, TestResult


@dataclass(frozen=True)
class OracleReply:
    """Free-text answer from the decision oracle."""

    text: str
    success: bool = True
    error_message: str | None = None
    response_time_ms: float = 0.0


@runtime_checkable
class ExecutionEngine(Protocol):
    """Runs a plan against real services and reports a verdict."""

    async def execute_test(self, plan: TestPlan) -> TestResult: ...


@runtime_checkable
class DecisionOracle(Protocol):
    """Non-deterministic advisory service consulted for adaptation decisions."""

    async def ask(self, prompt: str) -> OracleReply: ...


@runtime_checkable
class PatternMemory(Protocol):
    """Store of historical patterns and executions used for learning."""

    async def store_pattern(self, pattern: TestPattern) -> TestPattern: ...

    async def store_history(self, history: ExecutionHistory) -> ExecutionHistory: ...

    async def find_similar_patterns(
        self, query: PatternQuery, limit: int = 10
    ) -> list[TestPattern]: ...
