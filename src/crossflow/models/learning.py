"""
Records handed to pattern memory for learning.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from .results import TestStatus


class PatternType(Enum):
    SUCCESS_FLOW = "success_flow"
    FAILURE_PATTERN = "failure_pattern"
    PERFORMANCE_BASELINE = "performance_baseline"
    SERVICE_INTERACTION = "service_interaction"
    RECOVERY_STRATEGY = "recovery_strategy"


@dataclass
class TestPattern:
    """A reusable description of a plan's shape and how it has fared."""

    __test__ = False

    pattern_id: str
    name: str
    pattern_type: PatternType
    description: str = ""
    service_flow: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    characteristics: dict[str, Any] = field(default_factory=dict)
    usage_count: int = 0
    success_rate: float = 0.0
    average_execution_time: float = 0.0
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    last_used: datetime | None = None


@dataclass
class ExecutionHistory:
    """Outcome of one orchestration, persisted by pattern memory."""

    execution_id: str
    plan_id: str
    correlation_id: str | None
    status: TestStatus
    execution_time: float
    services_involved: list[str] = field(default_factory=list)
    recorded_at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass
class PatternQuery:
    """Context used to look up similar patterns."""

    correlation_id: str | None = None
    plan_id: str | None = None
    services: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
