"""
In-process pattern memory.

Keeps test patterns and execution history in dictionaries. Suitable for a
single process and for tests; a document-store backed implementation only
has to satisfy ``crossflow.core.interfaces.PatternMemory``.
"""

import asyncio
from collections import deque
from dataclasses import replace
from datetime import UTC, datetime

from ..models import ExecutionHistory, PatternQuery, TestPattern
from ..observability.logging import get_logger

logger = get_logger(__name__)


def _overlap(left: list[str], right: list[str]) -> float:
    """Jaccard overlap of two label lists; 0.0 when either is empty."""
    a, b = set(left), set(right)
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


class InMemoryPatternMemory:
    """Dictionary-backed ``PatternMemory`` with overlap-ranked lookup."""

    def __init__(self, history_limit: int = 10_000):
        self._patterns: dict[str, TestPattern] = {}
        self._history: deque[ExecutionHistory] = deque(maxlen=history_limit)
        self._lock = asyncio.Lock()

    async def store_pattern(self, pattern: TestPattern) -> TestPattern:
        async with self._lock:
            self._patterns[pattern.pattern_id] = pattern
        logger.debug(f"Stored pattern {pattern.pattern_id}", pattern_type=pattern.pattern_type.value)
        return pattern

    async def get_pattern(self, pattern_id: str) -> TestPattern | None:
        return self._patterns.get(pattern_id)

    async def store_history(self, history: ExecutionHistory) -> ExecutionHistory:
        async with self._lock:
            self._history.append(history)
        logger.debug(
            f"Stored execution history {history.execution_id}", status=history.status.value
        )
        return history

    async def find_similar_patterns(
        self, query: PatternQuery, limit: int = 10
    ) -> list[TestPattern]:
        """
        Rank stored patterns by how much of the query they share.

        The score is the overlap of service flows plus half the overlap of
        tags. Patterns sharing nothing with the query are left out; ties are
        broken by usage count, then success rate.
        """
        async with self._lock:
            patterns = list(self._patterns.values())

        scored: list[tuple[float, TestPattern]] = []
        for pattern in patterns:
            score = _overlap(pattern.service_flow, query.services)
            score += 0.5 * _overlap(pattern.tags, query.tags)
            if score > 0:
                scored.append((score, pattern))

        scored.sort(key=lambda item: (item[0], item[1].usage_count, item[1].success_rate), reverse=True)
        return [pattern for _, pattern in scored[:limit]]

    async def find_history_by_correlation_id(self, correlation_id: str) -> list[ExecutionHistory]:
        async with self._lock:
            return [h for h in self._history if h.correlation_id == correlation_id]

    async def recent_history(self, limit: int = 50) -> list[ExecutionHistory]:
        """Most recent executions first."""
        async with self._lock:
            items = list(self._history)
        return list(reversed(items))[:limit]

    async def update_pattern_usage(
        self, pattern_id: str, success: bool, execution_time: float
    ) -> TestPattern | None:
        """Fold one more execution into a pattern's running statistics."""
        async with self._lock:
            pattern = self._patterns.get(pattern_id)
            if pattern is None:
                return None

            uses = pattern.usage_count
            updated = replace(
                pattern,
                usage_count=uses + 1,
                success_rate=(pattern.success_rate * uses + (1.0 if success else 0.0)) / (uses + 1),
                average_execution_time=(pattern.average_execution_time * uses + execution_time)
                / (uses + 1),
                last_used=datetime.now(UTC),
            )
            self._patterns[pattern_id] = updated
            return updated

    def __len__(self) -> int:
        return len(self._patterns)
