"""
Live progress tracking for orchestrations.

The execution engine is opaque while a plan runs, so completed steps are
estimated with a linear model: ``min(elapsed / average_step_duration, total)``.
Reported values only move forward: completed steps and elapsed time never
decrease between two snapshots of the same orchestration.
"""

import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from ..models import TestResult
from ..observability.logging import get_logger

if TYPE_CHECKING:
    from .state_machine import Orchestration

logger = get_logger(__name__)

NOT_FOUND_LABEL = "Not Found"


def _utcnow() -> datetime:
    return datetime.now(UTC)


def format_duration(duration: timedelta) -> str:
    seconds = int(duration.total_seconds())
    if seconds <= 0:
        return "0s"
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        return f"{seconds // 60}m {seconds % 60}s"
    return f"{seconds // 3600}h {(seconds % 3600) // 60}m"


@dataclass(frozen=True)
class ProgressSnapshot:
    """Read-only view of an orchestration's progress."""

    orchestration_id: str
    total_steps: int
    completed_steps: int
    error_count: int
    current_step: str
    percentage: float
    elapsed: timedelta
    estimated_remaining: timedelta
    completed: bool
    final_result: TestResult | None = None

    @classmethod
    def not_found(cls, orchestration_id: str) -> "ProgressSnapshot":
        return cls(
            orchestration_id=orchestration_id,
            total_steps=0,
            completed_steps=0,
            error_count=0,
            current_step=NOT_FOUND_LABEL,
            percentage=0.0,
            elapsed=timedelta(0),
            estimated_remaining=timedelta(0),
            completed=False,
        )

    @property
    def found(self) -> bool:
        return self.current_step != NOT_FOUND_LABEL

    @property
    def summary(self) -> str:
        """Human-readable one-liner."""
        if not self.found:
            return "Orchestration not found"
        if self.completed:
            return (
                f"Completed: {self.completed_steps}/{self.total_steps} steps "
                f"({self.percentage:.1f}%) in {format_duration(self.elapsed)}"
            )
        return (
            f"In Progress: {self.completed_steps}/{self.total_steps} steps "
            f"({self.percentage:.1f}%) - {self.current_step} - "
            f"ETA: {format_duration(self.estimated_remaining)}"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "orchestration_id": self.orchestration_id,
            "total_steps": self.total_steps,
            "completed_steps": self.completed_steps,
            "error_count": self.error_count,
            "current_step": self.current_step,
            "percentage": self.percentage,
            "elapsed_seconds": self.elapsed.total_seconds(),
            "estimated_remaining_seconds": self.estimated_remaining.total_seconds(),
            "completed": self.completed,
            "final_status": self.final_result.status.value if self.final_result else None,
            "summary": self.summary,
        }


class _ProgressState:
    """Mutable progress record for one orchestration."""

    def __init__(self, orchestration_id: str, total_steps: int, start_time: datetime):
        self.orchestration_id = orchestration_id
        self.total_steps = total_steps
        self.start_time = start_time
        self.last_update = start_time
        self.completed_steps = 0
        self.error_count = 0
        self.current_step = f"Step 1 of {total_steps}" if total_steps else "No steps"
        self.completed = False
        self.final_result: TestResult | None = None
        self.lock = threading.Lock()

    def touch(self, now: datetime) -> None:
        if now > self.last_update:
            self.last_update = now

    def update(self, now: datetime, average_step_duration: float) -> None:
        with self.lock:
            if self.completed:
                return
            self.touch(now)
            elapsed = (self.last_update - self.start_time).total_seconds()
            estimated = min(int(elapsed / average_step_duration), self.total_steps)

            if estimated > self.completed_steps:
                self.completed_steps = estimated
                if estimated < self.total_steps:
                    self.current_step = f"Step {estimated + 1} of {self.total_steps}"
                else:
                    self.current_step = "Finalizing"

    def mark_completed(self, result: TestResult | None, now: datetime) -> None:
        with self.lock:
            if self.completed:
                return
            self.touch(now)
            self.completed = True
            self.completed_steps = self.total_steps
            self.current_step = "Completed"
            self.final_result = result

    def record_error(self) -> None:
        with self.lock:
            self.error_count += 1

    def snapshot(self) -> ProgressSnapshot:
        with self.lock:
            if self.total_steps == 0:
                percentage = 100.0
            else:
                percentage = self.completed_steps / self.total_steps * 100.0

            elapsed = self.last_update - self.start_time
            if self.completed or self.completed_steps == 0:
                remaining = timedelta(0)
            else:
                per_step = elapsed / self.completed_steps
                remaining = per_step * (self.total_steps - self.completed_steps)

            return ProgressSnapshot(
                orchestration_id=self.orchestration_id,
                total_steps=self.total_steps,
                completed_steps=self.completed_steps,
                error_count=self.error_count,
                current_step=self.current_step,
                percentage=percentage,
                elapsed=elapsed,
                estimated_remaining=remaining,
                completed=self.completed,
                final_result=self.final_result,
            )


class ProgressTracker:
    """Keeps one progress record per orchestration ID, created on first use."""

    def __init__(
        self,
        average_step_duration: float = 10.0,
        clock: Callable[[], datetime] = _utcnow,
    ):
        if average_step_duration <= 0:
            raise ValueError("average_step_duration must be positive")
        self.average_step_duration = average_step_duration
        self._clock = clock
        self._states: dict[str, _ProgressState] = {}

    def _state_for(self, orchestration: "Orchestration") -> _ProgressState:
        state = self._states.get(orchestration.orchestration_id)
        if state is None:
            state = self._states.setdefault(
                orchestration.orchestration_id,
                _ProgressState(
                    orchestration.orchestration_id,
                    len(orchestration.plan.steps),
                    orchestration.start_time or self._clock(),
                ),
            )
        return state

    def update_progress(self, orchestration: "Orchestration") -> None:
        state = self._state_for(orchestration)
        state.update(self._clock(), self.average_step_duration)
        logger.debug(
            f"Progress {state.completed_steps}/{state.total_steps}",
            orchestration_id=orchestration.orchestration_id,
        )

    def mark_completed(self, orchestration: "Orchestration", result: TestResult | None) -> None:
        self._state_for(orchestration).mark_completed(result, self._clock())

    def record_error(self, orchestration: "Orchestration") -> None:
        self._state_for(orchestration).record_error()

    def get_progress(self, orchestration: "Orchestration | str") -> ProgressSnapshot:
        orchestration_id = (
            orchestration if isinstance(orchestration, str) else orchestration.orchestration_id
        )
        state = self._states.get(orchestration_id)
        if state is None:
            return ProgressSnapshot.not_found(orchestration_id)
        return state.snapshot()

    def completed_steps(self, orchestration: "Orchestration") -> int:
        state = self._states.get(orchestration.orchestration_id)
        return state.completed_steps if state else 0

    def error_count(self, orchestration: "Orchestration") -> int:
        state = self._states.get(orchestration.orchestration_id)
        return state.error_count if state else 0

    def cleanup(self, orchestration_id: str) -> None:
        self._states.pop(orchestration_id, None)
        logger.debug("Cleaned up progress tracking", orchestration_id=orchestration_id)
