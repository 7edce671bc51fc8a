"""
Orchestration lifecycle state machine.

    INITIALIZED -> RUNNING -> {PAUSED <-> RUNNING} -> {COMPLETED | FAILED | CANCELLED}

Every status change goes through ``Orchestration.transition``, which is an
atomic compare-and-set guarded by a per-orchestration lock: two concurrent
``pause`` calls can never both succeed, and orchestrations never contend
with each other.
"""

import asyncio
import threading
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from ..models import ServiceInteraction, TestPlan
from ..observability.logging import get_logger

logger = get_logger(__name__)


class OrchestrationStatus(Enum):
    """Lifecycle states of an orchestration."""

    INITIALIZED = "initialized"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    # Returned for IDs that are not (or no longer) active
    NOT_FOUND = "not_found"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL


_TERMINAL = frozenset(
    {OrchestrationStatus.COMPLETED, OrchestrationStatus.FAILED, OrchestrationStatus.CANCELLED}
)

_TRANSITIONS: dict[OrchestrationStatus, frozenset[OrchestrationStatus]] = {
    OrchestrationStatus.INITIALIZED: frozenset(
        {OrchestrationStatus.RUNNING, OrchestrationStatus.FAILED, OrchestrationStatus.CANCELLED}
    ),
    OrchestrationStatus.RUNNING: frozenset(
        {
            OrchestrationStatus.PAUSED,
            OrchestrationStatus.COMPLETED,
            OrchestrationStatus.FAILED,
            OrchestrationStatus.CANCELLED,
        }
    ),
    # COMPLETED from PAUSED: the execution task can finish while paused
    OrchestrationStatus.PAUSED: frozenset(
        {
            OrchestrationStatus.RUNNING,
            OrchestrationStatus.COMPLETED,
            OrchestrationStatus.FAILED,
            OrchestrationStatus.CANCELLED,
        }
    ),
    OrchestrationStatus.COMPLETED: frozenset(),
    OrchestrationStatus.FAILED: frozenset(),
    OrchestrationStatus.CANCELLED: frozenset(),
    OrchestrationStatus.NOT_FOUND: frozenset(),
}


def can_transition(from_state: OrchestrationStatus, to_state: OrchestrationStatus) -> bool:
    return to_state in _TRANSITIONS[from_state]


@dataclass(frozen=True)
class Transition:
    """A status change that actually happened."""

    from_state: OrchestrationStatus
    to_state: OrchestrationStatus
    at: datetime = field(default_factory=lambda: datetime.now(UTC))
    reason: str | None = None


@dataclass(frozen=True)
class AdaptationRecord:
    """A plan replacement applied while an orchestration was running."""

    kind: str
    reason: str
    plan_id: str
    at: datetime = field(default_factory=lambda: datetime.now(UTC))


class Orchestration:
    """
    One in-flight execution of a plan.

    Read and written by both the monitoring loop and external callers, so
    status, plan and the interaction log are only touched under ``_lock``.
    Pause is signalled through an ``asyncio.Event`` that is cleared while
    the status is PAUSED; the monitoring loop awaits it instead of polling.
    """

    def __init__(
        self,
        orchestration_id: str,
        plan: TestPlan,
        loop: asyncio.AbstractEventLoop | None = None,
    ):
        self.orchestration_id = orchestration_id
        self.correlation_id: str | None = None
        self.created_at = datetime.now(UTC)
        self.start_time: datetime | None = None
        self.end_time: datetime | None = None
        self.error: BaseException | None = None

        self._plan = plan
        self._status = OrchestrationStatus.INITIALIZED
        self._history: list[Transition] = []
        self._adaptations: list[AdaptationRecord] = []
        self._interactions: list[ServiceInteraction] = []
        self._lock = threading.Lock()
        self._loop = loop
        self._not_paused = asyncio.Event()
        self._not_paused.set()

    @property
    def status(self) -> OrchestrationStatus:
        return self._status

    @property
    def plan(self) -> TestPlan:
        return self._plan

    @property
    def history(self) -> list[Transition]:
        with self._lock:
            return list(self._history)

    @property
    def adaptations(self) -> list[AdaptationRecord]:
        with self._lock:
            return list(self._adaptations)

    @property
    def interactions(self) -> list[ServiceInteraction]:
        with self._lock:
            return list(self._interactions)

    def transition(
        self,
        to_state: OrchestrationStatus,
        expected: OrchestrationStatus | Iterable[OrchestrationStatus] | None = None,
        reason: str | None = None,
    ) -> bool:
        """
        Atomically move to ``to_state``.

        Fails (returns False) if the current status is not one of
        ``expected`` or the move is not allowed by the lifecycle.
        """
        if isinstance(expected, OrchestrationStatus):
            expected = (expected,)

        with self._lock:
            current = self._status
            if expected is not None and current not in expected:
                return False
            if not can_transition(current, to_state):
                logger.debug(
                    f"Rejected transition {current.value} -> {to_state.value}",
                    orchestration_id=self.orchestration_id,
                )
                return False
            self._status = to_state
            self._history.append(Transition(current, to_state, reason=reason))

        self._notify()
        return True

    def compare_and_set(
        self, expected: OrchestrationStatus, new_state: OrchestrationStatus
    ) -> bool:
        return self.transition(new_state, expected=expected)

    def replace_plan(self, plan: TestPlan, kind: str, reason: str) -> None:
        with self._lock:
            self._plan = plan
            self._adaptations.append(AdaptationRecord(kind, reason, plan.plan_id))

    def add_interaction(self, interaction: ServiceInteraction) -> None:
        with self._lock:
            self._interactions.append(interaction)

    async def wait_until_not_paused(self) -> None:
        await self._not_paused.wait()

    def _sync_pause_signal(self) -> None:
        if self._status is OrchestrationStatus.PAUSED:
            self._not_paused.clear()
        else:
            self._not_paused.set()

    def _notify(self) -> None:
        # asyncio.Event is not thread-safe; hop onto the owning loop if needed
        if self._loop is None or self._loop.is_closed():
            self._sync_pause_signal()
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self._sync_pause_signal()
        else:
            self._loop.call_soon_threadsafe(self._sync_pause_signal)

    def __repr__(self) -> str:
        return (
            f"Orchestration(id={self.orchestration_id!r}, status={self._status.value}, "
            f"correlation_id={self.correlation_id!r})"
        )
