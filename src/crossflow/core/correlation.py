"""
Correlation tracking for asynchronous request/response traffic.

Every message sent to or received from a target is recorded against the
correlation ID of the flow it belongs to. Events are kept in the order the
recording calls arrive, which is not necessarily timestamp order; the flow
analysis relies on exactly that difference to spot reordered messages.
"""

import threading
import uuid
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

from ..models import ServiceInteraction
from ..observability.logging import get_logger

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _as_timedelta(value: timedelta | float) -> timedelta:
    return value if isinstance(value, timedelta) else timedelta(seconds=value)


class Direction(Enum):
    SENT = "sent"
    RECEIVED = "received"


class FlowIssueKind(Enum):
    ORDERING = "ordering"
    MISSING_RESPONSE = "missing_response"
    TIMING_GAP = "timing_gap"


@dataclass(frozen=True)
class MessageEvent:
    """A single message observed on a correlated flow."""

    direction: Direction
    target: str
    key: str | None
    payload: Any
    interaction: ServiceInteraction | None
    timestamp: datetime

    @property
    def label(self) -> str:
        return f"{self.target}:{self.key}"


@dataclass(frozen=True)
class FlowIssue:
    """An anomaly found while analyzing a trace."""

    kind: FlowIssueKind
    description: str
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TraceSummary:
    """What remains of a trace once it has been completed."""

    correlation_id: str
    test_id: str
    start_time: datetime
    end_time: datetime
    message_count: int
    targets: tuple[str, ...]

    @property
    def total_duration(self) -> timedelta:
        return self.end_time - self.start_time


class CorrelationTrace:
    """Append-only event list for one correlation ID."""

    def __init__(
        self, correlation_id: str, test_id: str, description: str, start_time: datetime
    ):
        self.correlation_id = correlation_id
        self.test_id = test_id
        self.description = description
        self.start_time = start_time
        self._events: list[MessageEvent] = []
        self._lock = threading.Lock()

    def append(self, event: MessageEvent) -> None:
        with self._lock:
            self._events.append(event)

    @property
    def events(self) -> list[MessageEvent]:
        """Snapshot of the events recorded so far, in append order."""
        with self._lock:
            return list(self._events)

    def summarize(self, end_time: datetime) -> TraceSummary:
        events = self.events
        targets: list[str] = []
        for event in events:
            if event.target not in targets:
                targets.append(event.target)
        return TraceSummary(
            correlation_id=self.correlation_id,
            test_id=self.test_id,
            start_time=self.start_time,
            end_time=end_time,
            message_count=len(events),
            targets=tuple(targets),
        )


class CorrelationTracker:
    """
    Tracks active correlation traces and analyzes their message flow.

    Active traces live in a dict keyed by correlation ID. Starting,
    completing and evicting a trace swap dict entries under a short lock;
    recording only looks the trace up and appends under that trace's own
    lock, so recording on one trace never contends with another.
    Completed traces are kept (bounded) so their summaries and events stay
    available for post-hoc inspection.
    """

    def __init__(
        self,
        max_message_gap: timedelta | float = timedelta(minutes=5),
        completed_retention: int = 1000,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.max_message_gap = _as_timedelta(max_message_gap)
        self.completed_retention = completed_retention
        self._clock = clock
        self._active: dict[str, CorrelationTrace] = {}
        self._completed: OrderedDict[str, tuple[CorrelationTrace, TraceSummary]] = OrderedDict()
        self._completed_lock = threading.Lock()
        # Guards membership of _active only; events are guarded per trace
        self._active_lock = threading.Lock()

    @staticmethod
    def generate_correlation_id() -> str:
        return f"corr-{uuid.uuid4()}"

    def start_trace(self, correlation_id: str, test_id: str, description: str = "") -> None:
        """
        Register a new active trace.

        A trace already active under the same ID is replaced without error;
        its events are discarded.
        """
        trace = CorrelationTrace(correlation_id, test_id, description, self._clock())
        with self._active_lock:
            replaced = self._active.get(correlation_id)
            self._active[correlation_id] = trace
        if replaced is not None:
            logger.warning("Replacing active correlation trace", correlation_id=correlation_id)
        logger.debug(f"Started correlation trace {correlation_id}", test_id=test_id)

    def record_sent(
        self,
        correlation_id: str,
        target: str,
        key: str | None = None,
        payload: Any = None,
        interaction: ServiceInteraction | None = None,
    ) -> bool:
        """Record an outbound message. Returns False if the trace is not active."""
        return self._record(
            correlation_id,
            MessageEvent(Direction.SENT, target, key, payload, interaction, self._clock()),
        )

    def record_received(
        self,
        correlation_id: str,
        target: str,
        key: str | None = None,
        payload: Any = None,
        interaction: ServiceInteraction | None = None,
        timestamp: datetime | None = None,
    ) -> bool:
        """
        Record an inbound message.

        ``timestamp`` is the event time reported by the source (e.g. the
        broker record timestamp) and defaults to now.
        """
        return self._record(
            correlation_id,
            MessageEvent(
                Direction.RECEIVED,
                target,
                key,
                payload,
                interaction,
                timestamp or self._clock(),
            ),
        )

    def _record(self, correlation_id: str, event: MessageEvent) -> bool:
        trace = self._active.get(correlation_id)
        if trace is None:
            return False
        trace.append(event)
        logger.debug(
            f"Recorded {event.direction.value} message",
            correlation_id=correlation_id,
            target=event.target,
        )
        return True

    def get_trace(self, correlation_id: str) -> CorrelationTrace | None:
        return self._active.get(correlation_id)

    def message_history(self, correlation_id: str) -> list[MessageEvent]:
        """Events of an active or retained completed trace."""
        trace = self._active.get(correlation_id)
        if trace is None:
            with self._completed_lock:
                entry = self._completed.get(correlation_id)
            trace = entry[0] if entry else None
        return trace.events if trace else []

    def active_correlation_ids(self) -> set[str]:
        return set(self._active)

    def complete_trace(self, correlation_id: str) -> TraceSummary | None:
        """Deactivate a trace and return its summary, or None if unknown."""
        with self._active_lock:
            trace = self._active.pop(correlation_id, None)
        if trace is None:
            return None

        summary = trace.summarize(self._clock())
        if self.completed_retention > 0:
            with self._completed_lock:
                self._completed[correlation_id] = (trace, summary)
                self._completed.move_to_end(correlation_id)
                while len(self._completed) > self.completed_retention:
                    self._completed.popitem(last=False)

        logger.debug(
            f"Completed correlation trace {correlation_id}",
            messages=summary.message_count,
        )
        return summary

    def get_summary(self, correlation_id: str) -> TraceSummary | None:
        """Summary of a completed trace still held in the retention window."""
        with self._completed_lock:
            entry = self._completed.get(correlation_id)
        return entry[1] if entry else None

    def analyze_flow(self, correlation_id: str) -> list[FlowIssue]:
        """Run the ordering, missing-response and timing-gap checks, in that order."""
        events = self.message_history(correlation_id)
        if not events:
            return []

        issues: list[FlowIssue] = []
        issues.extend(self._check_ordering(events))
        issues.extend(self._check_missing_responses(events))
        issues.extend(self._check_timing_gaps(events))
        return issues

    def cleanup_older_than(self, older_than: timedelta | float) -> int:
        """Evict active traces started before ``now - older_than``."""
        cutoff = self._clock() - _as_timedelta(older_than)
        removed = 0
        with self._active_lock:
            snapshot = list(self._active.items())

        for correlation_id, trace in snapshot:
            if trace.start_time >= cutoff:
                continue
            if self._pop_if_current(correlation_id, trace):
                removed += 1

        logger.debug(f"Cleaned up {removed} old correlation traces")
        return removed

    def _pop_if_current(self, correlation_id: str, trace: CorrelationTrace) -> bool:
        """Remove ``trace`` unless the ID was restarted with a newer trace."""
        with self._active_lock:
            if self._active.get(correlation_id) is not trace:
                return False
            del self._active[correlation_id]
            return True

    def _check_ordering(self, events: list[MessageEvent]) -> list[FlowIssue]:
        issues = []
        for previous, current in zip(events, events[1:]):
            if current.timestamp < previous.timestamp:
                issues.append(
                    FlowIssue(
                        FlowIssueKind.ORDERING,
                        "Message recorded out of timestamp order",
                        {
                            "current_message": current.label,
                            "previous_message": previous.label,
                        },
                    )
                )
        return issues

    def _check_missing_responses(self, events: list[MessageEvent]) -> list[FlowIssue]:
        sent = sum(1 for e in events if e.direction is Direction.SENT)
        received = sum(1 for e in events if e.direction is Direction.RECEIVED)

        # One outstanding message is tolerated for async slack
        if sent > received + 1:
            return [
                FlowIssue(
                    FlowIssueKind.MISSING_RESPONSE,
                    "Potential missing responses detected",
                    {"sent_count": sent, "received_count": received},
                )
            ]
        return []

    def _check_timing_gaps(self, events: list[MessageEvent]) -> list[FlowIssue]:
        issues = []
        for previous, current in zip(events, events[1:]):
            gap = current.timestamp - previous.timestamp
            if gap > self.max_message_gap:
                issues.append(
                    FlowIssue(
                        FlowIssueKind.TIMING_GAP,
                        "Long gap between messages detected",
                        {
                            "gap_seconds": gap.total_seconds(),
                            "between": f"{previous.target} -> {current.target}",
                        },
                    )
                )
        return issues
