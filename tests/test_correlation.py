"""
Tests for correlation tracking and flow analysis.

Tests cover:
- Trace lifecycle (start, record, complete, retention)
- Ordering, missing-response and timing-gap checks
- Cleanup of stale traces
- Concurrent recording, and cleanup racing with recording and restarts
"""

import threading
from datetime import timedelta

import pytest

from crossflow.core.correlation import CorrelationTracker, Direction, FlowIssueKind


@pytest.fixture
def tracker(clock):
    return CorrelationTracker(max_message_gap=timedelta(minutes=5), clock=clock)


class TestTraceLifecycle:
    """Starting, recording into and completing traces."""

    def test_generate_correlation_id_is_unique_and_prefixed(self):
        ids = {CorrelationTracker.generate_correlation_id() for _ in range(100)}
        assert len(ids) == 100
        assert all(i.startswith("corr-") for i in ids)

    def test_record_requires_active_trace(self, tracker):
        assert tracker.record_sent("corr-unknown", "orders") is False
        assert tracker.record_received("corr-unknown", "orders") is False
        assert tracker.message_history("corr-unknown") == []

    def test_events_kept_in_append_order(self, tracker, clock):
        tracker.start_trace("c1", "plan-1")
        tracker.record_sent("c1", "orders", key="k1")
        clock.advance(1)
        tracker.record_received("c1", "payments", key="k2")

        events = tracker.message_history("c1")
        assert [e.direction for e in events] == [Direction.SENT, Direction.RECEIVED]
        assert [e.label for e in events] == ["orders:k1", "payments:k2"]

    def test_duplicate_start_replaces_trace(self, tracker):
        tracker.start_trace("c1", "plan-1")
        tracker.record_sent("c1", "orders")
        tracker.start_trace("c1", "plan-2")

        assert tracker.message_history("c1") == []
        assert tracker.get_trace("c1").test_id == "plan-2"

    def test_complete_trace_returns_summary_and_deactivates(self, tracker, clock):
        tracker.start_trace("c1", "plan-1")
        tracker.record_sent("c1", "orders")
        tracker.record_received("c1", "orders")
        tracker.record_sent("c1", "payments")
        clock.advance(12)

        summary = tracker.complete_trace("c1")

        assert summary.message_count == 3
        assert summary.targets == ("orders", "payments")
        assert summary.total_duration == timedelta(seconds=12)
        assert "c1" not in tracker.active_correlation_ids()
        assert tracker.record_sent("c1", "orders") is False
        assert tracker.get_summary("c1") == summary

    def test_complete_unknown_trace_returns_none(self, tracker):
        assert tracker.complete_trace("missing") is None

    def test_completed_trace_history_still_available(self, tracker):
        tracker.start_trace("c1", "plan-1")
        tracker.record_sent("c1", "orders")
        tracker.complete_trace("c1")

        assert len(tracker.message_history("c1")) == 1

    def test_completed_retention_is_bounded(self, clock):
        tracker = CorrelationTracker(completed_retention=2, clock=clock)
        for cid in ("c1", "c2", "c3"):
            tracker.start_trace(cid, "plan")
            tracker.complete_trace(cid)

        assert tracker.get_summary("c1") is None
        assert tracker.get_summary("c2") is not None
        assert tracker.get_summary("c3") is not None


class TestFlowAnalysis:
    """Ordering, missing-response and timing-gap detection."""

    def test_empty_or_unknown_trace_has_no_issues(self, tracker):
        assert tracker.analyze_flow("missing") == []
        tracker.start_trace("c1", "plan-1")
        assert tracker.analyze_flow("c1") == []

    def test_ordering_violation_detected(self, tracker, clock):
        tracker.start_trace("c1", "plan-1")
        tracker.record_sent("c1", "orders", key="first")
        tracker.record_received(
            "c1", "orders", key="late", timestamp=clock.now - timedelta(seconds=2)
        )

        issues = tracker.analyze_flow("c1")

        ordering = [i for i in issues if i.kind is FlowIssueKind.ORDERING]
        assert len(ordering) == 1
        assert ordering[0].details == {
            "current_message": "orders:late",
            "previous_message": "orders:first",
        }

    def test_one_outstanding_message_is_tolerated(self, tracker):
        tracker.start_trace("c1", "plan-1")
        tracker.record_sent("c1", "orders")
        tracker.record_sent("c1", "orders")
        tracker.record_received("c1", "orders")

        assert tracker.analyze_flow("c1") == []

    def test_missing_responses_detected(self, tracker):
        tracker.start_trace("c1", "plan-1")
        for _ in range(3):
            tracker.record_sent("c1", "orders")
        tracker.record_received("c1", "orders")

        issues = tracker.analyze_flow("c1")

        assert [i.kind for i in issues] == [FlowIssueKind.MISSING_RESPONSE]
        assert issues[0].details == {"sent_count": 3, "received_count": 1}

    def test_timing_gap_detected(self, tracker, clock):
        tracker.start_trace("c1", "plan-1")
        tracker.record_sent("c1", "orders")
        clock.advance(301)
        tracker.record_received("c1", "payments")

        issues = tracker.analyze_flow("c1")

        assert [i.kind for i in issues] == [FlowIssueKind.TIMING_GAP]
        assert issues[0].details["gap_seconds"] == pytest.approx(301)
        assert issues[0].details["between"] == "orders -> payments"

    def test_gap_at_threshold_is_not_an_issue(self, tracker, clock):
        tracker.start_trace("c1", "plan-1")
        tracker.record_sent("c1", "orders")
        clock.advance(300)
        tracker.record_received("c1", "orders")

        assert tracker.analyze_flow("c1") == []

    def test_checks_reported_in_order(self, tracker, clock):
        tracker.start_trace("c1", "plan-1")
        tracker.record_sent("c1", "a")
        clock.advance(400)
        tracker.record_sent("c1", "b")
        tracker.record_sent("c1", "c")
        tracker.record_received("c1", "a", timestamp=clock.now - timedelta(seconds=1))

        kinds = [i.kind for i in tracker.analyze_flow("c1")]

        assert kinds == [
            FlowIssueKind.ORDERING,
            FlowIssueKind.MISSING_RESPONSE,
            FlowIssueKind.TIMING_GAP,
        ]

    def test_float_gap_threshold(self, clock):
        tracker = CorrelationTracker(max_message_gap=1.5, clock=clock)
        tracker.start_trace("c1", "plan-1")
        tracker.record_sent("c1", "orders")
        clock.advance(2)
        tracker.record_received("c1", "orders")

        assert [i.kind for i in tracker.analyze_flow("c1")] == [FlowIssueKind.TIMING_GAP]


class TestCleanup:
    """Eviction of stale active traces."""

    def test_cleanup_removes_only_old_traces(self, tracker, clock):
        tracker.start_trace("old", "plan-1")
        clock.advance(3600)
        tracker.start_trace("fresh", "plan-2")

        removed = tracker.cleanup_older_than(timedelta(minutes=30))

        assert removed == 1
        assert tracker.active_correlation_ids() == {"fresh"}

    def test_cleanup_accepts_seconds(self, tracker, clock):
        tracker.start_trace("old", "plan-1")
        clock.advance(10)

        assert tracker.cleanup_older_than(5) == 1


class TestConcurrentRecording:
    """Recording from many threads loses nothing."""

    def test_parallel_records_are_all_kept(self):
        tracker = CorrelationTracker()
        tracker.start_trace("c1", "plan-1")

        def worker():
            for _ in range(200):
                tracker.record_sent("c1", "orders")

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(tracker.message_history("c1")) == 1600


def run_threads(*targets) -> list[Exception]:
    errors: list[Exception] = []

    def guarded(target):
        def run():
            try:
                target()
            except Exception as e:
                errors.append(e)

        return run

    threads = [threading.Thread(target=guarded(t)) for t in targets]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return errors


class TestConcurrentCleanup:
    """Eviction racing with recording and restarts."""

    def test_cleanup_while_recording(self, tracker, clock):
        for i in range(10):
            tracker.start_trace(f"stale-{i}", "plan-old")
        clock.advance(3600)
        fresh = [f"fresh-{i}" for i in range(4)]
        for correlation_id in fresh:
            tracker.start_trace(correlation_id, "plan-new")

        removed: list[int] = []

        def recorder(correlation_id):
            def run():
                for _ in range(250):
                    tracker.record_sent(correlation_id, "orders")
                    tracker.record_received(correlation_id, "orders")

            return run

        def cleaner():
            for _ in range(50):
                removed.append(tracker.cleanup_older_than(timedelta(minutes=30)))

        errors = run_threads(cleaner, cleaner, *(recorder(c) for c in fresh))

        assert errors == []
        assert sum(removed) == 10
        assert tracker.active_correlation_ids() == set(fresh)
        for correlation_id in fresh:
            assert len(tracker.message_history(correlation_id)) == 500

    def test_restarted_trace_survives_cleanup(self, tracker, clock):
        stale = [f"stale-{i}" for i in range(10)]
        for correlation_id in stale:
            tracker.start_trace(correlation_id, "plan-old")
        clock.advance(3600)
        restarted = stale[:5]
        removed: list[int] = []

        def restarter():
            for correlation_id in restarted:
                tracker.start_trace(correlation_id, "plan-new")
                tracker.record_sent(correlation_id, "orders")

        def cleaner():
            removed.append(tracker.cleanup_older_than(timedelta(minutes=30)))

        errors = run_threads(cleaner, restarter)

        assert errors == []
        assert 5 <= sum(removed) <= 10
        assert tracker.active_correlation_ids() == set(restarted)
        for correlation_id in restarted:
            assert tracker.get_trace(correlation_id).test_id == "plan-new"

    def test_eviction_skips_trace_replaced_after_snapshot(self, tracker, clock):
        tracker.start_trace("c1", "plan-old")
        stale_trace = tracker.get_trace("c1")
        clock.advance(3600)
        tracker.start_trace("c1", "plan-new")

        assert tracker._pop_if_current("c1", stale_trace) is False
        assert tracker.get_trace("c1").test_id == "plan-new"
        assert tracker.cleanup_older_than(timedelta(minutes=30)) == 0
