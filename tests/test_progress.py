"""
Tests for progress estimation.

Tests cover:
- Linear step estimation and labels
- Monotonic completed steps and elapsed time
- Completion, error counting and cleanup
- Not-found sentinel and summaries
"""

from datetime import timedelta

import pytest

from crossflow.core.progress import NOT_FOUND_LABEL, ProgressTracker, format_duration
from crossflow.core.state_machine import Orchestration
from crossflow.models import TestResult, TestStatus


@pytest.fixture
def tracker(clock):
    return ProgressTracker(average_step_duration=10.0, clock=clock)


@pytest.fixture
def orchestration(make_plan, clock):
    orch = Orchestration("orch-1", make_plan(steps=3))
    orch.start_time = clock.now
    return orch


class TestEstimation:
    """Linear estimate of completed steps."""

    def test_initial_update_reports_first_step(self, tracker, orchestration):
        tracker.update_progress(orchestration)

        snapshot = tracker.get_progress("orch-1")
        assert snapshot.found
        assert snapshot.completed_steps == 0
        assert snapshot.current_step == "Step 1 of 3"
        assert snapshot.percentage == 0.0
        assert snapshot.estimated_remaining == timedelta(0)

    def test_partial_progress(self, tracker, orchestration, clock):
        clock.advance(25)
        tracker.update_progress(orchestration)

        snapshot = tracker.get_progress(orchestration)
        assert snapshot.completed_steps == 2
        assert snapshot.current_step == "Step 3 of 3"
        assert snapshot.percentage == pytest.approx(200 / 3)
        assert snapshot.elapsed == timedelta(seconds=25)
        assert snapshot.estimated_remaining == timedelta(seconds=12.5)
        assert not snapshot.completed

    def test_estimate_capped_at_total(self, tracker, orchestration, clock):
        clock.advance(500)
        tracker.update_progress(orchestration)

        snapshot = tracker.get_progress(orchestration)
        assert snapshot.completed_steps == 3
        assert snapshot.current_step == "Finalizing"
        assert snapshot.percentage == 100.0
        assert not snapshot.completed

    def test_progress_never_moves_backwards(self, tracker, orchestration, clock):
        clock.advance(25)
        tracker.update_progress(orchestration)
        clock.advance(-20)
        tracker.update_progress(orchestration)

        snapshot = tracker.get_progress(orchestration)
        assert snapshot.completed_steps == 2
        assert snapshot.elapsed == timedelta(seconds=25)

    def test_zero_step_plan_reports_full_percentage(self, tracker, make_plan, clock):
        orch = Orchestration("orch-empty", make_plan(steps=0, targets=["x"]))
        orch.start_time = clock.now
        tracker.update_progress(orch)

        assert tracker.get_progress("orch-empty").percentage == 100.0

    def test_rejects_non_positive_step_duration(self):
        with pytest.raises(ValueError):
            ProgressTracker(average_step_duration=0)


class TestCompletion:
    """Final state, errors and cleanup."""

    def test_mark_completed(self, tracker, orchestration, clock):
        tracker.update_progress(orchestration)
        clock.advance(4)
        result = TestResult(plan_id="plan-1", status=TestStatus.PASSED)

        tracker.mark_completed(orchestration, result)

        snapshot = tracker.get_progress(orchestration)
        assert snapshot.completed
        assert snapshot.completed_steps == 3
        assert snapshot.percentage == 100.0
        assert snapshot.estimated_remaining == timedelta(0)
        assert snapshot.current_step == "Completed"
        assert snapshot.final_result is result

    def test_mark_completed_is_idempotent(self, tracker, orchestration):
        first = TestResult(plan_id="plan-1", status=TestStatus.PASSED)
        second = TestResult(plan_id="plan-1", status=TestStatus.FAILED)

        tracker.mark_completed(orchestration, first)
        tracker.mark_completed(orchestration, second)

        assert tracker.get_progress(orchestration).final_result is first

    def test_mark_completed_creates_record_lazily(self, tracker, orchestration):
        assert not tracker.get_progress(orchestration).found

        tracker.mark_completed(orchestration, None)

        assert tracker.get_progress(orchestration).completed

    def test_updates_after_completion_are_ignored(self, tracker, orchestration, clock):
        tracker.mark_completed(orchestration, None)
        clock.advance(100)
        tracker.update_progress(orchestration)

        assert tracker.get_progress(orchestration).current_step == "Completed"

    def test_record_error(self, tracker, orchestration):
        tracker.record_error(orchestration)
        tracker.record_error(orchestration)

        assert tracker.error_count(orchestration) == 2
        assert tracker.get_progress(orchestration).error_count == 2

    def test_cleanup(self, tracker, orchestration):
        tracker.update_progress(orchestration)
        tracker.cleanup("orch-1")

        assert not tracker.get_progress("orch-1").found
        tracker.cleanup("orch-1")


class TestSnapshotViews:
    """Not-found sentinel, summaries and serialization."""

    def test_unknown_id_returns_sentinel(self, tracker):
        snapshot = tracker.get_progress("missing")

        assert not snapshot.found
        assert snapshot.current_step == NOT_FOUND_LABEL
        assert snapshot.percentage == 0.0
        assert snapshot.summary == "Orchestration not found"

    def test_in_progress_summary(self, tracker, orchestration, clock):
        clock.advance(25)
        tracker.update_progress(orchestration)

        assert tracker.get_progress(orchestration).summary == (
            "In Progress: 2/3 steps (66.7%) - Step 3 of 3 - ETA: 12s"
        )

    def test_completed_summary(self, tracker, orchestration, clock):
        clock.advance(75)
        tracker.mark_completed(orchestration, None)

        assert tracker.get_progress(orchestration).summary == (
            "Completed: 3/3 steps (100.0%) in 1m 15s"
        )

    def test_to_dict(self, tracker, orchestration, clock):
        clock.advance(25)
        tracker.update_progress(orchestration)

        data = tracker.get_progress(orchestration).to_dict()
        assert data["orchestration_id"] == "orch-1"
        assert data["elapsed_seconds"] == 25.0
        assert data["estimated_remaining_seconds"] == 12.5
        assert data["final_status"] is None

    @pytest.mark.parametrize(
        "seconds,expected",
        [(0, "0s"), (59, "59s"), (61, "1m 1s"), (3725, "1h 2m")],
    )
    def test_format_duration(self, seconds, expected):
        assert format_duration(timedelta(seconds=seconds)) == expected
