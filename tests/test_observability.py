"""
Tests for structured logging, probes and orchestration metrics.
"""

import logging

import pytest

from crossflow.observability.logging import (
    StructuredFormatter,
    clear_correlation_id,
    get_correlation_id,
    get_logger,
    set_correlation_id,
)
from crossflow.observability.metrics import create_metrics_collector
from crossflow.observability.probe import (
    clear_correlation_metrics,
    get_correlation_metrics,
    probe,
)


def make_record(msg="hello", **extra):
    record = logging.LogRecord("crossflow.core.orchestrator", logging.INFO, __file__, 1, msg, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestStructuredLogging:
    """Single-line ``key=value`` records with correlation IDs."""

    def test_format_includes_correlation_and_fields(self):
        set_correlation_id("corr-123")

        line = StructuredFormatter().format(make_record(steps=3))

        assert "level=INFO" in line
        assert "corr=corr-123" in line
        assert "mod=orchestrator" in line
        assert 'msg="hello"' in line
        assert "steps=3" in line

    def test_format_without_correlation(self):
        clear_correlation_id()

        line = StructuredFormatter().format(make_record())

        assert "corr=-" in line

    def test_duration_rendered(self):
        line = StructuredFormatter().format(make_record(ms=12.345))

        assert " ms=12.3 " in line

    def test_correlation_context(self):
        set_correlation_id("corr-abc")
        assert get_correlation_id() == "corr-abc"
        clear_correlation_id()
        assert get_correlation_id() is None

    def test_logger_cached_and_reserved_keys_dropped(self, caplog):
        logger = get_logger("crossflow.test")
        assert get_logger("crossflow.test") is logger

        with caplog.at_level(logging.INFO, logger="crossflow.test"):
            logger.info("started", name="ignored", orchestration_id="orch-1")

        record = caplog.records[-1]
        assert record.orchestration_id == "orch-1"
        assert record.name == "crossflow.test"


class TestProbe:
    """Timing probes."""

    def test_records_timing_per_correlation(self):
        with probe("adapter.classify", "corr-probe", kind="retry"):
            pass

        metrics = get_correlation_metrics("corr-probe")
        assert metrics["adapter.classify"]["success"] is True
        assert metrics["adapter.classify"]["labels"] == {"kind": "retry"}
        clear_correlation_metrics("corr-probe")
        assert get_correlation_metrics("corr-probe") == {}

    def test_failure_recorded_and_reraised(self):
        with pytest.raises(ValueError):
            with probe("adapter.classify", "corr-fail"):
                raise ValueError("boom")

        entry = get_correlation_metrics("corr-fail")["adapter.classify"]
        assert entry["success"] is False
        assert entry["error_type"] == "ValueError"
        clear_correlation_metrics("corr-fail")


class TestMetricsCollector:
    def test_summary_aggregates(self):
        collector = create_metrics_collector("crossflow-test")

        collector.record_orchestration_started()
        collector.record_orchestration_finished("completed", 1.5)
        collector.record_adaptation("optimize_flow")
        collector.record_flow_issue("timing_gap")
        collector.record_flow_issue("timing_gap")

        assert collector.get_summary() == {
            "orchestrations": {"started": 1, "completed": 1},
            "adaptations": {"optimize_flow": 1},
            "flow_issues": {"timing_gap": 2},
        }

    def test_counter_cached(self):
        collector = create_metrics_collector("crossflow-test")

        assert collector.counter("custom_total") is collector.counter("custom_total")
