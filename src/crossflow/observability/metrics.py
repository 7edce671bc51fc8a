"""
Orchestration metrics on top of the OpenTelemetry metrics API.
"""

from collections import defaultdict
from typing import Any

from opentelemetry import metrics
from opentelemetry.metrics import Counter, Histogram, Meter

from .logging import get_logger

logger = get_logger(__name__)


class MetricsCollector:
    """Centralized metrics collection for orchestrations."""

    def __init__(self, meter: Meter):
        self.meter = meter
        self._counters: dict[str, Counter] = {}
        self._histograms: dict[str, Histogram] = {}

        # In-process aggregates, readable without an exporter
        self._orchestrations: dict[str, int] = defaultdict(int)
        self._adaptations: dict[str, int] = defaultdict(int)
        self._flow_issues: dict[str, int] = defaultdict(int)

        self._setup_default_metrics()

    def _setup_default_metrics(self):
        self._counters["orchestrations_started_total"] = self.meter.create_counter(
            "crossflow_orchestrations_started_total",
            description="Total orchestrations started",
            unit="1",
        )
        self._counters["orchestrations_finished_total"] = self.meter.create_counter(
            "crossflow_orchestrations_finished_total",
            description="Total orchestrations finished, by final status",
            unit="1",
        )
        self._counters["adaptations_total"] = self.meter.create_counter(
            "crossflow_adaptations_total",
            description="Total plan adaptations applied, by kind",
            unit="1",
        )
        self._counters["flow_issues_total"] = self.meter.create_counter(
            "crossflow_flow_issues_total",
            description="Total correlation flow issues detected, by kind",
            unit="1",
        )
        self._histograms["orchestration_duration"] = self.meter.create_histogram(
            "crossflow_orchestration_duration_seconds",
            description="Orchestration wall-clock duration",
            unit="s",
        )

    def counter(self, name: str, description: str = "", unit: str = "1") -> Counter:
        """Get or create a counter metric."""
        if name not in self._counters:
            self._counters[name] = self.meter.create_counter(
                f"crossflow_{name}", description=description, unit=unit
            )
        return self._counters[name]

    def record_orchestration_started(self) -> None:
        self._counters["orchestrations_started_total"].add(1)
        self._orchestrations["started"] += 1

    def record_orchestration_finished(self, status: str, duration: float) -> None:
        attributes = {"status": status}
        self._counters["orchestrations_finished_total"].add(1, attributes)
        self._histograms["orchestration_duration"].record(duration, attributes)
        self._orchestrations[status] += 1

    def record_adaptation(self, kind: str) -> None:
        self._counters["adaptations_total"].add(1, {"kind": kind})
        self._adaptations[kind] += 1

    def record_flow_issue(self, kind: str) -> None:
        self._counters["flow_issues_total"].add(1, {"kind": kind})
        self._flow_issues[kind] += 1

    def get_summary(self) -> dict[str, Any]:
        """Aggregated counts since process start."""
        return {
            "orchestrations": dict(self._orchestrations),
            "adaptations": dict(self._adaptations),
            "flow_issues": dict(self._flow_issues),
        }


def create_metrics_collector(name: str = "crossflow") -> MetricsCollector:
    """Build a collector on the globally configured meter provider."""
    return MetricsCollector(metrics.get_meter(name))


def counter(name: str, description: str = "", unit: str = "1") -> Counter:
    """Get or create a standalone counter on the global meter provider."""
    return metrics.get_meter("crossflow").create_counter(
        f"crossflow_{name}", description=description, unit=unit
    )
