"""
Performance probes: timing log lines, Prometheus metrics and OpenTelemetry spans.
"""

import contextlib
import time
from typing import Any

from opentelemetry import trace
from prometheus_client import Counter, Histogram

from .logging import get_logger

log = get_logger("crossflow.probe")

tracer = trace.get_tracer("crossflow")

REQS = Counter("crossflow_operations_total", "Total probed operations", ["op", "ok"])
LAT = Histogram("crossflow_operation_latency_seconds", "Probed operation latency", ["op"])

# Timings per correlation ID, kept for post-hoc inspection
_METRICS_STORE: dict[str, dict[str, Any]] = {}


@contextlib.contextmanager
def probe(op: str, correlation_id: str | None = None, **labels):
    """
    Time a block of work.

    Emits one structured log line, updates the Prometheus counter/histogram,
    wraps the block in an OpenTelemetry span and, when a correlation ID is
    given, stores the timing under that ID.

    Args:
        op: Operation name (e.g., "orchestrator.adapt")
        correlation_id: Optional correlation ID for grouping timings
        **labels: Additional labels rendered in the log line
    """
    start_time = time.perf_counter()
    ok = "true"
    error_type = None

    with tracer.start_as_current_span(op):
        try:
            yield
        except Exception as e:
            ok = "false"
            error_type = type(e).__name__
            raise
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000

            log.debug(
                f"op={op} ok={ok}"
                + (f" error={error_type}" if error_type else "")
                + "".join(f" {k}={v}" for k, v in labels.items()),
                ms=duration_ms,
            )

            REQS.labels(op=op, ok=ok).inc()
            LAT.labels(op=op).observe(duration_ms / 1000.0)

            if correlation_id:
                _METRICS_STORE.setdefault(correlation_id, {})[op] = {
                    "duration_ms": duration_ms,
                    "success": ok == "true",
                    "error_type": error_type,
                    "labels": labels,
                    "timestamp": time.time(),
                }


def get_correlation_metrics(correlation_id: str) -> dict[str, Any]:
    """Get all probe timings recorded for a correlation ID."""
    return _METRICS_STORE.get(correlation_id, {})


def clear_correlation_metrics(correlation_id: str) -> None:
    _METRICS_STORE.pop(correlation_id, None)
