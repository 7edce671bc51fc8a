"""
Observability for crossflow.

- Structured logging: single-line ``key=value`` records carrying the
  current correlation ID (``corr=<id>``)
- Probes: always-on timing with Prometheus and OpenTelemetry hooks
- Tracing: ``trace_span`` decorator over the OpenTelemetry API
- Metrics: orchestration counters and duration histogram

Usage:
    >>> from crossflow.observability import get_logger, probe
    >>>
    >>> logger = get_logger(__name__)
    >>> with probe("adapter.classify", correlation_id):
    ...     logger.info("Classifying oracle reply", length=len(text))

Configuration:
    - XF_OBSERVABILITY__LOG_LEVEL=INFO
    - XF_OBSERVABILITY__ENABLE_TRACING=true
    - XF_OBSERVABILITY__OTLP_ENDPOINT=http://collector:4317
"""

from .logging import get_correlation_id, get_logger, set_correlation_id, setup_logging
from .metrics import MetricsCollector, create_metrics_collector
from .probe import probe
from .tracing import TracingManager, trace_span

__all__ = [
    "get_logger",
    "setup_logging",
    "get_correlation_id",
    "set_correlation_id",
    "probe",
    "trace_span",
    "TracingManager",
    "MetricsCollector",
    "create_metrics_collector",
]
