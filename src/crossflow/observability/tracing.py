"""
OpenTelemetry tracing integration.

Spans are no-ops until ``TracingManager.initialize()`` installs an SDK
tracer provider, so library code can decorate freely.
"""

import functools
import inspect
from collections.abc import Callable
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Status, StatusCode

from .logging import get_logger

logger = get_logger(__name__)


class TracingManager:
    """Manages OpenTelemetry tracing configuration."""

    def __init__(self, service_name: str = "crossflow", service_version: str = "0.1.0"):
        self.service_name = service_name
        self.service_version = service_version
        self.tracer_provider: TracerProvider | None = None
        self._initialized = False

    def initialize(self, otlp_endpoint: str | None = None) -> None:
        """Install an SDK tracer provider, exporting over OTLP when configured."""
        if self._initialized:
            return

        resource = Resource.create(
            {
                "service.name": self.service_name,
                "service.version": self.service_version,
            }
        )
        self.tracer_provider = TracerProvider(resource=resource)

        if otlp_endpoint:
            exporter = OTLPSpanExporter(endpoint=otlp_endpoint)
            self.tracer_provider.add_span_processor(BatchSpanProcessor(exporter))

        trace.set_tracer_provider(self.tracer_provider)
        self._initialized = True
        logger.info("Tracing initialized", otlp_endpoint=otlp_endpoint or "-")

    def shutdown(self) -> None:
        if self.tracer_provider:
            self.tracer_provider.shutdown()
        self._initialized = False


def get_tracer() -> trace.Tracer:
    return trace.get_tracer("crossflow")


@contextmanager
def _span(name: str, attributes: dict[str, Any]):
    with get_tracer().start_as_current_span(name) as span:
        for key, value in attributes.items():
            span.set_attribute(key, str(value))
        try:
            yield span
        except Exception as e:
            span.record_exception(e)
            span.set_status(Status(StatusCode.ERROR, str(e)))
            raise


def trace_span(name: str | None = None, attributes: dict[str, Any] | None = None):
    """Decorator for automatic span creation around sync or async callables."""

    def decorator(func: Callable) -> Callable:
        span_name = name or f"{func.__module__}.{func.__qualname__}"
        span_attributes = {"function.name": func.__name__, **(attributes or {})}

        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            with _span(span_name, span_attributes):
                return await func(*args, **kwargs)

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs):
            with _span(span_name, span_attributes):
                return func(*args, **kwargs)

        return async_wrapper if inspect.iscoroutinefunction(func) else sync_wrapper

    return decorator
