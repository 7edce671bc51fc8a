"""
Dependency injection container for the orchestration engine.

Factories are resolved lazily and cached per container, so every
orchestrator built from one container shares the same trackers. The
execution engine has no default: the embedding application registers one
with ``register_singleton("execution_engine", engine)``.
"""

from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Any

from ..observability.logging import get_logger
from .settings import Settings, get_settings

logger = get_logger(__name__)


class Container:
    """Dependency injection container with async lifecycle management."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self._services: dict[str, Any] = {}
        self._factories: dict[str, Any] = {}
        self._singletons: dict[str, Any] = {}

    def register_factory(self, name: str, factory: Any) -> None:
        """Register a factory ``factory(container)`` for a service."""
        self._factories[name] = factory
        self._services.pop(name, None)

    def register_singleton(self, name: str, instance: Any) -> None:
        self._singletons[name] = instance

    def get(self, name: str, default: Any = None) -> Any:
        if name in self._singletons:
            return self._singletons[name]

        if name in self._services:
            return self._services[name]

        if name in self._factories:
            instance = self._factories[name](self)
            self._services[name] = instance
            return instance

        return default

    def has(self, name: str) -> bool:
        return name in self._singletons or name in self._services or name in self._factories

    async def cleanup(self) -> None:
        """Shut down the orchestrator and close any resources with ``close``/``aclose``."""
        orchestrator = self._services.get("orchestrator")
        if orchestrator is not None:
            await orchestrator.shutdown()

        for name, resource in list(self._services.items()):
            closer = getattr(resource, "aclose", None) or getattr(resource, "close", None)
            if closer is None:
                continue
            try:
                result = closer()
                if hasattr(result, "__await__"):
                    await result
            except Exception as e:
                logger.warning(f"Error cleaning up {name}: {e}")

        self._services.clear()

    @asynccontextmanager
    async def lifespan(self):
        try:
            yield self
        finally:
            await self.cleanup()


def setup_container(settings: Settings | None = None) -> Container:
    """Setup container with default service factories."""
    container = Container(settings)

    def _progress_tracker_factory(c: Container):
        from ..core.progress import ProgressTracker

        return ProgressTracker(c.settings.progress.average_step_duration)

    def _correlation_tracker_factory(c: Container):
        from ..core.correlation import CorrelationTracker

        return CorrelationTracker(
            max_message_gap=c.settings.correlation.max_message_gap,
            completed_retention=c.settings.correlation.completed_trace_retention,
        )

    def _oracle_factory(c: Container):
        from ..oracle.http import HttpDecisionOracle

        return HttpDecisionOracle(c.settings.oracle)

    def _flow_adapter_factory(c: Container):
        from ..core.adaptation import FlowAdapter

        return FlowAdapter(
            c.get("oracle"), c.get("progress_tracker"), c.settings.adaptation
        )

    def _pattern_memory_factory(c: Container):
        from ..memory.in_memory import InMemoryPatternMemory

        return InMemoryPatternMemory()

    def _metrics_factory(c: Container):
        from ..observability.metrics import create_metrics_collector

        return create_metrics_collector(c.settings.observability.service_name)

    def _orchestrator_factory(c: Container):
        from ..core.errors import EngineNotConfiguredError
        from ..core.orchestrator import Orchestrator

        engine = c.get("execution_engine")
        if engine is None:
            raise EngineNotConfiguredError(
                "No execution engine registered; use register_singleton('execution_engine', ...)"
            )
        return Orchestrator(
            engine,
            pattern_memory=c.get("pattern_memory"),
            correlation_tracker=c.get("correlation_tracker"),
            progress_tracker=c.get("progress_tracker"),
            flow_adapter=c.get("flow_adapter"),
            metrics=c.get("metrics"),
            settings=c.settings,
        )

    container.register_factory("progress_tracker", _progress_tracker_factory)
    container.register_factory("correlation_tracker", _correlation_tracker_factory)
    container.register_factory("oracle", _oracle_factory)
    container.register_factory("flow_adapter", _flow_adapter_factory)
    container.register_factory("pattern_memory", _pattern_memory_factory)
    container.register_factory("metrics", _metrics_factory)
    container.register_factory("orchestrator", _orchestrator_factory)

    return container


@lru_cache
def get_container() -> Container:
    """Get cached container instance."""
    return setup_container()
