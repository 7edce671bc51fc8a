"""
Tests for settings and the dependency injection container.
"""

import pytest
from conftest import FakeEngine
from pydantic import ValidationError

from crossflow.config import Container, Settings, get_settings, setup_container
from crossflow.core.adaptation import FlowAdapter
from crossflow.core.errors import EngineNotConfiguredError
from crossflow.core.orchestrator import Orchestrator
from crossflow.memory import InMemoryPatternMemory
from crossflow.oracle import HttpDecisionOracle


class TestSettings:
    """Defaults, validation and environment overrides."""

    def test_defaults(self):
        settings = Settings()

        assert settings.orchestrator.poll_interval == 1.0
        assert settings.orchestrator.max_adaptations == 3
        assert settings.orchestrator.cancel_execution_task is False
        assert settings.progress.average_step_duration == 10.0
        assert settings.correlation.max_message_gap == 300.0
        assert settings.adaptation.repeated_failure_threshold == 3
        assert settings.adaptation.slow_response_ms == 5000.0
        assert settings.api.result_retention == 500
        assert not settings.is_production()

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("XF_ORCHESTRATOR__POLL_INTERVAL", "0.25")
        monkeypatch.setenv("XF_ADAPTATION__SLOW_RESPONSE_MS", "750")
        monkeypatch.setenv("XF_ENVIRONMENT", "production")

        settings = Settings()

        assert settings.orchestrator.poll_interval == 0.25
        assert settings.adaptation.slow_response_ms == 750.0
        assert settings.is_production()

    def test_invalid_environment(self):
        with pytest.raises(ValidationError):
            Settings(environment="qa")

    def test_poll_interval_must_be_positive(self, monkeypatch):
        monkeypatch.setenv("XF_ORCHESTRATOR__POLL_INTERVAL", "0")

        with pytest.raises(ValidationError):
            Settings()

    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()


class TestContainer:
    """Factory registration and orchestrator wiring."""

    def test_factories_are_cached(self):
        container = setup_container(Settings())

        assert container.get("progress_tracker") is container.get("progress_tracker")
        assert isinstance(container.get("pattern_memory"), InMemoryPatternMemory)
        assert isinstance(container.get("oracle"), HttpDecisionOracle)
        assert isinstance(container.get("flow_adapter"), FlowAdapter)

    def test_unknown_service_returns_default(self):
        container = Container(Settings())

        assert container.get("missing") is None
        assert container.get("missing", 42) == 42
        assert not container.has("missing")

    def test_orchestrator_requires_engine(self):
        container = setup_container(Settings())

        with pytest.raises(EngineNotConfiguredError):
            container.get("orchestrator")

    def test_orchestrator_shares_trackers(self):
        container = setup_container(Settings())
        container.register_singleton("execution_engine", FakeEngine())

        orchestrator = container.get("orchestrator")

        assert isinstance(orchestrator, Orchestrator)
        assert orchestrator.progress_tracker is container.get("progress_tracker")
        assert orchestrator.correlation_tracker is container.get("correlation_tracker")
        assert orchestrator.flow_adapter.progress_tracker is orchestrator.progress_tracker
        assert orchestrator.pattern_memory is container.get("pattern_memory")

    def test_register_factory_replaces_cached_instance(self):
        container = setup_container(Settings())
        first = container.get("pattern_memory")

        container.register_factory("pattern_memory", lambda c: InMemoryPatternMemory())

        assert container.get("pattern_memory") is not first

    async def test_lifespan_closes_resources(self):
        container = setup_container(Settings())
        container.register_singleton("execution_engine", FakeEngine())
        oracle = container.get("oracle")
        oracle._client()
        container.get("orchestrator")

        async with container.lifespan():
            pass

        assert oracle._http_client is None
        assert container._services == {}
