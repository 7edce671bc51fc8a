"""Exceptions raised inside the orchestration core."""


class CrossflowError(Exception):
    """Base class for crossflow errors."""


class InvalidPlanError(CrossflowError):
    """A plan cannot be orchestrated (e.g. it has no steps)."""


class OracleUnavailableError(CrossflowError):
    """The decision oracle did not produce a usable reply."""


class EngineNotConfiguredError(CrossflowError):
    """No execution engine has been registered with the container."""


class CircuitOpenError(CrossflowError):
    """A circuit breaker is rejecting calls until its cooldown elapses."""

    def __init__(self, name: str, retry_in: float):
        super().__init__(f"Circuit breaker '{name}' is open; retry in {retry_in:.1f}s")
        self.name = name
        self.retry_in = retry_in
