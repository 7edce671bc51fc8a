"""
Runtime guards for calls into unreliable collaborators.

- Deadline-based timeouts
- Circuit breaker that fails fast while a collaborator is known to be down
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

from ..observability.logging import get_logger
from ..observability.metrics import counter
from .errors import CircuitOpenError

logger = get_logger(__name__)

T = TypeVar("T")


def remaining_budget(deadline: float) -> float:
    """Calculate remaining time budget from absolute deadline."""
    return max(0.0, deadline - time.time())


async def with_timeout(coro: Awaitable[T], deadline: float) -> T:
    """Execute coroutine with deadline-based timeout."""
    budget = remaining_budget(deadline)
    if budget <= 0:
        # Close the never-awaited coroutine before bailing out
        if asyncio.iscoroutine(coro):
            coro.close()
        raise TimeoutError("Deadline exceeded before execution")

    return await asyncio.wait_for(coro, timeout=budget)


@dataclass
class CircuitBreaker:
    """
    Fails fast while a collaborator is known to be down.

    ``threshold`` consecutive failures open the breaker for ``cooldown``
    seconds; calls made meanwhile raise CircuitOpenError without reaching
    the collaborator. One success clears the failure streak.
    """

    threshold: int = 5
    cooldown: float = 10.0
    name: str = "default"
    failures: int = field(default=0, init=False)
    open_until: float = field(default=0.0, init=False)

    @property
    def is_open(self) -> bool:
        return time.time() < self.open_until

    def allow(self) -> bool:
        if self.is_open:
            counter("breaker_rejections_total").add(1, {"breaker": self.name})
            raise CircuitOpenError(self.name, remaining_budget(self.open_until))
        return True

    def success(self) -> None:
        self.failures = 0

    def failure(self) -> None:
        self.failures += 1
        if self.failures < self.threshold:
            return

        self.open_until = time.time() + self.cooldown
        counter("breaker_opened_total").add(1, {"breaker": self.name})
        logger.warning(
            "Circuit breaker opened",
            breaker=self.name,
            failures=self.failures,
            cooldown_s=self.cooldown,
        )
        self.failures = 0

    def reset(self) -> None:
        self.failures = 0
        self.open_until = 0.0

    async def call(self, op: Callable[[], Awaitable[T]], deadline: float | None = None) -> T:
        """Run ``op`` through the breaker, bounded by ``deadline`` when given."""
        self.allow()
        try:
            result = await (with_timeout(op(), deadline) if deadline else op())
        except Exception as e:
            logger.debug("Guarded call failed", breaker=self.name, error_type=type(e).__name__)
            self.failure()
            raise
        self.success()
        return result


async def with_circuit_breaker(
    breaker: CircuitBreaker,
    op: Callable[[], Awaitable[T]],
    deadline: float | None = None,
) -> T:
    """Execute ``op`` with circuit breaker protection."""
    return await breaker.call(op, deadline)
