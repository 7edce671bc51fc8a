"""
crossflow - orchestration and correlation engine for cross-service test plans.

Drives multi-step test plans through a controllable lifecycle
(start/pause/resume/cancel), estimates live progress, correlates
asynchronous request/response traffic by correlation ID, and adapts the
remaining plan mid-flight using heuristics and an external decision oracle.

Quick Start:
    >>> from crossflow import Orchestrator
    >>> from crossflow.models import TestPlan, TestStep, StepType
    >>>
    >>> orchestrator = Orchestrator(execution_engine=my_engine)
    >>> plan = TestPlan(
    ...     plan_id="checkout-flow",
    ...     scenario="order is placed and confirmed",
    ...     steps=[TestStep("publish-order", StepType.KAFKA_EVENT, "orders")],
    ... )
    >>> handle = orchestrator.start(plan)
    >>> orchestrator.progress(handle.orchestration_id).summary
    'In Progress: 0/1 steps (0.0%) - Step 1 of 1 - ETA: 0s'
    >>> result = await handle

API Server:
    $ crossflow --port 8000
    # or
    $ uvicorn crossflow.api.server:app --host 0.0.0.0 --port 8000

Configuration:
    Environment variables with the ``XF_`` prefix, e.g.
    - XF_ORCHESTRATOR__POLL_INTERVAL=1.0
    - XF_ADAPTATION__SLOW_RESPONSE_MS=5000
    - XF_ORACLE__BASE_URL=http://localhost:11434
"""

__version__ = "0.1.0"

from .config.settings import Settings
from .core.orchestrator import OrchestrationHandle, Orchestrator
from .core.state_machine import OrchestrationStatus

__all__ = [
    "Orchestrator",
    "OrchestrationHandle",
    "OrchestrationStatus",
    "Settings",
]
