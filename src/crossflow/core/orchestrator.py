"""
Orchestrator: drives test plans through their lifecycle.

For every started plan the orchestrator launches the execution engine as
an asyncio task and runs a monitoring loop beside it. On each poll the loop
waits out a pause, asks the flow adapter whether the remaining plan should
change, and refreshes the progress estimate. When the execution task
resolves, the orchestration is finalized (status, progress, flow analysis,
execution history) and evicted from the active set.

Cancellation is cooperative unless ``orchestrator.cancel_execution_task``
is enabled: a cancelled orchestration stops adapting and refreshing
progress, but the execution task still runs to its own completion.
"""

import asyncio
import time
import uuid
from collections.abc import Generator
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from ..config.settings import Settings, get_settings
from ..models import (
    ExecutionHistory,
    PatternQuery,
    PatternType,
    ServiceInteraction,
    TestPattern,
    TestPlan,
    TestResult,
    TestStatus,
)
from ..observability.logging import clear_correlation_id, get_logger, set_correlation_id
from ..observability.metrics import MetricsCollector, create_metrics_collector
from ..observability.probe import clear_correlation_metrics, get_correlation_metrics, probe
from ..observability.tracing import trace_span
from .adaptation import FlowAdapter
from .correlation import CorrelationTracker
from .errors import InvalidPlanError
from .interfaces import DecisionOracle, ExecutionEngine, PatternMemory
from .progress import ProgressSnapshot, ProgressTracker
from .state_machine import Orchestration, OrchestrationStatus

logger = get_logger(__name__)

CANCELLED_MESSAGE = "Orchestration cancelled"


@dataclass
class OrchestrationHandle:
    """Returned by ``Orchestrator.start``; await it for the final result."""

    orchestration_id: str
    result: "asyncio.Task[TestResult]"

    def __await__(self) -> Generator[Any, None, TestResult]:
        return self.result.__await__()

    def done(self) -> bool:
        return self.result.done()


class Orchestrator:
    """
    Coordinates execution, monitoring and adaptation of test plans.

    Owns the active-orchestrations map; the progress and correlation
    trackers are injected (or built from settings) and may be shared with
    the protocol adapters that report traffic.
    """

    def __init__(
        self,
        execution_engine: ExecutionEngine,
        pattern_memory: PatternMemory | None = None,
        oracle: DecisionOracle | None = None,
        correlation_tracker: CorrelationTracker | None = None,
        progress_tracker: ProgressTracker | None = None,
        flow_adapter: FlowAdapter | None = None,
        metrics: MetricsCollector | None = None,
        settings: Settings | None = None,
    ):
        settings = settings or get_settings()
        self.config = settings.orchestrator
        self.execution_engine = execution_engine
        self.pattern_memory = pattern_memory
        self.progress_tracker = progress_tracker or ProgressTracker(
            settings.progress.average_step_duration
        )
        self.correlation_tracker = correlation_tracker or CorrelationTracker(
            max_message_gap=settings.correlation.max_message_gap,
            completed_retention=settings.correlation.completed_trace_retention,
        )
        self.flow_adapter = flow_adapter or FlowAdapter(
            oracle, self.progress_tracker, settings.adaptation
        )
        self.metrics = metrics or create_metrics_collector()

        self._active: dict[str, Orchestration] = {}
        self._execution_tasks: dict[str, asyncio.Task] = {}
        self._orchestration_tasks: set[asyncio.Task] = set()

    # Public API

    @trace_span("orchestrator.start")
    def start(self, plan: TestPlan) -> OrchestrationHandle:
        """
        Register and launch an orchestration for ``plan``.

        Returns immediately; must be called from a running event loop.
        Raises InvalidPlanError if the plan has no steps.
        """
        if not plan.steps:
            raise InvalidPlanError(f"Plan {plan.plan_id} has no steps")

        loop = asyncio.get_running_loop()
        orchestration_id = self._generate_orchestration_id()
        orchestration = Orchestration(orchestration_id, plan, loop)
        self._active[orchestration_id] = orchestration

        orchestration.start_time = datetime.now(UTC)
        orchestration.transition(OrchestrationStatus.RUNNING, expected=OrchestrationStatus.INITIALIZED)

        correlation_id = self.correlation_tracker.generate_correlation_id()
        orchestration.correlation_id = correlation_id
        self.correlation_tracker.start_trace(
            correlation_id, plan.plan_id, f"{self.config.trace_owner}:{orchestration_id}"
        )
        self.progress_tracker.update_progress(orchestration)
        self.metrics.record_orchestration_started()

        logger.info(
            f"Starting orchestration {orchestration_id} for plan {plan.plan_id}",
            steps=len(plan.steps),
            correlation_id=correlation_id,
        )

        task = loop.create_task(self._run(orchestration), name=f"orchestration-{orchestration_id}")
        self._orchestration_tasks.add(task)
        task.add_done_callback(self._orchestration_tasks.discard)
        return OrchestrationHandle(orchestration_id, task)

    def status(self, orchestration_id: str) -> OrchestrationStatus:
        orchestration = self._active.get(orchestration_id)
        return orchestration.status if orchestration else OrchestrationStatus.NOT_FOUND

    def progress(self, orchestration_id: str) -> ProgressSnapshot:
        return self.progress_tracker.get_progress(orchestration_id)

    def pause(self, orchestration_id: str) -> bool:
        orchestration = self._active.get(orchestration_id)
        if orchestration is None:
            return False
        paused = orchestration.compare_and_set(
            OrchestrationStatus.RUNNING, OrchestrationStatus.PAUSED
        )
        if paused:
            logger.info(f"Orchestration {orchestration_id} paused")
        return paused

    def resume(self, orchestration_id: str) -> bool:
        orchestration = self._active.get(orchestration_id)
        if orchestration is None:
            return False
        resumed = orchestration.compare_and_set(
            OrchestrationStatus.PAUSED, OrchestrationStatus.RUNNING
        )
        if resumed:
            logger.info(f"Orchestration {orchestration_id} resumed")
        return resumed

    def cancel(self, orchestration_id: str) -> bool:
        orchestration = self._active.get(orchestration_id)
        if orchestration is None:
            return False
        cancelled = orchestration.transition(
            OrchestrationStatus.CANCELLED,
            expected=(OrchestrationStatus.RUNNING, OrchestrationStatus.PAUSED),
            reason="cancel requested",
        )
        if not cancelled:
            return False

        logger.info(f"Orchestration {orchestration_id} cancelled")
        if self.config.cancel_execution_task:
            task = self._execution_tasks.get(orchestration_id)
            if task is not None and not task.done():
                task.cancel()
        return True

    def record_interaction(self, orchestration_id: str, interaction: ServiceInteraction) -> bool:
        """
        Report a service interaction observed while the plan runs.

        Failed interactions count as progress errors; all interactions feed
        the adaptation heuristics. Returns False for unknown IDs.
        """
        orchestration = self._active.get(orchestration_id)
        if orchestration is None:
            return False
        orchestration.add_interaction(interaction)
        if interaction.failed:
            self.progress_tracker.record_error(orchestration)
        return True

    def get_orchestration(self, orchestration_id: str) -> Orchestration | None:
        return self._active.get(orchestration_id)

    def active_orchestration_ids(self) -> list[str]:
        return list(self._active)

    async def shutdown(self) -> None:
        """Cancel every running orchestration task and wait for them to unwind."""
        tasks = list(self._orchestration_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        # Tasks cancelled before their first step never ran their own cleanup
        for orchestration_id, orchestration in list(self._active.items()):
            self.correlation_tracker.complete_trace(orchestration.correlation_id)
            self._active.pop(orchestration_id, None)
            self.progress_tracker.cleanup(orchestration_id)
            clear_correlation_metrics(orchestration.correlation_id)
        logger.info(f"Orchestrator shut down ({len(tasks)} orchestrations cancelled)")

    # Orchestration task

    async def _run(self, orchestration: Orchestration) -> TestResult:
        set_correlation_id(orchestration.correlation_id)
        started = time.perf_counter()
        try:
            try:
                with probe(
                    "orchestrator.execute",
                    orchestration.correlation_id,
                    orchestration_id=orchestration.orchestration_id,
                ):
                    await self._store_pattern(orchestration.plan)
                    result = await self._execute_with_monitoring(orchestration)

                final = (
                    OrchestrationStatus.COMPLETED
                    if result.status is TestStatus.PASSED
                    else OrchestrationStatus.FAILED
                )
                # A cancelled orchestration keeps its status
                orchestration.transition(final)
            except Exception as e:
                logger.error(
                    f"Orchestration {orchestration.orchestration_id} failed: {e}",
                    error_type=type(e).__name__,
                )
                orchestration.error = e
                orchestration.transition(OrchestrationStatus.FAILED, reason=str(e))
                result = TestResult.failure(
                    orchestration.plan.plan_id,
                    str(e) or type(e).__name__,
                    start_time=orchestration.start_time,
                    correlation_id=orchestration.correlation_id,
                )

            orchestration.end_time = datetime.now(UTC)
            if result.correlation_id is None:
                result.correlation_id = orchestration.correlation_id
            result.metadata["orchestration_id"] = orchestration.orchestration_id
            result.metadata["orchestration_status"] = orchestration.status.value
            result.metadata["adaptations"] = [a.kind for a in orchestration.adaptations]
            result.metadata["timings_ms"] = {
                op: entry["duration_ms"]
                for op, entry in get_correlation_metrics(orchestration.correlation_id).items()
            }

            self.progress_tracker.mark_completed(orchestration, result)
            self._attach_flow_analysis(orchestration, result)
            await self._learn_from_execution(orchestration, result)

            duration = time.perf_counter() - started
            self.metrics.record_orchestration_finished(orchestration.status.value, duration)
            logger.timed(
                f"Orchestration {orchestration.orchestration_id} finished "
                f"with status {orchestration.status.value}",
                duration * 1000,
                verdict=result.status.value,
            )
            return result
        finally:
            self.correlation_tracker.complete_trace(orchestration.correlation_id)
            self._active.pop(orchestration.orchestration_id, None)
            self._schedule_progress_cleanup(orchestration.orchestration_id)
            clear_correlation_metrics(orchestration.correlation_id)
            clear_correlation_id()

    async def _execute_with_monitoring(self, orchestration: Orchestration) -> TestResult:
        orchestration_id = orchestration.orchestration_id
        task = asyncio.ensure_future(self.execution_engine.execute_test(orchestration.plan))
        self._execution_tasks[orchestration_id] = task

        try:
            while not task.done():
                await asyncio.wait({task}, timeout=self.config.poll_interval)
                if task.done():
                    break

                if orchestration.status is OrchestrationStatus.PAUSED:
                    logger.debug("Monitoring suspended while paused")
                    await orchestration.wait_until_not_paused()

                if orchestration.status.is_terminal:
                    # Cancelled: stop observing, let the task finish on its own
                    continue

                await self._maybe_adapt(orchestration)
                self._refresh_progress(orchestration)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            self._execution_tasks.pop(orchestration_id, None)

        if task.cancelled():
            return TestResult.failure(
                orchestration.plan.plan_id,
                CANCELLED_MESSAGE,
                start_time=orchestration.start_time,
                correlation_id=orchestration.correlation_id,
            )
        return task.result()

    async def _maybe_adapt(self, orchestration: Orchestration) -> None:
        if len(orchestration.adaptations) >= self.config.max_adaptations:
            return
        try:
            adaptation = await self.flow_adapter.propose(orchestration)
        except Exception as e:
            logger.warning(f"Adaptation check failed: {e}")
            return
        if adaptation is None:
            return

        # The running task keeps the plan it was launched with
        orchestration.replace_plan(
            adaptation.plan, adaptation.decision.kind.value, adaptation.decision.reason
        )
        self.metrics.record_adaptation(adaptation.decision.kind.value)
        logger.info(
            f"Adapting test flow for orchestration {orchestration.orchestration_id}",
            kind=adaptation.decision.kind.value,
            source=adaptation.decision.source,
        )

    def _refresh_progress(self, orchestration: Orchestration) -> None:
        try:
            self.progress_tracker.update_progress(orchestration)
        except Exception as e:
            logger.warning(f"Progress update failed: {e}")

    # Finalization helpers

    def _attach_flow_analysis(self, orchestration: Orchestration, result: TestResult) -> None:
        try:
            issues = self.correlation_tracker.analyze_flow(orchestration.correlation_id)
            summary = self.correlation_tracker.complete_trace(orchestration.correlation_id)
        except Exception as e:
            logger.warning(f"Flow analysis failed: {e}")
            return

        for issue in issues:
            self.metrics.record_flow_issue(issue.kind.value)
        result.metadata["flow_issues"] = [
            {"kind": i.kind.value, "description": i.description, "details": i.details}
            for i in issues
        ]
        if summary is not None:
            result.metadata["trace"] = {
                "message_count": summary.message_count,
                "targets": list(summary.targets),
                "duration_seconds": summary.total_duration.total_seconds(),
            }

    async def _store_pattern(self, plan: TestPlan) -> None:
        if self.pattern_memory is None:
            return
        try:
            await self.pattern_memory.store_pattern(self._create_pattern(plan))
        except Exception as e:
            logger.warning(f"Failed to store test pattern: {e}")

    async def _learn_from_execution(self, orchestration: Orchestration, result: TestResult) -> None:
        if self.pattern_memory is None:
            return

        execution_time = 0.0
        if orchestration.start_time and orchestration.end_time:
            execution_time = (orchestration.end_time - orchestration.start_time).total_seconds()

        try:
            await self.pattern_memory.store_history(
                ExecutionHistory(
                    execution_id=orchestration.orchestration_id,
                    plan_id=orchestration.plan.plan_id,
                    correlation_id=orchestration.correlation_id,
                    status=result.status,
                    execution_time=execution_time,
                    services_involved=orchestration.plan.targets,
                )
            )
        except Exception as e:
            logger.warning(f"Failed to store execution history: {e}")

        if result.status is not TestStatus.FAILED:
            return

        try:
            similar = await self.pattern_memory.find_similar_patterns(
                PatternQuery(
                    correlation_id=orchestration.correlation_id,
                    plan_id=orchestration.plan.plan_id,
                    services=orchestration.plan.targets,
                ),
                self.config.similar_pattern_limit,
            )
        except Exception as e:
            logger.warning(f"Failed to look up similar failure patterns: {e}")
            return

        result.metadata["similar_patterns"] = [p.pattern_id for p in similar]
        logger.info(f"Found {len(similar)} similar failure patterns for learning")

    def _schedule_progress_cleanup(self, orchestration_id: str) -> None:
        retention = self.config.progress_retention
        if retention <= 0:
            self.progress_tracker.cleanup(orchestration_id)
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        loop.call_later(retention, self.progress_tracker.cleanup, orchestration_id)

    @staticmethod
    def _create_pattern(plan: TestPlan) -> TestPattern:
        return TestPattern(
            pattern_id=f"pattern-{uuid.uuid4().hex[:12]}",
            name=f"Test Pattern for {plan.plan_id}",
            pattern_type=PatternType.SUCCESS_FLOW,
            description=f"Execution pattern with {len(plan.steps)} steps",
            service_flow=plan.targets,
            characteristics={
                "step_count": len(plan.steps),
                "step_kinds": sorted({s.kind.value for s in plan.steps}),
                "assertion_count": len(plan.assertions),
            },
        )

    @staticmethod
    def _generate_orchestration_id() -> str:
        return f"orch-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"
