"""
Mid-flight adaptation of test plans.

The adapter first runs deterministic heuristics over what the orchestration
has observed so far (error count, service interactions). Only when none of
them fire is the decision oracle consulted, and its free-text reply is
mapped to an adaptation kind by a pluggable classifier. Adaptation is
best-effort: any failure along the way means "no adaptation".
"""

import time
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING

from ..config.settings import AdaptationConfig
from ..models import AssertionRule, RetryPolicy, StepType, TestPlan, TestStep
from ..observability.logging import get_logger
from ..observability.probe import probe
from .errors import OracleUnavailableError
from .interfaces import DecisionOracle, OracleReply
from .progress import ProgressTracker
from .runtime_patterns import CircuitBreaker, with_circuit_breaker

if TYPE_CHECKING:
    from .state_machine import Orchestration

logger = get_logger(__name__)

ADAPTED_SUFFIX = "-adapted"
HEALTH_CHECK_STEP_ID = "health-check-validation"


class AdaptationKind(Enum):
    RETRY_WITH_MODIFICATION = "retry_with_modification"
    OPTIMIZE_FLOW = "optimize_flow"
    SKIP_UNAVAILABLE = "skip_unavailable"
    ADD_VALIDATION = "add_validation"
    RELAX_ASSERTIONS = "relax_assertions"


@dataclass(frozen=True)
class AdaptationDecision:
    kind: AdaptationKind
    reason: str
    source: str  # "heuristic" or "oracle"


@dataclass(frozen=True)
class Adaptation:
    """A decision together with the plan it produced."""

    decision: AdaptationDecision
    plan: TestPlan


ReplyClassifier = Callable[[str], AdaptationKind | None]


def classify_oracle_reply(text: str) -> AdaptationKind | None:
    """Map an oracle reply to an adaptation kind by keyword search."""
    lower = text.lower()
    if "retry" in lower:
        return AdaptationKind.RETRY_WITH_MODIFICATION
    if "optimize" in lower or "performance" in lower:
        return AdaptationKind.OPTIMIZE_FLOW
    if "skip" in lower or "unavailable" in lower:
        return AdaptationKind.SKIP_UNAVAILABLE
    if "validation" in lower:
        return AdaptationKind.ADD_VALIDATION
    if "adapt" in lower or "yes" in lower:
        return AdaptationKind.RETRY_WITH_MODIFICATION
    return None


def health_check_step() -> TestStep:
    return TestStep(
        step_id=HEALTH_CHECK_STEP_ID,
        kind=StepType.REST_CALL,
        target="health-check",
        timeout=30.0,
        description="Health check injected by flow adaptation",
    )


class FlowAdapter:
    """Decides whether, and how, the remaining plan of an orchestration should change."""

    def __init__(
        self,
        oracle: DecisionOracle | None,
        progress_tracker: ProgressTracker,
        config: AdaptationConfig | None = None,
        classifier: ReplyClassifier = classify_oracle_reply,
    ):
        self.oracle = oracle
        self.progress_tracker = progress_tracker
        self.config = config or AdaptationConfig()
        self.classifier = classifier
        self.breaker = CircuitBreaker(
            threshold=self.config.oracle_failure_threshold,
            cooldown=self.config.oracle_cooldown,
            name="decision_oracle",
        )

    async def adapt_flow(self, orchestration: "Orchestration") -> TestPlan | None:
        """Return an adapted plan, or None when no adaptation is needed or possible."""
        adaptation = await self.propose(orchestration)
        return adaptation.plan if adaptation else None

    async def propose(self, orchestration: "Orchestration") -> Adaptation | None:
        """Like ``adapt_flow`` but also reports why the plan changed."""
        try:
            with probe("adapter.propose", orchestration.correlation_id):
                decision = await self.analyze(orchestration)
                if decision is None:
                    return None

                plan = self.generate_adapted_plan(
                    orchestration.plan,
                    decision.kind,
                    unavailable=self.unavailable_targets(orchestration),
                )
            logger.info(
                f"Adapted flow ({decision.kind.value}): {decision.reason}",
                orchestration_id=orchestration.orchestration_id,
                steps=len(plan.steps),
            )
            return Adaptation(decision, plan)
        except Exception as e:
            logger.warning(
                f"Flow adaptation failed: {e}", orchestration_id=orchestration.orchestration_id
            )
            return None

    async def analyze(self, orchestration: "Orchestration") -> AdaptationDecision | None:
        # Later heuristics take precedence: unavailability over performance over failures
        if self.has_unavailable_targets(orchestration):
            return AdaptationDecision(
                AdaptationKind.SKIP_UNAVAILABLE, "Target unavailability detected", "heuristic"
            )
        if self.has_performance_issues(orchestration):
            return AdaptationDecision(
                AdaptationKind.OPTIMIZE_FLOW, "Performance degradation detected", "heuristic"
            )
        if self.has_repeated_failures(orchestration):
            return AdaptationDecision(
                AdaptationKind.RETRY_WITH_MODIFICATION, "Repeated failures detected", "heuristic"
            )
        return await self.consult_oracle(orchestration)

    def has_repeated_failures(self, orchestration: "Orchestration") -> bool:
        threshold = self.config.repeated_failure_threshold
        if self.progress_tracker.error_count(orchestration) >= threshold:
            return True

        failures: dict[str, int] = {}
        for interaction in orchestration.interactions:
            if interaction.failed:
                failures[interaction.target] = failures.get(interaction.target, 0) + 1
        return any(count >= threshold for count in failures.values())

    def has_performance_issues(self, orchestration: "Orchestration") -> bool:
        window = max(self.config.min_samples, 10)
        timed = [i for i in orchestration.interactions if i.succeeded][-window:]
        if len(timed) < self.config.min_samples:
            return False
        average = sum(i.response_time_ms for i in timed) / len(timed)
        return average > self.config.slow_response_ms

    def has_unavailable_targets(self, orchestration: "Orchestration") -> bool:
        planned = set(orchestration.plan.targets)
        return bool(self.unavailable_targets(orchestration) & planned)

    def unavailable_targets(self, orchestration: "Orchestration") -> set[str]:
        """Targets whose most recent interactions all failed."""
        needed = self.config.unavailable_after
        by_target: dict[str, list[bool]] = {}
        for interaction in orchestration.interactions:
            by_target.setdefault(interaction.target, []).append(interaction.failed)

        return {
            target
            for target, outcomes in by_target.items()
            if len(outcomes) >= needed and all(outcomes[-needed:])
        }

    def build_prompt(self, orchestration: "Orchestration") -> str:
        return (
            f"Test orchestration {orchestration.orchestration_id}: "
            f"status {orchestration.status.value}, "
            f"steps completed {self.progress_tracker.completed_steps(orchestration)}"
            f"/{len(orchestration.plan.steps)}, "
            f"errors {self.progress_tracker.error_count(orchestration)}. "
            "Should the remaining test flow be adapted? If yes, which adaptation: "
            "retry, optimize, skip unavailable services or add validation?"
        )

    async def consult_oracle(self, orchestration: "Orchestration") -> AdaptationDecision | None:
        """Ask the oracle; raises if it is unavailable or replies unsuccessfully."""
        if self.oracle is None:
            return None

        prompt = self.build_prompt(orchestration)

        async def ask() -> OracleReply:
            reply = await self.oracle.ask(prompt)
            if not reply.success:
                raise OracleUnavailableError(reply.error_message or "Oracle reply unsuccessful")
            return reply

        reply = await with_circuit_breaker(
            self.breaker, ask, deadline=time.time() + self.config.oracle_timeout
        )
        kind = self.classifier(reply.text)
        if kind is None:
            logger.debug(
                "Oracle suggests no adaptation", orchestration_id=orchestration.orchestration_id
            )
            return None
        return AdaptationDecision(kind, "Oracle suggests adaptation", "oracle")

    def generate_adapted_plan(
        self,
        plan: TestPlan,
        kind: AdaptationKind,
        unavailable: set[str] | frozenset[str] = frozenset(),
    ) -> TestPlan:
        """Build a new plan; scenario, test data and configuration are carried over."""
        steps: list[TestStep] = []
        for step in plan.steps:
            adapted = self._adapt_step(step, kind, unavailable)
            if adapted is not None:
                steps.append(adapted)

        if kind is AdaptationKind.ADD_VALIDATION and not any(
            s.step_id == HEALTH_CHECK_STEP_ID for s in steps
        ):
            steps.append(health_check_step())

        plan_id = plan.plan_id
        if not plan_id.endswith(ADAPTED_SUFFIX):
            plan_id += ADAPTED_SUFFIX

        return plan.derive(
            plan_id=plan_id,
            steps=tuple(steps),
            assertions=tuple(self._adapt_assertion(a, kind) for a in plan.assertions),
            created_at=datetime.now(UTC),
        )

    def _adapt_step(
        self, step: TestStep, kind: AdaptationKind, unavailable: set[str] | frozenset[str]
    ) -> TestStep | None:
        if kind is AdaptationKind.RETRY_WITH_MODIFICATION:
            policy = step.retry_policy
            return replace(
                step,
                timeout=step.timeout * 2,
                retry_policy=RetryPolicy(
                    max_attempts=policy.max_attempts + 2,
                    initial_delay=policy.initial_delay,
                    max_delay=policy.max_delay,
                    backoff_multiplier=policy.backoff_multiplier
                    * self.config.retry_backoff_factor,
                ),
            )
        if kind is AdaptationKind.OPTIMIZE_FLOW:
            return replace(step, timeout=step.timeout / 2)
        if kind is AdaptationKind.SKIP_UNAVAILABLE and step.target in unavailable:
            return None
        return step

    @staticmethod
    def _adapt_assertion(rule: AssertionRule, kind: AdaptationKind) -> AssertionRule:
        if kind is AdaptationKind.RELAX_ASSERTIONS:
            return replace(rule, severity=rule.severity.relaxed())
        return rule
