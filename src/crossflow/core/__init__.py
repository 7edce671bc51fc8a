"""
Orchestration core: lifecycle state machine, progress estimation,
correlation analysis and mid-flight plan adaptation.
"""

from .adaptation import AdaptationKind, FlowAdapter, classify_oracle_reply
from .correlation import CorrelationTracker, FlowIssue, FlowIssueKind, TraceSummary
from .errors import (
    CircuitOpenError,
    CrossflowError,
    EngineNotConfiguredError,
    InvalidPlanError,
    OracleUnavailableError,
)
from .interfaces import DecisionOracle, ExecutionEngine, OracleReply, PatternMemory
from .orchestrator import OrchestrationHandle, Orchestrator
from .progress import ProgressSnapshot, ProgressTracker
from .state_machine import Orchestration, OrchestrationStatus

__all__ = [
    "AdaptationKind",
    "CircuitOpenError",
    "CorrelationTracker",
    "CrossflowError",
    "DecisionOracle",
    "EngineNotConfiguredError",
    "ExecutionEngine",
    "FlowAdapter",
    "FlowIssue",
    "FlowIssueKind",
    "InvalidPlanError",
    "OracleReply",
    "OracleUnavailableError",
    "Orchestration",
    "OrchestrationHandle",
    "OrchestrationStatus",
    "Orchestrator",
    "PatternMemory",
    "ProgressSnapshot",
    "ProgressTracker",
    "TraceSummary",
    "classify_oracle_reply",
]
