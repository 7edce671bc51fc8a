"""Decision oracle clients."""

from .http import HttpDecisionOracle

__all__ = ["HttpDecisionOracle"]
