"""Pattern memory implementations."""

from .in_memory import InMemoryPatternMemory

__all__ = ["InMemoryPatternMemory"]
