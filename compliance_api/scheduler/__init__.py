"""Scheduler de refresco por edificio."""

from .cycle import CycleOutcome, CycleResult, CycleRunner
from .scheduler import RefreshScheduler
from .state import (
    VALID_TRANSITIONS,
    PollingConfig,
    RefreshPhase,
    RefreshState,
    is_valid_transition,
)

__all__ = [
    "CycleOutcome",
    "CycleResult",
    "CycleRunner",
    "RefreshScheduler",
    "VALID_TRANSITIONS",
    "PollingConfig",
    "RefreshPhase",
    "RefreshState",
    "is_valid_transition",
]
