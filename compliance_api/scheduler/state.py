"""Máquina de estados de refresco por edificio.

IDLE -> FETCHING -> SUCCESS -> IDLE
                 -> FAILURE -> BACKING_OFF -> IDLE
                 -> IDLE              (ciclo cancelado)

No hay estado terminal: el edificio se refresca mientras el scheduler corra.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from ..core.domain.building import PriorityTier


class RefreshPhase(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    SUCCESS = "success"
    FAILURE = "failure"
    BACKING_OFF = "backing_off"


VALID_TRANSITIONS = {
    RefreshPhase.IDLE: {RefreshPhase.FETCHING},
    RefreshPhase.FETCHING: {
        RefreshPhase.SUCCESS,
        RefreshPhase.FAILURE,
        RefreshPhase.IDLE,
    },
    RefreshPhase.SUCCESS: {RefreshPhase.IDLE},
    RefreshPhase.FAILURE: {RefreshPhase.BACKING_OFF},
    RefreshPhase.BACKING_OFF: {RefreshPhase.IDLE},
}


def is_valid_transition(from_phase: RefreshPhase, to_phase: RefreshPhase) -> bool:
    return to_phase in VALID_TRANSITIONS.get(from_phase, set())


@dataclass
class PollingConfig:
    """Cadencia de polling.

    Env vars:
    - POLL_MIN_INTERVAL_SECONDS / POLL_MAX_INTERVAL_SECONDS (60 / 21600)
    - POLL_BASE_INTERVAL_HIGH / _MEDIUM / _LOW (300 / 900 / 3600)
    - POLL_MAX_IN_FLIGHT (4)
    - POLL_TICK_SECONDS (1.0)
    - POLL_CYCLE_TIMEOUT_SECONDS (300)
    - STALE_AFTER_FAILURES (3)
    """
    min_interval: float = 60.0
    max_interval: float = 21600.0
    base_high: float = 300.0
    base_medium: float = 900.0
    base_low: float = 3600.0
    max_in_flight: int = 4
    tick_seconds: float = 1.0
    cycle_timeout_seconds: float = 300.0
    stale_after_failures: int = 3

    def __post_init__(self):
        if self.min_interval <= 0 or self.min_interval > self.max_interval:
            raise ValueError("Require 0 < min_interval <= max_interval")
        if self.max_in_flight < 1:
            raise ValueError("max_in_flight must be >= 1")

    @classmethod
    def from_env(cls) -> "PollingConfig":
        return cls(
            min_interval=float(os.getenv("POLL_MIN_INTERVAL_SECONDS", "60")),
            max_interval=float(os.getenv("POLL_MAX_INTERVAL_SECONDS", "21600")),
            base_high=float(os.getenv("POLL_BASE_INTERVAL_HIGH", "300")),
            base_medium=float(os.getenv("POLL_BASE_INTERVAL_MEDIUM", "900")),
            base_low=float(os.getenv("POLL_BASE_INTERVAL_LOW", "3600")),
            max_in_flight=int(os.getenv("POLL_MAX_IN_FLIGHT", "4")),
            tick_seconds=float(os.getenv("POLL_TICK_SECONDS", "1.0")),
            cycle_timeout_seconds=float(os.getenv("POLL_CYCLE_TIMEOUT_SECONDS", "300")),
            stale_after_failures=int(os.getenv("STALE_AFTER_FAILURES", "3")),
        )

    def base_for(self, tier: PriorityTier) -> float:
        base = {
            PriorityTier.HIGH: self.base_high,
            PriorityTier.MEDIUM: self.base_medium,
            PriorityTier.LOW: self.base_low,
        }[tier]
        return min(self.max_interval, max(self.min_interval, base))


@dataclass
class RefreshState:
    """Estado de refresco de un edificio. Solo el scheduler lo escribe."""
    building_id: str
    tier: PriorityTier
    current_interval: float
    phase: RefreshPhase = RefreshPhase.IDLE
    last_success: Optional[datetime] = None
    last_failure: Optional[datetime] = None
    consecutive_failures: int = 0
    next_due: float = 0.0  # reloj monotónico del scheduler
    rerun_requested: bool = False
    last_error: Optional[str] = None

    def record_success(self, base_interval: float, at: datetime) -> None:
        self.consecutive_failures = 0
        self.current_interval = base_interval
        self.last_success = at
        self.last_error = None

    def record_failure(self, max_interval: float, at: datetime, error: Optional[str] = None) -> None:
        self.consecutive_failures += 1
        self.current_interval = min(self.current_interval * 2, max_interval)
        self.last_failure = at
        self.last_error = error

    def to_dict(self) -> dict:
        return {
            "building_id": self.building_id,
            "tier": self.tier.value,
            "phase": self.phase.value,
            "current_interval": self.current_interval,
            "consecutive_failures": self.consecutive_failures,
            "last_success": self.last_success.isoformat() if self.last_success else None,
            "last_failure": self.last_failure.isoformat() if self.last_failure else None,
            "rerun_requested": self.rerun_requested,
            "last_error": self.last_error,
        }
