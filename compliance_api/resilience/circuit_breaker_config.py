"""Configuración y estados del circuit breaker por fuente."""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum


class CircuitState(str, Enum):
    """Estados del circuit breaker."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerConfig:
    """Configuración del circuit breaker.

    Los fallos se ponderan: transitorio = 1.0, rate limit = rate_limit_weight,
    errores permanentes del cliente no cuentan.
    """
    failure_threshold: float = 5.0
    recovery_timeout_seconds: float = 120.0
    success_threshold: int = 1
    rate_limit_weight: float = 0.5

    @classmethod
    def from_env(cls) -> "CircuitBreakerConfig":
        return cls(
            failure_threshold=float(os.getenv("CB_FAILURE_THRESHOLD", "5")),
            recovery_timeout_seconds=float(os.getenv("CB_RECOVERY_TIMEOUT", "120")),
            success_threshold=int(os.getenv("CB_SUCCESS_THRESHOLD", "1")),
            rate_limit_weight=float(os.getenv("CB_RATE_LIMIT_WEIGHT", "0.5")),
        )
