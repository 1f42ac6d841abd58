"""Rate limiting por fuente con token bucket.

Un bucket por fuente, compartido por todos los edificios que consultan
esa fuente. Capacidad = burst, recarga = requests_per_min / 60 por segundo.

Políticas de presupuesto (RATE_BUDGET_POLICY):
- block: espera hasta que haya token (interrumpible por cancelación)
- fail_fast: lanza BudgetExceededError si no hay token
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from enum import Enum
from threading import Lock
from typing import Callable, Dict, Optional

from .context import CycleContext
from .errors import BudgetExceededError

logger = logging.getLogger(__name__)


class BudgetPolicy(str, Enum):
    BLOCK = "block"
    FAIL_FAST = "fail_fast"

    @classmethod
    def from_env(cls) -> "BudgetPolicy":
        raw = os.getenv("RATE_BUDGET_POLICY", "block").strip().lower()
        try:
            return cls(raw)
        except ValueError:
            logger.warning("RATE_BUDGET_POLICY invalid value=%s, using block", raw)
            return cls.BLOCK


@dataclass
class TokenBucketConfig:
    """Configuración de un bucket."""
    requests_per_min: float = 60.0
    burst: int = 5

    @property
    def refill_per_second(self) -> float:
        return self.requests_per_min / 60.0


class TokenBucket:
    """Token bucket thread-safe con reloj inyectable."""

    def __init__(
        self,
        config: TokenBucketConfig,
        clock: Callable[[], float] = time.monotonic,
    ):
        if config.burst < 1 or config.requests_per_min <= 0:
            raise ValueError("burst must be >= 1 and requests_per_min > 0")
        self._config = config
        self._clock = clock
        self._lock = Lock()
        self._tokens = float(config.burst)
        self._updated_at = clock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._updated_at)
        self._tokens = min(
            float(self._config.burst),
            self._tokens + elapsed * self._config.refill_per_second,
        )
        self._updated_at = now

    def try_acquire(self) -> float:
        """Intenta tomar un token.

        Returns:
            0.0 si se tomó el token, si no los segundos hasta el próximo token
        """
        with self._lock:
            self._refill()
            if self._tokens >= 1.0:
                self._tokens -= 1.0
                return 0.0
            missing = 1.0 - self._tokens
            return missing / self._config.refill_per_second

    @property
    def available(self) -> float:
        with self._lock:
            self._refill()
            return self._tokens


class SourceRateLimiter:
    """Registro de token buckets, uno por fuente."""

    def __init__(
        self,
        policy: BudgetPolicy = BudgetPolicy.BLOCK,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._policy = policy
        self._clock = clock
        self._buckets: Dict[str, TokenBucket] = {}
        self._lock = Lock()

    @property
    def policy(self) -> BudgetPolicy:
        return self._policy

    def register(self, source: str, config: TokenBucketConfig) -> TokenBucket:
        with self._lock:
            bucket = TokenBucket(config, clock=self._clock)
            self._buckets[source] = bucket
        logger.info(
            "RATE_LIMIT_REGISTERED source=%s per_min=%.1f burst=%d",
            source, config.requests_per_min, config.burst,
        )
        return bucket

    def bucket(self, source: str) -> Optional[TokenBucket]:
        with self._lock:
            return self._buckets.get(source)

    def acquire(self, source: str, ctx: Optional[CycleContext] = None) -> None:
        """Toma un token de la fuente o espera/falla según la política.

        Raises:
            BudgetExceededError: política fail_fast sin tokens
            CycleCancelled: el contexto se canceló durante la espera
        """
        bucket = self.bucket(source)
        if bucket is None:
            return

        while True:
            if ctx is not None:
                ctx.raise_if_cancelled()
            wait = bucket.try_acquire()
            if wait <= 0:
                return
            if self._policy == BudgetPolicy.FAIL_FAST:
                logger.warning("RATE_BUDGET_EXCEEDED source=%s wait=%.2fs", source, wait)
                raise BudgetExceededError(source, f"No tokens available, next in {wait:.2f}s")
            logger.debug("RATE_LIMIT_WAIT source=%s wait=%.2fs", source, wait)
            if ctx is not None:
                ctx.wait(wait)
            else:
                time.sleep(wait)

    def get_stats(self) -> dict:
        with self._lock:
            buckets = dict(self._buckets)
        return {
            "policy": self._policy.value,
            "available_tokens": {name: round(b.available, 2) for name, b in buckets.items()},
        }
