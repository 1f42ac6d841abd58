"""Backoff Controller: única política de reintentos para todas las fuentes.

Cada request de página pasa por execute(), que combina:
- circuit breaker de la fuente (falla rápido si está abierto)
- token bucket de la fuente (compartido entre edificios)
- retry con backoff exponencial + jitter, interrumpible por cancelación

Delay para el intento n (0-indexed):
    delay = min(base * 2^n, max_delay) + uniform(0, jitter_ratio * delay)
Los 429 respetan Retry-After (limitado a max_delay).
"""

from __future__ import annotations

import logging
import os
import random
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, TypeVar

from ..metrics.prometheus import SOURCE_REQUESTS, SOURCE_RETRIES
from .circuit_breaker import CircuitBreaker
from .circuit_breaker_config import CircuitBreakerConfig
from .context import CycleContext
from .errors import (
    BudgetExceededError,
    CycleCancelled,
    ErrorClass,
    PermanentSourceError,
    RateLimitedError,
    SourceDegradedError,
    SourceError,
    TransientSourceError,
    classify_error,
)
from .token_bucket import BudgetPolicy, SourceRateLimiter, TokenBucketConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class BackoffConfig:
    """Configuración de reintentos."""
    max_attempts: int = 4
    base_delay: float = 1.0  # segundos
    max_delay: float = 60.0  # segundos
    jitter_ratio: float = 0.2

    @classmethod
    def from_env(cls) -> "BackoffConfig":
        return cls(
            max_attempts=max(1, int(os.getenv("RETRY_MAX_ATTEMPTS", "4"))),
            base_delay=float(os.getenv("RETRY_BASE_DELAY", "1.0")),
            max_delay=float(os.getenv("RETRY_MAX_DELAY", "60")),
            jitter_ratio=float(os.getenv("RETRY_JITTER_RATIO", "0.2")),
        )

    def calculate_delay(self, attempt: int, rng: Optional[random.Random] = None) -> float:
        """Delay para un intento dado (0-indexed)."""
        delay = min(self.base_delay * (2 ** attempt), self.max_delay)
        uniform = (rng or random).uniform
        return delay + uniform(0.0, self.jitter_ratio * delay)


class BackoffController:
    """Ejecutor de llamadas a fuentes con rate limit, circuito y retry.

    Uso:
        controller = BackoffController()
        controller.register_source("hpd", TokenBucketConfig(60, 5))
        rows = controller.execute("hpd", lambda: client.get_page(...), ctx)
    """

    def __init__(
        self,
        config: Optional[BackoffConfig] = None,
        breaker_config: Optional[CircuitBreakerConfig] = None,
        budget_policy: Optional[BudgetPolicy] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None,
    ):
        self._config = config or BackoffConfig.from_env()
        self._breaker_config = breaker_config or CircuitBreakerConfig.from_env()
        self._clock = clock
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._limiter = SourceRateLimiter(
            policy=budget_policy or BudgetPolicy.from_env(), clock=clock
        )
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()
        self._total_attempts = 0
        self._total_retries = 0
        self._total_failures = 0

    @property
    def config(self) -> BackoffConfig:
        return self._config

    def register_source(self, source: str, bucket: Optional[TokenBucketConfig] = None) -> None:
        """Registra una fuente con su bucket y su circuit breaker."""
        if bucket is not None:
            self._limiter.register(source, bucket)
        with self._lock:
            if source not in self._breakers:
                self._breakers[source] = CircuitBreaker(
                    source, self._breaker_config, clock=self._clock
                )

    def breaker(self, source: str) -> CircuitBreaker:
        with self._lock:
            breaker = self._breakers.get(source)
            if breaker is None:
                breaker = CircuitBreaker(source, self._breaker_config, clock=self._clock)
                self._breakers[source] = breaker
            return breaker

    def _failure_weight(self, error_class: ErrorClass) -> float:
        if error_class == ErrorClass.TRANSIENT:
            return 1.0
        if error_class == ErrorClass.RATE_LIMITED:
            return self._breaker_config.rate_limit_weight
        return 0.0

    def _wait(self, delay: float, ctx: Optional[CycleContext]) -> None:
        if ctx is None:
            self._sleep(delay)
            return
        if ctx.wait(delay):
            raise CycleCancelled(f"cycle for {ctx.building_id} cancelled during backoff")

    @staticmethod
    def _as_source_error(source: str, error: Exception, error_class: ErrorClass) -> SourceError:
        if isinstance(error, SourceError):
            return error
        if error_class == ErrorClass.TRANSIENT:
            return TransientSourceError(source, str(error)[:200])
        if error_class == ErrorClass.RATE_LIMITED:
            return RateLimitedError(source, str(error)[:200])
        return PermanentSourceError(source, str(error)[:200])

    def execute(
        self,
        source: str,
        func: Callable[[], T],
        ctx: Optional[CycleContext] = None,
    ) -> T:
        """Ejecuta una llamada a la fuente con la política completa.

        Raises:
            SourceDegradedError: circuito abierto
            BudgetExceededError: sin tokens bajo fail_fast
            PermanentSourceError: 4xx no reintentable
            TransientSourceError / RateLimitedError: reintentos agotados
            CycleCancelled: el contexto fue cancelado
        """
        breaker = self.breaker(source)
        max_attempts = self._config.max_attempts

        for attempt in range(max_attempts):
            if ctx is not None:
                ctx.raise_if_cancelled()

            try:
                breaker.before_call()
            except SourceDegradedError:
                SOURCE_REQUESTS.labels(source=source, outcome="degraded").inc()
                raise

            try:
                self._limiter.acquire(source, ctx)
            except BudgetExceededError:
                SOURCE_REQUESTS.labels(source=source, outcome="budget").inc()
                raise

            with self._lock:
                self._total_attempts += 1

            try:
                result = func()
            except CycleCancelled:
                raise
            except Exception as e:
                error_class = classify_error(e)
                SOURCE_REQUESTS.labels(source=source, outcome=error_class.value).inc()
                breaker.record_failure(self._failure_weight(error_class), e)
                error = self._as_source_error(source, e, error_class)

                if error_class == ErrorClass.PERMANENT:
                    with self._lock:
                        self._total_failures += 1
                    logger.error("SOURCE_PERMANENT_ERROR source=%s err=%s", source, e)
                    if error is e:
                        raise
                    raise error from e

                if attempt == max_attempts - 1:
                    with self._lock:
                        self._total_failures += 1
                    logger.error(
                        "RETRY_EXHAUSTED source=%s attempts=%d err=%s",
                        source, attempt + 1, e,
                    )
                    if error is e:
                        raise
                    raise error from e

                delay = self._config.calculate_delay(attempt, self._rng)
                if isinstance(error, RateLimitedError) and error.retry_after is not None:
                    delay = min(error.retry_after, self._config.max_delay)

                with self._lock:
                    self._total_retries += 1
                SOURCE_RETRIES.labels(source=source).inc()
                logger.warning(
                    "RETRY source=%s attempt=%d/%d delay=%.2fs class=%s err=%s",
                    source, attempt + 1, max_attempts, delay, error_class.value, e,
                )
                self._wait(delay, ctx)
                continue

            breaker.record_success()
            SOURCE_REQUESTS.labels(source=source, outcome="ok").inc()
            return result

        raise RuntimeError("Retry loop completed without result")

    @property
    def stats(self) -> dict:
        with self._lock:
            breakers = dict(self._breakers)
            counters = {
                "total_attempts": self._total_attempts,
                "total_retries": self._total_retries,
                "total_failures": self._total_failures,
            }
        counters["circuits"] = {name: b.get_stats() for name, b in breakers.items()}
        counters["rate_limits"] = self._limiter.get_stats()
        return counters
