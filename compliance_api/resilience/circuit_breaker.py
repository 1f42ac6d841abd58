"""Circuit Breaker por fuente de datos.

Evita martillar una fuente caída: tras acumular suficiente peso de fallos
el circuito se abre y las llamadas fallan con SourceDegradedError hasta
que pasa el recovery timeout.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

from ..metrics.prometheus import CIRCUIT_STATE
from .circuit_breaker_config import CircuitBreakerConfig, CircuitState
from .errors import SourceDegradedError

logger = logging.getLogger(__name__)


class CircuitBreaker:
    """Circuit breaker con fallos ponderados.

    Uso:
        cb = CircuitBreaker("hpd")
        cb.before_call()          # lanza SourceDegradedError si está abierto
        try:
            result = fetch()
            cb.record_success()
        except TransientSourceError as e:
            cb.record_failure(1.0, e)
            raise
    """

    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self._config = config or CircuitBreakerConfig.from_env()
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_weight = 0.0
        self._success_count = 0
        self._last_failure_time: float = 0.0
        self._lock = threading.Lock()
        CIRCUIT_STATE.labels(source=name).set(0)

        logger.info(
            "CircuitBreaker '%s' initialized: failure_threshold=%.1f, "
            "recovery_timeout=%.1fs, success_threshold=%d",
            name,
            self._config.failure_threshold,
            self._config.recovery_timeout_seconds,
            self._config.success_threshold,
        )

    @property
    def config(self) -> CircuitBreakerConfig:
        return self._config

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._check_state_transition()
            return self._state

    @property
    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN

    def before_call(self) -> None:
        """Verifica que se pueda llamar a la fuente.

        Raises:
            SourceDegradedError: si el circuito está abierto
        """
        with self._lock:
            self._check_state_transition()
            if self._state == CircuitState.OPEN:
                raise SourceDegradedError(self.name, self._get_remaining_timeout())

    def _set_state(self, state: CircuitState) -> None:
        self._state = state
        CIRCUIT_STATE.labels(source=self.name).set(0 if state == CircuitState.CLOSED else 1)

    def _check_state_transition(self) -> None:
        if self._state == CircuitState.OPEN:
            elapsed = self._clock() - self._last_failure_time
            if elapsed >= self._config.recovery_timeout_seconds:
                self._set_state(CircuitState.HALF_OPEN)
                self._success_count = 0
                logger.info(
                    "CircuitBreaker '%s': OPEN -> HALF_OPEN (testing recovery)",
                    self.name,
                )

    def record_success(self) -> None:
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self._config.success_threshold:
                    self._set_state(CircuitState.CLOSED)
                    self._failure_weight = 0.0
                    logger.info(
                        "CircuitBreaker '%s': HALF_OPEN -> CLOSED (recovered)",
                        self.name,
                    )
            elif self._state == CircuitState.CLOSED:
                self._failure_weight = 0.0

    def record_failure(self, weight: float = 1.0, error: Optional[BaseException] = None) -> None:
        """Registra un fallo con el peso indicado. Peso 0 no cuenta."""
        if weight <= 0:
            return
        with self._lock:
            self._failure_weight += weight
            self._last_failure_time = self._clock()

            if self._state == CircuitState.HALF_OPEN:
                self._set_state(CircuitState.OPEN)
                logger.warning(
                    "CircuitBreaker '%s': HALF_OPEN -> OPEN (test failed: %s)",
                    self.name,
                    str(error)[:100],
                )
            elif self._state == CircuitState.CLOSED:
                if self._failure_weight >= self._config.failure_threshold:
                    self._set_state(CircuitState.OPEN)
                    logger.warning(
                        "CircuitBreaker '%s': CLOSED -> OPEN "
                        "(failure_weight=%.1f, threshold=%.1f, error=%s)",
                        self.name,
                        self._failure_weight,
                        self._config.failure_threshold,
                        str(error)[:100],
                    )

    def _get_remaining_timeout(self) -> float:
        elapsed = self._clock() - self._last_failure_time
        return max(0.0, self._config.recovery_timeout_seconds - elapsed)

    def get_stats(self) -> dict:
        with self._lock:
            self._check_state_transition()
            return {
                "name": self.name,
                "state": self._state.value,
                "failure_weight": self._failure_weight,
                "success_count": self._success_count,
                "remaining_seconds": (
                    self._get_remaining_timeout() if self._state == CircuitState.OPEN else 0.0
                ),
                "config": {
                    "failure_threshold": self._config.failure_threshold,
                    "recovery_timeout_seconds": self._config.recovery_timeout_seconds,
                    "success_threshold": self._config.success_threshold,
                    "rate_limit_weight": self._config.rate_limit_weight,
                },
            }
