"""Resiliencia para llamadas a fuentes externas.

- errors: taxonomía de errores y classify_error
- token_bucket: rate limit por fuente
- circuit_breaker: circuito por fuente con fallos ponderados
- backoff: BackoffController, la única política de reintentos
- context: CycleContext cancelable
"""

from .backoff import BackoffConfig, BackoffController
from .circuit_breaker import CircuitBreaker
from .circuit_breaker_config import CircuitBreakerConfig, CircuitState
from .context import CycleContext
from .errors import (
    AggregationInconsistency,
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
from .token_bucket import BudgetPolicy, SourceRateLimiter, TokenBucket, TokenBucketConfig

__all__ = [
    "BackoffConfig",
    "BackoffController",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitState",
    "CycleContext",
    "AggregationInconsistency",
    "BudgetExceededError",
    "CycleCancelled",
    "ErrorClass",
    "PermanentSourceError",
    "RateLimitedError",
    "SourceDegradedError",
    "SourceError",
    "TransientSourceError",
    "classify_error",
    "BudgetPolicy",
    "SourceRateLimiter",
    "TokenBucket",
    "TokenBucketConfig",
]
