"""Taxonomía de errores del motor.

Clasificación:
- TRANSIENT: timeout, conexión reseteada, 5xx → reintentable
- RATE_LIMITED: HTTP 429 → reintentable respetando Retry-After
- PERMANENT: otros 4xx, request malformado → NO reintentable
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

import requests


class ErrorClass(str, Enum):
    TRANSIENT = "transient"
    RATE_LIMITED = "rate_limited"
    PERMANENT = "permanent"


class SourceError(Exception):
    """Error base para fallos de una fuente externa."""

    error_class: ErrorClass = ErrorClass.PERMANENT

    def __init__(self, source: str, message: str):
        self.source = source
        super().__init__(f"[{source}] {message}")


class TransientSourceError(SourceError):
    error_class = ErrorClass.TRANSIENT


class RateLimitedError(SourceError):
    error_class = ErrorClass.RATE_LIMITED

    def __init__(self, source: str, message: str, retry_after: Optional[float] = None):
        self.retry_after = retry_after
        super().__init__(source, message)


class PermanentSourceError(SourceError):
    error_class = ErrorClass.PERMANENT

    def __init__(self, source: str, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(source, message)


class SourceDegradedError(SourceError):
    """Circuito abierto: no se llama a la red durante el cooldown."""

    def __init__(self, source: str, remaining_seconds: float):
        self.remaining_seconds = remaining_seconds
        super().__init__(
            source, f"Source degraded, circuit OPEN. Retry in {remaining_seconds:.1f}s"
        )


class BudgetExceededError(SourceError):
    """Sin tokens disponibles bajo la política fail_fast."""


class CycleCancelled(Exception):
    """El ciclo fue cancelado (shutdown o re-trigger que lo reemplaza)."""


class AggregationInconsistency(Exception):
    """Violación de invariante a nivel de programación."""


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parsea el header Retry-After (solo segundos)."""
    if not value:
        return None
    try:
        seconds = float(value.strip())
    except (TypeError, ValueError):
        return None
    return max(0.0, seconds)


def error_from_response(source: str, response: requests.Response) -> SourceError:
    """Convierte una respuesta HTTP no-OK en el error tipado que corresponde."""
    status = response.status_code
    text = (response.text or "")[:200]
    if status == 429:
        return RateLimitedError(
            source,
            f"HTTP 429 {text}",
            retry_after=parse_retry_after(response.headers.get("Retry-After")),
        )
    if status >= 500:
        return TransientSourceError(source, f"HTTP {status} {text}")
    return PermanentSourceError(source, f"HTTP {status} {text}", status_code=status)


def classify_error(error: BaseException) -> ErrorClass:
    """Clasifica cualquier excepción de una llamada a fuente."""
    if isinstance(error, SourceError):
        return error.error_class
    if isinstance(error, (requests.Timeout, requests.ConnectionError)):
        return ErrorClass.TRANSIENT
    if isinstance(error, requests.HTTPError) and error.response is not None:
        status = error.response.status_code
        if status == 429:
            return ErrorClass.RATE_LIMITED
        if status >= 500:
            return ErrorClass.TRANSIENT
        return ErrorClass.PERMANENT
    if isinstance(error, (ConnectionError, TimeoutError)):
        return ErrorClass.TRANSIENT
    return ErrorClass.PERMANENT
