"""Contexto cancelable por ciclo de refresco."""

from __future__ import annotations

import threading
import time
from typing import Callable, Optional

from .errors import CycleCancelled


class CycleContext:
    """Contexto de un ciclo: evento de cancelación + deadline opcional.

    Se cancela si:
    - el proceso se está apagando
    - un re-trigger reemplaza el ciclo en curso para el mismo edificio

    Las esperas (backoff, tokens) usan wait() para despertar al cancelar.
    """

    def __init__(
        self,
        building_id: str,
        deadline_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.building_id = building_id
        self._clock = clock
        self._event = threading.Event()
        self._deadline = clock() + deadline_seconds if deadline_seconds else None
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and self._clock() >= self._deadline:
            self.cancel("deadline")
            return True
        return False

    def remaining(self) -> Optional[float]:
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - self._clock())

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise CycleCancelled(f"cycle for {self.building_id} cancelled: {self.reason}")

    def wait(self, seconds: float) -> bool:
        """Espera hasta `seconds` o hasta cancelación.

        Returns:
            True si el contexto fue cancelado durante la espera
        """
        remaining = self.remaining()
        if remaining is not None:
            seconds = min(seconds, remaining)
        self._event.wait(max(0.0, seconds))
        return self.cancelled
