"""Suscripciones a snapshots de un edificio."""

from __future__ import annotations

import queue
import threading
from typing import Callable, Optional

from ..core.domain.snapshot import ComplianceSnapshot


class Subscription:
    """Cola de snapshots comprometidos para un edificio.

    Si el consumidor se atrasa se descarta el snapshot más viejo: solo
    importa el estado más reciente.
    """

    def __init__(
        self,
        building_id: str,
        on_close: Optional[Callable[["Subscription"], None]] = None,
        maxsize: int = 100,
    ):
        self.building_id = building_id
        self._queue: "queue.Queue[ComplianceSnapshot]" = queue.Queue(maxsize=maxsize)
        self._on_close = on_close
        self._closed = threading.Event()
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def publish(self, snapshot: ComplianceSnapshot) -> None:
        if self.closed:
            return
        while True:
            try:
                self._queue.put_nowait(snapshot)
                return
            except queue.Full:
                try:
                    self._queue.get_nowait()
                    self.dropped += 1
                except queue.Empty:
                    pass

    def get(self, timeout: Optional[float] = None) -> Optional[ComplianceSnapshot]:
        """Siguiente snapshot, o None si vence el timeout o está cerrada."""
        if self.closed and self._queue.empty():
            return None
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def close(self) -> None:
        if self.closed:
            return
        self._closed.set()
        if self._on_close:
            self._on_close(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
