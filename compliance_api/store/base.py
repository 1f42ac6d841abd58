"""Contrato del store de cumplimiento."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, List, Optional, Sequence, Tuple

from ..core.domain.snapshot import ComplianceSnapshot, MonthlyBucket, TrendPoint
from .subscription import Subscription

IntervalLookup = Callable[[str], Optional[float]]


class ComplianceStore(ABC):
    """Cache del último snapshot e historial acotado por edificio.

    El agregador es el único escritor (commit); el resto solo lee.
    """

    @abstractmethod
    def commit(
        self,
        building_id: str,
        buckets: Sequence[MonthlyBucket],
        snapshot: ComplianceSnapshot,
    ) -> Tuple[Optional[ComplianceSnapshot], ComplianceSnapshot]:
        """Guarda buckets + snapshot. Retorna (anterior, guardado)."""

    @abstractmethod
    def get_snapshot(self, building_id: str) -> Optional[ComplianceSnapshot]:
        ...

    @abstractmethod
    def get_history(self, building_id: str, limit: Optional[int] = None) -> List[ComplianceSnapshot]:
        ...

    @abstractmethod
    def get_buckets(self, building_id: str) -> List[MonthlyBucket]:
        ...

    @abstractmethod
    def get_trend(self) -> List[TrendPoint]:
        ...

    @abstractmethod
    def subscribe(self, building_id: str) -> Subscription:
        ...

    @abstractmethod
    def mark_stale(self, building_id: str, stale: bool = True) -> None:
        ...

    @abstractmethod
    def retention_sweep(self, now: Optional[datetime] = None) -> dict:
        ...

    @abstractmethod
    def building_ids(self) -> List[str]:
        ...

    def set_interval_lookup(self, lookup: Optional[IntervalLookup]) -> None:
        """Función building_id -> intervalo actual, para anotar staleness por edad."""
