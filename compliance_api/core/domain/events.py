"""Eventos canónicos - contrato único entre normalizador y agregador.

Flujo:
  Adapter (RawRecord tipado) → Normalizer → CanonicalEvent → Aggregator
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class SourceTag(str, Enum):
    """Datasets externos soportados."""
    HPD = "hpd"
    DOB = "dob"
    LL97 = "ll97"
    DSNY = "dsny"


class EventKind(str, Enum):
    VIOLATION = "violation"
    PERMIT = "permit"
    EMISSION = "emission"
    COLLECTION = "collection"


class EventStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(frozen=True)
class CanonicalEvent:
    """Hecho normalizado de una fuente.

    month_key se deriva SIEMPRE de occurred_at en UTC ("YYYY-MM").
    date_flagged=True indica que la fecha es "ahora" por falta de
    una fecha parseable en el registro original.
    """
    event_id: str
    kind: EventKind
    source: SourceTag
    building_id: str
    month_key: str
    occurred_at: datetime
    status: EventStatus
    severity: Severity = Severity.LOW
    amount: Optional[float] = None
    due_date: Optional[datetime] = None
    date_flagged: bool = False

    @property
    def is_open(self) -> bool:
        return self.status == EventStatus.OPEN

    @property
    def is_open_violation(self) -> bool:
        """Violaciones abiertas que penalizan el score (HPD + summons DSNY)."""
        return self.is_open and self.kind in (EventKind.VIOLATION, EventKind.COLLECTION)
