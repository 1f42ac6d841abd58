"""Resultado de un ciclo de refresco."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Tuple

from ..core.domain.alerts import AlertEvent
from ..core.domain.building import BuildingIdentifier
from ..core.domain.snapshot import ComplianceSnapshot
from ..resilience.context import CycleContext


class CycleOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    CANCELLED = "cancelled"


@dataclass
class CycleResult:
    building_id: str
    outcome: CycleOutcome
    snapshot: Optional[ComplianceSnapshot] = None
    failed_sources: Tuple[str, ...] = ()
    alerts: List[AlertEvent] = field(default_factory=list)
    duration_seconds: float = 0.0
    error: Optional[str] = None


CycleRunner = Callable[[BuildingIdentifier, CycleContext], CycleResult]
