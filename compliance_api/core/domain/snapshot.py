"""Modelos de salida del agregador: buckets mensuales, snapshot y tendencia."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ComplianceStatus(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    GOOD = "good"
    EXCELLENT = "excellent"


class EmissionsBand(str, Enum):
    """Banda LL97 por intensidad de GHG (kgCO2e/ft2)."""
    COMPLIANT = "compliant"
    WARNING = "warning"
    NON_COMPLIANT = "non_compliant"


LL97_WARNING_INTENSITY = 8.0
LL97_LIMIT_INTENSITY = 12.0


def emissions_band(intensity: Optional[float]) -> Optional[EmissionsBand]:
    """<= 8.0 compliant, <= 12.0 warning, resto non_compliant."""
    if intensity is None:
        return None
    if intensity <= LL97_WARNING_INTENSITY:
        return EmissionsBand.COMPLIANT
    if intensity <= LL97_LIMIT_INTENSITY:
        return EmissionsBand.WARNING
    return EmissionsBand.NON_COMPLIANT


@dataclass(frozen=True)
class MonthlyBucket:
    """Conteos por edificio y mes. Único por (building_id, month)."""
    building_id: str
    month: str
    violation_count: int = 0
    permit_count: int = 0
    dsny_count: int = 0
    emissions_score: Optional[float] = None

    def __post_init__(self):
        if min(self.violation_count, self.permit_count, self.dsny_count) < 0:
            raise ValueError(f"Negative bucket count for {self.building_id} {self.month}")

    @property
    def total(self) -> int:
        return self.violation_count + self.permit_count + self.dsny_count

    def to_dict(self) -> dict:
        return {
            "building_id": self.building_id,
            "month": self.month,
            "violation_count": self.violation_count,
            "permit_count": self.permit_count,
            "dsny_count": self.dsny_count,
            "emissions_score": self.emissions_score,
        }


@dataclass(frozen=True)
class ComplianceSnapshot:
    """Vista de cumplimiento actual de un edificio.

    Invariantes:
    - score siempre en [0, 100]
    - last_updated nunca retrocede (lo garantiza el store)
    """
    building_id: str
    score: float
    risk_level: RiskLevel
    status: ComplianceStatus
    open_violations: int
    critical_violations: int
    last_updated: datetime
    next_inspection_due: Optional[datetime] = None
    partial: bool = False
    failed_sources: Tuple[str, ...] = field(default_factory=tuple)
    stale: bool = False
    emissions_band: Optional[EmissionsBand] = None

    def __post_init__(self):
        if not 0 <= self.score <= 100:
            raise ValueError(f"Score out of range: {self.score}")

    def to_dict(self) -> dict:
        return {
            "building_id": self.building_id,
            "score": self.score,
            "risk_level": self.risk_level.value,
            "status": self.status.value,
            "open_violations": self.open_violations,
            "critical_violations": self.critical_violations,
            "last_updated": self.last_updated.isoformat(),
            "next_inspection_due": (
                self.next_inspection_due.isoformat() if self.next_inspection_due else None
            ),
            "partial": self.partial,
            "failed_sources": list(self.failed_sources),
            "stale": self.stale,
            "emissions_band": self.emissions_band.value if self.emissions_band else None,
        }


@dataclass(frozen=True)
class TrendPoint:
    """Rollup del portafolio para un mes."""
    month: str
    total_across_portfolio: int
    violations: int = 0
    permits: int = 0
    dsny: int = 0

    def to_dict(self) -> dict:
        return {
            "month": self.month,
            "total_across_portfolio": self.total_across_portfolio,
            "violations": self.violations,
            "permits": self.permits,
            "dsny": self.dsny,
        }
