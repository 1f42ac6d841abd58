"""Domain layer - Modelos y contratos."""

from .alerts import AlertEvent, AlertKind
from .building import BuildingIdentifier, PriorityTier
from .events import CanonicalEvent, EventKind, EventStatus, Severity, SourceTag
from .snapshot import (
    ComplianceSnapshot,
    ComplianceStatus,
    EmissionsBand,
    MonthlyBucket,
    RiskLevel,
    TrendPoint,
)

__all__ = [
    "AlertEvent",
    "AlertKind",
    "BuildingIdentifier",
    "PriorityTier",
    "CanonicalEvent",
    "EventKind",
    "EventStatus",
    "Severity",
    "SourceTag",
    "ComplianceSnapshot",
    "ComplianceStatus",
    "EmissionsBand",
    "MonthlyBucket",
    "RiskLevel",
    "TrendPoint",
]
