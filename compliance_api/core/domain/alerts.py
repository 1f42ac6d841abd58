"""Modelo de dominio para alertas de cumplimiento."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class AlertKind(str, Enum):
    VIOLATION_ADDED = "violation_added"
    VIOLATION_RESOLVED = "violation_resolved"
    INSPECTION_SCHEDULED = "inspection_scheduled"
    COMPLIANCE_SCORE_CHANGED = "compliance_score_changed"
    EMERGENCY = "emergency"


@dataclass(frozen=True)
class AlertEvent:
    """Un cruce de umbral (o cambio de conteo) para un edificio.

    Se emite una sola vez por flanco, nunca en cada poll.
    """
    building_id: str
    kind: AlertKind
    threshold_name: Optional[str]
    previous_score: Optional[float]
    new_score: float
    timestamp: datetime
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "buildingId": self.building_id,
            "kind": self.kind.value,
            "thresholdName": self.threshold_name,
            "previousScore": self.previous_score,
            "newScore": self.new_score,
            "timestamp": self.timestamp.isoformat(),
            "details": dict(self.details),
        }
