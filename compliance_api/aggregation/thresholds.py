"""Tabla de umbrales de score.

Bandas (score en [0, 100]):
- riesgo: < critical -> high, < warning -> medium, resto -> low
- estado: < critical -> critical, < warning -> warning, < good -> good, resto -> excellent

Env vars: SCORE_THRESHOLD_CRITICAL (50), SCORE_THRESHOLD_WARNING (70),
SCORE_THRESHOLD_GOOD (90), SCORE_THRESHOLD_EXCELLENT (100)
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import List, Tuple

from ..core.domain.snapshot import ComplianceStatus, RiskLevel


@dataclass(frozen=True)
class ThresholdTable:
    critical: float = 50.0
    warning: float = 70.0
    good: float = 90.0
    excellent: float = 100.0

    def __post_init__(self):
        if not 0 <= self.critical <= self.warning <= self.good <= self.excellent <= 100:
            raise ValueError(
                "Thresholds must satisfy 0 <= critical <= warning <= good <= excellent <= 100"
            )

    @classmethod
    def from_env(cls) -> "ThresholdTable":
        return cls(
            critical=float(os.getenv("SCORE_THRESHOLD_CRITICAL", "50")),
            warning=float(os.getenv("SCORE_THRESHOLD_WARNING", "70")),
            good=float(os.getenv("SCORE_THRESHOLD_GOOD", "90")),
            excellent=float(os.getenv("SCORE_THRESHOLD_EXCELLENT", "100")),
        )

    def risk_for(self, score: float) -> RiskLevel:
        if score < self.critical:
            return RiskLevel.HIGH
        if score < self.warning:
            return RiskLevel.MEDIUM
        return RiskLevel.LOW

    def status_for(self, score: float) -> ComplianceStatus:
        if score < self.critical:
            return ComplianceStatus.CRITICAL
        if score < self.warning:
            return ComplianceStatus.WARNING
        if score < self.good:
            return ComplianceStatus.GOOD
        return ComplianceStatus.EXCELLENT

    def lines(self) -> List[Tuple[str, float]]:
        """Líneas cuyo cruce genera alerta de cambio de score."""
        return [
            ("critical", self.critical),
            ("warning", self.warning),
            ("good", self.good),
        ]

    def to_dict(self) -> dict:
        return {
            "critical": self.critical,
            "warning": self.warning,
            "good": self.good,
            "excellent": self.excellent,
        }
