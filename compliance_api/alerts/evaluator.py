"""Evaluador de alertas: compara snapshot anterior vs nuevo.

Solo emite en flancos (cambios entre dos snapshots consecutivos), nunca en
cada poll. Sin snapshot anterior no hay flanco y no se emite nada.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional

from ..aggregation.thresholds import ThresholdTable
from ..core.domain.alerts import AlertEvent, AlertKind
from ..core.domain.snapshot import ComplianceSnapshot
from ..metrics.prometheus import ALERTS_EMITTED
from .sink import AlertSink

logger = logging.getLogger(__name__)


def _flag(name: str, default: str = "1") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes")


@dataclass
class AlertToggles:
    """Categorías de alerta habilitadas."""
    violation_added: bool = True
    violation_resolved: bool = True
    inspection_scheduled: bool = True
    score_changed: bool = True
    emergency: bool = True

    @classmethod
    def from_env(cls) -> "AlertToggles":
        return cls(
            violation_added=_flag("ALERT_VIOLATION_ADDED"),
            violation_resolved=_flag("ALERT_VIOLATION_RESOLVED"),
            inspection_scheduled=_flag("ALERT_INSPECTION_SCHEDULED"),
            score_changed=_flag("ALERT_SCORE_CHANGED"),
            emergency=_flag("ALERT_EMERGENCY"),
        )

    def enabled(self, kind: AlertKind) -> bool:
        return {
            AlertKind.VIOLATION_ADDED: self.violation_added,
            AlertKind.VIOLATION_RESOLVED: self.violation_resolved,
            AlertKind.INSPECTION_SCHEDULED: self.inspection_scheduled,
            AlertKind.COMPLIANCE_SCORE_CHANGED: self.score_changed,
            AlertKind.EMERGENCY: self.emergency,
        }[kind]


class AlertEvaluator:
    def __init__(
        self,
        thresholds: Optional[ThresholdTable] = None,
        toggles: Optional[AlertToggles] = None,
        sink: Optional[AlertSink] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._thresholds = thresholds or ThresholdTable()
        self._toggles = toggles or AlertToggles()
        self._sink = sink
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def evaluate(
        self,
        previous: Optional[ComplianceSnapshot],
        new: ComplianceSnapshot,
    ) -> List[AlertEvent]:
        """Alertas para la transición previous -> new (sin entregarlas)."""
        if previous is None:
            return []

        now = self._clock()
        alerts: List[AlertEvent] = []

        def add(kind: AlertKind, threshold_name: Optional[str] = None, **details) -> None:
            if not self._toggles.enabled(kind):
                return
            alerts.append(
                AlertEvent(
                    building_id=new.building_id,
                    kind=kind,
                    threshold_name=threshold_name,
                    previous_score=previous.score,
                    new_score=new.score,
                    timestamp=now,
                    details=details,
                )
            )

        for name, line in self._thresholds.lines():
            was_below = previous.score < line
            is_below = new.score < line
            if was_below != is_below:
                add(
                    AlertKind.COMPLIANCE_SCORE_CHANGED,
                    name,
                    threshold=line,
                    direction="down" if is_below else "up",
                    status=new.status.value,
                    risk_level=new.risk_level.value,
                )

        delta = new.open_violations - previous.open_violations
        if delta > 0:
            add(AlertKind.VIOLATION_ADDED, count=delta, open_violations=new.open_violations)
        elif delta < 0:
            add(AlertKind.VIOLATION_RESOLVED, count=-delta, open_violations=new.open_violations)

        if (
            new.next_inspection_due is not None
            and new.next_inspection_due != previous.next_inspection_due
        ):
            add(
                AlertKind.INSPECTION_SCHEDULED,
                due=new.next_inspection_due.isoformat(),
            )

        if new.critical_violations > previous.critical_violations:
            add(
                AlertKind.EMERGENCY,
                critical_violations=new.critical_violations,
                added=new.critical_violations - previous.critical_violations,
            )

        return alerts

    def process(
        self,
        previous: Optional[ComplianceSnapshot],
        new: ComplianceSnapshot,
    ) -> List[AlertEvent]:
        """Evalúa y entrega al sink. Errores del sink no se propagan."""
        alerts = self.evaluate(previous, new)
        for alert in alerts:
            ALERTS_EMITTED.labels(kind=alert.kind.value).inc()
            if self._sink is None:
                continue
            try:
                self._sink.send(alert)
            except Exception as e:
                logger.error(
                    "[ALERT] delivery failed kind=%s building=%s err=%s",
                    alert.kind.value, alert.building_id, e,
                )
        return alerts
