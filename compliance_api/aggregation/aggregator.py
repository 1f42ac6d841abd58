"""Agregador: eventos canónicos -> buckets mensuales + snapshot.

Sección crítica única por edificio: construcción de buckets, cálculo del
snapshot y commit al store ocurren bajo el lock del edificio. Así dos
ciclos concurrentes del mismo edificio nunca cuentan un evento dos veces.

Score:
    score = clamp(100 - 5 * suma_ponderada_violaciones_abiertas, 0, 100)
"""

from __future__ import annotations

import logging
import os
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from ..core.domain.events import CanonicalEvent, EventKind, Severity, SourceTag
from ..core.domain.snapshot import ComplianceSnapshot, MonthlyBucket, emissions_band
from ..normalization.severity import FlatSeverityPolicy, SeverityPolicy
from ..resilience.errors import AggregationInconsistency
from ..store.base import ComplianceStore
from .thresholds import ThresholdTable

logger = logging.getLogger(__name__)

POINTS_PER_VIOLATION = 5.0
INSPECTION_CYCLE = timedelta(days=365)


def window_months(reference: datetime, months: int) -> List[str]:
    """Meses "YYYY-MM" ascendentes que terminan en el mes de referencia (UTC)."""
    if reference.tzinfo is not None:
        reference = reference.astimezone(timezone.utc)
    end = reference.year * 12 + reference.month - 1
    return [
        f"{index // 12:04d}-{index % 12 + 1:02d}"
        for index in range(end - months + 1, end + 1)
    ]


def compute_score(events: Iterable[CanonicalEvent], policy: SeverityPolicy) -> float:
    weighted = sum(policy.weight(e) for e in events)
    score = 100.0 - POINTS_PER_VIOLATION * weighted
    return round(min(100.0, max(0.0, score)), 2)


def next_inspection_due(
    open_violations: Iterable[CanonicalEvent], now: datetime
) -> Optional[datetime]:
    """Próxima inspección HPD.

    Con violaciones críticas abiertas: última inspección crítica + 365 días.
    Si no hay: el correct-by más próximo de las violaciones HPD abiertas.
    """
    hpd = [e for e in open_violations if e.source == SourceTag.HPD]
    critical = [e.occurred_at for e in hpd if e.severity == Severity.CRITICAL]
    if critical:
        return max(critical) + INSPECTION_CYCLE
    upcoming = [e.due_date for e in hpd if e.due_date is not None and e.due_date >= now]
    return min(upcoming) if upcoming else None


def build_buckets(
    building_id: str, events: Iterable[CanonicalEvent], months: List[str]
) -> List[MonthlyBucket]:
    """Serie densa: un bucket por mes de la ventana, con ceros donde no hay datos."""
    counts: Dict[str, List[int]] = defaultdict(lambda: [0, 0, 0])
    emissions: Dict[str, Tuple[datetime, float]] = {}
    wanted = set(months)

    for event in events:
        if event.month_key not in wanted:
            continue
        row = counts[event.month_key]
        if event.kind == EventKind.VIOLATION:
            row[0] += 1
        elif event.kind == EventKind.PERMIT:
            row[1] += 1
        elif event.kind == EventKind.COLLECTION:
            row[2] += 1
        elif event.kind == EventKind.EMISSION and event.amount is not None:
            latest = emissions.get(event.month_key)
            if latest is None or event.occurred_at >= latest[0]:
                emissions[event.month_key] = (event.occurred_at, event.amount)

    buckets = []
    for month in months:
        violations, permits, dsny = counts.get(month, (0, 0, 0))
        emission = emissions.get(month)
        buckets.append(
            MonthlyBucket(
                building_id=building_id,
                month=month,
                violation_count=violations,
                permit_count=permits,
                dsny_count=dsny,
                emissions_score=emission[1] if emission else None,
            )
        )
    return buckets


@dataclass
class AggregationResult:
    building_id: str
    previous: Optional[ComplianceSnapshot]
    snapshot: ComplianceSnapshot
    buckets: List[MonthlyBucket] = field(default_factory=list)
    inconsistencies: int = 0


class Aggregator:
    """Único escritor de buckets y snapshots por edificio.

    Mantiene los últimos eventos buenos de cada (edificio, fuente) para que
    una fuente caída no borre su aporte: el snapshot queda marcado partial.
    """

    def __init__(
        self,
        store: ComplianceStore,
        thresholds: Optional[ThresholdTable] = None,
        severity_policy: Optional[SeverityPolicy] = None,
        window: int = 12,
        strict: Optional[bool] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        if window < 1:
            raise ValueError("window must be >= 1")
        self._store = store
        self._thresholds = thresholds or ThresholdTable()
        self._policy = severity_policy or FlatSeverityPolicy()
        self._window = window
        if strict is None:
            strict = os.getenv("COMPLIANCE_STRICT", "0").strip().lower() in ("1", "true", "yes")
        self._strict = strict
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._last_good: Dict[Tuple[str, SourceTag], List[CanonicalEvent]] = {}

    @property
    def thresholds(self) -> ThresholdTable:
        return self._thresholds

    @property
    def strict(self) -> bool:
        return self._strict

    def _lock_for(self, building_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(building_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[building_id] = lock
            return lock

    def _inconsistency(self, message: str) -> None:
        if self._strict:
            raise AggregationInconsistency(message)
        logger.error("AGGREGATION_INCONSISTENCY %s (last write wins)", message)

    def _dedupe(self, building_id: str, events: Iterable[CanonicalEvent]) -> Tuple[List[CanonicalEvent], int]:
        merged: Dict[str, CanonicalEvent] = {}
        conflicts = 0
        for event in events:
            if event.building_id != building_id:
                conflicts += 1
                self._inconsistency(
                    f"event={event.event_id} building={event.building_id} "
                    f"aggregated into building={building_id}"
                )
                continue
            existing = merged.get(event.event_id)
            if existing is not None and existing != event:
                conflicts += 1
                self._inconsistency(
                    f"event={event.event_id} building={building_id} has conflicting versions"
                )
            merged[event.event_id] = event
        return list(merged.values()), conflicts

    def aggregate(
        self,
        building_id: str,
        events_by_source: Mapping[SourceTag, List[CanonicalEvent]],
        failed_sources: Iterable[SourceTag] = (),
        reference: Optional[datetime] = None,
    ) -> AggregationResult:
        """Agrega y hace commit del snapshot de un edificio.

        Args:
            building_id: edificio
            events_by_source: eventos normalizados de las fuentes que respondieron
            failed_sources: fuentes que fallaron en este ciclo
            reference: mes de referencia para la ventana (default: ahora)

        Returns:
            AggregationResult con el snapshot anterior y el nuevo
        """
        failed = sorted(set(failed_sources), key=lambda s: s.value)
        now = self._clock()
        reference = reference or now

        with self._lock_for(building_id):
            collected: List[CanonicalEvent] = []
            for source, events in events_by_source.items():
                if source in failed:
                    continue
                self._last_good[(building_id, source)] = list(events)
                collected.extend(events)
            for source in failed:
                reused = self._last_good.get((building_id, source), [])
                if reused:
                    logger.info(
                        "AGGREGATION_REUSE_LAST_GOOD building=%s source=%s events=%d",
                        building_id, source.value, len(reused),
                    )
                collected.extend(reused)

            events, conflicts = self._dedupe(building_id, collected)
            months = window_months(reference, self._window)
            buckets = build_buckets(building_id, events, months)
            snapshot = self._build_snapshot(building_id, events, failed, now)
            previous, committed = self._store.commit(building_id, buckets, snapshot)

        logger.info(
            "AGGREGATION_OK building=%s score=%.1f risk=%s open=%d critical=%d partial=%s",
            building_id,
            committed.score,
            committed.risk_level.value,
            committed.open_violations,
            committed.critical_violations,
            committed.partial,
        )
        return AggregationResult(
            building_id=building_id,
            previous=previous,
            snapshot=committed,
            buckets=buckets,
            inconsistencies=conflicts,
        )

    def _build_snapshot(
        self,
        building_id: str,
        events: List[CanonicalEvent],
        failed: List[SourceTag],
        now: datetime,
    ) -> ComplianceSnapshot:
        open_violations = [e for e in events if e.is_open_violation]
        score = compute_score(events, self._policy)
        emissions = [e for e in events if e.kind == EventKind.EMISSION and e.amount is not None]
        latest_emission = max(emissions, key=lambda e: e.occurred_at) if emissions else None
        return ComplianceSnapshot(
            building_id=building_id,
            score=score,
            risk_level=self._thresholds.risk_for(score),
            status=self._thresholds.status_for(score),
            open_violations=len(open_violations),
            critical_violations=sum(1 for e in open_violations if e.severity == Severity.CRITICAL),
            last_updated=now,
            next_inspection_due=next_inspection_due(open_violations, now),
            partial=bool(failed),
            failed_sources=tuple(s.value for s in failed),
            emissions_band=emissions_band(latest_emission.amount) if latest_emission else None,
        )
