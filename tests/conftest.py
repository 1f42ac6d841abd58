"""Fixtures y dobles compartidos por la suite."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple

import pytest

from compliance_api.aggregation.aggregator import Aggregator
from compliance_api.aggregation.thresholds import ThresholdTable
from compliance_api.alerts.evaluator import AlertEvaluator
from compliance_api.alerts.sink import CallbackAlertSink
from compliance_api.core.domain.building import BuildingIdentifier, PriorityTier
from compliance_api.core.domain.events import (
    CanonicalEvent,
    EventKind,
    EventStatus,
    Severity,
    SourceTag,
)
from compliance_api.engine import ComplianceEngine
from compliance_api.normalization.normalizer import Normalizer
from compliance_api.scheduler.state import PollingConfig
from compliance_api.sources.base import FetchResult
from compliance_api.sources.records import validate_row
from compliance_api.store.memory import InMemoryComplianceStore, StoreConfig

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Reloj monotónico controlado a mano."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class WallClock:
    """Reloj de pared controlado a mano (datetime UTC)."""

    def __init__(self, start: datetime = NOW):
        self.now = start

    def __call__(self) -> datetime:
        return self.now


class InlineExecutor:
    """Executor que corre cada tarea en el mismo thread, al enviarla."""

    def __init__(self):
        self.submitted = 0

    def submit(self, fn, *args, **kwargs):
        self.submitted += 1
        fn(*args, **kwargs)

    def shutdown(self, wait: bool = True) -> None:
        pass


class ManualExecutor:
    """Executor que encola tareas hasta que el test las corre."""

    def __init__(self):
        self.pending: List[Tuple[Callable, tuple, dict]] = []

    def submit(self, fn, *args, **kwargs):
        self.pending.append((fn, args, kwargs))

    def run_next(self) -> None:
        fn, args, kwargs = self.pending.pop(0)
        fn(*args, **kwargs)

    def run_all(self) -> None:
        while self.pending:
            self.run_next()

    def shutdown(self, wait: bool = True) -> None:
        pass


def make_building(
    building_id: str = "14",
    tier: PriorityTier = PriorityTier.MEDIUM,
    bbl: str = "1006210036",
    bin: str = "1012345",
    address: str = "68 Perry Street, New York, NY 10014",
) -> BuildingIdentifier:
    return BuildingIdentifier(id=building_id, bbl=bbl, bin=bin, address=address, tier=tier)


def make_event(
    event_id: str,
    kind: EventKind = EventKind.VIOLATION,
    source: SourceTag = SourceTag.HPD,
    building_id: str = "14",
    occurred_at: datetime = NOW,
    status: EventStatus = EventStatus.OPEN,
    severity: Severity = Severity.MEDIUM,
    amount: Optional[float] = None,
    due_date: Optional[datetime] = None,
) -> CanonicalEvent:
    return CanonicalEvent(
        event_id=f"{source.value}:{event_id}",
        kind=kind,
        source=source,
        building_id=building_id,
        month_key=occurred_at.strftime("%Y-%m"),
        occurred_at=occurred_at,
        status=status,
        severity=severity,
        amount=amount,
        due_date=due_date,
    )


def open_violations(count: int, building_id: str = "14", prefix: str = "v") -> List[CanonicalEvent]:
    return [make_event(f"{prefix}{i}", building_id=building_id) for i in range(count)]


def hpd_row(violation_id: str, status: str = "Open", violation_class: str = "B") -> dict:
    return {
        "violationid": violation_id,
        "violationclass": violation_class,
        "inspectiondate": "2024-06-03T00:00:00.000",
        "violationstatus": status,
    }


class FakeAdapter:
    """Adapter en memoria: filas crudas configurables o un error fijo."""

    def __init__(self, source: SourceTag, rows: Optional[List[dict]] = None, error: Optional[Exception] = None):
        self.source = source
        self.rows = list(rows or [])
        self.error = error
        self.calls = 0

    def fetch(self, building, filters=None, ctx=None) -> FetchResult:
        self.calls += 1
        if self.error is not None:
            raise self.error
        result = FetchResult(source=self.source, building_id=building.id)
        for row in self.rows:
            record, _ = validate_row(self.source, building.id, row)
            if record is None:
                result.rejected += 1
            else:
                result.records.append(record)
        return result


def build_engine(
    buildings: List[BuildingIdentifier],
    adapters: dict,
    wall_clock: WallClock,
    alerts: Optional[list] = None,
    scheduler_executor=None,
) -> ComplianceEngine:
    store = InMemoryComplianceStore(StoreConfig(), clock=wall_clock)
    thresholds = ThresholdTable()
    aggregator = Aggregator(store, thresholds=thresholds, window=12, strict=True, clock=wall_clock)
    sink = CallbackAlertSink(alerts.append) if alerts is not None else None
    evaluator = AlertEvaluator(thresholds=thresholds, sink=sink, clock=wall_clock)
    return ComplianceEngine(
        buildings,
        adapters,
        store,
        aggregator,
        evaluator,
        normalizer=Normalizer(now=wall_clock),
        polling=PollingConfig(max_in_flight=2, tick_seconds=0.01),
        scheduler_executor=scheduler_executor,
        strict=True,
    )


@pytest.fixture
def wall_clock() -> WallClock:
    return WallClock()


@pytest.fixture
def store(wall_clock) -> InMemoryComplianceStore:
    return InMemoryComplianceStore(
        StoreConfig(history_max_updates=100, history_retention_days=90, window_months=12),
        clock=wall_clock,
    )


@pytest.fixture
def aggregator(store, wall_clock) -> Aggregator:
    return Aggregator(store, window=12, strict=False, clock=wall_clock)
