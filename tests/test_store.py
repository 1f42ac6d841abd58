"""Tests del store en memoria: historial, staleness, suscripciones y retención.

Ejecutar:
    pytest tests/test_store.py -v
"""

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from compliance_api.aggregation.thresholds import ThresholdTable
from compliance_api.core.domain.snapshot import ComplianceSnapshot, MonthlyBucket
from compliance_api.store.memory import InMemoryComplianceStore, StoreConfig
from compliance_api.store.subscription import Subscription

from conftest import NOW, WallClock


def snapshot(score: float = 85.0, at: datetime = NOW, building_id: str = "14") -> ComplianceSnapshot:
    table = ThresholdTable()
    return ComplianceSnapshot(
        building_id=building_id,
        score=score,
        risk_level=table.risk_for(score),
        status=table.status_for(score),
        open_violations=int((100 - score) / 5),
        critical_violations=0,
        last_updated=at,
    )


def bucket(month: str, violations: int = 1, building_id: str = "14") -> MonthlyBucket:
    return MonthlyBucket(building_id=building_id, month=month, violation_count=violations)


# =============================================================================
# COMMIT E HISTORIAL
# =============================================================================

class TestCommit:

    def test_returns_previous_and_committed(self, store):
        first_prev, first = store.commit("14", [bucket("2024-06")], snapshot(85))
        second_prev, second = store.commit("14", [bucket("2024-06", 2)], snapshot(80))

        assert first_prev is None
        assert second_prev == first
        assert store.get_snapshot("14") == second
        assert store.get_buckets("14")[0].violation_count == 2

    def test_last_updated_never_goes_backwards(self, store):
        store.commit("14", [], snapshot(85, at=NOW))
        _, committed = store.commit("14", [], snapshot(80, at=NOW - timedelta(minutes=5)))
        assert committed.last_updated == NOW

    def test_history_bounded(self, wall_clock):
        store = InMemoryComplianceStore(StoreConfig(history_max_updates=3), clock=wall_clock)
        for score in (100, 95, 90, 85, 80):
            store.commit("14", [], snapshot(score))

        history = store.get_history("14")
        assert [s.score for s in history] == [90, 85, 80]
        assert [s.score for s in store.get_history("14", limit=2)] == [85, 80]

    def test_buckets_merge_by_month(self, store):
        store.commit("14", [bucket("2024-05"), bucket("2024-06")], snapshot())
        store.commit("14", [bucket("2024-06", 4)], snapshot())

        months = [(b.month, b.violation_count) for b in store.get_buckets("14")]
        assert months == [("2024-05", 1), ("2024-06", 4)]

    def test_unknown_building(self, store):
        assert store.get_snapshot("nope") is None
        assert store.get_history("nope") == []
        assert store.get_buckets("nope") == []


# =============================================================================
# STALENESS
# =============================================================================

class TestStaleness:

    def test_marked_stale_until_next_commit(self, store):
        store.commit("14", [], snapshot())
        store.mark_stale("14")
        assert store.get_snapshot("14").stale is True

        store.commit("14", [], snapshot())
        assert store.get_snapshot("14").stale is False

    def test_stale_by_age(self, wall_clock):
        store = InMemoryComplianceStore(StoreConfig(stale_interval_multiple=3.0), clock=wall_clock)
        store.set_interval_lookup(lambda building_id: 300.0)
        store.commit("14", [], snapshot(at=NOW))

        wall_clock.now = NOW + timedelta(seconds=899)
        assert store.get_snapshot("14").stale is False
        wall_clock.now = NOW + timedelta(seconds=901)
        assert store.get_snapshot("14").stale is True

    def test_committed_stale_flag_cleared(self, store):
        _, committed = store.commit("14", [], replace(snapshot(), stale=True))
        assert committed.stale is False


# =============================================================================
# SUSCRIPCIONES
# =============================================================================

class TestSubscriptions:

    def test_current_snapshot_then_updates(self, store):
        store.commit("14", [], snapshot(85))
        with store.subscribe("14") as sub:
            assert sub.get(timeout=0.1).score == 85
            store.commit("14", [], snapshot(80))
            assert sub.get(timeout=0.1).score == 80
            assert sub.get(timeout=0.01) is None

    def test_other_buildings_not_delivered(self, store):
        sub = store.subscribe("14")
        store.commit("21", [], snapshot(building_id="21"))
        assert sub.get(timeout=0.01) is None
        sub.close()

    def test_closed_subscription_stops_receiving(self, store):
        sub = store.subscribe("14")
        sub.close()
        store.commit("14", [], snapshot())
        assert sub.closed is True
        assert sub.get(timeout=0.01) is None

    def test_slow_consumer_drops_oldest(self):
        sub = Subscription("14", maxsize=2)
        for score in (90, 85, 80):
            sub.publish(snapshot(score))
        assert sub.dropped == 1
        assert sub.get(timeout=0.01).score == 85


# =============================================================================
# RETENCIÓN
# =============================================================================

class TestRetention:

    def test_sweep_prunes_history_buckets_and_abandoned_buildings(self, wall_clock):
        store = InMemoryComplianceStore(
            StoreConfig(history_retention_days=90, window_months=12), clock=wall_clock
        )
        old = NOW - timedelta(days=120)
        store.commit("14", [bucket("2022-01"), bucket("2024-06")], snapshot(90, at=old))
        store.commit("14", [], snapshot(85, at=NOW))
        store.commit("21", [bucket("2024-06", building_id="21")], snapshot(80, at=old, building_id="21"))

        result = store.retention_sweep(NOW)

        assert result["dropped_buildings"] == ["21"]
        assert result["pruned_history"] == 2
        assert result["pruned_buckets"] == 2
        assert [s.score for s in store.get_history("14")] == [85]
        assert [b.month for b in store.get_buckets("14")] == ["2024-06"]
        assert store.get_snapshot("21") is None
        assert store.building_ids() == ["14"]

    def test_sweep_keeps_recent_data(self, store):
        store.commit("14", [bucket("2024-06")], snapshot())
        result = store.retention_sweep(NOW)
        assert result == {"pruned_history": 0, "pruned_buckets": 0, "dropped_buildings": []}
