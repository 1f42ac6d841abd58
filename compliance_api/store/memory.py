"""Store en memoria del estado de cumplimiento.

- último snapshot por edificio (last_updated nunca retrocede)
- historial acotado (HISTORY_MAX_UPDATES) por edificio
- buckets mensuales por edificio, persistidos entre ciclos
- suscriptores por edificio notificados en cada commit

Los datos solo se eliminan con retention_sweep().
"""

from __future__ import annotations

import logging
import os
import threading
from collections import defaultdict, deque
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Deque, Dict, List, Optional, Sequence, Set, Tuple

from ..aggregation.trend import compute_trend
from ..core.domain.snapshot import ComplianceSnapshot, MonthlyBucket, TrendPoint
from ..metrics.prometheus import PORTFOLIO_LATEST_TOTAL
from .base import ComplianceStore, IntervalLookup
from .subscription import Subscription

logger = logging.getLogger(__name__)


@dataclass
class StoreConfig:
    history_max_updates: int = 100
    history_retention_days: int = 90
    stale_interval_multiple: float = 3.0
    window_months: int = 12

    @classmethod
    def from_env(cls) -> "StoreConfig":
        return cls(
            history_max_updates=max(1, int(os.getenv("HISTORY_MAX_UPDATES", "100"))),
            history_retention_days=int(os.getenv("HISTORY_RETENTION_DAYS", "90")),
            stale_interval_multiple=float(os.getenv("STALE_INTERVAL_MULTIPLE", "3.0")),
            window_months=max(1, int(os.getenv("AGGREGATION_WINDOW_MONTHS", "12"))),
        )


def _first_window_month(now: datetime, window_months: int) -> str:
    index = now.year * 12 + (now.month - 1) - (window_months - 1)
    return f"{index // 12:04d}-{index % 12 + 1:02d}"


class InMemoryComplianceStore(ComplianceStore):
    """Store thread-safe en memoria."""

    def __init__(
        self,
        config: Optional[StoreConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._config = config or StoreConfig.from_env()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.RLock()
        self._snapshots: Dict[str, ComplianceSnapshot] = {}
        self._history: Dict[str, Deque[ComplianceSnapshot]] = {}
        self._buckets: Dict[str, Dict[str, MonthlyBucket]] = {}
        self._stale: Set[str] = set()
        self._subscribers: Dict[str, List[Subscription]] = defaultdict(list)
        self._interval_lookup: Optional[IntervalLookup] = None

    @property
    def config(self) -> StoreConfig:
        return self._config

    def set_interval_lookup(self, lookup: Optional[IntervalLookup]) -> None:
        self._interval_lookup = lookup

    def commit(
        self,
        building_id: str,
        buckets: Sequence[MonthlyBucket],
        snapshot: ComplianceSnapshot,
    ) -> Tuple[Optional[ComplianceSnapshot], ComplianceSnapshot]:
        with self._lock:
            previous = self._snapshots.get(building_id)
            if previous is not None and snapshot.last_updated < previous.last_updated:
                snapshot = replace(snapshot, last_updated=previous.last_updated)
            if snapshot.stale:
                snapshot = replace(snapshot, stale=False)

            self._snapshots[building_id] = snapshot
            history = self._history.get(building_id)
            if history is None:
                history = deque(maxlen=self._config.history_max_updates)
                self._history[building_id] = history
            history.append(snapshot)

            by_month = self._buckets.setdefault(building_id, {})
            for bucket in buckets:
                by_month[bucket.month] = bucket
            self._stale.discard(building_id)
            subscribers = list(self._subscribers.get(building_id, ()))

        for sub in subscribers:
            sub.publish(snapshot)

        self._update_portfolio_gauge()
        logger.debug(
            "STORE_COMMIT building=%s score=%.1f subscribers=%d",
            building_id, snapshot.score, len(subscribers),
        )
        return previous, snapshot

    def _update_portfolio_gauge(self) -> None:
        trend = self.get_trend()
        PORTFOLIO_LATEST_TOTAL.set(trend[-1].total_across_portfolio if trend else 0)

    def _is_stale(self, building_id: str, snapshot: ComplianceSnapshot) -> bool:
        if building_id in self._stale:
            return True
        if self._interval_lookup is None:
            return False
        interval = self._interval_lookup(building_id)
        if not interval:
            return False
        age = (self._clock() - snapshot.last_updated).total_seconds()
        return age > interval * self._config.stale_interval_multiple

    def get_snapshot(self, building_id: str) -> Optional[ComplianceSnapshot]:
        """Último snapshot, anotado stale si corresponde."""
        with self._lock:
            snapshot = self._snapshots.get(building_id)
            if snapshot is None:
                return None
            stale = self._is_stale(building_id, snapshot)
        return replace(snapshot, stale=True) if stale else snapshot

    def get_history(self, building_id: str, limit: Optional[int] = None) -> List[ComplianceSnapshot]:
        with self._lock:
            history = list(self._history.get(building_id, ()))
        if limit is not None:
            history = history[-limit:] if limit > 0 else []
        return history

    def get_buckets(self, building_id: str) -> List[MonthlyBucket]:
        with self._lock:
            by_month = dict(self._buckets.get(building_id, {}))
        return [by_month[m] for m in sorted(by_month)]

    def get_trend(self) -> List[TrendPoint]:
        with self._lock:
            all_buckets = [b for by_month in self._buckets.values() for b in by_month.values()]
        return compute_trend(all_buckets)

    def subscribe(self, building_id: str) -> Subscription:
        sub = Subscription(building_id, on_close=self._unsubscribe)
        with self._lock:
            self._subscribers[building_id].append(sub)
            current = self._snapshots.get(building_id)
        if current is not None:
            sub.publish(current)
        return sub

    def _unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            subs = self._subscribers.get(sub.building_id, [])
            if sub in subs:
                subs.remove(sub)
            if not subs:
                self._subscribers.pop(sub.building_id, None)

    def mark_stale(self, building_id: str, stale: bool = True) -> None:
        with self._lock:
            if stale:
                if building_id not in self._stale:
                    logger.warning("SNAPSHOT_STALE building=%s", building_id)
                self._stale.add(building_id)
            else:
                self._stale.discard(building_id)

    def retention_sweep(self, now: Optional[datetime] = None) -> dict:
        """Poda historial viejo, buckets fuera de la ventana y edificios abandonados."""
        now = now or self._clock()
        cutoff = now - timedelta(days=self._config.history_retention_days)
        first_month = _first_window_month(now, self._config.window_months)
        pruned_history = 0
        pruned_buckets = 0
        dropped: List[str] = []

        with self._lock:
            for building_id in list(self._snapshots):
                if self._snapshots[building_id].last_updated < cutoff:
                    dropped.append(building_id)
                    pruned_history += len(self._history.pop(building_id, ()))
                    pruned_buckets += len(self._buckets.pop(building_id, {}))
                    del self._snapshots[building_id]
                    self._stale.discard(building_id)

            for building_id, history in self._history.items():
                keep = [s for s in history if s.last_updated >= cutoff]
                pruned_history += len(history) - len(keep)
                history.clear()
                history.extend(keep)

            for by_month in self._buckets.values():
                for month in [m for m in by_month if m < first_month]:
                    del by_month[month]
                    pruned_buckets += 1

        self._update_portfolio_gauge()
        result = {
            "pruned_history": pruned_history,
            "pruned_buckets": pruned_buckets,
            "dropped_buildings": dropped,
        }
        logger.info(
            "RETENTION_SWEEP pruned_history=%d pruned_buckets=%d dropped=%d",
            pruned_history, pruned_buckets, len(dropped),
        )
        return result

    def building_ids(self) -> List[str]:
        with self._lock:
            return sorted(self._snapshots)
