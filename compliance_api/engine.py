"""Motor de cumplimiento: compone adapters, normalizador, agregador,
alertas, store y scheduler.

Se construye explícitamente (sin singletons): cada test o proceso arma
su propia instancia.

Ciclo por edificio:
    fetch concurrente por fuente -> normalizar -> agregar + commit
    -> evaluar alertas
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import Executor, ThreadPoolExecutor, as_completed
from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional

import requests

from common.config import Settings, get_settings, load_buildings

from .aggregation.aggregator import Aggregator
from .aggregation.thresholds import ThresholdTable
from .alerts.evaluator import AlertEvaluator, AlertToggles
from .alerts.sink import AlertSink, sink_from_env
from .core.domain.building import BuildingIdentifier
from .core.domain.events import CanonicalEvent, SourceTag
from .normalization.normalizer import Normalizer
from .normalization.severity import severity_policy_from_env
from .resilience.backoff import BackoffController
from .resilience.context import CycleContext
from .resilience.errors import CycleCancelled, SourceError
from .scheduler.cycle import CycleOutcome, CycleResult
from .scheduler.scheduler import RefreshScheduler
from .scheduler.state import PollingConfig
from .sources import SocrataClient, SourceAdapter, build_default_adapters
from .sources.base import FetchFilters, FetchResult
from .store.base import ComplianceStore
from .store.memory import InMemoryComplianceStore, StoreConfig
from .transports.push_invalidation import PushInvalidationListener

logger = logging.getLogger(__name__)


class ComplianceEngine:
    """Orquestador del refresco de cumplimiento."""

    def __init__(
        self,
        buildings: Iterable[BuildingIdentifier],
        adapters: Mapping[SourceTag, SourceAdapter],
        store: ComplianceStore,
        aggregator: Aggregator,
        evaluator: AlertEvaluator,
        normalizer: Optional[Normalizer] = None,
        polling: Optional[PollingConfig] = None,
        controller: Optional[BackoffController] = None,
        fetch_executor: Optional[Executor] = None,
        scheduler_executor: Optional[Executor] = None,
        fetch_filters: Optional[FetchFilters] = None,
        strict: bool = False,
    ):
        self._adapters: Dict[SourceTag, SourceAdapter] = dict(adapters)
        self._store = store
        self._aggregator = aggregator
        self._evaluator = evaluator
        self._normalizer = normalizer or Normalizer()
        self._controller = controller
        self._fetch_filters = fetch_filters
        self._polling = polling or PollingConfig.from_env()

        self._owns_fetch_pool = fetch_executor is None
        self._fetch_pool = fetch_executor or ThreadPoolExecutor(
            max_workers=max(1, len(self._adapters)) * self._polling.max_in_flight,
            thread_name_prefix="source-fetch",
        )
        self.scheduler = RefreshScheduler(
            buildings,
            self.run_cycle,
            self._polling,
            store=store,
            executor=scheduler_executor,
            strict=strict,
        )
        store.set_interval_lookup(self.scheduler.current_interval)
        self._push_listener = None
        self._closeables: List[object] = []

    # ------------------------------------------------------------------
    # Construcción
    # ------------------------------------------------------------------

    @classmethod
    def from_env(
        cls,
        settings: Optional[Settings] = None,
        buildings: Optional[List[BuildingIdentifier]] = None,
        session: Optional[requests.Session] = None,
        sink: Optional[AlertSink] = None,
    ) -> "ComplianceEngine":
        """Arma el motor completo desde variables de entorno."""
        settings = settings or get_settings()
        if buildings is None:
            buildings = load_buildings(settings.buildings_file)

        controller = BackoffController()
        client = SocrataClient(session=session)
        adapters = build_default_adapters(controller, client)

        store_config = StoreConfig.from_env()
        store = InMemoryComplianceStore(store_config)
        thresholds = ThresholdTable.from_env()
        aggregator = Aggregator(
            store,
            thresholds=thresholds,
            severity_policy=severity_policy_from_env(),
            window=settings.window_months,
            strict=settings.strict,
        )
        evaluator = AlertEvaluator(
            thresholds=thresholds,
            toggles=AlertToggles.from_env(),
            sink=sink or sink_from_env(),
        )
        engine = cls(
            buildings,
            adapters,
            store,
            aggregator,
            evaluator,
            controller=controller,
            strict=settings.strict,
        )
        engine._closeables.append(client)

        if settings.push_ws_url:
            engine.attach_push_listener(
                PushInvalidationListener(
                    settings.push_ws_url,
                    engine.invalidate,
                    reconnect_seconds=settings.push_reconnect_seconds,
                )
            )
        logger.info(
            "[ENGINE] configured buildings=%d sources=%s window=%d strict=%s",
            len(buildings),
            ",".join(s.value for s in adapters),
            settings.window_months,
            settings.strict,
        )
        return engine

    def attach_push_listener(self, listener) -> None:
        self._push_listener = listener

    # ------------------------------------------------------------------
    # Accesores
    # ------------------------------------------------------------------

    @property
    def store(self) -> ComplianceStore:
        return self._store

    @property
    def thresholds(self) -> ThresholdTable:
        return self._aggregator.thresholds

    def buildings(self) -> List[BuildingIdentifier]:
        return self.scheduler.buildings()

    def resilience_stats(self) -> dict:
        if self._controller is None:
            return {}
        return self._controller.stats

    # ------------------------------------------------------------------
    # Ciclo de vida
    # ------------------------------------------------------------------

    def start(self) -> None:
        self.scheduler.start()
        if self._push_listener is not None:
            self._push_listener.start()

    def stop(self) -> None:
        if self._push_listener is not None:
            self._push_listener.stop()
        self.scheduler.stop()
        if self._owns_fetch_pool:
            self._fetch_pool.shutdown(wait=True)
        for closeable in self._closeables:
            closeable.close()
        self._closeables.clear()

    # ------------------------------------------------------------------
    # Ciclo de refresco
    # ------------------------------------------------------------------

    def _fetch_all(
        self, building: BuildingIdentifier, ctx: CycleContext
    ) -> Dict[SourceTag, Optional[FetchResult]]:
        """Fetch concurrente de todas las fuentes. None = la fuente falló."""
        futures = {
            self._fetch_pool.submit(adapter.fetch, building, self._fetch_filters, ctx): source
            for source, adapter in self._adapters.items()
        }
        results: Dict[SourceTag, Optional[FetchResult]] = {}
        cancelled = False
        for future in as_completed(futures):
            source = futures[future]
            try:
                results[source] = future.result()
            except CycleCancelled:
                cancelled = True
            except SourceError as e:
                results[source] = None
                logger.warning(
                    "SOURCE_FAILED building=%s source=%s class=%s err=%s",
                    building.id, source.value, e.error_class.value, e,
                )
            except Exception:
                results[source] = None
                logger.exception("SOURCE_FAILED building=%s source=%s", building.id, source.value)
        if cancelled or ctx.cancelled:
            raise CycleCancelled(f"cycle for {building.id} cancelled: {ctx.reason}")
        return results

    def run_cycle(self, building: BuildingIdentifier, ctx: CycleContext) -> CycleResult:
        """Un ciclo completo para un edificio.

        Una fuente caída no falla el ciclo (snapshot partial); si fallan
        todas, el ciclo es FAILURE y no se hace commit.
        """
        started = time.monotonic()
        ctx.raise_if_cancelled()
        fetched = self._fetch_all(building, ctx)

        failed = [s for s, r in fetched.items() if r is None]
        if self._adapters and len(failed) == len(self._adapters):
            return CycleResult(
                building.id,
                CycleOutcome.FAILURE,
                failed_sources=tuple(sorted(s.value for s in failed)),
                error="all sources failed",
                duration_seconds=time.monotonic() - started,
            )

        events_by_source: Dict[SourceTag, List[CanonicalEvent]] = {}
        for source, result in fetched.items():
            if result is None:
                continue
            normalized = self._normalizer.normalize(result.records)
            events_by_source[source] = normalized.events

        # solo se comprometen agregaciones completas
        ctx.raise_if_cancelled()
        aggregation = self._aggregator.aggregate(building.id, events_by_source, failed)
        alerts = self._evaluator.process(aggregation.previous, aggregation.snapshot)

        return CycleResult(
            building.id,
            CycleOutcome.SUCCESS,
            snapshot=aggregation.snapshot,
            failed_sources=aggregation.snapshot.failed_sources,
            alerts=alerts,
            duration_seconds=time.monotonic() - started,
        )

    def run_once(self, timeout: Optional[float] = None) -> List[CycleResult]:
        """Refresca todos los edificios una vez, por tier, sin el loop.

        Sin timeout explícito cada ciclo usa POLL_CYCLE_TIMEOUT_SECONDS.
        """
        if timeout is None:
            timeout = self._polling.cycle_timeout_seconds
        buildings = sorted(self.buildings(), key=lambda b: b.tier.rank)
        results: List[CycleResult] = []
        with ThreadPoolExecutor(max_workers=self._polling.max_in_flight) as pool:
            futures = {}
            for building in buildings:
                ctx = CycleContext(building.id, deadline_seconds=timeout)
                futures[pool.submit(self.run_cycle, building, ctx)] = (building, ctx)
            for future in as_completed(futures):
                building, ctx = futures[future]
                try:
                    results.append(future.result())
                except CycleCancelled:
                    if ctx.reason == "deadline":
                        results.append(CycleResult(building.id, CycleOutcome.FAILURE, error="cycle deadline exceeded"))
                    else:
                        results.append(CycleResult(building.id, CycleOutcome.CANCELLED))
                except Exception as e:
                    logger.exception("REFRESH_CYCLE_ERROR building=%s", building.id)
                    results.append(CycleResult(building.id, CycleOutcome.FAILURE, error=str(e)[:200]))
        return results

    # ------------------------------------------------------------------
    # Operaciones
    # ------------------------------------------------------------------

    def trigger(self, building_id: str, supersede: bool = False) -> str:
        return self.scheduler.trigger(building_id, supersede=supersede)

    def invalidate(self, building_id: str) -> str:
        """Invalidación push: reemplaza cualquier ciclo en curso."""
        logger.info("PUSH_INVALIDATE building=%s", building_id)
        return self.scheduler.trigger(building_id, supersede=True)

    def escalate(self, building_id: str) -> str:
        return self.scheduler.escalate(building_id)

    def retention_sweep(self, now: Optional[datetime] = None) -> dict:
        return self._store.retention_sweep(now)
