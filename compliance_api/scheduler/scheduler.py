"""Refresh Scheduler: cadencia por tier, backoff y coalescing.

- un thread de loop que hace tick() cada POLL_TICK_SECONDS
- pool acotado (POLL_MAX_IN_FLIGHT) de ciclos por edificio
- los edificios vencidos se despachan por tier y luego por vencimiento;
  lo que no entra se difiere al siguiente tick
- un trigger sobre un edificio en FETCHING marca rerun_requested; si el
  trigger reemplaza (push invalidation) además cancela el ciclo en curso
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional

from ..core.domain.building import BuildingIdentifier, PriorityTier
from ..metrics.prometheus import CYCLE_LATENCY, CYCLES, DEFERRED_DISPATCHES, IN_FLIGHT
from ..resilience.context import CycleContext
from ..resilience.errors import AggregationInconsistency, CycleCancelled
from ..store.base import ComplianceStore
from .cycle import CycleOutcome, CycleResult, CycleRunner
from .state import PollingConfig, RefreshPhase, RefreshState, is_valid_transition

logger = logging.getLogger(__name__)


class RefreshScheduler:
    """Scheduler de refresco por edificio.

    Uso:
        scheduler = RefreshScheduler(buildings, runner, PollingConfig.from_env())
        scheduler.start()
        scheduler.trigger("bldg-1", supersede=True)
        scheduler.stop()
    """

    def __init__(
        self,
        buildings: Iterable[BuildingIdentifier],
        runner: CycleRunner,
        config: Optional[PollingConfig] = None,
        store: Optional[ComplianceStore] = None,
        executor: Optional[Executor] = None,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Optional[Callable[[], datetime]] = None,
        strict: bool = False,
    ):
        self._runner = runner
        self._config = config or PollingConfig.from_env()
        self._store = store
        self._executor = executor
        self._owns_executor = executor is None
        self._clock = clock
        self._wall_clock = wall_clock or (lambda: datetime.now(timezone.utc))
        self._strict = strict

        self._lock = threading.RLock()
        self._idle = threading.Condition(self._lock)
        self._buildings: Dict[str, BuildingIdentifier] = {}
        self._states: Dict[str, RefreshState] = {}
        self._in_flight: Dict[str, CycleContext] = {}
        self._stop_event = threading.Event()
        self._wake = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._running = False

        for building in buildings:
            self.add_building(building)

    @property
    def config(self) -> PollingConfig:
        return self._config

    @property
    def running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Registro
    # ------------------------------------------------------------------

    def add_building(self, building: BuildingIdentifier) -> None:
        with self._lock:
            self._buildings[building.id] = building
            if building.id not in self._states:
                self._states[building.id] = RefreshState(
                    building_id=building.id,
                    tier=building.tier,
                    current_interval=self._config.base_for(building.tier),
                    next_due=self._clock(),
                )

    def buildings(self) -> List[BuildingIdentifier]:
        with self._lock:
            return list(self._buildings.values())

    def building(self, building_id: str) -> BuildingIdentifier:
        with self._lock:
            return self._buildings[building_id]

    def state(self, building_id: str) -> RefreshState:
        """Copia del estado de refresco de un edificio."""
        with self._lock:
            return replace(self._states[building_id])

    def current_interval(self, building_id: str) -> Optional[float]:
        with self._lock:
            state = self._states.get(building_id)
            return state.current_interval if state else None

    def in_flight(self) -> List[str]:
        with self._lock:
            return list(self._in_flight)

    # ------------------------------------------------------------------
    # Ciclo de vida
    # ------------------------------------------------------------------

    def start(self) -> None:
        with self._lock:
            if self._running:
                return
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._config.max_in_flight,
                    thread_name_prefix="refresh-cycle",
                )
                self._owns_executor = True
            self._stop_event.clear()
            self._running = True

        self._thread = threading.Thread(target=self._loop, name="refresh-scheduler", daemon=True)
        self._thread.start()
        logger.info(
            "[SCHEDULER] started buildings=%d max_in_flight=%d tick=%.1fs",
            len(self._buildings), self._config.max_in_flight, self._config.tick_seconds,
        )

    def stop(self, timeout: float = 10.0) -> None:
        """Detiene el loop y cancela los ciclos en curso."""
        with self._lock:
            if not self._running:
                return
            self._running = False
            self._stop_event.set()
            for ctx in self._in_flight.values():
                ctx.cancel("shutdown")
        self._wake.set()

        if self._thread:
            self._thread.join(timeout=timeout)
            self._thread = None
        if self._owns_executor and self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        logger.info("[SCHEDULER] stopped")

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("[SCHEDULER] tick failed")
            self._wake.wait(self._config.tick_seconds)
            self._wake.clear()

    # ------------------------------------------------------------------
    # Despacho
    # ------------------------------------------------------------------

    def _transition(self, state: RefreshState, to_phase: RefreshPhase) -> None:
        if not is_valid_transition(state.phase, to_phase):
            message = (
                f"invalid refresh transition building={state.building_id} "
                f"{state.phase.value} -> {to_phase.value}"
            )
            if self._strict:
                raise AggregationInconsistency(message)
            logger.error("REFRESH_INVALID_TRANSITION %s", message)
        state.phase = to_phase

    def _due(self, now: float) -> List[RefreshState]:
        due = [
            s for s in self._states.values()
            if s.building_id not in self._in_flight
            and s.phase in (RefreshPhase.IDLE, RefreshPhase.BACKING_OFF)
            and s.next_due <= now
        ]
        due.sort(key=lambda s: (s.tier.rank, s.next_due))
        return due

    def _can_dispatch(self) -> bool:
        return self._executor is not None and not self._stop_event.is_set()

    def tick(self) -> List[str]:
        """Despacha los edificios vencidos que entren en el pool.

        Returns:
            ids despachados en este tick
        """
        dispatched: List[str] = []
        with self._lock:
            if not self._can_dispatch():
                return dispatched
            now = self._clock()
            due = self._due(now)
            capacity = self._config.max_in_flight - len(self._in_flight)
            for state in due[:max(0, capacity)]:
                self._dispatch(state)
                dispatched.append(state.building_id)
            deferred = len(due) - len(dispatched)

        if deferred > 0:
            DEFERRED_DISPATCHES.inc(deferred)
            logger.info(
                "[SCHEDULER] backpressure dispatched=%d deferred=%d in_flight=%d",
                len(dispatched), deferred, len(self._in_flight),
            )
        return dispatched

    def _dispatch(self, state: RefreshState) -> None:
        """Arranca un ciclo. Debe llamarse con el lock tomado."""
        if state.phase == RefreshPhase.BACKING_OFF:
            self._transition(state, RefreshPhase.IDLE)
        self._transition(state, RefreshPhase.FETCHING)
        state.rerun_requested = False

        building = self._buildings[state.building_id]
        ctx = CycleContext(
            building.id,
            deadline_seconds=self._config.cycle_timeout_seconds,
            clock=self._clock,
        )
        self._in_flight[building.id] = ctx
        IN_FLIGHT.set(len(self._in_flight))
        logger.debug("REFRESH_DISPATCH building=%s tier=%s", building.id, state.tier.value)
        self._executor.submit(self._run_cycle, building, ctx)

    def _run_cycle(self, building: BuildingIdentifier, ctx: CycleContext) -> None:
        started = time.monotonic()
        try:
            result = self._runner(building, ctx)
        except CycleCancelled:
            result = CycleResult(building.id, CycleOutcome.CANCELLED)
        except Exception as e:
            logger.exception("REFRESH_CYCLE_ERROR building=%s", building.id)
            result = CycleResult(building.id, CycleOutcome.FAILURE, error=str(e)[:200])
        if result.outcome != CycleOutcome.SUCCESS and ctx.cancelled:
            if ctx.reason == "deadline":
                result = replace(result, outcome=CycleOutcome.FAILURE, error="cycle deadline exceeded")
            else:
                result = replace(result, outcome=CycleOutcome.CANCELLED)
        result.duration_seconds = time.monotonic() - started
        CYCLE_LATENCY.observe(result.duration_seconds)
        self._complete(building.id, ctx, result)

    def _complete(self, building_id: str, ctx: CycleContext, result: CycleResult) -> None:
        CYCLES.labels(outcome=result.outcome.value).inc()
        mark_stale: Optional[bool] = None

        with self._lock:
            if self._in_flight.get(building_id) is ctx:
                del self._in_flight[building_id]
            IN_FLIGHT.set(len(self._in_flight))

            state = self._states[building_id]
            now = self._clock()
            wall_now = self._wall_clock()

            if result.outcome == CycleOutcome.SUCCESS:
                self._transition(state, RefreshPhase.SUCCESS)
                state.record_success(self._config.base_for(state.tier), wall_now)
                self._transition(state, RefreshPhase.IDLE)
                mark_stale = False
                logger.info(
                    "REFRESH_CYCLE_OK building=%s interval=%.0fs failed_sources=%s duration=%.2fs",
                    building_id, state.current_interval,
                    ",".join(result.failed_sources) or "-", result.duration_seconds,
                )
            elif result.outcome == CycleOutcome.FAILURE:
                self._transition(state, RefreshPhase.FAILURE)
                state.record_failure(self._config.max_interval, wall_now, result.error)
                self._transition(state, RefreshPhase.BACKING_OFF)
                if state.consecutive_failures >= self._config.stale_after_failures:
                    mark_stale = True
                logger.warning(
                    "REFRESH_CYCLE_FAILED building=%s failures=%d interval=%.0fs err=%s",
                    building_id, state.consecutive_failures, state.current_interval, result.error,
                )
            else:
                self._transition(state, RefreshPhase.IDLE)
                logger.info(
                    "REFRESH_CYCLE_CANCELLED building=%s reason=%s rerun=%s",
                    building_id, ctx.reason, state.rerun_requested,
                )

            state.next_due = now + state.current_interval

            if state.rerun_requested and self._can_dispatch():
                state.rerun_requested = False
                state.next_due = now
                if len(self._in_flight) < self._config.max_in_flight:
                    logger.info("REFRESH_RERUN building=%s", building_id)
                    self._dispatch(state)

            self._idle.notify_all()

        if mark_stale is not None and self._store is not None:
            self._store.mark_stale(building_id, mark_stale)

    # ------------------------------------------------------------------
    # API pública
    # ------------------------------------------------------------------

    def trigger(self, building_id: str, supersede: bool = False) -> str:
        """Pide un refresco inmediato.

        Args:
            building_id: edificio
            supersede: cancela el ciclo en curso (invalidación push)

        Returns:
            "dispatched", "queued", "coalesced" o "superseded"

        Raises:
            KeyError: edificio desconocido
        """
        with self._lock:
            state = self._states[building_id]
            ctx = self._in_flight.get(building_id)
            if ctx is not None:
                state.rerun_requested = True
                if supersede:
                    ctx.cancel("superseded")
                    logger.info("REFRESH_SUPERSEDED building=%s", building_id)
                    return "superseded"
                logger.debug("REFRESH_COALESCED building=%s", building_id)
                return "coalesced"

            state.next_due = self._clock()
            if self._can_dispatch() and len(self._in_flight) < self._config.max_in_flight:
                self._dispatch(state)
                return "dispatched"
        self._wake.set()
        return "queued"

    def escalate(self, building_id: str) -> str:
        """Promueve el edificio a tier alto y dispara un refresco."""
        with self._lock:
            building = self._buildings[building_id]
            state = self._states[building_id]
            if building.tier != PriorityTier.HIGH:
                self._buildings[building_id] = replace(building, tier=PriorityTier.HIGH)
                state.tier = PriorityTier.HIGH
                logger.info("REFRESH_ESCALATED building=%s from=%s", building_id, building.tier.value)
            if state.consecutive_failures == 0:
                state.current_interval = self._config.base_for(PriorityTier.HIGH)
        return self.trigger(building_id)

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Espera a que no haya ciclos en curso."""
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._idle:
            while self._in_flight:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return False
                self._idle.wait(remaining)
            return True
