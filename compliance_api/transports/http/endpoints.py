"""Endpoints REST de lectura e invalidación.

El motor se inyecta vía app.state.engine (ver app.create_app).
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, WebSocket, status
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.concurrency import run_in_threadpool

from ...engine import ComplianceEngine
from ...schemas import (
    BucketOut,
    BuildingOut,
    HealthOut,
    RefreshStateOut,
    RetentionSweepResult,
    SnapshotOut,
    TrendPointOut,
    TriggerResult,
)

logger = logging.getLogger(__name__)

health_router = APIRouter(tags=["health"])
buildings_router = APIRouter(prefix="/buildings", tags=["buildings"])
portfolio_router = APIRouter(tags=["portfolio"])
maintenance_router = APIRouter(prefix="/maintenance", tags=["maintenance"])
stream_router = APIRouter(tags=["stream"])


def get_engine(request: Request) -> ComplianceEngine:
    return request.app.state.engine


def _require_building(engine: ComplianceEngine, building_id: str) -> None:
    if building_id not in {b.id for b in engine.buildings()}:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="building not found")


# ======================================================================
# Health / métricas
# ======================================================================

@health_router.get("/health", response_model=HealthOut)
def health(engine: ComplianceEngine = Depends(get_engine)):
    """Liveness: siempre ok si el proceso corre."""
    return HealthOut(
        status="ok",
        buildings=len(engine.buildings()),
        in_flight=len(engine.scheduler.in_flight()),
        scheduler_running=engine.scheduler.running,
        thresholds=engine.thresholds.to_dict(),
    )


@health_router.get("/health/resilience")
def resilience_health(engine: ComplianceEngine = Depends(get_engine)):
    """Estado de circuitos, rate limits y contadores de reintentos."""
    return engine.resilience_stats()


@health_router.get("/metrics")
def metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# ======================================================================
# Edificios
# ======================================================================

@buildings_router.get("", response_model=List[BuildingOut])
def list_buildings(engine: ComplianceEngine = Depends(get_engine)):
    return [
        BuildingOut(
            id=b.id, bbl=b.bbl, bin=b.bin, address=b.address, tier=b.tier.value, name=b.name
        )
        for b in engine.buildings()
    ]


@buildings_router.get("/{building_id}/snapshot", response_model=SnapshotOut)
def get_snapshot(building_id: str, engine: ComplianceEngine = Depends(get_engine)):
    _require_building(engine, building_id)
    snapshot = engine.store.get_snapshot(building_id)
    if snapshot is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="no snapshot yet")
    return SnapshotOut(**snapshot.to_dict())


@buildings_router.get("/{building_id}/history", response_model=List[SnapshotOut])
def get_history(
    building_id: str,
    limit: Optional[int] = Query(default=None, ge=1, le=1000),
    engine: ComplianceEngine = Depends(get_engine),
):
    _require_building(engine, building_id)
    return [SnapshotOut(**s.to_dict()) for s in engine.store.get_history(building_id, limit)]


@buildings_router.get("/{building_id}/buckets", response_model=List[BucketOut])
def get_buckets(building_id: str, engine: ComplianceEngine = Depends(get_engine)):
    _require_building(engine, building_id)
    return [BucketOut(**b.to_dict()) for b in engine.store.get_buckets(building_id)]


@buildings_router.get("/{building_id}/refresh-state", response_model=RefreshStateOut)
def get_refresh_state(building_id: str, engine: ComplianceEngine = Depends(get_engine)):
    _require_building(engine, building_id)
    return RefreshStateOut(**engine.scheduler.state(building_id).to_dict())


@buildings_router.post("/{building_id}/invalidate", response_model=TriggerResult)
def invalidate(building_id: str, engine: ComplianceEngine = Depends(get_engine)):
    """Invalidación push: refresca ya, reemplazando el ciclo en curso."""
    _require_building(engine, building_id)
    return TriggerResult(building_id=building_id, result=engine.invalidate(building_id))


@buildings_router.post("/{building_id}/escalate", response_model=TriggerResult)
def escalate(building_id: str, engine: ComplianceEngine = Depends(get_engine)):
    _require_building(engine, building_id)
    return TriggerResult(building_id=building_id, result=engine.escalate(building_id))


# ======================================================================
# Portafolio / mantenimiento
# ======================================================================

@portfolio_router.get("/trend", response_model=List[TrendPointOut])
def get_trend(engine: ComplianceEngine = Depends(get_engine)):
    return [TrendPointOut(**p.to_dict()) for p in engine.store.get_trend()]


@maintenance_router.post("/retention-sweep", response_model=RetentionSweepResult)
def retention_sweep(
    now: Optional[datetime] = None,
    engine: ComplianceEngine = Depends(get_engine),
):
    return RetentionSweepResult(**engine.retention_sweep(now))


# ======================================================================
# Stream de snapshots
# ======================================================================

@stream_router.websocket("/ws/buildings/{building_id}")
async def snapshot_stream(websocket: WebSocket, building_id: str):
    """Envía cada snapshot comprometido del edificio (el actual primero)."""
    engine: ComplianceEngine = websocket.app.state.engine
    if building_id not in {b.id for b in engine.buildings()}:
        await websocket.close(code=4404)
        return

    await websocket.accept()
    subscription = engine.store.subscribe(building_id)
    receive_task = asyncio.ensure_future(websocket.receive())
    get_task = asyncio.ensure_future(run_in_threadpool(subscription.get, 0.5))
    try:
        while True:
            done, _ = await asyncio.wait(
                {receive_task, get_task}, return_when=asyncio.FIRST_COMPLETED
            )
            if receive_task in done:
                message = receive_task.result()
                if message["type"] == "websocket.disconnect":
                    break
                receive_task = asyncio.ensure_future(websocket.receive())
            if get_task in done:
                snapshot = get_task.result()
                if snapshot is not None:
                    await websocket.send_json(snapshot.to_dict())
                get_task = asyncio.ensure_future(run_in_threadpool(subscription.get, 0.5))
    finally:
        subscription.close()
        receive_task.cancel()
        # el get del threadpool vuelve solo tras su timeout
        await asyncio.gather(get_task, return_exceptions=True)
        logger.debug("[WS] subscriber closed building=%s", building_id)
