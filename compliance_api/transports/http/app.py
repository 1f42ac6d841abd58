from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from ... import __version__
from ...engine import ComplianceEngine
from .endpoints import (
    buildings_router,
    health_router,
    maintenance_router,
    portfolio_router,
    stream_router,
)


def create_app(engine: ComplianceEngine, manage_engine: bool = False) -> FastAPI:
    """App FastAPI sobre un motor ya construido.

    Con manage_engine=True el ciclo de vida del motor sigue al de la app
    (start al levantar, stop al apagar).
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if manage_engine:
            engine.start()
        try:
            yield
        finally:
            if manage_engine:
                engine.stop()

    app = FastAPI(title="Building Compliance Service", version=__version__, lifespan=lifespan)
    app.state.engine = engine
    app.include_router(health_router)
    app.include_router(buildings_router)
    app.include_router(portfolio_router)
    app.include_router(maintenance_router)
    app.include_router(stream_router)
    return app
