"""CLI entry point for the compliance refresh runner."""

from __future__ import annotations

import argparse
import logging
import time
from dataclasses import replace
from typing import List, Optional

import uvicorn

from common.config import get_settings
from compliance_api.engine import ComplianceEngine
from compliance_api.scheduler.cycle import CycleOutcome
from compliance_api.transports.http import create_app

from .config import RefreshRunnerConfig

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> RefreshRunnerConfig:
    p = argparse.ArgumentParser(description="Building compliance refresh runner")
    p.add_argument("--once", action="store_true", help="refresh every building once and exit")
    p.add_argument("--serve", action="store_true", help="expose the HTTP API while polling")
    p.add_argument("--host", default=None)
    p.add_argument("--port", type=int, default=None)
    p.add_argument("--buildings-file", default=None)
    p.add_argument("--env-file", default=None)
    p.add_argument("--timeout", type=float, default=None, help="per-building deadline for --once (default: POLL_CYCLE_TIMEOUT_SECONDS)")
    p.add_argument("--sweep-seconds", type=float, default=3600.0)
    args = p.parse_args(argv)

    return RefreshRunnerConfig(
        once=bool(args.once),
        serve=bool(args.serve),
        host=args.host or "",
        port=args.port or 0,
        buildings_file=args.buildings_file,
        env_file=args.env_file,
        once_timeout_seconds=args.timeout,
        sweep_interval_seconds=args.sweep_seconds,
    )


def run_once(engine: ComplianceEngine, timeout: Optional[float] = None) -> int:
    """Un pase por todos los edificios. Devuelve el exit code."""
    results = engine.run_once(timeout=timeout)
    failed = [r for r in results if r.outcome != CycleOutcome.SUCCESS]
    for result in results:
        snapshot = result.snapshot
        if snapshot is not None:
            logger.info(
                "building=%s score=%.2f status=%s open=%d partial=%s",
                snapshot.building_id, snapshot.score, snapshot.status.value,
                snapshot.open_violations, snapshot.partial,
            )
        else:
            logger.warning("building=%s outcome=%s err=%s", result.building_id, result.outcome.value, result.error)
    logger.info("Pase completado: ok=%d fallidos=%d", len(results) - len(failed), len(failed))
    return 1 if results and len(failed) == len(results) else 0


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler()],
    )

    cfg = parse_args(argv)
    settings = get_settings(cfg.env_file)
    if cfg.buildings_file:
        settings = replace(settings, buildings_file=cfg.buildings_file)

    engine = ComplianceEngine.from_env(settings)
    logger.info("Compliance refresh runner started")
    logger.info(
        "Config: buildings=%d once=%s serve=%s window=%d",
        len(engine.buildings()), cfg.once, cfg.serve, settings.window_months,
    )

    if cfg.once:
        try:
            return run_once(engine, cfg.once_timeout_seconds)
        finally:
            engine.stop()

    if cfg.serve:
        app = create_app(engine, manage_engine=True)
        uvicorn.run(app, host=cfg.host or settings.api_host, port=cfg.port or settings.api_port)
        return 0

    engine.start()
    try:
        while True:
            time.sleep(cfg.sweep_interval_seconds)
            try:
                engine.retention_sweep()
            except Exception as e:
                logger.error("Error en retention sweep: %s", e)
    except KeyboardInterrupt:
        logger.info("Interrumpido, deteniendo...")
    finally:
        engine.stop()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
