"""Refresh runner configuration."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class RefreshRunnerConfig:
    """Configuración del proceso de refresco."""
    once: bool
    serve: bool
    host: str
    port: int
    buildings_file: Optional[str]
    env_file: Optional[str]
    once_timeout_seconds: Optional[float] = None
    sweep_interval_seconds: float = 3600.0
