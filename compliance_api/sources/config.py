"""Configuración de fuentes Socrata (NYC Open Data).

Env vars por fuente, con prefijo HPD_, DOB_, LL97_ o DSNY_:
- {P}_RATE_LIMIT_PER_MIN (default: 60)
- {P}_BURST (default: 5)
- {P}_TIMEOUT_SECONDS (default: 30)
- {P}_DATASET_ID (default: dataset oficial de la fuente)
- {P}_PAGE_SIZE (default: 1000)
- {P}_ROW_LIMIT (default: 5000)
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from ..resilience.token_bucket import TokenBucketConfig

DEFAULT_BASE_URL = "https://data.cityofnewyork.us/resource"


@dataclass(frozen=True)
class SocrataSettings:
    base_url: str = DEFAULT_BASE_URL
    app_token: Optional[str] = None

    @classmethod
    def from_env(cls) -> "SocrataSettings":
        return cls(
            base_url=os.getenv("SOCRATA_BASE_URL", DEFAULT_BASE_URL).rstrip("/"),
            app_token=os.getenv("SOCRATA_APP_TOKEN") or None,
        )


@dataclass(frozen=True)
class SourceConfig:
    """Parámetros de una fuente."""
    dataset_id: str
    requests_per_min: float = 60.0
    burst: int = 5
    timeout_seconds: float = 30.0
    page_size: int = 1000
    row_limit: int = 5000

    @classmethod
    def from_env(cls, prefix: str, default_dataset: str) -> "SourceConfig":
        p = prefix.upper()
        return cls(
            dataset_id=os.getenv(f"{p}_DATASET_ID", default_dataset),
            requests_per_min=float(os.getenv(f"{p}_RATE_LIMIT_PER_MIN", "60")),
            burst=int(os.getenv(f"{p}_BURST", "5")),
            timeout_seconds=float(os.getenv(f"{p}_TIMEOUT_SECONDS", "30")),
            page_size=max(1, int(os.getenv(f"{p}_PAGE_SIZE", "1000"))),
            row_limit=max(1, int(os.getenv(f"{p}_ROW_LIMIT", "5000"))),
        )

    @property
    def bucket(self) -> TokenBucketConfig:
        return TokenBucketConfig(requests_per_min=self.requests_per_min, burst=self.burst)
