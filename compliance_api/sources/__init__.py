"""Adapters de fuentes NYC Open Data (Socrata).

- hpd: violaciones HPD por BBL
- dob: permisos DOB por BIN
- ll97: disclosure de energía/emisiones por BBL
- dsny: summons DSNY (OATH) por dirección
"""

from typing import Dict, Optional

from ..core.domain.events import SourceTag
from ..resilience.backoff import BackoffController
from .base import FetchFilters, FetchResult, SocrataClient, SourceAdapter
from .config import SocrataSettings, SourceConfig
from .dob import DOBPermitsAdapter
from .dsny import DSNYSummonsAdapter
from .hpd import HPDViolationsAdapter
from .ll97 import EmissionsAdapter
from .records import RawRecord

ADAPTER_CLASSES = (
    HPDViolationsAdapter,
    DOBPermitsAdapter,
    EmissionsAdapter,
    DSNYSummonsAdapter,
)


def build_default_adapters(
    controller: BackoffController,
    client: Optional[SocrataClient] = None,
) -> Dict[SourceTag, SourceAdapter]:
    """Crea los cuatro adapters compartiendo cliente y controller."""
    client = client or SocrataClient()
    return {cls.source: cls(client, controller) for cls in ADAPTER_CLASSES}


__all__ = [
    "ADAPTER_CLASSES",
    "build_default_adapters",
    "FetchFilters",
    "FetchResult",
    "SocrataClient",
    "SourceAdapter",
    "SocrataSettings",
    "SourceConfig",
    "DOBPermitsAdapter",
    "DSNYSummonsAdapter",
    "HPDViolationsAdapter",
    "EmissionsAdapter",
    "RawRecord",
]
