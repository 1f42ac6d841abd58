"""Modelo de dominio para edificios monitoreados."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class PriorityTier(str, Enum):
    """Tier de prioridad que determina la cadencia de refresco."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Orden de despacho (menor = antes)."""
        return _TIER_RANK[self]


_TIER_RANK = {
    PriorityTier.HIGH: 0,
    PriorityTier.MEDIUM: 1,
    PriorityTier.LOW: 2,
}


@dataclass(frozen=True)
class BuildingIdentifier:
    """Edificio monitoreado - inmutable una vez configurado.

    Cada dataset usa una llave distinta:
    - HPD / emisiones: BBL
    - DOB: BIN
    - DSNY (OATH): dirección (número + calle + borough)
    """
    id: str
    bbl: str
    bin: str
    address: str
    tier: PriorityTier = PriorityTier.MEDIUM
    name: Optional[str] = None
