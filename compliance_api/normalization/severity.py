"""Políticas de ponderación de violaciones abiertas para el score.

SEVERITY_POLICY=flat (default): cada violación abierta pesa 1.
SEVERITY_POLICY=class_weighted: pesa según severidad (HPD clase A/B/C).
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from typing import Dict, Optional

from ..core.domain.events import CanonicalEvent, Severity

logger = logging.getLogger(__name__)


class SeverityPolicy(ABC):
    name = "base"

    @abstractmethod
    def weight(self, event: CanonicalEvent) -> float:
        """Peso de un evento en el conteo de violaciones abiertas."""


class FlatSeverityPolicy(SeverityPolicy):
    name = "flat"

    def weight(self, event: CanonicalEvent) -> float:
        return 1.0 if event.is_open_violation else 0.0


DEFAULT_CLASS_WEIGHTS: Dict[Severity, float] = {
    Severity.LOW: 0.5,
    Severity.MEDIUM: 1.0,
    Severity.HIGH: 1.5,
    Severity.CRITICAL: 2.0,
}


class ClassWeightedSeverityPolicy(SeverityPolicy):
    name = "class_weighted"

    def __init__(self, weights: Optional[Dict[Severity, float]] = None):
        self._weights = dict(DEFAULT_CLASS_WEIGHTS)
        if weights:
            self._weights.update(weights)

    def weight(self, event: CanonicalEvent) -> float:
        if not event.is_open_violation:
            return 0.0
        return self._weights.get(event.severity, 1.0)


def severity_policy_from_env() -> SeverityPolicy:
    raw = os.getenv("SEVERITY_POLICY", "flat").strip().lower()
    if raw == ClassWeightedSeverityPolicy.name:
        return ClassWeightedSeverityPolicy()
    if raw != FlatSeverityPolicy.name:
        logger.warning("SEVERITY_POLICY invalid value=%s, using flat", raw)
    return FlatSeverityPolicy()
