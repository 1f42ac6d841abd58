"""Normalización de registros crudos a eventos canónicos."""

from .normalizer import NormalizationResult, Normalizer, month_key, parse_date
from .severity import (
    ClassWeightedSeverityPolicy,
    FlatSeverityPolicy,
    SeverityPolicy,
    severity_policy_from_env,
)

__all__ = [
    "NormalizationResult",
    "Normalizer",
    "month_key",
    "parse_date",
    "ClassWeightedSeverityPolicy",
    "FlatSeverityPolicy",
    "SeverityPolicy",
    "severity_policy_from_env",
]
