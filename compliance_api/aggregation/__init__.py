"""Agregación: buckets mensuales, score, umbrales y tendencia."""

from .thresholds import ThresholdTable
from .trend import compute_trend
from .aggregator import (
    AggregationResult,
    Aggregator,
    build_buckets,
    compute_score,
    window_months,
)

__all__ = [
    "ThresholdTable",
    "compute_trend",
    "AggregationResult",
    "Aggregator",
    "build_buckets",
    "compute_score",
    "window_months",
]
