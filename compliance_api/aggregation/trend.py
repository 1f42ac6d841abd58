"""Tendencia del portafolio: función pura sobre los buckets actuales."""

from __future__ import annotations

from collections import defaultdict
from typing import Dict, Iterable, List

from ..core.domain.snapshot import MonthlyBucket, TrendPoint


def compute_trend(buckets: Iterable[MonthlyBucket]) -> List[TrendPoint]:
    """Agrupa por mes y suma conteos de todos los edificios.

    Returns:
        TrendPoints ordenados ascendentemente por mes
    """
    totals: Dict[str, List[int]] = defaultdict(lambda: [0, 0, 0])
    for bucket in buckets:
        row = totals[bucket.month]
        row[0] += bucket.violation_count
        row[1] += bucket.permit_count
        row[2] += bucket.dsny_count

    return [
        TrendPoint(
            month=month,
            total_across_portfolio=violations + permits + dsny,
            violations=violations,
            permits=permits,
            dsny=dsny,
        )
        for month, (violations, permits, dsny) in sorted(totals.items())
    ]
