"""
Small numeric helpers shared by the metrics processor and the DORA engine.

Percentiles use a nearest-rank rule: the value at index
``ceil(p / 100 * n) - 1`` of the sorted sample, clamped to the sample.
"""

from __future__ import annotations

import math
from typing import Sequence


def mean(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    return float(sum(values)) / float(len(values))


def rank_index(percentile: float, size: int) -> int:
    """
    Nearest-rank index into a sorted sample of ``size`` items.

    >>> rank_index(95, 5)
    4
    >>> rank_index(50, 5)
    2
    """
    if size <= 0:
        raise ValueError("rank_index requires a non-empty sample")
    index = math.ceil(percentile / 100.0 * size) - 1
    return min(max(index, 0), size - 1)


def percentile(values: Sequence[float], p: float) -> float:
    if not values:
        return 0.0
    ordered = sorted(values)
    return float(ordered[rank_index(p, len(ordered))])


def median(values: Sequence[float]) -> float:
    """Median by the nearest-rank rule; never interpolates."""
    return percentile(values, 50)


def stddev(values: Sequence[float]) -> float:
    """Sample standard deviation (n - 1); 0 for fewer than two values."""
    if len(values) < 2:
        return 0.0
    avg = mean(values)
    variance = sum((v - avg) ** 2 for v in values) / (len(values) - 1)
    return math.sqrt(variance)


def percentage_change(previous: float, current: float) -> float:
    """Percent change from ``previous`` to ``current``; 0 when previous is 0."""
    if previous == 0:
        return 0.0
    return (current - previous) / previous * 100.0


def growth_rate(values: Sequence[float]) -> float:
    """Percent change from the first to the last value of a series."""
    if len(values) < 2:
        return 0.0
    return percentage_change(values[0], values[-1])
