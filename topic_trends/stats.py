"""
Small numeric helpers shared by the normalizer, detector and correlator.

Population statistics throughout (divide by n, not n - 1): series are
treated as the whole population of buckets being analyzed.
"""

import statistics
from typing import Sequence, Tuple


def mean(values: Sequence[float]) -> float:
    """Arithmetic mean; 0.0 for an empty sequence."""
    if not values:
        return 0.0
    return statistics.fmean(values)


def mean_and_std(values: Sequence[float]) -> Tuple[float, float]:
    """Population mean and standard deviation."""
    if not values:
        return 0.0, 0.0
    mu = statistics.fmean(values)
    return mu, statistics.pstdev(values)


def linear_slope(values: Sequence[float]) -> float:
    """
    Ordinary least-squares slope of value against index.

    slope = (n*Sxy - Sx*Sy) / (n*Sxx - Sx^2). Returns 0.0 for fewer than
    two points.
    """
    n = len(values)
    if n < 2:
        return 0.0

    sum_x = n * (n - 1) / 2
    sum_y = sum(values)
    sum_xy = sum(i * v for i, v in enumerate(values))
    sum_xx = sum(i * i for i in range(n))

    denominator = n * sum_xx - sum_x * sum_x
    if denominator == 0:
        return 0.0
    return (n * sum_xy - sum_x * sum_y) / denominator


def autocorrelation(values: Sequence[float], lag: int) -> float:
    """
    r(lag) = sum((x[i]-mu)(x[i+lag]-mu)) / sum((x[i]-mu)^2).

    Returns 0.0 when the lag does not fit or the series has no variance.
    """
    n = len(values)
    if lag < 1 or n <= lag:
        return 0.0

    mu = sum(values) / n
    numerator = sum((values[i] - mu) * (values[i + lag] - mu) for i in range(n - lag))
    denominator = sum((v - mu) ** 2 for v in values)

    if denominator == 0:
        return 0.0
    return numerator / denominator
