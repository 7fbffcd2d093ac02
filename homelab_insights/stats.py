"""Statistical kernel shared by all analyzers

Pure functions only. Degenerate input (empty series, zero variance, zero
denominator) returns 0 instead of raising or producing NaN/Infinity.
"""

import math
from typing import Iterable, Sequence, Tuple

SEVERITY_ORDER = ("info", "low", "medium", "high", "critical")


def mean(xs: Sequence[float]) -> float:
    """Arithmetic mean, 0 for an empty series"""
    if not xs:
        return 0.0
    return sum(xs) / len(xs)


def stddev(xs: Sequence[float]) -> float:
    """Population standard deviation: sqrt(sum((x - mean)^2) / n)"""
    if not xs:
        return 0.0
    m = mean(xs)
    variance = sum((x - m) ** 2 for x in xs) / len(xs)
    return math.sqrt(variance)


def zscore(x: float, mu: float, sigma: float) -> float:
    """Number of standard deviations x lies from mu; 0 when sigma is 0"""
    if sigma == 0:
        return 0.0
    return (x - mu) / sigma


def linear_slope(points: Sequence[Tuple[float, float]]) -> float:
    """
    Ordinary least squares slope of (x, y) points.

    slope = (n*Sxy - Sx*Sy) / (n*Sxx - Sx^2)

    Returns 0 for fewer than two points or when every x is identical.
    """
    n = len(points)
    if n < 2:
        return 0.0

    sum_x = sum(p[0] for p in points)
    sum_y = sum(p[1] for p in points)
    sum_xy = sum(p[0] * p[1] for p in points)
    sum_x2 = sum(p[0] * p[0] for p in points)

    denominator = n * sum_x2 - sum_x * sum_x
    if denominator == 0:
        return 0.0

    return (n * sum_xy - sum_x * sum_y) / denominator


def indexed_slope(values: Sequence[float]) -> float:
    """Slope of values against their position in the series"""
    return linear_slope([(i, v) for i, v in enumerate(values)])


def deviation_percent(current: float, expected: float) -> float:
    """Absolute deviation of current from expected in percent; 0 when expected is 0"""
    if expected == 0:
        return 0.0
    return abs(current - expected) / abs(expected) * 100


def max_severity(severities: Iterable[str]) -> str:
    """Highest severity in the iterable, 'info' when empty"""
    highest = 0
    for severity in severities:
        highest = max(highest, SEVERITY_ORDER.index(severity))
    return SEVERITY_ORDER[highest]


def severity_rank(severity: str) -> int:
    """Numeric rank of a severity, higher is more severe"""
    return SEVERITY_ORDER.index(severity)
