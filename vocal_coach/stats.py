"""
Small numeric helpers shared by the analysis modules.

Every helper is total: empty or mismatched inputs produce 0 instead of
raising, so scores built on top of them never turn into NaN.
"""

import math
from typing import Sequence

import numpy as np


def clamp(value: float, lo: float = 0.0, hi: float = 100.0) -> float:
    return max(lo, min(hi, value))


def round_half_up(value: float) -> int:
    """Round to the nearest integer with .5 always going up (2.5 -> 3, -2.5 -> -2)."""
    if not math.isfinite(value):
        return 0
    return int(math.floor(value + 0.5))


def clamp_score(value: float) -> int:
    """Round a raw score and clamp it to 0..100."""
    return int(clamp(round_half_up(value), 0, 100))


def mean(values: Sequence[float]) -> float:
    if len(values) == 0:
        return 0.0
    return float(np.mean(np.asarray(values, dtype=np.float64)))


def median(values: Sequence[float]) -> float:
    if len(values) == 0:
        return 0.0
    return float(np.median(np.asarray(values, dtype=np.float64)))


def stddev(values: Sequence[float]) -> float:
    """Population standard deviation."""
    if len(values) == 0:
        return 0.0
    return float(np.std(np.asarray(values, dtype=np.float64)))


def percentile(values: Sequence[float], p: float) -> float:
    """Nearest-rank percentile: sort, then index by round(p * (n - 1))."""
    if len(values) == 0:
        return 0.0
    ordered = sorted(float(v) for v in values)
    idx = int(clamp(round_half_up(p * (len(ordered) - 1)), 0, len(ordered) - 1))
    return ordered[idx]


def linear_slope(xs: Sequence[float], ys: Sequence[float]) -> float:
    """Least-squares slope of ys against xs; 0 for mismatched or degenerate input."""
    n = len(xs)
    if n == 0 or n != len(ys):
        return 0.0
    x = np.asarray(xs, dtype=np.float64)
    y = np.asarray(ys, dtype=np.float64)
    x_mean = x.mean()
    denom = float(np.sum((x - x_mean) ** 2))
    if denom == 0:
        return 0.0
    return float(np.sum((x - x_mean) * (y - y.mean())) / denom)


def rms(buffer) -> float:
    buf = np.asarray(buffer, dtype=np.float64)
    if buf.size == 0:
        return 0.0
    return float(math.sqrt(np.sum(buf * buf) / buf.size))


def zero_crossing_rate(buffer) -> float:
    """Fraction of adjacent sample pairs whose sign differs."""
    buf = np.asarray(buffer, dtype=np.float64)
    if buf.size < 2:
        return 0.0
    signs = buf >= 0
    crossings = int(np.count_nonzero(signs[1:] != signs[:-1]))
    return crossings / max(1, buf.size - 1)
