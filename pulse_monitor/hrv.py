"""
Heart-rate-variability statistics over a window of RR intervals (ms).

All functions accept any sequence of intervals and return ``0.0`` when the
window is too short for the statistic to be defined.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np
from scipy.stats import entropy


def rmssd(rr: Sequence[float]) -> float:
    """Root mean square of successive differences."""
    values = np.asarray(rr, dtype=np.float64)
    if values.size < 2:
        return 0.0
    return float(np.sqrt(np.mean(np.diff(values) ** 2)))


def sdnn(rr: Sequence[float]) -> float:
    """Population standard deviation of the intervals."""
    values = np.asarray(rr, dtype=np.float64)
    if values.size < 2:
        return 0.0
    return float(np.std(values))


def coefficient_of_variation(rr: Sequence[float]) -> float:
    values = np.asarray(rr, dtype=np.float64)
    if values.size < 2:
        return 0.0
    mean = float(values.mean())
    return float(values.std()) / mean if mean > 0 else 0.0


def rr_variation(rr: Sequence[float], baseline_mean: float) -> float:
    """Mean absolute deviation from the baseline mean, relative to it."""
    values = np.asarray(rr, dtype=np.float64)
    if values.size == 0 or baseline_mean <= 0:
        return 0.0
    return float(np.mean(np.abs(values - baseline_mean)) / baseline_mean)


def shannon_entropy(rr: Sequence[float], bin_ms: float = 25.0) -> float:
    """
    Shannon entropy (bits) of the interval histogram.

    Intervals are bucketed into ``bin_ms`` wide bins; a perfectly regular
    rhythm lands in one bin and scores 0.
    """
    values = np.asarray(rr, dtype=np.float64)
    if values.size == 0:
        return 0.0
    bins = np.floor(values / bin_ms).astype(np.int64)
    _, counts = np.unique(bins, return_counts=True)
    return float(entropy(counts, base=2))


def pnn50(rr: Sequence[float]) -> float:
    """Fraction of successive differences larger than 50 ms."""
    values = np.asarray(rr, dtype=np.float64)
    if values.size < 2:
        return 0.0
    return float(np.mean(np.abs(np.diff(values)) > 50.0))


@dataclass(frozen=True)
class HRVMetrics:
    rmssd: float
    sdnn: float
    coefficient_of_variation: float
    rr_variation: float
    shannon_entropy: float
    pnn50: float

    @classmethod
    def from_intervals(
        cls,
        rr: Sequence[float],
        baseline_mean: float,
        bin_ms: float = 25.0,
    ) -> "HRVMetrics":
        return cls(
            rmssd=rmssd(rr),
            sdnn=sdnn(rr),
            coefficient_of_variation=coefficient_of_variation(rr),
            rr_variation=rr_variation(rr, baseline_mean),
            shannon_entropy=shannon_entropy(rr, bin_ms),
            pnn50=pnn50(rr),
        )
