"""
Composite 0–100 signal quality score.

Three terms are summed:

* amplitude (0–40): how strong the pulsatile component is;
* BPM consistency (0–30): penalises a wandering heart-rate history;
* RR regularity (0–30): penalises scattered RR intervals.

Each term is clamped to its own range before summing.  The arrhythmia gate
uses :meth:`SignalQualityScorer.signal_strength` instead, which keeps only
the amplitude term: an irregular rhythm must not disqualify itself.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Deque, Sequence

import numpy as np

from pulse_monitor.config import DEFAULT_CONFIG, PulseMonitorConfig

logger = logging.getLogger(__name__)

_RECENT = 5
_STRENGTH_HISTORY = 40
_AMPLITUDE_HISTORY = 8
_TERM_MAX = 30.0
_AMPLITUDE_MAX = 40.0


def _mean_abs_deviation(values: Sequence[float]) -> float:
    arr = np.asarray(values, dtype=np.float64)
    return float(np.mean(np.abs(arr - arr.mean())))


def _clamp_term(value: float) -> float:
    return max(0.0, min(_TERM_MAX, value))


def rr_regularity(rr: Sequence[int]) -> float:
    """RR-regularity term: 30 minus MAD/5 of the last five intervals."""
    if len(rr) < 3:
        return 10.0
    return _clamp_term(30.0 - _mean_abs_deviation(list(rr)[-_RECENT:]) / 5.0)


def bpm_consistency(bpm_history: Sequence[float]) -> float:
    if len(bpm_history) < 3:
        return 0.0
    return _clamp_term(30.0 - 3.0 * _mean_abs_deviation(list(bpm_history)[-_RECENT:]))


class SignalQualityScorer:
    """
    Tracks recent signal strength and peak amplitudes.

    Parameters
    ----------
    config:
        Pipeline constants; ``quality_min_history``, ``amplitude_scale``,
        ``weak_strength`` and ``strong_strength`` are used here.
    """

    def __init__(self, config: PulseMonitorConfig | None = None) -> None:
        self.config = config or DEFAULT_CONFIG
        self._strength: Deque[float] = deque(maxlen=_STRENGTH_HISTORY)
        self._amplitudes: Deque[float] = deque(maxlen=_AMPLITUDE_HISTORY)

    def track_strength(self, value: float) -> None:
        """Record the magnitude of one normalized sample."""
        self._strength.append(abs(float(value)))

    def record_peak(self, amplitude: float) -> None:
        self._amplitudes.append(abs(float(amplitude)))

    def score(self, bpm_history: Sequence[float], rr_intervals: Sequence[int]) -> int:
        """Quality in ``[0, 100]``; 0 until enough strength samples exist."""
        if len(self._strength) < self.config.quality_min_history:
            return 0

        amplitude_term = self._amplitude_term()
        total = amplitude_term + bpm_consistency(bpm_history) + rr_regularity(rr_intervals)
        quality = int(round(max(0.0, min(100.0, total))))
        logger.debug("quality=%d (amplitude=%.1f)", quality, amplitude_term)
        return quality

    def signal_strength(self) -> int:
        """
        Amplitude-only trust score in ``[0, 100]``.

        Same history requirement as :meth:`score`, but the amplitude term is
        rescaled to the full range and the rhythm terms are left out.
        """
        if len(self._strength) < self.config.quality_min_history:
            return 0
        return int(round(self._amplitude_term() * 100.0 / _AMPLITUDE_MAX))

    def adjust_confidence(self, confidence: float) -> float:
        """Scale a non-peak confidence by the recent average signal strength."""
        if not self._strength:
            return confidence
        average = float(np.mean(list(self._strength)[-_RECENT:]))
        if average < self.config.weak_strength:
            confidence *= 0.7
        elif average > self.config.strong_strength:
            confidence *= 1.2
        return min(1.0, confidence)

    def reset(self) -> None:
        self._strength.clear()
        self._amplitudes.clear()

    def _amplitude_term(self) -> float:
        if self._amplitudes:
            amplitude = float(np.mean(self._amplitudes))
        else:
            amplitude = float(np.mean(list(self._strength)[-_RECENT:]))
        return min(_AMPLITUDE_MAX, amplitude * self.config.amplitude_scale)
