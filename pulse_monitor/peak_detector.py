"""
Beat detection on the conditioned PPG signal.

Three independent sub-detectors vote on every frame:

* derivative: the slope has turned sharply negative while the value is
  still above the signal threshold (the downslope right after systole);
* amplitude: the value exceeds a multiple of the signal threshold;
* pattern: the last three values rise strictly and then fall.

The vote count sets the confidence.  An accepted candidate still has to
pass a confirmation step (the trailing buffer must hold an interior local
maximum), the refractory window and the post-peak lock.  All timing is
done against frame timestamps, so the detector is deterministic for a
given input sequence.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, replace
from typing import Deque, List, Optional, Tuple

import numpy as np

from pulse_monitor.config import DEFAULT_CONFIG, PulseMonitorConfig
from pulse_monitor.models import AdaptiveThresholds, Peak

logger = logging.getLogger(__name__)

_BASE_CONFIDENCE = 0.5
_DERIVATIVE_VOTE = 0.3
_AMPLITUDE_VOTE = 0.2
_PATTERN_VOTE = 0.25


@dataclass(frozen=True)
class PeakDecision:
    is_peak: bool
    confidence: float
    # Height of the confirmed maximum (0.0 unless is_peak).
    value: float = 0.0


def _clamp(value: float, bounds: Tuple[float, float]) -> float:
    low, high = bounds
    return max(low, min(high, value))


class PeakDetector:
    """
    Voting peak detector with adaptive thresholds.

    Parameters
    ----------
    config:
        Pipeline constants: initial thresholds and their bounds, timing
        windows and tuning parameters.
    """

    def __init__(self, config: PulseMonitorConfig | None = None) -> None:
        self.config = config or DEFAULT_CONFIG
        cfg = self.config

        self._thresholds = self._initial_thresholds()
        self._trail: Deque[float] = deque(maxlen=cfg.confirmation_window)
        self._latched: bool = False
        self._unlock_at: Optional[int] = None
        self._last_confirmed: Optional[int] = None

        self._amplitudes: Deque[float] = deque(maxlen=cfg.tuning_window)
        self._derivatives: Deque[float] = deque(maxlen=cfg.tuning_window)
        self._confidences: Deque[float] = deque(maxlen=cfg.tuning_window)
        self._peaks_since_tuning: int = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def detect(
        self,
        value: float,
        derivative: float,
        timestamp: int,
        last_peak_time: Optional[int] = None,
    ) -> PeakDecision:
        """
        Feed one normalized sample and report whether it confirms a beat.

        Parameters
        ----------
        value:
            Baseline-removed filtered value.
        derivative:
            Discrete derivative of the filtered signal at this frame.
        timestamp:
            Frame time in milliseconds.
        last_peak_time:
            Timestamp of the last accepted beat, when the caller tracks it.
            Defaults to the detector's own last confirmation.
        """
        self._trail.append(value)

        derivative_vote, amplitude_vote, pattern_vote = self._votes(value, derivative)
        if not (derivative_vote or amplitude_vote or pattern_vote):
            self._latched = False
            return PeakDecision(False, 0.0)

        confidence = _BASE_CONFIDENCE
        if derivative_vote:
            confidence += _DERIVATIVE_VOTE
        if amplitude_vote:
            confidence += _AMPLITUDE_VOTE
        if pattern_vote:
            confidence += _PATTERN_VOTE
        confidence = min(1.0, confidence)

        if self._latched:
            return PeakDecision(False, confidence)
        if confidence < self._thresholds.min_confidence:
            return PeakDecision(False, confidence)

        if self.is_locked(timestamp):
            logger.debug("Peak candidate at t=%d blocked by lock (until %d)",
                         timestamp, self._unlock_at)
            return PeakDecision(False, confidence)

        reference = last_peak_time if last_peak_time is not None else self._last_confirmed
        if reference is not None and timestamp - reference < self.config.min_peak_distance_ms:
            logger.debug("Peak candidate at t=%d inside refractory window (%d ms)",
                         timestamp, timestamp - reference)
            return PeakDecision(False, confidence)

        height = self._interior_maximum()
        if height is None:
            return PeakDecision(False, confidence)

        self._latched = True
        self._unlock_at = timestamp + self.config.peak_lock_timeout_ms
        self._last_confirmed = timestamp
        self._record_peak(height, derivative, confidence)
        logger.debug("Peak confirmed t=%d height=%.3f confidence=%.2f",
                     timestamp, height, confidence)
        return PeakDecision(True, confidence, height)

    def is_locked(self, timestamp: int) -> bool:
        return self._unlock_at is not None and timestamp < self._unlock_at

    @property
    def thresholds(self) -> AdaptiveThresholds:
        return self._thresholds

    @property
    def last_confirmed(self) -> Optional[int]:
        return self._last_confirmed

    def reset(self) -> None:
        """Drop all detection state and restore the initial thresholds."""
        self._thresholds = self._initial_thresholds()
        self._trail.clear()
        self._latched = False
        self._unlock_at = None
        self._last_confirmed = None
        self._amplitudes.clear()
        self._derivatives.clear()
        self._confidences.clear()
        self._peaks_since_tuning = 0

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _initial_thresholds(self) -> AdaptiveThresholds:
        cfg = self.config
        return AdaptiveThresholds(
            signal_threshold=cfg.signal_threshold,
            derivative_threshold=cfg.derivative_threshold,
            min_confidence=cfg.min_confidence,
        )

    def _votes(self, value: float, derivative: float) -> Tuple[bool, bool, bool]:
        thr = self._thresholds
        derivative_vote = (derivative < thr.derivative_threshold
                           and value > thr.signal_threshold)
        amplitude_vote = value > thr.signal_threshold * self.config.amplitude_factor

        pattern_vote = False
        if len(self._trail) >= 3:
            before, middle, after = self._trail[-3], self._trail[-2], self._trail[-1]
            pattern_vote = (middle > before and middle > after
                            and middle > thr.signal_threshold)
        return derivative_vote, amplitude_vote, pattern_vote

    def _interior_maximum(self) -> Optional[float]:
        """Maximum of the trailing buffer when it is neither oldest nor newest."""
        if len(self._trail) < 3:
            return None
        trail = np.asarray(self._trail, dtype=np.float64)
        k = int(np.argmax(trail))
        if 0 < k < len(trail) - 1 and trail[k] > self._thresholds.signal_threshold:
            return float(trail[k])
        return None

    def _record_peak(self, value: float, derivative: float, confidence: float) -> None:
        self._amplitudes.append(value)
        self._derivatives.append(derivative)
        self._confidences.append(confidence)
        self._peaks_since_tuning += 1

        cfg = self.config
        if (len(self._amplitudes) >= cfg.tuning_interval
                and self._peaks_since_tuning >= cfg.tuning_interval):
            self._tune()
            self._peaks_since_tuning = 0

    def _tune(self) -> None:
        cfg = self.config
        rate = cfg.tuning_learning_rate
        thr = self._thresholds

        target_signal = _clamp(float(np.mean(self._amplitudes)) * 0.35,
                               cfg.signal_threshold_bounds)
        target_derivative = _clamp(float(np.mean(self._derivatives)) * 1.1,
                                   cfg.derivative_threshold_bounds)
        target_confidence = _clamp(float(np.mean(self._confidences)) * 0.8,
                                   cfg.min_confidence_bounds)

        def blend(current: float, target: float, bounds: Tuple[float, float]) -> float:
            return _clamp(current * (1.0 - rate) + target * rate, bounds)

        self._thresholds = replace(
            thr,
            signal_threshold=blend(thr.signal_threshold, target_signal,
                                   cfg.signal_threshold_bounds),
            derivative_threshold=blend(thr.derivative_threshold, target_derivative,
                                       cfg.derivative_threshold_bounds),
            min_confidence=blend(thr.min_confidence, target_confidence,
                                 cfg.min_confidence_bounds),
        )
        logger.info(
            "Adaptive tuning: signal=%.4f derivative=%.4f min_confidence=%.3f (peaks=%d)",
            self._thresholds.signal_threshold,
            self._thresholds.derivative_threshold,
            self._thresholds.min_confidence,
            len(self._amplitudes),
        )


class PeakHistory:
    """
    Confirmed peaks, bounded by count and by a rolling time window.

    Parameters
    ----------
    max_peaks:
        Maximum number of peaks retained (oldest evicted first).
    window_ms:
        Peaks older than ``window_ms`` before the newest timestamp seen are
        pruned.
    """

    def __init__(self, max_peaks: int = 25, window_ms: int = 2900) -> None:
        self.window_ms = window_ms
        self._peaks: Deque[Peak] = deque(maxlen=max_peaks)

    def append(self, peak: Peak) -> None:
        if self._peaks and peak.timestamp < self._peaks[-1].timestamp:
            raise ValueError("Peaks must be appended in time order.")
        self._peaks.append(peak)
        self.prune(peak.timestamp)

    def prune(self, now: int) -> None:
        while self._peaks and now - self._peaks[0].timestamp > self.window_ms:
            self._peaks.popleft()

    def snapshot(self) -> List[Peak]:
        return list(self._peaks)

    def clear(self) -> None:
        self._peaks.clear()

    def __len__(self) -> int:
        return len(self._peaks)
