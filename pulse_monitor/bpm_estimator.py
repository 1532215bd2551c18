"""
Heart-rate estimation from confirmed peak timestamps.

Each new peak yields an RR interval (the gap to the previous accepted peak)
and an instantaneous BPM ``60000 / RR``.  Values outside the physiological
bands are dropped instead of clamped, so the histories only ever contain
plausible beats.  The displayed BPM is an EMA over the median of the
instantaneous history; the session summary uses a trimmed mean.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Deque, Optional, Tuple

import numpy as np
from scipy.stats import trim_mean

from pulse_monitor.config import DEFAULT_CONFIG, PulseMonitorConfig

logger = logging.getLogger(__name__)

# Values needed before the final BPM switches to the trimmed mean.
_MIN_FINAL_SAMPLES = 5


class BPMEstimator:
    """
    RR interval and BPM bookkeeping.

    Parameters
    ----------
    config:
        Pipeline constants; ``rr_min_ms``/``rr_max_ms``, ``min_bpm``/
        ``max_bpm``, the history sizes, ``bpm_alpha`` and
        ``final_trim_fraction`` are used here.
    """

    def __init__(self, config: PulseMonitorConfig | None = None) -> None:
        self.config = config or DEFAULT_CONFIG
        self._rr: Deque[int] = deque(maxlen=self.config.rr_history_size)
        self._bpm: Deque[float] = deque(maxlen=self.config.bpm_history_size)
        self._smoothed: Optional[float] = None
        self._last_peak_time: Optional[int] = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def add_peak(self, timestamp: int) -> Optional[int]:
        """
        Register a confirmed peak.

        Returns the RR interval in milliseconds when both the interval and
        its instantaneous BPM lie inside their bands, otherwise ``None``.  The peak always becomes the new
        reference for the next interval.
        """
        previous = self._last_peak_time
        self._last_peak_time = timestamp
        if previous is None:
            return None

        delta = int(timestamp - previous)
        if delta <= 0:
            return None

        cfg = self.config
        instant = 60000.0 / delta
        # Both bands must hold so the RR and BPM histories stay in step.
        if not cfg.rr_min_ms <= delta <= cfg.rr_max_ms:
            logger.debug("RR interval %d ms rejected", delta)
            return None
        if not cfg.min_bpm <= instant <= cfg.max_bpm:
            logger.debug("Instantaneous BPM %.1f outside [%g, %g]",
                         instant, cfg.min_bpm, cfg.max_bpm)
            return None

        self._rr.append(delta)
        self._bpm.append(instant)
        self._update_smoothed()
        return delta

    @property
    def bpm(self) -> int:
        """Smoothed BPM rounded to an integer, 0 before any estimate."""
        if self._smoothed is None:
            return 0
        return int(round(self._smoothed))

    def final_bpm(self) -> int:
        """Session BPM: trimmed mean of the history, smoothed value when short."""
        if len(self._bpm) < _MIN_FINAL_SAMPLES:
            return self.bpm
        value = float(trim_mean(np.asarray(self._bpm), self.config.final_trim_fraction))
        return int(round(value))

    @property
    def rr_intervals(self) -> Tuple[int, ...]:
        return tuple(self._rr)

    @property
    def bpm_history(self) -> Tuple[float, ...]:
        return tuple(self._bpm)

    @property
    def last_peak_time(self) -> Optional[int]:
        return self._last_peak_time

    def reset(self) -> None:
        self._rr.clear()
        self._bpm.clear()
        self._smoothed = None
        self._last_peak_time = None

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _update_smoothed(self) -> None:
        if self._smoothed is None:
            self._smoothed = self._bpm[-1]
            return
        target = float(np.median(self._bpm))
        alpha = self.config.bpm_alpha
        self._smoothed = alpha * target + (1.0 - alpha) * self._smoothed
