"""
Streaming conditioner for the raw PPG intensity.

Algorithm
---------
1. Median filter over a 3-sample window clips single-frame impulses
   (specular flashes, dropped pixels).
2. A short moving average removes residual quantisation noise.
3. Adaptive boost: the gain is chosen from the amplitude range of the
   last 10 raw samples.  Near-flat signals receive a large gain, strong
   signals none.  The gain is applied around the local mean so it never
   shifts the DC level.
4. An exponential moving average gives the final smoothed value.

A slow baseline EMA is subtracted from the smoothed value to give the
zero-centred ``normalized`` signal used by the peak detector, and the last
three smoothed values provide a central derivative.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Deque, Optional

import numpy as np

from pulse_monitor.config import DEFAULT_CONFIG, PulseMonitorConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConditionedSample:
    filtered: float
    normalized: float
    derivative: float


class SignalConditioner:
    """
    Median → moving average → adaptive boost → EMA.

    Parameters
    ----------
    config:
        Pipeline constants; ``median_window``, ``moving_average_window``,
        ``boost_window``, ``boost_factor``, ``ema_alpha`` and
        ``baseline_factor`` are used here.
    """

    def __init__(self, config: PulseMonitorConfig | None = None) -> None:
        self.config = config or DEFAULT_CONFIG
        cfg = self.config

        self._raw: Deque[float] = deque(maxlen=cfg.boost_window)
        self._median: Deque[float] = deque(maxlen=cfg.median_window)
        self._average: Deque[float] = deque(maxlen=cfg.moving_average_window)
        self._averaged: Deque[float] = deque(maxlen=cfg.boost_window)
        self._recent: Deque[float] = deque(maxlen=3)

        self._ema: Optional[float] = None
        self._baseline: Optional[float] = None
        self._gain: float = 1.0
        self._count: int = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def process(self, raw: float) -> ConditionedSample:
        """Condition one raw intensity sample and return the filtered triple."""
        raw = float(raw)
        self._raw.append(raw)

        self._median.append(raw)
        median = float(np.median(self._median))

        self._average.append(median)
        averaged = float(np.mean(self._average))
        self._averaged.append(averaged)

        boosted = self._boost(averaged)

        if self._ema is None:
            self._ema = boosted
        else:
            alpha = self.config.ema_alpha
            self._ema = alpha * boosted + (1.0 - alpha) * self._ema
        filtered = self._ema

        if self._baseline is None:
            self._baseline = filtered
        else:
            factor = self.config.baseline_factor
            self._baseline = factor * self._baseline + (1.0 - factor) * filtered

        self._recent.append(filtered)
        self._count += 1

        return ConditionedSample(
            filtered=filtered,
            normalized=filtered - self._baseline,
            derivative=self.derivative,
        )

    @property
    def derivative(self) -> float:
        """Central difference over the last three filtered values."""
        if len(self._recent) == 3:
            return (self._recent[2] - self._recent[0]) / 2.0
        if len(self._recent) == 2:
            return self._recent[1] - self._recent[0]
        return 0.0

    @property
    def gain(self) -> float:
        """Gain applied to the most recent sample."""
        return self._gain

    @property
    def ready(self) -> bool:
        """True once enough samples were seen for peak detection."""
        return self._count >= self.config.min_samples

    @property
    def sample_count(self) -> int:
        return self._count

    def reset(self) -> None:
        """Clear all filter state."""
        self._raw.clear()
        self._median.clear()
        self._average.clear()
        self._averaged.clear()
        self._recent.clear()
        self._ema = None
        self._baseline = None
        self._gain = 1.0
        self._count = 0

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _boost(self, value: float) -> float:
        if len(self._raw) < self._raw.maxlen:
            self._gain = 1.0
            return value

        gain = self.gain_for_range(max(self._raw) - min(self._raw))
        if gain != self._gain:
            logger.debug("Boost gain %.2f -> %.2f", self._gain, gain)
        self._gain = gain
        local_mean = float(np.mean(self._averaged))
        return local_mean + (value - local_mean) * self._gain

    def gain_for_range(self, signal_range: float) -> float:
        """Map the recent raw amplitude range to a boost gain."""
        cfg = self.config
        if signal_range < cfg.weak_range:
            return cfg.boost_factor * 2.1
        if signal_range < cfg.moderate_range:
            return cfg.boost_factor * 1.5
        if signal_range > cfg.strong_range:
            return 1.0
        return cfg.boost_factor
