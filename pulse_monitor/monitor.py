"""
Per-frame orchestrator.

``PulseMonitor.process_frame`` drives the whole chain for one
:class:`FrameSample`:

    presence → conditioner → peak detector → BPM/RR → arrhythmia → quality

Everything runs synchronously in the caller's thread; the monitor holds no
timers or background work, so replaying a recorded sample sequence yields
exactly the same outputs.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import replace
from typing import Deque, Iterable, Iterator, List, Optional

from pulse_monitor.arrhythmia import ArrhythmiaDetector
from pulse_monitor.bpm_estimator import BPMEstimator
from pulse_monitor.config import DEFAULT_CONFIG, PulseMonitorConfig
from pulse_monitor.finger_detector import FingerPresenceDetector, is_valid_sample
from pulse_monitor.models import (
    FilteredSample,
    FrameSample,
    HeartBeatResult,
    MonitorResult,
    Peak,
)
from pulse_monitor.peak_detector import PeakDetector, PeakHistory
from pulse_monitor.signal_conditioner import SignalConditioner
from pulse_monitor.signal_quality import SignalQualityScorer

logger = logging.getLogger(__name__)

_BASE_CONFIDENCE = 0.6


class PulseMonitor:
    """
    Owns one instance of every pipeline component.

    Parameters
    ----------
    config:
        Shared threshold set handed to every component.
    """

    def __init__(self, config: PulseMonitorConfig | None = None) -> None:
        self.config = config or DEFAULT_CONFIG
        cfg = self.config

        self.presence = FingerPresenceDetector(cfg)
        self.conditioner = SignalConditioner(cfg)
        self.peak_detector = PeakDetector(cfg)
        self.bpm_estimator = BPMEstimator(cfg)
        self.quality = SignalQualityScorer(cfg)
        self.arrhythmia = ArrhythmiaDetector(cfg)

        self.peaks = PeakHistory(cfg.peak_history_size, cfg.peak_window_ms)
        self._filtered: Deque[FilteredSample] = deque(maxlen=cfg.filtered_buffer_size)
        self._last_quality: int = 0
        self._frames: int = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def process_frame(self, sample: FrameSample) -> MonitorResult:
        """Run the full pipeline on one frame sample."""
        self._frames += 1
        was_present = self.presence.is_present
        presence = self.presence.update(sample)

        if not presence.present:
            if was_present:
                logger.info("Finger removed at t=%d – resetting heart-rate chain",
                            sample.timestamp)
                self._reset_chain()
            self._last_quality = 0
            return MonitorResult(presence, HeartBeatResult.empty(), self.arrhythmia.status())

        if not is_valid_sample(sample):
            # Corrupt frame inside the loss grace period: hold the last reading.
            return MonitorResult(presence, self._held_result(), self.arrhythmia.status())

        conditioned = self.conditioner.process(sample.red_mean)
        self.quality.track_strength(conditioned.normalized)

        if not self.conditioner.ready:
            self._filtered.append(FilteredSample(sample.timestamp, conditioned.filtered))
            heartbeat = HeartBeatResult.empty(conditioned.filtered)
            return MonitorResult(presence, heartbeat, self.arrhythmia.status())

        decision = self.peak_detector.detect(
            conditioned.normalized,
            conditioned.derivative,
            sample.timestamp,
            self.bpm_estimator.last_peak_time,
        )

        peak: Optional[Peak] = None
        is_arrhythmia = False
        if decision.is_peak:
            peak = Peak(sample.timestamp, decision.value, decision.confidence)
            rr = self.bpm_estimator.add_peak(sample.timestamp)
            self.quality.record_peak(decision.value)
            if rr is not None:
                count_before = self.arrhythmia.count
                self.arrhythmia.add_interval(
                    rr, sample.timestamp, self.quality.signal_strength()
                )
                is_arrhythmia = self.arrhythmia.count > count_before
            if is_arrhythmia:
                peak = replace(peak, is_arrhythmia=True)
            self.peaks.append(peak)
        else:
            self.peaks.prune(sample.timestamp)

        self._filtered.append(
            FilteredSample(sample.timestamp, conditioned.filtered, is_arrhythmia)
        )

        quality = self.quality.score(
            self.bpm_estimator.bpm_history, self.bpm_estimator.rr_intervals
        )
        self._last_quality = quality

        if decision.is_peak:
            confidence = decision.confidence
        else:
            confidence = self.quality.adjust_confidence(_BASE_CONFIDENCE)

        heartbeat = HeartBeatResult(
            bpm=self.bpm_estimator.bpm,
            confidence=confidence,
            is_peak=decision.is_peak,
            filtered_value=conditioned.filtered,
            signal_quality=quality,
            rr_intervals=self.bpm_estimator.rr_intervals,
            last_peak_time=self.bpm_estimator.last_peak_time,
        )
        return MonitorResult(presence, heartbeat, self.arrhythmia.status(), peak)

    def stream(self, samples: Iterable[FrameSample]) -> Iterator[MonitorResult]:
        """Yield one result per sample; stop iterating to cancel."""
        for sample in samples:
            yield self.process_frame(sample)

    def final_bpm(self) -> int:
        return self.bpm_estimator.final_bpm()

    @property
    def filtered_samples(self) -> List[FilteredSample]:
        """Snapshot of the filtered-value ring buffer (oldest first)."""
        return list(self._filtered)

    @property
    def frame_count(self) -> int:
        return self._frames

    def reset(self) -> None:
        """Reset every component, including presence and the arrhythmia baseline."""
        self.presence.reset()
        self.arrhythmia.reset()
        self._reset_chain()
        self._filtered.clear()
        self._frames = 0

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _held_result(self) -> HeartBeatResult:
        filtered = self._filtered[-1].value if self._filtered else 0.0
        return HeartBeatResult(
            bpm=self.bpm_estimator.bpm,
            confidence=0.0,
            is_peak=False,
            filtered_value=filtered,
            signal_quality=self._last_quality,
            rr_intervals=self.bpm_estimator.rr_intervals,
            last_peak_time=self.bpm_estimator.last_peak_time,
        )

    def _reset_chain(self) -> None:
        self.conditioner.reset()
        self.peak_detector.reset()
        self.bpm_estimator.reset()
        self.quality.reset()
        self.peaks.clear()
        self._last_quality = 0
