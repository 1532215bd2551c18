"""
Conservative arrhythmia detection on RR intervals.

The detector first learns a baseline rhythm (LEARNING), then scores every
full window of recent intervals against it (MONITORING).  A window only
counts as irregular when at least three of four independent HRV criteria
fire, and a confirmed event additionally needs:

  - a near-maximal composite score, raised further by a prevention score
    that grows with each event and decays during normal rhythm;
  - the cooldown since the previous event to have elapsed;
  - fewer than ``max_arrhythmias_per_minute`` events in the last 60 s;
  - repeated high-scoring windows in the short consistency buffer.

The event bookkeeping lives in the immutable :class:`ArrhythmiaState` and is
advanced by pure functions, so the rate-limit rules can be exercised without
a detector instance.
"""

from __future__ import annotations

import enum
import logging
from collections import deque
from dataclasses import dataclass, replace
from typing import Deque, List, Optional, Sequence, Tuple

import numpy as np
from scipy.stats import trimboth

from pulse_monitor.config import DEFAULT_CONFIG, PulseMonitorConfig
from pulse_monitor.hrv import HRVMetrics
from pulse_monitor.models import ArrhythmiaEvent, ArrhythmiaPhase, ArrhythmiaStatus

logger = logging.getLogger(__name__)

_MINUTE_MS = 60_000


class DetectorPhase(enum.Enum):
    LEARNING = "learning"
    MONITORING = "monitoring"


@dataclass(frozen=True)
class ArrhythmiaBaseline:
    mean_rr: float
    sd_rr: float
    samples: int


@dataclass(frozen=True)
class ArrhythmiaState:
    last_event_time: Optional[int] = None
    event_timestamps: Tuple[int, ...] = ()
    consecutive_normal_beats: int = 0
    prevention_score: float = 0.0


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

def compute_baseline(rr: Sequence[float], trim_fraction: float = 0.2) -> ArrhythmiaBaseline:
    """Mean and SD of *rr* after trimming ``trim_fraction`` from each tail."""
    values = np.asarray(rr, dtype=np.float64)
    if values.size == 0:
        raise ValueError("Cannot compute a baseline from an empty interval list.")
    trimmed = trimboth(np.sort(values), trim_fraction)
    if trimmed.size == 0:
        trimmed = values
    return ArrhythmiaBaseline(
        mean_rr=float(np.mean(trimmed)),
        sd_rr=float(np.std(trimmed)),
        samples=int(values.size),
    )


def composite_score(
    metrics: HRVMetrics,
    config: PulseMonitorConfig = DEFAULT_CONFIG,
) -> Tuple[float, int]:
    """
    Return ``(score, criteria_passed)`` for one window.

    Each criterion saturates at ``criterion_saturation`` times its threshold.
    The score is the mean of the strongest ``criteria_required`` saturations,
    or 0 when fewer criteria pass.
    """
    pairs = (
        (metrics.rmssd, config.rmssd_threshold_ms),
        (metrics.rr_variation, config.rr_variation_threshold),
        (metrics.coefficient_of_variation, config.cv_threshold),
        (metrics.shannon_entropy, config.entropy_threshold_bits),
    )
    passed = sum(1 for value, threshold in pairs if value > threshold)
    if passed < config.criteria_required:
        return 0.0, passed

    saturations = sorted(
        (min(1.0, value / (config.criterion_saturation * threshold))
         for value, threshold in pairs),
        reverse=True,
    )
    score = float(np.mean(saturations[:config.criteria_required]))
    return score, passed


def prune_events(state: ArrhythmiaState, timestamp: int) -> ArrhythmiaState:
    """Drop events that left the trailing 60 s window."""
    recent = tuple(t for t in state.event_timestamps if timestamp - t < _MINUTE_MS)
    return replace(state, event_timestamps=recent)


def can_confirm(
    state: ArrhythmiaState,
    timestamp: int,
    config: PulseMonitorConfig = DEFAULT_CONFIG,
) -> bool:
    """Cooldown and per-minute cap check."""
    if (state.last_event_time is not None
            and timestamp - state.last_event_time < config.arrhythmia_cooldown_ms):
        return False
    recent = prune_events(state, timestamp).event_timestamps
    return len(recent) < config.max_arrhythmias_per_minute


def register_event(
    state: ArrhythmiaState,
    timestamp: int,
    config: PulseMonitorConfig = DEFAULT_CONFIG,
) -> ArrhythmiaState:
    pruned = prune_events(state, timestamp)
    return ArrhythmiaState(
        last_event_time=timestamp,
        event_timestamps=pruned.event_timestamps + (timestamp,),
        consecutive_normal_beats=0,
        prevention_score=min(1.0, state.prevention_score + config.prevention_step),
    )


def register_normal(
    state: ArrhythmiaState,
    config: PulseMonitorConfig = DEFAULT_CONFIG,
) -> ArrhythmiaState:
    run = state.consecutive_normal_beats + 1
    prevention = state.prevention_score
    if run >= config.normal_run_for_decay:
        prevention = max(0.0, prevention - config.prevention_decay)
        run = 0
    return replace(state, consecutive_normal_beats=run, prevention_score=prevention)


# ---------------------------------------------------------------------------
# Detector
# ---------------------------------------------------------------------------

class ArrhythmiaDetector:
    """
    LEARNING → MONITORING arrhythmia detector.

    Parameters
    ----------
    config:
        Pipeline constants (learning band and duration, criteria thresholds,
        cooldown and per-minute cap).
    """

    def __init__(self, config: PulseMonitorConfig | None = None) -> None:
        self.config = config or DEFAULT_CONFIG
        self._phase = DetectorPhase.LEARNING
        self._start_time: Optional[int] = None
        self._learning: List[int] = []
        self._baseline: Optional[ArrhythmiaBaseline] = None
        self._window: Deque[int] = deque(maxlen=self.config.arrhythmia_window)
        self._consistency: Deque[float] = deque(maxlen=self.config.consistency_window)
        self._state = ArrhythmiaState()
        self._count = 0
        self._last_event: Optional[ArrhythmiaEvent] = None
        self._last_metrics: Optional[HRVMetrics] = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def add_interval(self, rr: int, timestamp: int, signal_quality: int) -> ArrhythmiaStatus:
        """
        Feed one RR interval (ms) observed at *timestamp*.

        Parameters
        ----------
        rr:
            Interval between the last two accepted peaks.
        timestamp:
            Time of the peak that closed the interval.
        signal_quality:
            0–100 signal-strength score; weak-signal windows are not scored.
            Rhythm regularity must not feed this value.
        """
        if self._start_time is None:
            self._start_time = timestamp

        if self._phase is DetectorPhase.LEARNING:
            self._learn(rr, timestamp)
        else:
            self._monitor(rr, timestamp, signal_quality)
        return self.status()

    def status(self) -> ArrhythmiaStatus:
        if self._phase is DetectorPhase.LEARNING:
            return ArrhythmiaStatus(ArrhythmiaPhase.CALIBRATING, self._count, self._last_event)
        phase = ArrhythmiaPhase.DETECTED if self._count > 0 else ArrhythmiaPhase.NORMAL
        return ArrhythmiaStatus(phase, self._count, self._last_event)

    @property
    def phase(self) -> DetectorPhase:
        return self._phase

    @property
    def baseline(self) -> Optional[ArrhythmiaBaseline]:
        return self._baseline

    @property
    def state(self) -> ArrhythmiaState:
        return self._state

    @property
    def count(self) -> int:
        return self._count

    @property
    def last_metrics(self) -> Optional[HRVMetrics]:
        """Metrics of the most recently scored window."""
        return self._last_metrics

    def reset(self) -> None:
        """Forget the baseline and all events; learning starts over."""
        self._phase = DetectorPhase.LEARNING
        self._start_time = None
        self._learning.clear()
        self._baseline = None
        self._window.clear()
        self._consistency.clear()
        self._state = ArrhythmiaState()
        self._count = 0
        self._last_event = None
        self._last_metrics = None

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _learn(self, rr: int, timestamp: int) -> None:
        cfg = self.config
        if cfg.learning_rr_min_ms <= rr <= cfg.learning_rr_max_ms:
            self._learning.append(rr)
        else:
            logger.debug("Learning RR %d ms outside [%d, %d]",
                         rr, cfg.learning_rr_min_ms, cfg.learning_rr_max_ms)

        elapsed = timestamp - self._start_time
        samples = len(self._learning)
        timed_out = elapsed >= cfg.arrhythmia_learning_duration_ms
        if (timed_out and samples >= cfg.baseline_min_samples) or \
                samples >= cfg.baseline_target_samples:
            self._baseline = compute_baseline(self._learning, cfg.baseline_trim_fraction)
            self._phase = DetectorPhase.MONITORING
            logger.info(
                "Arrhythmia baseline established: mean=%.1f ms sd=%.1f ms (%d samples, %d ms)",
                self._baseline.mean_rr, self._baseline.sd_rr, samples, elapsed,
            )

    def _monitor(self, rr: int, timestamp: int, signal_quality: int) -> None:
        cfg = self.config
        if not cfg.rr_min_ms <= rr <= cfg.rr_max_ms:
            logger.debug("Monitoring RR %d ms rejected", rr)
            return

        self._window.append(rr)
        if len(self._window) < self._window.maxlen:
            return

        baseline = self._baseline.mean_rr
        window_mean = float(np.mean(self._window))
        if signal_quality < cfg.arrhythmia_min_quality:
            logger.debug("Window skipped: quality %d", signal_quality)
            self._consistency.append(0.0)
            return
        if abs(window_mean - baseline) / baseline > cfg.baseline_tolerance:
            logger.debug("Window skipped: mean %.1f ms drifted from baseline %.1f ms",
                         window_mean, baseline)
            self._consistency.append(0.0)
            return

        metrics = HRVMetrics.from_intervals(self._window, baseline, cfg.entropy_bin_ms)
        self._last_metrics = metrics
        score, passed = composite_score(metrics, cfg)
        self._consistency.append(score)

        threshold = cfg.arrhythmia_score_threshold + self._state.prevention_score * 0.05
        consistent = sum(1 for s in self._consistency if s >= cfg.high_confidence_score)
        logger.debug(
            "Window t=%d score=%.3f criteria=%d threshold=%.3f consistent=%d",
            timestamp, score, passed, threshold, consistent,
        )

        if score < threshold or consistent < cfg.min_consistent_windows:
            self._state = register_normal(self._state, cfg)
            return
        if not can_confirm(self._state, timestamp, cfg):
            logger.debug("Irregular window at t=%d held back by cooldown/rate limit",
                         timestamp)
            return

        self._state = register_event(self._state, timestamp, cfg)
        self._count += 1
        self._last_event = ArrhythmiaEvent(
            timestamp=timestamp,
            rmssd=metrics.rmssd,
            rr_variation=metrics.rr_variation,
        )
        logger.info(
            "Arrhythmia confirmed at t=%d (count=%d, score=%.2f, rmssd=%.1f ms)",
            timestamp, self._count, score, metrics.rmssd,
        )
