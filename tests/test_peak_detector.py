"""
Unit tests for PeakDetector and PeakHistory.
Run with:  pytest tests/test_peak_detector.py
"""

from __future__ import annotations

import numpy as np
import pytest

from pulse_monitor.config import PulseMonitorConfig
from pulse_monitor.models import Peak
from pulse_monitor.peak_detector import PeakDetector, PeakHistory

# Two pulses whose maxima are 200 ms apart (frames every 40 ms).
TWO_PULSES = [0, 0, 3, 7, 10, 5, 0, 3, 7, 10, 5, 0, 0]


def _derivatives(values):
    """Central difference (v[n] - v[n-2]) / 2, zero for the first samples."""
    return [0.0 if n < 2 else (values[n] - values[n - 2]) / 2.0
            for n in range(len(values))]


def _run(detector, values, step_ms=40):
    """Feed *values* and return the timestamps of confirmed peaks."""
    confirmed = []
    for n, (v, d) in enumerate(zip(values, _derivatives(values))):
        ts = n * step_ms
        if detector.detect(float(v), d, ts).is_peak:
            confirmed.append(ts)
    return confirmed


class TestPeakDetector:

    def test_first_of_two_close_pulses_confirmed(self):
        pd = PeakDetector()
        assert _run(pd, TWO_PULSES) == [200]

    def test_lock_alone_suppresses_second_pulse(self):
        cfg = PulseMonitorConfig(min_peak_distance_ms=100)
        pd = PeakDetector(cfg)
        assert _run(pd, TWO_PULSES) == [200]
        assert pd.is_locked(400)

    def test_both_windows_relaxed_confirms_second_pulse(self):
        cfg = PulseMonitorConfig(min_peak_distance_ms=100, peak_lock_timeout_ms=100)
        pd = PeakDetector(cfg)
        assert _run(pd, TWO_PULSES) == [200, 400]

    def test_confirmed_height_is_the_maximum(self):
        pd = PeakDetector()
        derivs = _derivatives(TWO_PULSES)
        decisions = [pd.detect(float(v), d, n * 40)
                     for n, (v, d) in enumerate(zip(TWO_PULSES, derivs))]
        peak = next(d for d in decisions if d.is_peak)
        assert peak.value == pytest.approx(10.0)
        assert peak.confidence == pytest.approx(1.0)

    def test_external_last_peak_time_is_respected(self):
        pd = PeakDetector()
        derivs = _derivatives(TWO_PULSES)
        confirmed = [
            n * 40
            for n, (v, d) in enumerate(zip(TWO_PULSES, derivs))
            if pd.detect(float(v), d, n * 40, last_peak_time=50).is_peak
        ]
        # 200 is only 150 ms after the external reference, 400 is 350 ms after.
        assert confirmed == [400]

    def test_flat_signal_has_no_peaks(self):
        pd = PeakDetector()
        assert _run(pd, [0.0] * 100) == []

    def test_monotonic_rise_has_no_peaks(self):
        pd = PeakDetector()
        assert _run(pd, list(np.linspace(0.0, 50.0, 40))) == []

    @pytest.mark.parametrize("seed", range(5))
    def test_refractory_invariant_on_noise(self, seed):
        cfg = PulseMonitorConfig()
        rng = np.random.default_rng(seed)
        values = list(rng.normal(0.0, 3.0, 1500))
        pd = PeakDetector(cfg)
        confirmed = _run(pd, values, step_ms=17)
        assert confirmed, "noise should produce some peaks"
        gaps = np.diff(confirmed)
        assert np.all(gaps >= cfg.min_peak_distance_ms)

    def test_adaptive_thresholds_stay_in_bounds(self):
        cfg = PulseMonitorConfig()
        pd = PeakDetector(cfg)
        pulse = [0, 0, 3, 7, 10, 5, 0, 0, 0, 0]
        confirmed = _run(pd, pulse * 12)
        assert len(confirmed) == 12

        thr = pd.thresholds
        assert thr.signal_threshold > cfg.signal_threshold
        lo, hi = cfg.signal_threshold_bounds
        assert lo <= thr.signal_threshold <= hi
        lo, hi = cfg.derivative_threshold_bounds
        assert lo <= thr.derivative_threshold <= hi
        lo, hi = cfg.min_confidence_bounds
        assert lo <= thr.min_confidence <= hi

    def test_tuning_waits_for_interval(self):
        cfg = PulseMonitorConfig()
        pd = PeakDetector(cfg)
        pulse = [0, 0, 3, 7, 10, 5, 0, 0, 0, 0]
        _run(pd, pulse * (cfg.tuning_interval - 1))
        assert pd.thresholds.signal_threshold == cfg.signal_threshold

    def test_reset_restores_initial_thresholds(self):
        cfg = PulseMonitorConfig()
        pd = PeakDetector(cfg)
        _run(pd, [0, 0, 3, 7, 10, 5, 0, 0, 0, 0] * 8)
        pd.reset()
        assert pd.thresholds.signal_threshold == cfg.signal_threshold
        assert pd.last_confirmed is None
        assert not pd.is_locked(0)


class TestPeakHistory:

    def test_prunes_by_time_window(self):
        ph = PeakHistory(max_peaks=25, window_ms=2900)
        for ts in (0, 1000, 2000, 3000, 4000):
            ph.append(Peak(ts, 1.0, 0.9))
        assert [p.timestamp for p in ph.snapshot()] == [2000, 3000, 4000]

    def test_bounded_count(self):
        ph = PeakHistory(max_peaks=3, window_ms=100_000)
        for ts in range(0, 1000, 100):
            ph.append(Peak(ts, 1.0, 0.9))
        assert len(ph) == 3

    def test_out_of_order_rejected(self):
        ph = PeakHistory()
        ph.append(Peak(1000, 1.0, 0.9))
        with pytest.raises(ValueError):
            ph.append(Peak(500, 1.0, 0.9))
