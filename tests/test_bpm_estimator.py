"""
Unit tests for BPMEstimator.
Run with:  pytest tests/test_bpm_estimator.py
"""

from __future__ import annotations

import numpy as np
import pytest

from pulse_monitor.bpm_estimator import BPMEstimator
from pulse_monitor.config import PulseMonitorConfig


def _feed(estimator, intervals, start=0):
    ts = start
    estimator.add_peak(ts)
    results = []
    for rr in intervals:
        ts += rr
        results.append(estimator.add_peak(ts))
    return results


class TestBPMEstimator:

    def test_no_peaks_returns_zero(self):
        be = BPMEstimator()
        assert be.bpm == 0
        assert be.final_bpm() == 0
        assert be.rr_intervals == ()
        assert be.last_peak_time is None

    def test_first_peak_has_no_interval(self):
        be = BPMEstimator()
        assert be.add_peak(1000) is None
        assert be.last_peak_time == 1000
        assert be.bpm == 0

    def test_regular_rhythm(self):
        be = BPMEstimator()
        results = _feed(be, [1000] * 6)
        assert results == [1000] * 6
        assert be.bpm == 60
        assert be.final_bpm() == 60

    def test_out_of_band_interval_rejected(self):
        be = BPMEstimator()
        results = _feed(be, [800, 250, 2500, 800])
        assert results == [800, None, None, 800]
        assert be.rr_intervals == (800, 800)
        assert all(30 <= b <= 220 for b in be.bpm_history)

    def test_smoothing_moves_toward_new_rate(self):
        be = BPMEstimator()
        _feed(be, [1000, 750])
        assert 60 < be.bpm < 80

    def test_final_bpm_trims_outliers(self):
        be = BPMEstimator()
        # Ten beats at 60 BPM plus two at 120 BPM
        _feed(be, [1000] * 5 + [500] + [1000] * 5 + [500])
        assert be.final_bpm() == 60

    def test_final_bpm_uses_smoothed_when_short(self):
        be = BPMEstimator()
        _feed(be, [1000] * 3)
        assert be.final_bpm() == be.bpm

    @pytest.mark.parametrize("seed", range(5))
    def test_histories_stay_in_bounds(self, seed):
        cfg = PulseMonitorConfig()
        be = BPMEstimator(cfg)
        rng = np.random.default_rng(seed)
        _feed(be, [int(v) for v in rng.integers(100, 3000, 200)])
        assert len(be.rr_intervals) <= cfg.rr_history_size
        assert all(cfg.rr_min_ms <= rr <= cfg.rr_max_ms for rr in be.rr_intervals)
        assert all(cfg.min_bpm <= b <= cfg.max_bpm for b in be.bpm_history)
        assert be.bpm == 0 or cfg.min_bpm <= be.bpm <= cfg.max_bpm

    def test_custom_history_size(self):
        cfg = PulseMonitorConfig(rr_history_size=4)
        be = BPMEstimator(cfg)
        _feed(be, [900] * 10)
        assert be.rr_intervals == (900,) * 4

    def test_reset(self):
        be = BPMEstimator()
        _feed(be, [1000] * 5)
        be.reset()
        assert be.bpm == 0
        assert be.rr_intervals == ()
        assert be.bpm_history == ()
        assert be.last_peak_time is None

    def test_interval_above_max_bpm_rejected_from_both_histories(self):
        be = BPMEstimator()
        # 290 ms is 207 BPM: inside max_bpm but below rr_min_ms.
        assert _feed(be, [800, 290]) == [800, None]
        assert be.rr_intervals == (800,)
        assert len(be.bpm_history) == 1

    def test_bpm_band_also_rejects_interval(self):
        cfg = PulseMonitorConfig(max_bpm=150.0)
        be = BPMEstimator(cfg)
        # 350 ms passes the RR band but is 171 BPM.
        assert _feed(be, [800, 350, 800]) == [800, None, 800]
        assert be.rr_intervals == (800, 800)
        assert len(be.bpm_history) == len(be.rr_intervals)
