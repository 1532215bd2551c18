"""
Unit tests for the finger presence gates and the hysteresis state machine.
Run with:  pytest tests/test_finger_detector.py
"""

from __future__ import annotations

import numpy as np
import pytest

from pulse_monitor.config import PulseMonitorConfig
from pulse_monitor.finger_detector import (
    FingerPresenceDetector,
    PresenceHistory,
    advance_presence,
    evaluate,
    replay_presence,
)
from pulse_monitor.models import FrameSample, PresencePhase, PresenceState


def _finger(ts=0, red=150.0, green=60.0, blue=40.0, texture=0.3, stability=0.8):
    return FrameSample(ts, red, green, blue, texture, stability)


def _history(frame, n=1):
    return PresenceHistory((frame.red_mean,) * n, (frame.stability_score,) * n)


# ---------------------------------------------------------------------------
# Gates
# ---------------------------------------------------------------------------

class TestEvaluate:

    def test_finger_like_frame_qualifies(self):
        frame = _finger()
        result = evaluate(frame, _history(frame))
        assert result.qualifying is True
        assert result.confidence == pytest.approx(0.8)

    def test_red_out_of_range(self):
        frame = _finger(red=20.0)
        result = evaluate(frame, _history(frame))
        assert result.qualifying is False
        assert result.confidence == 0.0
        assert "red out of range" in result.reasons[-1]

    def test_ratio_out_of_band(self):
        frame = _finger(red=100.0, green=100.0)
        result = evaluate(frame, _history(frame))
        assert result.qualifying is False
        assert "ratio" in result.reasons[-1]

    def test_flat_surface_rejected(self):
        frame = _finger(texture=0.0)
        result = evaluate(frame, _history(frame))
        assert result.qualifying is False
        assert "flat" in result.reasons[-1]

    def test_too_stable_rejected(self):
        frame = _finger(stability=1.0)
        result = evaluate(frame, _history(frame))
        assert result.qualifying is False
        assert "constant" in result.reasons[-1]

    def test_unstable_rejected(self):
        frame = _finger(stability=0.05)
        result = evaluate(frame, _history(frame))
        assert result.qualifying is False
        assert "unstable" in result.reasons[-1]

    def test_no_pulsation_rejected_once_history_full(self):
        cfg = PulseMonitorConfig()
        frame = _finger()
        short = evaluate(frame, _history(frame, cfg.perfusion_window - 1), cfg)
        full = evaluate(frame, _history(frame, cfg.perfusion_window), cfg)
        assert short.qualifying is True
        assert full.qualifying is False
        assert "no pulsation" in full.reasons[-1]

    def test_pulsatile_history_adds_confidence(self):
        cfg = PulseMonitorConfig()
        t = np.arange(cfg.perfusion_window) / 30.0
        red = tuple(150.0 + 5.0 * np.sin(2 * np.pi * 1.2 * t))
        frame = _finger(red=red[-1])
        history = PresenceHistory(red, (0.8,) * cfg.stability_window)
        result = evaluate(frame, history, cfg)
        assert result.qualifying is True
        assert result.confidence == pytest.approx(1.0)

    @pytest.mark.parametrize("bad", [float("nan"), float("inf"), -1.0])
    def test_invalid_sample_disqualifies(self, bad):
        frame = _finger(green=bad)
        result = evaluate(frame, _history(_finger()))
        assert result.qualifying is False
        assert result.reasons == ("invalid sample",)


# ---------------------------------------------------------------------------
# Hysteresis
# ---------------------------------------------------------------------------

class TestHysteresis:

    def test_turns_on_after_min_consecutive(self):
        states = replay_presence([True, True, True])
        assert [s.is_present for s in states] == [False, False, True]
        assert states[0].phase is PresencePhase.CANDIDATE
        assert states[2].phase is PresencePhase.PRESENT

    def test_single_bad_frame_does_not_turn_off(self):
        states = replay_presence([True] * 5 + [False] + [True])
        assert all(s.is_present for s in states[2:])
        assert states[5].phase is PresencePhase.CANDIDATE_LOSS

    def test_turns_off_after_max_consecutive(self):
        states = replay_presence([True] * 3 + [False] * 5)
        assert [s.is_present for s in states[3:]] == [True, True, True, True, False]
        assert states[-1].phase is PresencePhase.NOT_PRESENT

    def test_interrupted_candidate_restarts(self):
        states = replay_presence([True, True, False, True, True])
        assert not any(s.is_present for s in states)

    def test_advance_is_pure(self):
        state = PresenceState()
        advance_presence(state, True)
        assert state == PresenceState()

    @pytest.mark.parametrize("seed", range(5))
    def test_random_sequences_respect_thresholds(self, seed):
        cfg = PulseMonitorConfig()
        rng = np.random.default_rng(seed)
        verdicts = [bool(v) for v in rng.random(500) < 0.6]
        states = replay_presence(verdicts, cfg)

        previous = PresenceState()
        for state in states:
            if state.is_present and not previous.is_present:
                assert state.consecutive_good >= cfg.min_consecutive_on
            if previous.is_present and not state.is_present:
                assert state.consecutive_bad >= cfg.max_consecutive_off
            previous = state

    def test_custom_counts(self):
        cfg = PulseMonitorConfig(min_consecutive_on=1, max_consecutive_off=2)
        states = replay_presence([True, False, False], cfg)
        assert [s.is_present for s in states] == [True, True, False]


# ---------------------------------------------------------------------------
# Stateful detector
# ---------------------------------------------------------------------------

class TestFingerPresenceDetector:

    def test_present_after_three_good_frames(self):
        fd = FingerPresenceDetector()
        results = [fd.update(_finger(ts=i * 33)) for i in range(3)]
        assert [r.present for r in results] == [False, False, True]
        assert fd.is_present

    def test_no_finger_stays_absent(self):
        fd = FingerPresenceDetector()
        for i in range(50):
            result = fd.update(_finger(ts=i * 33, red=200.0, green=190.0, blue=180.0))
        assert result.present is False
        assert fd.state.phase is PresencePhase.NOT_PRESENT

    def test_invalid_sample_not_recorded(self):
        fd = FingerPresenceDetector()
        fd.update(_finger())
        fd.update(_finger(ts=33, red=float("nan")))
        assert fd.history.red_values == (150.0,)

    def test_reset(self):
        fd = FingerPresenceDetector()
        for i in range(5):
            fd.update(_finger(ts=i * 33))
        fd.reset()
        assert not fd.is_present
        assert fd.history == PresenceHistory()
