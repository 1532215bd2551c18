"""
Unit tests for FrameSampler.
Run with:  pytest tests/test_frame_sampler.py
"""

from __future__ import annotations

import numpy as np
import pytest

from pulse_monitor.frame_sampler import FrameSampler


def _uniform(value, shape=(40, 40)):
    return np.full(shape + (3,), value, dtype=np.uint8)


class TestFrameSampler:

    def test_channel_means_use_centre_roi(self):
        frame = np.zeros((40, 40, 3), dtype=np.uint8)
        frame[10:30, 10:30] = (30, 60, 200)        # BGR
        sample = FrameSampler(roi_fraction=0.5).sample(frame, 1234)
        assert sample.timestamp == 1234
        assert sample.red_mean == pytest.approx(200.0)
        assert sample.green_mean == pytest.approx(60.0)
        assert sample.blue_mean == pytest.approx(30.0)

    def test_uniform_frame_has_no_texture(self):
        sample = FrameSampler().sample(_uniform(120), 0)
        assert sample.texture_score == pytest.approx(0.0)
        assert sample.stability_score == 1.0

    def test_noisy_frame_has_texture(self):
        rng = np.random.default_rng(0)
        frame = np.clip(120 + rng.normal(0, 10, (40, 40, 3)), 0, 255).astype(np.uint8)
        sample = FrameSampler().sample(frame, 0)
        assert 0.0 < sample.texture_score <= 1.0

    def test_identical_frames_are_stable(self):
        fs = FrameSampler()
        fs.sample(_uniform(100), 0)
        assert fs.sample(_uniform(100), 33).stability_score == 1.0

    def test_brightness_jump_lowers_stability(self):
        fs = FrameSampler()
        fs.sample(_uniform(100), 0)
        stability = fs.sample(_uniform(105), 33).stability_score
        assert 0.4 < stability < 0.6

    def test_large_jump_clamped_to_zero(self):
        fs = FrameSampler()
        fs.sample(_uniform(50), 0)
        assert fs.sample(_uniform(200), 33).stability_score == 0.0

    def test_reset_forgets_previous_frame(self):
        fs = FrameSampler()
        fs.sample(_uniform(50), 0)
        fs.reset()
        assert fs.sample(_uniform(200), 33).stability_score == 1.0

    def test_rejects_non_bgr_frames(self):
        with pytest.raises(ValueError):
            FrameSampler().sample(np.zeros((10, 10), dtype=np.uint8), 0)

    @pytest.mark.parametrize("fraction", [0.0, 1.5])
    def test_invalid_roi_fraction(self, fraction):
        with pytest.raises(ValueError):
            FrameSampler(roi_fraction=fraction)
