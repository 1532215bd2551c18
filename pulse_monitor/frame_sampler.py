"""
Reduce camera frames to per-frame channel statistics.

Only a centred region of interest is used: the lens edges see light
leaking around the fingertip and would dilute the pulsatile component.
"""

from __future__ import annotations

from typing import Optional

import cv2
import numpy as np

from pulse_monitor.models import FrameSample


class FrameSampler:
    """
    BGR frame → :class:`FrameSample`.

    Parameters
    ----------
    roi_fraction:
        Side of the centred ROI as a fraction of the frame size (0 – 1].
    texture_scale:
        Gray-level standard deviation that maps to a texture score of 1.
    motion_scale:
        Relative frame-to-frame change that maps to a stability score of 0.
    """

    def __init__(
        self,
        roi_fraction: float = 0.5,
        texture_scale: float = 25.0,
        motion_scale: float = 0.1,
    ) -> None:
        if not 0.0 < roi_fraction <= 1.0:
            raise ValueError(f"roi_fraction must be in (0, 1], got {roi_fraction}")
        self.roi_fraction = roi_fraction
        self.texture_scale = texture_scale
        self.motion_scale = motion_scale
        self._previous: Optional[np.ndarray] = None

    def sample(self, frame: np.ndarray, timestamp: int) -> FrameSample:
        """
        Compute channel means, texture and stability of *frame*.

        Parameters
        ----------
        frame:
            BGR image array (H × W × 3, uint8).
        timestamp:
            Capture time in milliseconds.
        """
        if frame.ndim != 3 or frame.shape[2] != 3:
            raise ValueError(f"Expected an H×W×3 BGR frame, got shape {frame.shape}")

        roi = self._roi(frame)
        b_mean, g_mean, r_mean = (float(roi[:, :, c].mean()) for c in range(3))

        gray = cv2.cvtColor(roi, cv2.COLOR_BGR2GRAY)
        mean, std = cv2.meanStdDev(gray)
        gray_mean = float(mean[0][0])
        texture = min(1.0, float(std[0][0]) / self.texture_scale)

        stability = 1.0
        if self._previous is not None and self._previous.shape == gray.shape and gray_mean > 0:
            change = float(cv2.absdiff(gray, self._previous).mean()) / gray_mean
            stability = max(0.0, min(1.0, 1.0 - change / self.motion_scale))
        self._previous = gray

        return FrameSample(
            timestamp=int(timestamp),
            red_mean=r_mean,
            green_mean=g_mean,
            blue_mean=b_mean,
            texture_score=texture,
            stability_score=stability,
        )

    def reset(self) -> None:
        self._previous = None

    def _roi(self, frame: np.ndarray) -> np.ndarray:
        h, w = frame.shape[:2]
        rh = max(1, int(h * self.roi_fraction))
        rw = max(1, int(w * self.roi_fraction))
        y0 = (h - rh) // 2
        x0 = (w - rw) // 2
        return np.ascontiguousarray(frame[y0:y0 + rh, x0:x0 + rw])
