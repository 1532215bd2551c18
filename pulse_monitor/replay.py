"""
Recorded-session I/O.

Two sources can be replayed through :class:`~pulse_monitor.monitor.PulseMonitor`:

* a CSV of frame samples (one row per frame, header with the
  :class:`FrameSample` field names);
* a recorded video file, decoded with OpenCV and reduced by a
  :class:`FrameSampler`.

Because the pipeline is driven only by sample timestamps, replaying the same
source always produces the same readings.
"""

from __future__ import annotations

import logging
from dataclasses import fields
from pathlib import Path
from typing import Generator, Iterable, List, Optional, Tuple

import cv2
import numpy as np

from pulse_monitor.frame_sampler import FrameSampler
from pulse_monitor.models import FrameSample

logger = logging.getLogger(__name__)

COLUMNS: Tuple[str, ...] = tuple(f.name for f in fields(FrameSample))


def load_samples(path: str | Path) -> List[FrameSample]:
    """Read frame samples from a CSV written by :func:`save_samples`."""
    data = np.genfromtxt(path, delimiter=",", names=True, ndmin=1)
    if data.dtype.names is None:
        return []
    missing = [c for c in COLUMNS if c not in data.dtype.names]
    if missing:
        raise ValueError(f"{path}: missing columns {missing}")

    samples = [
        FrameSample(
            timestamp=int(row["timestamp"]),
            red_mean=float(row["red_mean"]),
            green_mean=float(row["green_mean"]),
            blue_mean=float(row["blue_mean"]),
            texture_score=float(row["texture_score"]),
            stability_score=float(row["stability_score"]),
        )
        for row in data
    ]
    logger.info("Loaded %d samples from %s", len(samples), path)
    return samples


def save_samples(path: str | Path, samples: Iterable[FrameSample]) -> int:
    """Write *samples* as CSV; returns the number of rows written."""
    rows = [[getattr(s, c) for c in COLUMNS] for s in samples]
    table = np.asarray(rows, dtype=np.float64).reshape(-1, len(COLUMNS))
    np.savetxt(
        path,
        table,
        delimiter=",",
        header=",".join(COLUMNS),
        comments="",
        fmt=["%d"] + ["%.6f"] * (len(COLUMNS) - 1),
    )
    return len(rows)


class VideoReplay:
    """
    Decode a recorded finger video frame by frame.

    Parameters
    ----------
    path:
        Video file readable by OpenCV.
    sampler:
        Frame reducer; a default :class:`FrameSampler` when omitted.
    fallback_fps:
        Frame rate used to synthesise timestamps when the container does not
        report positions.
    """

    def __init__(
        self,
        path: str | Path,
        sampler: Optional[FrameSampler] = None,
        fallback_fps: float = 30.0,
    ) -> None:
        self.path = Path(path)
        self.sampler = sampler or FrameSampler()
        self.fallback_fps = fallback_fps
        self._cap: Optional[cv2.VideoCapture] = None
        self._fps: float = fallback_fps

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self) -> None:
        cap = cv2.VideoCapture(str(self.path))
        if not cap.isOpened():
            raise RuntimeError(f"Cannot open video file {self.path}")
        fps = cap.get(cv2.CAP_PROP_FPS)
        self._fps = fps if fps and fps > 0 else self.fallback_fps
        self._cap = cap
        logger.info("Replaying %s at %.1f fps", self.path, self._fps)

    def close(self) -> None:
        if self._cap is None:
            return
        self._cap.release()
        self._cap = None

    def __enter__(self) -> "VideoReplay":
        self.open()
        return self

    def __exit__(self, *_) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Frame acquisition
    # ------------------------------------------------------------------

    def samples(self) -> Generator[FrameSample, None, None]:
        """Yield one :class:`FrameSample` per decoded frame until EOF."""
        if self._cap is None:
            raise RuntimeError("Video is not open.  Call open() first.")

        index = 0
        while True:
            ok, frame = self._cap.read()
            if not ok:
                break
            position = self._cap.get(cv2.CAP_PROP_POS_MSEC)
            if position and position > 0:
                timestamp = int(round(position))
            else:
                timestamp = int(round(index * 1000.0 / self._fps))
            yield self.sampler.sample(frame, timestamp)
            index += 1
        logger.info("Decoded %d frames from %s", index, self.path)


def iter_video_samples(
    path: str | Path,
    sampler: Optional[FrameSampler] = None,
) -> Generator[FrameSample, None, None]:
    """Convenience wrapper: open *path*, yield its samples, close it."""
    with VideoReplay(path, sampler) as replay:
        yield from replay.samples()
