"""
Value types exchanged between pipeline stages.

Everything here is immutable: stages hand each other snapshots, never
references to their own mutable state.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Optional, Tuple


@dataclass(frozen=True)
class FrameSample:
    """Per-frame channel statistics of the finger ROI (timestamp in ms)."""

    timestamp: int
    red_mean: float
    green_mean: float
    blue_mean: float
    texture_score: float
    stability_score: float


@dataclass(frozen=True)
class FilteredSample:
    timestamp: int
    value: float
    is_arrhythmia: bool = False


@dataclass(frozen=True)
class Peak:
    timestamp: int
    value: float
    confidence: float
    is_arrhythmia: bool = False


class PresencePhase(enum.Enum):
    NOT_PRESENT = "not_present"
    CANDIDATE = "candidate"
    PRESENT = "present"
    CANDIDATE_LOSS = "candidate_loss"


@dataclass(frozen=True)
class PresenceState:
    phase: PresencePhase = PresencePhase.NOT_PRESENT
    consecutive_good: int = 0
    consecutive_bad: int = 0
    is_present: bool = False


@dataclass(frozen=True)
class PresenceResult:
    present: bool
    confidence: float
    reasons: Tuple[str, ...]
    phase: PresencePhase


@dataclass(frozen=True)
class AdaptiveThresholds:
    signal_threshold: float
    derivative_threshold: float
    min_confidence: float


@dataclass(frozen=True)
class HeartBeatResult:
    """Per-frame heart-rate output consumed by UIs and downstream estimators."""

    bpm: int
    confidence: float
    is_peak: bool
    filtered_value: float
    signal_quality: int
    rr_intervals: Tuple[int, ...] = ()
    last_peak_time: Optional[int] = None

    @classmethod
    def empty(cls, filtered_value: float = 0.0) -> "HeartBeatResult":
        return cls(bpm=0, confidence=0.0, is_peak=False,
                   filtered_value=filtered_value, signal_quality=0)


class ArrhythmiaPhase(enum.Enum):
    CALIBRATING = "calibrating"
    NORMAL = "normal"
    DETECTED = "detected"


@dataclass(frozen=True)
class ArrhythmiaEvent:
    timestamp: int
    rmssd: float
    rr_variation: float


@dataclass(frozen=True)
class ArrhythmiaStatus:
    phase: ArrhythmiaPhase
    count: int = 0
    last_event: Optional[ArrhythmiaEvent] = None

    @property
    def label(self) -> str:
        """Status string: ``CALIBRATING``, ``NO_ARRHYTHMIA|n`` or ``ARRHYTHMIA_DETECTED|n``."""
        if self.phase is ArrhythmiaPhase.CALIBRATING:
            return "CALIBRATING"
        if self.phase is ArrhythmiaPhase.DETECTED:
            return f"ARRHYTHMIA_DETECTED|{self.count}"
        return f"NO_ARRHYTHMIA|{self.count}"


@dataclass(frozen=True)
class MonitorResult:
    presence: PresenceResult
    heartbeat: HeartBeatResult
    arrhythmia: ArrhythmiaStatus
    peak: Optional[Peak] = field(default=None)
