"""
Finger-on-lens presence detector.

When a finger covers the camera (with the torch on), the ROI becomes:
  - Red dominated, with a characteristic red/green ratio from
    oxyhaemoglobin absorption.
  - Textured but not edged: skin has some local variance, a flat
    reflective surface has none.
  - Temporally stable, though never perfectly constant.
  - Pulsatile: the red mean varies by a fraction of a percent per beat.

Frames are evaluated by a staged list of gates that short-circuits to
"not present" on the first failure.  A hysteresis state machine then
debounces the per-frame verdict so a single bad frame neither turns
detection on nor off.
"""

from __future__ import annotations

import logging
import math
from collections import deque
from dataclasses import dataclass
from typing import Deque, Sequence, Tuple

import numpy as np

from pulse_monitor.config import DEFAULT_CONFIG, PulseMonitorConfig
from pulse_monitor.models import (
    FrameSample,
    PresencePhase,
    PresenceResult,
    PresenceState,
)

logger = logging.getLogger(__name__)

# Partial confidence contributed by each passing gate.
_WEIGHT_RANGE = 0.25
_WEIGHT_RATIO = 0.25
_WEIGHT_TEXTURE = 0.15
_WEIGHT_STABILITY = 0.15
_WEIGHT_PERFUSION = 0.20


@dataclass(frozen=True)
class PresenceHistory:
    """Recent per-frame values the gates look back on (oldest first)."""

    red_values: Tuple[float, ...] = ()
    stability_scores: Tuple[float, ...] = ()


@dataclass(frozen=True)
class PresenceEvaluation:
    qualifying: bool
    confidence: float
    reasons: Tuple[str, ...]


def is_valid_sample(frame: FrameSample) -> bool:
    for value in (frame.red_mean, frame.green_mean, frame.blue_mean,
                  frame.texture_score, frame.stability_score):
        if not math.isfinite(value) or value < 0:
            return False
    return True


def evaluate(
    frame: FrameSample,
    history: PresenceHistory,
    config: PulseMonitorConfig = DEFAULT_CONFIG,
) -> PresenceEvaluation:
    """
    Run the staged gates on *frame*.

    *history* must already include the current frame's red and stability
    values.  Returns the accumulated confidence and the reason trail; the
    first failing gate ends the evaluation.
    """
    reasons = []
    confidence = 0.0

    def reject(reason: str) -> PresenceEvaluation:
        reasons.append(reason)
        return PresenceEvaluation(False, confidence, tuple(reasons))

    if not is_valid_sample(frame):
        return reject("invalid sample")

    # 1. Physiological red range
    red = frame.red_mean
    if not config.red_min <= red <= config.red_max:
        return reject(f"red out of range: {red:.1f}")
    confidence += _WEIGHT_RANGE
    reasons.append(f"red ok: {red:.1f}")

    # 2. Red / green ratio
    if frame.green_mean <= 0:
        return reject("green channel empty")
    ratio = red / frame.green_mean
    if not config.ratio_min <= ratio <= config.ratio_max:
        return reject(f"red/green ratio out of band: {ratio:.2f}")
    confidence += _WEIGHT_RATIO
    reasons.append(f"ratio ok: {ratio:.2f}")

    # 3. Texture
    if frame.texture_score < config.texture_min:
        return reject(f"surface too flat: texture={frame.texture_score:.3f}")
    confidence += _WEIGHT_TEXTURE
    reasons.append(f"texture ok: {frame.texture_score:.3f}")

    # 4. Temporal stability
    scores = history.stability_scores[-config.stability_window:] or (frame.stability_score,)
    stability = float(np.mean(scores))
    if stability < config.stability_min:
        return reject(f"unstable: {stability:.2f}")
    if stability > config.stability_max:
        return reject(f"suspiciously constant: {stability:.2f}")
    confidence += _WEIGHT_STABILITY
    reasons.append(f"stability ok: {stability:.2f}")

    # 5. Perfusion, once enough history exists
    if len(history.red_values) >= config.perfusion_window:
        recent = np.asarray(history.red_values[-config.perfusion_window:], dtype=np.float64)
        mean = float(recent.mean())
        cv = float(recent.std()) / mean if mean > 0 else 0.0
        if cv < config.perfusion_cv_min:
            return reject(f"no pulsation: cv={cv:.4f}")
        if cv > config.perfusion_cv_max:
            return reject(f"chaotic signal: cv={cv:.4f}")
        confidence += _WEIGHT_PERFUSION
        reasons.append(f"pulsation ok: cv={cv:.4f}")

    confidence = min(1.0, confidence)
    if confidence < config.presence_confidence_threshold:
        return reject(f"low confidence: {confidence:.2f}")
    return PresenceEvaluation(True, confidence, tuple(reasons))


def advance_presence(
    state: PresenceState,
    qualifying: bool,
    config: PulseMonitorConfig = DEFAULT_CONFIG,
) -> PresenceState:
    """
    Pure hysteresis transition.

    NOT_PRESENT → CANDIDATE → PRESENT → CANDIDATE_LOSS → NOT_PRESENT.
    Presence turns on after ``min_consecutive_on`` qualifying frames in a
    row and off after ``max_consecutive_off`` disqualifying frames in a row.
    """
    if qualifying:
        good = state.consecutive_good + 1
        if state.is_present or good >= config.min_consecutive_on:
            return PresenceState(PresencePhase.PRESENT, good, 0, True)
        return PresenceState(PresencePhase.CANDIDATE, good, 0, False)

    bad = state.consecutive_bad + 1
    if state.is_present and bad < config.max_consecutive_off:
        return PresenceState(PresencePhase.CANDIDATE_LOSS, 0, bad, True)
    return PresenceState(PresencePhase.NOT_PRESENT, 0, bad, False)


class FingerPresenceDetector:
    """
    Stateful wrapper: owns the gate history and the hysteresis state.

    Parameters
    ----------
    config:
        Pipeline constants (gate bands and hysteresis counts).
    """

    def __init__(self, config: PulseMonitorConfig | None = None) -> None:
        self.config = config or DEFAULT_CONFIG
        history_len = max(self.config.perfusion_window, self.config.stability_window)
        self._red: Deque[float] = deque(maxlen=history_len)
        self._stability: Deque[float] = deque(maxlen=self.config.stability_window)
        self._state = PresenceState()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def update(self, frame: FrameSample) -> PresenceResult:
        """Evaluate *frame*, advance the state machine and report presence."""
        if is_valid_sample(frame):
            self._red.append(frame.red_mean)
            self._stability.append(frame.stability_score)

        evaluation = evaluate(frame, self.history, self.config)
        previous = self._state
        self._state = advance_presence(previous, evaluation.qualifying, self.config)

        if self._state.is_present != previous.is_present:
            logger.info(
                "Finger %s at t=%d (confidence=%.2f, reason=%s)",
                "detected" if self._state.is_present else "lost",
                frame.timestamp,
                evaluation.confidence,
                evaluation.reasons[-1] if evaluation.reasons else "-",
            )
        else:
            logger.debug(
                "presence t=%d phase=%s qualifying=%s confidence=%.2f",
                frame.timestamp, self._state.phase.value,
                evaluation.qualifying, evaluation.confidence,
            )

        return PresenceResult(
            present=self._state.is_present,
            confidence=evaluation.confidence,
            reasons=evaluation.reasons,
            phase=self._state.phase,
        )

    @property
    def history(self) -> PresenceHistory:
        return PresenceHistory(tuple(self._red), tuple(self._stability))

    @property
    def state(self) -> PresenceState:
        return self._state

    @property
    def is_present(self) -> bool:
        return self._state.is_present

    def reset(self) -> None:
        self._red.clear()
        self._stability.clear()
        self._state = PresenceState()


def replay_presence(
    qualifying: Sequence[bool],
    config: PulseMonitorConfig = DEFAULT_CONFIG,
) -> Tuple[PresenceState, ...]:
    """Fold :func:`advance_presence` over a sequence of per-frame verdicts."""
    state = PresenceState()
    states = []
    for verdict in qualifying:
        state = advance_presence(state, verdict, config)
        states.append(state)
    return tuple(states)
