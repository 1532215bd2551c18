"""
Tunable constants for the PPG pipeline.

All thresholds live in a single frozen dataclass so that a host can
override any of them at construction time and every component reads the
same coherent set.  Intensity-valued thresholds are expressed in camera
units (0 – 255 channel means).
"""

from __future__ import annotations

from dataclasses import dataclass, fields, replace


@dataclass(frozen=True)
class PulseMonitorConfig:
    """
    Canonical threshold set.

    Parameters
    ----------
    min_consecutive_on:
        Qualifying frames in a row needed before presence turns on.
    max_consecutive_off:
        Disqualifying frames in a row needed before presence turns off.
    min_peak_distance_ms:
        Refractory window between confirmed peaks (≈ 200 BPM ceiling).
    peak_lock_timeout_ms:
        Lock held after each confirmed peak.
    min_bpm, max_bpm:
        Physiological BPM band for instantaneous estimates.
    rr_history_size:
        Number of RR intervals kept for downstream consumers.
    arrhythmia_learning_duration_ms:
        Length of the arrhythmia baseline learning phase.
    arrhythmia_cooldown_ms:
        Minimum spacing between two confirmed arrhythmia events.
    max_arrhythmias_per_minute:
        Cap on confirmed events in any trailing 60 s window.
    """

    # Hysteresis
    min_consecutive_on: int = 3
    max_consecutive_off: int = 5

    # Peak timing
    min_peak_distance_ms: int = 300
    peak_lock_timeout_ms: int = 250

    # BPM / RR
    min_bpm: float = 30.0
    max_bpm: float = 220.0
    rr_history_size: int = 20
    rr_min_ms: int = 300
    rr_max_ms: int = 2000
    bpm_history_size: int = 12
    bpm_alpha: float = 0.25
    final_trim_fraction: float = 0.2

    # Arrhythmia
    arrhythmia_learning_duration_ms: int = 6000
    arrhythmia_cooldown_ms: int = 3000
    max_arrhythmias_per_minute: int = 3
    learning_rr_min_ms: int = 400
    learning_rr_max_ms: int = 1500
    baseline_min_samples: int = 5
    baseline_target_samples: int = 12
    baseline_trim_fraction: float = 0.2
    baseline_tolerance: float = 0.2
    arrhythmia_window: int = 8
    arrhythmia_min_quality: int = 50
    rmssd_threshold_ms: float = 50.0
    rr_variation_threshold: float = 0.10
    cv_threshold: float = 0.10
    entropy_threshold_bits: float = 1.5
    entropy_bin_ms: float = 25.0
    criterion_saturation: float = 1.5
    criteria_required: int = 3
    arrhythmia_score_threshold: float = 0.95
    high_confidence_score: float = 0.9
    consistency_window: int = 4
    min_consistent_windows: int = 2
    prevention_step: float = 0.15
    prevention_decay: float = 0.1
    normal_run_for_decay: int = 10

    # Signal conditioning
    median_window: int = 3
    moving_average_window: int = 3
    ema_alpha: float = 0.65
    baseline_factor: float = 0.9
    boost_window: int = 10
    boost_factor: float = 2.2
    weak_range: float = 0.8
    moderate_range: float = 3.0
    strong_range: float = 10.0
    min_samples: int = 15

    # Finger presence
    red_min: float = 40.0
    red_max: float = 245.0
    ratio_min: float = 1.1
    ratio_max: float = 6.0
    texture_min: float = 0.02
    stability_min: float = 0.2
    stability_max: float = 0.95
    stability_window: int = 5
    perfusion_window: int = 30
    perfusion_cv_min: float = 0.002
    perfusion_cv_max: float = 0.12
    presence_confidence_threshold: float = 0.6

    # Peak detection
    signal_threshold: float = 0.2
    derivative_threshold: float = -0.05
    min_confidence: float = 0.5
    signal_threshold_bounds: tuple = (0.05, 5.0)
    derivative_threshold_bounds: tuple = (-2.0, -0.01)
    min_confidence_bounds: tuple = (0.35, 0.7)
    amplitude_factor: float = 3.0
    confirmation_window: int = 5
    tuning_window: int = 8
    tuning_interval: int = 4
    tuning_learning_rate: float = 0.25
    peak_history_size: int = 25
    peak_window_ms: int = 2900

    # Quality
    quality_min_history: int = 10
    amplitude_scale: float = 10.0
    weak_strength: float = 0.1
    strong_strength: float = 4.0

    # Output buffers
    filtered_buffer_size: int = 600

    def __post_init__(self) -> None:
        if self.min_consecutive_on < 1 or self.max_consecutive_off < 1:
            raise ValueError("Hysteresis counts must be at least 1.")
        if not 0 < self.min_bpm < self.max_bpm:
            raise ValueError(
                f"Invalid BPM band: min_bpm={self.min_bpm} max_bpm={self.max_bpm}"
            )
        if not 0 < self.rr_min_ms < self.rr_max_ms:
            raise ValueError(
                f"Invalid RR band: rr_min_ms={self.rr_min_ms} rr_max_ms={self.rr_max_ms}"
            )
        if self.min_peak_distance_ms <= 0 or self.peak_lock_timeout_ms < 0:
            raise ValueError("Peak timing windows must be positive.")
        if not 0.0 < self.ema_alpha <= 1.0:
            raise ValueError(f"ema_alpha must be in (0, 1], got {self.ema_alpha}")
        if self.max_arrhythmias_per_minute < 1:
            raise ValueError("max_arrhythmias_per_minute must be at least 1.")
        for name in ("rr_history_size", "bpm_history_size", "arrhythmia_window",
                     "median_window", "moving_average_window", "boost_window",
                     "confirmation_window", "filtered_buffer_size"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be at least 1.")
        if self.confirmation_window < 3:
            raise ValueError("confirmation_window must hold at least 3 values.")
        for name in ("signal_threshold", "derivative_threshold", "min_confidence"):
            low, high = getattr(self, f"{name}_bounds")
            if not low <= getattr(self, name) <= high:
                raise ValueError(f"{name} must start inside {name}_bounds.")

    def with_overrides(self, **overrides) -> "PulseMonitorConfig":
        """Return a copy with *overrides* applied (unknown names raise)."""
        known = {f.name for f in fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise ValueError(f"Unknown config fields: {sorted(unknown)}")
        return replace(self, **overrides)


DEFAULT_CONFIG = PulseMonitorConfig()
