#!/usr/bin/env python3
"""
Pulse Monitor – replay entry point.

Usage
-----
    python main.py (--samples CSV | --video FILE) [OPTIONS]

Options
-------
    --samples PATH              Frame-sample CSV to replay
    --video PATH                Recorded finger video to decode and replay
    --save-samples PATH         Write the decoded samples of --video as CSV
    --log-every INT             Print a reading every N frames (default: 30)
    --min-consecutive-on INT    Qualifying frames before presence turns on
    --max-consecutive-off INT   Bad frames before presence turns off
    --min-peak-distance-ms INT  Refractory window between beats
    --cooldown-ms INT           Minimum spacing between arrhythmia events
    --verbose                   Enable DEBUG logging
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List

from pulse_monitor.config import DEFAULT_CONFIG, PulseMonitorConfig
from pulse_monitor.models import FrameSample
from pulse_monitor.monitor import PulseMonitor
from pulse_monitor.replay import iter_video_samples, load_samples, save_samples

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s – %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("pulse_monitor")


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Finger-camera PPG heartbeat and arrhythmia monitor (replay)",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--samples", type=Path,
                        help="CSV of frame samples to replay")
    source.add_argument("--video", type=Path,
                        help="Recorded finger video to decode and replay")
    parser.add_argument("--save-samples", type=Path, default=None,
                        help="Write the samples decoded from --video to this CSV")
    parser.add_argument("--log-every", type=int, default=30,
                        help="Print a reading every N frames (0 disables)")
    parser.add_argument("--min-consecutive-on", type=int,
                        default=DEFAULT_CONFIG.min_consecutive_on,
                        help="Qualifying frames before presence turns on")
    parser.add_argument("--max-consecutive-off", type=int,
                        default=DEFAULT_CONFIG.max_consecutive_off,
                        help="Disqualifying frames before presence turns off")
    parser.add_argument("--min-peak-distance-ms", type=int,
                        default=DEFAULT_CONFIG.min_peak_distance_ms,
                        help="Refractory window between confirmed beats")
    parser.add_argument("--cooldown-ms", type=int,
                        default=DEFAULT_CONFIG.arrhythmia_cooldown_ms,
                        help="Minimum spacing between arrhythmia events")
    parser.add_argument("--verbose", action="store_true",
                        help="Enable DEBUG logging")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> PulseMonitorConfig:
    return DEFAULT_CONFIG.with_overrides(
        min_consecutive_on=args.min_consecutive_on,
        max_consecutive_off=args.max_consecutive_off,
        min_peak_distance_ms=args.min_peak_distance_ms,
        arrhythmia_cooldown_ms=args.cooldown_ms,
    )


# ---------------------------------------------------------------------------
# Replay loop
# ---------------------------------------------------------------------------

def run(args: argparse.Namespace) -> int:
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        config = build_config(args)
    except ValueError as exc:
        logger.error("Invalid configuration: %s", exc)
        return 1

    try:
        if args.samples is not None:
            samples: List[FrameSample] = load_samples(args.samples)
        else:
            samples = list(iter_video_samples(args.video))
            if args.save_samples is not None:
                rows = save_samples(args.save_samples, samples)
                logger.info("Saved %d samples to %s", rows, args.save_samples)
    except (OSError, RuntimeError, ValueError) as exc:
        logger.error("Cannot read input: %s", exc)
        return 1

    if not samples:
        logger.error("No samples to replay.")
        return 1

    monitor = PulseMonitor(config)
    result = None
    try:
        for frame_idx, result in enumerate(monitor.stream(samples)):
            if args.log_every > 0 and frame_idx % args.log_every == 0:
                hb = result.heartbeat
                if hb.bpm > 0:
                    print(f"[t={format_time(samples[frame_idx])}] BPM={hb.bpm}  "
                          f"quality={hb.signal_quality}  conf={hb.confidence:.2f}  "
                          f"{result.arrhythmia.label}")
                else:
                    print(f"[t={format_time(samples[frame_idx])}] Waiting for signal…  "
                          f"finger={result.presence.present}")
    except KeyboardInterrupt:
        logger.info("Interrupted.")

    final_label = result.arrhythmia.label if result is not None else "CALIBRATING"
    print(f"Final BPM: {monitor.final_bpm()}")
    print(f"Arrhythmia: {final_label}")
    return 0


def format_time(sample: FrameSample) -> str:
    return f"{sample.timestamp / 1000.0:7.2f}s"


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main(argv: list[str] | None = None) -> int:
    return run(parse_args(argv))


if __name__ == "__main__":
    sys.exit(main())
