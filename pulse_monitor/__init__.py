"""
Pulse Monitor — finger-camera PPG heartbeat, presence and arrhythmia core.
Feed one FrameSample per camera frame into PulseMonitor; it reports finger
presence, beats, a stable BPM, signal quality and a conservative
arrhythmia status.
"""

from pulse_monitor.config import DEFAULT_CONFIG, PulseMonitorConfig
from pulse_monitor.models import FrameSample, HeartBeatResult, MonitorResult
from pulse_monitor.monitor import PulseMonitor

__version__ = "0.1.0"
__author__ = "pulse_monitor"

__all__ = [
    "DEFAULT_CONFIG",
    "FrameSample",
    "HeartBeatResult",
    "MonitorResult",
    "PulseMonitor",
    "PulseMonitorConfig",
]
