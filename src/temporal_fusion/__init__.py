"""
temporal-fusion: Fused Time and Temporal Data Reconstruction

This package derives one trusted "current time" from several independent,
unreliable timing providers (satellite constellations, agency time
services, the local clock) and keeps per-stream, time-indexed data that
can be queried at any instant, with plausible values synthesized where
real samples are missing.

Architecture:
    timing providers → SyncScheduler → TimeFusionEngine → FusedTime
    producers → TemporalIndex → (on read) GapReconstructor → callers

Everything is in memory and owned by one explicitly constructed
TemporalFusionEngine; there is no process-wide singleton.

Version: 1.0.0
"""

__version__ = "1.0.0"

from .interfaces import (
    TimeSample,
    FusedTime,
    ClockStatus,
    DataPoint,
    StreamConfig,
    Origin,
    InterpolationMethod,
)
from .engine import SyncScheduler, TemporalFusionEngine

__all__ = [
    "TimeSample",
    "FusedTime",
    "ClockStatus",
    "DataPoint",
    "StreamConfig",
    "Origin",
    "InterpolationMethod",
    "SyncScheduler",
    "TemporalFusionEngine",
    "__version__",
]
