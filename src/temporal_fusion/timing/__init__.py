"""
Time fusion for temporal-fusion.

Core algorithms for combining timing sources and tracking local clock drift.
"""

from .time_fusion import TimeFusionEngine, wall_clock_ms
from .clock_drift import KalmanDriftTracker

__all__ = ['TimeFusionEngine', 'KalmanDriftTracker', 'wall_clock_ms']
