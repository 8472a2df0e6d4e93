"""Core engine - sync scheduling and the query facade.

Contains:
- SyncScheduler: background fetch → fuse → publish loop
- TemporalFusionEngine: fused time plus time-indexed data streams
"""

from .sync_scheduler import SyncScheduler, SyncState, FetchOutcome
from .temporal_engine import TemporalFusionEngine

__all__ = ['SyncScheduler', 'SyncState', 'FetchOutcome', 'TemporalFusionEngine']
