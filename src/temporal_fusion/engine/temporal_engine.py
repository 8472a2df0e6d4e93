#!/usr/bin/env python3
"""
Temporal Fusion Engine - the query facade

One explicitly constructed object ties the pieces together:

    ┌────────────────┐   current_fused_time()   ┌──────────────────────┐
    │ SyncScheduler  │ ───────────────────────▶ │                      │
    │ (background)   │                          │ TemporalFusionEngine │ ◀── callers
    └────────────────┘                          │                      │
    ┌────────────────┐   insert / point_at /    │                      │
    │ StreamRegistry │ ◀─────── range_query ─── │                      │
    │ TemporalIndex  │                          │                      │
    └────────────────┘                          └──────────┬───────────┘
                                                           │ on range reads
                                                ┌──────────▼───────────┐
                                                │   GapReconstructor   │
                                                └──────────────────────┘

Reads never wait on the sync cycle: the current time is an immutable
publication, and stream reads only take their stream's read lock.
"""

from dataclasses import replace
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union
import logging
import threading
import time

from ..interfaces.data_models import DataPoint, InterpolationMethod, StreamConfig
from ..interfaces.timing_result import FusedTime
from ..reconstruction.gap_reconstructor import GapReconstructor
from ..store.streams import DataStream, StreamRegistry
from .sync_scheduler import SyncScheduler

logger = logging.getLogger(__name__)

PointLike = Union[DataPoint, Mapping[str, Any]]


class TemporalFusionEngine:
    """
    Fused time plus time-indexed, gap-filled data streams.

    Usage:
        engine = TemporalFusionEngine(SyncScheduler(sources))
        engine.start()
        engine.register_stream("temp", resolution_ms=60000)
        engine.add_data_points("temp", [{"timestamp": t, "value": 20.5}])
        engine.get_data_in_range("temp", start, end)
        engine.stop()
    """

    def __init__(
        self,
        scheduler: Optional[SyncScheduler] = None,
        reconstructor: Optional[GapReconstructor] = None,
        registry: Optional[StreamRegistry] = None,
        default_stream_config: Optional[StreamConfig] = None,
    ):
        """
        Args:
            scheduler: Sync scheduler (default: no sources, local clock only)
            reconstructor: Gap reconstructor for range reads
            registry: Stream registry
            default_stream_config: Config used when register_stream gets none
        """
        self.scheduler = scheduler or SyncScheduler()
        self.reconstructor = reconstructor or GapReconstructor()
        self.registry = registry or StreamRegistry()
        self.default_stream_config = default_stream_config or StreamConfig()

        self.start_time = 0.0
        self._shutdown = threading.Event()

    # ------------------------------------------------------------------
    # Time
    # ------------------------------------------------------------------

    def get_current_time(self) -> FusedTime:
        """Best current estimate of authoritative time. Never blocks on I/O."""
        return self.scheduler.current_fused_time()

    def get_timing_quality(self) -> Dict[str, Any]:
        fused = self.get_current_time()
        outcomes = self.scheduler.last_outcomes
        return {
            **fused.to_dict(),
            'clock_status': self.scheduler.clock_status.value,
            'sources_configured': len(self.scheduler.sources),
            'sources_active': sum(1 for o in outcomes if o.ok),
            'drift_ppm': self.scheduler.drift.drift_ppm,
            'last_cycle_error': str(self.scheduler.last_cycle_error) if self.scheduler.last_cycle_error else None,
        }

    # ------------------------------------------------------------------
    # Streams
    # ------------------------------------------------------------------

    def register_stream(self, stream_id: str, config: Optional[StreamConfig] = None, **overrides) -> DataStream:
        """
        Create a stream.

        Args:
            stream_id: Unique name
            config: Full configuration (default: the engine default)
            **overrides: Individual StreamConfig fields, e.g. resolution_ms=60000

        Raises:
            DuplicateStream: stream_id is already registered
            ValueError: invalid configuration
        """
        config = config or self.default_stream_config
        if overrides:
            config = replace(config, **overrides)
        return self.registry.register(stream_id, config)

    def unregister_stream(self, stream_id: str) -> None:
        """Drop a stream and all of its data. Raises UnknownStream."""
        self.registry.unregister(stream_id)

    def get_stream(self, stream_id: str) -> DataStream:
        return self.registry.get(stream_id)

    def list_streams(self) -> List[str]:
        return self.registry.ids()

    def _to_point(self, item: PointLike) -> DataPoint:
        if isinstance(item, DataPoint):
            return item
        if not isinstance(item, Mapping):
            raise TypeError(f"Expected DataPoint or mapping, got {type(item).__name__}")

        fields = dict(item)
        timestamp = fields.pop('timestamp', None)
        payload = fields.pop('payload') if 'payload' in fields else fields
        if timestamp is None:
            # Unstamped readings take the fused time of arrival
            timestamp = self.get_current_time().timestamp
        return DataPoint.observed(int(timestamp), payload)

    def add_data_points(self, stream_id: str, points: Union[PointLike, Iterable[PointLike]]) -> int:
        """
        Append points to a stream.

        Accepts DataPoints or mappings with a `timestamp` (ms) and either a
        `payload` mapping or flat fields. Mappings without a timestamp are
        stamped with the current fused time.

        Returns:
            Number of points now held by the index

        Raises:
            UnknownStream: stream_id is not registered
        """
        stream = self.registry.get(stream_id)
        if isinstance(points, (DataPoint, Mapping)):
            points = [points]
        converted = [self._to_point(p) for p in points]
        kept = stream.index.insert_many(converted)
        logger.debug(f"[{stream_id}] added {kept}/{len(converted)} points")
        return kept

    def get_data_at_time(
        self,
        stream_id: str,
        t: int,
        method: Optional[Union[str, InterpolationMethod]] = None,
    ) -> Optional[DataPoint]:
        """Point lookup using the stream's interpolation method (or `method`)."""
        stream = self.registry.get(stream_id)
        return stream.index.point_at(t, InterpolationMethod.parse(method) if method else None)

    def _snapshot(self, stream: DataStream, start: int, end: int):
        return stream.index.snapshot(start, end, self.reconstructor.window_size)

    def get_data_in_range(self, stream_id: str, start: int, end: int, reconstruct: bool = True) -> List[DataPoint]:
        """
        Time-ordered points in [start, end].

        With reconstruct (default), gaps are filled with RECONSTRUCTED points
        that are not stored.
        """
        stream = self.registry.get(stream_id)
        if not reconstruct:
            return stream.index.range_query(start, end)
        stored, anchors = self._snapshot(stream, start, end)
        synthesized = self.reconstructor.reconstruct(anchors, start, end, stream.config)
        return self.reconstructor.merge(stored, synthesized, stream.config.resolution_ms)

    def commit_reconstructed(self, stream_id: str, start: int, end: int) -> int:
        """
        Store the reconstruction of [start, end] in the index.

        Committed points stay RECONSTRUCTED and never replace observed data.

        Returns:
            Number of reconstructed points stored
        """
        stream = self.registry.get(stream_id)
        _, anchors = self._snapshot(stream, start, end)
        synthesized = self.reconstructor.reconstruct(anchors, start, end, stream.config)
        kept = stream.index.insert_many(synthesized) if synthesized else 0
        logger.info(f"[{stream_id}] committed {kept} reconstructed points in [{start}, {end}]")
        return kept

    def get_reconstruction_metrics(self, stream_id: str) -> Dict[str, Any]:
        stream = self.registry.get(stream_id)
        fused = self.get_current_time()
        last = self.scheduler.last_published
        stats = stream.index.stats()
        return {
            'stream_id': stream_id,
            'quality': fused.quality_score,
            'uncertainty': fused.estimated_accuracy,
            'source': fused.contributing_source_id,
            'last_update': last.timestamp if last else None,
            'total_points': stats['points'],
            'observed_points': stats['observed'],
            'reconstructed_points': stats['reconstructed'],
            'evicted_points': stats['evicted'],
            'span_ms': stats['span_ms'],
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self.scheduler.running

    def start(self):
        """Start background time synchronization."""
        if self.running:
            logger.warning("Engine already running")
            return

        logger.info("=" * 60)
        logger.info("Temporal fusion engine starting")
        logger.info(f"  Sources: {', '.join(s.source_id for s in self.scheduler.sources) or '(local clock only)'}")
        logger.info(f"  Sync interval: {self.scheduler.interval_s:.1f}s")
        logger.info(f"  Streams: {len(self.registry)}")
        logger.info("=" * 60)

        self.start_time = time.time()
        self._shutdown.clear()
        self.scheduler.start()

    def stop(self, timeout: Optional[float] = None):
        """Stop synchronization, draining the in-flight cycle."""
        self._shutdown.set()
        self.scheduler.stop(timeout=timeout)
        logger.info("Temporal fusion engine stopped")

    def run(self):
        """Run the engine until SIGINT/SIGTERM (blocking)."""
        import signal

        def handle_signal(signum, frame):
            logger.info(f"Received signal {signum}")
            self._shutdown.set()

        signal.signal(signal.SIGTERM, handle_signal)
        signal.signal(signal.SIGINT, handle_signal)

        self.start()
        try:
            while not self._shutdown.wait(1.0):
                pass
        except KeyboardInterrupt:
            pass
        finally:
            self.stop()

    def get_status(self) -> Dict[str, Any]:
        """Full engine status (served as JSON by the health server)."""
        return {
            'service': 'temporal-fusion',
            'running': self.running,
            'uptime_seconds': (time.time() - self.start_time) if self.start_time else 0.0,
            'timing': self.get_timing_quality(),
            'sync': self.scheduler.get_status(),
            'streams': {s.stream_id: s.to_dict() for s in self.registry.streams()},
        }
