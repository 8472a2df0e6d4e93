"""
Temporal Index - per-stream time-bucketed store

================================================================================
LAYOUT
================================================================================
Every DataPoint lives under the bucket key

    key = floor(timestamp / resolution_ms) × resolution_ms

Keys are kept in a sorted list (bisect), points in a dict by key. A second
sorted list holds only the keys of OBSERVED points so that STEP, LINEAR
and CUBIC lookups find their bracketing evidence in O(log n).

Collisions are last-write-wins, with one exception: a RECONSTRUCTED point
never replaces an OBSERVED one.

================================================================================
EVICTION
================================================================================
After every write, oldest buckets are dropped while

    len(index) > max_points
    or newest_key − oldest_key > retention_window_ms

so memory stays bounded no matter how long producers keep pushing.

All public methods take the stream's reader-writer lock; range queries
return fresh lists that callers may keep.
"""

from bisect import bisect_left, bisect_right, insort
from typing import Any, Dict, Iterable, List, Optional, Tuple
import logging

from ..interfaces.data_models import DataPoint, InterpolationMethod, StreamConfig
from .interpolation import interpolate_at, CUBIC_POINTS_PER_SIDE
from .rwlock import ReadWriteLock

logger = logging.getLogger(__name__)


def bucket_key(timestamp: int, resolution_ms: int) -> int:
    """Quantize a timestamp down to its bucket boundary."""
    return (int(timestamp) // resolution_ms) * resolution_ms


class TemporalIndex:
    """
    Sorted, bounded, thread-safe store of one stream's DataPoints.
    """

    def __init__(self, config: StreamConfig, stream_id: str = ""):
        self.config = config
        self.stream_id = stream_id

        self._keys: List[int] = []
        self._observed_keys: List[int] = []
        self._points: Dict[int, DataPoint] = {}
        self._lock = ReadWriteLock()

        self.counters = {
            'inserted': 0,
            'replaced': 0,
            'rejected': 0,
            'evicted': 0,
        }

    def __len__(self) -> int:
        with self._lock.read_locked():
            return len(self._keys)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert(self, point: DataPoint) -> bool:
        """
        Insert one point.

        Returns:
            True if the point is in the index afterwards, False if it was
            refused (would overwrite OBSERVED data) or evicted at once
            (older than the retention window)
        """
        return self.insert_many([point]) == 1

    def insert_many(self, points: Iterable[DataPoint]) -> int:
        """Insert points under one write lock; returns how many were kept."""
        with self._lock.write_locked():
            keys = [key for key in (self._insert_locked(p) for p in points) if key is not None]
            self._evict_locked()
            return sum(1 for key in keys if key in self._points)

    def _insert_locked(self, point: DataPoint) -> Optional[int]:
        key = bucket_key(point.timestamp, self.config.resolution_ms)
        existing = self._points.get(key)

        if existing is None:
            insort(self._keys, key)
            self.counters['inserted'] += 1
        elif existing.is_observed and not point.is_observed:
            self.counters['rejected'] += 1
            logger.debug(f"[{self.stream_id}] refusing reconstructed point over observed bucket {key}")
            return None
        else:
            self.counters['replaced'] += 1

        if point.is_observed and (existing is None or not existing.is_observed):
            insort(self._observed_keys, key)

        self._points[key] = point
        return key

    def _evict_locked(self):
        if not self._keys:
            return

        drop = max(0, len(self._keys) - self.config.max_points)
        cutoff = self._keys[-1] - self.config.retention_window_ms
        drop = max(drop, bisect_left(self._keys, cutoff))
        if not drop:
            return

        for key in self._keys[:drop]:
            del self._points[key]
        del self._keys[:drop]

        oldest = self._keys[0] if self._keys else None
        observed_drop = bisect_left(self._observed_keys, oldest) if oldest is not None else len(self._observed_keys)
        del self._observed_keys[:observed_drop]

        self.counters['evicted'] += drop
        logger.debug(f"[{self.stream_id}] evicted {drop} oldest buckets")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def point_at(self, t: int, method: Optional[InterpolationMethod] = None) -> Optional[DataPoint]:
        """
        Answer "what was the value at t?".

        An exact bucket hit returns the stored point unmodified whatever the
        method. Otherwise NEAREST and STEP return a stored point, LINEAR
        and CUBIC synthesize a RECONSTRUCTED one. None when the index has
        nothing to offer (empty, or t outside the observed span for
        LINEAR/CUBIC, or before the first observation for STEP).
        """
        method = InterpolationMethod.parse(method or self.config.interpolation)
        t = int(t)
        key = bucket_key(t, self.config.resolution_ms)

        with self._lock.read_locked():
            hit = self._points.get(key)
            if hit is not None:
                return hit
            if not self._keys:
                return None

            if method == InterpolationMethod.NEAREST:
                return self._nearest_locked(t, key)

            i = bisect_left(self._observed_keys, key)
            if method == InterpolationMethod.STEP:
                return self._points[self._observed_keys[i - 1]] if i > 0 else None

            before = [self._points[k] for k in self._observed_keys[max(0, i - CUBIC_POINTS_PER_SIDE):i]]
            after = [self._points[k] for k in self._observed_keys[i:i + CUBIC_POINTS_PER_SIDE]]

        return interpolate_at(method, t, before, after, self.config.retention_window_ms)

    def _nearest_locked(self, t: int, key: int) -> DataPoint:
        i = bisect_left(self._keys, key)
        candidates = [self._points[k] for k in self._keys[max(0, i - 1):i + 1]]
        # min() keeps the first of equal distances, i.e. the earlier point
        return min(candidates, key=lambda p: abs(t - p.timestamp))

    def range_query(self, start: int, end: int) -> List[DataPoint]:
        """All stored points with start <= timestamp <= end, time-ordered."""
        with self._lock.read_locked():
            return self._range_locked(start, end)

    def observed_context(self, start: int, end: int, window: int) -> List[DataPoint]:
        """
        OBSERVED points within [start, end] plus up to `window` more on each side.

        These are the anchors a gap reconstructor needs: the trailing and
        leading evidence around holes at the edges of the range.
        """
        with self._lock.read_locked():
            return self._context_locked(start, end, window)

    def snapshot(self, start: int, end: int, window: int) -> Tuple[List[DataPoint], List[DataPoint]]:
        """
        range_query() and observed_context() read under one lock.

        Gap filling merges the two, so they must describe the same state
        of the index.
        """
        with self._lock.read_locked():
            return self._range_locked(start, end), self._context_locked(start, end, window)

    def _range_locked(self, start: int, end: int) -> List[DataPoint]:
        if end < start:
            return []
        res = self.config.resolution_ms
        lo = bisect_left(self._keys, bucket_key(start, res))
        hi = bisect_right(self._keys, bucket_key(end, res))
        return [
            p for p in (self._points[k] for k in self._keys[lo:hi])
            if start <= p.timestamp <= end
        ]

    def _context_locked(self, start: int, end: int, window: int) -> List[DataPoint]:
        res = self.config.resolution_ms
        lo = bisect_left(self._observed_keys, bucket_key(start, res))
        hi = bisect_right(self._observed_keys, bucket_key(end, res))
        keys = self._observed_keys[max(0, lo - window):hi + window]
        return [self._points[k] for k in keys]

    def stats(self) -> Dict[str, Any]:
        with self._lock.read_locked():
            total = len(self._keys)
            observed = len(self._observed_keys)
            oldest = self._keys[0] if self._keys else None
            newest = self._keys[-1] if self._keys else None
            return {
                'points': total,
                'observed': observed,
                'reconstructed': total - observed,
                'oldest': oldest,
                'newest': newest,
                'span_ms': (newest - oldest) if total else 0,
                **self.counters,
            }
