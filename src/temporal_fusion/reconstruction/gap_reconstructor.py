"""
Gap Reconstructor - synthesize plausible values where samples are missing

================================================================================
GAPS
================================================================================
Walking the OBSERVED anchors of a query range in time order (with the
nearest anchor outside each edge, or the edge itself when there is none),
any two consecutive boundaries more than 2 × resolution apart bound a gap:

    anchor ──── res ──── [ first missing … last missing ] ──── res ──── anchor

The gap's duration is anchor-to-anchor, or anchor-to-edge on an open side.

================================================================================
FILLING
================================================================================
Numeric fields:  median of up to `window_size` trailing OBSERVED values and
                 of up to `window_size` leading ones, blended linearly across
                 the gap. With one side only, that side's median is held.
                 Medians keep a single spike from being smeared across a
                 long hole, and a held median never runs away the way a
                 fitted trend would.
Text fields:     value of the nearer anchor.

Every synthesized point is RECONSTRUCTED, bucket-aligned, and carries

    confidence = max(0.3, 1 − gap_duration / retention_window)  (< 1.0)

Results are computed on read and discarded unless explicitly committed.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence
import logging
import math

import numpy as np

from ..interfaces.data_models import DataPoint, PayloadValue, StreamConfig, is_numeric
from ..store.interpolation import reconstruction_confidence
from ..store.temporal_index import bucket_key

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Gap:
    """A hole in a stream's observed data within a query range."""
    start: int                          # first missing instant (ms)
    end: int                            # last missing instant (ms)
    duration_ms: int                    # anchor-to-anchor / anchor-to-edge
    before: Optional[DataPoint] = None  # trailing anchor
    after: Optional[DataPoint] = None   # leading anchor

    @property
    def anchored(self) -> bool:
        return self.before is not None or self.after is not None


class GapReconstructor:
    """
    Fills gaps in a stream's observed data for range queries.

    Stateless; one instance can serve every stream.
    """

    def __init__(self, window_size: int = 5, max_points_per_query: Optional[int] = None):
        """
        Args:
            window_size: OBSERVED points per side feeding each median
            max_points_per_query: cap on synthesized points per call
                (default: the stream's max_points)
        """
        if window_size < 1:
            raise ValueError(f"window_size must be at least 1, got {window_size}")
        if max_points_per_query is not None and max_points_per_query < 1:
            raise ValueError(f"max_points_per_query must be at least 1, got {max_points_per_query}")
        self.window_size = window_size
        self.max_points_per_query = max_points_per_query

    def find_gaps(
        self,
        anchors: Sequence[DataPoint],
        start: int,
        end: int,
        resolution_ms: int,
    ) -> List[Gap]:
        """
        Locate gaps within [start, end].

        Args:
            anchors: OBSERVED points, time-ordered; may extend past the range
            start, end: query range (ms, inclusive)
            resolution_ms: stream bucket width

        Returns:
            Gaps in time order, clipped to the range
        """
        if end < start:
            return []

        inside = [a for a in anchors if start <= a.timestamp <= end]
        previous = next((a for a in reversed(anchors) if a.timestamp < start), None)
        following = next((a for a in anchors if a.timestamp > end), None)

        bounds = [(previous.timestamp, previous) if previous else (start, None)]
        bounds.extend((a.timestamp, a) for a in inside)
        bounds.append((following.timestamp, following) if following else (end, None))

        gaps = []
        threshold = 2 * resolution_ms
        for (left_t, left), (right_t, right) in zip(bounds, bounds[1:]):
            if right_t - left_t <= threshold:
                continue
            gap_start = max(start, left_t + resolution_ms if left else left_t)
            gap_end = min(end, right_t - resolution_ms if right else right_t)
            if gap_start > gap_end:
                continue
            gaps.append(Gap(
                start=gap_start,
                end=gap_end,
                duration_ms=right_t - left_t,
                before=left,
                after=right,
            ))
        return gaps

    def reconstruct(
        self,
        anchors: Sequence[DataPoint],
        start: int,
        end: int,
        config: StreamConfig,
    ) -> List[DataPoint]:
        """
        Synthesize RECONSTRUCTED points across every anchored gap in [start, end].

        Args:
            anchors: stream context, typically TemporalIndex.observed_context()
            start, end: query range (ms, inclusive)
            config: the stream's configuration

        Returns:
            Synthesized points in time order (possibly empty)
        """
        observed = sorted((a for a in anchors if a.is_observed), key=lambda p: p.timestamp)
        if not observed:
            return []

        res = config.resolution_ms
        gaps = [g for g in self.find_gaps(observed, start, end, res) if g.anchored]
        if not gaps:
            return []

        # Coarsen the step (in whole buckets) when the gaps hold more slots than allowed
        budget = self.max_points_per_query or config.max_points
        slots = sum(self._slot_count(g, res) for g in gaps)
        step = res * max(1, math.ceil(slots / budget))
        if step != res:
            logger.debug(f"Reconstruction: {slots} slots over budget {budget}, stepping {step}ms")

        synthesized: List[DataPoint] = []
        for gap in gaps:
            synthesized.extend(self._fill(gap, observed, config, step))
            if len(synthesized) >= budget:
                synthesized = synthesized[:budget]
                break

        logger.debug(
            f"Reconstruction: {len(gaps)} gaps in [{start}, {end}] → {len(synthesized)} points"
        )
        return synthesized

    @staticmethod
    def _slot_count(gap: Gap, res: int) -> int:
        first = -(-gap.start // res) * res
        last = bucket_key(gap.end, res)
        return (last - first) // res + 1 if first <= last else 0

    def _window_medians(self, points: Sequence[DataPoint]) -> Dict[str, float]:
        values: Dict[str, List[float]] = {}
        for p in points:
            for key, value in p.payload.items():
                if is_numeric(value):
                    values.setdefault(key, []).append(float(value))
        return {key: float(np.median(v)) for key, v in values.items()}

    def _fill(self, gap: Gap, observed: Sequence[DataPoint], config: StreamConfig, step: int) -> List[DataPoint]:
        res = config.resolution_ms
        trailing: List[DataPoint] = []
        leading: List[DataPoint] = []
        if gap.before is not None:
            i = observed.index(gap.before)
            trailing = list(observed[max(0, i - self.window_size + 1):i + 1])
        if gap.after is not None:
            j = observed.index(gap.after)
            leading = list(observed[j:j + self.window_size])

        trailing_medians = self._window_medians(trailing)
        leading_medians = self._window_medians(leading)
        confidence = reconstruction_confidence(gap.duration_ms, config.retention_window_ms)

        left_t = gap.before.timestamp if gap.before else gap.start
        right_t = gap.after.timestamp if gap.after else gap.end
        span = right_t - left_t

        points = []
        t = -(-gap.start // res) * res
        while t <= gap.end:
            fraction = (t - left_t) / span if span > 0 else 0.0
            payload = self._text_fields(gap, t)
            for key in list(trailing_medians) + [k for k in leading_medians if k not in trailing_medians]:
                lo = trailing_medians.get(key)
                hi = leading_medians.get(key)
                if lo is not None and hi is not None:
                    payload[key] = lo + (hi - lo) * fraction
                else:
                    payload[key] = lo if lo is not None else hi
            points.append(DataPoint.reconstructed(t, payload, confidence))
            t += step
        return points

    @staticmethod
    def _text_fields(gap: Gap, t: int) -> Dict[str, PayloadValue]:
        """Non-numeric fields from the nearer anchor (ties → earlier), the other filling blanks."""
        sides = [p for p in (gap.before, gap.after) if p is not None]
        sides.sort(key=lambda p: abs(t - p.timestamp))
        payload: Dict[str, PayloadValue] = {}
        for p in reversed(sides):
            payload.update({k: v for k, v in p.payload.items() if not is_numeric(v)})
        return payload

    @staticmethod
    def merge(
        stored: Sequence[DataPoint],
        synthesized: Sequence[DataPoint],
        resolution_ms: Optional[int] = None,
    ) -> List[DataPoint]:
        """
        Time-ordered union of stored and synthesized points.

        With resolution_ms, a synthesized point sharing a bucket with a
        stored one is dropped: the index stays authoritative.
        """
        if resolution_ms:
            taken = {bucket_key(p.timestamp, resolution_ms) for p in stored}
            synthesized = [p for p in synthesized if bucket_key(p.timestamp, resolution_ms) not in taken]
        return sorted(list(stored) + list(synthesized), key=lambda p: p.timestamp)
