"""
Time Fusion Engine - accuracy-weighted ensembling of timing sources

================================================================================
ALGORITHM
================================================================================
Input: the TimeSamples that were fetched successfully in one sync cycle.

    1. Drop samples whose fetched_at is older than the staleness threshold.
    2. Nothing left → local-clock fallback, quality 0, source "local".
    3. weight_i = 1 / (accuracy_i × (2 − geometry_i))
         better accuracy and better geometry both raise the weight
    4. timestamp = Σ wᵢ·tᵢ / Σ wᵢ
    5. estimated_accuracy = min(accuracy_i)
    6. quality = mean(geometry_i) × min(1, n / min_sources_for_full_confidence)
    7. contributing source = smallest accuracy, ties → lowest fetch latency

More and better sources monotonically increase confidence; a single source
still yields a usable, lower-confidence estimate.
"""

from typing import Callable, List, Sequence
import logging
import math
import time

import numpy as np

from ..interfaces.timing_result import FusedTime, TimeSample, LOCAL_SOURCE_ID

logger = logging.getLogger(__name__)


def wall_clock_ms() -> int:
    """Host wall clock in epoch milliseconds."""
    return time.time_ns() // 1_000_000


class TimeFusionEngine:
    """
    Combines concurrent TimeSamples into one FusedTime.

    Stateless between calls; safe to share between threads.
    """

    def __init__(
        self,
        staleness_s: float = 60.0,
        min_sources_for_full_confidence: int = 4,
        fallback_accuracy_s: float = 1.0,
        monotonic: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], int] = wall_clock_ms,
    ):
        """
        Args:
            staleness_s: Samples fetched longer ago than this are discarded
            min_sources_for_full_confidence: Sample count at which quality
                stops being scaled down
            fallback_accuracy_s: Accuracy claimed for the local-clock fallback
            monotonic: Monotonic clock (seconds) used for staleness
            wall_clock: Wall clock (epoch ms) used for the fallback
        """
        if staleness_s <= 0:
            raise ValueError(f"staleness_s must be positive, got {staleness_s}")
        if min_sources_for_full_confidence < 1:
            raise ValueError("min_sources_for_full_confidence must be at least 1")
        if fallback_accuracy_s <= 0:
            raise ValueError(f"fallback_accuracy_s must be positive, got {fallback_accuracy_s}")

        self.staleness_s = staleness_s
        self.min_sources_for_full_confidence = min_sources_for_full_confidence
        self.fallback_accuracy_s = fallback_accuracy_s
        self._monotonic = monotonic
        self._wall_clock = wall_clock

    def fallback(self) -> FusedTime:
        """Local-clock FusedTime with zero quality."""
        return FusedTime(
            timestamp=int(self._wall_clock()),
            estimated_accuracy=self.fallback_accuracy_s,
            quality_score=0.0,
            contributing_source_id=LOCAL_SOURCE_ID,
            sample_count=0,
        )

    def select_valid(self, samples: Sequence[TimeSample]) -> List[TimeSample]:
        """Drop stale or physically meaningless samples."""
        now = self._monotonic()
        valid = []
        for sample in samples:
            age = now - sample.fetched_at
            if age > self.staleness_s:
                logger.debug(f"  {sample.source_id}: REJECTED (stale, {age:.1f}s old)")
                continue
            if not (sample.declared_accuracy > 0 and math.isfinite(sample.declared_accuracy)):
                logger.warning(f"  {sample.source_id}: REJECTED (accuracy={sample.declared_accuracy})")
                continue
            valid.append(sample)
        return valid

    def fuse(self, samples: Sequence[TimeSample]) -> FusedTime:
        """
        Fuse one cycle's samples.

        Never raises for an empty or fully stale input: the local-clock
        fallback is returned instead.

        Args:
            samples: Zero or more successfully fetched TimeSamples

        Returns:
            FusedTime for this cycle
        """
        valid = self.select_valid(samples)
        if not valid:
            logger.debug("Fusion: no valid samples, using local clock fallback")
            return self.fallback()

        accuracy = np.array([s.declared_accuracy for s in valid], dtype=np.float64)
        geometry = np.clip(np.array([s.geometry_quality for s in valid], dtype=np.float64), 0.0, 1.0)
        weights = 1.0 / (accuracy * (2.0 - geometry))

        # Average offsets from the earliest reading to keep float64 precision on epoch ms
        reference = min(s.raw_timestamp for s in valid)
        offsets = np.array([s.raw_timestamp - reference for s in valid], dtype=np.float64)
        timestamp = reference + int(round(float(np.sum(weights * offsets) / np.sum(weights))))

        n = len(valid)
        coverage = min(1.0, n / self.min_sources_for_full_confidence)
        quality = min(1.0, float(np.mean(geometry)) * coverage)

        best = min(valid, key=lambda s: (s.declared_accuracy, s.fetch_latency))

        fused = FusedTime(
            timestamp=timestamp,
            estimated_accuracy=float(np.min(accuracy)),
            quality_score=quality,
            contributing_source_id=best.source_id,
            sample_count=n,
        )

        logger.debug(
            f"Fusion: {n} sources → ts={fused.timestamp} ±{fused.estimated_accuracy:.3g}s "
            f"quality={fused.quality_score:.2f} best={fused.contributing_source_id}"
        )
        return fused
