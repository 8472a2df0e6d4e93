#!/usr/bin/env python3
"""
Sync Scheduler - periodic fetch → fuse → publish loop

State machine:
    IDLE → FETCHING → FUSING → PUBLISHED → (sleep) → FETCHING → ...
                                                  ↘ STOPPED (on stop())

Each cycle fans the configured TimeSources out over a bounded thread pool,
waits for every adapter to answer or time out, fuses the successful samples
and publishes the result with a single reference swap. A cycle in which no
source answered still publishes (the local-clock fallback, quality 0), so
the loop never stalls.

Readers call current_fused_time(), which never touches the network: it
returns the last publication advanced by the local monotonic clock, with
the tracked oscillator drift applied.
"""

from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence
import logging
import math
import threading
import time

from ..interfaces.errors import NoSourcesAvailable, SourceTimeout, SourceUnavailable, TimeSourceError
from ..interfaces.timing_result import ClockStatus, FusedTime, TimeSample, LOCAL_SOURCE_ID
from ..sources.time_source import TimeSource
from ..timing.clock_drift import KalmanDriftTracker
from ..timing.time_fusion import TimeFusionEngine, wall_clock_ms

logger = logging.getLogger(__name__)


class SyncState(Enum):
    """Scheduler operational state."""
    IDLE = "IDLE"              # Constructed, no cycle yet
    FETCHING = "FETCHING"      # Waiting on adapters
    FUSING = "FUSING"          # Combining samples
    PUBLISHED = "PUBLISHED"    # Latest FusedTime available, sleeping
    STOPPED = "STOPPED"        # Loop exited


@dataclass(frozen=True)
class FetchOutcome:
    """Result of one adapter fetch within a cycle: a sample or an error, never both."""
    source_id: str
    sample: Optional[TimeSample] = None
    error: Optional[TimeSourceError] = None

    @property
    def ok(self) -> bool:
        return self.sample is not None


@dataclass(frozen=True)
class _Publication:
    """Immutable published state; replaced wholesale on each cycle."""
    fused: FusedTime
    anchor: float          # monotonic seconds at publication
    drift_ppm: float


class SyncScheduler:
    """
    Background loop that keeps a fused time estimate fresh.

    The scheduler owns its worker pool and thread; stop() drains the
    in-flight cycle before returning.
    """

    def __init__(
        self,
        sources: Sequence[TimeSource] = (),
        fusion: Optional[TimeFusionEngine] = None,
        interval_s: float = 30.0,
        max_workers: int = 8,
        backstep_tolerance_ms: float = 50.0,
        drift_tracker: Optional[KalmanDriftTracker] = None,
        timeout_grace_s: float = 0.5,
        monotonic: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], int] = wall_clock_ms,
    ):
        """
        Initialize the scheduler.

        Args:
            sources: Timing adapters polled each cycle
            fusion: Fusion engine (default: TimeFusionEngine with defaults)
            interval_s: Pause between cycles
            max_workers: Upper bound on concurrent fetches
            backstep_tolerance_ms: Backward steps up to this (or the fused
                accuracy, if larger) are held instead of published
            drift_tracker: Kalman tracker for local oscillator drift
            timeout_grace_s: Slack added to the cycle deadline
            monotonic: Monotonic clock (seconds)
            wall_clock: Wall clock (epoch ms)
        """
        if interval_s <= 0:
            raise ValueError(f"interval_s must be positive, got {interval_s}")
        if max_workers < 1:
            raise ValueError(f"max_workers must be at least 1, got {max_workers}")

        ids = [s.source_id for s in sources]
        duplicates = sorted({sid for sid in ids if ids.count(sid) > 1})
        if duplicates:
            raise ValueError(f"Duplicate source ids: {', '.join(duplicates)}")
        if LOCAL_SOURCE_ID in ids:
            raise ValueError(f"Source id '{LOCAL_SOURCE_ID}' is reserved for the local clock fallback")

        self.sources: List[TimeSource] = list(sources)
        self._monotonic = monotonic
        self._wall_clock = wall_clock
        self.fusion = fusion or TimeFusionEngine(monotonic=monotonic, wall_clock=wall_clock)
        self.interval_s = interval_s
        self.max_workers = max_workers
        self.backstep_tolerance_ms = backstep_tolerance_ms
        self.drift = drift_tracker or KalmanDriftTracker()
        self.timeout_grace_s = timeout_grace_s

        # State
        self.state = SyncState.IDLE
        self._publication: Optional[_Publication] = None
        self.last_cycle_error: Optional[NoSourcesAvailable] = None
        self.last_outcomes: List[FetchOutcome] = []

        # Threading
        self._cycle_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._listeners: List[Callable[[FusedTime], None]] = []

        # Statistics
        self.stats: Dict[str, Any] = {
            'cycles': 0,
            'failed_cycles': 0,
            'resets': 0,
            'held_backsteps': 0,
            'last_cycle_ms': 0.0,
            'start_time': 0.0,
        }
        self.source_stats: Dict[str, Dict[str, Any]] = {
            s.source_id: {'successes': 0, 'failures': 0, 'last_error': None, 'last_latency_ms': None}
            for s in self.sources
        }

    # ------------------------------------------------------------------
    # Readers
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def last_published(self) -> Optional[FusedTime]:
        """The FusedTime of the last publication, without extrapolation."""
        publication = self._publication
        return publication.fused if publication else None

    @property
    def clock_status(self) -> ClockStatus:
        publication = self._publication
        if publication is None:
            return ClockStatus.ACQUIRING
        return ClockStatus.DEGRADED if publication.fused.is_fallback else ClockStatus.SYNCED

    def current_fused_time(self) -> FusedTime:
        """
        Latest fused time, advanced to now.

        Returns the last publication plus the local monotonic delta since it
        was published (drift-compensated). Before the first cycle this is
        the local-clock fallback. Never blocks on network I/O.
        """
        publication = self._publication
        if publication is None:
            return self.fusion.fallback()
        return replace(
            publication.fused,
            timestamp=self._extrapolate(publication, self._monotonic()),
        )

    @staticmethod
    def _extrapolate(publication: _Publication, now: float) -> int:
        elapsed_ms = max(0.0, now - publication.anchor) * 1000.0
        return publication.fused.timestamp + int(round(elapsed_ms * (1.0 + publication.drift_ppm * 1e-6)))

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_listener(self, callback: Callable[[FusedTime], None]):
        """Register a callback invoked with each published FusedTime."""
        self._listeners.append(callback)

    def _notify(self, fused: FusedTime):
        for callback in list(self._listeners):
            try:
                callback(fused)
            except Exception as e:
                logger.error(f"Sync listener {callback!r} failed: {e}")

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    def _ensure_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            workers = max(1, min(self.max_workers, len(self.sources)))
            self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="TimeSourceFetch")
        return self._executor

    def _cycle_deadline_s(self) -> float:
        """Worst case: sources queue behind the pool in batches of max_workers."""
        workers = max(1, min(self.max_workers, len(self.sources)))
        batches = math.ceil(len(self.sources) / workers)
        return batches * max(s.timeout_s for s in self.sources) + self.timeout_grace_s

    def _restamp(self, sample: TimeSample) -> TimeSample:
        """Move fetched_at from the adapter's time.monotonic() onto this scheduler's clock."""
        if self._monotonic is time.monotonic:
            return sample
        age = time.monotonic() - sample.fetched_at
        return replace(sample, fetched_at=self._monotonic() - age)

    def fetch_all(self) -> List[FetchOutcome]:
        """
        Fetch every source concurrently and collect typed outcomes.

        Returns one FetchOutcome per configured source, in configuration
        order. Sources still running at the cycle deadline are reported as
        SourceTimeout; their threads finish in the background and are
        drained by stop().
        """
        if not self.sources:
            return []

        executor = self._ensure_executor()
        futures = [(source, executor.submit(source.fetch)) for source in self.sources]
        _, not_done = wait([f for _, f in futures], timeout=self._cycle_deadline_s())

        outcomes = []
        for source, future in futures:
            if future in not_done:
                future.cancel()
                error: TimeSourceError = SourceTimeout(source.source_id, "missed the cycle deadline")
                outcomes.append(FetchOutcome(source.source_id, error=error))
                continue
            try:
                sample = future.result()
            except TimeSourceError as e:
                outcomes.append(FetchOutcome(source.source_id, error=e))
            except Exception as e:
                logger.exception(f"  {source.source_id}: adapter raised unexpectedly: {e}")
                outcomes.append(FetchOutcome(source.source_id, error=SourceUnavailable(source.source_id, str(e))))
            else:
                outcomes.append(FetchOutcome(source.source_id, sample=self._restamp(sample)))

        for outcome in outcomes:
            stats = self.source_stats.setdefault(
                outcome.source_id,
                {'successes': 0, 'failures': 0, 'last_error': None, 'last_latency_ms': None},
            )
            if outcome.ok:
                stats['successes'] += 1
                stats['last_latency_ms'] = outcome.sample.fetch_latency
            else:
                stats['failures'] += 1
                stats['last_error'] = f"{type(outcome.error).__name__}: {outcome.error}"
                logger.warning(f"  {outcome.source_id}: {type(outcome.error).__name__} ({outcome.error})")

        return outcomes

    def run_cycle(self) -> FusedTime:
        """
        Perform one fetch → fuse → publish cycle synchronously.

        Returns:
            The FusedTime as published (after monotonic hold, if any)
        """
        with self._cycle_lock:
            started = self._monotonic()

            self.state = SyncState.FETCHING
            outcomes = self.fetch_all()
            self.last_outcomes = outcomes

            self.state = SyncState.FUSING
            samples = [o.sample for o in outcomes if o.ok]
            if samples:
                self.last_cycle_error = None
            else:
                self.last_cycle_error = NoSourcesAvailable({o.source_id: o.error for o in outcomes})
                self.stats['failed_cycles'] += 1
                logger.warning(f"{self.last_cycle_error} - publishing local clock fallback")

            fused = self._publish(self.fusion.fuse(samples))

            self.state = SyncState.PUBLISHED
            self.stats['cycles'] += 1
            self.stats['last_cycle_ms'] = (self._monotonic() - started) * 1000.0

        logger.debug(
            f"Sync cycle #{self.stats['cycles']}: {len(samples)}/{len(outcomes)} sources, "
            f"quality={fused.quality_score:.2f}, best={fused.contributing_source_id}"
        )
        self._notify(fused)
        return fused

    def _publish(self, fused: FusedTime) -> FusedTime:
        """Swap in a new publication, holding small backward steps."""
        now = self._monotonic()
        previous = self._publication

        if fused.is_fallback:
            # The local clock is published as read: no hold, no drift
            if previous is not None and not previous.fused.is_fallback:
                step_ms = fused.timestamp - self._extrapolate(previous, now)
                self._reset_clock(f"all sources lost, local clock takes over ({step_ms:+d}ms step)")
            self._publication = _Publication(fused=fused, anchor=now, drift_ppm=0.0)
            return fused

        if previous is not None:
            expected = self._extrapolate(previous, now)
            if fused.timestamp < expected:
                backstep_ms = expected - fused.timestamp
                tolerance_ms = max(fused.estimated_accuracy * 1000.0, self.backstep_tolerance_ms)
                if backstep_ms <= tolerance_ms:
                    logger.debug(f"Holding fused time: {backstep_ms}ms backward step within ±{tolerance_ms:.0f}ms")
                    self.stats['held_backsteps'] += 1
                    fused = replace(fused, timestamp=expected)
                else:
                    self._reset_clock(f"{backstep_ms}ms backward step exceeds ±{tolerance_ms:.0f}ms")

        offset_ms = fused.timestamp - self._wall_clock()
        self.drift.update(
            offset_ms,
            timestamp=now,
            measurement_noise_ms=max(1.0, fused.estimated_accuracy * 1000.0),
        )

        self._publication = _Publication(fused=fused, anchor=now, drift_ppm=self.drift.drift_ppm)
        return fused

    def _reset_clock(self, reason: str):
        logger.warning(f"Fused clock reset: {reason}")
        self.stats['resets'] += 1
        self.drift.reset()

    def reset(self):
        """Explicit reset: forget the publication and the drift estimate."""
        with self._cycle_lock:
            self._publication = None
            self.drift.reset()
            self.stats['resets'] += 1
            logger.info("Fused clock reset requested")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _loop(self):
        """Scheduler loop (runs in background thread)."""
        logger.info(f"Sync loop running every {self.interval_s:.1f}s over {len(self.sources)} sources")
        while not self._stop_event.is_set():
            try:
                self.run_cycle()
            except Exception as e:
                logger.exception(f"Error in sync cycle: {e}")
            self._stop_event.wait(self.interval_s)
        self.state = SyncState.STOPPED

    def start(self):
        """Start the sync loop in a background thread."""
        if self.running:
            logger.warning("Sync scheduler already running")
            return

        self._stop_event.clear()
        self.stats['start_time'] = time.time()
        self._thread = threading.Thread(target=self._loop, name="SyncScheduler", daemon=True)
        self._thread.start()
        logger.info("Sync scheduler started")

    def stop(self, timeout: Optional[float] = None):
        """
        Stop the loop, letting an in-flight cycle finish.

        Args:
            timeout: Maximum seconds to wait for the loop thread (None = until
                the current cycle, itself deadline-bounded, completes)
        """
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning("Sync loop still finishing its cycle after stop timeout")
            self._thread = None

        # Drain any fetch still running past its cycle deadline
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

        self.state = SyncState.STOPPED
        logger.info(f"Sync scheduler stopped after {self.stats['cycles']} cycles")

    def get_status(self) -> Dict[str, Any]:
        """Snapshot for status reporting."""
        current = self.current_fused_time()
        return {
            'state': self.state.value,
            'clock_status': self.clock_status.value,
            'fused_time': current.to_dict(),
            'drift_ppm': self.drift.drift_ppm,
            'offset_ms': self.drift.offset_ms if self.drift.count else None,
            'last_cycle_error': str(self.last_cycle_error) if self.last_cycle_error else None,
            'stats': dict(self.stats),
            'sources': {
                s.source_id: {**s.describe(), **self.source_stats.get(s.source_id, {})}
                for s in self.sources
            },
        }
