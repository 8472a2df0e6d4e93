"""
Tests for the sync scheduler: fan-out, fallback, monotonic publication
and lifecycle.
"""

import threading
import time
import pytest


WALL = 1_700_000_000_000


def _scheduler(sources, fake_monotonic=None, **kwargs):
    from temporal_fusion.engine.sync_scheduler import SyncScheduler

    if fake_monotonic is not None:
        kwargs['monotonic'] = fake_monotonic
    kwargs.setdefault('wall_clock', lambda: WALL)
    return SyncScheduler(sources, **kwargs)


class TestFetchAll:
    """Tests for concurrent fetching."""

    def test_outcomes_in_configuration_order(self, fake_source):
        from temporal_fusion.interfaces.errors import SourceUnavailable

        sources = [
            fake_source('a', timestamp=WALL),
            fake_source('b', error=SourceUnavailable('b', 'down')),
            fake_source('c', timestamp=WALL + 2),
        ]
        scheduler = _scheduler(sources)
        try:
            outcomes = scheduler.fetch_all()
        finally:
            scheduler.stop()

        assert [o.source_id for o in outcomes] == ['a', 'b', 'c']
        assert [o.ok for o in outcomes] == [True, False, True]
        assert isinstance(outcomes[1].error, SourceUnavailable)
        assert scheduler.source_stats['b']['failures'] == 1
        assert scheduler.source_stats['a']['successes'] == 1

    def test_fetches_run_concurrently(self, fake_source):
        """Four 0.2s fetches finish in well under 0.8s."""
        sources = [fake_source(f's{i}', timestamp=WALL, delay_s=0.2) for i in range(4)]
        scheduler = _scheduler(sources, max_workers=4)
        try:
            started = time.monotonic()
            outcomes = scheduler.fetch_all()
            elapsed = time.monotonic() - started
        finally:
            scheduler.stop()

        assert all(o.ok for o in outcomes)
        assert elapsed < 0.6

    def test_unexpected_adapter_exception_is_contained(self, fake_source):
        from temporal_fusion.interfaces.errors import SourceUnavailable

        source = fake_source('weird')

        def broken_fetch():
            raise RuntimeError("adapter bug")

        source.fetch = broken_fetch
        scheduler = _scheduler([source])
        try:
            outcome, = scheduler.fetch_all()
        finally:
            scheduler.stop()

        assert isinstance(outcome.error, SourceUnavailable)

    def test_duplicate_source_ids_rejected(self, fake_source):
        with pytest.raises(ValueError, match="Duplicate"):
            _scheduler([fake_source('x'), fake_source('x')])

    def test_local_id_reserved(self, fake_source):
        with pytest.raises(ValueError, match="reserved"):
            _scheduler([fake_source('local')])


class TestRunCycle:
    """Tests for fetch → fuse → publish."""

    def test_publishes_fused_time(self, fake_source):
        from temporal_fusion.engine.sync_scheduler import SyncState
        from temporal_fusion.interfaces.timing_result import ClockStatus

        scheduler = _scheduler([fake_source('gps', timestamp=WALL, accuracy=1e-9)])
        assert scheduler.clock_status == ClockStatus.ACQUIRING
        try:
            fused = scheduler.run_cycle()
        finally:
            scheduler.stop()

        assert fused.timestamp == WALL
        assert fused.contributing_source_id == 'gps'
        assert scheduler.last_published == fused
        assert scheduler.clock_status == ClockStatus.SYNCED
        assert scheduler.last_cycle_error is None
        assert scheduler.stats['cycles'] == 1
        assert scheduler.state == SyncState.STOPPED

    def test_fresh_samples_with_advanced_monotonic_clock(self, fake_source, fake_monotonic):
        """Sample age is measured on the scheduler's clock, not the adapter's."""
        source = fake_source('gps', timestamp=WALL)
        scheduler = _scheduler([source], fake_monotonic)
        try:
            scheduler.run_cycle()
            fake_monotonic.advance(120.0)
            source.timestamp = WALL + 120_000
            fused = scheduler.run_cycle()
        finally:
            scheduler.stop()

        assert not fused.is_fallback
        assert fused.timestamp == WALL + 120_000
        assert fused.contributing_source_id == 'gps'
        assert scheduler.last_cycle_error is None

    def test_all_sources_time_out(self, fake_source):
        """Every adapter times out: quality 0, local clock within 5 ms."""
        from temporal_fusion.engine.sync_scheduler import SyncScheduler
        from temporal_fusion.interfaces.errors import NoSourcesAvailable, SourceTimeout
        from temporal_fusion.interfaces.timing_result import ClockStatus

        sources = [fake_source(f's{i}', delay_s=0.1, timeout_s=0.02) for i in range(3)]
        scheduler = SyncScheduler(sources)
        try:
            scheduler.run_cycle()
            current = scheduler.current_fused_time()
            local_ms = time.time() * 1000
        finally:
            scheduler.stop()

        assert current.quality_score == 0
        assert abs(current.timestamp - local_ms) <= 5
        assert scheduler.clock_status == ClockStatus.DEGRADED
        assert isinstance(scheduler.last_cycle_error, NoSourcesAvailable)
        assert all(isinstance(e, SourceTimeout) for e in scheduler.last_cycle_error.failures.values())
        assert scheduler.stats['failed_cycles'] == 1

    def test_no_sources_configured(self):
        from temporal_fusion.engine.sync_scheduler import SyncScheduler

        scheduler = SyncScheduler([])
        fused = scheduler.run_cycle()
        scheduler.stop()

        assert fused.is_fallback
        assert "no sources configured" in str(scheduler.last_cycle_error)

    def test_listener_notified(self, fake_source):
        scheduler = _scheduler([fake_source('gps', timestamp=WALL)])
        received = []
        scheduler.add_listener(received.append)
        try:
            fused = scheduler.run_cycle()
        finally:
            scheduler.stop()

        assert received == [fused]

    def test_listener_error_does_not_propagate(self, fake_source):
        scheduler = _scheduler([fake_source('gps', timestamp=WALL)])

        def broken(fused):
            raise RuntimeError("listener bug")

        received = []
        scheduler.add_listener(broken)
        scheduler.add_listener(received.append)
        try:
            scheduler.run_cycle()
        finally:
            scheduler.stop()

        assert len(received) == 1


class TestPublication:
    """Tests for extrapolation and monotonic publication."""

    def test_current_time_before_first_cycle_is_fallback(self):
        scheduler = _scheduler([])
        assert scheduler.current_fused_time().is_fallback
        assert scheduler.current_fused_time().timestamp == WALL

    def test_extrapolates_with_monotonic_clock(self, fake_source, fake_monotonic):
        scheduler = _scheduler([fake_source('gps', timestamp=WALL)], fake_monotonic)
        try:
            scheduler.run_cycle()
            fake_monotonic.advance(2.5)
            current = scheduler.current_fused_time()
        finally:
            scheduler.stop()

        assert current.timestamp == WALL + 2500
        assert current.contributing_source_id == 'gps'

    def test_small_backward_step_is_held(self, fake_source, fake_monotonic):
        source = fake_source('gps', timestamp=WALL, accuracy=1e-3)
        scheduler = _scheduler([source], fake_monotonic, backstep_tolerance_ms=50.0)
        try:
            scheduler.run_cycle()
            fake_monotonic.advance(1.0)
            source.timestamp = WALL + 1000 - 20
            published = scheduler.run_cycle()
        finally:
            scheduler.stop()

        assert published.timestamp == WALL + 1000
        assert scheduler.stats['held_backsteps'] == 1
        assert scheduler.stats['resets'] == 0

    def test_large_backward_step_is_reset(self, fake_source, fake_monotonic):
        source = fake_source('gps', timestamp=WALL, accuracy=1e-3)
        scheduler = _scheduler([source], fake_monotonic, backstep_tolerance_ms=50.0)
        try:
            scheduler.run_cycle()
            fake_monotonic.advance(1.0)
            source.timestamp = WALL - 10_000
            published = scheduler.run_cycle()
        finally:
            scheduler.stop()

        assert published.timestamp == WALL - 10_000
        assert scheduler.stats['resets'] == 1

    def test_forward_steps_publish_directly(self, fake_source, fake_monotonic):
        source = fake_source('gps', timestamp=WALL)
        scheduler = _scheduler([source], fake_monotonic)
        try:
            scheduler.run_cycle()
            fake_monotonic.advance(1.0)
            source.timestamp = WALL + 1500
            published = scheduler.run_cycle()
        finally:
            scheduler.stop()

        assert published.timestamp == WALL + 1500

    def test_losing_all_sources_resets_to_local_clock(self, fake_source):
        """Falling back behind the last fused value is an explicit reset."""
        from temporal_fusion.engine.sync_scheduler import SyncScheduler
        from temporal_fusion.interfaces.errors import SourceUnavailable
        from temporal_fusion.interfaces.timing_result import ClockStatus

        ahead = int(time.time() * 1000) + 3_600_000
        source = fake_source('gps', timestamp=ahead)
        scheduler = SyncScheduler([source])
        try:
            scheduler.run_cycle()
            source.error = SourceUnavailable('gps', 'down')
            published = scheduler.run_cycle()
        finally:
            scheduler.stop()

        assert published.is_fallback
        assert published.quality_score == 0
        assert scheduler.stats['resets'] == 1
        assert scheduler.clock_status == ClockStatus.DEGRADED

    def test_fallback_follows_local_clock_after_drifting_source(self, fake_source, fake_monotonic):
        """A source running 1000 ppm fast teaches drift that the fallback must not inherit."""
        from temporal_fusion.interfaces.errors import SourceUnavailable

        origin = fake_monotonic.now

        def wall():
            return WALL + int(round((fake_monotonic.now - origin) * 1000))

        source = fake_source('fast', timestamp=WALL, accuracy=1e-6)
        scheduler = _scheduler([source], fake_monotonic, wall_clock=wall)
        try:
            for _ in range(10):
                elapsed_ms = wall() - WALL
                source.timestamp = WALL + elapsed_ms + elapsed_ms // 1000
                assert scheduler.run_cycle().contributing_source_id == 'fast'
                fake_monotonic.advance(60.0)
            assert scheduler.drift.drift_ppm > 0

            source.error = SourceUnavailable('fast', 'down')
            for _ in range(3):
                published = scheduler.run_cycle()
                assert published.is_fallback
                assert abs(published.timestamp - wall()) <= 5
                fake_monotonic.advance(60.0)

            current = scheduler.current_fused_time()
        finally:
            scheduler.stop()

        assert current.is_fallback
        assert abs(current.timestamp - wall()) <= 5
        assert scheduler.stats['resets'] >= 1
        assert scheduler.stats['held_backsteps'] == 0

    def test_explicit_reset(self, fake_source):
        from temporal_fusion.interfaces.timing_result import ClockStatus

        scheduler = _scheduler([fake_source('gps', timestamp=WALL)])
        try:
            scheduler.run_cycle()
            scheduler.reset()
        finally:
            scheduler.stop()

        assert scheduler.last_published is None
        assert scheduler.clock_status == ClockStatus.ACQUIRING
        assert scheduler.stats['resets'] == 1

    def test_reads_never_go_backward(self, fake_source, fake_monotonic):
        source = fake_source('gps', timestamp=WALL)
        scheduler = _scheduler([source], fake_monotonic)
        seen = []
        try:
            for step in range(5):
                scheduler.run_cycle()
                seen.append(scheduler.current_fused_time().timestamp)
                fake_monotonic.advance(0.5)
                # Jitter the provider slightly behind the extrapolation
                source.timestamp = WALL + (step + 1) * 500 - 10
        finally:
            scheduler.stop()

        assert seen == sorted(seen)


class TestLifecycle:
    """Tests for start/stop of the background loop."""

    def test_start_runs_cycles(self, fake_source):
        scheduler = _scheduler([fake_source('gps', timestamp=WALL)], interval_s=0.05)
        published = threading.Event()
        scheduler.add_listener(lambda fused: published.set())

        scheduler.start()
        try:
            assert published.wait(2.0)
            assert scheduler.running
        finally:
            scheduler.stop()

        assert not scheduler.running
        assert scheduler.stats['cycles'] >= 1

    def test_stop_drains_in_flight_cycle(self, fake_source):
        """stop() returns only after the running cycle has published."""
        from temporal_fusion.engine.sync_scheduler import SyncState

        source = fake_source('slow', timestamp=WALL, delay_s=0.3)
        scheduler = _scheduler([source], interval_s=60.0)
        scheduler.start()
        assert source.started.wait(2.0)

        scheduler.stop()

        assert source.completed.is_set()
        assert scheduler.stats['cycles'] == 1
        assert scheduler.last_published is not None
        assert scheduler.state == SyncState.STOPPED

    def test_get_status(self, fake_source):
        scheduler = _scheduler([fake_source('gps', timestamp=WALL)])
        try:
            scheduler.run_cycle()
            status = scheduler.get_status()
        finally:
            scheduler.stop()

        assert status['clock_status'] == 'SYNCED'
        assert status['fused_time']['contributing_source_id'] == 'gps'
        assert status['sources']['gps']['successes'] == 1
        assert status['sources']['gps']['kind'] == 'fake'

    def test_invalid_configuration(self):
        from temporal_fusion.engine.sync_scheduler import SyncScheduler

        with pytest.raises(ValueError):
            SyncScheduler([], interval_s=0)
        with pytest.raises(ValueError):
            SyncScheduler([], max_workers=0)
