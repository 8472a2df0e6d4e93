"""
Pytest configuration and fixtures for temporal-fusion tests.
"""

import pytest
import sys
import threading
import time
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from temporal_fusion.sources.time_source import TimeSource  # noqa: E402


class FakeSource(TimeSource):
    """
    Scriptable timing source.

    Answers with `timestamp` (ms) after `delay_s`, or raises `error` when set.
    """

    kind = "fake"

    def __init__(self, source_id, timestamp=1_700_000_000_000, accuracy=1e-3,
                 geometry=0.8, delay_s=0.0, error=None, timeout_s=1.0):
        super().__init__(source_id, base_accuracy=accuracy, base_geometry_quality=geometry,
                         timeout_s=timeout_s)
        self.timestamp = timestamp
        self.delay_s = delay_s
        self.error = error
        self.calls = 0
        self.started = threading.Event()
        self.completed = threading.Event()

    def _read_payload(self):
        self.calls += 1
        self.started.set()
        try:
            if self.delay_s:
                time.sleep(self.delay_s)
            if self.error is not None:
                raise self.error
            return {'timestamp': self.timestamp}
        finally:
            self.completed.set()


class FakeMonotonic:
    """Manually advanced monotonic clock anchored at the real one."""

    def __init__(self):
        self.now = time.monotonic()

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def fake_source():
    """Factory for FakeSource instances."""
    return FakeSource


@pytest.fixture
def fake_monotonic():
    return FakeMonotonic()


@pytest.fixture
def make_sample():
    """Factory for TimeSamples fetched just now."""
    from temporal_fusion.interfaces.timing_result import TimeSample

    def _make(source_id='src', timestamp=1_000, accuracy=1e-3, geometry=1.0, latency=10.0, age_s=0.0):
        return TimeSample(
            source_id=source_id,
            raw_timestamp=timestamp,
            declared_accuracy=accuracy,
            geometry_quality=geometry,
            fetch_latency=latency,
            fetched_at=time.monotonic() - age_s,
        )
    return _make


@pytest.fixture
def temp_config():
    """Stream config of the minute-resolution temperature example."""
    from temporal_fusion.interfaces.data_models import StreamConfig
    return StreamConfig(resolution_ms=60_000)
