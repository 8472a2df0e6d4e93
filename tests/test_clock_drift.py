"""
Tests for the Kalman drift tracker.
"""

import pytest


class TestKalmanDriftTracker:
    """Tests for KalmanDriftTracker."""

    def test_first_measurement_initializes_offset(self):
        from temporal_fusion.timing.clock_drift import KalmanDriftTracker

        tracker = KalmanDriftTracker()
        innovation, _, is_outlier = tracker.update(250.0, timestamp=0.0)

        assert tracker.offset_ms == pytest.approx(250.0)
        assert innovation == pytest.approx(0.0)
        assert not is_outlier

    def test_no_drift_before_two_measurements(self):
        from temporal_fusion.timing.clock_drift import KalmanDriftTracker

        tracker = KalmanDriftTracker()
        assert tracker.drift_ppm == 0.0
        tracker.update(10.0, timestamp=0.0)
        assert tracker.drift_ppm == 0.0

    def test_estimates_linear_drift(self):
        """An offset growing 0.6 ms per minute is 10 ppm."""
        from temporal_fusion.timing.clock_drift import KalmanDriftTracker

        tracker = KalmanDriftTracker()
        for minute in range(30):
            tracker.update(100.0 + 0.6 * minute, timestamp=60.0 * minute, measurement_noise_ms=0.1)

        assert tracker.drift_rate_ms_per_min == pytest.approx(0.6, abs=0.05)
        assert tracker.drift_ppm == pytest.approx(10.0, abs=1.0)

    def test_drift_clamped(self):
        from temporal_fusion.timing.clock_drift import KalmanDriftTracker, MAX_DRIFT_PPM

        tracker = KalmanDriftTracker()
        for minute in range(10):
            tracker.update(60.0 * minute, timestamp=60.0 * minute, measurement_noise_ms=1.0)

        assert tracker.drift_ppm == MAX_DRIFT_PPM

    def test_uncertainty_shrinks(self):
        from temporal_fusion.timing.clock_drift import KalmanDriftTracker

        tracker = KalmanDriftTracker()
        initial = tracker.uncertainty_ms
        for minute in range(5):
            tracker.update(5.0, timestamp=60.0 * minute, measurement_noise_ms=1.0)
        assert tracker.uncertainty_ms < initial

    def test_outlier_not_applied(self):
        from temporal_fusion.timing.clock_drift import KalmanDriftTracker

        tracker = KalmanDriftTracker()
        for minute in range(10):
            tracker.update(5.0, timestamp=60.0 * minute, measurement_noise_ms=0.5)
        before = tracker.offset_ms

        _, normalized, is_outlier = tracker.update(5000.0, timestamp=600.0, measurement_noise_ms=0.5)

        assert is_outlier
        assert normalized > tracker.outlier_sigma
        assert tracker.offset_ms == pytest.approx(before, abs=0.5)

    def test_reset(self):
        from temporal_fusion.timing.clock_drift import KalmanDriftTracker

        tracker = KalmanDriftTracker()
        for minute in range(5):
            tracker.update(float(minute), timestamp=60.0 * minute)
        tracker.reset()

        assert tracker.count == 0
        assert tracker.offset_ms == 0.0
        assert tracker.drift_ppm == 0.0

    def test_state_does_not_grow(self):
        """Long runs keep only the filter state, no per-update history."""
        from temporal_fusion.timing.clock_drift import KalmanDriftTracker

        tracker = KalmanDriftTracker()
        for minute in range(2000):
            tracker.update(0.01 * minute, timestamp=60.0 * minute, measurement_noise_ms=0.5)

        assert not any(isinstance(value, (list, dict)) for value in vars(tracker).values())
        assert tracker.count == 2000
