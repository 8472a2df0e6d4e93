"""
Clock Drift Tracker - Kalman filter on the fused-minus-local clock offset

================================================================================
WHY
================================================================================
Between sync cycles, readers get the last published FusedTime advanced by
the local monotonic clock. If the local oscillator runs fast or slow, that
extrapolation drifts until the next cycle. Tracking the offset between the
fused time and the host clock across cycles gives the oscillator's rate
error, which the scheduler applies to the extrapolation.

================================================================================
KALMAN FILTER MODEL
================================================================================
State vector: [offset_ms, drift_rate_ms_per_min]

    - Process noise (drift):  small, oscillators age slowly
    - Measurement noise:      the fused estimated_accuracy of each cycle

Only fused (non-fallback) cycles are fed in; a local-clock fallback says
nothing about the host clock's error.
"""

from typing import Optional, Tuple
import logging

import numpy as np

logger = logging.getLogger(__name__)

# Ordinary crystal oscillators stay well inside this
MAX_DRIFT_PPM = 500.0


class KalmanDriftTracker:
    """
    Kalman filter for tracking clock offset with drift.

    State vector: [offset_ms, drift_rate_ms_per_min]
    """

    def __init__(
        self,
        initial_uncertainty_ms: float = 1000.0,
        process_noise_offset_ms: float = 0.1,
        process_noise_drift_ms_per_min: float = 0.001,
        measurement_noise_ms: float = 50.0,
        outlier_sigma: float = 5.0,
    ):
        """
        Initialize Kalman filter.

        Args:
            initial_uncertainty_ms: Initial uncertainty (large = uninformed prior)
            process_noise_offset_ms: Process noise for offset (oscillator noise)
            process_noise_drift_ms_per_min: Process noise for drift rate
            measurement_noise_ms: Default measurement noise when a cycle
                reports none
            outlier_sigma: Normalized innovation above which a measurement
                is not applied
        """
        self.initial_uncertainty_ms = initial_uncertainty_ms
        self.q_offset = process_noise_offset_ms**2
        self.q_drift = process_noise_drift_ms_per_min**2
        self.R = measurement_noise_ms**2
        self.outlier_sigma = outlier_sigma

        # Measurement matrix: we only observe offset, not drift
        self.H = np.array([[1.0, 0.0]])
        self.reset()

    @property
    def offset_ms(self) -> float:
        """Current offset estimate (fused − local)."""
        return float(self.x[0])

    @property
    def drift_rate_ms_per_min(self) -> float:
        """Current drift rate estimate (ms/minute)."""
        return float(self.x[1])

    @property
    def drift_ppm(self) -> float:
        """Drift rate as parts-per-million, clamped to a plausible oscillator range."""
        if self.count < 2:
            return 0.0
        ppm = self.drift_rate_ms_per_min / 60000.0 * 1e6
        return max(-MAX_DRIFT_PPM, min(MAX_DRIFT_PPM, ppm))

    @property
    def uncertainty_ms(self) -> float:
        """Current offset uncertainty (1-sigma)."""
        return float(np.sqrt(self.P[0, 0]))

    def predict(self, dt_minutes: float = 1.0) -> None:
        """
        Prediction step: project state forward in time.

        Uses constant-velocity model:
            offset(t+dt) = offset(t) + drift * dt
            drift(t+dt) = drift(t)
        """
        F = np.array([
            [1.0, dt_minutes],
            [0.0, 1.0]
        ])

        Q = np.array([
            [self.q_offset + self.q_drift * dt_minutes**2 / 3, self.q_drift * dt_minutes / 2],
            [self.q_drift * dt_minutes / 2, self.q_drift]
        ]) * dt_minutes

        self.x = F @ self.x
        self.P = F @ self.P @ F.T + Q

    def update(
        self,
        offset_ms: float,
        timestamp: float,
        measurement_noise_ms: Optional[float] = None
    ) -> Tuple[float, float, bool]:
        """
        Incorporate one cycle's offset measurement.

        Args:
            offset_ms: fused timestamp − local wall clock, in ms
            timestamp: Local monotonic time of the measurement (seconds)
            measurement_noise_ms: Override measurement noise for this update

        Returns:
            (innovation, normalized_innovation, is_outlier)
        """
        if self.count == 0:
            # Initialize with first measurement (not 0) to avoid large initial innovation
            self.x[0] = offset_ms
            logger.debug(f"Drift tracker initialized with offset {offset_ms:+.2f}ms")
        elif self.last_timestamp is not None:
            dt_minutes = (timestamp - self.last_timestamp) / 60.0
            dt_minutes = max(0.01, min(60.0, dt_minutes))
            self.predict(dt_minutes)

        self.last_timestamp = timestamp
        self.count += 1

        R = (measurement_noise_ms**2) if measurement_noise_ms else self.R

        y = offset_ms - float((self.H @ self.x)[0])
        S = float((self.H @ self.P @ self.H.T)[0, 0]) + R
        normalized = abs(y) / np.sqrt(S) if S > 0 else 0.0

        is_outlier = self.count > 2 and normalized > self.outlier_sigma
        if not is_outlier:
            K = self.P @ self.H.T / S
            self.x = self.x + K.flatten() * y
            # Joseph form for numerical stability
            I_KH = np.eye(2) - K @ self.H
            self.P = I_KH @ self.P @ I_KH.T + R * (K @ K.T)
        else:
            logger.debug(f"Drift tracker: outlier innovation {y:+.1f}ms ({normalized:.1f} sigma)")

        return y, float(normalized), is_outlier

    def reset(self) -> None:
        """Reset filter state (after an explicit clock reset)."""
        self.x = np.array([0.0, 0.0])
        self.P = np.array([
            [self.initial_uncertainty_ms**2, 0.0],
            [0.0, (self.initial_uncertainty_ms / 10)**2]
        ])
        self.count = 0
        self.last_timestamp: Optional[float] = None
