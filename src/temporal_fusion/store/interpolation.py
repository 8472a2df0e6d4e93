"""
Interpolation between indexed DataPoints

================================================================================
METHODS
================================================================================
    NEAREST  closest stored point by |Δt|, ties → earlier       (stored point)
    STEP     last OBSERVED point at or before t                 (stored point)
    LINEAR   straight line between the bracketing OBSERVED points
    CUBIC    monotone cubic (PCHIP) through two OBSERVED points on each side

LINEAR and CUBIC synthesize a new RECONSTRUCTED point at t. Only numeric
fields present on both sides are interpolated; text fields, and fields
missing on one side, take the value of the nearer bracketing point.

PCHIP is used instead of a natural cubic spline because it never
overshoots the data: a temperature series that rises 20 → 26 will not
report 26.4 in between.

================================================================================
CONFIDENCE
================================================================================
    confidence = max(0.3, 1 − span / retention_window)

where span is the distance between the bracketing points. The further
apart the evidence, the less a synthesized value is worth. Always < 1.0.
"""

from typing import Dict, Optional, Sequence
import logging

import numpy as np
from scipy.interpolate import PchipInterpolator

from ..interfaces.data_models import DataPoint, InterpolationMethod, PayloadValue, is_numeric

logger = logging.getLogger(__name__)

CONFIDENCE_FLOOR = 0.3
CONFIDENCE_CEILING = 0.999999

# PCHIP needs this many bracketing points; fewer falls back to LINEAR
CUBIC_POINTS_PER_SIDE = 2


def reconstruction_confidence(span_ms: float, retention_window_ms: float, floor: float = CONFIDENCE_FLOOR) -> float:
    """Confidence for a value synthesized across span_ms of missing evidence."""
    if retention_window_ms <= 0:
        return floor
    confidence = max(floor, 1.0 - float(span_ms) / float(retention_window_ms))
    return min(confidence, CONFIDENCE_CEILING)


def nearer_of(before: DataPoint, after: DataPoint, t: int) -> DataPoint:
    """The bracketing point closer to t; ties go to the earlier one."""
    return before if (t - before.timestamp) <= (after.timestamp - t) else after


def _carry_fields(before: DataPoint, after: DataPoint, t: int) -> Dict[str, PayloadValue]:
    """Payload with every field of either side, valued from the nearer point."""
    near = nearer_of(before, after, t)
    far = after if near is before else before
    payload = dict(far.payload)
    payload.update(near.payload)
    # Keep the earlier point's field order
    ordered = {key: payload[key] for key in before.payload}
    ordered.update({key: payload[key] for key in payload if key not in ordered})
    return ordered


def _shared_numeric_fields(points: Sequence[DataPoint]):
    first = points[0].payload
    return [
        key for key, value in first.items()
        if is_numeric(value) and all(key in p.payload and is_numeric(p.payload[key]) for p in points[1:])
    ]


def linear_payload(before: DataPoint, after: DataPoint, t: int) -> Dict[str, PayloadValue]:
    payload = _carry_fields(before, after, t)
    span = after.timestamp - before.timestamp
    fraction = (t - before.timestamp) / span if span else 0.0
    for key in _shared_numeric_fields((before, after)):
        a = float(before.payload[key])
        b = float(after.payload[key])
        payload[key] = a + (b - a) * fraction
    return payload


def cubic_payload(
    before: Sequence[DataPoint],
    after: Sequence[DataPoint],
    t: int,
) -> Dict[str, PayloadValue]:
    """
    PCHIP through before[-2:] + after[:2].

    Fields numeric across all four points use the cubic; fields numeric
    only across the inner pair fall back to the straight line.
    """
    inner_before, inner_after = before[-1], after[0]
    payload = linear_payload(inner_before, inner_after, t)

    points = list(before[-CUBIC_POINTS_PER_SIDE:]) + list(after[:CUBIC_POINTS_PER_SIDE])
    origin = points[0].timestamp
    xs = np.array([p.timestamp - origin for p in points], dtype=np.float64)
    x = float(t - origin)
    for key in _shared_numeric_fields(points):
        ys = np.array([float(p.payload[key]) for p in points], dtype=np.float64)
        payload[key] = float(PchipInterpolator(xs, ys)(x))
    return payload


def interpolate_at(
    method: InterpolationMethod,
    t: int,
    before: Sequence[DataPoint],
    after: Sequence[DataPoint],
    retention_window_ms: int,
) -> Optional[DataPoint]:
    """
    Synthesize a LINEAR or CUBIC point at t.

    Args:
        method: InterpolationMethod.LINEAR or CUBIC
        t: query time (ms), strictly between before[-1] and after[0]
        before: OBSERVED points before t, ascending
        after: OBSERVED points after t, ascending
        retention_window_ms: stream retention, scales confidence

    Returns:
        RECONSTRUCTED DataPoint, or None outside the observed span
    """
    if not before or not after:
        return None

    inner_before, inner_after = before[-1], after[0]
    use_cubic = (
        method == InterpolationMethod.CUBIC
        and len(before) >= CUBIC_POINTS_PER_SIDE
        and len(after) >= CUBIC_POINTS_PER_SIDE
    )
    if use_cubic:
        payload = cubic_payload(before, after, t)
    else:
        payload = linear_payload(inner_before, inner_after, t)

    span = inner_after.timestamp - inner_before.timestamp
    return DataPoint.reconstructed(t, payload, reconstruction_confidence(span, retention_window_ms))
