"""
Time Source Interface

Defines the contract for timing providers. Each adapter performs one
provider read per call to fetch() and turns the answer into a TimeSample
in canonical units (ms timestamps, seconds accuracy).

Design principle:
    The fusion engine doesn't care about transports, payload shapes or
    provider units. It just needs TimeSamples, or a TimeSourceError
    explaining why there is none this cycle.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional
import logging
import math
import time

from ..interfaces.errors import MalformedSample, SourceTimeout, SourceUnavailable, TimeSourceError
from ..interfaces.timing_result import TimeSample
from .constants import (
    ACCURACY_FIELDS,
    ACCURACY_UNIT_TO_S,
    DEFAULT_BASE_ACCURACY_S,
    DEFAULT_BASE_GEOMETRY_QUALITY,
    DEFAULT_TIMEOUT_S,
    GDOP_FIELDS,
    GEOMETRY_FIELDS,
    LOCAL_CLOCK_ACCURACY_S,
    LOCAL_CLOCK_GEOMETRY_QUALITY,
    TIMESTAMP_FIELDS,
    TIMESTAMP_UNIT_TO_MS,
    gdop_to_geometry_quality,
)

logger = logging.getLogger(__name__)


def _first_present(payload: Mapping[str, Any], names) -> Optional[Any]:
    for name in names:
        value = payload.get(name)
        if value is not None:
            return value
    return None


def _finite_float(value: Any, source_id: str, what: str) -> float:
    if isinstance(value, bool):
        raise MalformedSample(source_id, f"{what} is not a number: {value!r}")
    try:
        result = float(value)
    except (TypeError, ValueError):
        raise MalformedSample(source_id, f"{what} is not a number: {value!r}")
    if not math.isfinite(result):
        raise MalformedSample(source_id, f"{what} is not finite: {value!r}")
    return result


def _timestamp_to_ms(value: Any, unit: str, source_id: str) -> int:
    """Convert a provider timestamp (number in `unit`, or ISO-8601 string) to epoch ms."""
    if isinstance(value, str):
        text = value.strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise MalformedSample(source_id, f"unparseable timestamp string: {value!r}")
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return int(round(parsed.timestamp() * 1000))

    number = _finite_float(value, source_id, "timestamp")
    if number <= 0:
        raise MalformedSample(source_id, f"timestamp must be positive: {value!r}")
    return int(round(number * TIMESTAMP_UNIT_TO_MS[unit]))


def parse_time_payload(
    payload: Any,
    source_id: str,
    *,
    base_accuracy: float = DEFAULT_BASE_ACCURACY_S,
    base_geometry_quality: float = DEFAULT_BASE_GEOMETRY_QUALITY,
    fetch_latency_ms: float = 0.0,
    fetched_at: Optional[float] = None,
    timestamp_unit: str = 'ms',
    accuracy_unit: str = 's',
) -> TimeSample:
    """
    Turn a provider's JSON-like answer into a TimeSample.

    Args:
        payload: Decoded provider response (must be a mapping)
        source_id: Adapter identifier, used for attribution and errors
        base_accuracy: Accuracy (s) when the payload reports none
        base_geometry_quality: Geometry (0..1) when the payload reports none
        fetch_latency_ms: Measured round trip of the read
        fetched_at: Monotonic time the read completed (default: now)
        timestamp_unit: Unit of numeric timestamps ('s', 'ms', 'us', 'ns')
        accuracy_unit: Unit of reported accuracy ('s', 'ms', 'us', 'ns')

    Returns:
        TimeSample in canonical units

    Raises:
        MalformedSample: payload is not a mapping, lacks a timestamp, or
            carries non-finite / out-of-range values
    """
    if not isinstance(payload, Mapping):
        raise MalformedSample(source_id, f"expected a JSON object, got {type(payload).__name__}")

    raw = _first_present(payload, TIMESTAMP_FIELDS)
    if raw is None:
        raise MalformedSample(source_id, "no timestamp field in payload")
    raw_timestamp = _timestamp_to_ms(raw, timestamp_unit, source_id)

    reported_accuracy = _first_present(payload, ACCURACY_FIELDS)
    if reported_accuracy is None:
        accuracy = float(base_accuracy)
    else:
        accuracy = _finite_float(reported_accuracy, source_id, "accuracy") * ACCURACY_UNIT_TO_S[accuracy_unit]
    if accuracy <= 0:
        raise MalformedSample(source_id, f"accuracy must be positive, got {accuracy}")

    reported_geometry = _first_present(payload, GEOMETRY_FIELDS)
    if reported_geometry is not None:
        geometry = _finite_float(reported_geometry, source_id, "geometry quality")
    else:
        gdop = _first_present(payload, GDOP_FIELDS)
        if gdop is not None:
            geometry = gdop_to_geometry_quality(_finite_float(gdop, source_id, "gdop"))
        else:
            geometry = float(base_geometry_quality)
    geometry = max(0.0, min(1.0, geometry))

    return TimeSample(
        source_id=source_id,
        raw_timestamp=raw_timestamp,
        declared_accuracy=accuracy,
        geometry_quality=geometry,
        fetch_latency=float(fetch_latency_ms),
        fetched_at=time.monotonic() if fetched_at is None else fetched_at,
    )


class TimeSource(ABC):
    """
    Base class for timing provider adapters.

    Subclasses implement _read_payload(); fetch() times the read, enforces
    the per-source timeout and converts the payload. Adapters hold only
    configuration, so they are safe to call from pool threads.
    """

    kind = "abstract"

    def __init__(
        self,
        source_id: str,
        base_accuracy: float = DEFAULT_BASE_ACCURACY_S,
        base_geometry_quality: float = DEFAULT_BASE_GEOMETRY_QUALITY,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        timestamp_unit: str = 'ms',
        accuracy_unit: str = 's',
    ):
        """
        Args:
            source_id: Unique identifier (used for attribution)
            base_accuracy: Declared accuracy in seconds when the provider
                reports none
            base_geometry_quality: Declared geometry (0..1) when the
                provider reports none
            timeout_s: Per-source fetch timeout
            timestamp_unit: Unit of the provider's numeric timestamps
            accuracy_unit: Unit of the provider's reported accuracy
        """
        if not source_id:
            raise ValueError("source_id must be a non-empty string")
        if base_accuracy <= 0:
            raise ValueError(f"base_accuracy must be positive, got {base_accuracy}")
        if not 0.0 <= base_geometry_quality <= 1.0:
            raise ValueError(f"base_geometry_quality must be within 0..1, got {base_geometry_quality}")
        if timeout_s <= 0:
            raise ValueError(f"timeout_s must be positive, got {timeout_s}")
        if timestamp_unit not in TIMESTAMP_UNIT_TO_MS:
            raise ValueError(f"Unknown timestamp_unit {timestamp_unit!r}")
        if accuracy_unit not in ACCURACY_UNIT_TO_S:
            raise ValueError(f"Unknown accuracy_unit {accuracy_unit!r}")

        self.source_id = source_id
        self.base_accuracy = float(base_accuracy)
        self.base_geometry_quality = float(base_geometry_quality)
        self.timeout_s = float(timeout_s)
        self.timestamp_unit = timestamp_unit
        self.accuracy_unit = accuracy_unit

    @abstractmethod
    def _read_payload(self) -> Mapping[str, Any]:
        """
        Perform one provider read.

        Must honour self.timeout_s and raise a TimeSourceError subclass on
        failure. Returns the decoded JSON-like answer.
        """

    def fetch(self) -> TimeSample:
        """
        Read the provider once and return a TimeSample.

        Raises:
            SourceUnavailable: transport or provider failure
            SourceTimeout: the read took longer than timeout_s
            MalformedSample: the answer could not be interpreted
        """
        started = time.monotonic()
        try:
            payload = self._read_payload()
        except TimeSourceError:
            raise
        except Exception as e:
            # Anything a transport throws that isn't already classified
            raise SourceUnavailable(self.source_id, f"unexpected read failure: {e}") from e
        fetched_at = time.monotonic()
        latency_ms = (fetched_at - started) * 1000.0

        if latency_ms > self.timeout_s * 1000.0:
            raise SourceTimeout(
                self.source_id,
                f"answered after {latency_ms:.0f}ms (timeout {self.timeout_s * 1000:.0f}ms)",
            )

        sample = parse_time_payload(
            payload,
            self.source_id,
            base_accuracy=self.base_accuracy,
            base_geometry_quality=self.base_geometry_quality,
            fetch_latency_ms=latency_ms,
            fetched_at=fetched_at,
            timestamp_unit=self.timestamp_unit,
            accuracy_unit=self.accuracy_unit,
        )
        logger.debug(
            f"{self.source_id}: ts={sample.raw_timestamp} acc={sample.declared_accuracy:.3g}s "
            f"geom={sample.geometry_quality:.2f} latency={latency_ms:.1f}ms"
        )
        return sample

    def describe(self) -> Dict[str, Any]:
        """Static adapter description for status reporting."""
        return {
            'source_id': self.source_id,
            'kind': self.kind,
            'base_accuracy': self.base_accuracy,
            'base_geometry_quality': self.base_geometry_quality,
            'timeout_s': self.timeout_s,
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.source_id!r})"


class LocalClockSource(TimeSource):
    """Host wall clock as a (poor) timing source."""

    kind = "local"

    def __init__(
        self,
        source_id: str = "host-clock",
        base_accuracy: float = LOCAL_CLOCK_ACCURACY_S,
        base_geometry_quality: float = LOCAL_CLOCK_GEOMETRY_QUALITY,
        timeout_s: float = 1.0,
    ):
        super().__init__(
            source_id,
            base_accuracy=base_accuracy,
            base_geometry_quality=base_geometry_quality,
            timeout_s=timeout_s,
        )

    def _read_payload(self) -> Mapping[str, Any]:
        return {'timestamp': time.time_ns() // 1_000_000}
