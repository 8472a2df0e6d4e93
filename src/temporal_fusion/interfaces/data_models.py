"""
Data Models for Temporal Data Streams

These data structures define the contract between data producers, the
temporal index, the gap reconstructor and query consumers.

Design principles:
- Immutable where possible (frozen dataclasses)
- Timestamps are integer milliseconds since the Unix epoch
- Observed data is authoritative; reconstructed data is always tagged
  and always carries confidence < 1.0
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Union
import math

PayloadValue = Union[int, float, str, bool, None]


class Origin(str, Enum):
    """Where a DataPoint came from."""
    OBSERVED = "OBSERVED"                # Pushed by a producer
    RECONSTRUCTED = "RECONSTRUCTED"      # Synthesized by interpolation or gap filling


class InterpolationMethod(str, Enum):
    """How point lookups between buckets are answered."""
    NEAREST = "NEAREST"
    LINEAR = "LINEAR"
    CUBIC = "CUBIC"
    STEP = "STEP"

    @classmethod
    def parse(cls, value: Union[str, "InterpolationMethod"]) -> "InterpolationMethod":
        """Accept enum members or case-insensitive names (from TOML config)."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).upper())
        except ValueError:
            valid = ", ".join(m.value for m in cls)
            raise ValueError(f"Unknown interpolation method {value!r} (expected one of {valid})")


def is_numeric(value: Any) -> bool:
    """True for finite int/float payload values (bool is treated as text-like)."""
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return math.isfinite(value)
    return False


@dataclass(frozen=True)
class DataPoint:
    """
    A single time-indexed record of a data stream.

    Attributes:
        timestamp: ms since epoch (index key before quantization)
        payload: named numeric/text fields, opaque to the engine
        origin: OBSERVED or RECONSTRUCTED
        confidence: 0..1, exactly 1.0 for OBSERVED, < 1.0 for RECONSTRUCTED
    """
    timestamp: int
    payload: Dict[str, PayloadValue] = field(default_factory=dict)
    origin: Origin = Origin.OBSERVED
    confidence: float = 1.0

    def __post_init__(self):
        if not isinstance(self.timestamp, int) or isinstance(self.timestamp, bool):
            raise ValueError(f"DataPoint timestamp must be integer ms, got {self.timestamp!r}")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be within 0..1, got {self.confidence}")
        if self.origin == Origin.OBSERVED and self.confidence != 1.0:
            raise ValueError("OBSERVED data points must carry confidence 1.0")
        if self.origin == Origin.RECONSTRUCTED and self.confidence >= 1.0:
            raise ValueError("RECONSTRUCTED data points must carry confidence < 1.0")

    @property
    def is_observed(self) -> bool:
        return self.origin == Origin.OBSERVED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "payload": dict(self.payload),
            "origin": self.origin.value,
            "confidence": self.confidence,
        }

    @classmethod
    def observed(cls, timestamp: int, payload: Mapping[str, PayloadValue]) -> "DataPoint":
        return cls(timestamp=int(timestamp), payload=dict(payload))

    @classmethod
    def reconstructed(
        cls, timestamp: int, payload: Mapping[str, PayloadValue], confidence: float
    ) -> "DataPoint":
        return cls(
            timestamp=int(timestamp),
            payload=dict(payload),
            origin=Origin.RECONSTRUCTED,
            confidence=confidence,
        )


@dataclass(frozen=True)
class StreamConfig:
    """
    Per-stream configuration, fixed at registration time.

    Attributes:
        resolution_ms: bucket width of the temporal index
        retention_window_ms: maximum span between oldest and newest bucket
        interpolation: method used by point lookups between buckets
        max_points: hard cap on index entries
    """
    resolution_ms: int = 1000
    retention_window_ms: int = 24 * 60 * 60 * 1000
    interpolation: InterpolationMethod = InterpolationMethod.LINEAR
    max_points: int = 10000

    def __post_init__(self):
        # Allow plain strings from config files
        object.__setattr__(self, "interpolation", InterpolationMethod.parse(self.interpolation))
        if self.resolution_ms <= 0:
            raise ValueError(f"resolution_ms must be positive, got {self.resolution_ms}")
        if self.retention_window_ms <= 0:
            raise ValueError(f"retention_window_ms must be positive, got {self.retention_window_ms}")
        if self.max_points <= 0:
            raise ValueError(f"max_points must be positive, got {self.max_points}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "resolution_ms": self.resolution_ms,
            "retention_window_ms": self.retention_window_ms,
            "interpolation": self.interpolation.value,
            "max_points": self.max_points,
        }
