"""
Timing Data Models

These dataclasses define the contract between the timing sources, the
fusion engine and the consumers of fused time. A FusedTime is serialized
to JSON for the status endpoint.

Units:
    timestamps  - integer milliseconds since the Unix epoch
    accuracies  - floating point seconds (smaller = better)
    fetched_at  - local monotonic clock, seconds
"""

from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Dict
import json

LOCAL_SOURCE_ID = "local"


class ClockStatus(str, Enum):
    """Fused clock status."""
    ACQUIRING = "ACQUIRING"   # No cycle has completed yet
    SYNCED = "SYNCED"         # Last cycle fused at least one source
    DEGRADED = "DEGRADED"     # Last cycle fell back to the local clock


@dataclass(frozen=True)
class TimeSample:
    """
    One reading from one timing provider.

    Immutable once created; produced by a TimeSource adapter and consumed
    by the fusion engine within the same sync cycle.
    """
    source_id: str
    raw_timestamp: int             # ms since epoch
    declared_accuracy: float       # seconds
    geometry_quality: float        # 0..1, 1 = ideal
    fetch_latency: float           # ms, round trip of the fetch
    fetched_at: float              # time.monotonic() when the reading arrived

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class FusedTime:
    """
    The engine's best estimate of authoritative time for one sync cycle.

    The previously published value stays valid (last-known-good) until a
    new one replaces it.
    """
    timestamp: int                 # ms since epoch
    estimated_accuracy: float      # seconds
    quality_score: float           # 0..1
    contributing_source_id: str    # best single source, for attribution
    sample_count: int = 0

    @property
    def is_fallback(self) -> bool:
        """True when no source contributed and the local clock was used."""
        return self.contributing_source_id == LOCAL_SOURCE_ID

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["is_fallback"] = self.is_fallback
        return data

    def to_json(self) -> str:
        """Serialize to JSON for the status endpoint."""
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_json(cls, json_str: str) -> "FusedTime":
        """Deserialize from JSON."""
        data = json.loads(json_str)
        return cls(
            timestamp=int(data.get("timestamp", 0)),
            estimated_accuracy=float(data.get("estimated_accuracy", 0.0)),
            quality_score=float(data.get("quality_score", 0.0)),
            contributing_source_id=data.get("contributing_source_id", LOCAL_SOURCE_ID),
            sample_count=int(data.get("sample_count", 0)),
        )
