"""
Data streams and the stream registry.

A DataStream exists from register_stream until unregister_stream (or
process exit); nothing is persisted.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import logging
import threading
import time

from ..interfaces.data_models import StreamConfig
from ..interfaces.errors import DuplicateStream, UnknownStream
from .temporal_index import TemporalIndex

logger = logging.getLogger(__name__)


@dataclass
class DataStream:
    """A named, configured sequence of time-indexed data points."""
    stream_id: str
    config: StreamConfig
    created_at: float = field(default_factory=time.time)
    index: TemporalIndex = field(init=False, repr=False)

    def __post_init__(self):
        if not isinstance(self.stream_id, str) or not self.stream_id:
            raise ValueError(f"stream_id must be a non-empty string, got {self.stream_id!r}")
        self.index = TemporalIndex(self.config, stream_id=self.stream_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'stream_id': self.stream_id,
            'config': self.config.to_dict(),
            'created_at': self.created_at,
            'index': self.index.stats(),
        }


class StreamRegistry:
    """Thread-safe map of stream_id → DataStream."""

    def __init__(self):
        self._streams: Dict[str, DataStream] = {}
        self._lock = threading.Lock()

    def register(self, stream_id: str, config: Optional[StreamConfig] = None) -> DataStream:
        stream = DataStream(stream_id, config or StreamConfig())
        with self._lock:
            if stream_id in self._streams:
                raise DuplicateStream(stream_id)
            self._streams[stream_id] = stream
        logger.info(
            f"Registered stream '{stream_id}' "
            f"(resolution={stream.config.resolution_ms}ms, {stream.config.interpolation.value})"
        )
        return stream

    def unregister(self, stream_id: str) -> DataStream:
        with self._lock:
            stream = self._streams.pop(stream_id, None)
        if stream is None:
            raise UnknownStream(stream_id)
        logger.info(f"Unregistered stream '{stream_id}'")
        return stream

    def get(self, stream_id: str) -> DataStream:
        with self._lock:
            stream = self._streams.get(stream_id)
        if stream is None:
            raise UnknownStream(stream_id)
        return stream

    def ids(self) -> List[str]:
        with self._lock:
            return sorted(self._streams)

    def __contains__(self, stream_id: str) -> bool:
        with self._lock:
            return stream_id in self._streams

    def __len__(self) -> int:
        with self._lock:
            return len(self._streams)

    def streams(self) -> List[DataStream]:
        """Snapshot of registered streams, ordered by id."""
        with self._lock:
            return [self._streams[sid] for sid in sorted(self._streams)]
