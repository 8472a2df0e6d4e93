"""In-memory, per-stream temporal storage."""

from .rwlock import ReadWriteLock
from .temporal_index import TemporalIndex, bucket_key
from .interpolation import reconstruction_confidence
from .streams import DataStream, StreamRegistry

__all__ = [
    'ReadWriteLock', 'TemporalIndex', 'bucket_key',
    'reconstruction_confidence', 'DataStream', 'StreamRegistry',
]
