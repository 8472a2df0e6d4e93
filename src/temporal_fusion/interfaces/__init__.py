"""Interface definitions: data models and error taxonomy."""

from .timing_result import TimeSample, FusedTime, ClockStatus, LOCAL_SOURCE_ID
from .data_models import DataPoint, StreamConfig, Origin, InterpolationMethod
from .errors import (
    TemporalFusionError,
    TimeSourceError,
    SourceUnavailable,
    SourceTimeout,
    MalformedSample,
    NoSourcesAvailable,
    StreamError,
    DuplicateStream,
    UnknownStream,
)

__all__ = [
    'TimeSample', 'FusedTime', 'ClockStatus', 'LOCAL_SOURCE_ID',
    'DataPoint', 'StreamConfig', 'Origin', 'InterpolationMethod',
    'TemporalFusionError', 'TimeSourceError', 'SourceUnavailable',
    'SourceTimeout', 'MalformedSample', 'NoSourcesAvailable',
    'StreamError', 'DuplicateStream', 'UnknownStream',
]
