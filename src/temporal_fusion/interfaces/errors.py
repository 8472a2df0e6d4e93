"""
Error taxonomy for temporal-fusion.

Source errors are recovered locally: the failing sample is dropped from
fusion and the cycle continues. Stream errors are caller misuse and are
raised straight back to the caller, never retried.

    TemporalFusionError
    ├── TimeSourceError
    │   └── SourceUnavailable
    │       ├── SourceTimeout
    │       └── MalformedSample
    ├── NoSourcesAvailable
    └── StreamError
        ├── DuplicateStream
        └── UnknownStream
"""

from typing import Dict, Optional


class TemporalFusionError(Exception):
    """Base class for all temporal-fusion errors."""


class TimeSourceError(TemporalFusionError):
    """A single timing source failed to produce a usable sample."""

    def __init__(self, source_id: str, message: str = ""):
        self.source_id = source_id
        super().__init__(f"{source_id}: {message}" if message else source_id)


class SourceUnavailable(TimeSourceError):
    """Network or provider failure for one adapter."""


class SourceTimeout(SourceUnavailable):
    """Adapter did not answer within its per-source timeout."""


class MalformedSample(SourceUnavailable):
    """Adapter answered, but the payload could not be turned into a TimeSample."""


class NoSourcesAvailable(TemporalFusionError):
    """
    Every adapter failed in one sync cycle.

    Never raised out of the scheduler: the cycle publishes the local-clock
    fallback (quality 0) and keeps this object for status reporting.
    """

    def __init__(self, failures: Optional[Dict[str, TimeSourceError]] = None):
        self.failures = dict(failures or {})
        if self.failures:
            detail = ", ".join(f"{sid} ({type(err).__name__})" for sid, err in self.failures.items())
        else:
            detail = "no sources configured"
        super().__init__(f"No timing sources available: {detail}")


class StreamError(TemporalFusionError):
    """Misuse of the stream registry."""

    def __init__(self, stream_id: str, message: str):
        self.stream_id = stream_id
        super().__init__(message)


class DuplicateStream(StreamError):
    def __init__(self, stream_id: str):
        super().__init__(stream_id, f"Data stream '{stream_id}' is already registered")


class UnknownStream(StreamError):
    def __init__(self, stream_id: str):
        super().__init__(stream_id, f"Data stream '{stream_id}' not found")
