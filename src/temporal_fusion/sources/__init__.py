"""Timing source adapters - one per provider, each yielding TimeSamples."""

from .time_source import TimeSource, LocalClockSource, parse_time_payload
from .http_source import HttpTimeSource
from .constants import PROVIDER_PRESETS

__all__ = ['TimeSource', 'LocalClockSource', 'HttpTimeSource', 'parse_time_payload', 'PROVIDER_PRESETS']
