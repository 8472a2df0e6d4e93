#!/usr/bin/env python3
"""
Timing Provider Constants - Central Reference for Source Adapters

================================================================================
PURPOSE
================================================================================
Single source of truth for the declared accuracies and default endpoints of
the timing providers the dashboard polls. Adapters built from a preset use
these values whenever the provider does not report its own quality.

================================================================================
PROVIDERS
================================================================================
GNSS constellations (served by the dashboard's own API routes):
    GPS      - cesium clocks,   ~1 ns declared accuracy
    GLONASS  - cesium clocks,  ~10 ns
    Galileo  - rubidium/maser,  ~1 ns
    BeiDou   - rubidium clocks, ~10 ns

Space agency time services:
    NASA, ESA - ~1 us declared accuracy

Local host clock:
    Used as a last-resort contributor; accuracy is whatever NTP gives the
    host, assumed 0.5 s with poor geometry.

All accuracies are in SECONDS. All timestamps are in MILLISECONDS.
"""

from typing import Any, Dict

# =============================================================================
# UNIT CONVERSION
# =============================================================================

# Multipliers converting a provider timestamp to milliseconds
TIMESTAMP_UNIT_TO_MS: Dict[str, float] = {
    's': 1000.0,
    'ms': 1.0,
    'us': 1e-3,
    'ns': 1e-6,
}

# Multipliers converting a provider accuracy to seconds
ACCURACY_UNIT_TO_S: Dict[str, float] = {
    's': 1.0,
    'ms': 1e-3,
    'us': 1e-6,
    'ns': 1e-9,
}

# =============================================================================
# PAYLOAD FIELD NAMES (first match wins)
# =============================================================================

TIMESTAMP_FIELDS = ('timestamp', 'atomicTime', 'atomic_time', 'time')
ACCURACY_FIELDS = ('accuracy', 'uncertainty')
GEOMETRY_FIELDS = ('geometryQuality', 'geometry_quality', 'triangulationQuality')
GDOP_FIELDS = ('gdop', 'geometricDilution')

# GDOP of 1 is ideal; 10 and above is treated as useless geometry
GDOP_IDEAL = 1.0
GDOP_WORST = 10.0

# =============================================================================
# ADAPTER DEFAULTS
# =============================================================================

DEFAULT_TIMEOUT_S = 5.0
DEFAULT_BASE_ACCURACY_S = 1e-3
DEFAULT_BASE_GEOMETRY_QUALITY = 0.8

LOCAL_CLOCK_ACCURACY_S = 0.5
LOCAL_CLOCK_GEOMETRY_QUALITY = 0.1

# =============================================================================
# PROVIDER PRESETS
# =============================================================================

PROVIDER_PRESETS: Dict[str, Dict[str, Any]] = {
    'gps': {
        'url': '/api/satellites/gps-timing',
        'base_accuracy': 1e-9,
        'base_geometry_quality': 0.8,
        'clock_type': 'cesium',
    },
    'glonass': {
        'url': '/api/satellites/glonass-timing',
        'base_accuracy': 10e-9,
        'base_geometry_quality': 0.8,
        'clock_type': 'cesium',
    },
    'galileo': {
        'url': '/api/satellites/galileo-timing',
        'base_accuracy': 1e-9,
        'base_geometry_quality': 0.8,
        'clock_type': 'rubidium',
    },
    'beidou': {
        'url': '/api/satellites/beidou-timing',
        'base_accuracy': 10e-9,
        'base_geometry_quality': 0.8,
        'clock_type': 'rubidium',
    },
    'nasa': {
        'url': 'https://api.nasa.gov/planetary/earth/timing',
        'base_accuracy': 1e-6,
        'base_geometry_quality': 0.7,
        'clock_type': 'agency',
    },
    'esa': {
        'url': 'https://scihub.copernicus.eu/dhus/timing',
        'base_accuracy': 1e-6,
        'base_geometry_quality': 0.7,
        'clock_type': 'agency',
    },
}


def gdop_to_geometry_quality(gdop: float) -> float:
    """
    Map geometric dilution of precision onto a 0..1 geometry score.

    GDOP 1 → 1.0, GDOP 10 → 0.0, linear in between.
    """
    score = 1.0 - (gdop - GDOP_IDEAL) / (GDOP_WORST - GDOP_IDEAL)
    return max(0.0, min(1.0, score))
