"""
HTTP JSON timing source.

One GET per fetch against a provider endpoint that answers with a JSON
object carrying at least a timestamp, and optionally accuracy and
geometry metadata (see parse_time_payload for accepted field names).

Usage:
    source = HttpTimeSource('gps', 'https://example.org/api/satellites/gps-timing',
                            base_accuracy=1e-9, timeout_s=2.0)
    sample = source.fetch()
"""

from typing import Any, Dict, Mapping, Optional
from urllib.parse import urljoin

import requests

from ..interfaces.errors import MalformedSample, SourceTimeout, SourceUnavailable
from .constants import DEFAULT_TIMEOUT_S, PROVIDER_PRESETS
from .time_source import TimeSource


class HttpTimeSource(TimeSource):
    """Timing provider reached over HTTP(S), answering with JSON."""

    kind = "http"

    def __init__(
        self,
        source_id: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
        session: Optional[requests.Session] = None,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        **kwargs,
    ):
        """
        Args:
            source_id: Unique identifier
            url: Absolute endpoint URL
            headers: Extra request headers (API keys etc.)
            params: Query parameters
            session: Shared requests.Session (connection pooling)
            timeout_s: Per-request timeout, applied to connect and read
            **kwargs: Passed to TimeSource (base_accuracy, units, ...)
        """
        super().__init__(source_id, timeout_s=timeout_s, **kwargs)
        self.url = url
        self.headers = {'Accept': 'application/json'}
        if headers:
            self.headers.update(headers)
        self.params = dict(params or {})
        self.session = session or requests.Session()

    @classmethod
    def from_preset(
        cls,
        preset: str,
        base_url: Optional[str] = None,
        source_id: Optional[str] = None,
        **overrides,
    ) -> "HttpTimeSource":
        """
        Build an adapter from PROVIDER_PRESETS.

        Presets whose URL is a path (the dashboard's own API routes) need
        base_url to resolve against.
        """
        key = preset.lower()
        if key not in PROVIDER_PRESETS:
            raise ValueError(f"Unknown provider preset {preset!r} (known: {', '.join(PROVIDER_PRESETS)})")
        config = dict(PROVIDER_PRESETS[key])
        url = overrides.pop('url', config.pop('url'))
        config.pop('clock_type', None)
        if url.startswith('/'):
            if not base_url:
                raise ValueError(f"Preset {preset!r} has a relative URL; base_url is required")
            url = urljoin(base_url, url)
        config.update(overrides)
        return cls(source_id or key, url, **config)

    def _read_payload(self) -> Mapping[str, Any]:
        try:
            response = self.session.get(
                self.url,
                headers=self.headers,
                params=self.params or None,
                timeout=self.timeout_s,
            )
            response.raise_for_status()
        except requests.Timeout as e:
            raise SourceTimeout(self.source_id, f"no answer within {self.timeout_s:.1f}s") from e
        except requests.RequestException as e:
            raise SourceUnavailable(self.source_id, str(e)) from e

        try:
            return response.json()
        except ValueError as e:
            raise MalformedSample(self.source_id, f"response is not JSON: {e}") from e

    def describe(self) -> Dict[str, Any]:
        info = super().describe()
        info['url'] = self.url
        return info

    def close(self):
        """Release pooled connections."""
        self.session.close()
