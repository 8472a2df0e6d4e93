"""
Health Monitoring HTTP Server for temporal-fusion.

Exposes the engine's status for monitoring systems (Prometheus, Grafana,
or a plain health check) from a background thread.

Endpoints:
    GET /health     - Basic health check (200 OK if running)
    GET /status     - JSON engine status (TemporalFusionEngine.get_status())
    GET /metrics    - Prometheus-compatible metrics

Usage:
    from temporal_fusion.output.health_server import HealthServer

    server = HealthServer(port=8080)
    server.set_engine(engine)
    server.start()
"""

import json
import logging
import threading
from http.server import HTTPServer, BaseHTTPRequestHandler
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

CLOCK_STATUS_VALUES = {'ACQUIRING': 1, 'SYNCED': 2, 'DEGRADED': 3}


def _metric(lines: List[str], name: str, kind: str, help_text: str, samples):
    """Append one Prometheus metric family; samples is [(labels, value)]."""
    lines.append(f'# HELP temporal_fusion_{name} {help_text}')
    lines.append(f'# TYPE temporal_fusion_{name} {kind}')
    for labels, value in samples:
        label_text = ','.join(f'{k}="{v}"' for k, v in labels.items())
        suffix = f'{{{label_text}}}' if label_text else ''
        lines.append(f'temporal_fusion_{name}{suffix} {value}')
    lines.append('')


def format_prometheus_metrics(status: Dict[str, Any]) -> str:
    """Format an engine status dict as Prometheus text exposition."""
    timing = status.get('timing', {})
    sync = status.get('sync', {})
    stats = sync.get('stats', {})
    lines: List[str] = []

    _metric(lines, 'quality_score', 'gauge', 'Fused time quality (0 = local clock fallback)',
            [({}, f'{timing.get("quality_score", 0.0):.4f}')])
    _metric(lines, 'estimated_accuracy_seconds', 'gauge', 'Estimated accuracy of the fused time',
            [({}, f'{timing.get("estimated_accuracy", 0.0):.9f}')])
    _metric(lines, 'sources_active', 'gauge', 'Sources that contributed to the last sync cycle',
            [({}, timing.get('sources_active', 0))])
    _metric(lines, 'sources_configured', 'gauge', 'Configured timing sources',
            [({}, timing.get('sources_configured', 0))])
    _metric(lines, 'drift_ppm', 'gauge', 'Tracked local oscillator drift in ppm',
            [({}, f'{timing.get("drift_ppm", 0.0):.3f}')])
    _metric(lines, 'clock_status', 'gauge', 'Clock status (1=ACQUIRING, 2=SYNCED, 3=DEGRADED)',
            [({}, CLOCK_STATUS_VALUES.get(timing.get('clock_status'), 0))])
    _metric(lines, 'sync_cycles_total', 'counter', 'Completed sync cycles',
            [({}, stats.get('cycles', 0))])
    _metric(lines, 'sync_failed_cycles_total', 'counter', 'Sync cycles in which no source answered',
            [({}, stats.get('failed_cycles', 0))])
    _metric(lines, 'clock_resets_total', 'counter', 'Explicit fused clock resets',
            [({}, stats.get('resets', 0))])
    _metric(lines, 'uptime_seconds', 'gauge', 'Engine uptime in seconds',
            [({}, f'{status.get("uptime_seconds", 0.0):.1f}')])

    sources = sync.get('sources', {})
    if sources:
        _metric(lines, 'source_fetch_successes_total', 'counter', 'Successful fetches per source',
                [({'source': sid}, s.get('successes', 0)) for sid, s in sources.items()])
        _metric(lines, 'source_fetch_failures_total', 'counter', 'Failed fetches per source',
                [({'source': sid}, s.get('failures', 0)) for sid, s in sources.items()])

    streams = status.get('streams', {})
    if streams:
        _metric(lines, 'stream_points', 'gauge', 'Points held per stream index',
                [({'stream': sid}, s['index'].get('points', 0)) for sid, s in streams.items()])
        _metric(lines, 'stream_reconstructed_points', 'gauge', 'Committed reconstructed points per stream',
                [({'stream': sid}, s['index'].get('reconstructed', 0)) for sid, s in streams.items()])
        _metric(lines, 'stream_evicted_total', 'counter', 'Points evicted per stream',
                [({'stream': sid}, s['index'].get('evicted', 0)) for sid, s in streams.items()])

    return '\n'.join(lines)


class HealthRequestHandler(BaseHTTPRequestHandler):
    """HTTP request handler for health endpoints."""

    # Bound per server by HealthServer
    health_server: Optional["HealthServer"] = None

    @property
    def engine(self):
        return self.health_server.engine if self.health_server else None

    def log_message(self, format, *args):
        """Route request logging to the module logger at debug level."""
        logger.debug(f"{self.address_string()} {format % args}")

    def do_GET(self):
        """Handle GET requests."""
        if self.path == '/health':
            self._handle_health()
        elif self.path == '/status':
            self._handle_status()
        elif self.path == '/metrics':
            self._handle_metrics()
        else:
            self.send_error(404, "Not Found")

    def _reply(self, code: int, content_type: str, body: str):
        self.send_response(code)
        self.send_header('Content-Type', content_type)
        self.end_headers()
        self.wfile.write(body.encode())

    def _handle_health(self):
        """Basic health check - returns 200 if server is running."""
        self._reply(200, 'text/plain', 'OK\n')

    def _handle_status(self):
        if self.engine is None:
            self._reply(503, 'application/json', json.dumps({'error': 'No engine connected'}))
            return
        try:
            body = json.dumps(self.engine.get_status(), indent=2, default=str)
        except Exception as e:
            logger.error(f"Status request failed: {e}")
            self._reply(500, 'application/json', json.dumps({'error': str(e)}))
            return
        self._reply(200, 'application/json', body)

    def _handle_metrics(self):
        if self.engine is None:
            self._reply(503, 'text/plain', '# No engine connected\n')
            return
        try:
            body = format_prometheus_metrics(self.engine.get_status())
        except Exception as e:
            logger.error(f"Metrics request failed: {e}")
            self._reply(500, 'text/plain', f'# Error: {e}\n')
            return
        self._reply(200, 'text/plain; version=0.0.4', body)


class HealthServer:
    """
    HTTP server for health monitoring.

    Runs in a background thread and reports on one TemporalFusionEngine.
    """

    def __init__(self, port: int = 8080, bind_address: str = '0.0.0.0'):
        """
        Args:
            port: HTTP port to listen on
            bind_address: Address to bind to (default: all interfaces)
        """
        self.port = port
        self.bind_address = bind_address
        self.server: Optional[HTTPServer] = None
        self.thread: Optional[threading.Thread] = None
        self.engine = None
        self._running = False

    def set_engine(self, engine):
        """
        Connect to an engine for status reporting.

        Args:
            engine: Object with a get_status() -> dict method
        """
        self.engine = engine

    def _handler_class(self):
        # A subclass per server keeps two servers from sharing one engine
        return type('BoundHealthRequestHandler', (HealthRequestHandler,), {'health_server': self})

    def start(self):
        """Start the health server in a background thread."""
        if self._running:
            logger.warning("Health server already running")
            return

        try:
            self.server = HTTPServer((self.bind_address, self.port), self._handler_class())
        except OSError as e:
            logger.error(f"Failed to start health server on port {self.port}: {e}")
            return

        # Timeout so handle_request returns and the loop can see stop()
        self.server.timeout = 1.0
        self._running = True
        self.thread = threading.Thread(target=self._serve, name="HealthServer", daemon=True)
        self.thread.start()

        logger.info(f"Health server started on http://{self.bind_address}:{self.port}")
        logger.info("  GET /health  - Health check")
        logger.info("  GET /status  - JSON status")
        logger.info("  GET /metrics - Prometheus metrics")

    def _serve(self):
        """Server loop (runs in background thread)."""
        while self._running:
            server = self.server
            if server is None:
                break
            try:
                server.handle_request()
            except (OSError, ValueError) as e:
                # Socket closed under us by stop()
                if self._running:
                    logger.warning(f"Health server request error: {e}")

    def stop(self):
        """Stop the health server."""
        self._running = False
        if self.thread:
            self.thread.join(timeout=2.0)
            self.thread = None
        if self.server:
            self.server.server_close()
            self.server = None
        logger.info("Health server stopped")
