"""
Tests for health monitoring server.
"""

import json
import pytest
import time
import urllib.error
import urllib.request
from unittest.mock import MagicMock


def _status():
    """A status dict shaped like TemporalFusionEngine.get_status()."""
    return {
        'service': 'temporal-fusion',
        'running': True,
        'uptime_seconds': 3600.0,
        'timing': {
            'timestamp': 1_700_000_000_000,
            'quality_score': 0.75,
            'estimated_accuracy': 0.001,
            'contributing_source_id': 'gps',
            'clock_status': 'SYNCED',
            'sources_configured': 3,
            'sources_active': 2,
            'drift_ppm': 1.5,
            'last_cycle_error': None,
        },
        'sync': {
            'stats': {'cycles': 100, 'failed_cycles': 2, 'resets': 1},
            'sources': {
                'gps': {'kind': 'http', 'successes': 98, 'failures': 2},
            },
        },
        'streams': {
            'temp': {'index': {'points': 42, 'reconstructed': 5, 'evicted': 7}},
        },
    }


def _get(port, path):
    try:
        return urllib.request.urlopen(f'http://127.0.0.1:{port}{path}', timeout=2)
    except urllib.error.HTTPError:
        raise
    except (urllib.error.URLError, OSError) as e:
        pytest.skip(f"Network test failed: {e}")


class TestHealthServer:
    """Tests for HealthServer."""

    def test_health_server_initialization(self):
        """Test HealthServer initialization with custom port."""
        from temporal_fusion.output.health_server import HealthServer

        server = HealthServer(port=9999, bind_address='127.0.0.1')
        assert server.port == 9999
        assert server.bind_address == '127.0.0.1'
        assert server.engine is None
        assert server._running is False

    def test_handler_bound_per_server(self):
        """Two servers never share an engine through the handler class."""
        from temporal_fusion.output.health_server import HealthServer, HealthRequestHandler

        a = HealthServer(port=1)
        b = HealthServer(port=2)
        handler_a = a._handler_class()
        handler_b = b._handler_class()

        assert issubclass(handler_a, HealthRequestHandler)
        assert handler_a.health_server is a
        assert handler_b.health_server is b
        assert HealthRequestHandler.health_server is None

    def test_start_on_busy_port_does_not_raise(self):
        from temporal_fusion.output.health_server import HealthServer

        first = HealthServer(port=19878, bind_address='127.0.0.1')
        first.start()
        second = HealthServer(port=19878, bind_address='127.0.0.1')
        try:
            second.start()
        finally:
            second.stop()
            first.stop()


class TestHealthServerIntegration:
    """Integration tests for HealthServer (requires network)."""

    @pytest.fixture
    def mock_engine(self):
        """Create a mock TemporalFusionEngine for testing."""
        engine = MagicMock()
        engine.get_status.return_value = _status()
        return engine

    @pytest.fixture
    def health_server(self, mock_engine):
        """Create and start a health server for testing."""
        from temporal_fusion.output.health_server import HealthServer

        # Use a high port to avoid conflicts
        server = HealthServer(port=19876, bind_address='127.0.0.1')
        server.set_engine(mock_engine)
        server.start()

        # Give server time to start
        time.sleep(0.1)

        yield server

        server.stop()

    def test_health_endpoint(self, health_server):
        """Test /health endpoint returns OK."""
        response = _get(19876, '/health')
        assert response.status == 200
        assert response.read() == b'OK\n'

    def test_status_endpoint(self, health_server):
        """Test /status endpoint returns JSON."""
        response = _get(19876, '/status')
        assert response.status == 200

        data = json.loads(response.read())
        assert data['service'] == 'temporal-fusion'
        assert data['timing']['contributing_source_id'] == 'gps'

    def test_metrics_endpoint(self, health_server):
        """Test /metrics endpoint returns Prometheus format."""
        response = _get(19876, '/metrics')
        assert response.status == 200

        content = response.read().decode()
        assert 'temporal_fusion_quality_score 0.7500' in content
        assert 'temporal_fusion_clock_status 2' in content

    def test_unknown_path(self, health_server):
        with pytest.raises(urllib.error.HTTPError) as exc:
            _get(19876, '/nope')
        assert exc.value.code == 404

    def test_engine_error_is_500(self, health_server, mock_engine):
        mock_engine.get_status.side_effect = RuntimeError("boom")
        with pytest.raises(urllib.error.HTTPError) as exc:
            _get(19876, '/status')
        assert exc.value.code == 500


class TestHealthServerWithoutEngine:
    """Endpoints answer 503 until an engine is connected."""

    @pytest.fixture
    def bare_server(self):
        from temporal_fusion.output.health_server import HealthServer

        server = HealthServer(port=19877, bind_address='127.0.0.1')
        server.start()
        time.sleep(0.1)
        yield server
        server.stop()

    def test_health_still_ok(self, bare_server):
        assert _get(19877, '/health').status == 200

    @pytest.mark.parametrize('path', ['/status', '/metrics'])
    def test_503(self, bare_server, path):
        with pytest.raises(urllib.error.HTTPError) as exc:
            _get(19877, path)
        assert exc.value.code == 503


class TestPrometheusMetrics:
    """Tests for Prometheus metrics formatting."""

    def test_prometheus_format(self):
        """Test that metrics are properly formatted for Prometheus."""
        from temporal_fusion.output.health_server import format_prometheus_metrics

        metrics = format_prometheus_metrics(_status())

        assert '# TYPE temporal_fusion_quality_score gauge' in metrics
        assert 'temporal_fusion_quality_score 0.7500' in metrics
        assert 'temporal_fusion_estimated_accuracy_seconds 0.001000000' in metrics
        assert 'temporal_fusion_sources_active 2' in metrics
        assert 'temporal_fusion_drift_ppm 1.500' in metrics
        assert 'temporal_fusion_sync_cycles_total 100' in metrics
        assert 'temporal_fusion_clock_resets_total 1' in metrics
        assert 'temporal_fusion_source_fetch_failures_total{source="gps"} 2' in metrics
        assert 'temporal_fusion_stream_points{stream="temp"} 42' in metrics
        assert 'temporal_fusion_stream_evicted_total{stream="temp"} 7' in metrics

    def test_real_engine_status(self):
        """A live engine's status formats without error."""
        from temporal_fusion.engine.temporal_engine import TemporalFusionEngine
        from temporal_fusion.output.health_server import format_prometheus_metrics

        engine = TemporalFusionEngine()
        engine.register_stream("temp")
        try:
            metrics = format_prometheus_metrics(engine.get_status())
        finally:
            engine.stop()

        assert 'temporal_fusion_quality_score 0.0000' in metrics
        assert 'temporal_fusion_clock_status 1' in metrics
        assert 'temporal_fusion_stream_points{stream="temp"} 0' in metrics
