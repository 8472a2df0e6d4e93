"""Output surfaces for temporal-fusion status.

- HealthServer: HTTP /health, /status and /metrics endpoints
"""

from .health_server import HealthServer, format_prometheus_metrics

__all__ = ['HealthServer', 'format_prometheus_metrics']
