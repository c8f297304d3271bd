"""Monitoring and metrics"""

from vaultsync.monitoring.metrics import MetricsCollector, MetricsTimer, metrics_collector

__all__ = ["MetricsCollector", "MetricsTimer", "metrics_collector"]
