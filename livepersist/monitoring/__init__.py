"""Monitoring package: Prometheus metrics for persistent roots."""

from livepersist.monitoring.metrics import PersistMetrics, default_metrics

__all__ = [
    "PersistMetrics",
    "default_metrics",
]
