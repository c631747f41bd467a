"""
Prometheus metrics for contextgate.
"""

from .collector import MetricConfig, MetricsCollector

__all__ = ["MetricConfig", "MetricsCollector"]
