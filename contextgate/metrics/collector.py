"""
Prometheus metrics for contextgate.

Each collector owns its registry so several engines can live in one process.
"""

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest


logger = logging.getLogger(__name__)


@dataclass
class MetricConfig:
    """Configuration for metrics collection."""

    enabled: bool = True
    namespace: str = "contextgate"


class MetricsCollector:
    """Counters and histograms for permission checks and consent decisions."""

    def __init__(self, config: MetricConfig = None):
        """
        Initialize metrics collector.

        Args:
            config: Metrics configuration
        """
        self.config = config or MetricConfig()
        self.registry = CollectorRegistry()

        if not self.config.enabled:
            logger.info("Metrics collection disabled")
            return

        ns = self.config.namespace

        self.permission_checks = Counter(
            f'{ns}_permission_checks_total',
            'Total number of permission checks',
            ['action', 'outcome'],
            registry=self.registry
        )

        self.check_latency = Histogram(
            f'{ns}_permission_check_duration_seconds',
            'Permission check duration in seconds',
            ['action'],
            buckets=[0.0001, 0.0002, 0.0005, 0.001, 0.002, 0.005, 0.01, 0.02, 0.05, 0.1],
            registry=self.registry
        )

        self.permission_transitions = Counter(
            f'{ns}_permission_transitions_total',
            'Permission lifecycle transitions',
            ['transition'],
            registry=self.registry
        )

        self.consent_decisions = Counter(
            f'{ns}_consent_decisions_total',
            'Consent lifecycle transitions and decisions',
            ['result'],
            registry=self.registry
        )

        self.condition_failures = Counter(
            f'{ns}_condition_failures_total',
            'Conditions that evaluated to false',
            ['condition_type'],
            registry=self.registry
        )

    def record_permission_check(self, action: str, outcome: str, duration: float) -> None:
        """Record a permission check outcome and its latency."""
        if not self.config.enabled:
            return
        self.permission_checks.labels(action=action, outcome=outcome).inc()
        self.check_latency.labels(action=action).observe(duration)

    def record_permission_transition(self, transition: str, count: int = 1) -> None:
        """Record grants, revocations and expiries."""
        if not self.config.enabled or count <= 0:
            return
        self.permission_transitions.labels(transition=transition).inc(count)

    def record_consent(self, result: str, count: int = 1) -> None:
        """Record consent granted/denied/revoked/expired."""
        if not self.config.enabled or count <= 0:
            return
        self.consent_decisions.labels(result=result).inc(count)

    def record_condition_failure(self, condition_type: str) -> None:
        """Record a failed condition by type."""
        if not self.config.enabled:
            return
        self.condition_failures.labels(condition_type=condition_type).inc()

    def get_value(self, name: str, **labels) -> float:
        """Current sample value from the registry, 0.0 when absent."""
        value = self.registry.get_sample_value(name, labels)
        return value if value is not None else 0.0

    @contextmanager
    def time(self) -> Iterator[dict]:
        """Measure elapsed seconds into ``timer['duration']``."""
        timer = {'duration': 0.0}
        start = time.perf_counter()
        try:
            yield timer
        finally:
            timer['duration'] = time.perf_counter() - start

    def export(self) -> bytes:
        """Prometheus text exposition of every metric."""
        return generate_latest(self.registry)
