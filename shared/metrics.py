"""
Shared metrics configuration for the GCS storage auth layer.
"""

import threading
import time
from contextlib import contextmanager
from typing import Dict, Any, Optional

from prometheus_client import Counter, Histogram, Gauge, CollectorRegistry, REGISTRY


class MetricsCollector:
    """Centralized metrics collector for token and signing operations."""

    def __init__(self, namespace: str = "gcs_auth", registry: Optional[CollectorRegistry] = None):
        self.namespace = namespace
        self.registry = registry if registry is not None else REGISTRY
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up token and signing metrics."""

        self._metrics["token_fetch_total"] = Counter(
            "token_fetch_total",
            "Total OAuth2 token mint attempts",
            ["outcome"],
            namespace=self.namespace,
            registry=self.registry
        )

        self._metrics["token_fetch_duration_seconds"] = Histogram(
            "token_fetch_duration_seconds",
            "OAuth2 token mint duration in seconds",
            namespace=self.namespace,
            registry=self.registry
        )

        self._metrics["token_refresh_total"] = Counter(
            "token_refresh_total",
            "Total token cache refreshes",
            ["trigger", "outcome"],
            namespace=self.namespace,
            registry=self.registry
        )

        self._metrics["token_caches_active"] = Gauge(
            "token_caches_active",
            "Number of running token caches",
            namespace=self.namespace,
            registry=self.registry
        )

        self._metrics["signed_urls_total"] = Counter(
            "signed_urls_total",
            "Total signed URL generation attempts",
            ["verb", "outcome"],
            namespace=self.namespace,
            registry=self.registry
        )

    @contextmanager
    def measure_time(self, metric_name: str, **labels):
        """Context manager to observe the duration of a block."""
        start_time = time.time()
        try:
            yield
        finally:
            duration = time.time() - start_time
            self.observe_histogram(metric_name, duration, **labels)

    def increment_counter(self, metric_name: str, **labels):
        """Increment a counter metric."""
        if metric_name in self._metrics:
            metric = self._metrics[metric_name]
            (metric.labels(**labels) if labels else metric).inc()

    def adjust_gauge(self, metric_name: str, delta: float):
        """Move a gauge metric up or down."""
        if metric_name in self._metrics:
            self._metrics[metric_name].inc(delta)

    def observe_histogram(self, metric_name: str, value: float, **labels):
        """Observe a histogram metric."""
        if metric_name in self._metrics:
            metric = self._metrics[metric_name]
            (metric.labels(**labels) if labels else metric).observe(value)


_default_collector: Optional[MetricsCollector] = None
_default_lock = threading.Lock()


def get_metrics_collector(registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector.

    Without a registry the process-wide collector bound to the default
    prometheus registry is returned, since metric names can only be
    registered there once.
    """
    global _default_collector
    if registry is not None:
        return MetricsCollector(registry=registry)

    with _default_lock:
        if _default_collector is None:
            _default_collector = MetricsCollector()
        return _default_collector
