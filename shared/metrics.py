"""
Shared metrics configuration for the reporting backend.
"""

import time
from contextlib import contextmanager
from typing import Any, Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Histogram, Info


class MetricsCollector:
    """Centralized metrics collector for a service instance.

    Each collector owns its registry so several service instances (for
    example one per test) can coexist in a process.
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry or CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up metrics for the service."""

        self._metrics["service_info"] = Info(
            "service_info",
            "Service information",
            registry=self.registry
        )
        self._metrics["service_info"].info({
            "service": self.service_name,
            "version": "1.0.0"
        })

        # HTTP metrics
        self._metrics["http_requests_total"] = Counter(
            "http_requests_total",
            "Total HTTP requests",
            ["method", "endpoint", "status_code"],
            registry=self.registry
        )

        self._metrics["http_request_duration_seconds"] = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method", "endpoint"],
            registry=self.registry
        )

        self._metrics["errors_total"] = Counter(
            "errors_total",
            "Total errors",
            ["error_type"],
            registry=self.registry
        )

        # Cache metrics
        self._metrics["cache_hits_total"] = Counter(
            "cache_hits_total",
            "Total cache hits",
            ["layer"],
            registry=self.registry
        )

        self._metrics["cache_misses_total"] = Counter(
            "cache_misses_total",
            "Total cache misses",
            ["layer"],
            registry=self.registry
        )

        # Token lifecycle
        self._metrics["token_events_total"] = Counter(
            "token_events_total",
            "Token lifecycle events",
            ["event"],
            registry=self.registry
        )

        # Vendor calls
        self._metrics["upstream_errors_total"] = Counter(
            "upstream_errors_total",
            "Failed vendor data calls",
            ["source"],
            registry=self.registry
        )

        self._metrics["upstream_retries_total"] = Counter(
            "upstream_retries_total",
            "Vendor data calls retried after a transient failure",
            ["source"],
            registry=self.registry
        )

        self._metrics["upstream_call_duration_seconds"] = Histogram(
            "upstream_call_duration_seconds",
            "Vendor data call duration in seconds",
            ["source"],
            registry=self.registry
        )

    def record_http_request(self, method: str, endpoint: str, status_code: int, duration: float):
        """Record HTTP request metrics."""
        self._metrics["http_requests_total"].labels(
            method=method,
            endpoint=endpoint,
            status_code=str(status_code)
        ).inc()

        self._metrics["http_request_duration_seconds"].labels(
            method=method,
            endpoint=endpoint
        ).observe(duration)

    def record_error(self, error_type: str):
        """Record error metrics."""
        self._metrics["errors_total"].labels(error_type=error_type).inc()

    def record_cache_access(self, layer: str, hit: bool):
        """Record a cache lookup outcome."""
        name = "cache_hits_total" if hit else "cache_misses_total"
        self._metrics[name].labels(layer=layer).inc()

    def record_token_event(self, event: str):
        """Record a token lifecycle event (issued, refreshed, rejected, revoked)."""
        self._metrics["token_events_total"].labels(event=event).inc()

    def record_upstream_error(self, source: str):
        self._metrics["upstream_errors_total"].labels(source=source).inc()

    def record_upstream_retry(self, source: str):
        self._metrics["upstream_retries_total"].labels(source=source).inc()

    @contextmanager
    def time_operation(self, operation_name: str, **labels):
        """Context manager to time an operation."""
        start_time = time.time()
        try:
            yield
        finally:
            duration = time.time() - start_time
            if operation_name in self._metrics:
                self._metrics[operation_name].labels(**labels).observe(duration)


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
