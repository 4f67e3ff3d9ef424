"""Prometheus metrics definitions and helpers.

Provides the metric set for the RFID lookup service. Each application
instance owns its registry so several apps (e.g. in tests) can coexist
in one process.
"""

from typing import Callable, Optional

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    CollectorRegistry,
)


class ScanMetrics:
    """RFID lookup service metrics."""

    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        """Initialize scan metrics.

        Args:
            registry: Prometheus registry to use (a fresh one if omitted)
        """
        self.registry = registry if registry is not None else CollectorRegistry()

        # HTTP traffic
        self.http_requests = Counter(
            "http_requests_total",
            "Total HTTP requests",
            ["method", "endpoint", "status"],
            registry=self.registry,
        )

        self.http_request_duration = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method", "endpoint"],
            registry=self.registry,
        )

        self.http_requests_in_progress = Gauge(
            "http_requests_in_progress",
            "HTTP requests currently in progress",
            ["method", "endpoint"],
            registry=self.registry,
        )

        # Lookups by outcome (found, not_found, error)
        self.scans = Counter(
            "rfid_scans_total",
            "Total RFID lookups by outcome",
            ["outcome"],
            registry=self.registry,
        )

        # Chat notifications per recipient
        self.notifications = Counter(
            "notifications_total",
            "Chat notifications by kind and delivery status",
            ["kind", "status"],
            registry=self.registry,
        )

        # Live feed
        self.live_feed_clients = Gauge(
            "live_feed_clients",
            "Currently connected live feed clients",
            registry=self.registry,
        )

        self.live_feed_events = Counter(
            "live_feed_events_total",
            "Events pushed to live feed clients",
            ["event"],
            registry=self.registry,
        )


def get_metrics_handler(metrics: ScanMetrics) -> Callable[[], bytes]:
    """Get metrics handler for HTTP endpoint.

    Args:
        metrics: Metric set whose registry is exported

    Returns:
        Function that generates Prometheus metrics output
    """

    def metrics_handler() -> bytes:
        return generate_latest(metrics.registry)

    return metrics_handler
