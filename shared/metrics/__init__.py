"""Metrics module using Prometheus."""

from .prometheus_metrics import (
    ScanMetrics,
    get_metrics_handler,
)

__all__ = [
    "ScanMetrics",
    "get_metrics_handler",
]
