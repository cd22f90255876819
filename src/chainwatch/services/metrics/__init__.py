"""Metrics service module."""

from chainwatch.services.metrics.collector import (
    ACTIVE_SUBSCRIPTIONS,
    ACTIVE_WAITS,
    WAIT_DURATION_SECONDS,
    WAIT_ERRORS_TOTAL,
    WAITS_TOTAL,
    MetricsCollector,
)

__all__ = [
    "MetricsCollector",
    "WAITS_TOTAL",
    "WAIT_ERRORS_TOTAL",
    "WAIT_DURATION_SECONDS",
    "ACTIVE_WAITS",
    "ACTIVE_SUBSCRIPTIONS",
]
