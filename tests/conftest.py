"""Pytest configuration and fixtures."""

import pytest

from chainwatch.core.config import Settings
from chainwatch.services.metrics.collector import MetricsCollector


@pytest.fixture
def settings():
    """Settings with zero delays for fast tests."""
    return Settings(
        environment="testing",
        poll_interval=0,
        scan_interval=0,
        rpc_retry_delay=0,
        receipt_retry_budget=5,
        required_confirmations=3,
        wait_blocks=5,
        scan_lookback=3,
        scan_error_budget=3,
    )


@pytest.fixture
def metrics():
    """Fresh metrics collector."""
    return MetricsCollector()
