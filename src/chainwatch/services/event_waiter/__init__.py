"""Event waiting service module."""

from chainwatch.services.event_waiter.deduplicator import EventDeduplicator
from chainwatch.services.event_waiter.waiter import (
    EventWaiter,
    EventWaitStrategy,
    LogScanStrategy,
    LogSubscriptionStrategy,
    wait_for_event,
)

__all__ = [
    # Deduplicator
    "EventDeduplicator",
    # Waiter
    "EventWaiter",
    "EventWaitStrategy",
    "LogScanStrategy",
    "LogSubscriptionStrategy",
    "wait_for_event",
]
