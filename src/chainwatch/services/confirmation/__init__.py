"""Confirmation tracking service module."""

from chainwatch.services.confirmation.tracker import (
    ConfirmationStrategy,
    ConfirmationTracker,
    HeadSubscriptionConfirmationStrategy,
    PollingConfirmationStrategy,
    wait_for_confirmation,
)

__all__ = [
    "ConfirmationStrategy",
    "ConfirmationTracker",
    "HeadSubscriptionConfirmationStrategy",
    "PollingConfirmationStrategy",
    "wait_for_confirmation",
]
