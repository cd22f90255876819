"""Wait for transaction confirmations and on-chain events over push or pull RPC transports."""

from chainwatch.core.cancellation import CancellationToken
from chainwatch.core.config import Settings, get_settings
from chainwatch.core.exceptions import (
    ChainWaitError,
    ReceiptNotFound,
    SubscriptionError,
    SubscriptionUnsupported,
    TransactionReverted,
    TransportError,
    WaitCancelled,
    WaitTimeout,
)
from chainwatch.core.logging import configure_logging
from chainwatch.core.stats import TransportMode, WaitStats
from chainwatch.infrastructure.blockchain import (
    BlockHeader,
    ChainClient,
    EventFilter,
    EventRecord,
    EventType,
    Receipt,
    ReceiptStatus,
    Subscription,
    TransactionHandle,
    Web3Client,
)
from chainwatch.services.confirmation import ConfirmationTracker, wait_for_confirmation
from chainwatch.services.event_waiter import EventWaiter, wait_for_event

__version__ = "0.1.0"

__all__ = [
    "__version__",
    # Entry points
    "wait_for_confirmation",
    "wait_for_event",
    "ConfirmationTracker",
    "EventWaiter",
    # Client
    "ChainClient",
    "Web3Client",
    "Subscription",
    # Types
    "BlockHeader",
    "EventFilter",
    "EventRecord",
    "EventType",
    "Receipt",
    "ReceiptStatus",
    "TransactionHandle",
    "TransportMode",
    "WaitStats",
    "CancellationToken",
    "Settings",
    "get_settings",
    "configure_logging",
    # Errors
    "ChainWaitError",
    "ReceiptNotFound",
    "SubscriptionError",
    "SubscriptionUnsupported",
    "TransactionReverted",
    "TransportError",
    "WaitCancelled",
    "WaitTimeout",
]
