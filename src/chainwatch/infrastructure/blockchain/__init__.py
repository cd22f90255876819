"""Blockchain infrastructure module."""

from chainwatch.infrastructure.blockchain.client import ChainClient, Web3Client, resolve_mode
from chainwatch.infrastructure.blockchain.events import (
    EventFilter,
    EventParser,
    EventRecord,
    EventType,
    address_topic,
    event_topic,
)
from chainwatch.infrastructure.blockchain.subscription import Subscription, Web3Subscription
from chainwatch.infrastructure.blockchain.transaction import (
    BlockHeader,
    ConfirmationRequest,
    Receipt,
    ReceiptStatus,
    TransactionHandle,
    confirmation_depth,
)

__all__ = [
    # Client
    "ChainClient",
    "Web3Client",
    "resolve_mode",
    # Subscriptions
    "Subscription",
    "Web3Subscription",
    # Events
    "EventFilter",
    "EventParser",
    "EventRecord",
    "EventType",
    "address_topic",
    "event_topic",
    # Transactions
    "BlockHeader",
    "ConfirmationRequest",
    "Receipt",
    "ReceiptStatus",
    "TransactionHandle",
    "confirmation_depth",
]
