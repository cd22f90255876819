"""Error taxonomy for confirmation and event waits.

Every terminal error carries the transport mode that was active and how many
attempts / blocks the wait consumed, so transport flakiness can be told apart
from a transaction or event that genuinely never showed up.
"""

from typing import Any


class ChainWaitError(Exception):
    """Base class for errors raised by chainwatch."""

    def __init__(
        self,
        message: str,
        mode: str | None = None,
        attempts: int = 0,
        blocks_observed: int = 0,
    ):
        self.message = message
        self.mode = mode
        self.attempts = attempts
        self.blocks_observed = blocks_observed
        super().__init__(message)

    def annotate(self, mode: str, attempts: int, blocks_observed: int) -> "ChainWaitError":
        """Fill in wait context that was not known where the error was raised."""
        if self.mode is None:
            self.mode = mode
        self.attempts = max(self.attempts, attempts)
        self.blocks_observed = max(self.blocks_observed, blocks_observed)
        return self

    @property
    def details(self) -> dict[str, Any]:
        """Diagnostic fields for logs."""
        return {
            "mode": self.mode,
            "attempts": self.attempts,
            "blocks_observed": self.blocks_observed,
        }

    def __str__(self) -> str:
        if self.mode is None:
            return self.message
        return (
            f"{self.message} (mode={self.mode}, attempts={self.attempts}, "
            f"blocks_observed={self.blocks_observed})"
        )


class TransportError(ChainWaitError):
    """RPC request or connection failure."""


class SubscriptionError(TransportError):
    """Error delivered on a subscription channel, or the channel closed."""


class SubscriptionUnsupported(ChainWaitError):
    """The transport cannot provide push notifications."""


class ReceiptNotFound(ChainWaitError):
    """Retry budget exhausted without seeing the receipt."""

    def __init__(self, tx_hash: str, **kwargs: Any):
        self.tx_hash = tx_hash
        super().__init__(f"Receipt for {tx_hash} not found", **kwargs)


class WaitTimeout(ChainWaitError):
    """Bounded wait exceeded without reaching the target."""


class WaitCancelled(ChainWaitError):
    """Wait cancelled by the caller."""


class TransactionReverted(ChainWaitError):
    """Confirmed receipt carries a failure status."""

    def __init__(self, receipt: Any, **kwargs: Any):
        self.receipt = receipt
        super().__init__(
            f"Transaction {receipt.tx_hash} reverted in block {receipt.block_number}",
            **kwargs,
        )
