"""Confirmation tracking by receipt polling or new-head subscription.

Timeouts differ by mode. Polling bounds only the "receipt not found" phase
with a budget of consecutive failed polls; once the receipt exists, waiting
for depth continues until the caller cancels. Head subscription bounds the
whole wait by ``wait_blocks + required_confirmations`` observed headers.
"""

import logging
from abc import ABC, abstractmethod

from chainwatch.core.cancellation import CancellationToken, cancellable, sleep
from chainwatch.core.config import Settings, get_settings
from chainwatch.core.exceptions import (
    ReceiptNotFound,
    SubscriptionUnsupported,
    TransactionReverted,
    TransportError,
    WaitTimeout,
)
from chainwatch.core.retry import RetryBudget
from chainwatch.core.stats import TransportMode, WaitStats
from chainwatch.infrastructure.blockchain.client import ChainClient, resolve_mode
from chainwatch.infrastructure.blockchain.transaction import (
    ConfirmationRequest,
    Receipt,
    TransactionHandle,
    confirmation_depth,
)
from chainwatch.services.execution import open_subscription, run_strategy
from chainwatch.services.metrics.collector import MetricsCollector

logger = logging.getLogger(__name__)


class ConfirmationStrategy(ABC):
    """One way of waiting for a receipt to reach a confirmation depth."""

    mode: TransportMode

    def __init__(self, client: ChainClient, metrics: MetricsCollector):
        self.client = client
        self.metrics = metrics

    @abstractmethod
    async def wait(
        self,
        request: ConfirmationRequest,
        stats: WaitStats,
        token: CancellationToken | None,
    ) -> Receipt:
        """Wait until the request is satisfied."""
        ...


class PollingConfirmationStrategy(ConfirmationStrategy):
    """Polls for the receipt and the head on a fixed interval."""

    mode = TransportMode.PULL

    async def wait(
        self,
        request: ConfirmationRequest,
        stats: WaitStats,
        token: CancellationToken | None,
    ) -> Receipt:
        tx = request.tx
        budget = RetryBudget(request.retry_budget)

        while True:
            await sleep(request.poll_interval, token)
            stats.attempts += 1

            last_error: TransportError | None = None
            try:
                receipt = await cancellable(
                    self.client.get_transaction_receipt(tx.tx_hash), token
                )
            except TransportError as e:
                receipt = None
                last_error = e

            if receipt is None:
                if budget.record_failure():
                    raise ReceiptNotFound(tx.tx_hash) from last_error
                logger.info(
                    f"Can't get the receipt for {tx.tx_hash} "
                    f"({budget.failures}/{budget.max_failures}): "
                    f"{last_error or 'not found'}, will try again"
                )
                continue

            tx.record_receipt(receipt)

            try:
                head = await cancellable(self.client.get_block_number(), token)
            except TransportError as e:
                if budget.record_failure():
                    raise
                logger.warning(
                    f"Head lookup failed for {tx.tx_hash} "
                    f"({budget.failures}/{budget.max_failures}): {e}"
                )
                continue

            # A complete poll ends the run of consecutive failures
            budget.reset()
            stats.latest_head = head
            confirmations = confirmation_depth(head, receipt.block_number)
            logger.info(f"Got receipt, tx_hash={tx.tx_hash}, confirmations={confirmations}")

            if confirmations >= request.required_confirmations:
                return receipt


class HeadSubscriptionConfirmationStrategy(ConfirmationStrategy):
    """Checks the receipt each time a new head is pushed."""

    mode = TransportMode.PUSH

    async def wait(
        self,
        request: ConfirmationRequest,
        stats: WaitStats,
        token: CancellationToken | None,
    ) -> Receipt:
        tx = request.tx
        bound = request.header_bound

        async with open_subscription(
            self.client.subscribe_new_heads(), self.metrics, token
        ) as headers:
            while stats.blocks_observed < bound:
                header = await cancellable(headers.receive(), token)
                stats.blocks_observed += 1
                stats.latest_head = header.number

                stats.attempts += 1
                receipt = await cancellable(
                    self.client.get_transaction_receipt(tx.tx_hash), token
                )
                if receipt is None:
                    logger.info(
                        f"No receipt for {tx.tx_hash} at head {header.number}, "
                        f"waiting for the next block"
                    )
                    continue

                tx.record_receipt(receipt)
                confirmations = confirmation_depth(header.number, receipt.block_number)
                logger.info(f"Got receipt, tx_hash={tx.tx_hash}, confirmations={confirmations}")

                if confirmations >= request.required_confirmations:
                    return receipt

        raise WaitTimeout(
            f"Transaction {tx.tx_hash} did not reach {request.required_confirmations} "
            f"confirmations within {bound} blocks"
        )


class ConfirmationTracker:
    """Resolves whether a transaction reached a confirmation depth."""

    def __init__(
        self,
        client: ChainClient,
        settings: Settings | None = None,
        metrics: MetricsCollector | None = None,
    ):
        """Initialize tracker.

        Args:
            client: Chain client shared with other waits
            settings: Settings providing defaults
            metrics: Metrics collector
        """
        self.client = client
        self.settings = settings or get_settings()
        self.metrics = metrics or MetricsCollector()

    def _strategy(self, mode: TransportMode) -> ConfirmationStrategy:
        if mode == TransportMode.PUSH:
            return HeadSubscriptionConfirmationStrategy(self.client, self.metrics)
        return PollingConfirmationStrategy(self.client, self.metrics)

    async def wait(
        self,
        tx: TransactionHandle | str,
        required_confirmations: int | None = None,
        mode: TransportMode | str | None = None,
        cancel_token: CancellationToken | None = None,
        retry_budget: int | None = None,
        poll_interval: float | None = None,
        wait_blocks: int | None = None,
        raise_on_failure: bool = False,
    ) -> Receipt:
        """Wait until ``tx`` has ``required_confirmations`` blocks on top.

        Args:
            tx: Transaction handle or hash
            required_confirmations: Target depth (default from settings)
            mode: auto, push or pull (default from settings)
            cancel_token: External cancellation signal
            retry_budget: Consecutive failed polls tolerated in polling mode
            poll_interval: Seconds between polls
            wait_blocks: Extra headers tolerated in head-subscription mode
            raise_on_failure: Raise TransactionReverted for a failed receipt

        Returns:
            Receipt once confirmed

        Raises:
            ReceiptNotFound: Polling budget exhausted
            WaitTimeout: Head-subscription bound exceeded
            WaitCancelled: Cancelled through ``cancel_token``
            TransportError: Unrecoverable transport failure
            TransactionReverted: Failed receipt with ``raise_on_failure``
        """
        settings = self.settings
        request = ConfirmationRequest(
            tx=TransactionHandle.coerce(tx),
            required_confirmations=(
                required_confirmations
                if required_confirmations is not None
                else settings.required_confirmations
            ),
            retry_budget=retry_budget if retry_budget is not None else settings.receipt_retry_budget,
            poll_interval=poll_interval if poll_interval is not None else settings.poll_interval,
            wait_blocks=wait_blocks if wait_blocks is not None else settings.wait_blocks,
        )
        requested = TransportMode(mode or settings.transport_mode)
        resolved = resolve_mode(self.client, requested)

        if resolved == TransportMode.PUSH:
            try:
                return await self._run(request, resolved, cancel_token, raise_on_failure)
            except SubscriptionUnsupported as e:
                if requested != TransportMode.AUTO:
                    raise
                logger.warning(f"Head subscription unavailable ({e}), falling back to polling")
                resolved = TransportMode.PULL

        return await self._run(request, resolved, cancel_token, raise_on_failure)

    async def _run(
        self,
        request: ConfirmationRequest,
        mode: TransportMode,
        token: CancellationToken | None,
        raise_on_failure: bool,
    ) -> Receipt:
        strategy = self._strategy(mode)

        async def call(stats: WaitStats) -> Receipt:
            receipt = await strategy.wait(request, stats, token)
            if raise_on_failure and not receipt.succeeded:
                raise TransactionReverted(receipt)
            return receipt

        return await run_strategy(
            "confirmation",
            mode,
            call,
            self.metrics,
            f"Confirmation wait for {request.tx.tx_hash}",
        )


async def wait_for_confirmation(
    client: ChainClient,
    tx: TransactionHandle | str,
    required_confirmations: int | None = None,
    *,
    mode: TransportMode | str | None = None,
    cancel_token: CancellationToken | None = None,
    settings: Settings | None = None,
    metrics: MetricsCollector | None = None,
    **options,
) -> Receipt:
    """Wait for ``tx`` to reach ``required_confirmations``.

    See ConfirmationTracker.wait for the accepted options.
    """
    tracker = ConfirmationTracker(client, settings=settings, metrics=metrics)
    return await tracker.wait(
        tx,
        required_confirmations,
        mode=mode,
        cancel_token=cancel_token,
        **options,
    )
