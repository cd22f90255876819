"""Waiting for the first log matching a filter.

Both modes are single-shot: the first matching record ends the wait and the
subscription is torn down. Callers needing further events must wait again.
Neither mode has a built-in timeout; bound it with a cancellation token or
``asyncio.wait_for``.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any

from chainwatch.core.cancellation import CancellationToken, cancellable, sleep
from chainwatch.core.config import Settings, get_settings
from chainwatch.core.exceptions import SubscriptionUnsupported, TransportError
from chainwatch.core.retry import RetryBudget
from chainwatch.core.stats import TransportMode, WaitStats
from chainwatch.infrastructure.blockchain.client import ChainClient, resolve_mode
from chainwatch.infrastructure.blockchain.events import EventFilter, EventParser, EventRecord
from chainwatch.services.event_waiter.deduplicator import EventDeduplicator
from chainwatch.services.execution import open_subscription, run_strategy
from chainwatch.services.metrics.collector import MetricsCollector

logger = logging.getLogger(__name__)


class EventWaitStrategy(ABC):
    """One way of waiting for the first matching log."""

    mode: TransportMode

    def __init__(
        self,
        client: ChainClient,
        metrics: MetricsCollector,
        parser: EventParser,
        dedup_max_size: int,
    ):
        self.client = client
        self.metrics = metrics
        self.parser = parser
        self.dedup_max_size = dedup_max_size

    @abstractmethod
    async def wait(
        self,
        event_filter: EventFilter,
        stats: WaitStats,
        token: CancellationToken | None,
    ) -> EventRecord:
        """Wait for the first record matching the filter."""
        ...

    def _accept(
        self,
        raw: dict[str, Any],
        event_filter: EventFilter,
        deduplicator: EventDeduplicator,
    ) -> EventRecord | None:
        """Parse a raw log and return it if it is a new, live match."""
        record = self.parser.parse_log(raw)
        if record.removed:
            logger.debug(f"Ignoring removed log {record.tx_hash}:{record.log_index}")
            return None
        if not deduplicator.check_and_mark(*record.key):
            return None
        if not event_filter.matches(record):
            return None
        return record


class LogSubscriptionStrategy(EventWaitStrategy):
    """Returns the first record pushed on a logs subscription."""

    mode = TransportMode.PUSH

    async def wait(
        self,
        event_filter: EventFilter,
        stats: WaitStats,
        token: CancellationToken | None,
    ) -> EventRecord:
        deduplicator = EventDeduplicator(self.dedup_max_size)
        address, topics = event_filter.rpc_params()

        async with open_subscription(
            self.client.subscribe_logs(address, topics), self.metrics, token
        ) as logs:
            while True:
                raw = await cancellable(logs.receive(), token)
                stats.attempts += 1
                record = self._accept(raw, event_filter, deduplicator)
                if record is not None:
                    logger.info(
                        f"Got event at block {record.block_number}, "
                        f"tx_hash={record.tx_hash}, args={record.args}; stop watching"
                    )
                    return record


class LogScanStrategy(EventWaitStrategy):
    """Scans ``[cursor, cursor + 1]`` per round, one block further each time."""

    mode = TransportMode.PULL

    def __init__(
        self,
        client: ChainClient,
        metrics: MetricsCollector,
        parser: EventParser,
        dedup_max_size: int,
        lookback: int,
        interval: float,
        error_budget: int,
    ):
        super().__init__(client, metrics, parser, dedup_max_size)
        self.lookback = lookback
        self.interval = interval
        self.error_budget = error_budget

    async def _head(self, budget: RetryBudget, token: CancellationToken | None) -> int:
        """Current head, retrying transport errors within the budget."""
        while True:
            try:
                head = await cancellable(self.client.get_block_number(), token)
            except TransportError as e:
                if budget.record_failure():
                    raise
                delay = budget.backoff_delay(self.interval)
                logger.warning(
                    f"Get block number failed ({budget.failures}/{budget.max_failures}): {e}; "
                    f"retrying in {delay}s"
                )
                await sleep(delay, token)
                continue
            budget.reset()
            return head

    async def starting_block(
        self, stats: WaitStats, budget: RetryBudget, token: CancellationToken | None
    ) -> int:
        """Wait for the head to pass the lookback depth and anchor behind it."""
        while True:
            head = await self._head(budget, token)
            stats.latest_head = head
            if head > self.lookback:
                return head - self.lookback
            logger.info(f"Head {head} is not above lookback {self.lookback}, waiting")
            await sleep(self.interval, token)

    async def wait(
        self,
        event_filter: EventFilter,
        stats: WaitStats,
        token: CancellationToken | None,
    ) -> EventRecord:
        deduplicator = EventDeduplicator(self.dedup_max_size)
        budget = RetryBudget(self.error_budget)
        address, topics = event_filter.rpc_params()

        if event_filter.from_block is not None:
            cursor = event_filter.from_block
            stats.latest_head = await self._head(budget, token)
        else:
            cursor = await self.starting_block(stats, budget, token)
        stats.cursor = cursor
        logger.info(f"Scanning for events from block {cursor}")

        while True:
            if cursor > stats.latest_head:
                # Do not scan blocks that do not exist yet
                await sleep(self.interval, token)
                stats.latest_head = await self._head(budget, token)
                continue

            try:
                logs = await cancellable(
                    self.client.get_logs(cursor, cursor + 1, address=address, topics=topics),
                    token,
                )
            except TransportError as e:
                if budget.record_failure():
                    raise
                delay = budget.backoff_delay(self.interval)
                logger.warning(
                    f"Filter logs [{cursor}, {cursor + 1}] failed "
                    f"({budget.failures}/{budget.max_failures}): {e}; retrying in {delay}s"
                )
                await sleep(delay, token)
                continue

            budget.reset()
            stats.attempts += 1

            for raw in logs:
                record = self._accept(raw, event_filter, deduplicator)
                if record is not None:
                    logger.info(
                        f"Got event at block {record.block_number}, "
                        f"tx_hash={record.tx_hash}, args={record.args}; close filter"
                    )
                    return record

            cursor += 1  # next block
            stats.cursor = cursor
            stats.blocks_observed += 1
            await sleep(self.interval, token)


class EventWaiter:
    """Resolves whether an event matching a filter has occurred."""

    def __init__(
        self,
        client: ChainClient,
        settings: Settings | None = None,
        metrics: MetricsCollector | None = None,
        parser: EventParser | None = None,
    ):
        """Initialize event waiter.

        Args:
            client: Chain client shared with other waits
            settings: Settings providing defaults
            metrics: Metrics collector
            parser: Log parser
        """
        self.client = client
        self.settings = settings or get_settings()
        self.metrics = metrics or MetricsCollector()
        self.parser = parser or EventParser()

    def _strategy(
        self, mode: TransportMode, lookback: int, interval: float
    ) -> EventWaitStrategy:
        if mode == TransportMode.PUSH:
            return LogSubscriptionStrategy(
                self.client, self.metrics, self.parser, self.settings.dedup_max_size
            )
        return LogScanStrategy(
            self.client,
            self.metrics,
            self.parser,
            self.settings.dedup_max_size,
            lookback=lookback,
            interval=interval,
            error_budget=self.settings.scan_error_budget,
        )

    async def wait(
        self,
        event_filter: EventFilter | None = None,
        mode: TransportMode | str | None = None,
        cancel_token: CancellationToken | None = None,
        lookback: int | None = None,
        scan_interval: float | None = None,
    ) -> EventRecord:
        """Wait for the first record matching ``event_filter``.

        Args:
            event_filter: Filter to match (None matches every log)
            mode: auto, push or pull (default from settings)
            cancel_token: External cancellation signal
            lookback: Blocks behind head where a scan starts
            scan_interval: Seconds between scan rounds

        Returns:
            First matching record

        Raises:
            WaitCancelled: Cancelled through ``cancel_token``
            SubscriptionError: Subscription failed before a match
            TransportError: Scan failures exceeded the error budget
        """
        event_filter = event_filter or EventFilter()
        lookback = lookback if lookback is not None else self.settings.scan_lookback
        interval = scan_interval if scan_interval is not None else self.settings.scan_interval
        if lookback < 0 or interval < 0:
            raise ValueError("lookback and scan_interval must be >= 0")

        requested = TransportMode(mode or self.settings.transport_mode)
        resolved = resolve_mode(self.client, requested)

        if resolved == TransportMode.PUSH:
            try:
                return await self._run(event_filter, resolved, cancel_token, lookback, interval)
            except SubscriptionUnsupported as e:
                if requested != TransportMode.AUTO:
                    raise
                logger.warning(f"Log subscription unavailable ({e}), falling back to scanning")
                resolved = TransportMode.PULL

        return await self._run(event_filter, resolved, cancel_token, lookback, interval)

    async def _run(
        self,
        event_filter: EventFilter,
        mode: TransportMode,
        token: CancellationToken | None,
        lookback: int,
        interval: float,
    ) -> EventRecord:
        strategy = self._strategy(mode, lookback, interval)
        return await run_strategy(
            "event",
            mode,
            lambda stats: strategy.wait(event_filter, stats, token),
            self.metrics,
            "Event wait",
        )


async def wait_for_event(
    client: ChainClient,
    event_filter: EventFilter | None = None,
    *,
    mode: TransportMode | str | None = None,
    cancel_token: CancellationToken | None = None,
    settings: Settings | None = None,
    metrics: MetricsCollector | None = None,
    **options,
) -> EventRecord:
    """Wait for the first event matching ``event_filter``.

    See EventWaiter.wait for the accepted options.
    """
    waiter = EventWaiter(client, settings=settings, metrics=metrics)
    return await waiter.wait(event_filter, mode=mode, cancel_token=cancel_token, **options)
