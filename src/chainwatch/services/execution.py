"""Termination bookkeeping shared by confirmation and event waits."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, TypeVar

from chainwatch.core.cancellation import CancellationToken, cancellable
from chainwatch.core.exceptions import ChainWaitError, SubscriptionUnsupported, WaitCancelled
from chainwatch.core.stats import TransportMode, WaitStats
from chainwatch.infrastructure.blockchain.subscription import Subscription
from chainwatch.services.metrics.collector import (
    ACTIVE_SUBSCRIPTIONS,
    ACTIVE_WAITS,
    MetricsCollector,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def run_strategy(
    kind: str,
    mode: TransportMode,
    call: Callable[[WaitStats], Awaitable[T]],
    metrics: MetricsCollector,
    description: str,
) -> T:
    """Run one strategy attempt with stats, metrics and error annotation.

    Args:
        kind: "confirmation" or "event"
        mode: Concrete mode of the strategy
        call: Strategy entry point receiving the per-call stats
        metrics: Metrics collector
        description: Human-readable subject for logs

    Returns:
        Strategy result
    """
    stats = WaitStats(mode=mode)
    outcome = "success"
    metrics.inc_gauge(ACTIVE_WAITS, labels={"kind": kind})

    try:
        return await call(stats)

    except WaitCancelled as e:
        outcome = "cancelled"
        e.annotate(mode.value, stats.attempts, stats.blocks_observed)
        logger.info(f"{description} cancelled: {e}")
        raise

    except SubscriptionUnsupported as e:
        outcome = "unsupported"
        e.annotate(mode.value, stats.attempts, stats.blocks_observed)
        raise

    except ChainWaitError as e:
        outcome = type(e).__name__
        e.annotate(mode.value, stats.attempts, stats.blocks_observed)
        logger.error(f"{description} failed: {e}")
        raise

    except asyncio.CancelledError:
        outcome = "cancelled"
        logger.info(f"{description} task cancelled ({stats.as_dict()})")
        raise

    finally:
        metrics.dec_gauge(ACTIVE_WAITS, labels={"kind": kind})
        metrics.record_wait(kind, mode.value, outcome, stats.elapsed_seconds)


@asynccontextmanager
async def open_subscription(
    opener: Awaitable[Subscription[T]],
    metrics: MetricsCollector,
    token: CancellationToken | None,
) -> AsyncIterator[Subscription[T]]:
    """Open a subscription and guarantee its teardown on every exit path."""
    subscription = await cancellable(opener, token)
    metrics.inc_gauge(ACTIVE_SUBSCRIPTIONS)
    try:
        async with subscription:
            yield subscription
    finally:
        metrics.dec_gauge(ACTIVE_SUBSCRIPTIONS)
