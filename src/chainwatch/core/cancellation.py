"""Cancellation token and cancellable awaits shared by all waits."""

import asyncio
from typing import Awaitable, TypeVar

from chainwatch.core.exceptions import WaitCancelled

T = TypeVar("T")


class CancellationToken:
    """External cancellation signal for one or more wait calls.

    Cancelling is idempotent; the first reason wins.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason = ""

    @property
    def cancelled(self) -> bool:
        """Whether cancel() has been called."""
        return self._event.is_set()

    def cancel(self, reason: str = "Cancelled by caller") -> None:
        """Signal cancellation to every wait holding this token."""
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    async def wait(self) -> None:
        """Block until cancelled."""
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        """Raise WaitCancelled if the token fired."""
        if self._event.is_set():
            raise WaitCancelled(self.reason)


async def cancellable(awaitable: Awaitable[T], token: CancellationToken | None = None) -> T:
    """Await ``awaitable`` unless ``token`` fires first.

    When the token wins, the pending work is cancelled and awaited before
    WaitCancelled is raised, so nothing outlives the call.

    Args:
        awaitable: Coroutine or future to run
        token: Optional cancellation token

    Returns:
        Result of the awaitable

    Raises:
        WaitCancelled: If the token fired before the awaitable completed
    """
    if token is None:
        return await awaitable

    if token.cancelled:
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise WaitCancelled(token.reason)

    work = asyncio.ensure_future(awaitable)
    watcher = asyncio.ensure_future(token.wait())
    try:
        await asyncio.wait({work, watcher}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (work, watcher):
            if not task.done():
                task.cancel()
        await asyncio.gather(work, watcher, return_exceptions=True)

    if work.cancelled():
        raise WaitCancelled(token.reason)
    return work.result()


async def sleep(delay: float, token: CancellationToken | None = None) -> None:
    """Timer suspension point that returns early with WaitCancelled."""
    await cancellable(asyncio.sleep(delay), token)
