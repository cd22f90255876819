"""Push subscriptions (newHeads, logs) over a WebSocket transport."""

import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Callable, Generic, TypeVar

from web3 import AsyncWeb3, WebSocketProvider

from chainwatch.core.exceptions import SubscriptionError, TransportError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Subscription(ABC, Generic[T]):
    """Exclusive notification channel owned by one wait.

    Use as an async context manager so the channel is torn down on every exit
    path, including cancellation.
    """

    async def __aenter__(self) -> "Subscription[T]":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.unsubscribe()

    def __aiter__(self) -> "Subscription[T]":
        return self

    async def __anext__(self) -> T:
        return await self.receive()

    @abstractmethod
    async def receive(self) -> T:
        """Next notification.

        Raises:
            SubscriptionError: If the channel delivered an error or closed
        """
        ...

    @abstractmethod
    async def unsubscribe(self) -> None:
        """Tear the channel down. Safe to call more than once."""
        ...


class Web3Subscription(Subscription[T]):
    """eth_subscribe channel on a dedicated WebSocket connection."""

    def __init__(
        self,
        ws_url: str,
        kind: str,
        transform: Callable[[Any], T],
        params: dict[str, Any] | None = None,
    ):
        """Initialize subscription.

        Args:
            ws_url: WebSocket RPC endpoint
            kind: Subscription type ("newHeads" or "logs")
            transform: Converts a raw payload into the delivered item
            params: Optional subscription parameters (log filter)
        """
        self.ws_url = ws_url
        self.kind = kind
        self.params = params
        self._transform = transform
        self._w3: AsyncWeb3 | None = None
        self._subscription_id: Any = None
        self._stream: AsyncIterator[Any] | None = None
        self._closed = False

    async def open(self) -> "Web3Subscription[T]":
        """Connect and issue eth_subscribe.

        Raises:
            TransportError: If the connection or subscribe call fails
        """
        try:
            self._w3 = await AsyncWeb3(WebSocketProvider(self.ws_url))
            if self.params:
                self._subscription_id = await self._w3.eth.subscribe(self.kind, self.params)
            else:
                self._subscription_id = await self._w3.eth.subscribe(self.kind)
            self._stream = self._w3.socket.process_subscriptions()
        except BaseException as e:
            await self._disconnect()
            if isinstance(e, Exception):
                raise TransportError(f"Failed to subscribe to {self.kind}: {e}") from e
            raise

        logger.debug(f"Subscribed to {self.kind} on {self.ws_url} ({self._subscription_id})")
        return self

    async def receive(self) -> T:
        """Next notification for this subscription."""
        if self._closed or self._stream is None:
            raise SubscriptionError(f"{self.kind} subscription is closed")

        try:
            message = await self._stream.__anext__()
        except StopAsyncIteration:
            raise SubscriptionError(f"{self.kind} subscription stream ended")
        except Exception as e:
            raise SubscriptionError(f"{self.kind} subscription failed: {e}") from e

        return self._transform(message["result"])

    async def unsubscribe(self) -> None:
        """Unsubscribe and close the connection."""
        if self._closed:
            return
        self._closed = True

        if self._w3 is not None and self._subscription_id is not None:
            try:
                await self._w3.eth.unsubscribe(self._subscription_id)
            except Exception as e:
                logger.warning(f"Failed to unsubscribe {self.kind} ({self._subscription_id}): {e}")
        await self._disconnect()

    async def _disconnect(self) -> None:
        if self._w3 is None:
            return
        try:
            await self._w3.provider.disconnect()
        except Exception as e:
            logger.warning(f"Failed to close WebSocket connection to {self.ws_url}: {e}")
        finally:
            self._w3 = None
            self._stream = None
