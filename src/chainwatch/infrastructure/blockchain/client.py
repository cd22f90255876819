"""Chain client capability and its web3 implementation with multi-RPC failover."""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any

from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.exceptions import TransactionNotFound, Web3RPCError
from web3.middleware import ExtraDataToPOAMiddleware

from chainwatch.core.config import Settings, get_settings, is_websocket_url
from chainwatch.core.exceptions import SubscriptionUnsupported, TransportError
from chainwatch.core.stats import TransportMode
from chainwatch.infrastructure.blockchain.subscription import Subscription, Web3Subscription
from chainwatch.infrastructure.blockchain.transaction import BlockHeader, Receipt

logger = logging.getLogger(__name__)


class ChainClient(ABC):
    """Capabilities the waiters consume from a ledger transport.

    Implementations must tolerate concurrent read-only calls and concurrent
    subscription setup/teardown from independent tasks.
    """

    @property
    def supports_subscriptions(self) -> bool:
        """Whether subscribe_* can deliver push notifications."""
        return False

    @abstractmethod
    async def get_block_number(self) -> int:
        """Get current head block number."""
        ...

    @abstractmethod
    async def get_transaction_receipt(self, tx_hash: str) -> Receipt | None:
        """Get transaction receipt, or None if the ledger has none yet."""
        ...

    @abstractmethod
    async def get_logs(
        self,
        from_block: int,
        to_block: int,
        address: str | list[str] | None = None,
        topics: list[Any] | None = None,
    ) -> list[dict[str, Any]]:
        """Get logs in ``[from_block, to_block]`` matching the filter, in order."""
        ...

    async def subscribe_new_heads(self) -> Subscription[BlockHeader]:
        """Open a new-heads subscription.

        Raises:
            SubscriptionUnsupported: If the transport is request/response only
        """
        raise SubscriptionUnsupported("Transport does not support newHeads subscriptions")

    async def subscribe_logs(
        self,
        address: str | list[str] | None = None,
        topics: list[Any] | None = None,
    ) -> Subscription[dict[str, Any]]:
        """Open a logs subscription.

        Raises:
            SubscriptionUnsupported: If the transport is request/response only
        """
        raise SubscriptionUnsupported("Transport does not support logs subscriptions")


def resolve_mode(client: ChainClient, requested: TransportMode | str) -> TransportMode:
    """Pick the concrete mode for a wait.

    Args:
        client: Chain client
        requested: auto, push or pull

    Returns:
        PUSH or PULL

    Raises:
        SubscriptionUnsupported: If push was requested on a pull-only client
    """
    requested = TransportMode(requested)
    if requested == TransportMode.AUTO:
        return TransportMode.PUSH if client.supports_subscriptions else TransportMode.PULL
    if requested == TransportMode.PUSH and not client.supports_subscriptions:
        raise SubscriptionUnsupported(
            "Push mode requested but the client has no subscription transport",
            mode=TransportMode.PUSH.value,
        )
    return requested


def _log_filter_params(
    address: str | list[str] | None, topics: list[Any] | None
) -> dict[str, Any]:
    params: dict[str, Any] = {}
    if address:
        params["address"] = address
    if topics:
        params["topics"] = topics
    return params


class Web3Client(ChainClient):
    """JSON-RPC client with multi-RPC failover and optional WebSocket subscriptions."""

    def __init__(
        self,
        rpc_urls: list[str] | None = None,
        ws_url: str | None = None,
        max_retries: int | None = None,
        retry_delay: float | None = None,
        poa_chain: bool | None = None,
        settings: Settings | None = None,
    ):
        """Initialize client.

        Args:
            rpc_urls: HTTP RPC endpoints (primary + backups).
                     If None, uses the configured endpoints.
            ws_url: WebSocket endpoint for subscriptions. If None, uses the
                    configured one; without it the client is pull-only.
            max_retries: Maximum retry attempts per RPC
            retry_delay: Delay between retries in seconds
            poa_chain: Inject the POA extraData middleware
            settings: Settings override
        """
        settings = settings or get_settings()
        self.rpc_urls = rpc_urls or settings.active_rpc_urls
        self.ws_url = ws_url if ws_url is not None else settings.ws_rpc_url
        self.max_retries = max_retries if max_retries is not None else settings.rpc_max_retries
        self.retry_delay = retry_delay if retry_delay is not None else settings.rpc_retry_delay
        self.poa_chain = poa_chain if poa_chain is not None else settings.poa_chain
        self._current_rpc_index = 0
        self._web3_by_index: dict[int, AsyncWeb3] = {}

    @property
    def supports_subscriptions(self) -> bool:
        """Subscriptions need a ws:// or wss:// endpoint."""
        return is_websocket_url(self.ws_url)

    @property
    def web3(self) -> AsyncWeb3:
        """Get Web3 instance for the current RPC."""
        return self._get_web3(self._current_rpc_index)

    def _get_web3(self, rpc_index: int) -> AsyncWeb3:
        """Get or create the Web3 instance for an RPC, shared by concurrent callers."""
        w3 = self._web3_by_index.get(rpc_index)
        if w3 is None:
            w3 = AsyncWeb3(AsyncHTTPProvider(self.rpc_urls[rpc_index]))
            if self.poa_chain:
                w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
            self._web3_by_index[rpc_index] = w3
        return w3

    async def _execute_with_failover(
        self, method: str, *args: Any, **kwargs: Any
    ) -> Any:
        """Execute method with automatic RPC failover.

        Args:
            method: Web3 eth method name to call
            *args: Positional arguments for the method
            **kwargs: Keyword arguments for the method

        Returns:
            Result from the Web3 method

        Raises:
            TransactionNotFound: Passed through untouched, absence is not a failure
            TransportError: If all RPCs fail
        """
        last_error: Exception | None = None
        start_index = self._current_rpc_index

        for rpc_offset in range(len(self.rpc_urls)):
            rpc_index = (start_index + rpc_offset) % len(self.rpc_urls)
            web3 = self._get_web3(rpc_index)

            for attempt in range(self.max_retries):
                try:
                    web3_method = getattr(web3.eth, method)
                    result = await web3_method(*args, **kwargs)

                    # Success - stick with this RPC
                    self._current_rpc_index = rpc_index
                    return result

                except TransactionNotFound:
                    raise

                except Web3RPCError as e:
                    last_error = e
                    logger.warning(
                        f"RPC {self.rpc_urls[rpc_index]} failed (attempt {attempt + 1}): {e}"
                    )

                except Exception as e:
                    last_error = e
                    logger.warning(
                        f"RPC {self.rpc_urls[rpc_index]} error (attempt {attempt + 1}): {e}"
                    )

                if attempt < self.max_retries - 1:
                    await asyncio.sleep(self.retry_delay * (attempt + 1))

            if len(self.rpc_urls) > 1:
                logger.warning(
                    f"Switching from RPC {self.rpc_urls[rpc_index]} to next backup"
                )

        raise TransportError(f"All RPCs failed for {method}. Last error: {last_error}")

    async def get_block_number(self) -> int:
        """Get current block number."""
        return await self._execute_with_failover("get_block_number")

    async def get_transaction_receipt(self, tx_hash: str) -> Receipt | None:
        """Get transaction receipt."""
        try:
            raw = await self._execute_with_failover("get_transaction_receipt", tx_hash)
        except TransactionNotFound:
            return None
        if not raw or raw.get("blockNumber") is None:
            return None
        return Receipt.from_web3(dict(raw))

    async def get_logs(
        self,
        from_block: int,
        to_block: int,
        address: str | list[str] | None = None,
        topics: list[Any] | None = None,
    ) -> list[dict[str, Any]]:
        """Get logs matching filter."""
        filter_params: dict[str, Any] = {
            "fromBlock": from_block,
            "toBlock": to_block,
            **_log_filter_params(address, topics),
        }
        logs = await self._execute_with_failover("get_logs", filter_params)
        return [dict(log) for log in logs]

    async def subscribe_new_heads(self) -> Subscription[BlockHeader]:
        """Open a newHeads subscription on its own WebSocket connection."""
        if not self.supports_subscriptions:
            raise SubscriptionUnsupported(
                f"No WebSocket endpoint configured for newHeads (ws_url={self.ws_url!r})"
            )
        subscription = Web3Subscription(
            self.ws_url,
            "newHeads",
            transform=lambda payload: BlockHeader.from_web3(dict(payload)),
        )
        return await subscription.open()

    async def subscribe_logs(
        self,
        address: str | list[str] | None = None,
        topics: list[Any] | None = None,
    ) -> Subscription[dict[str, Any]]:
        """Open a logs subscription on its own WebSocket connection."""
        if not self.supports_subscriptions:
            raise SubscriptionUnsupported(
                f"No WebSocket endpoint configured for logs (ws_url={self.ws_url!r})"
            )
        subscription = Web3Subscription(
            self.ws_url,
            "logs",
            transform=lambda payload: dict(payload),
            params=_log_filter_params(address, topics),
        )
        return await subscription.open()

    async def close(self) -> None:
        """Release the HTTP sessions of every RPC used so far."""
        web3_by_index, self._web3_by_index = self._web3_by_index, {}
        for rpc_index, w3 in web3_by_index.items():
            try:
                await w3.provider.disconnect()
            except Exception as e:
                logger.warning(f"Failed to close RPC {self.rpc_urls[rpc_index]}: {e}")

    async def __aenter__(self) -> "Web3Client":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()
