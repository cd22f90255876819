"""Tests for blockchain client layer."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from hexbytes import HexBytes
from web3.exceptions import TransactionNotFound, Web3RPCError

from chainwatch.core.exceptions import SubscriptionError, SubscriptionUnsupported, TransportError
from chainwatch.core.stats import TransportMode
from chainwatch.infrastructure.blockchain.client import (
    ChainClient,
    Web3Client,
    resolve_mode,
)
from chainwatch.infrastructure.blockchain.transaction import (
    BlockHeader,
    ConfirmationRequest,
    Receipt,
    ReceiptStatus,
    TransactionHandle,
    confirmation_depth,
)
from tests.fakes import FakeChainClient, make_receipt

PRIMARY_RPC = "https://rpc-1.example.com/"
BACKUP_RPC = "https://rpc-2.example.com/"


def mock_web3(**eth_methods):
    """Web3 stand-in whose eth methods are AsyncMocks."""
    web3 = MagicMock()
    for name, mock in eth_methods.items():
        setattr(web3.eth, name, mock)
    return web3


class TestWeb3Client:
    """Tests for Web3Client."""

    def test_client_initialization(self, settings):
        """Test client takes endpoints from settings."""
        settings.rpc_url = PRIMARY_RPC
        settings.rpc_backup_urls = [BACKUP_RPC]

        client = Web3Client(settings=settings)

        assert client.rpc_urls == [PRIMARY_RPC, BACKUP_RPC]
        assert client.max_retries == 3
        assert client.supports_subscriptions is False

    def test_client_with_custom_rpc(self, settings):
        """Test explicit endpoints override settings."""
        client = Web3Client(
            rpc_urls=[PRIMARY_RPC],
            ws_url="wss://rpc.example.com/ws",
            max_retries=1,
            settings=settings,
        )

        assert client.rpc_urls == [PRIMARY_RPC]
        assert client.max_retries == 1
        assert client.supports_subscriptions is True

    def test_client_is_chain_client_subclass(self):
        """Test Web3Client is subclass of ChainClient."""
        assert issubclass(Web3Client, ChainClient)

    @pytest.mark.asyncio
    async def test_get_block_number(self, settings):
        """Test get_block_number calls the current RPC."""
        client = Web3Client(rpc_urls=[PRIMARY_RPC], settings=settings)
        web3 = mock_web3(get_block_number=AsyncMock(return_value=12345678))
        client._get_web3 = MagicMock(return_value=web3)

        assert await client.get_block_number() == 12345678
        web3.eth.get_block_number.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failover_to_backup(self, settings):
        """Test a failing primary switches to the backup and sticks there."""
        client = Web3Client(
            rpc_urls=[PRIMARY_RPC, BACKUP_RPC], max_retries=2, settings=settings
        )
        primary = mock_web3(get_block_number=AsyncMock(side_effect=Web3RPCError("boom")))
        backup = mock_web3(get_block_number=AsyncMock(return_value=42))
        client._get_web3 = MagicMock(side_effect=lambda index: [primary, backup][index])

        assert await client.get_block_number() == 42
        assert primary.eth.get_block_number.await_count == 2
        assert client._current_rpc_index == 1

    @pytest.mark.asyncio
    async def test_all_rpcs_fail(self, settings):
        """Test TransportError once every endpoint is exhausted."""
        client = Web3Client(
            rpc_urls=[PRIMARY_RPC, BACKUP_RPC], max_retries=1, settings=settings
        )
        web3 = mock_web3(get_block_number=AsyncMock(side_effect=ConnectionError("refused")))
        client._get_web3 = MagicMock(return_value=web3)

        with pytest.raises(TransportError) as exc_info:
            await client.get_block_number()

        assert "refused" in str(exc_info.value)
        assert web3.eth.get_block_number.await_count == 2

    @pytest.mark.asyncio
    async def test_receipt_not_found_returns_none(self, settings):
        """Test missing receipts are absence, not failures."""
        client = Web3Client(rpc_urls=[PRIMARY_RPC], settings=settings)
        web3 = mock_web3(
            get_transaction_receipt=AsyncMock(side_effect=TransactionNotFound("missing"))
        )
        client._get_web3 = MagicMock(return_value=web3)

        assert await client.get_transaction_receipt("0xabc") is None
        web3.eth.get_transaction_receipt.assert_awaited_once_with("0xabc")

    @pytest.mark.asyncio
    async def test_get_transaction_receipt(self, settings):
        """Test receipts are converted from web3 mappings."""
        client = Web3Client(rpc_urls=[PRIMARY_RPC], settings=settings)
        raw = {
            "transactionHash": HexBytes("0x" + "ab" * 32),
            "status": 1,
            "blockNumber": 100,
            "gasUsed": 21000,
            "contractAddress": None,
        }
        client._get_web3 = MagicMock(
            return_value=mock_web3(get_transaction_receipt=AsyncMock(return_value=raw))
        )

        receipt = await client.get_transaction_receipt("0x" + "ab" * 32)

        assert receipt == Receipt(
            tx_hash="0x" + "ab" * 32,
            status=ReceiptStatus.SUCCESS,
            block_number=100,
            gas_used=21000,
        )

    @pytest.mark.asyncio
    async def test_get_logs(self, settings):
        """Test get_logs builds the filter parameters."""
        client = Web3Client(rpc_urls=[PRIMARY_RPC], settings=settings)
        mock_logs = [{"blockNumber": 100, "data": "0x123"}]
        web3 = mock_web3(get_logs=AsyncMock(return_value=mock_logs))
        client._get_web3 = MagicMock(return_value=web3)

        result = await client.get_logs(
            from_block=100,
            to_block=101,
            address="0x1234567890123456789012345678901234567890",
        )

        assert result == mock_logs
        web3.eth.get_logs.assert_awaited_once_with(
            {
                "fromBlock": 100,
                "toBlock": 101,
                "address": "0x1234567890123456789012345678901234567890",
            }
        )

    @pytest.mark.asyncio
    async def test_subscribe_without_websocket(self, settings):
        """Test subscriptions need a WebSocket endpoint."""
        client = Web3Client(rpc_urls=[PRIMARY_RPC], settings=settings)

        with pytest.raises(SubscriptionUnsupported):
            await client.subscribe_new_heads()
        with pytest.raises(SubscriptionUnsupported):
            await client.subscribe_logs()

    @pytest.mark.parametrize(
        "ws_url", ["https://rpc.example.com/", "http://localhost:8546", ""]
    )
    @pytest.mark.asyncio
    async def test_non_websocket_url_is_pull_only(self, settings, ws_url):
        """Test only ws:// and wss:// endpoints enable subscriptions."""
        settings.ws_rpc_url = ws_url
        client = Web3Client(rpc_urls=[PRIMARY_RPC], settings=settings)

        assert client.supports_subscriptions is settings.supports_subscriptions is False
        assert resolve_mode(client, TransportMode.AUTO) == TransportMode.PULL
        with pytest.raises(SubscriptionUnsupported):
            await client.subscribe_new_heads()
        with pytest.raises(SubscriptionUnsupported):
            await client.subscribe_logs()

    def test_websocket_scheme_is_case_insensitive(self, settings):
        """Test the scheme check agrees between settings and client."""
        settings.ws_rpc_url = "WSS://rpc.example.com/ws"
        client = Web3Client(rpc_urls=[PRIMARY_RPC], settings=settings)

        assert client.supports_subscriptions is settings.supports_subscriptions is True

    @pytest.mark.asyncio
    async def test_close_disconnects_providers(self, settings):
        """Test close releases every cached provider once."""
        client = Web3Client(rpc_urls=[PRIMARY_RPC, BACKUP_RPC], settings=settings)
        primary, backup = MagicMock(), MagicMock()
        primary.provider.disconnect = AsyncMock()
        backup.provider.disconnect = AsyncMock(side_effect=RuntimeError("already closed"))
        client._web3_by_index = {0: primary, 1: backup}

        await client.close()
        await client.close()

        primary.provider.disconnect.assert_awaited_once()
        backup.provider.disconnect.assert_awaited_once()
        assert client._web3_by_index == {}

    @pytest.mark.asyncio
    async def test_async_context_manager_closes(self, settings):
        """Test leaving ``async with`` closes the client."""
        w3 = MagicMock()
        w3.provider.disconnect = AsyncMock()

        async with Web3Client(rpc_urls=[PRIMARY_RPC], settings=settings) as client:
            client._web3_by_index[0] = w3

        w3.provider.disconnect.assert_awaited_once()


class TestChainClient:
    """Tests for the ChainClient capability defaults."""

    @pytest.mark.asyncio
    async def test_pull_only_client_rejects_subscriptions(self):
        """Test the default subscribe methods raise SubscriptionUnsupported."""
        client = FakeChainClient()

        assert client.supports_subscriptions is False
        with pytest.raises(SubscriptionUnsupported):
            await ChainClient.subscribe_new_heads(client)
        with pytest.raises(SubscriptionUnsupported):
            await ChainClient.subscribe_logs(client)

    def test_resolve_mode(self):
        """Test auto picks push only when subscriptions exist."""
        assert resolve_mode(FakeChainClient(push=True), "auto") == TransportMode.PUSH
        assert resolve_mode(FakeChainClient(), "auto") == TransportMode.PULL
        assert resolve_mode(FakeChainClient(push=True), "pull") == TransportMode.PULL

        with pytest.raises(SubscriptionUnsupported):
            resolve_mode(FakeChainClient(), TransportMode.PUSH)


class TestTransactionTypes:
    """Tests for receipts, headers and confirmation depth."""

    def test_receipt_from_web3(self):
        """Test failed status and hex quantities are parsed."""
        receipt = Receipt.from_web3(
            {
                "transactionHash": "0xABC",
                "status": "0x0",
                "blockNumber": "0x64",
                "contractAddress": "0x1234567890123456789012345678901234567890",
            }
        )

        assert receipt.tx_hash == "0xabc"
        assert receipt.status == ReceiptStatus.FAILURE
        assert receipt.block_number == 100
        assert receipt.contract_address is not None
        assert receipt.gas_used is None
        assert not receipt.succeeded

    def test_block_header_from_web3(self):
        """Test header payloads are parsed."""
        header = BlockHeader.from_web3({"number": "0x10", "hash": HexBytes("0x" + "01" * 32)})

        assert header.number == 16
        assert header.hash == "0x" + "01" * 32

    def test_confirmation_depth(self):
        """Test depth is head minus inclusion, never negative."""
        assert confirmation_depth(103, 100) == 3
        assert confirmation_depth(100, 100) == 0
        assert confirmation_depth(98, 100) == 0

        depths = [confirmation_depth(head, 100) for head in range(95, 110)]
        assert depths == sorted(depths)

    def test_confirmation_depth_requires_inclusion_block(self):
        """Test unknown inclusion block is rejected."""
        with pytest.raises(ValueError):
            confirmation_depth(100, None)

    def test_transaction_handle_keeps_first_block(self):
        """Test the first observed inclusion block is kept."""
        handle = TransactionHandle.coerce("0xabc")
        handle.record_receipt(make_receipt(100))
        handle.record_receipt(make_receipt(101))

        assert handle.block_number == 100
        assert TransactionHandle.coerce(handle) is handle

    def test_confirmation_request_validation(self):
        """Test invalid request parameters are rejected."""
        tx = TransactionHandle("0xabc")
        request = ConfirmationRequest(tx, 3, retry_budget=5, poll_interval=0, wait_blocks=5)
        assert request.header_bound == 8

        with pytest.raises(ValueError):
            ConfirmationRequest(tx, -1, retry_budget=5, poll_interval=0, wait_blocks=5)
        with pytest.raises(ValueError):
            ConfirmationRequest(tx, 3, retry_budget=5, poll_interval=-1, wait_blocks=5)


def mock_ws_web3(messages=None, subscribe_error=None):
    """WebSocket web3 stand-in streaming ``messages``."""

    async def stream():
        for message in messages or []:
            yield message

    web3 = MagicMock()
    web3.eth.subscribe = AsyncMock(return_value="0xsub", side_effect=subscribe_error)
    web3.eth.unsubscribe = AsyncMock(return_value=True)
    web3.provider.disconnect = AsyncMock()
    web3.socket.process_subscriptions = MagicMock(return_value=stream())
    return web3


class TestWeb3Subscription:
    """Tests for WebSocket subscriptions."""

    @pytest.mark.asyncio
    async def test_new_heads_subscription(self, settings):
        """Test headers are delivered and teardown is idempotent."""
        web3 = mock_ws_web3([{"subscription": "0xsub", "result": {"number": "0x65"}}])
        client = Web3Client(
            rpc_urls=[PRIMARY_RPC], ws_url="wss://rpc.example.com/ws", settings=settings
        )

        with patch(
            "chainwatch.infrastructure.blockchain.subscription.AsyncWeb3",
            AsyncMock(return_value=web3),
        ), patch("chainwatch.infrastructure.blockchain.subscription.WebSocketProvider"):
            async with await client.subscribe_new_heads() as headers:
                header = await headers.receive()

                assert header == BlockHeader(number=101, hash="")

            await headers.unsubscribe()

        web3.eth.subscribe.assert_awaited_once_with("newHeads")
        web3.eth.unsubscribe.assert_awaited_once_with("0xsub")
        web3.provider.disconnect.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_logs_subscription_params(self, settings):
        """Test log filters are passed to eth_subscribe."""
        web3 = mock_ws_web3()
        client = Web3Client(
            rpc_urls=[PRIMARY_RPC], ws_url="wss://rpc.example.com/ws", settings=settings
        )

        with patch(
            "chainwatch.infrastructure.blockchain.subscription.AsyncWeb3",
            AsyncMock(return_value=web3),
        ), patch("chainwatch.infrastructure.blockchain.subscription.WebSocketProvider"):
            logs = await client.subscribe_logs(address="0xabc", topics=["0xdef"])

            with pytest.raises(SubscriptionError):
                await logs.receive()
            await logs.unsubscribe()

        web3.eth.subscribe.assert_awaited_once_with(
            "logs", {"address": "0xabc", "topics": ["0xdef"]}
        )

    @pytest.mark.asyncio
    async def test_failed_subscribe_closes_connection(self, settings):
        """Test a failing eth_subscribe surfaces as TransportError."""
        web3 = mock_ws_web3(subscribe_error=ValueError("method not found"))
        client = Web3Client(
            rpc_urls=[PRIMARY_RPC], ws_url="wss://rpc.example.com/ws", settings=settings
        )

        with patch(
            "chainwatch.infrastructure.blockchain.subscription.AsyncWeb3",
            AsyncMock(return_value=web3),
        ), patch("chainwatch.infrastructure.blockchain.subscription.WebSocketProvider"):
            with pytest.raises(TransportError, match="method not found"):
                await client.subscribe_new_heads()

        web3.provider.disconnect.assert_awaited_once()
