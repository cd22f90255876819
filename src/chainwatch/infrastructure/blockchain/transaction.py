"""Transaction, receipt and header types used by confirmation tracking."""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class ReceiptStatus(str, Enum):
    """Receipt execution status."""

    SUCCESS = "success"
    FAILURE = "failure"


def to_hex(value: Any) -> str:
    """Normalize bytes / HexBytes / str into a lowercase 0x-prefixed string."""
    if value is None:
        return ""
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    text = str(value).lower()
    return text if text.startswith("0x") else f"0x{text}"


def to_int(value: Any) -> int:
    """Convert an int or hex quantity into an int."""
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    raise ValueError(f"Cannot convert {value!r} to int")


@dataclass(frozen=True)
class Receipt:
    """Transaction receipt as produced by the ledger."""

    tx_hash: str
    status: ReceiptStatus
    block_number: int
    contract_address: str | None = None
    gas_used: int | None = None

    @property
    def succeeded(self) -> bool:
        """Whether the transaction executed successfully."""
        return self.status == ReceiptStatus.SUCCESS

    @classmethod
    def from_web3(cls, raw: dict[str, Any]) -> "Receipt":
        """Build a receipt from a web3 receipt mapping.

        Args:
            raw: Receipt as returned by eth_getTransactionReceipt

        Returns:
            Parsed receipt
        """
        status = to_int(raw.get("status", 0))
        contract_address = raw.get("contractAddress")
        gas_used = raw.get("gasUsed")
        return cls(
            tx_hash=to_hex(raw.get("transactionHash")),
            status=ReceiptStatus.SUCCESS if status == 1 else ReceiptStatus.FAILURE,
            block_number=to_int(raw["blockNumber"]),
            contract_address=str(contract_address) if contract_address else None,
            gas_used=to_int(gas_used) if gas_used is not None else None,
        )


@dataclass(frozen=True)
class BlockHeader:
    """New-head notification."""

    number: int
    hash: str = ""

    @classmethod
    def from_web3(cls, raw: dict[str, Any]) -> "BlockHeader":
        """Build a header from a newHeads subscription payload."""
        return cls(number=to_int(raw["number"]), hash=to_hex(raw.get("hash")))


@dataclass
class TransactionHandle:
    """Submitted transaction, with its inclusion block once a receipt is seen."""

    tx_hash: str
    block_number: int | None = None

    def record_receipt(self, receipt: Receipt) -> None:
        """Remember the inclusion block of the first receipt observed."""
        if self.block_number is None:
            self.block_number = receipt.block_number
        elif self.block_number != receipt.block_number:
            logger.warning(
                f"Receipt for {self.tx_hash} moved from block {self.block_number} "
                f"to {receipt.block_number}; keeping the first inclusion block"
            )

    @classmethod
    def coerce(cls, tx: "TransactionHandle | str") -> "TransactionHandle":
        """Accept either a handle or a bare hash."""
        if isinstance(tx, TransactionHandle):
            return tx
        return cls(tx_hash=tx)


def confirmation_depth(head: int, inclusion_block: int | None) -> int:
    """Blocks mined on top of the inclusion block.

    Args:
        head: Observed head block number
        inclusion_block: Block containing the transaction

    Returns:
        ``head - inclusion_block``, clamped at zero while head lags behind

    Raises:
        ValueError: If the inclusion block is not known yet
    """
    if inclusion_block is None:
        raise ValueError("Confirmation depth requires a known inclusion block")
    return max(0, head - inclusion_block)


@dataclass
class ConfirmationRequest:
    """Parameters of one confirmation wait."""

    tx: TransactionHandle
    required_confirmations: int
    retry_budget: int
    poll_interval: float
    wait_blocks: int

    def __post_init__(self) -> None:
        if self.required_confirmations < 0:
            raise ValueError("required_confirmations must be >= 0")
        if self.retry_budget < 1:
            raise ValueError("retry_budget must be >= 1")
        if self.poll_interval < 0:
            raise ValueError("poll_interval must be >= 0")
        if self.wait_blocks < 0:
            raise ValueError("wait_blocks must be >= 0")

    @property
    def header_bound(self) -> int:
        """Headers observed before a head-subscription wait times out."""
        return self.wait_blocks + self.required_confirmations
