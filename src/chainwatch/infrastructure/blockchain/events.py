"""Event filters, records and log parsing."""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Sequence

from eth_abi import decode
from web3 import Web3

from chainwatch.infrastructure.blockchain.transaction import to_hex, to_int

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Event types with known argument layouts."""

    TRANSFER = "Transfer"
    APPROVAL = "Approval"


# Event signatures (keccak256 of the signature gives topic0)
EVENT_SIGNATURES = {
    EventType.TRANSFER: "Transfer(address,address,uint256)",
    EventType.APPROVAL: "Approval(address,address,uint256)",
}


def event_topic(event_type: EventType) -> str:
    """topic0 for an event type."""
    return Web3.to_hex(Web3.keccak(text=EVENT_SIGNATURES[event_type]))


def address_topic(address: str) -> str:
    """Left-pad an address into a 32-byte indexed topic."""
    return "0x" + address.lower().removeprefix("0x").rjust(64, "0")


TopicPredicate = str | list[str] | None


@dataclass(frozen=True)
class EventRecord:
    """One matched log."""

    block_number: int
    tx_hash: str
    log_index: int
    address: str = ""
    topics: tuple[str, ...] = ()
    data: str = "0x"
    event_type: EventType | None = None
    args: dict[str, Any] = field(default_factory=dict, compare=False)
    removed: bool = False

    @property
    def key(self) -> tuple[int, str, int]:
        """Identity of the log: (block, tx hash, log index)."""
        return (self.block_number, self.tx_hash, self.log_index)


@dataclass(frozen=True)
class EventFilter:
    """Address/topic predicates plus an optional starting block.

    An empty filter matches every log. ``topics`` is positional: ``None``
    matches anything, a list matches any of its entries. ``predicate`` runs
    locally against decoded records after the transport-side filtering.
    """

    address: str | list[str] | None = None
    topics: list[TopicPredicate] | None = None
    from_block: int | None = None
    predicate: Callable[[EventRecord], bool] | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        if isinstance(self.address, str):
            object.__setattr__(self, "address", self.address.lower())
        elif self.address is not None:
            object.__setattr__(self, "address", [a.lower() for a in self.address])
        if self.topics is not None:
            object.__setattr__(self, "topics", [self._normalize_topic(t) for t in self.topics])
        if self.from_block is not None and self.from_block < 0:
            raise ValueError("from_block must be >= 0")

    @staticmethod
    def _normalize_topic(topic: TopicPredicate) -> TopicPredicate:
        if topic is None:
            return None
        if isinstance(topic, (list, tuple)):
            return [to_hex(t) for t in topic]
        return to_hex(topic)

    @classmethod
    def for_event(
        cls,
        event_type: EventType,
        address: str | list[str] | None = None,
        indexed: Sequence[str | None] = (),
        from_block: int | None = None,
        predicate: Callable[[EventRecord], bool] | None = None,
    ) -> "EventFilter":
        """Build a filter for a known event.

        Args:
            event_type: Event to match on topic0
            address: Emitting contract(s)
            indexed: Indexed address arguments in order, None for any
            from_block: Optional scan starting block
            predicate: Optional local predicate

        Returns:
            Event filter
        """
        topics: list[TopicPredicate] = [event_topic(event_type)]
        topics.extend(address_topic(a) if a else None for a in indexed)
        while topics and topics[-1] is None:
            topics.pop()
        return cls(address=address, topics=topics, from_block=from_block, predicate=predicate)

    @property
    def is_match_all(self) -> bool:
        """Whether the filter places no constraint at all."""
        return not self.address and not self.topics and self.predicate is None

    def rpc_params(self) -> tuple[str | list[str] | None, list[TopicPredicate] | None]:
        """Address and topics as passed to eth_getLogs / logs subscriptions."""
        return (self.address or None, self.topics or None)

    def matches(self, record: EventRecord) -> bool:
        """Check a record against every predicate of the filter."""
        if self.address:
            allowed = [self.address] if isinstance(self.address, str) else self.address
            if record.address.lower() not in allowed:
                return False

        for position, expected in enumerate(self.topics or []):
            if expected is None:
                continue
            if position >= len(record.topics):
                return False
            actual = record.topics[position]
            if isinstance(expected, list):
                if actual not in expected:
                    return False
            elif actual != expected:
                return False

        if self.predicate is not None and not self.predicate(record):
            return False
        return True


class EventParser:
    """Parses raw logs into event records."""

    def __init__(self):
        """Initialize event parser."""
        self._build_topic_map()

    def _build_topic_map(self) -> None:
        """Build mapping from topic hash to event type."""
        self.topic_to_event: dict[str, EventType] = {
            event_topic(event_type): event_type for event_type in EVENT_SIGNATURES
        }

    def parse_log(self, log: dict[str, Any]) -> EventRecord:
        """Parse a single log entry.

        Args:
            log: Raw log entry from eth_getLogs or a logs subscription

        Returns:
            EventRecord; ``args`` is empty when the event is unknown
        """
        topics = tuple(to_hex(t) for t in log.get("topics", []))
        data = log.get("data", b"")
        data_hex = to_hex(data) if data else "0x"

        event_type = self.topic_to_event.get(topics[0]) if topics else None
        args: dict[str, Any] = {}
        if event_type is not None:
            try:
                args = self._decode_event_args(event_type, topics, data_hex)
            except Exception as e:
                logger.error(f"Failed to decode event {event_type.value}: {e}")

        return EventRecord(
            block_number=to_int(log.get("blockNumber", 0)),
            tx_hash=to_hex(log.get("transactionHash")),
            log_index=to_int(log.get("logIndex", 0)),
            address=str(log.get("address", "")).lower(),
            topics=topics,
            data=data_hex,
            event_type=event_type,
            args=args,
            removed=bool(log.get("removed", False)),
        )

    def _decode_event_args(
        self, event_type: EventType, topics: tuple[str, ...], data_hex: str
    ) -> dict[str, Any]:
        """Decode Transfer/Approval arguments.

        Both are (address indexed, address indexed, uint256). ERC-721 emits the
        same Transfer signature with the token id as a third indexed topic.
        """
        data = bytes.fromhex(data_hex[2:])
        first = self._decode_address(topics[1]) if len(topics) > 1 else None
        second = self._decode_address(topics[2]) if len(topics) > 2 else None

        if data:
            (value,) = decode(["uint256"], data)
        elif len(topics) > 3:
            value = int(topics[3], 16)
        else:
            value = 0

        if event_type == EventType.TRANSFER:
            return {"from": first, "to": second, "value": value}
        return {"owner": first, "spender": second, "value": value}

    def _decode_address(self, topic: str) -> str:
        """Decode address from indexed topic."""
        # Address is last 40 characters (20 bytes)
        return "0x" + topic[-40:]

    def parse_logs(self, logs: list[dict[str, Any]]) -> list[EventRecord]:
        """Parse multiple logs, preserving delivery order."""
        return [self.parse_log(log) for log in logs]
