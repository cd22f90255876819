"""Log deduplication for transports that may redeliver."""

import hashlib
import logging
from collections import OrderedDict

logger = logging.getLogger(__name__)


class EventDeduplicator:
    """Deduplicates logs using (block number, tx hash, log index).

    One instance lives for a single wait call; nothing is shared or persisted.
    """

    def __init__(self, max_memory_size: int = 10000):
        """Initialize event deduplicator.

        Args:
            max_memory_size: Max entries kept before LRU eviction
        """
        self.max_memory_size = max_memory_size
        self._seen: OrderedDict[str, None] = OrderedDict()

    def _generate_event_id(self, block_number: int, tx_hash: str, log_index: int) -> str:
        """Generate unique event ID.

        Args:
            block_number: Block containing the log
            tx_hash: Transaction hash
            log_index: Log index within the block

        Returns:
            Unique event identifier
        """
        tx_hash = tx_hash.lower().removeprefix("0x")
        composite = f"{block_number}:{tx_hash}:{log_index}"
        return hashlib.sha256(composite.encode()).hexdigest()[:32]

    def is_duplicate(self, block_number: int, tx_hash: str, log_index: int) -> bool:
        """Check if the log was already seen."""
        return self._generate_event_id(block_number, tx_hash, log_index) in self._seen

    def mark_processed(self, block_number: int, tx_hash: str, log_index: int) -> None:
        """Mark the log as seen."""
        event_id = self._generate_event_id(block_number, tx_hash, log_index)
        self._seen.pop(event_id, None)

        # Remove oldest if at capacity
        while len(self._seen) >= self.max_memory_size:
            self._seen.popitem(last=False)

        self._seen[event_id] = None

    def check_and_mark(self, block_number: int, tx_hash: str, log_index: int) -> bool:
        """Check if duplicate and mark as seen if not.

        Returns:
            True if the log is new, False if it was delivered before
        """
        if self.is_duplicate(block_number, tx_hash, log_index):
            logger.debug(f"Skipping redelivered log {tx_hash}:{log_index} in block {block_number}")
            return False

        self.mark_processed(block_number, tx_hash, log_index)
        return True

    def __len__(self) -> int:
        return len(self._seen)

    def clear(self) -> None:
        """Forget every seen log."""
        self._seen.clear()
