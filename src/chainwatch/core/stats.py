"""Per-call wait statistics."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class TransportMode(str, Enum):
    """Notification style used by a wait."""

    AUTO = "auto"
    PUSH = "push"
    PULL = "pull"


@dataclass
class WaitStats:
    """Diagnostics for a single wait call."""

    mode: TransportMode
    attempts: int = 0
    blocks_observed: int = 0
    latest_head: int | None = None
    cursor: int | None = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def elapsed_seconds(self) -> float:
        """Seconds since the wait started."""
        return (datetime.now(timezone.utc) - self.started_at).total_seconds()

    def as_dict(self) -> dict[str, Any]:
        """Snapshot for logs and status output."""
        return {
            "mode": self.mode.value,
            "attempts": self.attempts,
            "blocks_observed": self.blocks_observed,
            "latest_head": self.latest_head,
            "cursor": self.cursor,
            "elapsed_seconds": self.elapsed_seconds,
        }
