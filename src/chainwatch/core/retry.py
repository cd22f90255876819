"""Retry budget with linear backoff."""

from dataclasses import dataclass


@dataclass
class RetryBudget:
    """Counts failures against a fixed budget.

    Backoff grows linearly with the number of failures, the same pacing the
    RPC client uses between attempts on one endpoint.
    """

    max_failures: int
    failures: int = 0

    def __post_init__(self) -> None:
        if self.max_failures < 1:
            raise ValueError("max_failures must be at least 1")

    @property
    def exhausted(self) -> bool:
        """Whether the budget has been used up."""
        return self.failures >= self.max_failures

    @property
    def remaining(self) -> int:
        """Failures still tolerated."""
        return max(0, self.max_failures - self.failures)

    def record_failure(self) -> bool:
        """Count one failure.

        Returns:
            True if the budget is now exhausted
        """
        self.failures += 1
        return self.exhausted

    def reset(self) -> None:
        """Forget previous failures after a success."""
        self.failures = 0

    def backoff_delay(self, base_delay: float) -> float:
        """Delay before the next attempt."""
        return base_delay * max(1, self.failures)
