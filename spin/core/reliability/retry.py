"""
Retry policy — bounded attempts with exponential backoff and jitter.

Used for lock acquisition under contention: the policy is a plain value
so that the retry budget is visible (and settable from the CLI) rather
than buried in sleep calls.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """How often, and how patiently, to retry.

    Args:
        max_attempts: Total attempts, including the first one.
        base_delay: Delay after the first failed attempt, in seconds.
        max_delay: Upper bound for a single delay (before jitter).
        jitter: Extra random delay, as a fraction of the computed delay.
    """

    max_attempts: int = 30
    base_delay: float = 1.0
    max_delay: float = 10.0
    jitter: float = 0.3

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0 or self.jitter < 0:
            raise ValueError("delays and jitter must not be negative")

    def delay(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number ``attempt`` (1-based)."""
        base = min(self.base_delay * (2 ** max(attempt - 1, 0)), self.max_delay)
        return base + random.uniform(0, base * self.jitter)

    def exhausted(self, attempt: int) -> bool:
        """Whether ``attempt`` attempts have used up the budget."""
        return attempt >= self.max_attempts

    def to_dict(self) -> dict[str, float | int]:
        return {
            "max_attempts": self.max_attempts,
            "base_delay": self.base_delay,
            "max_delay": self.max_delay,
            "jitter": self.jitter,
        }


# A policy that never waits; for tests and one-shot CLI commands.
NO_RETRY = RetryPolicy(max_attempts=1, base_delay=0.0, max_delay=0.0, jitter=0.0)
