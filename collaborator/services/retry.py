"""Retry policy and response classification for the Graph client."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

# 429 is the only retryable 4xx; 408 is terminal.
RETRYABLE_CLIENT_STATUSES = frozenset({429})


def is_success(status_code: int) -> bool:
    return 200 <= status_code < 300


def is_retryable_status(status_code: int) -> bool:
    """429 and every 5xx are transient; any other 4xx is terminal."""
    return status_code in RETRYABLE_CLIENT_STATUSES or 500 <= status_code < 600


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff settings.

    ``max_attempts`` counts the first try, so the default of 3 means two
    sleeps: ``base_delay`` then ``2 * base_delay``.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    delay_cap: float | None = None
    jitter: Callable[[float], float] | None = None

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0:
            raise ValueError("base_delay must not be negative")

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed *attempt* (1-indexed)."""
        delay = self.base_delay * (2 ** (attempt - 1))
        if self.delay_cap is not None:
            delay = min(delay, self.delay_cap)
        if self.jitter is not None:
            delay = max(0.0, self.jitter(delay))
        return delay
