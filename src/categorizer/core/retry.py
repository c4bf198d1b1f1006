"""Retry strategy for storage operations.

The gateway retries only failures that :func:`classify_storage_error`
marks retryable; this module only answers "how long to wait" and "is there
another attempt left".

Example:
    >>> backoff = ExponentialBackoff(max_retries=3, base_delay=0.5)
    >>> [backoff.next_delay(n) for n in range(3)]
    [0.5, 1.0, 2.0]
    >>> backoff.should_retry(3)
    False
"""

from __future__ import annotations

import random
from abc import ABC, abstractmethod
from dataclasses import dataclass


class RetryStrategy(ABC):
    """Abstract base for retry strategies."""

    @abstractmethod
    def next_delay(self, attempt: int) -> float:
        """Delay in seconds before retry number ``attempt`` (0 = first retry)."""
        ...

    @abstractmethod
    def should_retry(self, attempt: int) -> bool:
        """True if retry number ``attempt`` (0-based) is still allowed."""
        ...


@dataclass
class ExponentialBackoff(RetryStrategy):
    """Exponential backoff, optionally jittered.

    Delay = min(base_delay * multiplier ** attempt, max_delay) (+ jitter)

    Attributes:
        max_retries: Retries allowed after the first attempt
        base_delay: Initial delay in seconds
        max_delay: Cap on a single delay
        multiplier: Growth factor per retry
        jitter: Spread delays by ``jitter_range`` to avoid lockstep retries
    """

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    multiplier: float = 2.0
    jitter: bool = False
    jitter_range: float = 0.25

    def next_delay(self, attempt: int) -> float:
        delay = min(self.base_delay * (self.multiplier ** attempt), self.max_delay)
        if self.jitter:
            spread = delay * self.jitter_range
            delay = max(0.0, delay + random.uniform(-spread, spread))
        return delay

    def should_retry(self, attempt: int) -> bool:
        return attempt < self.max_retries


@dataclass
class NoRetry(RetryStrategy):
    """Fail on the first error."""

    def next_delay(self, attempt: int) -> float:
        return 0.0

    def should_retry(self, attempt: int) -> bool:
        return False


__all__ = ["RetryStrategy", "ExponentialBackoff", "NoRetry"]
