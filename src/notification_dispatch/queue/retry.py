"""RetryPolicy — backoff strategy and attempt limit for delivery jobs."""

from __future__ import annotations

import random
from enum import Enum


class BackoffStrategy(str, Enum):
    EXPONENTIAL = "exponential"
    FIXED = "fixed"


class RetryPolicy:
    """Configurable retry with exponential or fixed backoff and jitter."""

    def __init__(
        self,
        *,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        jitter: bool = True,
        strategy: BackoffStrategy | str = BackoffStrategy.EXPONENTIAL,
    ) -> None:
        """Configure retry behavior.

        Args:
            max_attempts: Maximum number of delivery attempts (including first).
                Stamped on every job at fan-out time.
            base_delay: Delay in seconds before the first retry.
            max_delay: Cap on delay in seconds, jitter included.
            jitter: If True, multiply delays by a random factor in [0.5, 1.5].
            strategy: ``exponential`` doubles the delay per attempt,
                ``fixed`` always waits ``base_delay``.
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if base_delay < 0 or max_delay < 0:
            raise ValueError("base_delay and max_delay must be >= 0")
        if base_delay > max_delay:
            raise ValueError("base_delay must be <= max_delay")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter = jitter
        self.strategy = BackoffStrategy(strategy)

    def delay_for_attempt(self, attempt: int) -> float:
        """Return delay in seconds after the given failed 1-based attempt.

        Exponential: ``base_delay * 2^(attempt-1)``. Fixed: ``base_delay``.
        Jitter is applied before the ``max_delay`` cap.
        """
        if attempt < 1:
            return 0.0
        if self.strategy is BackoffStrategy.FIXED:
            delay = self.base_delay
        else:
            delay = self.base_delay * (2 ** (attempt - 1))
        if self.jitter:
            delay = delay * (0.5 + random.random())  # noqa: S311
        return float(min(max(0.0, delay), self.max_delay))

    def __repr__(self) -> str:
        return (
            f"RetryPolicy(max_attempts={self.max_attempts}, "
            f"base_delay={self.base_delay}, max_delay={self.max_delay}, "
            f"jitter={self.jitter}, strategy={self.strategy.value!r})"
        )
