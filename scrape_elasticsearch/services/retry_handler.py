"""Capped exponential backoff for consecutive scrape failures."""

import random


class BackoffPolicy:
    """
    Computes how long a worker waits before its next fetch.

    Up to ``backoff_after - 1`` consecutive failures the worker keeps its
    regular interval, so an isolated failure is retried on the next tick.
    From the ``backoff_after``-th failure on the wait doubles per failure
    and is capped at ``max_delay``. A 0-10% jitter spreads workers that
    failed together.
    """

    def __init__(
        self,
        interval: float,
        backoff_after: int = 3,
        max_delay: float = 300.0,
        jitter: bool = True
    ):
        """
        Initialize backoff policy.

        Args:
            interval: Regular poll interval in seconds
            backoff_after: Consecutive failures before the wait starts growing
            max_delay: Upper bound of the grown wait in seconds
            jitter: Add 0-10% random jitter to grown waits

        Raises:
            ValueError: If interval is not strictly positive
        """
        if interval <= 0:
            raise ValueError(f"Poll interval must be positive, got {interval}")
        if backoff_after < 1:
            raise ValueError(f"backoff_after must be at least 1, got {backoff_after}")

        self.interval = interval
        self.backoff_after = backoff_after
        self.max_delay = max(max_delay, interval)
        self.jitter = jitter

    def delay(self, consecutive_failures: int) -> float:
        """
        Wait before the next fetch.

        Args:
            consecutive_failures: Failed cycles since the last success

        Returns:
            float: Seconds to wait
        """
        if consecutive_failures < self.backoff_after:
            return self.interval

        exponent = min(consecutive_failures - self.backoff_after + 1, 32)
        delay = min(self.interval * (2 ** exponent), self.max_delay)

        if self.jitter:
            delay += random.uniform(0, delay * 0.1)

        return delay
