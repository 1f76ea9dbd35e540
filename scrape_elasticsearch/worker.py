"""Poll worker running the fetch, aggregate, forward cycle for one target."""

import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum

from .collectors.base import BaseCollector, FetchError
from .services.retry_handler import BackoffPolicy


class WorkerState(Enum):
    """Stage of a poll worker's cycle."""

    IDLE = "idle"
    FETCHING = "fetching"
    AGGREGATING = "aggregating"
    FORWARDING = "forwarding"
    CANCELLED = "cancelled"


class DoneSignal:
    """One-time completion notification. Firing twice has no effect."""

    def __init__(self):
        self._event = asyncio.Event()

    @property
    def fired(self) -> bool:
        return self._event.is_set()

    def fire(self) -> bool:
        """Fire the signal. Returns False if it had already fired."""
        if self._event.is_set():
            return False
        self._event.set()
        return True

    async def wait(self) -> None:
        await self._event.wait()


class PollWorker:
    """
    Polls one target on a fixed interval until cancelled.

    The worker waits in IDLE for the next tick or for cancellation, which
    may come from the shared shutdown event or from its own cancel event.
    Cancellation is only observed while idle: a fetch that has started
    runs to completion or to its timeout first. Fetch failures are logged
    and the worker goes back to IDLE; they never end the loop.
    """

    def __init__(
        self,
        collector: BaseCollector,
        forwarder,
        interval: float,
        shutdown: asyncio.Event,
        cancel: asyncio.Event,
        done: DoneSignal,
        backoff: BackoffPolicy = None,
        logger: logging.Logger = None
    ):
        """
        Initialize poll worker.

        Args:
            collector: Collector bound to this worker's target
            forwarder: Forwarder receiving each result through submit()
            interval: Seconds between ticks, strictly positive
            shutdown: Process-wide cancellation event shared by all workers
            cancel: Event retiring only this worker
            done: Signal fired once when run() returns
            backoff: Wait policy after consecutive failures
            logger: Optional logger instance

        Raises:
            ValueError: If interval is not strictly positive
        """
        if interval <= 0:
            raise ValueError(f"Poll interval must be positive, got {interval}")

        self.collector = collector
        self.target = collector.target
        self.forwarder = forwarder
        self.interval = interval
        self.shutdown = shutdown
        self.cancel = cancel
        self.done = done
        self.backoff = backoff or BackoffPolicy(interval)
        self.logger = (logger or logging.getLogger(__name__)).getChild("PollWorker")

        self.state = WorkerState.IDLE
        self.consecutive_failures = 0
        self.cycles = 0

    @property
    def cancelled(self) -> bool:
        return self.shutdown.is_set() or self.cancel.is_set()

    async def run(self) -> None:
        """Run cycles until cancelled, then fire the done signal."""
        loop = asyncio.get_running_loop()
        next_tick = loop.time() + self.interval
        extra = {"target_id": self.target.id}

        self.logger.info(f"Adding scraper for {self.target.id} ({self.target.url})", extra=extra)

        try:
            while True:
                self.state = WorkerState.IDLE

                if self.consecutive_failures >= self.backoff.backoff_after:
                    deadline = loop.time() + self.backoff.delay(self.consecutive_failures)
                else:
                    deadline = next_tick

                if not await self._wait_for_tick(loop, deadline):
                    break

                now = loop.time()
                next_tick = deadline + self.interval
                if next_tick <= now:
                    # Skip ticks missed while waiting or backing off
                    missed = int((now - next_tick) // self.interval) + 1
                    next_tick += missed * self.interval

                await self._cycle()

        except Exception:
            self.logger.exception(f"Poll worker for {self.target.id} crashed", extra=extra)

        finally:
            self.state = WorkerState.CANCELLED
            self.done.fire()
            self.logger.info(f"Scraper for {self.target.id} stopped", extra=extra)

    async def _cycle(self) -> None:
        extra = {"target_id": self.target.id}

        self.state = WorkerState.FETCHING
        try:
            body = await self.collector.fetch()
        except FetchError as e:
            self.consecutive_failures += 1
            self.logger.warning(
                f"Fetch failed ({self.consecutive_failures} in a row): {e}",
                extra={**extra, "operation": "fetch", "url": self.target.url}
            )
            return

        if self.consecutive_failures:
            self.logger.info(
                f"{self.target.id} recovered after {self.consecutive_failures} failed fetch(es)",
                extra=extra
            )
            self.consecutive_failures = 0

        self.state = WorkerState.AGGREGATING
        # Off the loop, bodies can be megabytes
        result = await asyncio.to_thread(
            self.collector.aggregate, body, datetime.now(timezone.utc)
        )

        self.state = WorkerState.FORWARDING
        self.forwarder.submit(result)
        self.cycles += 1

    async def _wait_for_tick(self, loop: asyncio.AbstractEventLoop, deadline: float) -> bool:
        """Wait until deadline. Returns False if cancelled, which wins over a due tick."""
        if self.cancelled:
            return False

        timeout = max(0.0, deadline - loop.time())
        waiters = [
            asyncio.ensure_future(self.shutdown.wait()),
            asyncio.ensure_future(self.cancel.wait()),
        ]
        try:
            await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()

        return not self.cancelled
