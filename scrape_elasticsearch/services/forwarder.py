"""Bounded asynchronous forwarding of scrape results to the sink."""

import asyncio
import json
import logging
import zlib
from typing import Dict, List, Optional

from ..utils.counters import FORWARD_DROPPED_TOTAL, FORWARD_INFLIGHT, FORWARD_WRITES_TOTAL
from ..utils.metrics import ScrapeResult

_STOP = object()


class ForwarderClosedError(RuntimeError):
    """Raised when a result is submitted after the forwarder was closed."""


class Forwarder:
    """
    Hands scrape results to the sink from a fixed pool of writer tasks.

    Every target id is pinned to one writer by a stable hash, so results
    of one target are written in submission order while different targets
    are written concurrently. At most ``max_concurrency`` writes are in
    flight at any time.

    Each writer has a bounded queue. When the queue of a target's writer
    is full the newly submitted result is dropped, logged and counted;
    submit() never waits.
    """

    def __init__(
        self,
        sink,
        max_concurrency: int = 4,
        queue_size: int = 100,
        write_timeout: float = 30.0,
        logger: logging.Logger = None,
        debug: bool = False
    ):
        """
        Initialize forwarder.

        Args:
            sink: Sink with ``index_name(collected_at)`` and async ``write(index, document)``
            max_concurrency: Number of writer tasks, i.e. the in-flight write bound
            queue_size: Pending results per writer before new ones are dropped
            write_timeout: Upper bound for one sink write in seconds
            logger: Optional logger instance
            debug: Log every forwarded document
        """
        if max_concurrency < 1:
            raise ValueError(f"max_concurrency must be at least 1, got {max_concurrency}")
        if queue_size < 1:
            raise ValueError(f"queue_size must be at least 1, got {queue_size}")

        self.sink = sink
        self.max_concurrency = max_concurrency
        self.write_timeout = write_timeout
        self.logger = (logger or logging.getLogger(__name__)).getChild("Forwarder")
        self.debug = debug

        self._queues: List[asyncio.Queue] = [
            asyncio.Queue(maxsize=queue_size) for _ in range(max_concurrency)
        ]
        self._writers: List[asyncio.Task] = []
        self._sequences: Dict[str, int] = {}
        self._closed = False
        self._close_task: Optional[asyncio.Task] = None
        self.in_flight = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> None:
        """Spawn the writer tasks. Calling it again has no effect."""
        if self._writers or self._closed:
            return
        self._writers = [
            asyncio.create_task(self._writer_loop(i), name=f"forwarder-writer-{i}")
            for i in range(self.max_concurrency)
        ]
        self.logger.info(
            f"Forwarder started (writers={self.max_concurrency}, "
            f"queue_size={self._queues[0].maxsize})"
        )

    def submit(self, result: ScrapeResult) -> bool:
        """
        Queue a result for writing without waiting.

        Args:
            result: Result to forward

        Returns:
            bool: True if queued, False if dropped because the queue was full

        Raises:
            ForwarderClosedError: If close() has been called
        """
        if self._closed:
            raise ForwarderClosedError(
                f"Forwarder is closed, cannot submit result for {result.target_id}"
            )

        sequence = self._sequences.get(result.target_id, 0) + 1
        self._sequences[result.target_id] = sequence

        queue = self._queues[self._shard(result.target_id)]
        try:
            queue.put_nowait((sequence, result))
        except asyncio.QueueFull:
            FORWARD_DROPPED_TOTAL.inc()
            self.logger.warning(
                f"Forward queue full, dropping result {sequence} for {result.target_id}",
                extra={"target_id": result.target_id, "operation": "submit"}
            )
            return False

        return True

    def forget(self, target_id: str) -> None:
        """Drop the sequence counter of a retired target. Queued results are still written."""
        self._sequences.pop(target_id, None)

    async def close(self) -> None:
        """
        Stop accepting results and wait until everything queued is written.

        Safe to call more than once; later calls wait for the first to finish.
        """
        if self._close_task is None:
            self._closed = True
            self._close_task = asyncio.ensure_future(self._drain())
        await asyncio.shield(self._close_task)

    async def _drain(self) -> None:
        if self._writers:
            for queue in self._queues:
                await queue.put(_STOP)
            await asyncio.gather(*self._writers)
        self.logger.info("Forwarder drained and stopped")

    def _shard(self, target_id: str) -> int:
        return zlib.crc32(target_id.encode("utf-8")) % self.max_concurrency

    async def _writer_loop(self, index: int) -> None:
        queue = self._queues[index]
        while True:
            item = await queue.get()
            try:
                if item is _STOP:
                    return
                sequence, result = item
                await self._write(sequence, result)
            finally:
                queue.task_done()

    async def _write(self, sequence: int, result: ScrapeResult) -> None:
        document = result.to_document(sequence=sequence)

        self.in_flight += 1
        FORWARD_INFLIGHT.inc()
        try:
            index = self.sink.index_name(result.collected_at)
            if self.debug:
                self.logger.debug(
                    f"Forwarding to {index}: {json.dumps(document)}",
                    extra={"target_id": result.target_id}
                )
            await asyncio.wait_for(self.sink.write(index, document), timeout=self.write_timeout)
            FORWARD_WRITES_TOTAL.labels(status="ok").inc()
        except asyncio.TimeoutError:
            FORWARD_WRITES_TOTAL.labels(status="error").inc()
            self.logger.error(
                f"Sink write for {result.target_id} timed out after {self.write_timeout}s",
                extra={"target_id": result.target_id, "operation": "write"}
            )
        except Exception as e:
            FORWARD_WRITES_TOTAL.labels(status="error").inc()
            self.logger.error(
                f"Sink write for {result.target_id} failed: {e}",
                exc_info=True,
                extra={"target_id": result.target_id, "operation": "write"}
            )
        finally:
            self.in_flight -= 1
            FORWARD_INFLIGHT.dec()
