"""Worker supervisor spawning and retiring one poll worker per target."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from .collectors.base import BaseCollector
from .config.models import ScrapeConfig
from .services.discovery import DiscoveryError
from .services.retry_handler import BackoffPolicy
from .utils.metrics import ScrapeTarget
from .worker import DoneSignal, PollWorker


@dataclass
class WorkerHandle:
    """Bookkeeping for one spawned worker."""

    target: ScrapeTarget
    cancel: asyncio.Event = field(default_factory=asyncio.Event)
    done: DoneSignal = field(default_factory=DoneSignal)
    worker: Optional[PollWorker] = None
    task: Optional[asyncio.Task] = None


class WorkerSupervisor:
    """
    Owns the poll workers of the process.

    All workers observe one shared shutdown event. Shutdown completion is
    defined by the workers' done signals, never by their spawning.
    """

    def __init__(
        self,
        collector_factory: Callable[[ScrapeTarget], BaseCollector],
        forwarder,
        intervals: Dict[str, float],
        scrape_config: ScrapeConfig = None,
        logger: logging.Logger = None
    ):
        """
        Initialize worker supervisor.

        Args:
            collector_factory: Builds the collector for a target
            forwarder: Forwarder shared by all workers
            intervals: Poll interval per target category
            scrape_config: Backoff settings applied to every worker
            logger: Optional logger instance
        """
        self.collector_factory = collector_factory
        self.forwarder = forwarder
        self.intervals = dict(intervals)
        self.scrape_config = scrape_config or ScrapeConfig()
        self.logger = logger or logging.getLogger(__name__)

        self.shutdown_event = asyncio.Event()
        self._handles: Dict[str, WorkerHandle] = {}

    @property
    def active_handles(self) -> List[WorkerHandle]:
        return list(self._handles.values())

    def start(self, targets: Iterable[ScrapeTarget]) -> List[WorkerHandle]:
        """
        Spawn one worker per unique target id.

        Returns as soon as every worker task is created. Duplicate ids in
        targets collapse to the last one; ids that already have a running
        worker are left alone.

        Args:
            targets: Targets to poll

        Returns:
            List[WorkerHandle]: Handles of the newly spawned workers
        """
        unique: Dict[str, ScrapeTarget] = {}
        for target in targets:
            unique[target.id] = target

        handles = []
        for target_id, target in unique.items():
            existing = self._handles.get(target_id)
            if existing is not None and not existing.done.fired:
                self.logger.debug(f"Worker for {target_id} already running")
                continue
            handles.append(self._spawn(target))

        self.logger.info(f"Started {len(handles)} poll worker(s)")
        return handles

    async def shutdown(self, handles: Optional[Iterable[WorkerHandle]] = None) -> None:
        """
        Cancel every worker and wait until each has stopped.

        There is no internal timeout; wrap the call to bound it.

        Args:
            handles: Handles to wait for, all known handles when None
        """
        handles = list(handles) if handles is not None else self.active_handles

        self.shutdown_event.set()
        self.logger.info(f"Cancelling {len(handles)} poll worker(s), waiting for them to stop")

        await asyncio.gather(*(handle.done.wait() for handle in handles))

        self.logger.info("All poll workers stopped")

    async def reconcile(self, targets: Iterable[ScrapeTarget]) -> Tuple[List[str], List[str]]:
        """
        Align running workers with a fresh target set.

        Workers are started for new ids and for ids whose worker has
        stopped; workers whose id disappeared are retired and awaited.

        Args:
            targets: Current target set

        Returns:
            Tuple of (added_ids, removed_ids)
        """
        if self.shutdown_event.is_set():
            return [], []

        desired: Dict[str, ScrapeTarget] = {}
        for target in targets:
            desired[target.id] = target

        removed = [
            handle for target_id, handle in self._handles.items()
            if target_id not in desired
        ]
        for handle in removed:
            handle.cancel.set()

        added = []
        for target_id, target in desired.items():
            handle = self._handles.get(target_id)
            if handle is None or handle.done.fired:
                self._spawn(target)
                added.append(target_id)

        await asyncio.gather(*(handle.done.wait() for handle in removed))

        removed_ids = []
        for handle in removed:
            # A re-added target may already own the slot again
            if self._handles.get(handle.target.id) is handle:
                del self._handles[handle.target.id]
                self.forwarder.forget(handle.target.id)
            removed_ids.append(handle.target.id)

        if added or removed_ids:
            self.logger.info(
                f"Reconciled targets: {len(added)} added, {len(removed_ids)} retired",
                extra={"added": added, "removed": removed_ids}
            )

        return added, removed_ids

    async def refresh_loop(
        self,
        discover: Callable[[], Awaitable[List[ScrapeTarget]]],
        interval: float
    ) -> None:
        """
        Re-discover targets every interval until shutdown.

        Discovery failures keep the current target set.

        Args:
            discover: Coroutine function returning the current targets
            interval: Seconds between discoveries
        """
        while not self.shutdown_event.is_set():
            try:
                await asyncio.wait_for(self.shutdown_event.wait(), timeout=interval)
                break
            except asyncio.TimeoutError:
                pass

            try:
                targets = await discover()
            except DiscoveryError as e:
                self.logger.warning(f"Re-discovery failed, keeping current targets: {e}")
                continue

            await self.reconcile(targets)

    def _spawn(self, target: ScrapeTarget) -> WorkerHandle:
        interval = self.intervals.get(target.category)
        if interval is None:
            raise ValueError(f"No poll interval configured for type {target.category}")

        handle = WorkerHandle(target=target)
        handle.worker = PollWorker(
            collector=self.collector_factory(target),
            forwarder=self.forwarder,
            interval=interval,
            shutdown=self.shutdown_event,
            cancel=handle.cancel,
            done=handle.done,
            backoff=BackoffPolicy(
                interval,
                backoff_after=self.scrape_config.backoff_after,
                max_delay=self.scrape_config.max_backoff_seconds
            ),
            logger=self.logger
        )
        handle.task = asyncio.create_task(handle.worker.run(), name=f"poll-{target.id}")
        self._handles[target.id] = handle
        return handle
