"""Signal-driven, idempotent shutdown of workers and forwarder."""

import asyncio
import logging
import signal
from typing import Optional

from .services.forwarder import Forwarder
from .supervisor import WorkerSupervisor

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class ShutdownCoordinator:
    """
    Turns the first termination request into exactly one shutdown.

    The shutdown cancels all poll workers, waits until every worker has
    stopped, then drains the forwarder. Requests arriving while it runs
    are ignored.
    """

    def __init__(
        self,
        supervisor: WorkerSupervisor,
        forwarder: Forwarder,
        logger: logging.Logger = None
    ):
        self.supervisor = supervisor
        self.forwarder = forwarder
        self.logger = (logger or logging.getLogger(__name__)).getChild("ShutdownCoordinator")
        self._task: Optional[asyncio.Task] = None
        self._finished = asyncio.Event()
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def in_progress(self) -> bool:
        return self._task is not None and not self._finished.is_set()

    def install(self, loop: asyncio.AbstractEventLoop = None) -> None:
        """Route SIGINT and SIGTERM to request_shutdown()."""
        self._loop = loop or asyncio.get_running_loop()
        for signum in SHUTDOWN_SIGNALS:
            self._loop.add_signal_handler(signum, self.request_shutdown, signum)

    def uninstall(self) -> None:
        if self._loop is None:
            return
        for signum in SHUTDOWN_SIGNALS:
            self._loop.remove_signal_handler(signum)
        self._loop = None

    def request_shutdown(self, signum: int = None) -> bool:
        """
        Start the shutdown sequence unless it was already started.

        Args:
            signum: Signal that triggered the request, if any

        Returns:
            bool: True if this call started the shutdown
        """
        reason = signal.Signals(signum).name if signum is not None else "shutdown request"

        if self._task is not None:
            self.logger.info(f"Got {reason} while shutdown is already in progress, ignoring")
            return False

        self.logger.info(f"Got {reason}, aborting...")
        self._task = asyncio.ensure_future(self._shutdown())
        return True

    async def wait(self) -> None:
        """Block until a requested shutdown has fully completed."""
        await self._finished.wait()
        await self._task

    async def _shutdown(self) -> None:
        try:
            await self.supervisor.shutdown()
            await self.forwarder.close()
        finally:
            self._finished.set()
