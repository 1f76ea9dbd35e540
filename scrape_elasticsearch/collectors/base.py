"""Base collector abstract class for scrape collectors."""

from abc import ABC, abstractmethod
from datetime import datetime
import logging

from ..utils.metrics import ScrapeResult, ScrapeTarget


class FetchError(Exception):
    """A metrics endpoint could not be read during one cycle."""

    def __init__(self, target_id: str, message: str):
        super().__init__(f"{target_id}: {message}")
        self.target_id = target_id


class BaseCollector(ABC):
    """
    Fetches and aggregates metrics for one target.

    The poll worker drives the two halves separately so it can track
    which stage a cycle is in.
    """

    def __init__(self, target: ScrapeTarget, logger: logging.Logger):
        """
        Initialize base collector.

        Args:
            target: Target this collector reads from
            logger: Logger instance
        """
        self.target = target
        self.logger = logger.getChild(self.__class__.__name__)

    @abstractmethod
    async def fetch(self) -> str:
        """
        Read the raw exposition body from the target.

        Returns:
            str: Response body

        Raises:
            FetchError: On network failure, timeout or non-2xx response
        """
        pass

    @abstractmethod
    def aggregate(self, body: str, collected_at: datetime) -> ScrapeResult:
        """
        Convert a fetched body into a ScrapeResult.

        Runs in a worker thread, so it must not touch the event loop.

        Args:
            body: Raw exposition body returned by fetch()
            collected_at: Collection time of this cycle

        Returns:
            ScrapeResult: Aggregated families
        """
        pass
