"""Prometheus text exposition collector."""

from datetime import datetime
import logging

import httpx

from ..utils.counters import FETCH_TOTAL
from ..utils.metrics import ScrapeResult, ScrapeTarget
from .aggregator import aggregate
from .base import BaseCollector, FetchError


class PrometheusCollector(BaseCollector):
    """Collector for a /metrics endpoint in the Prometheus text format."""

    def __init__(
        self,
        target: ScrapeTarget,
        client: httpx.AsyncClient,
        timeout: float,
        logger: logging.Logger
    ):
        """
        Initialize Prometheus collector.

        Args:
            target: Target to scrape
            client: Process-wide HTTP client, shared by all collectors
            timeout: Request timeout in seconds
            logger: Logger instance
        """
        super().__init__(target, logger)
        self.client = client
        self.timeout = timeout

    async def fetch(self) -> str:
        """
        GET the target's metrics endpoint.

        Returns:
            str: Response body

        Raises:
            FetchError: On timeout, transport error or non-2xx status
        """
        url = self.target.url

        try:
            response = await self.client.get(url, timeout=self.timeout)
        except httpx.TimeoutException as e:
            FETCH_TOTAL.labels(status="error").inc()
            raise FetchError(self.target.id, f"timeout fetching {url}") from e
        except httpx.HTTPError as e:
            FETCH_TOTAL.labels(status="error").inc()
            raise FetchError(self.target.id, f"request to {url} failed: {e}") from e

        if not response.is_success:
            FETCH_TOTAL.labels(status="error").inc()
            raise FetchError(self.target.id, f"HTTP {response.status_code} from {url}")

        FETCH_TOTAL.labels(status="ok").inc()
        return response.text

    def aggregate(self, body: str, collected_at: datetime) -> ScrapeResult:
        return aggregate(body, self.target.id, collected_at, self.logger)
