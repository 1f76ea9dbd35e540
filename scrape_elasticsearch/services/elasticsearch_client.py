"""Elasticsearch sink client writing scrape documents over the REST API."""

from datetime import datetime
from typing import Any, Dict, Optional
import logging
import uuid

import httpx

from ..config.models import ElasticsearchConfig


class SinkWriteError(Exception):
    """A document could not be indexed."""


class ElasticsearchSink:
    """
    Indexes one JSON document per write through the document index API.

    Hosts are tried in configured order; a transport failure on one host
    moves on to the next, an HTTP error answer fails the write.
    """

    def __init__(
        self,
        config: ElasticsearchConfig,
        client: Optional[httpx.AsyncClient] = None,
        logger: logging.Logger = None
    ):
        """
        Initialize Elasticsearch sink.

        Args:
            config: Elasticsearch configuration (hosts, port, TLS, credentials, index)
            client: Optional pre-built HTTP client, mainly for tests
            logger: Optional logger instance

        Raises:
            ValueError: If no hosts are configured
        """
        self.config = config
        self.logger = logger or logging.getLogger(__name__)
        self.base_urls = config.base_urls

        if not self.base_urls:
            raise ValueError("Elasticsearch sink needs at least one host")

        auth = None
        if config.username:
            auth = httpx.BasicAuth(config.username, config.password or "")

        self.client = client or httpx.AsyncClient(
            auth=auth,
            timeout=config.timeout_seconds,
            headers={"Content-Type": "application/json"}
        )

        self.logger.info(f"Elasticsearch sink initialized for {', '.join(self.base_urls)}")

    def index_name(self, collected_at: datetime) -> str:
        """Render the configured index pattern for a collection time."""
        return collected_at.strftime(self.config.index)

    async def write(self, index: str, document: Dict[str, Any], doc_id: str = None) -> str:
        """
        Index one document.

        Args:
            index: Target index name
            document: JSON-serializable document body
            doc_id: Document id, a random UUID when omitted

        Returns:
            str: Id of the indexed document

        Raises:
            SinkWriteError: If every host failed or the cluster rejected the document
        """
        doc_id = doc_id or uuid.uuid4().hex
        last_error = None

        for base_url in self.base_urls:
            url = f"{base_url}/{index}/_doc/{doc_id}"
            try:
                response = await self.client.put(url, json=document)
            except httpx.HTTPError as e:
                self.logger.warning(f"Elasticsearch host {base_url} unreachable: {e}")
                last_error = e
                continue

            if not response.is_success:
                raise SinkWriteError(
                    f"Indexing into {index} failed with HTTP {response.status_code}: "
                    f"{response.text[:200]}"
                )

            self.logger.debug(f"Indexed document {doc_id} to index {index}")
            return doc_id

        raise SinkWriteError(f"No Elasticsearch host accepted the write: {last_error}")

    async def close(self) -> None:
        """Release the underlying HTTP connections."""
        await self.client.aclose()
