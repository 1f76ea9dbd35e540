"""Service instance discovery from the MongoDB directory."""

import logging
from typing import Any, Dict, List, Tuple
from urllib.parse import quote_plus

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pymongo import AsyncMongoClient
from pymongo.errors import PyMongoError

from ..config.models import MongoDBConfig, ScrapeEndpointConfig
from ..utils.metrics import ScrapeTarget


class DiscoveryError(Exception):
    """The directory could not be queried."""


class ServerAddress(BaseModel):
    """One host address of a service instance."""
    model_config = ConfigDict(extra="ignore")

    name: str = ""
    ip: str = Field(min_length=1)
    port: int = 0
    backup: bool = False
    type: str = ""


class ServiceInstance(BaseModel):
    """Directory record of a provisioned service instance."""
    model_config = ConfigDict(extra="ignore")

    id: str = ""
    hosts: List[ServerAddress] = Field(default_factory=list)


def build_connection_url(config: MongoDBConfig) -> str:
    """
    Build a MongoDB connection string for all configured hosts.

    Args:
        config: MongoDB configuration

    Returns:
        str: mongodb:// URI with credentials quoted
    """
    hosts = ",".join(f"{host}:{config.port}" for host in config.hosts)
    if config.username:
        credentials = f"{quote_plus(config.username)}:{quote_plus(config.password or '')}@"
        return f"mongodb://{credentials}{hosts}/{config.database}"
    return f"mongodb://{hosts}/{config.database}"


def create_mongo_client(config: MongoDBConfig) -> AsyncMongoClient:
    """Create the process-wide directory client."""
    timeout_ms = int(config.timeout_seconds * 1000)
    return AsyncMongoClient(
        build_connection_url(config),
        serverSelectionTimeoutMS=timeout_ms,
        connectTimeoutMS=timeout_ms,
    )


class MongoDiscovery:
    """
    Resolves scrape targets for a category from service instance records.

    Only host addresses whose ``type`` matches the category are kept.
    Targets are deduplicated by id; the last record seen wins.
    """

    def __init__(self, collection, ports: Dict[str, int], logger: logging.Logger = None):
        """
        Initialize discovery adapter.

        Args:
            collection: Async collection holding service instance documents
            ports: Metrics port per category
            logger: Optional logger instance
        """
        self.collection = collection
        self.ports = ports
        self.logger = (logger or logging.getLogger(__name__)).getChild("MongoDiscovery")

    @classmethod
    def from_config(
        cls,
        client: AsyncMongoClient,
        config: MongoDBConfig,
        endpoints: List[ScrapeEndpointConfig],
        logger: logging.Logger = None
    ) -> "MongoDiscovery":
        collection = client[config.database][config.collection]
        ports = {endpoint.type: endpoint.port for endpoint in endpoints}
        return cls(collection, ports, logger)

    async def discover(self, category: str) -> List[ScrapeTarget]:
        """
        Return the targets of one category.

        Args:
            category: Host type to select

        Returns:
            List[ScrapeTarget]: Deduplicated targets, possibly empty

        Raises:
            DiscoveryError: If the directory is unreachable
            KeyError: If no port is configured for the category
        """
        port = self.ports[category]
        targets: Dict[str, ScrapeTarget] = {}

        try:
            cursor = self.collection.find({"hosts.type": category})
            async for document in cursor:
                for target in self._targets_from_document(document, category, port):
                    targets[target.id] = target
        except PyMongoError as e:
            raise DiscoveryError(f"Failed to query service instances for {category}: {e}") from e

        if not targets:
            self.logger.warning(
                f"No service instances found for type {category}",
                extra={"operation": "discover", "category": category}
            )
        else:
            self.logger.info(f"Discovered {len(targets)} target(s) for type {category}")

        return list(targets.values())

    async def discover_all(
        self,
        endpoints: List[ScrapeEndpointConfig]
    ) -> Tuple[List[ScrapeTarget], Dict[str, float]]:
        """
        Discover every included category.

        Args:
            endpoints: Scrape endpoint configurations

        Returns:
            Tuple of (targets, intervals)
            - targets: Targets of all included categories, deduplicated by id
            - intervals: Poll interval per included category

        Raises:
            DiscoveryError: If the directory is unreachable
        """
        targets: Dict[str, ScrapeTarget] = {}
        intervals: Dict[str, float] = {}

        for endpoint in endpoints:
            if not endpoint.include:
                self.logger.info(f"Skipping excluded scrape endpoint type {endpoint.type}")
                continue
            intervals[endpoint.type] = endpoint.interval
            for target in await self.discover(endpoint.type):
                targets[target.id] = target

        return list(targets.values()), intervals

    def _targets_from_document(
        self,
        document: Dict[str, Any],
        category: str,
        port: int
    ) -> List[ScrapeTarget]:
        try:
            instance = ServiceInstance.model_validate(document)
        except ValidationError as e:
            self.logger.warning(
                f"Skipping malformed service instance {document.get('id', '?')}: {e}",
                extra={"operation": "discover", "category": category}
            )
            return []

        return [
            ScrapeTarget(category=category, address=host.ip, port=port)
            for host in instance.hosts
            if host.type == category
        ]
