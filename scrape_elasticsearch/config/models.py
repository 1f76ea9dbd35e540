"""Pydantic configuration models for the scrape agent."""

from pydantic import BaseModel, Field, field_validator
from typing import List, Optional


class ScrapeEndpointConfig(BaseModel):
    """Scrape settings for one category of service instance hosts."""
    type: str  # Category tag matched against hosts[].type in the directory
    port: int = Field(ge=1, le=65535)
    interval: float = Field(default=5.0, gt=0)  # Seconds between polls
    include: bool = True

    @field_validator('type')
    @classmethod
    def validate_type(cls, v: str) -> str:
        """Category must be a non-empty tag."""
        if not v.strip():
            raise ValueError('Scrape endpoint type must not be empty')
        return v.strip()


class ElasticsearchConfig(BaseModel):
    """Elasticsearch cluster used as the storage sink."""
    hosts: List[str] = Field(min_length=1)
    port: int = Field(default=9200, ge=1, le=65535)
    https: bool = False
    username: Optional[str] = None
    password: Optional[str] = None
    index: str = "metrics"  # May contain strftime fields, e.g. metrics-%Y.%m.%d
    timeout_seconds: float = Field(default=10.0, gt=0)

    @property
    def base_urls(self) -> List[str]:
        """One base URL per configured host."""
        scheme = "https" if self.https else "http"
        return [f"{scheme}://{host}:{self.port}" for host in self.hosts]


class MongoDBConfig(BaseModel):
    """MongoDB directory holding the service instances."""
    hosts: List[str] = Field(min_length=1)
    port: int = Field(default=27017, ge=1, le=65535)
    username: Optional[str] = None
    password: Optional[str] = None
    database: str
    collection: str
    timeout_seconds: float = Field(default=10.0, gt=0)


class ScrapeConfig(BaseModel):
    """HTTP fetch and failure backoff settings shared by all workers."""
    timeout_seconds: float = Field(default=5.0, gt=0)
    backoff_after: int = Field(default=3, ge=1)
    max_backoff_seconds: float = Field(default=300.0, gt=0)


class ForwarderConfig(BaseModel):
    """Bounded forwarding pool settings."""
    max_concurrency: int = Field(default=4, ge=1, le=256)
    queue_size: int = Field(default=100, ge=1)


class DiscoveryConfig(BaseModel):
    """Re-discovery schedule. Disabled when refresh interval is unset."""
    refresh_interval_seconds: Optional[float] = Field(default=None, gt=0)


class ScrapeAgentConfig(BaseModel):
    """Root configuration model for the scrape agent."""
    scrape_endpoints: List[ScrapeEndpointConfig] = Field(default_factory=list)
    elasticsearch: ElasticsearchConfig
    mongodb: MongoDBConfig
    scrape: ScrapeConfig = Field(default_factory=ScrapeConfig)
    forwarder: ForwarderConfig = Field(default_factory=ForwarderConfig)
    discovery: DiscoveryConfig = Field(default_factory=DiscoveryConfig)

    @field_validator('scrape_endpoints')
    @classmethod
    def unique_types(cls, v: List[ScrapeEndpointConfig]) -> List[ScrapeEndpointConfig]:
        """Each category may be configured once."""
        seen = set()
        for endpoint in v:
            if endpoint.type in seen:
                raise ValueError(f'Duplicate scrape endpoint type: {endpoint.type}')
            seen.add(endpoint.type)
        return v
