"""Shared pytest configuration and fixtures."""

import asyncio
import textwrap
from datetime import datetime, timezone

import httpx
import pytest

from scrape_elasticsearch.collectors.aggregator import aggregate
from scrape_elasticsearch.collectors.base import BaseCollector
from scrape_elasticsearch.services.elasticsearch_client import SinkWriteError
from scrape_elasticsearch.utils.logger import setup_logger
from scrape_elasticsearch.utils.metrics import ScrapeResult, ScrapeTarget


CPU_GAUGE_BODY = (
    "# HELP cpu_usage Current CPU usage\n"
    "# TYPE cpu_usage gauge\n"
    'cpu_usage{host="a"} 0.42\n'
)


class FakeSink:
    """In-memory sink recording writes and the peak number of concurrent writes."""

    def __init__(self, delay: float = 0.0, fail_for=()):
        self.delay = delay
        self.fail_for = set(fail_for)
        self.writes = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.gate = None

    def index_name(self, collected_at):
        return "metrics"

    async def write(self, index, document):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.gate is not None:
                await self.gate.wait()
            if self.delay:
                await asyncio.sleep(self.delay)
            if document["target_id"] in self.fail_for:
                raise SinkWriteError(f"rejected {document['target_id']}")
            self.writes.append((index, document))
        finally:
            self.in_flight -= 1

    def documents_for(self, target_id):
        return [doc for _, doc in self.writes if doc["target_id"] == target_id]


class RecordingForwarder:
    """Forwarder stand-in that keeps submitted results."""

    def __init__(self):
        self.results = []
        self.forgotten = []

    def submit(self, result):
        self.results.append(result)
        return True

    def forget(self, target_id):
        self.forgotten.append(target_id)


class ScriptedCollector(BaseCollector):
    """Collector replaying a list of bodies and exceptions, repeating the last one."""

    def __init__(self, target, outcomes, logger, fetch_delay: float = 0.0):
        super().__init__(target, logger)
        self.outcomes = list(outcomes)
        self.fetch_delay = fetch_delay
        self.fetches = 0

    async def fetch(self):
        index = min(self.fetches, len(self.outcomes) - 1)
        self.fetches += 1
        if self.fetch_delay:
            await asyncio.sleep(self.fetch_delay)
        outcome = self.outcomes[index]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def aggregate(self, body, collected_at):
        return aggregate(body, self.target.id, collected_at, self.logger)


async def _wait_until(predicate, timeout: float = 2.0, step: float = 0.01):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(step)


@pytest.fixture
def logger():
    """Create logger for tests."""
    return setup_logger("test")


@pytest.fixture
def make_target():
    def _make(address="10.0.0.1", category="node", port=9100):
        return ScrapeTarget(category=category, address=address, port=port)
    return _make


@pytest.fixture
def make_result():
    def _make(target_id="node-10.0.0.1", families=()):
        return ScrapeResult(
            target_id=target_id,
            collected_at=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
            families=tuple(families),
        )
    return _make


@pytest.fixture
def fake_sink():
    return FakeSink()


@pytest.fixture
def sink_factory():
    return FakeSink


@pytest.fixture
def recording_forwarder():
    return RecordingForwarder()


@pytest.fixture
def scripted_collector():
    return ScriptedCollector


@pytest.fixture
def mock_http_client():
    """Build an httpx.AsyncClient answering through a handler function."""
    def _make(handler):
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return _make


@pytest.fixture
def wait_until():
    return _wait_until


@pytest.fixture
def cpu_gauge_body():
    return CPU_GAUGE_BODY


@pytest.fixture
def config_file(tmp_path):
    """Write a YAML config file and return its path."""
    def _write(content: str):
        path = tmp_path / "config.yaml"
        path.write_text(textwrap.dedent(content))
        return str(path)
    return _write


@pytest.fixture
def minimal_config_yaml():
    return """
        scrape_endpoints:
          - type: node
            port: 9100
            interval: 5
        elasticsearch:
          hosts: [es-1]
        mongodb:
          hosts: [mongo-1]
          database: broker
          collection: service_instances
    """
