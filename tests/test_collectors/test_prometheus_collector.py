"""Tests for the Prometheus endpoint collector."""

from datetime import datetime, timezone

import httpx
import pytest

from scrape_elasticsearch.collectors.base import FetchError
from scrape_elasticsearch.collectors.prometheus_collector import PrometheusCollector
from scrape_elasticsearch.utils.counters import sample_value


@pytest.mark.asyncio
async def test_fetch_success(make_target, mock_http_client, cpu_gauge_body, logger):
    """A 200 response returns the body; the URL is built from address and port."""
    requested = []

    def handler(request):
        requested.append(str(request.url))
        return httpx.Response(200, text=cpu_gauge_body)

    target = make_target(address="10.0.0.7", port=9100)
    async with mock_http_client(handler) as client:
        collector = PrometheusCollector(target, client, timeout=1.0, logger=logger)
        ok_before = sample_value("scrape_fetch_total", {"status": "ok"})

        body = await collector.fetch()

    assert body == cpu_gauge_body
    assert requested == ["http://10.0.0.7:9100/metrics"]
    assert sample_value("scrape_fetch_total", {"status": "ok"}) == ok_before + 1


@pytest.mark.asyncio
async def test_fetch_non_2xx_raises(make_target, mock_http_client, logger):
    """Non-2xx responses are fetch failures."""
    async with mock_http_client(lambda request: httpx.Response(503)) as client:
        collector = PrometheusCollector(make_target(), client, timeout=1.0, logger=logger)
        errors_before = sample_value("scrape_fetch_total", {"status": "error"})

        with pytest.raises(FetchError) as exc_info:
            await collector.fetch()

    assert "503" in str(exc_info.value)
    assert exc_info.value.target_id == "node-10.0.0.1"
    assert sample_value("scrape_fetch_total", {"status": "error"}) == errors_before + 1


@pytest.mark.asyncio
async def test_fetch_timeout_raises(make_target, mock_http_client, logger):
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    async with mock_http_client(handler) as client:
        collector = PrometheusCollector(make_target(), client, timeout=0.1, logger=logger)

        with pytest.raises(FetchError) as exc_info:
            await collector.fetch()

    assert "timeout" in str(exc_info.value).lower()


@pytest.mark.asyncio
async def test_fetch_connection_error_raises(make_target, mock_http_client, logger):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    async with mock_http_client(handler) as client:
        collector = PrometheusCollector(make_target(), client, timeout=1.0, logger=logger)

        with pytest.raises(FetchError):
            await collector.fetch()


def test_aggregate_uses_target_id(make_target, cpu_gauge_body, logger):
    collected_at = datetime(2024, 5, 1, tzinfo=timezone.utc)
    collector = PrometheusCollector(make_target(address="h1"), client=None, timeout=1.0, logger=logger)

    result = collector.aggregate(cpu_gauge_body, collected_at)

    assert result.target_id == "node-h1"
    assert result.families[0].name == "cpu_usage"
