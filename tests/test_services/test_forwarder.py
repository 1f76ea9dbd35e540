"""Tests for the bounded forwarder."""

import asyncio
import random

import pytest

from scrape_elasticsearch.services.forwarder import Forwarder, ForwarderClosedError
from scrape_elasticsearch.utils.counters import sample_value


@pytest.mark.asyncio
async def test_writes_actual_result(fake_sink, make_result, logger):
    """The sink receives the submitted result, not a stand-in."""
    forwarder = Forwarder(fake_sink, max_concurrency=2, logger=logger)
    forwarder.start()

    assert forwarder.submit(make_result(target_id="node-a")) is True
    await forwarder.close()

    assert len(fake_sink.writes) == 1
    index, document = fake_sink.writes[0]
    assert index == "metrics"
    assert document["target_id"] == "node-a"
    assert document["sequence"] == 1


@pytest.mark.asyncio
async def test_per_target_order_preserved(sink_factory, make_result, logger):
    """Results of one target are written in submission order across concurrent writers."""
    sink = sink_factory()
    original_write = sink.write

    async def jittery_write(index, document):
        await asyncio.sleep(random.uniform(0, 0.005))
        await original_write(index, document)

    sink.write = jittery_write

    forwarder = Forwarder(sink, max_concurrency=3, queue_size=100, logger=logger)
    forwarder.start()

    for _ in range(20):
        for target_id in ("node-a", "node-b", "node-c"):
            forwarder.submit(make_result(target_id=target_id))
        await asyncio.sleep(0)

    await forwarder.close()

    for target_id in ("node-a", "node-b", "node-c"):
        sequences = [doc["sequence"] for doc in sink.documents_for(target_id)]
        assert sequences == list(range(1, 21))


@pytest.mark.asyncio
async def test_in_flight_writes_bounded(sink_factory, make_result, logger):
    """Concurrent sink writes never exceed max_concurrency under load."""
    sink = sink_factory(delay=0.01)
    forwarder = Forwarder(sink, max_concurrency=3, queue_size=100, logger=logger)
    forwarder.start()

    for _ in range(3):
        for i in range(30):
            forwarder.submit(make_result(target_id=f"node-10.0.0.{i}"))
        await asyncio.sleep(0.005)
        assert forwarder.in_flight <= 3

    await forwarder.close()

    assert len(sink.writes) == 90
    assert sink.max_in_flight <= 3
    assert forwarder.in_flight == 0


@pytest.mark.asyncio
async def test_full_queue_drops_newest(sink_factory, make_result, logger):
    """When a writer queue is full, the new result is dropped and counted."""
    sink = sink_factory()
    sink.gate = asyncio.Event()
    forwarder = Forwarder(sink, max_concurrency=1, queue_size=2, logger=logger)
    forwarder.start()
    dropped_before = sample_value("scrape_forward_dropped_total")

    accepted = [forwarder.submit(make_result(target_id="node-a")) for _ in range(5)]

    assert accepted == [True, True, False, False, False]
    assert sample_value("scrape_forward_dropped_total") == dropped_before + 3

    sink.gate.set()
    await forwarder.close()

    assert [doc["sequence"] for doc in sink.documents_for("node-a")] == [1, 2]


@pytest.mark.asyncio
async def test_submit_after_close_raises(fake_sink, make_result, logger):
    forwarder = Forwarder(fake_sink, logger=logger)
    forwarder.start()
    await forwarder.close()

    assert forwarder.closed
    with pytest.raises(ForwarderClosedError):
        forwarder.submit(make_result())


@pytest.mark.asyncio
async def test_close_drains_pending_writes(sink_factory, make_result, logger):
    sink = sink_factory(delay=0.01)
    forwarder = Forwarder(sink, max_concurrency=1, queue_size=10, logger=logger)
    forwarder.start()

    for _ in range(5):
        forwarder.submit(make_result(target_id="node-a"))

    await forwarder.close()

    assert len(sink.writes) == 5


@pytest.mark.asyncio
async def test_close_is_idempotent(fake_sink, make_result, logger):
    forwarder = Forwarder(fake_sink, logger=logger)
    forwarder.start()
    forwarder.submit(make_result())

    await asyncio.gather(forwarder.close(), forwarder.close())
    await forwarder.close()

    assert len(fake_sink.writes) == 1


@pytest.mark.asyncio
async def test_write_failure_does_not_propagate(sink_factory, make_result, logger):
    """A failed write is counted; later writes still happen."""
    sink = sink_factory(fail_for={"node-bad"})
    forwarder = Forwarder(sink, max_concurrency=1, logger=logger)
    forwarder.start()
    errors_before = sample_value("scrape_forward_writes_total", {"status": "error"})

    forwarder.submit(make_result(target_id="node-bad"))
    forwarder.submit(make_result(target_id="node-good"))
    await forwarder.close()

    assert sample_value("scrape_forward_writes_total", {"status": "error"}) == errors_before + 1
    assert len(sink.documents_for("node-good")) == 1
    assert sink.documents_for("node-bad") == []


@pytest.mark.asyncio
async def test_write_timeout_is_counted(sink_factory, make_result, logger):
    sink = sink_factory(delay=1.0)
    forwarder = Forwarder(sink, max_concurrency=1, write_timeout=0.05, logger=logger)
    forwarder.start()
    errors_before = sample_value("scrape_forward_writes_total", {"status": "error"})

    forwarder.submit(make_result())
    await asyncio.wait_for(forwarder.close(), timeout=2.0)

    assert sink.writes == []
    assert sample_value("scrape_forward_writes_total", {"status": "error"}) == errors_before + 1


def test_rejects_invalid_bounds(fake_sink):
    with pytest.raises(ValueError):
        Forwarder(fake_sink, max_concurrency=0)
    with pytest.raises(ValueError):
        Forwarder(fake_sink, queue_size=0)


@pytest.mark.asyncio
async def test_forget_resets_sequence(fake_sink, make_result, logger):
    """A retired target's counter is dropped; its queued result is still written."""
    forwarder = Forwarder(fake_sink, max_concurrency=1, logger=logger)

    forwarder.submit(make_result(target_id="node-a"))
    forwarder.submit(make_result(target_id="node-a"))
    forwarder.forget("node-a")
    forwarder.forget("node-unknown")
    forwarder.submit(make_result(target_id="node-a"))

    forwarder.start()
    await forwarder.close()

    assert [doc["sequence"] for doc in fake_sink.documents_for("node-a")] == [1, 2, 1]
