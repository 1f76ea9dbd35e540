"""Agent self-metrics.

Kept on a dedicated CollectorRegistry so they never mix with the default
process collectors.
"""

from prometheus_client import CollectorRegistry, Counter, Gauge

PREFIX = "scrape_"

AGENT_REGISTRY = CollectorRegistry()

FETCH_TOTAL = Counter(
    f"{PREFIX}fetch_total",
    "Metric endpoint fetch attempts",
    labelnames=["status"],
    registry=AGENT_REGISTRY,
)

FAMILIES_SKIPPED_TOTAL = Counter(
    f"{PREFIX}families_skipped_total",
    "Metric families dropped during aggregation because they could not be parsed",
    registry=AGENT_REGISTRY,
)

FORWARD_WRITES_TOTAL = Counter(
    f"{PREFIX}forward_writes_total",
    "Sink writes attempted by the forwarder",
    labelnames=["status"],
    registry=AGENT_REGISTRY,
)

FORWARD_DROPPED_TOTAL = Counter(
    f"{PREFIX}forward_dropped_total",
    "Scrape results dropped because a forwarder queue was full",
    registry=AGENT_REGISTRY,
)

FORWARD_INFLIGHT = Gauge(
    f"{PREFIX}forward_inflight",
    "Sink writes currently in flight",
    registry=AGENT_REGISTRY,
)


def sample_value(name: str, labels: dict = None) -> float:
    """Current value of an agent sample, 0.0 when it has not been recorded yet."""
    value = AGENT_REGISTRY.get_sample_value(name, labels or {})
    return value or 0.0
