"""Data structures for scrape targets and collected metrics."""

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Tuple, Union
from .kinds import MetricKind


def json_value(value: float) -> Union[float, str]:
    """Sample value for a JSON document; NaN and infinities use their exposition spelling."""
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    return value


@dataclass(frozen=True)
class ScrapeTarget:
    """One metrics endpoint discovered from the directory."""

    category: str
    address: str
    port: int

    @property
    def id(self) -> str:
        return f"{self.category}-{self.address}"

    @property
    def url(self) -> str:
        return f"http://{self.address}:{self.port}/metrics"


@dataclass(frozen=True)
class Sample:
    """One labeled measurement within a family."""

    name: str
    labels: Dict[str, str]
    value: float
    timestamp: float  # Seconds since epoch

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "labels": dict(self.labels),
            "value": json_value(self.value),
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class MetricFamily:
    """Named group of samples sharing one kind, in the order they were exposed."""

    name: str
    kind: MetricKind
    samples: Tuple[Sample, ...] = ()
    help: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "kind": self.kind.value,
            "help": self.help,
            "samples": [sample.to_dict() for sample in self.samples],
        }


@dataclass(frozen=True)
class ScrapeResult:
    """Aggregated output of one successful fetch cycle."""

    target_id: str
    collected_at: datetime
    families: Tuple[MetricFamily, ...] = field(default_factory=tuple)

    def to_document(self, sequence: Optional[int] = None) -> Dict[str, Any]:
        """
        Render the sink document for this result.

        Args:
            sequence: Per-target submission number, omitted when None

        Returns:
            Dict[str, Any]: JSON-serializable document
        """
        document = {
            "target_id": self.target_id,
            "collected_at": self.collected_at.isoformat(),
            "families": [family.to_dict() for family in self.families],
        }
        if sequence is not None:
            document["sequence"] = sequence
        return document
