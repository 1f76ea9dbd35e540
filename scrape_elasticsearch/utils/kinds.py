"""Metric family kind enumeration."""

from enum import Enum


class MetricKind(Enum):
    """Measurement kind shared by all samples of one family."""

    COUNTER = "counter"
    GAUGE = "gauge"
    HISTOGRAM = "histogram"
    SUMMARY = "summary"
    UNTYPED = "untyped"

    @classmethod
    def from_exposition(cls, type_name: str) -> "MetricKind":
        """
        Map an exposition format type to a kind.

        OpenMetrics-only types (unknown, info, stateset, gaugehistogram)
        have no counterpart and are reported as untyped.

        Args:
            type_name: Type string as reported by the parser

        Returns:
            MetricKind: Matching kind, UNTYPED when unmapped
        """
        try:
            return cls(type_name)
        except ValueError:
            return cls.UNTYPED
