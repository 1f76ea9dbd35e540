"""Turn exposition text into the agent's family/sample model."""

import logging
from datetime import datetime
from typing import List, Optional, Tuple

from prometheus_client.parser import text_string_to_metric_families

from ..utils.counters import FAMILIES_SKIPPED_TOTAL
from ..utils.kinds import MetricKind
from ..utils.metrics import MetricFamily, Sample, ScrapeResult

_METADATA_KEYWORDS = ("HELP", "TYPE")
_SAMPLE_SUFFIXES = ("_total", "_created", "_bucket", "_sum", "_count")
_COUNTER_SUFFIX = "_total"


def _metadata_name(line: str) -> Optional[str]:
    parts = line.split(None, 3)
    if len(parts) >= 3 and parts[1] in _METADATA_KEYWORDS:
        return parts[2]
    return None


def _sample_name(line: str) -> str:
    end = len(line)
    for separator in ("{", " ", "\t"):
        position = line.find(separator)
        if position != -1:
            end = min(end, position)
    return line[:end]


def _belongs_to(sample_name: str, family_name: str) -> bool:
    if sample_name == family_name:
        return True
    return any(sample_name == family_name + suffix for suffix in _SAMPLE_SUFFIXES)


def split_families(text: str) -> List[Tuple[str, str]]:
    """
    Cut exposition text into one block per exposed family.

    A new block begins whenever a ``# HELP`` or ``# TYPE`` line names a
    family other than the current one, or when a sample does not belong
    to the current family. Samples without metadata are grouped by their
    name, so one malformed line only takes its own family down.

    Args:
        text: Raw exposition body

    Returns:
        List[Tuple[str, str]]: (exposed family name, block) pairs in
        exposition order, each block newline-terminated
    """
    blocks: List[Tuple[str, List[str]]] = []
    current: List[str] = []
    current_name = None

    for line in text.splitlines():
        stripped = line.strip()
        if not stripped:
            continue

        if stripped.startswith("#"):
            name = _metadata_name(stripped)
        else:
            name = _sample_name(stripped)
            if current_name is not None and _belongs_to(name, current_name):
                name = current_name

        if name is not None and name != current_name:
            if current:
                blocks.append((current_name, current))
            current = []
            current_name = name

        current.append(stripped)

    if current:
        blocks.append((current_name, current))

    return [(name, "\n".join(block) + "\n") for name, block in blocks]


def _exposed_family_name(metric, exposed_name: str) -> str:
    # The parser reports counters without their _total suffix
    if metric.type == "counter" and metric.name + _COUNTER_SUFFIX == exposed_name:
        return exposed_name
    return metric.name


def _exposed_sample_name(metric, exposed_name: str, sample_name: str) -> str:
    # The parser appends _total to counter samples exposed without it
    if (metric.type == "counter"
            and not exposed_name.endswith(_COUNTER_SUFFIX)
            and sample_name == exposed_name + _COUNTER_SUFFIX):
        return exposed_name
    return sample_name


def aggregate(
    text: str,
    target_id: str,
    collected_at: datetime,
    logger: logging.Logger
) -> ScrapeResult:
    """
    Parse one exposition body into a ScrapeResult.

    Malformed families are skipped and counted; the remaining families
    are still returned. Samples without a timestamp get the collection
    time.

    Args:
        text: Raw exposition body
        target_id: Id of the target the body was fetched from
        collected_at: Collection time of this cycle
        logger: Logger instance

    Returns:
        ScrapeResult: Families in exposition order
    """
    default_ts = collected_at.timestamp()
    families: List[MetricFamily] = []

    for exposed_name, block in split_families(text):
        try:
            parsed = list(text_string_to_metric_families(block))
        except Exception as e:
            FAMILIES_SKIPPED_TOTAL.inc()
            logger.warning(
                f"Skipping malformed metric family {exposed_name} from {target_id}: {e}",
                extra={"target_id": target_id, "operation": "aggregate"}
            )
            continue

        for metric in parsed:
            try:
                samples = tuple(
                    Sample(
                        name=_exposed_sample_name(metric, exposed_name, s.name),
                        labels=dict(s.labels),
                        value=float(s.value),
                        timestamp=float(s.timestamp) if s.timestamp is not None else default_ts,
                    )
                    for s in metric.samples
                )
            except (TypeError, ValueError) as e:
                FAMILIES_SKIPPED_TOTAL.inc()
                logger.warning(
                    f"Skipping metric family {metric.name} from {target_id}: {e}",
                    extra={"target_id": target_id, "operation": "aggregate"}
                )
                continue

            families.append(MetricFamily(
                name=_exposed_family_name(metric, exposed_name),
                kind=MetricKind.from_exposition(metric.type),
                samples=samples,
                help=metric.documentation or "",
            ))

    return ScrapeResult(
        target_id=target_id,
        collected_at=collected_at,
        families=tuple(families),
    )
