"""Beacon extraction and resource classification workers."""

from __future__ import annotations

import asyncio
from decimal import Decimal, InvalidOperation
from typing import Optional
from urllib.parse import parse_qs

from beacon.core.logger import get_logger
from beacon.domain.errors import BeaconParseError
from beacon.domain.models import (
    HOME_RESOURCE_ID,
    Beacon,
    ClassifiedHit,
    ResourceType,
)

from .metrics import (
    HITS_CLASSIFIED_TOTAL,
    LINES_DROPPED_TOTAL,
    PARSE_ERRORS_TOTAL,
    QUEUE_CURRENT_SIZE,
)
from .queues import drain

logger = get_logger("beacon.classifier")

TRACKING_MARKER = "/dig?"
PROTOCOL_MARKER = "HTTP/"
# Accepted response times: at most nine integer digits and nine decimals.
RESPONSE_TIME_MAX_ADJUSTED = 9
RESPONSE_TIME_MIN_EXPONENT = -9
RESPONSE_TIME_DELIMITER = "`"
PAGE_SUFFIX = ".html"

# Checked in order; anything else is the home page
PATH_MARKERS = (
    ("/movie/", ResourceType.MOVIE),
    ("/list/", ResourceType.LIST),
)


def extract_beacon(line: str) -> Optional[Beacon]:
    """Cut the tracking query and response time out of an access-log line.

    Returns None when the line carries no tracking request.
    """
    line = line.strip()
    start = line.find(TRACKING_MARKER)
    if start == -1:
        return None
    start += len(TRACKING_MARKER)
    end = line.find(PROTOCOL_MARKER, start)
    if end == -1:
        end = len(line)
    query = parse_qs(line[start:end].strip())

    return Beacon(
        url=query.get("url", [""])[0],
        response_time=_between_delimiters(line, RESPONSE_TIME_DELIMITER),
        client_timestamp=query.get("time", [""])[0],
    )


def _between_delimiters(line: str, delimiter: str) -> str:
    first = line.find(delimiter)
    if first == -1:
        return ""
    second = line.find(delimiter, first + 1)
    if second == -1:
        return ""
    return line[first + 1 : second].strip()


def classify(beacon: Beacon) -> ClassifiedHit:
    """Attribute a beacon to a resource.

    Raises BeaconParseError when the id or the response time is not numeric.
    """
    response_time = parse_response_time(beacon.response_time)
    resource_type, resource_id = ResourceType.HOME, HOME_RESOURCE_ID
    for marker, marker_type in PATH_MARKERS:
        pos = beacon.url.find(marker)
        if pos != -1:
            resource_type = marker_type
            resource_id = _parse_resource_id(beacon.url, pos + len(marker))
            break

    return ClassifiedHit(
        resource_type=resource_type,
        resource_id=resource_id,
        url=beacon.url,
        response_time=response_time,
        client_timestamp=beacon.client_timestamp,
    )


def parse_response_time(raw: str) -> Decimal:
    try:
        value = Decimal(raw)
    except InvalidOperation:
        raise BeaconParseError("bad_response_time", raw) from None
    if not value.is_finite() or value < 0:
        raise BeaconParseError("bad_response_time", raw)
    if (
        value.adjusted() > RESPONSE_TIME_MAX_ADJUSTED
        or value.as_tuple().exponent < RESPONSE_TIME_MIN_EXPONENT
    ):
        raise BeaconParseError("bad_response_time", raw)
    return value


def _parse_resource_id(url: str, start: int) -> int:
    end = url.find(PAGE_SUFFIX, start)
    if end == -1:
        raise BeaconParseError("bad_resource_id", url)
    id_str = url[start:end]
    if not (id_str.isascii() and id_str.isdigit()):
        raise BeaconParseError("bad_resource_id", url)
    return int(id_str)


def process_line(line: str) -> Optional[ClassifiedHit]:
    """Extract and classify; None for dropped or rejected lines."""
    beacon = extract_beacon(line)
    if beacon is None:
        LINES_DROPPED_TOTAL.inc()
        return None
    try:
        hit = classify(beacon)
    except BeaconParseError as exc:
        PARSE_ERRORS_TOTAL.labels(reason=exc.reason).inc()
        logger.warning(
            "beacon_rejected", extra={"reason": exc.reason, "detail": exc.detail}
        )
        return None
    HITS_CLASSIFIED_TOTAL.labels(resource_type=hit.resource_type.value).inc()
    return hit


async def classifier_worker(
    raw_queue: asyncio.Queue[str],
    max_queue: asyncio.Queue[ClassifiedHit],
    avg_queue: asyncio.Queue[ClassifiedHit],
    upstream_done: asyncio.Event,
    poll_seconds: float = 0.5,
) -> int:
    """Classify lines until upstream is done and the raw queue is empty.

    Returns the number of hits emitted.
    """
    emitted = 0
    async for line in drain(raw_queue, upstream_done, poll_seconds):
        hit = process_line(line)
        if hit is None:
            continue
        await max_queue.put(hit)
        await avg_queue.put(hit)
        emitted += 1
        QUEUE_CURRENT_SIZE.labels(stage="max").set(max_queue.qsize())
        QUEUE_CURRENT_SIZE.labels(stage="avg").set(avg_queue.qsize())
    return emitted
