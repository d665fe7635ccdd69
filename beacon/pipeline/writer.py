"""Single-writer persistence of running max / mean aggregates.

The store offers no decimal atomics, so sums and maxima are read, combined
in ``Decimal`` and written back. This is only correct while this writer is
the sole process touching the keys; the pipeline runs exactly one.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict

from redis.exceptions import RedisError

from beacon.core.logger import get_logger
from beacon.domain.bucketing import bucket_key, parse_client_timestamp
from beacon.domain.errors import CorruptAggregateError
from beacon.domain.models import ClassifiedHit, UpdateKind, UpdateRequest
from beacon.infrastructure.redis.repository import AggregateRepository
from shared.constants import RedisKeys
from shared.utils.retry import RetryPolicy, retry_async

from .metrics import (
    EVENT_TIME_FALLBACKS_TOTAL,
    STORE_FAILURES_TOTAL,
    STORE_RETRIES_TOTAL,
    STORE_UPDATES_TOTAL,
    STORE_WRITE_LATENCY_SECONDS,
)
from .queues import drain

logger = get_logger("beacon.writer")

RETRYABLE_ERRORS = (RedisError, OSError)


class PersistenceWriter:
    """Applies update requests to the store one at a time.

    Args:
        repository: store access.
        day_bucketing: "ingestion" buckets by wall clock at write time,
            "event" by the beacon's client timestamp.
        granularity: bucket width, "day" unless configured otherwise.
        aggregate_scope: "lifetime" keeps count/avg per resource forever,
            "day" scopes them like sum and max.
        retry_policy: backoff for store failures; a request is dropped once
            the policy is exhausted.
        clock: source of the ingestion time.
    """

    def __init__(
        self,
        repository: AggregateRepository,
        *,
        day_bucketing: str = "ingestion",
        granularity: str = "day",
        aggregate_scope: str = "lifetime",
        retry_policy: RetryPolicy = RetryPolicy(retries=3, base_delay=0.2, max_delay=2.0),
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.repo = repository
        self.day_bucketing = day_bucketing
        self.granularity = granularity
        self.aggregate_scope = aggregate_scope
        self.retry_policy = retry_policy
        self.clock = clock

    def bucket_for(self, hit: ClassifiedHit) -> str:
        moment = None
        if self.day_bucketing == "event":
            moment = parse_client_timestamp(hit.client_timestamp)
            if moment is None:
                EVENT_TIME_FALLBACKS_TOTAL.inc()
                logger.debug(
                    "event_time_unusable",
                    extra={"client_timestamp": hit.client_timestamp},
                )
        return bucket_key(moment or self.clock(), self.granularity)

    async def apply_avg(
        self,
        hit: ClassifiedHit,
        bucket: str,
        progress: Dict[str, Any] | None = None,
    ) -> Decimal:
        """Mean-update protocol; returns the new mean.

        ``progress`` records finished steps so a retried run does not add the
        same response time twice.
        """
        progress = {} if progress is None else progress
        rtype, rid = hit.resource_type.value, hit.resource_id
        value = hit.response_time

        if "day_sum" not in progress:
            sum_key = RedisKeys.daily_key("sum", bucket, rtype, rid)
            progress["day_sum"] = await self.repo.add_decimal(sum_key, value)

        if self.aggregate_scope == "day":
            count_key = RedisKeys.daily_key("count", bucket, rtype, rid)
            avg_key = RedisKeys.daily_key("avg", bucket, rtype, rid)
        else:
            count_key = RedisKeys.lifetime_key("count", rtype, rid)
            avg_key = RedisKeys.lifetime_key("avg", rtype, rid)

        if "count" not in progress:
            progress["count"] = await self.repo.increment(count_key)

        if "mean_sum" not in progress:
            if self.aggregate_scope == "day":
                progress["mean_sum"] = progress["day_sum"]
            else:
                lifetime_key = RedisKeys.lifetime_key("sum", rtype, rid)
                progress["mean_sum"] = await self.repo.add_decimal(lifetime_key, value)

        count = progress["count"]
        mean = value if count == 1 else progress["mean_sum"] / Decimal(count)
        await self.repo.set_decimal(avg_key, mean)
        return mean

    async def apply_max(self, hit: ClassifiedHit, bucket: str) -> Decimal:
        """Max-update protocol; returns the stored maximum."""
        max_key = RedisKeys.daily_key(
            "max", bucket, hit.resource_type.value, hit.resource_id
        )
        return await self.repo.raise_max(max_key, hit.response_time)

    async def handle(self, request: UpdateRequest) -> bool:
        """Apply one request with bounded retry; False if it was dropped."""
        kind = request.kind.value
        hit = request.hit
        bucket = self.bucket_for(hit)
        progress: Dict[str, Any] = {}

        async def _apply():
            if request.kind is UpdateKind.AVG:
                return await self.apply_avg(hit, bucket, progress)
            return await self.apply_max(hit, bucket)

        async def _on_retry(attempt: int, exc: BaseException, sleep_for: float):
            STORE_RETRIES_TOTAL.labels(kind=kind).inc()
            logger.warning(
                "store_update_retry",
                extra={
                    "kind": kind,
                    "attempt": attempt,
                    "error": str(exc),
                    "sleep_for": round(sleep_for, 2),
                },
            )

        try:
            with STORE_WRITE_LATENCY_SECONDS.labels(kind=kind).time():
                await retry_async(
                    _apply,
                    self.retry_policy,
                    retry_on=RETRYABLE_ERRORS,
                    on_retry=_on_retry,
                )
        except CorruptAggregateError as exc:
            STORE_FAILURES_TOTAL.labels(kind=kind).inc()
            logger.error(
                "aggregate_corrupt",
                extra={"kind": kind, "store_key": exc.key, "value": exc.value},
            )
            return False
        except RETRYABLE_ERRORS as exc:
            STORE_FAILURES_TOTAL.labels(kind=kind).inc()
            logger.error(
                "store_update_failed",
                extra={
                    "kind": kind,
                    "resource_type": hit.resource_type.value,
                    "resource_id": hit.resource_id,
                    "bucket": bucket,
                    "error": str(exc),
                },
            )
            return False
        STORE_UPDATES_TOTAL.labels(kind=kind).inc()
        return True

    async def run(
        self,
        queue: asyncio.Queue[UpdateRequest],
        upstream_done: asyncio.Event,
        poll_seconds: float = 0.5,
    ) -> int:
        """Consume requests until upstream is done and the queue is empty."""
        applied = 0
        logger.info("writer_started")
        async for request in drain(queue, upstream_done, poll_seconds):
            if await self.handle(request):
                applied += 1
        logger.info("writer_stopped", extra={"applied": applied})
        return applied
