"""Max/avg re-tagging stages feeding the persistence writer."""

from __future__ import annotations

import asyncio
from functools import partial

from beacon.domain.models import ClassifiedHit, UpdateKind, UpdateRequest

from .metrics import QUEUE_CURRENT_SIZE
from .queues import drain


async def tagging_worker(
    kind: UpdateKind,
    hit_queue: asyncio.Queue[ClassifiedHit],
    request_queue: asyncio.Queue[UpdateRequest],
    upstream_done: asyncio.Event,
    poll_seconds: float = 0.5,
) -> int:
    """Wrap every hit as an update request of ``kind``; holds no state."""
    forwarded = 0
    async for hit in drain(hit_queue, upstream_done, poll_seconds):
        await request_queue.put(UpdateRequest(kind=kind, hit=hit))
        forwarded += 1
        QUEUE_CURRENT_SIZE.labels(stage="update").set(request_queue.qsize())
    return forwarded


max_aggregator = partial(tagging_worker, UpdateKind.MAX)
avg_aggregator = partial(tagging_worker, UpdateKind.AVG)
