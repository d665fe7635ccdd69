import asyncio
from typing import AsyncIterator, TypeVar

T = TypeVar("T")


async def drain(
    queue: asyncio.Queue[T], upstream_done: asyncio.Event, poll_seconds: float = 0.5
) -> AsyncIterator[T]:
    """Yield queue items until upstream has finished and the queue is empty.

    Each item is marked done once the consumer asks for the next one.
    """
    while not upstream_done.is_set() or not queue.empty():
        try:
            item = await asyncio.wait_for(queue.get(), poll_seconds)
        except asyncio.TimeoutError:
            continue
        try:
            yield item
        finally:
            queue.task_done()
