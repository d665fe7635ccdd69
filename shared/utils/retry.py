import asyncio
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, Optional, TypeVar

T = TypeVar("T")

OnRetry = Callable[[int, BaseException, float], Awaitable[None] | None]


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff parameters; ``retries`` counts total attempts."""

    retries: int = 5
    base_delay: float = 0.5
    max_delay: float = 10.0
    jitter: float = 0.1

    def delays(self):
        delay = self.base_delay
        while True:
            yield min(delay, self.max_delay) + random.uniform(0, delay * self.jitter)
            delay = min(delay * 2, self.max_delay)


async def retry_async(
    func: Callable[[], Awaitable[T]],
    policy: RetryPolicy = RetryPolicy(),
    retry_on: Iterable[type[BaseException]] = (Exception,),
    on_retry: Optional[OnRetry] = None,
) -> T:
    """Await ``func`` until it succeeds or the policy is exhausted.

    The last exception is re-raised once every attempt has failed. Exceptions
    outside ``retry_on`` propagate immediately.
    """
    retry_on = tuple(retry_on)
    delays = policy.delays()
    for attempt in range(1, policy.retries + 1):
        try:
            return await func()
        except retry_on as exc:  # type: ignore[misc]
            if attempt == policy.retries:
                raise
            sleep_for = next(delays)
            if on_retry:
                result = on_retry(attempt, exc, sleep_for)
                if result is not None:
                    await result  # support async callback
            await asyncio.sleep(sleep_for)
    raise RuntimeError("async retry exhausted")
