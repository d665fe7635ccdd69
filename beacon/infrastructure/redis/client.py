"""Redis connection bootstrap and idle keep-alive."""

from __future__ import annotations

import asyncio

import redis.asyncio as redis
from redis.exceptions import RedisError

from beacon.core.config import Settings
from beacon.core.logger import get_logger
from beacon.domain.errors import StoreUnavailableError
from beacon.pipeline.metrics import KEEPALIVE_FAILURES_TOTAL
from shared.utils.retry import RetryPolicy, retry_async

logger = get_logger("beacon.redis")


def create_redis(config: Settings) -> redis.Redis:
    return redis.Redis(
        host=config.redis_host,
        port=config.redis_port,
        db=config.redis_db,
        password=config.redis_password,
        max_connections=config.redis_max_connections,
        decode_responses=True,
    )


async def connect_with_retry(config: Settings) -> redis.Redis:
    """Connect and PING; an unreachable store at startup is fatal."""
    client = create_redis(config)

    async def _ping():
        await client.ping()
        return client

    async def _on_retry(attempt: int, exc: BaseException, sleep_for: float):
        logger.warning(
            "redis_connect_retry",
            extra={
                "attempt": attempt,
                "error": str(exc),
                "sleep_for": round(sleep_for, 2),
            },
        )

    try:
        await retry_async(
            _ping,
            RetryPolicy(
                retries=config.redis_connect_retries,
                base_delay=0.5,
                max_delay=8.0,
                jitter=0.2,
            ),
            retry_on=(RedisError, OSError),
            on_retry=_on_retry,
        )
    except (RedisError, OSError) as exc:
        await client.aclose()
        raise StoreUnavailableError(
            f"redis unreachable at {config.redis_host}:{config.redis_port}"
        ) from exc
    logger.info(
        "redis_connected",
        extra={"host": config.redis_host, "port": config.redis_port},
    )
    return client


async def keepalive_loop(
    client: redis.Redis, stop_event: asyncio.Event, interval_seconds: float = 3.0
) -> None:
    """PING on a fixed interval so idle pooled connections are not dropped.

    Failures are logged and counted only.
    """
    logger.info("keepalive_started", extra={"interval": interval_seconds})
    while not stop_event.is_set():
        try:
            await client.ping()
        except (RedisError, OSError) as exc:
            KEEPALIVE_FAILURES_TOTAL.inc()
            logger.warning("keepalive_ping_failed", extra={"error": str(exc)})
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
        except asyncio.TimeoutError:
            pass
    logger.info("keepalive_stopped")
