"""Pipeline wiring, supervision and bounded shutdown drain."""

from __future__ import annotations

import asyncio
from typing import List, Optional

from redis.asyncio import Redis

from beacon.core.config import Settings
from beacon.core.logger import get_logger
from beacon.domain.models import ClassifiedHit, UpdateRequest
from beacon.infrastructure.redis.client import keepalive_loop
from beacon.infrastructure.redis.repository import AggregateRepository
from shared.utils.retry import RetryPolicy

from .aggregators import avg_aggregator, max_aggregator
from .classifier import classifier_worker
from .tailer import LogTailer
from .writer import PersistenceWriter

logger = get_logger("beacon.pipeline")


class BeaconPipeline:
    """Tailer -> classifiers -> max/avg taggers -> writer.

    ``stop_event`` is the process-wide shutdown token. Once it is set (by a
    signal or by a fatal tailer error) each stage is drained in order: a
    stage's ``upstream_done`` is only set after every producer feeding it has
    exited. The whole drain is bounded by ``drain_timeout_seconds``.
    """

    def __init__(
        self,
        config: Settings,
        redis: Redis,
        stop_event: Optional[asyncio.Event] = None,
        writer: Optional[PersistenceWriter] = None,
    ):
        self.config = config
        self.redis = redis
        self.stop_event = stop_event or asyncio.Event()
        workers = config.routine_num

        self.raw_queue: asyncio.Queue[str] = asyncio.Queue(maxsize=config.raw_queue_size)
        self.max_queue: asyncio.Queue[ClassifiedHit] = asyncio.Queue(maxsize=workers)
        self.avg_queue: asyncio.Queue[ClassifiedHit] = asyncio.Queue(maxsize=workers)
        self.update_queue: asyncio.Queue[UpdateRequest] = asyncio.Queue(maxsize=workers)

        self.lines_done = asyncio.Event()
        self.hits_done = asyncio.Event()
        self.requests_done = asyncio.Event()

        self.tailer = LogTailer(
            config.log_file_path,
            self.raw_queue,
            self.stop_event,
            eof_sleep_seconds=config.tail_eof_sleep_seconds,
            start_at_end=config.tail_start_at_end,
            max_consecutive_read_errors=config.tail_max_consecutive_read_errors,
            put_poll_seconds=config.queue_poll_interval_seconds,
        )
        self.writer = writer or PersistenceWriter(
            AggregateRepository(redis),
            day_bucketing=config.day_bucketing,
            granularity=config.bucket_granularity,
            aggregate_scope=config.aggregate_scope,
            retry_policy=RetryPolicy(
                retries=config.store_retry_attempts,
                base_delay=config.store_retry_base_delay_seconds,
                max_delay=config.store_retry_max_delay_seconds,
            ),
        )

    async def run(self) -> None:
        poll = self.config.queue_poll_interval_seconds
        logger.info(
            "pipeline_starting",
            extra={
                "log_file_path": self.config.log_file_path,
                "routine_num": self.config.routine_num,
            },
        )
        keepalive = asyncio.create_task(
            keepalive_loop(
                self.redis,
                self.stop_event,
                self.config.redis_keepalive_interval_seconds,
            ),
            name="keepalive",
        )
        classifiers = [
            asyncio.create_task(
                classifier_worker(
                    self.raw_queue,
                    self.max_queue,
                    self.avg_queue,
                    self.lines_done,
                    poll,
                ),
                name=f"classifier-{i}",
            )
            for i in range(self.config.routine_num)
        ]
        taggers = [
            asyncio.create_task(
                max_aggregator(self.max_queue, self.update_queue, self.hits_done, poll),
                name="max-aggregator",
            ),
            asyncio.create_task(
                avg_aggregator(self.avg_queue, self.update_queue, self.hits_done, poll),
                name="avg-aggregator",
            ),
        ]
        writer = asyncio.create_task(
            self.writer.run(self.update_queue, self.requests_done, poll),
            name="writer",
        )
        tailer = asyncio.create_task(self.tailer.run(), name="tailer")
        stages = [*classifiers, *taggers, writer]

        try:
            await asyncio.wait([tailer, *stages], return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            self.stop_event.set()
            await self._cancel([tailer, *stages, keepalive])
            raise
        self.stop_event.set()
        failure = await self._collect_failure(tailer, stages)

        try:
            await asyncio.wait_for(
                self._drain(classifiers, taggers, writer),
                timeout=self.config.drain_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.error(
                "pipeline_drain_timeout",
                extra={
                    "raw_left": self.raw_queue.qsize(),
                    "max_left": self.max_queue.qsize(),
                    "avg_left": self.avg_queue.qsize(),
                    "updates_left": self.update_queue.qsize(),
                },
            )
            await self._cancel(stages)
        await self._cancel([keepalive])
        logger.info("pipeline_stopped")

        if failure is not None:
            raise failure

    async def _collect_failure(
        self, tailer: asyncio.Task, stages: List[asyncio.Task]
    ) -> Optional[BaseException]:
        """Wait for the tailer to stop and report what ended the run, if fatal."""
        crashed = next((t for t in stages if t.done()), None)
        try:
            await tailer
        except Exception as exc:  # noqa: BLE001 - re-raised by run()
            logger.critical("tailer_failed", extra={"error": str(exc)}, exc_info=True)
            return exc
        if crashed is None:
            return None
        exc = crashed.exception() if not crashed.cancelled() else None
        logger.critical(
            "pipeline_stage_exited",
            extra={"task": crashed.get_name(), "error": str(exc)},
        )
        return exc or RuntimeError(f"stage {crashed.get_name()} exited early")

    async def _drain(
        self,
        classifiers: List[asyncio.Task],
        taggers: List[asyncio.Task],
        writer: asyncio.Task,
    ) -> None:
        self.lines_done.set()
        await asyncio.gather(*classifiers, return_exceptions=True)
        self.hits_done.set()
        await asyncio.gather(*taggers, return_exceptions=True)
        self.requests_done.set()
        (applied,) = await asyncio.gather(writer, return_exceptions=True)
        logger.info("pipeline_drained", extra={"applied": applied})

    @staticmethod
    async def _cancel(tasks: List[asyncio.Task]) -> None:
        for task in tasks:
            task.cancel()
        results = await asyncio.gather(*tasks, return_exceptions=True)
        for task, result in zip(tasks, results):
            if isinstance(result, Exception):
                logger.debug(
                    "task_exit_error",
                    extra={"task": task.get_name(), "error": str(result)},
                )
