"""Follow a growing access log and feed its lines into the pipeline."""

from __future__ import annotations

import asyncio
import os
from typing import IO, Optional

from beacon.core.logger import get_logger
from beacon.domain.errors import LogReadError, LogSourceUnavailableError
from beacon.utils.concurrency import run_blocking, wait_or_stop

from .metrics import LINES_READ_TOTAL, QUEUE_CURRENT_SIZE, READ_ERRORS_TOTAL

logger = get_logger("beacon.tailer")


class LogTailer:
    """Reads ``path`` line by line forever, polling on end of file.

    Partial trailing lines are emitted as read. Rotation (inode change) and
    truncation are checked whenever the reader is idle at EOF.
    """

    def __init__(
        self,
        path: str,
        queue: asyncio.Queue[str],
        stop_event: asyncio.Event,
        *,
        eof_sleep_seconds: float = 3.0,
        start_at_end: bool = False,
        max_consecutive_read_errors: int = 10,
        put_poll_seconds: float = 0.5,
    ):
        self.path = path
        self.queue = queue
        self.stop_event = stop_event
        self.eof_sleep_seconds = eof_sleep_seconds
        self.start_at_end = start_at_end
        self.max_consecutive_read_errors = max_consecutive_read_errors
        self.put_poll_seconds = put_poll_seconds
        self.lines_read = 0
        self._fh: Optional[IO[str]] = None
        self._inode: Optional[int] = None
        self._consecutive_errors = 0

    async def run(self) -> int:
        await self._open(seek_end=self.start_at_end)
        try:
            while not self.stop_event.is_set():
                try:
                    line = await run_blocking(self._fh.readline)
                except OSError as exc:
                    self._on_read_error(exc)
                    continue
                self._consecutive_errors = 0

                if line:
                    if not await self._emit(line):
                        break
                    continue

                logger.debug(
                    "tailer_eof_wait",
                    extra={"lines_read": self.lines_read, "path": self.path},
                )
                if await wait_or_stop(self.stop_event, self.eof_sleep_seconds):
                    break
                await self._check_rotation()
        finally:
            await self._close()
            logger.info("tailer_stopped", extra={"lines_read": self.lines_read})
        return self.lines_read

    async def _open(self, seek_end: bool = False) -> None:
        def _open_blocking():
            fh = open(self.path, "r", encoding="utf-8", errors="replace")
            if seek_end:
                fh.seek(0, os.SEEK_END)
            return fh, os.fstat(fh.fileno()).st_ino

        try:
            self._fh, self._inode = await run_blocking(_open_blocking)
        except OSError as exc:
            raise LogSourceUnavailableError(
                f"cannot open log file {self.path}: {exc}"
            ) from exc
        logger.info("tailer_opened", extra={"path": self.path, "inode": self._inode})

    async def _close(self) -> None:
        if self._fh is not None:
            await run_blocking(self._fh.close)
            self._fh = None

    async def _emit(self, line: str) -> bool:
        """Blocking put that gives up once the stop event is set."""
        while True:
            try:
                await asyncio.wait_for(self.queue.put(line), self.put_poll_seconds)
            except asyncio.TimeoutError:
                if self.stop_event.is_set():
                    return False
                continue
            self.lines_read += 1
            LINES_READ_TOTAL.inc()
            QUEUE_CURRENT_SIZE.labels(stage="raw").set(self.queue.qsize())
            return True

    def _on_read_error(self, exc: OSError) -> None:
        self._consecutive_errors += 1
        READ_ERRORS_TOTAL.inc()
        logger.warning(
            "tailer_read_error",
            extra={"error": str(exc), "consecutive": self._consecutive_errors},
        )
        if self._consecutive_errors >= self.max_consecutive_read_errors:
            raise LogReadError(
                f"{self._consecutive_errors} consecutive read errors on {self.path}"
            ) from exc

    async def _check_rotation(self) -> None:
        try:
            st = await run_blocking(os.stat, self.path)
        except FileNotFoundError:
            # Keep reading the old handle until a new file shows up
            logger.debug("tailer_file_missing", extra={"path": self.path})
            return
        if st.st_ino != self._inode:
            logger.warning("tailer_rotation_detected", extra={"path": self.path})
            await self._close()
            await self._open()
            return
        position = await run_blocking(self._fh.tell)
        if position > st.st_size:
            logger.warning("tailer_truncation_detected", extra={"path": self.path})
            await run_blocking(self._fh.seek, 0)
