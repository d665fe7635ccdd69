from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from typing import Optional, Sequence

from prometheus_client import start_http_server

from beacon.core.config import Settings, settings
from beacon.core.logger import configure_logging, get_logger
from beacon.domain.errors import BeaconAggregatorError
from beacon.infrastructure.redis.client import connect_with_retry
from beacon.pipeline.runner import BeaconPipeline

logger = get_logger("beacon.main")


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="beacon-aggregator",
        description="Tail an access log and aggregate beacon timings into Redis.",
    )
    parser.add_argument("--log-file-path", "--logFilePath", dest="log_file_path")
    parser.add_argument("--routine-num", "--routineNum", dest="routine_num", type=int)
    parser.add_argument("-l", dest="app_log_file", help="runtime log target file path")
    return parser.parse_args(argv)


def build_settings(args: argparse.Namespace, base: Settings = settings) -> Settings:
    """Flags override environment-derived settings when given."""
    overrides = {k: v for k, v in vars(args).items() if v is not None}
    if not overrides:
        return base
    return Settings.model_validate({**base.model_dump(), **overrides})


def _install_signal_handlers(stop_event: asyncio.Event) -> dict:
    """Route SIGINT/SIGTERM to the stop event; returns the previous handlers."""
    loop = asyncio.get_running_loop()
    # First signal drains, second cancels everything
    state = {"signalled": False}

    def _on_signal(signum, frame):  # noqa: D401
        if not state["signalled"]:
            logger.info("signal_received", extra={"signal": signum, "action": "drain"})
            loop.call_soon_threadsafe(stop_event.set)
            state["signalled"] = True
        else:
            logger.warning(
                "second_signal_exit", extra={"signal": signum, "action": "cancel"}
            )
            for task in asyncio.all_tasks(loop):
                loop.call_soon_threadsafe(task.cancel)

    previous = {}
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            previous[sig] = signal.signal(sig, _on_signal)
        except (ValueError, OSError):
            logger.debug("signal_handler_install_failed", extra={"signal": sig})
    return previous


async def _run(config: Settings) -> int:
    logger.info(
        "aggregator_starting",
        extra={
            "log_file_path": config.log_file_path,
            "routine_num": config.routine_num,
        },
    )
    if config.metrics_enabled:
        start_http_server(config.metrics_port)
        logger.info("metrics_listening", extra={"port": config.metrics_port})

    redis = await connect_with_retry(config)
    stop_event = asyncio.Event()
    previous_handlers = _install_signal_handlers(stop_event)
    try:
        await BeaconPipeline(config, redis, stop_event).run()
    finally:
        for sig, handler in previous_handlers.items():
            if handler is not None:
                signal.signal(sig, handler)
        await redis.aclose()
        logger.info("aggregator_stopped")
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    config = build_settings(parse_args(argv))
    configure_logging(config, force=True)
    try:
        return asyncio.run(_run(config))
    except BeaconAggregatorError as exc:
        logger.critical("fatal_error", extra={"error": str(exc)})
        return 1
    except asyncio.CancelledError:
        logger.warning("aggregator_cancelled")
        return 1
    except KeyboardInterrupt:
        logger.info("keyboard_interrupt_shutdown")
        return 130
    except Exception:  # noqa: BLE001
        logger.exception("fatal_error_main")
        return 1


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
