import logging
from datetime import datetime
from urllib.parse import urlencode

import fakeredis
import fakeredis.aioredis
import pytest

from beacon.core.config import Settings


@pytest.fixture
def fake_redis():
    """Async fake Redis on a private server, cleared per test."""
    server = fakeredis.FakeServer()
    return fakeredis.aioredis.FakeRedis(server=server, decode_responses=True)


@pytest.fixture
def fixed_clock():
    """Ingestion clock pinned to 2024-01-01 noon local time."""
    return lambda: datetime(2024, 1, 1, 12, 0, 0)


@pytest.fixture
def beacon_line():
    """Build an nginx access-log line carrying a tracking beacon."""

    def _make(
        url: str = "http://localhost/movie/42.html",
        response_time: str = "10.5",
        client_time: str = "1704081600",
    ) -> str:
        query = urlencode({"time": client_time, "url": url, "refer": "", "ua": "Mozilla/5.0"})
        return (
            f"127.0.0.1 - - [01/Jan/2024:12:00:00 +0800] `{response_time}` "
            f'"GET /dig?{query} HTTP/1.1" 200 43 "-" "Mozilla/5.0" "-"\n'
        )

    return _make


@pytest.fixture
def make_settings(tmp_path):
    """Settings tuned for fast tests; keyword arguments override."""

    def _make(**overrides) -> Settings:
        values = dict(
            log_file_path=str(tmp_path / "access.log"),
            routine_num=2,
            tail_eof_sleep_seconds=0.02,
            queue_poll_interval_seconds=0.01,
            drain_timeout_seconds=2.0,
            redis_keepalive_interval_seconds=0.05,
            store_retry_attempts=2,
            store_retry_base_delay_seconds=0.0,
            store_retry_max_delay_seconds=0.0,
            metrics_enabled=False,
            app_environment="testing",
        )
        values.update(overrides)
        return Settings(**values)

    return _make


@pytest.fixture
def restore_root_logging():
    """Undo handler changes made by configure_logging."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers = handlers
    root.setLevel(level)
