from typing import Literal

from pydantic import Field

from shared.config import BaseServiceConfig


class Settings(BaseServiceConfig):
    # Input
    log_file_path: str = "/usr/local/etc/nginx/logs/access.log"
    tail_start_at_end: bool = False  # default reads the whole file first
    tail_eof_sleep_seconds: float = 3.0
    tail_max_consecutive_read_errors: int = 10

    # Workers / queues
    routine_num: int = Field(default=5, ge=1)
    raw_queue_multiplier: int = 3  # raw-line queue holds 3 x routine_num
    queue_poll_interval_seconds: float = 0.5
    drain_timeout_seconds: float = 10.0

    # Aggregation
    day_bucketing: Literal["ingestion", "event"] = "ingestion"
    bucket_granularity: Literal["day", "hour", "minute"] = "day"
    aggregate_scope: Literal["lifetime", "day"] = "lifetime"

    # Store
    redis_pool_multiplier: int = 2  # pool size = 2 x routine_num
    redis_keepalive_interval_seconds: float = 3.0
    redis_connect_retries: int = Field(default=6, ge=1)
    store_retry_attempts: int = Field(default=3, ge=1)
    store_retry_base_delay_seconds: float = 0.2
    store_retry_max_delay_seconds: float = 2.0

    # Metrics
    metrics_enabled: bool = True
    metrics_port: int = 8001

    otel_service_name: str = "beacon_aggregator"

    @property
    def raw_queue_size(self) -> int:
        return self.raw_queue_multiplier * self.routine_num

    @property
    def redis_max_connections(self) -> int:
        return self.redis_pool_multiplier * self.routine_num


settings = Settings()
