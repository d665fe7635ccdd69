"""Shared configuration base classes.

Logging and Redis settings are split into small mixins so the service
settings read as a flat list of environment variables.
"""

from pydantic_settings import BaseSettings


class BaseLoggingConfig(BaseSettings):
    """Common logging configuration."""

    app_log_level: str = "INFO"
    app_log_redaction_patterns: list[str] = [
        "password",
        "token",
        "secret",
        "authorization",
    ]
    app_environment: str = "production"
    # Runtime log target; stream only when unset
    app_log_file: str | None = None


class BaseRedisConfig(BaseSettings):
    """Connection settings for the aggregate store."""

    redis_host: str = "127.0.0.1"
    redis_port: int = 6379
    redis_db: int = 0
    redis_password: str | None = None


class BaseServiceConfig(BaseLoggingConfig, BaseRedisConfig):
    """Base configuration combining logging and Redis settings.

    The otel_service_name should be overridden by the service.
    """

    otel_service_name: str = "unknown"


__all__ = ["BaseLoggingConfig", "BaseRedisConfig", "BaseServiceConfig"]
