"""Shared utilities and components for the aggregator service."""

from .config import BaseLoggingConfig, BaseRedisConfig, BaseServiceConfig
from .constants import Environment, RedisKeys

__all__ = [
    "Environment",
    "RedisKeys",
    "BaseServiceConfig",
    "BaseLoggingConfig",
    "BaseRedisConfig",
]
