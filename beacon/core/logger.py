from __future__ import annotations

import logging

from shared.logging.json import configure_logging as _shared_configure_logging

from .config import Settings, settings

_configured = False


def configure_logging(config: Settings | None = None, force: bool = False):
    """Install the shared handlers once; ``force`` re-applies new settings."""
    global _configured
    if _configured and not force:
        return
    config = config or settings
    _shared_configure_logging(
        service=config.otel_service_name,
        environment=config.app_environment,
        level=config.app_log_level,
        redaction_patterns=config.app_log_redaction_patterns,
        log_file=config.app_log_file,
    )
    _configured = True


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
