"""
Structured logging setup shared by every component.

The JSON processor chain is installed at import time so that library use
without any explicit setup still produces structured output; applications
call configure_logging() to apply the LoggingConfig (level and renderer).
"""

import logging
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from aurasense.core.config import LoggingConfig

_SHARED_PROCESSORS: list[structlog.typing.Processor] = [
    structlog.stdlib.filter_by_level,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.stdlib.PositionalArgumentsFormatter(),
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.format_exc_info,
    structlog.processors.UnicodeDecoder(),
]

structlog.configure(
    processors=[*_SHARED_PROCESSORS, structlog.processors.JSONRenderer()],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger("aurasense")


def configure_logging(config: "LoggingConfig") -> None:
    """Apply level, renderer and optional file output from configuration."""
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if config.enable_file_logging:
        Path(config.log_file_path).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(config.log_file_path))

    logging.basicConfig(format="%(message)s", level=config.level, handlers=handlers, force=True)

    renderer: structlog.typing.Processor = (
        structlog.dev.ConsoleRenderer()
        if config.format == "console"
        else structlog.processors.JSONRenderer()
    )
    structlog.configure(
        processors=[*_SHARED_PROCESSORS, renderer],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
