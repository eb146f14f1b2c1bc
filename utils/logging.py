"""Structured logging with structlog.

Every record is rendered once and written both to stdout and, when
configured, appended to a log file, each line prefixed with an ISO UTC
timestamp.
"""
from __future__ import annotations

import logging
import sys
from pathlib import Path

import structlog

from config.settings import LoggingConfig


def configure_logging(config: LoggingConfig = None) -> None:
    """Configure structlog for the CLI and the API."""
    config = config or LoggingConfig()

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if config.log_file:
        Path(config.log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(config.log_file, mode="a", encoding="utf-8"))

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, config.level.upper(), logging.INFO),
        handlers=handlers,
        force=True,
    )

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    if config.format == "json":
        formatter = structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(),
            ],
        )
    else:
        formatter = structlog.stdlib.ProcessorFormatter(
            processor=structlog.dev.ConsoleRenderer(colors=False),
        )

    for handler in logging.root.handlers:
        handler.setFormatter(formatter)
