# src/ogmalchemy/logging_config.py
"""
structlog configuration for ogmalchemy.

Two output modes:
- Human (default): console renderer on stderr
- JSON (``log_json=True``): structured JSON lines on stderr
"""

from __future__ import annotations

import logging
import sys
from typing import Union

import structlog


def configure_logging(
    level: Union[str, int] = "INFO",
    *,
    log_json: bool = False,
) -> None:
    """
    Configure structlog processors and route them through stdlib logging.

    Args:
        level: Level of the ``ogmalchemy`` logger (name or number)
        log_json: Use the JSON renderer instead of the console renderer
    """
    ogm_level = logging.getLevelName(level.upper()) if isinstance(level, str) else level
    if not isinstance(ogm_level, int):
        raise ValueError(f"Unknown log level {level!r}")

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if log_json:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.WARNING)

    logging.getLogger("ogmalchemy").setLevel(ogm_level)
    logging.getLogger("neo4j").setLevel(logging.WARNING)


def configure_from_settings(settings) -> None:
    """Configure logging from ``OGMSettings.log_level`` and ``OGMSettings.log_json``."""
    configure_logging(settings.log_level, log_json=settings.log_json)
