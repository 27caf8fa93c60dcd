"""Structured logging for AHSPCalc.

structlog renders through the standard library, so the module-level
``logging.getLogger(__name__)`` loggers used across the package share one
output format and one level, both taken from AppConfig.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Any

import structlog

from ahspcalc.config import AppConfig, log_format_from_env, log_level_from_env

LOG_FILE = Path("logs/ahspcalc.log")


def build_processors(log_format: str) -> list[Any]:
    """structlog processor chain ending in a JSON or console renderer."""
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]
    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())
    return processors


def configure_logging(config: AppConfig | None = None) -> None:
    """Apply ``config.log_level`` and ``config.log_format`` to structlog and the root logger.

    Without a config (e.g. DATABASE_URL not set yet) the same settings are
    read straight from LOG_LEVEL / LOG_FORMAT.
    """
    if config is None:
        level, log_format = log_level_from_env(), log_format_from_env()
    else:
        level, log_format = config.log_level.upper(), config.log_format.lower()

    structlog.configure(
        processors=build_processors(log_format),
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if LOG_FILE.parent.exists():
        handlers.append(logging.FileHandler(LOG_FILE))

    logging.basicConfig(format="%(message)s", handlers=handlers, level=level)
    # basicConfig is a no-op once the root logger has handlers
    logging.getLogger().setLevel(level)
