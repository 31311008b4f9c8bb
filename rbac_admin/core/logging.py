"""
Logging setup.

Application code logs through ``structlog.get_logger()``; the stdlib
``logging`` module is routed through the same level so uvicorn and the
middleware loggers share the configuration.
"""

import logging
import sys

import structlog

from rbac_admin.core.config import Settings
from rbac_admin.utils.context import add_request_context


def configure_logging(settings: Settings) -> None:
    """Configure structlog and stdlib logging from settings."""
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=level,
    )

    if settings.log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            add_request_context,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )
