"""Logging configuration.

Routes structlog through the standard library so third-party loggers
(uvicorn, sqlalchemy, httpx) share one output stream.
"""

import logging
import sys

import structlog

from kitchen_bookings.infrastructure.config import settings


def configure_logging(log_level: str | None = None, json_logs: bool | None = None) -> None:
    """Configure stdlib logging and structlog processors.

    Args:
        log_level: Level name, defaults to settings.log_level.
        json_logs: Render JSON lines instead of console output,
            defaults to settings.log_json.
    """
    level = getattr(logging, (log_level or settings.log_level).upper(), logging.INFO)
    use_json = settings.log_json if json_logs is None else json_logs

    logging.basicConfig(
        level=level,
        format="%(message)s",
        stream=sys.stderr,
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if use_json
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
