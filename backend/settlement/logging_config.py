"""
Structured logging configuration.

Uses structlog for JSON-formatted logs with request correlation IDs.
"""
import logging
import os
import sys
from typing import Any

import structlog

from settlement.config import get_settings


def add_app_context(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Stamp every event with the service name and version."""
    settings = get_settings()
    event_dict["app_name"] = settings.APP_NAME
    event_dict["app_version"] = settings.APP_VERSION
    return event_dict


def setup_logging() -> None:
    """
    Configure structlog and the standard library root logger.

    Sets up:
    - JSON (or console) rendering of structured events
    - request_id propagation through contextvars
    - stdout plus LOG_DIR/server.log sinks
    """
    settings = get_settings()

    renderer = (
        structlog.processors.JSONRenderer()
        if settings.LOG_JSON
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            add_app_context,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    # structlog has already rendered the event; handlers emit it verbatim
    formatter = logging.Formatter("%(message)s")

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(formatter)
    root_logger.addHandler(stream_handler)

    os.makedirs(settings.LOG_DIR, exist_ok=True)
    file_handler = logging.FileHandler(os.path.join(settings.LOG_DIR, "server.log"))
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)

    # Suppress noisy loggers
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.DEBUG else logging.WARNING
    )

    structlog.get_logger(__name__).info(
        "logging_configured",
        log_level=settings.LOG_LEVEL,
        json=settings.LOG_JSON,
    )
