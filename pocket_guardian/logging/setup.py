"""
Structured logging configuration
"""

import logging
import sys
from typing import Optional

import structlog
from structlog.types import EventDict, Processor

from pocket_guardian.config import Settings

# Third-party loggers that are chatty at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def setup_logging(settings: Optional[Settings] = None) -> structlog.BoundLogger:
    """
    Configure structured logging for the guardian

    Context bound with ``structlog.contextvars.bind_contextvars`` (for example
    the id of the alert session being processed) is merged into every event.

    Args:
        settings: Optional settings object (will create default if not provided)

    Returns:
        Logger named after the service
    """
    if settings is None:
        settings = Settings()

    level = getattr(logging, settings.log_level.upper())
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    def add_service_context(logger, method_name, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service", settings.service_name)
        event_dict.setdefault("environment", settings.environment)
        return event_dict

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        add_service_context,
    ]

    if settings.log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    return structlog.get_logger(settings.service_name)


def get_logger(name: Optional[str] = None) -> structlog.BoundLogger:
    return structlog.get_logger(name)
