"""
Structured logging for SubHub.

Every log line is a structlog event. Values bound with
``bind_request_context`` (correlation id, method, path) are merged into each
event logged while the request is being handled, including events from the
services and the audit sink.
"""

import logging
from typing import Any

import structlog
from structlog.typing import Processor

from subhub.settings import settings

SHARED_PROCESSORS: list[Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.processors.TimeStamper(fmt="iso", utc=True),
]


def _renderer() -> Processor:
    if settings.observability.log_format == "console":
        return structlog.dev.ConsoleRenderer()
    return structlog.processors.JSONRenderer()


def setup_logging() -> None:
    """Configure structlog on top of the stdlib root logger."""
    logging.basicConfig(format="%(message)s", level=settings.observability.log_level.value)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *SHARED_PROCESSORS,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            _renderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def bind_request_context(correlation_id: str, **values: Any) -> None:
    """Start a fresh logging context for one request."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(correlation_id=correlation_id, **values)


def clear_request_context() -> None:
    structlog.contextvars.clear_contextvars()
