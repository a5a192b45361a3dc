"""
Structured logging for the storefront backend.

Modules log through ``get_logger(__name__)`` with key/value events, e.g.
``logger.info("Order created", order_number=...)``. Output goes to stdout via
the standard library, rendered for the console in development and as JSON
elsewhere.

Each HTTP request gets a request ID, and once authenticated an actor ID, so
that order and notification events from one request can be correlated.
"""

import logging
import sys
import time
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Iterator, Optional
from uuid import uuid4

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from storefront.core.config import get_settings

_request_id: ContextVar[str] = ContextVar("storefront_request_id", default="")
_actor_id: ContextVar[Optional[str]] = ContextVar("storefront_actor_id", default=None)

# Third-party loggers that are chatty below WARNING
QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "botocore", "boto3", "httpx")


def add_correlation_ids(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Attach the current request and actor IDs to an event."""
    request_id = _request_id.get()
    if request_id:
        event_dict.setdefault("request_id", request_id)
    actor_id = _actor_id.get()
    if actor_id:
        event_dict.setdefault("actor_id", actor_id)
    return event_dict


def configure_logging() -> None:
    """
    Configure structlog and the standard library root logger.

    Safe to call more than once; the last call wins.
    """
    settings = get_settings()
    level = getattr(logging, settings.log_level)

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_correlation_ids,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if settings.is_development:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))
    else:
        processors.append(structlog.processors.JSONRenderer(default=str))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level, force=True)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger named after the calling module."""
    return structlog.get_logger(name)


def set_request_id(request_id: Optional[str] = None) -> str:
    """
    Set the correlation ID for the current request.

    Args:
        request_id: ID supplied by the client; a UUID is generated if absent

    Returns:
        The request ID in effect
    """
    request_id = request_id or str(uuid4())
    _request_id.set(request_id)
    return request_id


def get_request_id() -> str:
    return _request_id.get()


def set_actor_id(actor_id: Optional[str]) -> None:
    """Record the authenticated customer or administrator for this request."""
    _actor_id.set(actor_id)


def clear_context() -> None:
    """Reset correlation IDs once a request has been handled."""
    _request_id.set("")
    _actor_id.set(None)
    structlog.contextvars.clear_contextvars()


@contextmanager
def log_performance(
    logger: structlog.stdlib.BoundLogger,
    operation: str,
    slow_threshold_ms: float = 500.0,
    **context: Any,
) -> Iterator[None]:
    """
    Log the duration of a block, as a warning once it exceeds the threshold.

    Failures are logged with their exception type and re-raised.

    Example:
        >>> with log_performance(logger, "order_creation", item_count=2):
        ...     order = await repository.create_order(order)
    """
    started = time.perf_counter()
    try:
        yield
    except Exception as e:
        logger.error(
            "Operation failed",
            operation=operation,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
            error_type=type(e).__name__,
            **context,
        )
        raise

    duration_ms = round((time.perf_counter() - started) * 1000, 2)
    log = logger.warning if duration_ms > slow_threshold_ms else logger.debug
    log("Operation completed", operation=operation, duration_ms=duration_ms, **context)
