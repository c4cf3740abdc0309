"""
Structured logging for the cancellation engine.

Every event carries the correlation ID of the cancellation request it belongs
to and, when known, the requester who initiated it. Development renders to
the console; every other environment emits JSON lines.
"""

import logging
import sys
import time
from contextvars import ContextVar
from typing import Any, Optional
from uuid import uuid4

import structlog
from structlog.types import EventDict, Processor

from ancillary.core.config import get_settings

correlation_id_ctx: ContextVar[str] = ContextVar("correlation_id", default="")
requester_id_ctx: ContextVar[Optional[str]] = ContextVar("requester_id", default=None)


def add_correlation_id(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Tag the event with the current request's correlation ID."""
    correlation_id = correlation_id_ctx.get()
    if correlation_id:
        event_dict["correlation_id"] = correlation_id
    return event_dict


def add_requester_id(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Tag the event with the requester of the current cancellation."""
    requester_id = requester_id_ctx.get()
    if requester_id:
        event_dict["requester_id"] = requester_id
    return event_dict


def configure_logging() -> None:
    """
    Install the structlog pipeline and set the root level from settings.

    Meant to be called once by the embedding application at startup.
    """
    settings = get_settings()

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        add_correlation_id,
        add_requester_id,
        structlog.processors.format_exc_info,
    ]

    if settings.is_development:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))
    else:
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level),
    )
    # boto3 is chatty at INFO when it resolves endpoints
    logging.getLogger("botocore").setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """Bind a correlation ID to the current context, generating one if absent."""
    correlation_id = correlation_id or str(uuid4())
    correlation_id_ctx.set(correlation_id)
    return correlation_id


def get_correlation_id() -> str:
    return correlation_id_ctx.get()


def set_requester_id(requester_id: Optional[str]) -> None:
    requester_id_ctx.set(requester_id)


def clear_context() -> None:
    """Reset the correlation and requester context between requests."""
    correlation_id_ctx.set("")
    requester_id_ctx.set(None)


class PerformanceLogger:
    """
    Time a block and log its outcome.

    Completion is logged at info, or at warning once it runs past
    ``slow_threshold_ms``. A block that raises is logged at error and the
    exception propagates.
    """

    def __init__(
        self,
        logger: structlog.stdlib.BoundLogger,
        operation: str,
        slow_threshold_ms: float = 500.0,
        **context: Any,
    ):
        self.logger = logger
        self.operation = operation
        self.slow_threshold_ms = slow_threshold_ms
        self.context = context
        self.start_time: Optional[float] = None

    def __enter__(self) -> "PerformanceLogger":
        self.start_time = time.perf_counter()
        self.logger.debug("Operation started", operation=self.operation, **self.context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self.start_time is None:
            return

        elapsed = round((time.perf_counter() - self.start_time) * 1000, 2)
        if exc_type is not None:
            self.logger.error(
                "Operation failed",
                operation=self.operation,
                duration_ms=elapsed,
                error_type=exc_type.__name__,
                **self.context,
            )
            return

        emit = self.logger.warning if elapsed > self.slow_threshold_ms else self.logger.info
        emit("Operation completed", operation=self.operation, duration_ms=elapsed, **self.context)


def log_performance(
    logger: structlog.stdlib.BoundLogger,
    operation: str,
    **context: Any,
) -> PerformanceLogger:
    """
    Shorthand for ``PerformanceLogger(logger, operation, **context)``.

    Example:
        >>> with log_performance(logger, "vendor_cancel", provider="mozio"):
        ...     response = await client.cancel(product, quote)
    """
    return PerformanceLogger(logger, operation, **context)
