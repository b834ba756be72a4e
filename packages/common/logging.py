"""Structured logging for the API, CLI and worker.

All modules log through structlog with snake_case event names and keyword
context. Request-scoped values (the request id, the calling user) live in
structlog's contextvars and are merged into every event emitted while a
request is being served.
"""

from __future__ import annotations

import logging
import sys
from typing import Literal, TextIO
from uuid import uuid4

import structlog
from structlog.contextvars import bind_contextvars, get_contextvars, unbind_contextvars

Severity = Literal["low", "medium", "high"]

# Chatty third-party loggers kept at WARNING unless debugging
_NOISY_LOGGERS = ("uvicorn.access", "psycopg.pool", "arq.jobs")


def get_request_id() -> str | None:
    """Request id bound to the current context, if any."""
    value = get_contextvars().get("request_id")
    return str(value) if value is not None else None


def bind_request(request_id: str | None = None, *, user_id: str | None = None) -> str:
    """Bind request-scoped context for subsequent log events.

    Args:
        request_id: Incoming id to propagate; a new UUID is generated if None.
        user_id: Calling user, when known.

    Returns:
        The request id that was bound.
    """
    if not request_id:
        request_id = str(uuid4())
    bind_contextvars(request_id=request_id)
    if user_id:
        bind_contextvars(user_id=user_id)
    return request_id


def clear_request() -> None:
    """Drop request-scoped context."""
    unbind_contextvars("request_id", "user_id")


def configure_logging(
    *,
    debug: bool = False,
    json_output: bool = False,
    log_stream: TextIO | None = None,
) -> None:
    """Route structlog and stdlib logging through one formatter.

    Call once per entry point (API, CLI, worker).

    Args:
        debug: Log at DEBUG and keep third-party loggers verbose.
        json_output: One JSON object per line instead of the console renderer.
        log_stream: Output stream; defaults to ``sys.stderr``.
    """
    stream = log_stream or sys.stderr

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # uvicorn, arq and psycopg log through stdlib; same renderer for them.
    handler = logging.StreamHandler(stream)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if debug else logging.INFO)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if debug else logging.WARNING)


def get_logger(**initial_context: object) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger with ``initial_context`` bound."""
    logger: structlog.stdlib.BoundLogger = structlog.get_logger(**initial_context)
    return logger


def log_failure(
    logger: structlog.stdlib.BoundLogger,
    event: str,
    exc: BaseException,
    *,
    severity: Severity,
    **context: object,
) -> None:
    """Log a handled infrastructure failure with a severity tag.

    ``medium`` marks fail-open read paths; ``high`` marks lost writes that
    affect cost control.
    """
    logger.error(
        event,
        severity=severity,
        error=str(exc),
        error_type=type(exc).__name__,
        **context,
    )
