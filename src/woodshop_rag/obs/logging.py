"""Structured logging configuration.

Every log entry is a snake_case event name with key/value fields. A per-request
`request_id` is bound through `structlog.contextvars` by the API middleware and
merged into all entries emitted while that request is being served.
"""

from __future__ import annotations

import logging
import sys
import uuid

import structlog
from structlog.types import Processor

SERVICE_NAME = "woodshop_rag"


def _add_service(
    logger: structlog.BoundLogger, method_name: str, event_dict: dict
) -> dict:
    event_dict["service"] = SERVICE_NAME
    return event_dict


def configure_logging(log_level: str = "INFO", json_output: bool = True) -> None:
    """Configure structlog on top of the standard library logging module.

    Args:
        log_level: Logging level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        json_output: JSON lines for production; console renderer for development.
    """
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        _add_service,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

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
        level=getattr(logging, log_level.upper(), logging.INFO),
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_request_id(request_id: str | None = None) -> str:
    """Bind a request id to the logging context of the current task."""
    value = request_id or str(uuid.uuid4())
    structlog.contextvars.bind_contextvars(request_id=value)
    return value


def clear_request_context() -> None:
    structlog.contextvars.clear_contextvars()
