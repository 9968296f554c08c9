"""Structured logging configuration using structlog."""
from __future__ import annotations

import logging
import sys
from typing import Any, Optional

import structlog

from deepclaw.config import LOG_JSON, LOG_LEVEL


def configure_logging(
    level: str = LOG_LEVEL,
    json_format: bool = LOG_JSON,
    service_name: str = "deepclaw",
) -> None:
    """
    Configure structured logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: If True, output JSON; if False, output colored console format
        service_name: Name of the service bound to every log entry
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level)

    shared_processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if json_format:
        processors = [
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [
            *shared_processors,
            structlog.dev.ConsoleRenderer(colors=True),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(service=service_name)


def get_logger(name: Optional[str] = None) -> Any:
    return structlog.get_logger(name)


def bind_request_context(**fields: Any) -> None:
    """Bind request-scoped fields (request_id, agent_id, ...) to every log entry until cleared."""
    structlog.contextvars.bind_contextvars(**fields)


def clear_request_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)
