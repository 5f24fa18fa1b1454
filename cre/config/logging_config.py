"""
Structured logging configuration for observability and auditability.

All log entries include:
- Timestamp (ISO 8601)
- Log level
- Logger name
- Bound context (assessment / turn identifiers when available)
- Structured fields for machine parsing
"""

import logging
import sys
from typing import Any

import structlog
from structlog.types import Processor

from cre.config.config import get_settings


def configure_logging() -> None:
    """
    Configure structured logging for the engine.

    In production: JSON format for log aggregation systems.
    In development: Human-readable console output.
    """
    settings = get_settings()

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.log_format == "json":
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ]
        formatter = structlog.stdlib.ProcessorFormatter(
            processor=structlog.processors.JSONRenderer(),
            foreign_pre_chain=shared_processors,
        )
    else:
        processors = shared_processors + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ]
        formatter = structlog.stdlib.ProcessorFormatter(
            processor=structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()),
            foreign_pre_chain=shared_processors,
        )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(settings.log_level.upper())


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name, typically __name__ of the calling module.

    Returns:
        Configured structured logger.
    """
    return structlog.get_logger(name)


def bind_evaluation_context(
    assessment_id: str | None = None,
    turn_id: str | None = None,
    **extra: Any,
) -> None:
    """
    Bind evaluation context to all subsequent log entries in this context.

    Callers (request handlers, workers) bind the identifiers of the record
    being processed before invoking the engine.

    Args:
        assessment_id: Assessment the evaluation belongs to.
        turn_id: Normalization turn identifier, when applicable.
        **extra: Additional context fields.
    """
    structlog.contextvars.clear_contextvars()
    context = {"assessment_id": assessment_id, "turn_id": turn_id, **extra}
    structlog.contextvars.bind_contextvars(
        **{key: value for key, value in context.items() if value is not None}
    )
