"""Structured logging setup using structlog."""

import logging
import sys
from typing import Literal, TextIO

import structlog


def setup_logging(
    level: str = "INFO",
    format: Literal["json", "console"] = "json",
    stream: TextIO | None = None,
) -> None:
    """Configure structured logging for the relay.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        format: Output format - 'json' for production, 'console' for development
        stream: Destination stream, stderr by default
    """
    logging.basicConfig(
        format="%(message)s",
        stream=stream or sys.stderr,
        level=getattr(logging, level.upper()),
        force=True,
    )

    # asyncio reports every reset peer at DEBUG; sessions log those themselves
    logging.getLogger("asyncio").setLevel(max(logging.INFO, logging.root.level))

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if format == "json":
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(colors=True),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a logger instance with the given name.

    Args:
        name: Logger name, typically __name__

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)


def bind_call(call_id: str) -> None:
    """Bind the call id to every log line emitted by the current task.

    asyncio copies the context into each task, so the binding made inside
    a session task does not leak into other calls.
    """
    structlog.contextvars.bind_contextvars(call_id=call_id)
