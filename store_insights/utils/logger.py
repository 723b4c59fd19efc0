"""
Structured logging configuration.

Two output modes share one processor chain:

    - JSON lines on stdout, for batch runs and log shipping
    - Human-readable lines routed through a stdlib handler (the CLI passes a
      ``RichHandler``)

Run identifiers (``analysis_id``, ``store_id``, ``pipeline``) and the current
``stage`` are bound with ``LogContext`` and appear on every event logged
inside it, including events from agents and providers.
"""

import logging
import sys
from typing import Any, Optional

import structlog
from structlog.types import EventDict, Processor

# Prompts and model replies can run to tens of kilobytes.
MAX_VALUE_CHARS = 500

QUIET_LOGGERS = ("httpx", "httpcore", "anthropic")


def truncate_long_values(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Cap string field values at ``MAX_VALUE_CHARS``."""
    for key, value in event_dict.items():
        if key != "event" and isinstance(value, str) and len(value) > MAX_VALUE_CHARS:
            event_dict[key] = f"{value[:MAX_VALUE_CHARS]}... [{len(value)} chars]"
    return event_dict


def shared_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        truncate_long_values,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
    ]


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: Optional[str] = None,
    handler: Optional[logging.Handler] = None,
) -> None:
    """
    Configure application-wide structured logging.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        json_format: Whether to output logs in JSON format.
        log_file: Optional file path that also receives stdlib log records.
        handler: Route events through this stdlib handler instead of
            printing them; used for console output.
    """
    numeric_level = getattr(logging, level.upper())
    processors = shared_processors()

    if json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=handler is None))

    if handler is not None:
        logger_factory = structlog.stdlib.LoggerFactory()
        handlers = [handler]
    else:
        logger_factory = structlog.PrintLoggerFactory()
        handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=logger_factory,
        cache_logger_on_first_use=False,
    )

    logging.basicConfig(
        format="%(message)s",
        datefmt="[%X]",
        level=numeric_level,
        handlers=handlers,
        force=True,
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))


def get_logger(name: str) -> structlog.BoundLogger:
    """
    Get a structured logger for the given module name.

    Args:
        name: Logger name, typically __name__.

    Returns:
        Configured structlog logger instance.
    """
    return structlog.get_logger(name)


class LogContext:
    """
    Context manager binding run-scoped fields to every log event.

    Nested contexts may rebind a key; the outer value comes back on exit.

    Example:
        >>> with LogContext(analysis_id="a-1", store_id=7):
        ...     with LogContext(stage="collector"):
        ...         logger.info("Stage started")
    """

    def __init__(self, **kwargs):
        self.context = kwargs
        self._previous: dict[str, Any] = {}
        self._bound = False

    def __enter__(self):
        current = structlog.contextvars.get_contextvars()
        self._previous = {k: current[k] for k in self.context if k in current}
        structlog.contextvars.bind_contextvars(**self.context)
        self._bound = True
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._bound:
            structlog.contextvars.unbind_contextvars(*self.context.keys())
            if self._previous:
                structlog.contextvars.bind_contextvars(**self._previous)
            self._bound = False
