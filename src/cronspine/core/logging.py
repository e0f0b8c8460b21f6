"""
cron-spine logging - structured logging for scheduler replicas.

Every replica logs the same event names with the same keys, so a fleet's
output can be merged and filtered by ``schedule``, ``tick`` or ``replica``.

Manifesto:
    When several replicas race for the same claim, the only way to tell
    what happened afterwards is the logs. They must be:

    - **Structured:** JSON output for log aggregation
    - **Correlated:** ``replica`` and ``tick`` bound as context vars
    - **Flexible:** Console output for development, JSON for production

Architecture:
    ::

        configure_logging(level="INFO", json_format=True,
                          service="cronspine")
            ↓
        structlog processor chain:
          1. TimeStamper (iso)
          2. merge_contextvars
          3. add_log_level (``logger`` is bound by get_logger)
          4. add_service_metadata
          5. elasticsearch_compatible (JSON only)
          6. JSONRenderer (or ConsoleRenderer for a TTY)

Examples:
    >>> from cronspine.core.logging import configure_logging, get_logger
    >>> configure_logging(level="INFO", json_format=True)
    >>> logger = get_logger(__name__)
    >>> logger.info("enqueue.pushed", schedule="nightly", queue="reports")

Tags:
    logging, structlog, observability, json-logging, cron-spine

Doc-Types:
    - API Reference
    - Observability Guide
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

_SERVICE_NAME = "cronspine"


def _add_service_metadata(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Add service-level metadata to all logs."""
    event_dict.setdefault("service.name", _SERVICE_NAME)
    return event_dict


def _elasticsearch_compatible(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Make field names Elasticsearch/ECS compatible."""
    if "timestamp" in event_dict:
        event_dict["@timestamp"] = event_dict.pop("timestamp")

    if "level" in event_dict:
        event_dict["log.level"] = event_dict.pop("level")

    return event_dict


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "cronspine",
    add_timestamp: bool = True,
) -> None:
    """Configure structured logging for the process.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: True for JSON, False for console, None for auto (JSON if not tty)
        service: Service name to include in logs
        add_timestamp: Include ISO timestamp in logs
    """
    global _SERVICE_NAME
    _SERVICE_NAME = service

    if json_format is None:
        json_format = not sys.stdout.isatty()

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        _add_service_metadata,
    ]

    if add_timestamp:
        shared_processors.insert(0, structlog.processors.TimeStamper(fmt="iso", utc=True))

    if json_format:
        shared_processors.append(structlog.processors.format_exc_info)
        shared_processors.append(_elasticsearch_compatible)
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=shared_processors + [renderer],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        # uncached: each call writes to the current sys.stdout
        cache_logger_on_first_use=False,
    )

    # redis-py and friends log through stdlib
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper()),
    )


def get_logger(name: str | None = None) -> Any:
    """Get a structured logger (usually ``get_logger(__name__)``).

    The name is bound as ``logger`` on the lazy proxy, so module-level
    loggers pick up whatever :func:`configure_logging` installs later.
    """
    if name is None:
        return structlog.get_logger()
    # ``logger`` collides with wrap_logger's first parameter, so build the
    # same lazy proxy get_logger() would, passing it via initial_values.
    return structlog._config.BoundLoggerLazyProxy(
        None, initial_values={"logger": name}, logger_factory_args=()
    )


def bind_context(**kwargs: Any) -> None:
    """Bind context to include in all subsequent logs on this thread/task."""
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    """Remove specific keys from logging context."""
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    """Clear all bound context."""
    structlog.contextvars.clear_contextvars()


class LogContext:
    """Context manager for scoped logging context.

    Example:
        with LogContext(schedule="nightly", tick=42):
            logger.info("window.walked", due=3)
    """

    def __init__(self, **kwargs: Any):
        self._context = kwargs

    def __enter__(self) -> LogContext:
        bind_context(**self._context)
        return self

    def __exit__(self, *args) -> None:
        unbind_context(*self._context.keys())

    async def __aenter__(self) -> LogContext:
        bind_context(**self._context)
        return self

    async def __aexit__(self, *args) -> None:
        unbind_context(*self._context.keys())


__all__ = [
    "configure_logging",
    "get_logger",
    "bind_context",
    "unbind_context",
    "clear_context",
    "LogContext",
]
