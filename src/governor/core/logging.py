"""
Governor Logging - structured logging for rate limiters, retries and breakers.

Every component obtains its logger through :func:`get_logger` and emits
events as structured key/value pairs rather than formatted strings::

    rate_limit.blocked    key=user-42 ms_before_next=812 limiter=sliding_window
    retry.scheduled       attempt=2 delay_ms=400 error_type=ConnectionError
    circuit.opened        breaker=billing failures=5

Components are quiet by default: each one accepts ``enable_logging`` and
only emits its own events when that flag is set. The sink itself is
configured once per process with :func:`configure_logging`.

Architecture:
    ::

        configure_logging(level="INFO", json_format=True, service="api")
            │
            ▼
        structlog processor chain:
          1. TimeStamper (ISO)
          2. merge_contextvars
          3. add_log_level
          4. StackInfoRenderer / set_exc_info
          5. add_service_metadata
          6. format_exc_info / elasticsearch_compatible (JSON only)
          7. JSONRenderer | ConsoleRenderer

Examples:
    >>> from governor.core.logging import configure_logging, get_logger
    >>> configure_logging(level="DEBUG", json_format=False)
    >>> log = get_logger(__name__)
    >>> log.info("limiter.created", capacity=10)

    Scoped context:

    >>> with LogContext(tenant="acme"):
    ...     log.info("rate_limit.allowed", key="user-1")

Tags:
    logging, structlog, observability, json-logging
"""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING, Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

if TYPE_CHECKING:
    from governor.core.settings import GovernorSettings


_SERVICE_NAME = "governor"

_configured = False


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


def build_processors(json_format: bool, add_timestamp: bool = True) -> list[Processor]:
    """Build the processor chain used by :func:`configure_logging`."""
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        _add_service_metadata,
    ]

    if add_timestamp:
        processors.insert(0, structlog.processors.TimeStamper(fmt="iso", utc=True))

    if json_format:
        processors.append(structlog.processors.format_exc_info)
        processors.append(_elasticsearch_compatible)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))

    return processors


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "governor",
    add_timestamp: bool = True,
) -> None:
    """Configure structured logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: True for JSON, False for console, None for auto (JSON if not tty)
        service: Service name to include in logs
        add_timestamp: Include ISO timestamp in logs

    Example:
        # Production (JSON for log aggregation)
        configure_logging(level="INFO", json_format=True, service="billing-api")

        # Development (auto-detect: colored console if tty)
        configure_logging(level="DEBUG")
    """
    global _SERVICE_NAME, _configured
    _SERVICE_NAME = service

    if json_format is None:
        json_format = not sys.stderr.isatty()

    level_num = getattr(logging, level.upper())

    structlog.configure(
        processors=build_processors(json_format, add_timestamp),
        wrapper_class=structlog.make_filtering_bound_logger(level_num),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=level_num,
    )

    _configured = True


def configure_from_settings(settings: GovernorSettings | None = None) -> None:
    """Configure logging from :class:`~governor.core.settings.GovernorSettings`."""
    from governor.core.settings import get_settings

    settings = settings or get_settings()
    configure_logging(
        level=settings.log_level,
        json_format=settings.log_format == "json",
    )


def is_configured() -> bool:
    """Check if logging has been configured."""
    return _configured


def get_logger(name: str | None = None) -> Any:
    """Get a structured logger.

    The name is bound as the ``logger_name`` key of every event. The
    returned proxy resolves the current structlog configuration on each
    call, so module-level loggers follow later ``configure_logging`` calls.

    Args:
        name: Logger name (usually __name__)

    Returns:
        structlog BoundLogger proxy
    """
    if name is None:
        return structlog.get_logger()
    # ``logger`` is wrap_logger's own positional parameter; it cannot be an initial value
    return structlog.get_logger(name, logger_name=name)


def bind_context(**kwargs: Any) -> None:
    """Bind context to include in all subsequent logs.

    Example:
        bind_context(tenant="acme", request_id="abc123")
        logger.info("rate_limit.allowed")  # Includes tenant and request_id
    """
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
        with LogContext(breaker="billing"):
            logger.info("circuit.probe")
        # Context cleared here
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
    "configure_from_settings",
    "build_processors",
    "is_configured",
    "get_logger",
    "bind_context",
    "unbind_context",
    "clear_context",
    "LogContext",
]
