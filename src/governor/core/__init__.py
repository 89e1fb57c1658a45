"""Governor core primitives: clocks, errors, logging and settings."""

from governor.core.clock import AsyncSleeper, Clock, ManualClock, Sleeper, monotonic_ms
from governor.core.errors import CircuitOpenError, ConfigError, ErrorCategory, GovernorError
from governor.core.logging import (
    LogContext,
    bind_context,
    clear_context,
    configure_from_settings,
    configure_logging,
    get_logger,
    unbind_context,
)
from governor.core.settings import GovernorSettings, clear_settings_cache, get_settings

__all__ = [
    # Clock
    "Clock",
    "Sleeper",
    "AsyncSleeper",
    "ManualClock",
    "monotonic_ms",
    # Errors
    "ErrorCategory",
    "GovernorError",
    "ConfigError",
    "CircuitOpenError",
    # Logging
    "configure_logging",
    "configure_from_settings",
    "get_logger",
    "bind_context",
    "unbind_context",
    "clear_context",
    "LogContext",
    # Settings
    "GovernorSettings",
    "get_settings",
    "clear_settings_cache",
]
