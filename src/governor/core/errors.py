"""
Structured error types for governor.

Governor's own failures are few and deliberately narrow. Rate limiters and
the token bucket never raise during normal use; they return structured
allow/deny results. The retry executor re-raises the wrapped operation's
error untouched. That leaves two kinds of error governor raises itself:

- **ConfigError:** a component was constructed with impossible parameters
  (zero capacity, ``max_attempts=0``, negative delays).
- **CircuitOpenError:** a circuit breaker rejected a call without invoking
  the wrapped operation.

Both extend :class:`GovernorError`, which carries a category, a context
dict, and an optional chained cause.

Architecture:
    ::

        GovernorError (category, context, cause)
          ├── ConfigError        (CONFIG, also a ValueError)
          └── CircuitOpenError   (CIRCUIT, retry_after_ms, failures)

Examples:
    >>> error = CircuitOpenError("Circuit 'billing' is open", retry_after_ms=1500)
    >>> error.category
    <ErrorCategory.CIRCUIT: 'CIRCUIT'>
    >>> error.to_dict()["retry_after_ms"]
    1500

Guardrails:
    ❌ DON'T: Wrap the caller's exceptions in a GovernorError
    ✅ DO: Re-raise the original error so its type stays inspectable

Tags:
    error-handling, exception-hierarchy, circuit-breaker, configuration
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Categories for governor's own errors."""

    CONFIG = "CONFIG"  # Invalid construction parameters
    CIRCUIT = "CIRCUIT"  # Circuit breaker rejected the call
    INTERNAL = "INTERNAL"  # Bugs, unexpected state


class GovernorError(Exception):
    """
    Base exception for all errors raised by governor itself.

    Subclasses set ``default_category``. Metadata that helps logging
    (component name, limiter key, breaker state) goes into ``context``.

    Examples:
        >>> error = GovernorError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.with_context(component="retrier").context["component"]
        'retrier'
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        context: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.context: dict[str, Any] = dict(context or {})
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> GovernorError:
        """
        Add context to this error (fluent API).

        Usage:
            raise ConfigError("bad window").with_context(component="fixed_window")
        """
        self.context.update(kwargs)
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
        }
        if self.context:
            result["context"] = dict(self.context)
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


class ConfigError(GovernorError, ValueError):
    """Invalid parameters passed when constructing a component."""

    default_category = ErrorCategory.CONFIG

    def __init__(self, message: str, *, field: str | None = None, value: Any = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.field = field
        self.value = value
        if field is not None:
            self.context.setdefault("field", field)
            self.context.setdefault("value", value)


class CircuitOpenError(GovernorError):
    """Raised when a circuit breaker is open and rejects a call.

    Distinct from anything a wrapped operation raises, so callers can
    tell "the dependency failed" apart from "we did not even try".
    """

    default_category = ErrorCategory.CIRCUIT

    def __init__(
        self,
        message: str = "Circuit breaker is open",
        *,
        retry_after_ms: float | None = None,
        failures: int | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.retry_after_ms = retry_after_ms
        self.failures = failures

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.retry_after_ms is not None:
            result["retry_after_ms"] = self.retry_after_ms
        if self.failures is not None:
            result["failures"] = self.failures
        return result


def require(condition: bool, message: str, *, field: str, value: Any) -> None:
    """Raise :class:`ConfigError` unless ``condition`` holds."""
    if not condition:
        raise ConfigError(message, field=field, value=value)


__all__ = [
    "ErrorCategory",
    "GovernorError",
    "ConfigError",
    "CircuitOpenError",
    "require",
]
