"""Circuit breaker wrapped around a retry executor.

Prevents cascading failures by failing fast once a dependency has failed
``failure_threshold`` times in a row. Each call to the breaker runs the
operation through an internal :class:`~governor.execution.retry.Retrier`,
so a single breaker-level failure means "every retry attempt failed".

States:
    CLOSED: Normal operation, calls pass through
    OPEN: Failing fast, calls rejected with CircuitOpenError
    HALF_OPEN: Recovery timeout elapsed, the next call is a probe

The breaker's state is an immutable value (:class:`Closed`, :class:`Open`
or :class:`HalfOpen`) and every change goes through the pure
:func:`transition` function, which makes the state machine testable
without running any calls.

Example:
    >>> from governor.execution.circuit_breaker import CircuitBreakerRetrier
    >>> from governor.execution.retry import RETRY_PRESETS
    >>>
    >>> breaker = CircuitBreakerRetrier(
    ...     failure_threshold=5,
    ...     recovery_timeout=30_000,
    ...     retry_config=RETRY_PRESETS["quick"],
    ...     name="billing",
    ... )
    >>> try:
    ...     invoice = breaker.execute(lambda: billing.fetch_invoice(42))
    ... except CircuitOpenError as e:
    ...     schedule_later(e.retry_after_ms)
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeVar, Union

from governor.core.clock import AsyncSleeper, Clock, Sleeper, monotonic_ms
from governor.core.errors import CircuitOpenError, require
from governor.core.logging import get_logger
from governor.core.settings import GovernorSettings, get_settings
from governor.execution.retry import Retrier, RetryConfig

T = TypeVar("T")

logger = get_logger(__name__)


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Rejecting calls
    HALF_OPEN = "half_open"  # Next call is a probe


@dataclass(frozen=True)
class Closed:
    failures: int = 0
    last_failure_time: float | None = None

    @property
    def state(self) -> CircuitState:
        return CircuitState.CLOSED


@dataclass(frozen=True)
class Open:
    """Rejecting calls since ``since`` (the time of the tripping failure)."""

    since: float
    failures: int

    @property
    def state(self) -> CircuitState:
        return CircuitState.OPEN

    @property
    def last_failure_time(self) -> float:
        return self.since


@dataclass(frozen=True)
class HalfOpen:
    failures: int
    last_failure_time: float | None = None

    @property
    def state(self) -> CircuitState:
        return CircuitState.HALF_OPEN


BreakerState = Union[Closed, Open, HalfOpen]


class Outcome(str, Enum):
    """Events that drive the breaker."""

    PROBE = "probe"  # A call arrives
    SUCCESS = "success"
    FAILURE = "failure"


def transition(
    state: BreakerState,
    outcome: Outcome,
    now: float,
    *,
    failure_threshold: int,
    recovery_timeout: float,
) -> BreakerState:
    """Compute the breaker state after ``outcome`` at time ``now`` (ms).

    - PROBE moves an Open breaker to HalfOpen once strictly more than
      ``recovery_timeout`` has passed since it opened. Any other state is
      returned unchanged.
    - SUCCESS always closes the breaker and clears the failure count.
    - FAILURE counts one more failure and opens the breaker (anchored at
      ``now``) when the count reaches ``failure_threshold``. A failure
      recorded against an Open breaker re-anchors it at ``now``.

    Example:
        >>> transition(Closed(failures=4), Outcome.FAILURE, 1000.0,
        ...            failure_threshold=5, recovery_timeout=60_000)
        Open(since=1000.0, failures=5)
    """
    if outcome == Outcome.PROBE:
        if isinstance(state, Open) and now - state.since > recovery_timeout:
            return HalfOpen(failures=state.failures, last_failure_time=state.since)
        return state

    if outcome == Outcome.SUCCESS:
        return Closed()

    failures = state.failures + 1
    if failures >= failure_threshold or isinstance(state, Open):
        return Open(since=now, failures=failures)
    if isinstance(state, HalfOpen):
        return HalfOpen(failures=failures, last_failure_time=now)
    return Closed(failures=failures, last_failure_time=now)


@dataclass
class CircuitStats:
    """Statistics for circuit breaker monitoring."""

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    rejected_requests: int = 0
    state_changes: int = 0

    @property
    def failure_rate(self) -> float:
        """Failure rate as a percentage of calls that ran."""
        total = self.successful_requests + self.failed_requests
        if total == 0:
            return 0.0
        return (self.failed_requests / total) * 100


class CircuitBreakerRetrier:
    """Circuit breaker whose calls run through a :class:`Retrier`.

    Attributes:
        name: Identifier used in log events and error messages
        failure_threshold: Consecutive failed calls before opening
        recovery_timeout: Milliseconds to stay open before probing
    """

    def __init__(
        self,
        failure_threshold: int,
        recovery_timeout: float,
        retry_config: RetryConfig,
        *,
        name: str = "default",
        clock: Clock = monotonic_ms,
        sleep: Sleeper = time.sleep,
        async_sleep: AsyncSleeper = asyncio.sleep,
    ):
        require(
            failure_threshold >= 1,
            "failure_threshold must be at least 1",
            field="failure_threshold",
            value=failure_threshold,
        )
        require(
            recovery_timeout >= 0,
            "recovery_timeout must not be negative",
            field="recovery_timeout",
            value=recovery_timeout,
        )
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self._retrier = Retrier(retry_config, clock=clock, sleep=sleep, async_sleep=async_sleep)
        self._state: BreakerState = Closed()
        self._stats = CircuitStats()

    @property
    def state(self) -> BreakerState:
        return self._state

    @property
    def failures(self) -> int:
        return self._state.failures

    @property
    def last_failure_time(self) -> float | None:
        return self._state.last_failure_time

    @property
    def stats(self) -> CircuitStats:
        return self._stats

    @property
    def retrier(self) -> Retrier:
        return self._retrier

    def get_state(self) -> CircuitState:
        """Current state kind.

        Does not apply the OPEN to HALF_OPEN timeout; that happens only
        when a call arrives.
        """
        return self._state.state

    def _apply(self, outcome: Outcome) -> None:
        previous = self._state
        self._state = transition(
            previous,
            outcome,
            self._clock(),
            failure_threshold=self.failure_threshold,
            recovery_timeout=self.recovery_timeout,
        )
        if self._state.state != previous.state:
            self._stats.state_changes += 1
            self._log_change(previous.state, self._state.state)

    def _log_change(self, old: CircuitState, new: CircuitState) -> None:
        if new == CircuitState.OPEN:
            logger.warning(
                "circuit.opened",
                breaker=self.name,
                from_state=old.value,
                failures=self._state.failures,
                recovery_timeout_ms=self.recovery_timeout,
            )
        elif new == CircuitState.HALF_OPEN:
            logger.info("circuit.half_open", breaker=self.name, failures=self._state.failures)
        else:
            logger.info("circuit.closed", breaker=self.name, from_state=old.value)

    def _admit(self) -> None:
        """Probe the state and reject the call if the breaker stays open."""
        self._stats.total_requests += 1
        self._apply(Outcome.PROBE)

        state = self._state
        if isinstance(state, Open):
            self._stats.rejected_requests += 1
            # Recovery needs strictly more than recovery_timeout, hence the extra millisecond
            retry_after = max(0.0, state.since + self.recovery_timeout - self._clock()) + 1
            raise CircuitOpenError(
                f"Circuit '{self.name}' is open, rejecting call",
                retry_after_ms=retry_after,
                failures=state.failures,
                context={"breaker": self.name},
            )

    def _record_success(self) -> None:
        self._stats.successful_requests += 1
        self._apply(Outcome.SUCCESS)

    def _record_failure(self) -> None:
        self._stats.failed_requests += 1
        self._apply(Outcome.FAILURE)

    def execute(self, fn: Callable[[], T]) -> T:
        """Run ``fn`` with retries unless the breaker is open.

        Raises:
            CircuitOpenError: If the breaker is open; ``fn`` is not called
            Exception: The operation's own error after retries are exhausted
        """
        self._admit()
        try:
            result = self._retrier.execute(fn)
        except Exception:
            self._record_failure()
            raise
        self._record_success()
        return result

    async def execute_async(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Async variant of :meth:`execute`."""
        self._admit()
        try:
            result = await self._retrier.execute_async(fn)
        except Exception:
            self._record_failure()
            raise
        self._record_success()
        return result

    def reset(self) -> None:
        """Close the breaker, clear failures and the retrier's history."""
        previous = self._state
        self._state = Closed()
        self._retrier.reset()
        if previous.state != CircuitState.CLOSED:
            self._stats.state_changes += 1
        logger.info("circuit.reset", breaker=self.name, from_state=previous.state.value)

    @classmethod
    def from_settings(
        cls,
        settings: GovernorSettings | None = None,
        retry_config: RetryConfig | None = None,
        **kwargs: Any,
    ) -> CircuitBreakerRetrier:
        """Build a breaker from ``GOVERNOR_BREAKER_*`` and ``GOVERNOR_RETRY_*`` settings."""
        settings = settings or get_settings()
        kwargs.setdefault("failure_threshold", settings.breaker_failure_threshold)
        kwargs.setdefault("recovery_timeout", settings.breaker_recovery_timeout_ms)
        return cls(
            retry_config=retry_config or RetryConfig.from_settings(settings),
            **kwargs,
        )

    def __repr__(self) -> str:
        return (
            f"CircuitBreakerRetrier(name={self.name!r}, state={self._state.state.value}, "
            f"failures={self._state.failures})"
        )


__all__ = [
    "CircuitState",
    "Closed",
    "Open",
    "HalfOpen",
    "BreakerState",
    "Outcome",
    "transition",
    "CircuitStats",
    "CircuitBreakerRetrier",
]
