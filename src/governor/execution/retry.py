"""Retry with configurable backoff strategies, jitter, and retry predicates.

Re-invokes a fallible operation up to ``max_attempts`` times. Between
attempts the executor sleeps for a delay computed by :func:`calculate_delay`;
whether a given failure is worth retrying is decided by a retry condition
(see :class:`RetryConditions`). When retries run out, or the condition says
stop, the error raised by the *last* attempt propagates to the caller
unchanged.

Delays are in milliseconds. Sleepers receive seconds.

Example:
    >>> from governor.execution.retry import Retrier, RetryConfig, RetryConditions
    >>>
    >>> retrier = Retrier(RetryConfig(
    ...     max_attempts=5,
    ...     base_delay=200,
    ...     retry_condition=RetryConditions.or_(
    ...         RetryConditions.network_errors,
    ...         RetryConditions.server_errors,
    ...     ),
    ... ))
    >>> retrier.execute(lambda: fetch_quote("ACME"))
"""

from __future__ import annotations

import asyncio
import dataclasses
import errno
import functools
import inspect
import math
import random
import socket
import time
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Generic, TypeVar

from governor.core.clock import AsyncSleeper, Clock, Sleeper, monotonic_ms
from governor.core.errors import require
from governor.core.logging import get_logger
from governor.core.settings import GovernorSettings, get_settings

T = TypeVar("T")

RetryCondition = Callable[[BaseException, int], bool]
OnRetry = Callable[[BaseException, int, int], None]

logger = get_logger(__name__)


class RetryStrategy(str, Enum):
    """Backoff strategies mapping attempt number to delay."""

    FIXED = "fixed"
    LINEAR = "linear"
    EXPONENTIAL = "exponential"
    FIBONACCI = "fibonacci"


def fibonacci(n: int) -> int:
    """Fibonacci number with ``fibonacci(1) == fibonacci(2) == 1``."""
    if n <= 2:
        return 1
    a, b = 1, 1
    for _ in range(3, n + 1):
        a, b = b, a + b
    return b


def calculate_delay(
    attempt: int,
    strategy: RetryStrategy,
    base_delay: float,
    backoff_factor: float,
    max_delay: float,
    jitter: bool,
    rng: Callable[[], float] = random.random,
) -> int:
    """Calculate the delay in milliseconds after a failed ``attempt`` (1-based).

    The raw delay is clamped to ``max_delay``; with ``jitter`` it is then
    scaled by a uniform factor in ``[0.5, 1.0]``; finally it is floored.

    Example:
        >>> [calculate_delay(n, RetryStrategy.EXPONENTIAL, 100, 2, 10_000, False) for n in range(1, 5)]
        [100, 200, 400, 800]
    """
    if strategy == RetryStrategy.FIXED:
        delay = base_delay
    elif strategy == RetryStrategy.LINEAR:
        delay = base_delay * attempt
    elif strategy == RetryStrategy.EXPONENTIAL:
        try:
            delay = base_delay * backoff_factor ** (attempt - 1)
        except OverflowError:
            delay = max_delay
    elif strategy == RetryStrategy.FIBONACCI:
        delay = base_delay * fibonacci(attempt)
    else:
        delay = base_delay

    delay = min(delay, max_delay)

    if jitter:
        delay = delay * (0.5 + rng() * 0.5)

    return math.floor(delay)


# =============================================================================
# Retry conditions
# =============================================================================

NETWORK_ERROR_CODES = frozenset({"ECONNRESET", "ENOTFOUND", "ECONNREFUSED", "ETIMEDOUT"})


def _status_of(error: BaseException) -> int | None:
    """Find an HTTP status on the error or its ``response``."""
    for source in (getattr(error, "response", None), error):
        if source is None:
            continue
        for attr in ("status_code", "status"):
            status = getattr(source, attr, None)
            if isinstance(status, int):
                return status
    return None


class RetryConditions:
    """Built-in retry predicates.

    Every predicate takes ``(error, attempt)`` and returns True when the
    failure should be retried.
    """

    @staticmethod
    def always(error: BaseException, attempt: int = 0) -> bool:
        return True

    @staticmethod
    def never(error: BaseException, attempt: int = 0) -> bool:
        return False

    @staticmethod
    def network_errors(error: BaseException, attempt: int = 0) -> bool:
        """Connection/timeout failures, POSIX-style codes, or a telling message.

        ``socket.gaierror`` (failed DNS lookup) counts as ``ENOTFOUND``.
        Errors whose code is not a known network code still match on a
        message mentioning "network" or "timeout".
        """
        if isinstance(error, (ConnectionError, TimeoutError, socket.gaierror)):
            return True

        code = getattr(error, "code", None)
        if isinstance(code, str) and code in NETWORK_ERROR_CODES:
            return True

        err_no = getattr(error, "errno", None)
        if isinstance(err_no, int) and errno.errorcode.get(err_no) in NETWORK_ERROR_CODES:
            return True

        message = str(error).lower()
        return "network" in message or "timeout" in message

    @staticmethod
    def server_errors(error: BaseException, attempt: int = 0) -> bool:
        """HTTP 5xx responses."""
        status = _status_of(error)
        return status is not None and 500 <= status < 600

    @staticmethod
    def http_status(codes: Iterable[int]) -> RetryCondition:
        """Retry when the error carries one of ``codes``."""
        wanted = frozenset(codes)

        def condition(error: BaseException, attempt: int = 0) -> bool:
            return _status_of(error) in wanted

        return condition

    @staticmethod
    def error_types(names: Iterable[str | type[BaseException]]) -> RetryCondition:
        """Retry on errors matching a class name, a ``name`` attribute, or a class."""
        names = tuple(names)
        type_names = {n for n in names if isinstance(n, str)}
        classes = tuple(n for n in names if isinstance(n, type))

        def condition(error: BaseException, attempt: int = 0) -> bool:
            if classes and isinstance(error, classes):
                return True
            return type(error).__name__ in type_names or getattr(error, "name", None) in type_names

        return condition

    @staticmethod
    def or_(*conditions: RetryCondition) -> RetryCondition:
        """Retry if any condition says so."""

        def condition(error: BaseException, attempt: int = 0) -> bool:
            return any(c(error, attempt) for c in conditions)

        return condition

    @staticmethod
    def and_(*conditions: RetryCondition) -> RetryCondition:
        """Retry only if every condition says so."""

        def condition(error: BaseException, attempt: int = 0) -> bool:
            return all(c(error, attempt) for c in conditions)

        return condition


# =============================================================================
# Configuration and results
# =============================================================================


@dataclass(frozen=True)
class RetryConfig:
    """Retry policy.

    Attributes:
        max_attempts: Total invocations allowed, including the first
        base_delay: Base delay in milliseconds
        max_delay: Delay cap in milliseconds
        backoff_factor: Multiplier for exponential backoff
        jitter: Scale each delay by a random factor in [0.5, 1.0]
        retry_condition: ``(error, attempt) -> bool``; False stops retrying
        on_retry: Called as ``(error, attempt, delay_ms)`` before each sleep
        enable_logging: Emit retry log events
        strategy: Backoff strategy used between attempts
    """

    max_attempts: int
    base_delay: float = 1000
    max_delay: float = 30000
    backoff_factor: float = 2.0
    jitter: bool = True
    retry_condition: RetryCondition = RetryConditions.always
    on_retry: OnRetry | None = None
    enable_logging: bool = False
    strategy: RetryStrategy = RetryStrategy.EXPONENTIAL

    def __post_init__(self) -> None:
        require(
            self.max_attempts >= 1,
            "max_attempts must be at least 1",
            field="max_attempts",
            value=self.max_attempts,
        )
        require(self.base_delay >= 0, "base_delay must not be negative", field="base_delay", value=self.base_delay)
        require(self.max_delay >= 0, "max_delay must not be negative", field="max_delay", value=self.max_delay)
        require(
            self.backoff_factor > 0,
            "backoff_factor must be positive",
            field="backoff_factor",
            value=self.backoff_factor,
        )

    def replace(self, **changes: Any) -> RetryConfig:
        """Return a copy with ``changes`` applied."""
        return dataclasses.replace(self, **changes)

    def delay_for(self, attempt: int, rng: Callable[[], float] = random.random) -> int:
        """Delay in milliseconds after failed ``attempt`` under this policy."""
        return calculate_delay(
            attempt,
            self.strategy,
            self.base_delay,
            self.backoff_factor,
            self.max_delay,
            self.jitter,
            rng,
        )

    @classmethod
    def from_settings(cls, settings: GovernorSettings | None = None, **overrides: Any) -> RetryConfig:
        """Build a config from ``GOVERNOR_RETRY_*`` settings."""
        settings = settings or get_settings()
        values: dict[str, Any] = {
            "max_attempts": settings.retry_max_attempts,
            "base_delay": settings.retry_base_delay_ms,
            "max_delay": settings.retry_max_delay_ms,
            "backoff_factor": settings.retry_backoff_factor,
            "jitter": settings.retry_jitter,
        }
        values.update(overrides)
        return cls(**values)


@dataclass(frozen=True)
class RetryAttempt:
    """A failed attempt that was followed by a retry."""

    attempt: int
    error: BaseException
    delay: int
    timestamp: float


@dataclass
class RetryResult(Generic[T]):
    """Outcome of a retried call that never raises."""

    success: bool
    attempts: int
    total_time: float
    result: T | None = None
    error: BaseException | None = None
    history: list[RetryAttempt] = field(default_factory=list)


# =============================================================================
# Retry loop
# =============================================================================


def _next_delay(
    config: RetryConfig,
    error: BaseException,
    attempt: int,
    history: list[RetryAttempt],
    clock: Clock,
) -> int | None:
    """Record a failure. Returns the delay before the next attempt, or None to stop."""
    if attempt >= config.max_attempts or not config.retry_condition(error, attempt):
        if config.enable_logging:
            logger.warning(
                "retry.gave_up",
                attempt=attempt,
                max_attempts=config.max_attempts,
                error_type=type(error).__name__,
                error=str(error),
            )
        return None

    delay = config.delay_for(attempt)
    history.append(RetryAttempt(attempt=attempt, error=error, delay=delay, timestamp=clock()))

    if config.enable_logging:
        logger.warning(
            "retry.scheduled",
            attempt=attempt,
            max_attempts=config.max_attempts,
            delay_ms=delay,
            error_type=type(error).__name__,
            error=str(error),
        )

    if config.on_retry is not None:
        config.on_retry(error, attempt, delay)

    return delay


def _log_success(config: RetryConfig, attempt: int) -> None:
    if config.enable_logging and attempt > 1:
        logger.info("retry.succeeded", attempt=attempt)


def retry(
    fn: Callable[[], T],
    config: RetryConfig,
    *,
    clock: Clock = monotonic_ms,
    sleep: Sleeper = time.sleep,
    history: list[RetryAttempt] | None = None,
) -> T:
    """Call ``fn`` until it succeeds or the policy gives up.

    Args:
        fn: Zero-argument callable
        config: Retry policy
        clock: Millisecond clock used for attempt timestamps
        sleep: Blocking sleeper (seconds)
        history: Optional list that receives a :class:`RetryAttempt` per retry

    Returns:
        Result from the successful call

    Raises:
        The last attempt's exception, unchanged
    """
    history = [] if history is None else history

    for attempt in range(1, config.max_attempts + 1):
        try:
            result = fn()
        except Exception as error:
            delay = _next_delay(config, error, attempt, history, clock)
            if delay is None:
                raise
            sleep(delay / 1000)
        else:
            _log_success(config, attempt)
            return result

    raise RuntimeError("retry loop exited without a result")  # pragma: no cover


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    config: RetryConfig,
    *,
    clock: Clock = monotonic_ms,
    sleep: AsyncSleeper = asyncio.sleep,
    history: list[RetryAttempt] | None = None,
) -> T:
    """Async variant of :func:`retry`; ``fn`` returns an awaitable."""
    history = [] if history is None else history

    for attempt in range(1, config.max_attempts + 1):
        try:
            result = await fn()
        except Exception as error:
            delay = _next_delay(config, error, attempt, history, clock)
            if delay is None:
                raise
            await sleep(delay / 1000)
        else:
            _log_success(config, attempt)
            return result

    raise RuntimeError("retry loop exited without a result")  # pragma: no cover


def retry_with_result(
    fn: Callable[[], T],
    config: RetryConfig,
    *,
    clock: Clock = monotonic_ms,
    sleep: Sleeper = time.sleep,
    history: list[RetryAttempt] | None = None,
) -> RetryResult[T]:
    """Like :func:`retry` but reports failure in the result instead of raising."""
    history = [] if history is None else history
    started = clock()
    calls = 0

    def counted() -> T:
        nonlocal calls
        calls += 1
        return fn()

    try:
        result = retry(counted, config, clock=clock, sleep=sleep, history=history)
    except Exception as error:
        return RetryResult(
            success=False,
            error=error,
            attempts=calls,
            total_time=clock() - started,
            history=list(history),
        )

    return RetryResult(
        success=True,
        result=result,
        attempts=calls,
        total_time=clock() - started,
        history=list(history),
    )


async def retry_with_result_async(
    fn: Callable[[], Awaitable[T]],
    config: RetryConfig,
    *,
    clock: Clock = monotonic_ms,
    sleep: AsyncSleeper = asyncio.sleep,
    history: list[RetryAttempt] | None = None,
) -> RetryResult[T]:
    """Async variant of :func:`retry_with_result`."""
    history = [] if history is None else history
    started = clock()
    calls = 0

    async def counted() -> T:
        nonlocal calls
        calls += 1
        return await fn()

    try:
        result = await retry_async(counted, config, clock=clock, sleep=sleep, history=history)
    except Exception as error:
        return RetryResult(
            success=False,
            error=error,
            attempts=calls,
            total_time=clock() - started,
            history=list(history),
        )

    return RetryResult(
        success=True,
        result=result,
        attempts=calls,
        total_time=clock() - started,
        history=list(history),
    )


class Retrier:
    """Reusable retry executor bound to one policy.

    Keeps the history of retried attempts from its most recent execution;
    the history is cleared at the start of every execute call.

    Example:
        >>> retrier = Retrier(RETRY_PRESETS["quick"])
        >>> retrier.execute(flaky_call)
        >>> [a.delay for a in retrier.get_attempts()]
    """

    def __init__(
        self,
        config: RetryConfig,
        *,
        clock: Clock = monotonic_ms,
        sleep: Sleeper = time.sleep,
        async_sleep: AsyncSleeper = asyncio.sleep,
    ):
        self._config = config
        self._clock = clock
        self._sleep = sleep
        self._async_sleep = async_sleep
        self._attempts: list[RetryAttempt] = []

    @property
    def config(self) -> RetryConfig:
        return self._config

    def execute(self, fn: Callable[[], T]) -> T:
        self._attempts = []
        return retry(fn, self._config, clock=self._clock, sleep=self._sleep, history=self._attempts)

    async def execute_async(self, fn: Callable[[], Awaitable[T]]) -> T:
        self._attempts = []
        return await retry_async(
            fn, self._config, clock=self._clock, sleep=self._async_sleep, history=self._attempts
        )

    def execute_with_result(self, fn: Callable[[], T]) -> RetryResult[T]:
        self._attempts = []
        return retry_with_result(
            fn, self._config, clock=self._clock, sleep=self._sleep, history=self._attempts
        )

    async def execute_with_result_async(self, fn: Callable[[], Awaitable[T]]) -> RetryResult[T]:
        self._attempts = []
        return await retry_with_result_async(
            fn, self._config, clock=self._clock, sleep=self._async_sleep, history=self._attempts
        )

    def get_attempts(self) -> list[RetryAttempt]:
        """Retried attempts from the most recent execution."""
        return list(self._attempts)

    def update_config(self, **changes: Any) -> None:
        self._config = self._config.replace(**changes)

    def reset(self) -> None:
        self._attempts = []

    @classmethod
    def from_settings(
        cls,
        settings: GovernorSettings | None = None,
        *,
        clock: Clock = monotonic_ms,
        sleep: Sleeper = time.sleep,
        async_sleep: AsyncSleeper = asyncio.sleep,
        **overrides: Any,
    ) -> Retrier:
        return cls(
            RetryConfig.from_settings(settings, **overrides),
            clock=clock,
            sleep=sleep,
            async_sleep=async_sleep,
        )


def retryable(
    config: RetryConfig,
    *,
    clock: Clock = monotonic_ms,
    sleep: Sleeper = time.sleep,
    async_sleep: AsyncSleeper = asyncio.sleep,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Decorator factory adding retry logic to a sync or async function.

    Example:
        >>> @retryable(RETRY_PRESETS["network"])
        ... async def fetch(symbol):
        ...     return await client.get(f"/quotes/{symbol}")
    """

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                return await retry_async(
                    lambda: func(*args, **kwargs), config, clock=clock, sleep=async_sleep
                )

            return async_wrapper

        @functools.wraps(func)
        def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
            return retry(lambda: func(*args, **kwargs), config, clock=clock, sleep=sleep)

        return sync_wrapper

    return decorator


RETRY_PRESETS: Mapping[str, RetryConfig] = MappingProxyType(
    {
        # Fast operations
        "quick": RetryConfig(max_attempts=3, base_delay=100, max_delay=1000, backoff_factor=2),
        # Typical API calls
        "standard": RetryConfig(max_attempts=5, base_delay=1000, max_delay=10000, backoff_factor=2),
        # Critical operations
        "aggressive": RetryConfig(max_attempts=10, base_delay=500, max_delay=30000, backoff_factor=1.5),
        "network": RetryConfig(
            max_attempts=5,
            base_delay=2000,
            max_delay=15000,
            backoff_factor=2,
            retry_condition=RetryConditions.or_(
                RetryConditions.network_errors,
                RetryConditions.server_errors,
            ),
        ),
    }
)


__all__ = [
    "RetryStrategy",
    "RetryCondition",
    "RetryConditions",
    "RetryConfig",
    "RetryAttempt",
    "RetryResult",
    "Retrier",
    "calculate_delay",
    "fibonacci",
    "retry",
    "retry_async",
    "retry_with_result",
    "retry_with_result_async",
    "retryable",
    "RETRY_PRESETS",
    "NETWORK_ERROR_CODES",
]
