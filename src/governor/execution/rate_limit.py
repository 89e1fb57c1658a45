"""Rate Limiting: token-bucket, sliding-window and fixed-window throughput control.

Manifesto:
Services need to cap how often a caller (a user, an API key, an IP) may do
something, and clients need to stay under the quotas of the APIs they call.
These limiters keep all of their state in memory and recompute it lazily
from an injected millisecond clock on every call: no background timers,
no threads.

ARCHITECTURE
────────────
::

    TokenBucketRateLimiter      ─ steady refill rate + burst capacity
    WindowRateLimiter (ABC)     ─ per-key limiters driven by RateLimiterConfig
      ├── SlidingWindowRateLimiter ─ exact count in a trailing window
      └── FixedWindowRateLimiter   ─ counter reset at request-anchored intervals

    RateLimiterFactory          ─ create_* helpers
    RATE_LIMITER_PRESETS        ─ immutable named RateLimiterConfig values

None of the limiters raise during normal use: ``consume`` returns a bool and
``check_limit`` returns a :class:`RateLimitResult`. They are not thread-safe;
share one across threads only behind a lock.

BEST PRACTICES
──────────────
- Use ``TokenBucketRateLimiter`` for steady throughput with bursts.
- Use ``SlidingWindowRateLimiter`` for strict "N per trailing window" caps.
- Use ``FixedWindowRateLimiter`` when a cheap counter is good enough and a
  burst of up to ``2 * max_requests`` across a window edge is acceptable.
- Set ``cleanup_interval`` (or call ``cleanup()`` periodically) when keys
  are unbounded, otherwise per-key state grows forever.

Example::

    limiter = SlidingWindowRateLimiter(RATE_LIMITER_PRESETS["api"])
    result = limiter.check_limit(api_key)
    if not result.allowed:
        raise TooManyRequests(retry_after_ms=result.info.ms_before_next)

Tags:
    rate-limit, throttle, token-bucket, sliding-window, fixed-window
"""

from __future__ import annotations

import dataclasses
import math
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

from governor.core.clock import Clock, monotonic_ms
from governor.core.errors import require
from governor.core.logging import get_logger
from governor.core.settings import GovernorSettings, get_settings

logger = get_logger(__name__)


def _identity(identifier: str) -> str:
    return identifier


@dataclass(frozen=True)
class RateLimiterConfig:
    """Configuration shared by the window-based limiters.

    Attributes:
        window_ms: Window length in milliseconds
        max_requests: Requests allowed per window
        key_generator: Maps a caller identifier to a storage key
        skip_successful_requests: ``record_request(success=True)`` is a no-op
        skip_failed_requests: ``record_request(success=False)`` is a no-op
        enable_logging: Emit per-request log events
        cleanup_interval: Run ``cleanup()`` every N ``check_limit`` calls (0 = never)
    """

    window_ms: float
    max_requests: int
    key_generator: Callable[[str], str] = _identity
    skip_successful_requests: bool = False
    skip_failed_requests: bool = False
    enable_logging: bool = False
    cleanup_interval: int = 0

    def __post_init__(self) -> None:
        require(self.window_ms > 0, "window_ms must be positive", field="window_ms", value=self.window_ms)
        require(
            self.max_requests >= 1,
            "max_requests must be at least 1",
            field="max_requests",
            value=self.max_requests,
        )
        require(
            self.cleanup_interval >= 0,
            "cleanup_interval must not be negative",
            field="cleanup_interval",
            value=self.cleanup_interval,
        )

    def replace(self, **changes: Any) -> RateLimiterConfig:
        """Return a copy with ``changes`` applied."""
        return dataclasses.replace(self, **changes)

    @classmethod
    def from_settings(cls, settings: GovernorSettings | None = None, **overrides: Any) -> RateLimiterConfig:
        """Build a config from ``GOVERNOR_RATE_LIMIT_*`` settings."""
        settings = settings or get_settings()
        values: dict[str, Any] = {
            "window_ms": settings.rate_limit_window_ms,
            "max_requests": settings.rate_limit_max_requests,
        }
        values.update(overrides)
        return cls(**values)


@dataclass(frozen=True)
class RateLimitInfo:
    """Snapshot of a key's limit state."""

    total_hits: int
    total_hits_in_window: int
    remaining_points: int
    ms_before_next: float
    is_blocked: bool


@dataclass(frozen=True)
class RateLimitResult:
    """Allow/deny decision plus the state it was based on."""

    allowed: bool
    info: RateLimitInfo

    def __bool__(self) -> bool:
        return self.allowed


@dataclass(frozen=True)
class LimiterStats:
    """Aggregate statistics across all keys of a limiter."""

    total_keys: int
    total_requests: int
    active_keys: int


# =============================================================================
# Token bucket
# =============================================================================


class TokenBucketRateLimiter:
    """Token bucket rate limiter.

    Holds up to ``capacity`` tokens, refilled continuously at ``refill_rate``
    tokens per second. Refill is computed lazily from the elapsed clock time
    on every read, so an idle bucket costs nothing.

    Example:
        >>> clock = ManualClock()
        >>> bucket = TokenBucketRateLimiter(capacity=5, refill_rate=1, clock=clock)
        >>> bucket.consume(5)
        True
        >>> bucket.consume()
        False
        >>> clock.advance(1000)
        >>> bucket.consume()
        True
    """

    def __init__(
        self,
        capacity: float,
        refill_rate: float,
        enable_logging: bool = False,
        clock: Clock = monotonic_ms,
    ):
        require(capacity > 0, "capacity must be positive", field="capacity", value=capacity)
        require(refill_rate > 0, "refill_rate must be positive", field="refill_rate", value=refill_rate)

        self._capacity = float(capacity)
        self._refill_rate = float(refill_rate)
        self._clock = clock
        self._tokens = self._capacity
        self._last_refill = clock()
        self.enable_logging = enable_logging

    @property
    def capacity(self) -> float:
        return self._capacity

    @property
    def refill_rate(self) -> float:
        """Tokens added per second."""
        return self._refill_rate

    def _refill(self) -> None:
        """Add tokens based on elapsed time."""
        now = self._clock()
        # A clock that moved backwards adds nothing
        elapsed_seconds = max(0.0, now - self._last_refill) / 1000.0
        self._tokens = min(self._capacity, self._tokens + elapsed_seconds * self._refill_rate)
        self._last_refill = now

    def consume(self, tokens: float = 1) -> bool:
        """Try to withdraw ``tokens`` atomically.

        Returns:
            True if the tokens were taken, False if not enough were available
        """
        self._refill()

        if tokens < 0:
            return False

        if self._tokens >= tokens:
            self._tokens -= tokens
            self._log("debug", "token_bucket.consumed", tokens=tokens, remaining=self._tokens)
            return True

        self._log("debug", "token_bucket.exhausted", requested=tokens, available=self._tokens)
        return False

    def get_tokens(self) -> float:
        """Current token count after refill (may be fractional)."""
        self._refill()
        return self._tokens

    def get_time_until_refill(self) -> int:
        """Milliseconds until at least one token is available."""
        self._refill()
        if self._tokens >= 1:
            return 0
        return math.ceil((1 - self._tokens) / self._refill_rate * 1000)

    def reset(self) -> None:
        """Refill the bucket to capacity."""
        self._tokens = self._capacity
        self._last_refill = self._clock()
        self._log("info", "token_bucket.reset")

    def _log(self, method: str, event: str, **kwargs: Any) -> None:
        if self.enable_logging:
            getattr(logger, method)(event, limiter="token_bucket", **kwargs)

    def __repr__(self) -> str:
        return f"TokenBucketRateLimiter(capacity={self._capacity}, refill_rate={self._refill_rate})"


# =============================================================================
# Window limiters
# =============================================================================


class WindowRateLimiter(ABC):
    """Abstract base for per-key, window-based rate limiters."""

    name = "window"

    def __init__(self, config: RateLimiterConfig, clock: Clock = monotonic_ms):
        self.config = config
        self._clock = clock
        self._checks = 0

    def _key(self, identifier: str) -> str:
        return self.config.key_generator(identifier)

    def _maybe_cleanup(self) -> None:
        """Periodically evict expired keys."""
        interval = self.config.cleanup_interval
        if not interval:
            return
        self._checks += 1
        if self._checks >= interval:
            self._checks = 0
            self.cleanup()

    def _log(self, method: str, event: str, **kwargs: Any) -> None:
        if self.config.enable_logging:
            getattr(logger, method)(event, limiter=self.name, **kwargs)

    @abstractmethod
    def check_limit(self, identifier: str) -> RateLimitResult:
        """Decide whether a request from ``identifier`` is allowed, recording it if so."""
        ...

    @abstractmethod
    def get_status(self, identifier: str) -> RateLimitInfo:
        """Peek at ``identifier``'s state without recording anything."""
        ...

    @abstractmethod
    def reset_key(self, identifier: str) -> None:
        ...

    @abstractmethod
    def reset(self) -> None:
        ...

    @abstractmethod
    def cleanup(self) -> int:
        """Drop expired state. Returns the number of keys removed."""
        ...

    @abstractmethod
    def get_stats(self) -> LimiterStats:
        ...


class SlidingWindowRateLimiter(WindowRateLimiter):
    """Sliding window rate limiter.

    Keeps a chronological list of request timestamps per key. A request is
    allowed while fewer than ``max_requests`` timestamps fall inside the
    trailing window ``(now - window_ms, now]``; a timestamp exactly
    ``window_ms`` old no longer counts. Rejected attempts are not recorded.
    """

    name = "sliding_window"

    def __init__(self, config: RateLimiterConfig, clock: Clock = monotonic_ms):
        super().__init__(config, clock)
        self._requests: dict[str, list[float]] = {}

    def _in_window(self, key: str, now: float) -> list[float]:
        window_start = now - self.config.window_ms
        return [ts for ts in self._requests.get(key, ()) if ts > window_start]

    def _ms_before_next(self, timestamps: list[float], now: float) -> float:
        if not timestamps:
            return 0
        return max(0, min(timestamps) + self.config.window_ms - now)

    def check_limit(self, identifier: str) -> RateLimitResult:
        self._maybe_cleanup()

        key = self._key(identifier)
        now = self._clock()
        timestamps = self._in_window(key, now)
        count = len(timestamps)

        if count >= self.config.max_requests:
            ms_before_next = self._ms_before_next(timestamps, now)
            self._log("debug", "rate_limit.blocked", key=key, ms_before_next=ms_before_next)
            return RateLimitResult(
                allowed=False,
                info=RateLimitInfo(
                    total_hits=count,
                    total_hits_in_window=count,
                    remaining_points=0,
                    ms_before_next=ms_before_next,
                    is_blocked=True,
                ),
            )

        timestamps.append(now)
        self._requests[key] = timestamps
        remaining = self.config.max_requests - count - 1
        self._log("debug", "rate_limit.allowed", key=key, remaining=remaining)
        return RateLimitResult(
            allowed=True,
            info=RateLimitInfo(
                total_hits=count + 1,
                total_hits_in_window=count + 1,
                remaining_points=remaining,
                ms_before_next=0,
                is_blocked=False,
            ),
        )

    def record_request(self, identifier: str, success: bool | None = None) -> None:
        """Record a request manually, e.g. after learning its outcome."""
        if self.config.skip_successful_requests and success is True:
            return
        if self.config.skip_failed_requests and success is False:
            return

        key = self._key(identifier)
        now = self._clock()
        timestamps = self._in_window(key, now)
        timestamps.append(now)
        self._requests[key] = timestamps
        self._log("debug", "rate_limit.recorded", key=key, success=success)

    def get_status(self, identifier: str) -> RateLimitInfo:
        key = self._key(identifier)
        now = self._clock()
        timestamps = self._in_window(key, now)
        count = len(timestamps)
        is_blocked = count >= self.config.max_requests

        return RateLimitInfo(
            total_hits=count,
            total_hits_in_window=count,
            remaining_points=max(0, self.config.max_requests - count),
            ms_before_next=self._ms_before_next(timestamps, now) if is_blocked else 0,
            is_blocked=is_blocked,
        )

    def reset_key(self, identifier: str) -> None:
        key = self._key(identifier)
        self._requests.pop(key, None)
        self._log("info", "rate_limit.key_reset", key=key)

    def reset(self) -> None:
        self._requests.clear()
        self._log("info", "rate_limit.reset")

    def cleanup(self) -> int:
        now = self._clock()
        removed = 0

        for key in list(self._requests):
            valid = self._in_window(key, now)
            if not valid:
                del self._requests[key]
                removed += 1
            elif len(valid) != len(self._requests[key]):
                self._requests[key] = valid

        if removed:
            self._log("info", "rate_limit.cleanup", removed_keys=removed)
        return removed

    def get_stats(self) -> LimiterStats:
        self.cleanup()
        total_requests = sum(len(ts) for ts in self._requests.values())
        active_keys = sum(1 for ts in self._requests.values() if ts)
        return LimiterStats(
            total_keys=len(self._requests),
            total_requests=total_requests,
            active_keys=active_keys,
        )


@dataclass
class _Window:
    count: int
    reset_time: float


class FixedWindowRateLimiter(WindowRateLimiter):
    """Fixed window rate limiter.

    One counter per key, replaced by a fresh window once ``now >= reset_time``.
    Windows are anchored to the first request after expiry, not to calendar
    boundaries: a key idle for several intervals starts a new window at
    ``now`` rather than at the next multiple of ``window_ms``.
    """

    name = "fixed_window"

    def __init__(self, config: RateLimiterConfig, clock: Clock = monotonic_ms):
        super().__init__(config, clock)
        self._windows: dict[str, _Window] = {}

    def check_limit(self, identifier: str) -> RateLimitResult:
        self._maybe_cleanup()

        key = self._key(identifier)
        now = self._clock()

        window = self._windows.get(key)
        if window is None or now >= window.reset_time:
            window = _Window(count=0, reset_time=now + self.config.window_ms)
            self._windows[key] = window

        if window.count >= self.config.max_requests:
            ms_before_next = window.reset_time - now
            self._log("debug", "rate_limit.blocked", key=key, ms_before_next=ms_before_next)
            return RateLimitResult(
                allowed=False,
                info=RateLimitInfo(
                    total_hits=window.count,
                    total_hits_in_window=window.count,
                    remaining_points=0,
                    ms_before_next=ms_before_next,
                    is_blocked=True,
                ),
            )

        window.count += 1
        remaining = self.config.max_requests - window.count
        self._log("debug", "rate_limit.allowed", key=key, remaining=remaining)
        return RateLimitResult(
            allowed=True,
            info=RateLimitInfo(
                total_hits=window.count,
                total_hits_in_window=window.count,
                remaining_points=remaining,
                ms_before_next=0,
                is_blocked=False,
            ),
        )

    def get_status(self, identifier: str) -> RateLimitInfo:
        key = self._key(identifier)
        now = self._clock()
        window = self._windows.get(key)

        if window is None or now >= window.reset_time:
            return RateLimitInfo(
                total_hits=0,
                total_hits_in_window=0,
                remaining_points=self.config.max_requests,
                ms_before_next=0,
                is_blocked=False,
            )

        is_blocked = window.count >= self.config.max_requests
        return RateLimitInfo(
            total_hits=window.count,
            total_hits_in_window=window.count,
            remaining_points=max(0, self.config.max_requests - window.count),
            ms_before_next=window.reset_time - now if is_blocked else 0,
            is_blocked=is_blocked,
        )

    def reset_key(self, identifier: str) -> None:
        key = self._key(identifier)
        self._windows.pop(key, None)
        self._log("info", "rate_limit.key_reset", key=key)

    def reset(self) -> None:
        self._windows.clear()
        self._log("info", "rate_limit.reset")

    def cleanup(self) -> int:
        now = self._clock()
        expired = [key for key, window in self._windows.items() if now >= window.reset_time]
        for key in expired:
            del self._windows[key]

        if expired:
            self._log("info", "rate_limit.cleanup", removed_keys=len(expired))
        return len(expired)

    def get_stats(self) -> LimiterStats:
        self.cleanup()
        total_requests = sum(window.count for window in self._windows.values())
        active_keys = sum(1 for window in self._windows.values() if window.count)
        return LimiterStats(
            total_keys=len(self._windows),
            total_requests=total_requests,
            active_keys=active_keys,
        )


# =============================================================================
# Factory and presets
# =============================================================================


class RateLimiterFactory:
    """Convenience constructors for the three limiter types."""

    @staticmethod
    def create_sliding_window(
        config: RateLimiterConfig, clock: Clock = monotonic_ms
    ) -> SlidingWindowRateLimiter:
        return SlidingWindowRateLimiter(config, clock=clock)

    @staticmethod
    def create_fixed_window(
        config: RateLimiterConfig, clock: Clock = monotonic_ms
    ) -> FixedWindowRateLimiter:
        return FixedWindowRateLimiter(config, clock=clock)

    @staticmethod
    def create_token_bucket(
        capacity: float,
        refill_rate: float,
        enable_logging: bool = False,
        clock: Clock = monotonic_ms,
    ) -> TokenBucketRateLimiter:
        return TokenBucketRateLimiter(capacity, refill_rate, enable_logging=enable_logging, clock=clock)


RATE_LIMITER_PRESETS: Mapping[str, RateLimiterConfig] = MappingProxyType(
    {
        "api": RateLimiterConfig(window_ms=60_000, max_requests=100),
        "strict": RateLimiterConfig(window_ms=60_000, max_requests=10),
        "generous": RateLimiterConfig(window_ms=60_000, max_requests=1000),
        "per_second": RateLimiterConfig(window_ms=1_000, max_requests=10),
        "per_hour": RateLimiterConfig(window_ms=3_600_000, max_requests=1000),
    }
)


__all__ = [
    "RateLimiterConfig",
    "RateLimitInfo",
    "RateLimitResult",
    "LimiterStats",
    "TokenBucketRateLimiter",
    "WindowRateLimiter",
    "SlidingWindowRateLimiter",
    "FixedWindowRateLimiter",
    "RateLimiterFactory",
    "RATE_LIMITER_PRESETS",
]
