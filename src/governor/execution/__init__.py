"""Governor Execution: rate limiting, retries, and circuit breaking.

ARCHITECTURE
────────────
::

    Admission
      ├── TokenBucketRateLimiter    ─ smooth average rate with bursts
      ├── SlidingWindowRateLimiter  ─ exact per-key count over a rolling window
      └── FixedWindowRateLimiter    ─ cheap per-key count per window
      │
      ▼
    Recovery
      ├── RetryConfig / Retrier     ─ backoff strategies + retry conditions
      └── retryable                 ─ decorator for sync and async functions
      │
      ▼
    Isolation
      └── CircuitBreakerRetrier     ─ fail fast after repeated failed calls

MODULE MAP
──────────
  1. rate_limit.py        ─ token bucket, window limiters, factory, presets
  2. retry.py             ─ strategies, conditions, Retrier, presets
  3. circuit_breaker.py   ─ tagged breaker state, transition(), breaker
"""

from governor.execution.circuit_breaker import (
    BreakerState,
    CircuitBreakerRetrier,
    CircuitState,
    CircuitStats,
    Closed,
    HalfOpen,
    Open,
    Outcome,
    transition,
)
from governor.execution.rate_limit import (
    RATE_LIMITER_PRESETS,
    FixedWindowRateLimiter,
    LimiterStats,
    RateLimiterConfig,
    RateLimiterFactory,
    RateLimitInfo,
    RateLimitResult,
    SlidingWindowRateLimiter,
    TokenBucketRateLimiter,
    WindowRateLimiter,
)
from governor.execution.retry import (
    RETRY_PRESETS,
    Retrier,
    RetryAttempt,
    RetryCondition,
    RetryConditions,
    RetryConfig,
    RetryResult,
    RetryStrategy,
    calculate_delay,
    fibonacci,
    retry,
    retry_async,
    retry_with_result,
    retry_with_result_async,
    retryable,
)

__all__ = [
    # Rate limiting
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
    # Retry
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
    # Circuit breaker
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
