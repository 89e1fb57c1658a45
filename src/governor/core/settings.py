"""
Centralized settings for governor.

:class:`GovernorSettings` is a validated, cached source of process-wide
defaults: the logging sink plus default knobs for retries, rate limiters and
circuit breakers. Components never read it implicitly; it is consumed by
the explicit ``from_settings()`` constructors
(:meth:`RetryConfig.from_settings`, :meth:`RateLimiterConfig.from_settings`,
:meth:`CircuitBreakerRetrier.from_settings`) and by
:func:`~governor.core.logging.configure_from_settings`.

All fields can be set via ``GOVERNOR_*`` environment variables (e.g.
``GOVERNOR_RETRY_MAX_ATTEMPTS=5``) or a ``.env`` file.

Tags:
    configuration, settings, pydantic, caching, validation
"""

from __future__ import annotations

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GovernorSettings(BaseSettings):
    """Governor centralized configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOVERNOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: Literal["json", "console"] = Field(default="console")

    # ── Retry ────────────────────────────────────────────────────
    retry_max_attempts: int = Field(default=3, ge=1)
    retry_base_delay_ms: float = Field(default=1000.0, ge=0)
    retry_max_delay_ms: float = Field(default=30000.0, ge=0)
    retry_backoff_factor: float = Field(default=2.0, gt=0)
    retry_jitter: bool = Field(default=True)

    # ── Rate limiting ────────────────────────────────────────────
    rate_limit_window_ms: float = Field(default=60000.0, gt=0)
    rate_limit_max_requests: int = Field(default=100, ge=1)

    # ── Circuit breaker ──────────────────────────────────────────
    breaker_failure_threshold: int = Field(default=5, ge=1)
    breaker_recovery_timeout_ms: float = Field(default=60000.0, ge=0)

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR"}:
            raise ValueError(f"Unsupported log level: {value!r}")
        return level


# ── Settings factory with caching ────────────────────────────────────────

_settings_cache: dict[str, GovernorSettings] = {}


def get_settings(*, _force_reload: bool = False) -> GovernorSettings:
    """Load, validate, and cache a :class:`GovernorSettings` instance."""
    if not _force_reload and "default" in _settings_cache:
        return _settings_cache["default"]

    settings = GovernorSettings()
    _settings_cache["default"] = settings
    return settings


def clear_settings_cache() -> None:
    """Clear the settings cache (primarily for testing)."""
    _settings_cache.clear()


__all__ = ["GovernorSettings", "get_settings", "clear_settings_cache"]
