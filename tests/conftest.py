"""
Shared pytest fixtures and configuration for governor tests.

This module provides:
- Deterministic clocks (ManualClock) for time-dependent components
- Settings cache isolation
- Logging context isolation

Usage:
    Fixtures are auto-discovered by pytest. Use them as function arguments:

    def test_refill(clock):
        bucket = TokenBucketRateLimiter(5, 1, clock=clock)
        clock.advance(1000)
"""

from collections.abc import Generator
from pathlib import Path

import pytest
import structlog

from governor.core.clock import ManualClock
from governor.core.logging import clear_context
from governor.core.settings import clear_settings_cache


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Mark all tests without explicit markers as unit tests."""
    for item in items:
        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "slow"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Isolation Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def clean_settings(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Generator[None, None, None]:
    """Isolate every test from cached settings and stray ``.env`` files."""
    monkeypatch.chdir(tmp_path)
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture(autouse=True)
def clean_log_context() -> Generator[None, None, None]:
    """Clear structlog contextvars and configuration between tests."""
    clear_context()
    yield
    clear_context()
    structlog.reset_defaults()


# =============================================================================
# Clock Fixtures
# =============================================================================


@pytest.fixture
def clock() -> ManualClock:
    """A manual clock starting at t=0 ms."""
    return ManualClock()


@pytest.fixture
def late_clock() -> ManualClock:
    """A manual clock starting well after t=0, for window arithmetic."""
    return ManualClock(start_ms=1_000_000.0)
