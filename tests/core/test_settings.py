"""Tests for core.settings module.

Covers:
- GovernorSettings defaults
- GOVERNOR_* environment variable overrides and .env files
- Field validation
- get_settings caching
"""

import pytest
from pydantic import ValidationError

from governor.core.settings import GovernorSettings, clear_settings_cache, get_settings


class TestGovernorSettingsDefaults:
    def test_logging_defaults(self):
        s = GovernorSettings()
        assert s.log_level == "INFO"
        assert s.log_format == "console"

    def test_retry_defaults(self):
        s = GovernorSettings()
        assert s.retry_max_attempts == 3
        assert s.retry_base_delay_ms == 1000
        assert s.retry_max_delay_ms == 30000
        assert s.retry_backoff_factor == 2.0
        assert s.retry_jitter is True

    def test_rate_limit_defaults(self):
        s = GovernorSettings()
        assert s.rate_limit_window_ms == 60000
        assert s.rate_limit_max_requests == 100

    def test_breaker_defaults(self):
        s = GovernorSettings()
        assert s.breaker_failure_threshold == 5
        assert s.breaker_recovery_timeout_ms == 60000


class TestGovernorSettingsEnvOverride:
    def test_retry_from_env(self, monkeypatch):
        monkeypatch.setenv("GOVERNOR_RETRY_MAX_ATTEMPTS", "7")
        monkeypatch.setenv("GOVERNOR_RETRY_JITTER", "false")
        s = GovernorSettings()
        assert s.retry_max_attempts == 7
        assert s.retry_jitter is False

    def test_log_level_from_env_is_normalized(self, monkeypatch):
        monkeypatch.setenv("GOVERNOR_LOG_LEVEL", " debug ")
        assert GovernorSettings().log_level == "DEBUG"

    def test_unprefixed_env_ignored(self, monkeypatch):
        monkeypatch.setenv("RETRY_MAX_ATTEMPTS", "9")
        assert GovernorSettings().retry_max_attempts == 3

    def test_dotenv_file(self, tmp_path, monkeypatch):
        (tmp_path / ".env").write_text("GOVERNOR_BREAKER_FAILURE_THRESHOLD=11\nUNRELATED=1\n")
        monkeypatch.chdir(tmp_path)
        assert GovernorSettings().breaker_failure_threshold == 11


class TestGovernorSettingsValidation:
    @pytest.mark.parametrize(
        "field,value",
        [
            ("retry_max_attempts", 0),
            ("retry_base_delay_ms", -1),
            ("retry_backoff_factor", 0),
            ("rate_limit_window_ms", 0),
            ("rate_limit_max_requests", 0),
            ("breaker_failure_threshold", 0),
            ("breaker_recovery_timeout_ms", -5),
            ("log_level", "VERBOSE"),
            ("log_format", "xml"),
        ],
    )
    def test_invalid_values(self, field, value):
        with pytest.raises(ValidationError):
            GovernorSettings(**{field: value})

    def test_frozen(self):
        s = GovernorSettings()
        with pytest.raises(ValidationError):
            s.retry_max_attempts = 10


class TestGetSettings:
    def test_cached(self):
        assert get_settings() is get_settings()

    def test_force_reload(self, monkeypatch):
        first = get_settings()
        monkeypatch.setenv("GOVERNOR_RATE_LIMIT_MAX_REQUESTS", "5")

        assert get_settings().rate_limit_max_requests == 100
        reloaded = get_settings(_force_reload=True)
        assert reloaded is not first
        assert reloaded.rate_limit_max_requests == 5

    def test_clear_cache(self, monkeypatch):
        first = get_settings()
        clear_settings_cache()
        assert get_settings() is not first
