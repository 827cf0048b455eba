"""Unit tests for Relay configuration."""

import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from relay.config import Settings


class TestSettings:
    """Tests for Settings model."""

    def test_default_settings(self):
        """Defaults should match the public delivery contract."""
        # Use _env_file=None to prevent reading from .env file
        settings = Settings(_env_file=None)
        assert settings.database_url.startswith("sqlite+aiosqlite")
        assert settings.webhook_timeout_seconds == 10.0
        assert settings.webhook_max_attempts == 5
        assert settings.webhook_backoff_seconds == [60, 300, 900, 3600, 7200]
        assert settings.webhook_suspend_failure_threshold == 10
        assert settings.webhook_response_body_limit == 1000
        assert settings.dispatch_mode == "inline"
        assert settings.secret_rotation_grace_seconds == 0
        assert settings.log_level == "INFO"

    def test_dispatch_modes(self):
        """Only inline and deferred dispatch are accepted."""
        for mode in ("inline", "deferred"):
            assert Settings(dispatch_mode=mode, _env_file=None).dispatch_mode == mode
        with pytest.raises(ValidationError):
            Settings(dispatch_mode="queued", _env_file=None)

    def test_log_formats(self):
        """Only valid log formats should be accepted."""
        assert Settings(log_format="json", _env_file=None).log_format == "json"
        assert Settings(log_format="text", _env_file=None).log_format == "text"
        with pytest.raises(ValidationError):
            Settings(log_format="xml", _env_file=None)

    def test_empty_backoff_rejected(self):
        """A retry schedule needs at least one delay."""
        with pytest.raises(ValidationError, match="at least one delay"):
            Settings(webhook_backoff_seconds=[], _env_file=None)

    def test_negative_backoff_rejected(self):
        with pytest.raises(ValidationError, match="negative"):
            Settings(webhook_backoff_seconds=[60, -1], _env_file=None)

    def test_history_limits_consistent(self):
        """Default page size must not exceed the maximum."""
        with pytest.raises(ValidationError, match="must not exceed"):
            Settings(
                delivery_history_default_limit=200,
                delivery_history_max_limit=100,
                _env_file=None,
            )

    def test_claim_lease_minimum(self):
        """The claim lease must outlast an HTTP attempt."""
        with pytest.raises(ValidationError):
            Settings(claim_lease_seconds=5, _env_file=None)

    def test_timeout_bounds(self):
        with pytest.raises(ValidationError):
            Settings(webhook_timeout_seconds=0, _env_file=None)

    def test_env_prefix(self):
        """Settings should use RELAY_ prefix for environment variables."""
        with patch.dict(os.environ, {"RELAY_LOG_LEVEL": "DEBUG"}):
            settings = Settings(_env_file=None)
            assert settings.log_level == "DEBUG"

    def test_env_database_url(self):
        """RELAY_DATABASE_URL should override default."""
        url = "postgresql+asyncpg://relay:relay@db/relay"
        with patch.dict(os.environ, {"RELAY_DATABASE_URL": url}):
            assert Settings(_env_file=None).database_url == url

    def test_env_backoff_schedule_json(self):
        """List settings are read from JSON in the environment."""
        with patch.dict(os.environ, {"RELAY_WEBHOOK_BACKOFF_SECONDS": "[1, 2, 3]"}):
            assert Settings(_env_file=None).webhook_backoff_seconds == [1, 2, 3]


class TestProductionSettings:
    """Tests for production safety checks."""

    def test_sqlite_in_production_warns(self):
        """SQLite in production should emit a warning."""
        with pytest.warns(UserWarning, match="SQLite is configured in production"):
            Settings(env="production", _env_file=None)

    def test_postgres_in_production_is_quiet(self, recwarn):
        Settings(
            env="production",
            database_url="postgresql+asyncpg://relay:relay@db/relay",
            _env_file=None,
        )
        assert not [w for w in recwarn if issubclass(w.category, UserWarning)]
