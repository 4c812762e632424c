"""
============================================================================
Unit Tests - Feed Configuration
============================================================================

Tests the FeedConfig loader:
- Default values when nothing is set
- Custom values from environment variables
- Unparseable values fall back to the default
- Out-of-range values fail with CFG-001
============================================================================
"""

import pytest

from services.feed_config import (
    ConfigErrorCode,
    DEFAULT_CACHE_TTL_SECONDS,
    DEFAULT_PAGE_SIZE,
    FeedConfig,
    FeedConfigurationError,
)


ENV_VARS = [
    "CACHE_TTL",
    "DEFAULT_PAGE_SIZE",
    "FETCH_TIMEOUT_SECONDS",
    "MAX_RETRIES",
    "RETRY_DELAY",
    "BACKOFF_MULTIPLIER",
    "FULL_REFRESH_INTERVAL_SECONDS",
    "LIGHT_REFRESH_INTERVAL_SECONDS",
    "WS_UPDATE_INTERVAL",
    "PUSH_PAGE_SIZE",
    "REDIS_HOST",
    "REDIS_PORT",
    "REDIS_PASSWORD",
    "DEXSCREENER_BASE_URL",
    "GECKOTERMINAL_BASE_URL",
    "RATE_LIMIT_WINDOW_MS",
    "RATE_LIMIT_MAX_REQUESTS",
    "PORT",
]


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Start every test from an empty feed environment."""
    for var in ENV_VARS:
        monkeypatch.delenv(var, raising=False)


class TestDefaults:

    def test_default_values(self) -> None:
        config = FeedConfig.from_environment()

        assert config.cache_ttl_seconds == DEFAULT_CACHE_TTL_SECONDS == 30
        assert config.default_page_size == DEFAULT_PAGE_SIZE == 20
        assert config.max_retries == 3
        assert config.retry_delay_seconds == 1.0
        assert config.backoff_multiplier == 2.0
        assert config.full_refresh_interval_seconds == 120
        assert config.light_refresh_interval_seconds == 30
        assert config.ws_update_interval_seconds == 5.0
        assert config.push_page_size == 30
        assert config.redis_host == "localhost"
        assert config.redis_port == 6379
        assert config.redis_password is None
        assert config.rate_limit_window_seconds == 60.0
        assert config.rate_limit_max_requests == 100
        assert config.port == 3000


class TestEnvironmentParsing:

    def test_custom_values(self, monkeypatch) -> None:
        monkeypatch.setenv("CACHE_TTL", "45")
        monkeypatch.setenv("RETRY_DELAY", "250")
        monkeypatch.setenv("BACKOFF_MULTIPLIER", "1.5")
        monkeypatch.setenv("WS_UPDATE_INTERVAL", "2000")
        monkeypatch.setenv("REDIS_HOST", " cache.internal ")
        monkeypatch.setenv("REDIS_PASSWORD", "s3cret")
        monkeypatch.setenv("PORT", "8080")

        config = FeedConfig.from_environment()

        assert config.cache_ttl_seconds == 45
        assert config.retry_delay_seconds == 0.25
        assert config.backoff_multiplier == 1.5
        assert config.ws_update_interval_seconds == 2.0
        assert config.redis_host == "cache.internal"
        assert config.redis_password == "s3cret"
        assert config.port == 8080

    def test_unparseable_value_uses_default(self, monkeypatch) -> None:
        monkeypatch.setenv("CACHE_TTL", "thirty")
        monkeypatch.setenv("BACKOFF_MULTIPLIER", "fast")

        config = FeedConfig.from_environment()

        assert config.cache_ttl_seconds == 30
        assert config.backoff_multiplier == 2.0

    def test_empty_password_is_unset(self, monkeypatch) -> None:
        monkeypatch.setenv("REDIS_PASSWORD", "")

        assert FeedConfig.from_environment().redis_password is None

    def test_to_dict_hides_password(self, monkeypatch) -> None:
        monkeypatch.setenv("REDIS_PASSWORD", "s3cret")

        data = FeedConfig.from_environment().to_dict()

        assert data["redis_password_set"] is True
        assert "s3cret" not in data.values()


class TestValidation:

    @pytest.mark.parametrize("var,value", [
        ("CACHE_TTL", "0"),
        ("MAX_RETRIES", "-1"),
        ("BACKOFF_MULTIPLIER", "0.5"),
        ("WS_UPDATE_INTERVAL", "0"),
        ("PORT", "70000"),
    ])
    def test_out_of_range_fails_closed(self, monkeypatch, var, value) -> None:
        monkeypatch.setenv(var, value)

        with pytest.raises(FeedConfigurationError) as exc_info:
            FeedConfig.from_environment()

        assert exc_info.value.error_code == ConfigErrorCode.CONFIG_INVALID
        assert var in exc_info.value.message

    def test_validation_can_be_deferred(self, monkeypatch) -> None:
        monkeypatch.setenv("CACHE_TTL", "0")

        config = FeedConfig.from_environment(validate=False)

        assert config.cache_ttl_seconds == 0
        with pytest.raises(FeedConfigurationError):
            config.validate()

    def test_collects_every_violation(self) -> None:
        config = FeedConfig(cache_ttl_seconds=0, push_page_size=0)

        with pytest.raises(FeedConfigurationError) as exc_info:
            config.validate()

        assert "CACHE_TTL" in exc_info.value.message
        assert "PUSH_PAGE_SIZE" in exc_info.value.message
