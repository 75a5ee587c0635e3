"""Pytest configuration and fixtures."""

import pytest

from livechat.core.config import Settings, get_settings
from livechat.services.chat_adapters.reconnect import ReconnectBackoff


@pytest.fixture(autouse=True)
def clear_settings_cache():
    """Make every test read a fresh Settings instance."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def test_settings() -> Settings:
    """Settings with short timeouts so timer-driven paths run quickly."""
    return Settings(
        _env_file=None,
        http_max_tries=1,
        reconnect_default_interval_ms=10,
        reconnect_multiplier=2.0,
        reconnect_max_interval_ms=80,
        twitch_join_timeout_seconds=1.0,
        mixer_reply_timeout_seconds=1.0,
    )


@pytest.fixture
def fast_backoff() -> ReconnectBackoff:
    return ReconnectBackoff(default_interval_ms=10, multiplier=2.0, max_interval_ms=80)
