"""Tests for environment-driven settings."""

import pytest

from trackcache.config import Settings


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("REDIS_URL", "TRACKCACHE_REDIS_URL", "TRACKCACHE_ENABLE_STATISTICS"):
        monkeypatch.delenv(name, raising=False)


class TestSettings:
    """Test Settings defaults and overrides."""

    def test_defaults(self) -> None:
        s = Settings()
        assert s.redis_url == "redis://localhost:6379/0"
        assert s.enable_statistics is False
        assert s.invalidation_channel == "__redis__:invalidate"
        assert s.reconnect_delay <= s.max_reconnect_delay

    def test_prefixed_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("TRACKCACHE_ENABLE_STATISTICS", "true")
        monkeypatch.setenv("TRACKCACHE_LISTENER_POLL_TIMEOUT", "0.25")

        s = Settings()
        assert s.enable_statistics is True
        assert s.listener_poll_timeout == 0.25

    def test_plain_redis_url_alias(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("REDIS_URL", "redis://cache:6379/2")
        assert Settings().redis_url == "redis://cache:6379/2"

    def test_prefixed_redis_url_wins(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("REDIS_URL", "redis://plain:6379/0")
        monkeypatch.setenv("TRACKCACHE_REDIS_URL", "redis://prefixed:6379/0")
        assert Settings().redis_url == "redis://prefixed:6379/0"

    def test_keyword_override(self) -> None:
        s = Settings(redis_url="redis://other:6380/0", enable_statistics=True)
        assert s.redis_url == "redis://other:6380/0"
        assert s.enable_statistics is True

    def test_fields_are_all_runtime_options(self) -> None:
        assert set(Settings.model_fields) == {
            "redis_url",
            "client_name",
            "enable_statistics",
            "invalidation_channel",
            "listener_poll_timeout",
            "reconnect_delay",
            "max_reconnect_delay",
            "log_level",
            "log_json",
        }
