"""Tests for the per-adapter config store."""

import pytest

from livechat.services.chat_adapters.config_store import AdapterConfig, is_blank
from livechat.services.chat_adapters.exceptions import ConfigError


class TestAdapterConfig:
    """Test cases for AdapterConfig."""

    def test_defaults_applied(self):
        config = AdapterConfig(defaults={"interval": 5000, "parseUrl": True})

        assert config.get("interval") == 5000
        assert config.get("parseUrl") is True

    def test_get_returns_default_for_missing_none_and_empty(self):
        config = AdapterConfig()
        config.set("channel", "")
        config.set("token", None)

        assert config.get("missing", "fallback") == "fallback"
        assert config.get("channel", "fallback") == "fallback"
        assert config.get("token", "fallback") == "fallback"

    def test_get_keeps_falsy_non_blank_values(self):
        config = AdapterConfig()
        config.set({"reconnect": False, "interval": 0})

        assert config.get("reconnect", True) is False
        assert config.get("interval", 100) == 0

    def test_set_mapping_sets_every_entry(self):
        config = AdapterConfig()
        result = config.set({"a": 1, "b": 2})

        assert result is config
        assert config.get("a") == 1
        assert config.get("b") == 2

    def test_set_overrides_defaults(self):
        config = AdapterConfig(defaults={"interval": 5000})
        config.set("interval", 9000)

        assert config.get("interval") == 9000

    def test_validate_reports_missing_required_keys(self):
        config = AdapterConfig(required=("clientId", "channel"))
        config.set("clientId", "abc")
        config.set("channel", "")

        with pytest.raises(ConfigError, match="channel"):
            config.validate()

    def test_validate_passes_when_required_keys_set(self):
        config = AdapterConfig(required=("clientId",))
        config.set("clientId", "abc")

        config.validate()
        assert "clientId" in config
        assert config.missing() == []

    def test_as_dict_is_a_copy(self):
        config = AdapterConfig(defaults={"a": 1})
        snapshot = config.as_dict()
        snapshot["a"] = 2

        assert config.get("a") == 1


@pytest.mark.parametrize("value,expected", [
    (None, True),
    ("", True),
    (0, False),
    (False, False),
    ("x", False),
])
def test_is_blank(value, expected):
    assert is_blank(value) is expected
