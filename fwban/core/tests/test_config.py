"""Tests for settings loading and startup validation."""

import json
from datetime import timedelta

import pytest
from pydantic import ValidationError

from fwban.core.config import DeviceSettings, Settings, get_settings
from fwban.device.exceptions import ConfigError

SSH_RE = r"Failed password for(?: invalid user)? (?P<USER>\S+) from (?P<IP>\S+) port \d+ ssh2"

ROUTER = {"address": "192.0.2.1", "user": "blacklister", "passwd": "secret"}


def make(**overrides):
    values = {"BLOCK_TIME": "8h", "REGEXPS": [SSH_RE], "DEVICES": {"r1": ROUTER}}
    values.update(overrides)
    return Settings(**values)


class TestSettings:
    def test_valid_settings_pass(self):
        settings = make()
        settings.validate_settings()

        assert settings.block_time == timedelta(hours=8)
        assert isinstance(settings.DEVICES["r1"], DeviceSettings)
        assert settings.DEVICES["r1"].ban_list == "blacklist"
        assert settings.DEVICES["r1"].verify_tls is True

    def test_defaults(self):
        settings = Settings()
        assert settings.block_time == timedelta(hours=24)
        assert settings.AUTO_DELETE is True
        assert settings.SYSLOG_PORT == 10514
        assert settings.QUERY_TIMEOUT_SECONDS == 5.0
        assert settings.MUTATION_TIMEOUT_SECONDS == 30.0
        assert settings.CONNECT_TIMEOUT_SECONDS == 60.0

    def test_unparsable_block_time_is_rejected(self):
        with pytest.raises(ValidationError):
            make(BLOCK_TIME="eight hours")

    def test_zero_block_time(self):
        with pytest.raises(ConfigError, match="BLOCK_TIME must not be zero"):
            make(BLOCK_TIME="0s").validate_settings()

    def test_regexps_required(self):
        with pytest.raises(ConfigError, match="need at least one valid regexp"):
            make(REGEXPS=[]).validate_settings()

    def test_regexp_without_ip_group(self):
        with pytest.raises(ConfigError, match="missing named group IP"):
            make(REGEXPS=[r"Failed password from (?P<ADDR>\S+)"]).validate_settings()

    def test_regexp_that_does_not_compile(self):
        with pytest.raises(ConfigError, match="invalid regexp"):
            make(REGEXPS=[r"(?P<IP>\S+"]).validate_settings()

    def test_device_fields_required(self):
        with pytest.raises(ConfigError) as excinfo:
            make(DEVICES={"r1": {"address": "192.0.2.1"}}).validate_settings()

        message = str(excinfo.value)
        assert "r1: user is a required field" in message
        assert "r1: passwd is a required field" in message

    def test_disabled_devices_are_ignored(self):
        settings = make(DEVICES={"r1": ROUTER, "lab": {"disabled": True}})
        settings.validate_settings()
        assert list(settings.enabled_devices()) == ["r1"]

    def test_only_disabled_devices_is_an_error(self):
        with pytest.raises(ConfigError, match="need at least one valid device configuration"):
            make(DEVICES={"lab": dict(ROUTER, disabled=True)}).validate_settings()

    def test_errors_are_collected(self):
        with pytest.raises(ConfigError) as excinfo:
            make(BLOCK_TIME="0s", REGEXPS=[], DEVICES={}).validate_settings()

        assert str(excinfo.value).count("; ") == 2


class TestEnvironment:
    def test_loads_from_prefixed_environment(self, monkeypatch):
        monkeypatch.setenv("FWBAN_BLOCK_TIME", "1h30m")
        monkeypatch.setenv("FWBAN_AUTO_DELETE", "false")
        monkeypatch.setenv("FWBAN_REGEXPS", json.dumps([SSH_RE]))
        monkeypatch.setenv(
            "FWBAN_DEVICES",
            json.dumps({"edge": dict(ROUTER, use_tls=True, whitelist=["192.168.10.0/24", "@admins"])}),
        )
        get_settings.cache_clear()
        try:
            settings = get_settings()
        finally:
            get_settings.cache_clear()

        assert settings.block_time == timedelta(hours=1, minutes=30)
        assert settings.AUTO_DELETE is False
        assert settings.DEVICES["edge"].use_tls is True
        assert settings.DEVICES["edge"].whitelist == ["192.168.10.0/24", "@admins"]

    def test_invalid_environment_fails_startup(self, monkeypatch):
        monkeypatch.setenv("FWBAN_REGEXPS", "[]")
        monkeypatch.setenv("FWBAN_DEVICES", json.dumps({"edge": ROUTER}))
        get_settings.cache_clear()
        try:
            with pytest.raises(ConfigError, match="need at least one valid regexp"):
                get_settings()
        finally:
            get_settings.cache_clear()
