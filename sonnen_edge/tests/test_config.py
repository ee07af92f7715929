"""
Unit tests for sonnen edge daemon configuration (SonnenSettings).

Tests verify:
- Config loads from environment variables with correct defaults.
- Config validation rejects missing or blank required variables.
- DISCOVERY_URL is validated as HTTPS.
- Numeric constraints are enforced (poll interval, timeout, snapshot interval).
- TIMEZONE must name a real IANA zone.
- Rediscovery is only enabled with a device id.

CHANGELOG:
- 2026-10-19: Initial creation

TODO:
- None
"""

from datetime import timedelta

import pytest
from pydantic import ValidationError
from sonnen_edge.src.config import SonnenSettings


class TestSonnenSettingsLoadsFromEnv:
    """Config loads all values from environment variables."""

    def test_loads_all_env_vars(self, env_vars_full: dict[str, str]) -> None:
        settings = SonnenSettings()

        assert settings.sonnen_host == env_vars_full["SONNEN_HOST"]
        assert settings.sonnen_auth_token == env_vars_full["SONNEN_AUTH_TOKEN"]
        assert settings.sonnen_device_id == env_vars_full["SONNEN_DEVICE_ID"]
        assert settings.discovery_enabled is True
        assert settings.discovery_url == env_vars_full["DISCOVERY_URL"]
        assert settings.poll_interval_s == 30
        assert settings.http_timeout_s == 5.0
        assert settings.cycle_snapshot_interval_s == 1800
        assert settings.timezone == "UTC"
        assert settings.state_path == env_vars_full["STATE_PATH"]
        assert settings.health_path == env_vars_full["HEALTH_PATH"]

    def test_defaults_applied_when_optional_vars_missing(
        self, env_vars_required_only: dict[str, str]
    ) -> None:
        settings = SonnenSettings()

        assert settings.sonnen_device_id == ""
        assert settings.discovery_enabled is True
        assert settings.discovery_url == "https://find-my.sonnen-batterie.com/find"
        assert settings.poll_interval_s == 60
        assert settings.http_timeout_s == 10.0
        assert settings.cycle_snapshot_interval_s == 3600
        assert settings.timezone == "UTC"
        assert settings.state_path == "/data/state.db"
        assert settings.health_path == "/data/health.json"


class TestRequiredVariables:
    """Missing required variables fail validation."""

    def test_missing_host_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SONNEN_AUTH_TOKEN", "token")
        with pytest.raises(ValidationError):
            SonnenSettings()

    def test_missing_token_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SONNEN_HOST", "10.0.0.50")
        with pytest.raises(ValidationError):
            SonnenSettings()

    def test_blank_token_raises(
        self, env_vars_required_only: dict[str, str], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("SONNEN_AUTH_TOKEN", "   ")
        with pytest.raises(ValidationError, match="SONNEN_AUTH_TOKEN must not be empty"):
            SonnenSettings()


class TestValidators:
    """Field-level constraints."""

    def test_http_discovery_url_rejected(
        self, env_vars_required_only: dict[str, str], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("DISCOVERY_URL", "http://find-my.sonnen-batterie.com/find")
        with pytest.raises(ValidationError, match="HTTPS"):
            SonnenSettings()

    def test_poll_interval_below_minimum_rejected(
        self, env_vars_required_only: dict[str, str], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("POLL_INTERVAL_S", "4")
        with pytest.raises(ValidationError, match="POLL_INTERVAL_S"):
            SonnenSettings()

    def test_poll_interval_at_minimum_accepted(
        self, env_vars_required_only: dict[str, str], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("POLL_INTERVAL_S", "5")
        assert SonnenSettings().poll_interval_s == 5

    def test_zero_timeout_rejected(
        self, env_vars_required_only: dict[str, str], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("HTTP_TIMEOUT_S", "0")
        with pytest.raises(ValidationError, match="HTTP_TIMEOUT_S"):
            SonnenSettings()

    def test_short_snapshot_interval_rejected(
        self, env_vars_required_only: dict[str, str], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("CYCLE_SNAPSHOT_INTERVAL_S", "59")
        with pytest.raises(ValidationError, match="CYCLE_SNAPSHOT_INTERVAL_S"):
            SonnenSettings()

    def test_unknown_timezone_rejected(
        self, env_vars_required_only: dict[str, str], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("TIMEZONE", "Mars/Olympus_Mons")
        with pytest.raises(ValidationError, match="TIMEZONE"):
            SonnenSettings()

    def test_named_timezone_resolves(
        self, env_vars_required_only: dict[str, str], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("TIMEZONE", "Europe/Berlin")
        settings = SonnenSettings()

        assert str(settings.zone) == "Europe/Berlin"


class TestDerivedSettings:
    """Convenience properties built from the raw values."""

    def test_rediscovery_disabled_without_device_id(
        self, env_vars_required_only: dict[str, str]
    ) -> None:
        settings = SonnenSettings()

        assert settings.rediscovery_enabled is False
        assert settings.state_key == "10.0.0.50"

    def test_rediscovery_enabled_with_device_id(self, env_vars_full: dict[str, str]) -> None:
        settings = SonnenSettings()

        assert settings.rediscovery_enabled is True
        assert settings.state_key == "123456"

    def test_discovery_switch_overrides_device_id(
        self, env_vars_full: dict[str, str], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("DISCOVERY_ENABLED", "false")

        assert SonnenSettings().rediscovery_enabled is False

    def test_snapshot_interval_as_timedelta(self, env_vars_full: dict[str, str]) -> None:
        assert SonnenSettings().cycle_snapshot_interval == timedelta(minutes=30)
