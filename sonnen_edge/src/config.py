"""
Sonnen edge daemon configuration loaded from environment variables.

Uses Pydantic BaseSettings for automatic env var loading and validation.
All configuration values come from environment variables or .env files;
no hardcoded IPs or credentials.

CHANGELOG:
- 2026-10-19: Add TIMEZONE and cycle snapshot interval
- 2026-10-19: Initial creation

TODO:
- None
"""

from datetime import timedelta, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import ValidationInfo, field_validator
from pydantic_settings import BaseSettings


class SonnenSettings(BaseSettings):
    """Daemon configuration for one sonnenBatterie.

    All values are loaded from environment variables. Required variables
    must be set; optional variables have sensible defaults.

    Attributes:
        sonnen_host: Battery IP address / hostname on the local LAN.
        sonnen_auth_token: API token from the battery web UI (``Auth-Token``).
        sonnen_device_id: Battery serial number.  Used to find the battery
            again when its address changes; empty disables rediscovery.
        discovery_enabled: Whether rediscovery may be attempted at all.
        discovery_url: Vendor discovery service (must be HTTPS).
        poll_interval_s: Seconds between ticks (min 5).
        http_timeout_s: Timeout per HTTP request.
        cycle_snapshot_interval_s: Spacing of cycle-count snapshots (min 60).
        timezone: IANA zone name of the battery's location, used for the
            local-midnight rollover of daily totals.
        state_path: SQLite file holding persisted energy state.
        health_path: JSON health file path.
    """

    sonnen_host: str
    sonnen_auth_token: str
    sonnen_device_id: str = ""
    discovery_enabled: bool = True
    discovery_url: str = "https://find-my.sonnen-batterie.com/find"
    poll_interval_s: int = 60
    http_timeout_s: float = 10.0
    cycle_snapshot_interval_s: int = 3600
    timezone: str = "UTC"
    state_path: str = "/data/state.db"
    health_path: str = "/data/health.json"

    @field_validator("sonnen_host", "sonnen_auth_token")
    @classmethod
    def must_not_be_blank(cls, v: str, info: ValidationInfo) -> str:
        if not v.strip():
            raise ValueError(f"{info.field_name.upper()} must not be empty")
        return v.strip()

    @field_validator("discovery_url")
    @classmethod
    def discovery_url_must_be_https(cls, v: str) -> str:
        """Reject plain HTTP for the internet-facing discovery service."""
        if not v.startswith("https://"):
            raise ValueError(f"DISCOVERY_URL must use HTTPS (got: '{v[:20]}...')")
        return v

    @field_validator("poll_interval_s")
    @classmethod
    def poll_interval_must_be_reasonable(cls, v: int) -> int:
        if v < 5:
            raise ValueError("POLL_INTERVAL_S must be >= 5")
        return v

    @field_validator("http_timeout_s")
    @classmethod
    def http_timeout_must_be_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("HTTP_TIMEOUT_S must be > 0")
        return v

    @field_validator("cycle_snapshot_interval_s")
    @classmethod
    def snapshot_interval_must_be_reasonable(cls, v: int) -> int:
        if v < 60:
            raise ValueError("CYCLE_SNAPSHOT_INTERVAL_S must be >= 60")
        return v

    @field_validator("timezone")
    @classmethod
    def timezone_must_exist(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"TIMEZONE '{v}' is not a known IANA time zone") from exc
        return v

    @property
    def zone(self) -> tzinfo:
        return ZoneInfo(self.timezone)

    @property
    def rediscovery_enabled(self) -> bool:
        return self.discovery_enabled and bool(self.sonnen_device_id)

    @property
    def cycle_snapshot_interval(self) -> timedelta:
        return timedelta(seconds=self.cycle_snapshot_interval_s)

    @property
    def state_key(self) -> str:
        """Row key in the state store: the serial, else the configured host."""
        return self.sonnen_device_id or self.sonnen_host

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}
