"""
Shared test fixtures for sonnen edge daemon tests.

Provides environment variable fixtures for SonnenSettings configuration tests.
All daemon env vars are cleaned before each test to ensure isolation.

CHANGELOG:
- 2026-10-19: Initial creation

TODO:
- None
"""

from __future__ import annotations

import pytest

# All SonnenSettings environment variable names, used for cleanup.
_ALL_SONNEN_ENV_VARS = (
    "SONNEN_HOST",
    "SONNEN_AUTH_TOKEN",
    "SONNEN_DEVICE_ID",
    "DISCOVERY_ENABLED",
    "DISCOVERY_URL",
    "POLL_INTERVAL_S",
    "HTTP_TIMEOUT_S",
    "CYCLE_SNAPSHOT_INTERVAL_S",
    "TIMEZONE",
    "STATE_PATH",
    "HEALTH_PATH",
)


@pytest.fixture(autouse=True)
def _clean_sonnen_env(monkeypatch: pytest.MonkeyPatch, tmp_path: str) -> None:
    """Remove all daemon env vars and isolate from .env files before each test.

    Changes working directory to tmp_path so no .env file is accidentally
    loaded by Pydantic BaseSettings.
    """
    for var in _ALL_SONNEN_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture()
def env_vars_full(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Set all required and optional environment variables for SonnenSettings.

    Returns the dict of env var names to values for assertion convenience.
    """
    env = {
        "SONNEN_HOST": "192.168.1.50",
        "SONNEN_AUTH_TOKEN": "test-auth-token",
        "SONNEN_DEVICE_ID": "123456",
        "DISCOVERY_ENABLED": "true",
        "DISCOVERY_URL": "https://discovery.example.com/find",
        "POLL_INTERVAL_S": "30",
        "HTTP_TIMEOUT_S": "5",
        "CYCLE_SNAPSHOT_INTERVAL_S": "1800",
        "TIMEZONE": "UTC",
        "STATE_PATH": "/tmp/test-state.db",
        "HEALTH_PATH": "/tmp/test-health.json",
    }
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    return env


@pytest.fixture()
def env_vars_required_only(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Set only the required environment variables (no optional ones).

    Optional variables should fall back to their defaults.
    """
    env = {
        "SONNEN_HOST": "10.0.0.50",
        "SONNEN_AUTH_TOKEN": "token-xyz",
    }
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    return env
