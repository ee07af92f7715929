"""
Pure normalizer that converts raw sonnenBatterie JSON payloads into a PowerSample.

Takes the decoded bodies of ``/api/v2/status``, ``/api/v2/battery`` and
(optionally) ``/api/v2/latestdata``, picks the fields the energy accounting
needs, validates types, and returns a :class:`PowerSample`.

This is a pure function: no side effects, no I/O, no clock.  The fallback
timestamp and the device time zone are accepted as parameters so they can be
injected by the caller.

CHANGELOG:
- 2026-10-19: Fall back to injected timestamp when status has none
- 2026-10-19: Initial creation

TODO:
- None
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, tzinfo
from typing import Any

from pydantic import ValidationError

from sonnen_edge.src.models import PowerSample

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Mapping from PowerSample field names to /api/v2/status keys.
# ---------------------------------------------------------------------------

_STATUS_FIELD_MAP: dict[str, str] = {
    "production_w": "Production_W",
    "consumption_w": "Consumption_W",
    "grid_feed_in_w": "GridFeedIn_W",
    "battery_power_w": "Pac_total_W",
    "battery_soc_pct": "USOC",
}
"""Maps PowerSample field name -> key in the status payload."""

_STATUS_TIMESTAMP_KEY = "Timestamp"
_STATUS_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
_BATTERY_CYCLE_KEY = "cyclecount"


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------


def _number(payload: dict[str, Any], key: str) -> float | None:
    """Return ``payload[key]`` as float, or None if missing / not numeric."""
    value = payload.get(key)
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int | float):
        result = float(value)
    elif isinstance(value, str):
        try:
            result = float(value)
        except ValueError:
            return None
    else:
        return None
    # "nan" / "inf" strings parse but are not readings
    return result if math.isfinite(result) else None


def _parse_timestamp(raw: Any, tz: tzinfo | None) -> datetime | None:
    """Parse the status ``Timestamp`` (device-local wall clock)."""
    if not isinstance(raw, str):
        return None
    try:
        ts = datetime.strptime(raw, _STATUS_TIMESTAMP_FORMAT)
    except ValueError:
        try:
            ts = datetime.fromisoformat(raw)
        except ValueError:
            return None
    if ts.tzinfo is None and tz is not None:
        ts = ts.replace(tzinfo=tz)
    return ts


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def normalize(
    status: Any,
    battery: Any,
    latest: Any = None,
    *,
    now: datetime,
    tz: tzinfo | None = None,
) -> PowerSample | None:
    """Convert raw endpoint payloads into a validated PowerSample.

    Args:
        status: Decoded ``/api/v2/status`` body.
        battery: Decoded ``/api/v2/battery`` body (for the cycle count).
        latest: Decoded ``/api/v2/latestdata`` body, or ``None``.  Only
            used for capacity and module metadata.
        now: Timestamp to use when the status payload carries none.
        tz: Device time zone attached to the naive status timestamp.

    Returns:
        A :class:`PowerSample`, or ``None`` if a required field is missing,
        non-numeric or out of range.
    """
    if not isinstance(status, dict) or not isinstance(battery, dict):
        logger.warning(
            "Unexpected payload types: status=%s battery=%s",
            type(status).__name__,
            type(battery).__name__,
        )
        return None

    fields: dict[str, Any] = {}
    for field_name, key in _STATUS_FIELD_MAP.items():
        value = _number(status, key)
        if value is None:
            logger.warning("Status field '%s' missing or not numeric: %r", key, status.get(key))
            return None
        fields[field_name] = value

    cycles = _number(battery, _BATTERY_CYCLE_KEY)
    if cycles is None:
        logger.warning(
            "Battery field '%s' missing or not numeric: %r",
            _BATTERY_CYCLE_KEY,
            battery.get(_BATTERY_CYCLE_KEY),
        )
        return None
    fields["cycle_count"] = int(cycles)

    ts = _parse_timestamp(status.get(_STATUS_TIMESTAMP_KEY), tz)
    if ts is None:
        logger.warning(
            "Status timestamp %r unusable, falling back to local clock",
            status.get(_STATUS_TIMESTAMP_KEY),
        )
        ts = now.astimezone(tz) if tz is not None and now.tzinfo is not None else now
    fields["timestamp"] = ts

    if isinstance(latest, dict):
        fields["full_charge_capacity_wh"] = _number(latest, "FullChargeCapacity")
        ic_status = latest.get("ic_status")
        if isinstance(ic_status, dict):
            modules = _number(ic_status, "nrbatterymodules")
            fields["battery_modules"] = int(modules) if modules is not None else None

    try:
        return PowerSample(**fields)
    except ValidationError as exc:
        logger.warning("Reading failed validation: %s", exc)
        return None
