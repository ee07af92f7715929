"""
Value types exchanged between the client, normalizer and energy accounting.

Defines the PowerSample model (one normalized reading of the sonnenBatterie
status endpoints), the CycleSnapshot record kept in the cycle-count history,
and DiscoveredDevice, one entry of the vendor discovery service response.

CHANGELOG:
- 2026-10-19: Initial creation

TODO:
- None
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class PowerSample(BaseModel):
    """A single normalized power reading from a sonnenBatterie.

    All power values are instantaneous watts.  The timestamp is the
    device-local wall clock of the reading, made timezone-aware by the
    normalizer.

    Attributes:
        timestamp: Time of the reading.
        production_w: PV production.
        consumption_w: Household consumption.
        grid_feed_in_w: Grid power.  Positive = exporting,
            negative = importing.
        battery_power_w: Battery inverter power.  Negative = charging,
            positive = discharging.
        battery_soc_pct: User state of charge (0-100).
        cycle_count: Battery charge/discharge cycle counter.
        full_charge_capacity_wh: Usable capacity reported by latestdata,
            if available.
        battery_modules: Number of installed battery modules, if available.
    """

    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    production_w: float
    consumption_w: float
    grid_feed_in_w: float
    battery_power_w: float
    battery_soc_pct: float = Field(ge=0, le=100)
    cycle_count: int = Field(ge=0)
    full_charge_capacity_wh: float | None = None
    battery_modules: int | None = None

    @property
    def to_battery_w(self) -> float:
        """Charging power (positive part of the inverted battery power)."""
        return max(0.0, -self.battery_power_w)

    @property
    def from_battery_w(self) -> float:
        return max(0.0, self.battery_power_w)

    @property
    def grid_export_w(self) -> float:
        return max(0.0, self.grid_feed_in_w)

    @property
    def grid_import_w(self) -> float:
        return max(0.0, -self.grid_feed_in_w)


@dataclass(frozen=True, slots=True)
class CycleSnapshot:
    """Battery cycle count observed at a point in time."""

    timestamp: datetime
    cycle_count: int

    def to_dict(self) -> dict[str, Any]:
        return {"timestamp": self.timestamp.isoformat(), "cycle_count": self.cycle_count}

    @classmethod
    def from_dict(cls, data: Any) -> CycleSnapshot:
        """Parse a persisted snapshot.

        Accepts both ``cycle_count`` and the older ``cycleCount`` key and
        ISO-8601 timestamps with a trailing ``Z``.

        Raises:
            ValueError: If the timestamp or count cannot be parsed.
        """
        if not isinstance(data, dict):
            raise ValueError(f"Cycle snapshot must be an object, got {type(data).__name__}")
        raw_ts = data.get("timestamp")
        raw_count = data.get("cycle_count", data.get("cycleCount"))
        if not isinstance(raw_ts, str) or raw_count is None:
            raise ValueError(f"Incomplete cycle snapshot: {data!r}")
        try:
            ts = datetime.fromisoformat(raw_ts.replace("Z", "+00:00"))
            count = int(raw_count)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid cycle snapshot {data!r}: {exc}") from exc
        return cls(timestamp=ts, cycle_count=count)


class DiscoveredDevice(BaseModel):
    """One battery reported by the vendor discovery service.

    Attributes:
        lanip: Current LAN address of the battery.
        device: Serial number; the stable identity of the battery.
        info: Product name, e.g. ``"sonnenBatterie"``.
        ca20: Vendor flag passed through unchanged.
    """

    lanip: str
    device: int
    info: str = ""
    ca20: bool = False

    def matches(self, device_id: str) -> bool:
        """Return True when *device_id* identifies this battery.

        Configured device ids are either the bare serial number or the
        serial followed by an underscore suffix (e.g. ``"123456_battery"``).
        """
        serial = str(self.device)
        return device_id == serial or device_id.startswith(serial + "_")
