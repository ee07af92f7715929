"""
Display-layer metrics derived from an EnergyState and the latest PowerSample.

Ratios whose denominator is zero (e.g. no production yet today) return
``None`` instead of NaN or infinity.

CHANGELOG:
- 2026-10-19: Initial creation

TODO:
- None
"""

from __future__ import annotations

from typing import Any

from sonnen_edge.src.energy import EnergyAccumulator, EnergyState
from sonnen_edge.src.models import PowerSample


def _share_pct(part_wh: float, whole_wh: float) -> float | None:
    if whole_wh <= 0:
        return None
    return part_wh / whole_wh * 100.0


def self_consumption_pct(state: EnergyState) -> float | None:
    """Share of today's production consumed locally rather than exported."""
    fed_in = _share_pct(state.daily_grid_feed_in_wh, state.daily_production_wh)
    if fed_in is None:
        return None
    return 100.0 - fed_in


def autarky_pct(state: EnergyState) -> float | None:
    """Share of today's consumption not drawn from the grid."""
    from_grid = _share_pct(state.daily_grid_consumption_wh, state.daily_consumption_wh)
    if from_grid is None:
        return None
    return 100.0 - from_grid


def charging_state(sample: PowerSample) -> str:
    if sample.battery_power_w < 0:
        return "charging"
    if sample.battery_power_w > 0:
        return "discharging"
    return "idle"


def remaining_energy_wh(sample: PowerSample) -> float | None:
    if sample.full_charge_capacity_wh is None:
        return None
    return sample.full_charge_capacity_wh * sample.battery_soc_pct / 100.0


def summary(state: EnergyState, sample: PowerSample) -> dict[str, Any]:
    """Flat snapshot of current flows and derived metrics.

    Logged once per successful tick by the daemon; all energy values are
    in kWh to match what a dashboard would display.
    """
    return {
        "production_w": sample.production_w,
        "consumption_w": sample.consumption_w,
        "from_grid_w": sample.grid_import_w,
        "to_grid_w": sample.grid_export_w,
        "from_battery_w": sample.from_battery_w,
        "to_battery_w": sample.to_battery_w,
        "battery_soc_pct": sample.battery_soc_pct,
        "charging_state": charging_state(sample),
        "remaining_energy_kwh": _kwh(remaining_energy_wh(sample)),
        "daily_production_kwh": _kwh(state.daily_production_wh),
        "daily_consumption_kwh": _kwh(state.daily_consumption_wh),
        "self_consumption_pct": self_consumption_pct(state),
        "autarky_pct": autarky_pct(state),
        "cycle_count": state.total_cycle_count,
        "cycle_rate_7day": EnergyAccumulator.average_cycle_rate(state.cycle_count_7day),
        "cycle_rate_30day": EnergyAccumulator.average_cycle_rate(state.cycle_count_30day),
    }


def _kwh(value_wh: float | None) -> float | None:
    if value_wh is None:
        return None
    return round(value_wh / 1000.0, 3)
