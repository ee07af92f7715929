"""
Incremental energy accounting for a sonnenBatterie.

Turns irregular instantaneous power samples into cumulative and daily
watt-hour totals.  Energy added per flow is ``power_w * elapsed_hours`` where
the elapsed time runs from the previous accepted sample to the new one.
Daily totals and today's extrema restart at device-local midnight.  Battery
cycle counts are tracked in two independent history windows (7 and 30 days
of hourly snapshots) from which an average cycle rate is derived.

:class:`EnergyAccumulator` is stateless apart from the configured time zone:
every operation takes an :class:`EnergyState` and returns a new one.

Persistence goes through :func:`dump_state` / :func:`load_state`, which
enumerate the recognised fields explicitly.  ``load_state`` also reads the
older camelCase record and the legacy ``{buffer, pos, size}`` buffer layout.

CHANGELOG:
- 2026-10-19: Hold last_update on out-of-order samples; drop bad snapshots singly
- 2026-10-19: Read legacy camelCase state records
- 2026-10-19: Initial creation

TODO:
- None
"""

from __future__ import annotations

import logging
import math
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime, timedelta, tzinfo
from typing import Any

from sonnen_edge.src.models import CycleSnapshot, PowerSample
from sonnen_edge.src.ring_buffer import HistoryRingBuffer

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

CYCLE_BUFFER_7DAY_CAPACITY: int = 168
"""Hourly snapshots for 7 days."""

CYCLE_BUFFER_30DAY_CAPACITY: int = 720
"""Hourly snapshots for 30 days."""

SCHEMA_VERSION: int = 2
"""Version written by :func:`dump_state`.  Version 1 is the camelCase record."""

FLOWS: tuple[str, ...] = (
    "to_battery",
    "from_battery",
    "production",
    "consumption",
    "grid_feed_in",
    "grid_consumption",
)
"""Energy flows tracked as ``total_<flow>_wh`` and ``daily_<flow>_wh``."""

_SECONDS_PER_HOUR = 3600.0
_SECONDS_PER_DAY = 86400.0
_LEGACY_MIN_SENTINEL = 2**53 - 1


def _new_state_id() -> str:
    return uuid.uuid4().hex


def _empty_7day() -> HistoryRingBuffer[CycleSnapshot]:
    return HistoryRingBuffer(CYCLE_BUFFER_7DAY_CAPACITY)


def _empty_30day() -> HistoryRingBuffer[CycleSnapshot]:
    return HistoryRingBuffer(CYCLE_BUFFER_30DAY_CAPACITY)


# ---------------------------------------------------------------------------
# State
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EnergyState:
    """Accumulated energy totals for one device.

    Instances are never mutated by the accumulator; each operation returns a
    new instance with cloned history buffers.

    Attributes:
        last_update: Timestamp of the last integrated sample, ``None`` before
            the first one.
        total_*_wh: Cumulative energy per flow since the last reset.
        daily_*_wh: Energy per flow since device-local midnight.
        today_*_w: Instantaneous extrema seen today.
        total_cycle_count: Latest cycle count reported by the device.
        cycle_count_7day: Hourly cycle snapshots, 7-day window.
        cycle_count_30day: Hourly cycle snapshots, 30-day window.
        state_id: Identity of this accounting run; changes on reset.
    """

    last_update: datetime | None = None

    total_to_battery_wh: float = 0.0
    total_from_battery_wh: float = 0.0
    total_production_wh: float = 0.0
    total_consumption_wh: float = 0.0
    total_grid_feed_in_wh: float = 0.0
    total_grid_consumption_wh: float = 0.0

    daily_to_battery_wh: float = 0.0
    daily_from_battery_wh: float = 0.0
    daily_production_wh: float = 0.0
    daily_consumption_wh: float = 0.0
    daily_grid_feed_in_wh: float = 0.0
    daily_grid_consumption_wh: float = 0.0

    today_max_consumption_w: float = 0.0
    today_min_consumption_w: float = math.inf
    today_max_production_w: float = 0.0
    today_max_grid_feed_in_w: float = 0.0
    today_max_grid_consumption_w: float = 0.0

    total_cycle_count: int = 0
    cycle_count_7day: HistoryRingBuffer[CycleSnapshot] = field(default_factory=_empty_7day)
    cycle_count_30day: HistoryRingBuffer[CycleSnapshot] = field(
        default_factory=_empty_30day
    )

    state_id: str = field(default_factory=_new_state_id, compare=False)

    def to_log(self) -> dict[str, Any]:
        """Compact summary for debug logging."""
        return {
            "last_update": self.last_update.isoformat() if self.last_update else None,
            "total_production_wh": round(self.total_production_wh, 1),
            "total_consumption_wh": round(self.total_consumption_wh, 1),
            "daily_production_wh": round(self.daily_production_wh, 1),
            "daily_consumption_wh": round(self.daily_consumption_wh, 1),
            "total_cycle_count": self.total_cycle_count,
            "cycle_count_7day": self.cycle_count_7day.to_log(),
        }


def _flow_powers(sample: PowerSample) -> dict[str, float]:
    """Decompose signed readings into the non-negative per-flow powers."""
    return {
        "to_battery": sample.to_battery_w,
        "from_battery": sample.from_battery_w,
        "production": max(0.0, sample.production_w),
        "consumption": max(0.0, sample.consumption_w),
        "grid_feed_in": sample.grid_export_w,
        "grid_consumption": sample.grid_import_w,
    }


# ---------------------------------------------------------------------------
# Accumulator
# ---------------------------------------------------------------------------


class EnergyAccumulator:
    """Pure energy-integration operations over :class:`EnergyState`.

    Args:
        tz: Device-local time zone used to decide which calendar day a
            timezone-aware timestamp falls on.  Naive timestamps are taken
            to already be device-local.
    """

    def __init__(self, tz: tzinfo | None = None) -> None:
        self._tz = tz

    @property
    def tz(self) -> tzinfo | None:
        return self._tz

    # -- time helpers --------------------------------------------------

    def _aware(self, ts: datetime) -> datetime:
        if ts.tzinfo is None:
            return ts.replace(tzinfo=self._tz or UTC)
        return ts

    def local_date(self, ts: datetime) -> date:
        """Calendar day of *ts* in the device-local zone."""
        if ts.tzinfo is not None and self._tz is not None:
            return ts.astimezone(self._tz).date()
        return ts.date()

    def elapsed_hours(self, previous: EnergyState, sample: PowerSample) -> float:
        """Hours between the previous update and *sample*, clamped at zero.

        Returns 0 when *previous* has never been updated and when the
        sample is older than the previous update.
        """
        if previous.last_update is None:
            return 0.0
        delta = self._aware(sample.timestamp) - self._aware(previous.last_update)
        seconds = delta.total_seconds()
        if seconds <= 0:
            return 0.0
        return seconds / _SECONDS_PER_HOUR

    def is_backwards(self, previous: EnergyState, sample: PowerSample) -> bool:
        """True when *sample* is older than the previous update."""
        if previous.last_update is None:
            return False
        return self._aware(sample.timestamp) < self._aware(previous.last_update)

    def is_new_day(self, previous: EnergyState, sample: PowerSample) -> bool:
        if previous.last_update is None or self.is_backwards(previous, sample):
            return False
        return self.local_date(sample.timestamp) != self.local_date(previous.last_update)

    # -- integration ---------------------------------------------------

    def integrate(self, previous: EnergyState, sample: PowerSample) -> EnergyState:
        """Return the state that results from accepting *sample*.

        Cumulative totals grow by ``power_w * elapsed_hours`` per flow.
        Daily totals do the same after restarting from zero if the sample
        falls on a different local day than ``previous.last_update``.
        Extrema compare the sample's instantaneous readings and restart
        from them on a new day.  *previous* is left untouched.

        A sample older than ``previous.last_update`` adds no energy, never
        triggers a day rollover and leaves ``last_update`` where it was, so
        the next in-order sample integrates only from the newest timestamp.
        """
        hours = self.elapsed_hours(previous, sample)
        new_day = self.is_new_day(previous, sample)
        backwards = self.is_backwards(previous, sample)

        changes: dict[str, Any] = {}
        for flow, power in _flow_powers(sample).items():
            added = power * hours
            total_key = f"total_{flow}_wh"
            daily_key = f"daily_{flow}_wh"
            daily_base = 0.0 if new_day else getattr(previous, daily_key)
            changes[total_key] = getattr(previous, total_key) + added
            changes[daily_key] = daily_base + added

        consumption = sample.consumption_w
        production = sample.production_w
        export = sample.grid_export_w
        imported = sample.grid_import_w
        if new_day:
            changes.update(
                today_max_consumption_w=consumption,
                today_min_consumption_w=consumption,
                today_max_production_w=production,
                today_max_grid_feed_in_w=export,
                today_max_grid_consumption_w=imported,
            )
        else:
            changes.update(
                today_max_consumption_w=max(previous.today_max_consumption_w, consumption),
                today_min_consumption_w=min(previous.today_min_consumption_w, consumption),
                today_max_production_w=max(previous.today_max_production_w, production),
                today_max_grid_feed_in_w=max(previous.today_max_grid_feed_in_w, export),
                today_max_grid_consumption_w=max(
                    previous.today_max_grid_consumption_w, imported
                ),
            )

        return replace(
            previous,
            last_update=previous.last_update if backwards else sample.timestamp,
            total_cycle_count=sample.cycle_count,
            cycle_count_7day=previous.cycle_count_7day.clone(),
            cycle_count_30day=previous.cycle_count_30day.clone(),
            **changes,
        )

    # -- cycle history -------------------------------------------------

    def record_cycle_snapshot(
        self,
        state: EnergyState,
        timestamp: datetime,
        cycle_count: int,
    ) -> EnergyState:
        """Append a snapshot to both history windows."""
        snapshot = CycleSnapshot(timestamp=timestamp, cycle_count=cycle_count)
        week = state.cycle_count_7day.clone()
        month = state.cycle_count_30day.clone()
        week.add(snapshot)
        month.add(snapshot)
        return replace(state, cycle_count_7day=week, cycle_count_30day=month)

    def cycle_snapshot_due(
        self,
        state: EnergyState,
        now: datetime,
        interval: timedelta,
    ) -> bool:
        newest: CycleSnapshot | None = state.cycle_count_7day.last_or(None)
        if newest is None:
            return True
        return self._aware(now) - self._aware(newest.timestamp) >= interval

    @staticmethod
    def average_cycle_rate(buffer: HistoryRingBuffer[CycleSnapshot]) -> float | None:
        """Average cycles per day across the retained window.

        Uses the oldest-stored and newest-stored snapshots, so the result
        tracks the window as it slides.  Returns ``None`` with fewer than
        two snapshots or when the endpoint timestamps are not strictly
        increasing.
        """
        if len(buffer) < 2:
            return None
        oldest = buffer.first()
        newest = buffer.last()
        try:
            seconds = (newest.timestamp - oldest.timestamp).total_seconds()
        except TypeError:
            # naive vs aware timestamps from a hand-edited state file
            return None
        if seconds <= 0:
            return None
        return (newest.cycle_count - oldest.cycle_count) / (seconds / _SECONDS_PER_DAY)

    # -- reset ---------------------------------------------------------

    @staticmethod
    def reset() -> EnergyState:
        """Return a brand-new zeroed state with a new identity."""
        return EnergyState()

    @staticmethod
    def reset_cycle_buffers(state: EnergyState) -> EnergyState:
        return replace(
            state,
            cycle_count_7day=HistoryRingBuffer(state.cycle_count_7day.capacity),
            cycle_count_30day=HistoryRingBuffer(state.cycle_count_30day.capacity),
        )


# ---------------------------------------------------------------------------
# Persistence codec
# ---------------------------------------------------------------------------

_FLOAT_FIELDS: dict[str, str] = {
    "total_to_battery_wh": "totalToBattery_Wh",
    "total_from_battery_wh": "totalFromBattery_Wh",
    "total_production_wh": "totalProduction_Wh",
    "total_consumption_wh": "totalConsumption_Wh",
    "total_grid_feed_in_wh": "totalGridFeedIn_Wh",
    "total_grid_consumption_wh": "totalGridConsumption_Wh",
    "daily_to_battery_wh": "totalDailyToBattery_Wh",
    "daily_from_battery_wh": "totalDailyFromBattery_Wh",
    "daily_production_wh": "totalDailyProduction_Wh",
    "daily_consumption_wh": "totalDailyConsumption_Wh",
    "daily_grid_feed_in_wh": "totalDailyGridFeedIn_Wh",
    "daily_grid_consumption_wh": "totalDailyGridConsumption_Wh",
    "today_max_consumption_w": "todayMaxConsumption_Wh",
    "today_max_production_w": "todayMaxProduction_Wh",
    "today_max_grid_feed_in_w": "todayMaxGridFeedIn_Wh",
    "today_max_grid_consumption_w": "todayMaxGridConsumption_Wh",
}
"""Recognised float fields -> key used by the version 1 record."""

_BUFFER_FIELDS: dict[str, tuple[str, int]] = {
    "cycle_count_7day": ("cycleCount7DayBuffer", CYCLE_BUFFER_7DAY_CAPACITY),
    "cycle_count_30day": ("cycleCount30DayBuffer", CYCLE_BUFFER_30DAY_CAPACITY),
}


def dump_state(state: EnergyState) -> dict[str, Any]:
    """Serialise *state* into a flat JSON-compatible record.

    ``state_id`` is transient and not written.  An untouched minimum
    extremum (``+inf``) is written as ``None``.
    """
    record: dict[str, Any] = {
        "schema_version": SCHEMA_VERSION,
        "last_update": state.last_update.isoformat() if state.last_update else None,
    }
    for name in _FLOAT_FIELDS:
        record[name] = getattr(state, name)
    min_consumption = state.today_min_consumption_w
    record["today_min_consumption_w"] = (
        None if math.isinf(min_consumption) else min_consumption
    )
    record["total_cycle_count"] = state.total_cycle_count
    for name in _BUFFER_FIELDS:
        buffer: HistoryRingBuffer[CycleSnapshot] = getattr(state, name)
        record[name] = buffer.serialize_state(encode=CycleSnapshot.to_dict)
    return record


def _pick(data: Mapping[str, Any], name: str, legacy: str | None) -> Any:
    if name in data:
        return data[name]
    if legacy is not None:
        return data.get(legacy)
    return None


def _as_float(value: Any, default: float) -> float:
    if value is None or isinstance(value, bool):
        return default
    try:
        result = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(result):
        return default
    return result


def _as_datetime(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.warning("Ignoring unparseable last_update %r in persisted state", value)
        return None


def _decode_snapshot(raw: Any) -> CycleSnapshot | None:
    try:
        return CycleSnapshot.from_dict(raw)
    except ValueError:
        logger.warning("Dropping unparseable cycle snapshot %r", raw)
        return None


def _load_buffer(raw: Any, capacity: int) -> HistoryRingBuffer[CycleSnapshot]:
    if not isinstance(raw, Mapping):
        return HistoryRingBuffer(capacity)

    if "head" in raw or "count" in raw:
        try:
            buffer = HistoryRingBuffer.restore_state(raw, decode=_decode_snapshot)
        except ValueError:
            logger.warning(
                "Discarding inconsistent cycle buffer state (capacity=%s)",
                raw.get("capacity"),
                exc_info=True,
            )
            return HistoryRingBuffer(capacity)
        snapshots = buffer.to_list()
        if buffer.capacity == capacity and None not in snapshots:
            return buffer
        # Rebuild without the dropped slots, keeping the newest snapshots.
        rebuilt: HistoryRingBuffer[CycleSnapshot] = HistoryRingBuffer(capacity)
        for snapshot in snapshots:
            if snapshot is not None:
                rebuilt.add(snapshot)
        return rebuilt

    return HistoryRingBuffer.from_legacy_state(raw, capacity, decode=CycleSnapshot.from_dict)


def load_state(data: Mapping[str, Any] | None) -> EnergyState:
    """Rebuild an :class:`EnergyState` from a persisted record.

    Only the recognised fields are read; anything else is ignored and every
    missing field takes its default.  Records written before
    ``schema_version`` existed use camelCase keys and the legacy buffer
    layout; both are accepted.  ``state_id`` is always freshly assigned.
    """
    if not data:
        return EnergyState()

    version = data.get("schema_version", 1)
    if version not in (1, SCHEMA_VERSION):
        logger.warning("Loading state with unknown schema_version=%r", version)

    defaults = EnergyState()
    values: dict[str, Any] = {
        "last_update": _as_datetime(_pick(data, "last_update", "lastUpdate")),
    }

    for name, legacy in _FLOAT_FIELDS.items():
        values[name] = _as_float(_pick(data, name, legacy), getattr(defaults, name))

    min_consumption = _as_float(
        _pick(data, "today_min_consumption_w", "todayMinConsumption_Wh"), math.inf
    )
    # Version 1 used MAX_SAFE_INTEGER as the "no reading yet" sentinel.
    if min_consumption >= _LEGACY_MIN_SENTINEL:
        min_consumption = math.inf
    values["today_min_consumption_w"] = min_consumption

    raw_cycles = _pick(data, "total_cycle_count", "total_cycleCount")
    cycles = _as_float(raw_cycles, 0.0)
    values["total_cycle_count"] = int(cycles) if math.isfinite(cycles) else 0

    for name, (legacy, capacity) in _BUFFER_FIELDS.items():
        values[name] = _load_buffer(_pick(data, name, legacy), capacity)

    return EnergyState(**values)
