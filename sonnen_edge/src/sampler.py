"""
Per-device sampling loop body: fetch, integrate, publish, with rediscovery.

Each tick fetches one reading from the battery's last known address and
feeds it to the :class:`~sonnen_edge.src.energy.EnergyAccumulator`.  When the
fetch fails the orchestrator makes exactly one rediscovery attempt: it asks
the discovery service for all batteries, matches the configured device id
against their serial numbers, and, if the battery now lives at a different
address, retries the fetch there once.  Designed to be robust:

- A tick never raises on fetch or discovery failure; it returns the
  unchanged previous state instead (stale until the next tick).
- Retry depth is exactly one; there is no rediscovery chain within a tick.
- Ticks and resets are serialized by one asyncio.Lock, so a reset never
  races an in-flight integrate.
- A failing subscriber is logged and does not affect the tick result.

CHANGELOG:
- 2026-10-19: Use accumulator is_backwards for the out-of-order warning
- 2026-10-19: Add reset_cycle_buffers
- 2026-10-19: Initial creation

TODO:
- None
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from datetime import timedelta
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol

from sonnen_edge.src.client import DiscoveryError, FetchError
from sonnen_edge.src.energy import EnergyAccumulator, EnergyState

if TYPE_CHECKING:
    from sonnen_edge.src.models import DiscoveredDevice, PowerSample

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MAX_FETCH_ATTEMPTS: int = 2
"""The initial fetch plus one retry after a successful rediscovery."""

DEFAULT_SNAPSHOT_INTERVAL = timedelta(hours=1)
"""Spacing of cycle-count snapshots (168 of them cover 7 days)."""


class ConnectionState(StrEnum):
    CONNECTED = "connected"
    REDISCOVERING = "rediscovering"
    STALE = "stale"


class ReadingSource(Protocol):
    """What the orchestrator needs from the HTTP client."""

    async def fetch_latest_reading(self, address: str) -> PowerSample: ...

    async def discover_devices(self) -> list[DiscoveredDevice]: ...


Subscriber = Callable[["EnergyState", "PowerSample"], Awaitable[None] | None]


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class SamplingOrchestrator:
    """Owns the EnergyState of one battery and advances it once per tick.

    Args:
        client: Source of readings and discovery results.
        address: Last known LAN address of the battery.
        device_id: Stable identity used to find the battery during
            rediscovery.  Empty disables rediscovery.
        accumulator: Energy integration operations.
        state: Initial state (e.g. restored from the state store).
        rediscovery_enabled: Set False to skip rediscovery entirely.
        snapshot_interval: Minimum spacing between cycle snapshots.
    """

    def __init__(
        self,
        *,
        client: ReadingSource,
        address: str,
        device_id: str = "",
        accumulator: EnergyAccumulator | None = None,
        state: EnergyState | None = None,
        rediscovery_enabled: bool = True,
        snapshot_interval: timedelta = DEFAULT_SNAPSHOT_INTERVAL,
    ) -> None:
        self._client = client
        self._address = address
        self._device_id = device_id
        self._accumulator = accumulator or EnergyAccumulator()
        self._state = state if state is not None else EnergyState()
        self._rediscovery_enabled = rediscovery_enabled and bool(device_id)
        self._snapshot_interval = snapshot_interval
        self._lock = asyncio.Lock()
        self._subscribers: list[Subscriber] = []
        self._connection = ConnectionState.CONNECTED
        self._consecutive_failures = 0
        self._last_sample: PowerSample | None = None

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def state(self) -> EnergyState:
        return self._state

    @property
    def address(self) -> str:
        return self._address

    @property
    def device_id(self) -> str:
        return self._device_id

    @property
    def connection(self) -> ConnectionState:
        return self._connection

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def last_sample(self) -> PowerSample | None:
        return self._last_sample

    def subscribe(self, callback: Subscriber) -> None:
        """Register *callback(state, sample)*, called after each successful tick."""
        self._subscribers.append(callback)

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    async def tick(self) -> EnergyState:
        """Run one sampling cycle and return the resulting state.

        On any fetch failure that rediscovery cannot fix, the previous state
        is returned unchanged and the orchestrator is marked stale.
        """
        async with self._lock:
            sample = await self._fetch_with_rediscovery()
            if sample is None:
                self._consecutive_failures += 1
                self._connection = ConnectionState.STALE
                logger.warning(
                    "Tick for %s degraded to stale state (consecutive failures: %d)",
                    self._device_id or self._address,
                    self._consecutive_failures,
                )
                return self._state

            self._state = self._accept(sample)
            self._last_sample = sample
            self._connection = ConnectionState.CONNECTED
            self._consecutive_failures = 0
            await self._publish(self._state, sample)
            return self._state

    async def _fetch_with_rediscovery(self) -> PowerSample | None:
        """Fetch at the current address, then at most once more after rediscovery."""
        address = self._address
        for attempt in range(1, MAX_FETCH_ATTEMPTS + 1):
            try:
                return await self._client.fetch_latest_reading(address)
            except FetchError as exc:
                logger.warning(
                    "Fetch from %s failed (attempt %d/%d): %s",
                    address,
                    attempt,
                    MAX_FETCH_ATTEMPTS,
                    exc,
                )
            except Exception:
                logger.warning(
                    "Unexpected error fetching from %s (attempt %d/%d)",
                    address,
                    attempt,
                    MAX_FETCH_ATTEMPTS,
                    exc_info=True,
                )

            if attempt == MAX_FETCH_ATTEMPTS:
                break
            new_address = await self._rediscover()
            if new_address is None:
                break
            address = new_address
        return None

    async def _rediscover(self) -> str | None:
        """Resolve a new address for this battery, or None if there is none."""
        if not self._rediscovery_enabled:
            return None

        self._connection = ConnectionState.REDISCOVERING
        try:
            devices = await self._client.discover_devices()
        except DiscoveryError as exc:
            logger.warning("Rediscovery failed: %s", exc)
            return None
        except Exception:
            logger.warning("Unexpected error during rediscovery", exc_info=True)
            return None

        match = next((d for d in devices if d.matches(self._device_id)), None)
        if match is None:
            logger.warning(
                "Rediscovery found no battery matching device id %s among %d device(s)",
                self._device_id,
                len(devices),
            )
            return None
        if match.lanip == self._address:
            logger.warning(
                "Rediscovery returned unchanged address %s for %s, not retrying",
                match.lanip,
                self._device_id,
            )
            return None

        logger.info(
            "Battery %s moved from %s to %s",
            self._device_id,
            self._address,
            match.lanip,
        )
        self._address = match.lanip
        return match.lanip

    def _accept(self, sample: PowerSample) -> EnergyState:
        previous = self._state
        if self._accumulator.is_backwards(previous, sample):
            logger.warning(
                "Reading timestamp %s is before last update %s, adding no energy",
                sample.timestamp.isoformat(),
                previous.last_update.isoformat(),
            )

        state = self._accumulator.integrate(previous, sample)
        if self._accumulator.cycle_snapshot_due(state, sample.timestamp, self._snapshot_interval):
            state = self._accumulator.record_cycle_snapshot(
                state, sample.timestamp, sample.cycle_count
            )
            logger.debug("Recorded cycle snapshot: %s", state.cycle_count_7day.to_log())
        logger.debug("State after tick: %s", state.to_log())
        return state

    async def _publish(self, state: EnergyState, sample: PowerSample) -> None:
        for callback in list(self._subscribers):
            try:
                result = callback(state, sample)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.error("State subscriber %r failed", callback, exc_info=True)

    # ------------------------------------------------------------------
    # Resets
    # ------------------------------------------------------------------

    async def reset(self) -> EnergyState:
        """Replace the state with a fresh zeroed one."""
        async with self._lock:
            self._state = self._accumulator.reset()
            logger.info("Energy state reset for %s", self._device_id or self._address)
            return self._state

    async def reset_cycle_buffers(self) -> EnergyState:
        """Empty both cycle-count history windows, keeping the totals."""
        async with self._lock:
            self._state = self._accumulator.reset_cycle_buffers(self._state)
            logger.info("Cycle count buffers reset for %s", self._device_id or self._address)
            return self._state
