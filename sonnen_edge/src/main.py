"""
Sonnen edge daemon main loop: energy accounting for one sonnenBatterie.

Runs a single asyncio poll loop.  Each iteration calls
``SamplingOrchestrator.tick()``, which fetches a reading (rediscovering the
battery once if its address changed), integrates it into the EnergyState and
publishes the result to its subscribers: the state store, which persists the
state, and a summary logger.  The health file is rewritten after every tick.

The loop is resilient: an exception in one iteration is logged and does not
crash the loop.  SIGTERM/SIGINT set a shared asyncio.Event; the loop finishes
its current iteration, the state is saved one final time and the process
exits.  SIGUSR1 resets all energy totals, SIGUSR2 clears only the cycle-count
history windows; both save the new state immediately.

Structured JSON logging is used for all events.

CHANGELOG:
- 2026-10-19: Add SIGUSR1 / SIGUSR2 reset triggers
- 2026-10-19: Replace poll/upload loops with a single tick loop
- 2026-10-19: Initial creation

TODO:
- None
"""

from __future__ import annotations

import asyncio
import contextlib
import hashlib
import json
import logging
import signal
import sys
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sonnen_edge.src.derived import summary
from sonnen_edge.src.health import HealthWriter
from sonnen_edge.src.sampler import ConnectionState

if TYPE_CHECKING:
    from sonnen_edge.src.config import SonnenSettings
    from sonnen_edge.src.energy import EnergyState
    from sonnen_edge.src.models import PowerSample
    from sonnen_edge.src.sampler import SamplingOrchestrator
    from sonnen_edge.src.state_store import StateStore

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Structured JSON logging setup
# ---------------------------------------------------------------------------


def configure_logging(level: int = logging.INFO) -> None:
    """Configure structured JSON logging for the edge daemon.

    Sets up the root logger with a JSON-formatted handler writing to stderr.
    """

    class _JsonFormatter(logging.Formatter):
        """Minimal JSON log formatter."""

        def format(self, record: logging.LogRecord) -> str:
            log_entry = {
                "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
                "level": record.levelname,
                "logger": record.name,
                "msg": record.getMessage(),
            }
            if record.exc_info and record.exc_info[1] is not None:
                log_entry["exception"] = self.formatException(record.exc_info)
            return json.dumps(log_entry)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_JsonFormatter())
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)


def _masked_token(value: str | None) -> str:
    """Return a short non-reversible token fingerprint for diagnostics."""
    if not value:
        return "empty"
    digest = hashlib.sha256(value.encode("utf-8")).hexdigest()[:10]
    return f"len={len(value)} sha256={digest}"


# ---------------------------------------------------------------------------
# Startup config logging
# ---------------------------------------------------------------------------


def log_config_summary(settings: SonnenSettings) -> None:
    """Log a config summary at startup with the auth token masked."""
    logger.info(
        "Sonnen edge daemon starting with config: "
        "sonnen_host=%s, sonnen_device_id=%s, discovery_enabled=%s, "
        "discovery_url=%s, poll_interval_s=%s, http_timeout_s=%s, "
        "cycle_snapshot_interval_s=%s, timezone=%s, "
        "state_path=%s, health_path=%s, auth_token_masked=%s",
        settings.sonnen_host,
        settings.sonnen_device_id or "<unset>",
        settings.discovery_enabled,
        settings.discovery_url,
        settings.poll_interval_s,
        settings.http_timeout_s,
        settings.cycle_snapshot_interval_s,
        settings.timezone,
        settings.state_path,
        settings.health_path,
        _masked_token(settings.sonnen_auth_token),
    )
    if settings.discovery_enabled and not settings.sonnen_device_id:
        logger.warning("SONNEN_DEVICE_ID is not set, rediscovery is disabled")


# ---------------------------------------------------------------------------
# Subscribers
# ---------------------------------------------------------------------------


def _state_saver(store: StateStore, state_key: str):
    """Build a subscriber that persists every new state under *state_key*."""

    async def _save(state: EnergyState, sample: PowerSample) -> None:
        await store.save(state_key, state)

    return _save


def _log_tick_summary(state: EnergyState, sample: PowerSample) -> None:
    logger.info("Tick success: %s", summary(state, sample))


# ---------------------------------------------------------------------------
# Single-iteration functions (easily testable)
# ---------------------------------------------------------------------------


async def _tick_once(
    *,
    orchestrator: SamplingOrchestrator,
    health: HealthWriter | None,
) -> bool:
    """Execute a single tick and update the health file.

    Catches all exceptions so that the caller's loop is never broken.

    Returns:
        True if the tick produced a fresh state, False otherwise.
    """
    success = False
    try:
        await orchestrator.tick()
        success = orchestrator.connection == ConnectionState.CONNECTED
    except Exception:
        logger.error("Tick error", exc_info=True)

    if health is not None:
        try:
            health.record_tick(
                success=success,
                consecutive_failures=orchestrator.consecutive_failures,
                device_address=orchestrator.address,
                connection=orchestrator.connection,
            )
        except Exception:
            logger.warning("Failed to write health file", exc_info=True)
    return success


async def _save_state(*, store: StateStore, state_key: str, state: EnergyState) -> bool:
    try:
        await store.save(state_key, state)
        return True
    except Exception:
        logger.error("Failed to save state for %s", state_key, exc_info=True)
        return False


async def _reset_once(
    *,
    orchestrator: SamplingOrchestrator,
    store: StateStore,
    state_key: str,
    cycle_buffers_only: bool,
) -> None:
    """Apply a reset and persist the result immediately."""
    try:
        if cycle_buffers_only:
            state = await orchestrator.reset_cycle_buffers()
        else:
            state = await orchestrator.reset()
    except Exception:
        logger.error("Reset failed", exc_info=True)
        return
    await _save_state(store=store, state_key=state_key, state=state)


# ---------------------------------------------------------------------------
# Loop runner
# ---------------------------------------------------------------------------


async def _poll_loop(
    *,
    orchestrator: SamplingOrchestrator,
    poll_interval_s: float,
    shutdown_event: asyncio.Event,
    health: HealthWriter | None,
) -> None:
    """Run ticks until shutdown_event is set, sleeping poll_interval_s between them."""
    logger.info("Poll loop started (interval=%ss)", poll_interval_s)
    while not shutdown_event.is_set():
        await _tick_once(orchestrator=orchestrator, health=health)
        # Use wait with timeout so we can check shutdown between sleeps
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(
                shutdown_event.wait(),
                timeout=poll_interval_s,
            )
    logger.info("Poll loop stopped")


async def run(
    *,
    orchestrator: SamplingOrchestrator,
    store: StateStore,
    state_key: str,
    poll_interval_s: float,
    shutdown_event: asyncio.Event,
    health: HealthWriter | None = None,
) -> None:
    """Run the poll loop until shutdown, then save the state one last time."""
    await _poll_loop(
        orchestrator=orchestrator,
        poll_interval_s=poll_interval_s,
        shutdown_event=shutdown_event,
        health=health,
    )

    logger.info("Saving final state before exit")
    await _save_state(store=store, state_key=state_key, state=orchestrator.state)
    logger.info("Shutdown complete")


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


async def async_main() -> None:
    """Async entrypoint: load config, restore state, build components, run.

    Sets up SIGTERM/SIGINT handlers for graceful shutdown and SIGUSR1 /
    SIGUSR2 handlers for the two reset operations.
    """
    configure_logging()

    from sonnen_edge.src.client import SonnenClient
    from sonnen_edge.src.config import SonnenSettings
    from sonnen_edge.src.energy import EnergyAccumulator
    from sonnen_edge.src.sampler import SamplingOrchestrator
    from sonnen_edge.src.state_store import StateStore

    settings = SonnenSettings()
    log_config_summary(settings)

    shutdown_event = asyncio.Event()

    client = SonnenClient(
        settings.sonnen_auth_token,
        timeout_s=settings.http_timeout_s,
        discovery_url=settings.discovery_url,
        tz=settings.zone,
    )
    accumulator = EnergyAccumulator(tz=settings.zone)
    health = HealthWriter(settings.health_path)
    state_key = settings.state_key

    async with StateStore(settings.state_path) as store:
        state = await store.load(state_key)
        if state is None:
            logger.info("No stored state for %s, starting from zero", state_key)
        else:
            logger.info("Restored state for %s: %s", state_key, state.to_log())

        orchestrator = SamplingOrchestrator(
            client=client,
            address=settings.sonnen_host,
            device_id=settings.sonnen_device_id,
            accumulator=accumulator,
            state=state,
            rediscovery_enabled=settings.rediscovery_enabled,
            snapshot_interval=settings.cycle_snapshot_interval,
        )
        orchestrator.subscribe(_state_saver(store, state_key))
        orchestrator.subscribe(_log_tick_summary)

        loop = asyncio.get_running_loop()
        pending: set[asyncio.Task] = set()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(
                sig,
                lambda: _handle_signal(shutdown_event),
            )
        for sig, cycle_only in ((signal.SIGUSR1, False), (signal.SIGUSR2, True)):
            loop.add_signal_handler(
                sig,
                _handle_reset_signal,
                pending,
                orchestrator,
                store,
                state_key,
                cycle_only,
            )

        await run(
            orchestrator=orchestrator,
            store=store,
            state_key=state_key,
            poll_interval_s=settings.poll_interval_s,
            shutdown_event=shutdown_event,
            health=health,
        )
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)


def _handle_signal(shutdown_event: asyncio.Event) -> None:
    """Handle SIGTERM/SIGINT by setting the shutdown event.

    Args:
        shutdown_event: The event to set for graceful shutdown.
    """
    logger.info("Received shutdown signal, initiating graceful shutdown")
    shutdown_event.set()


def _handle_reset_signal(
    pending: set[asyncio.Task],
    orchestrator: SamplingOrchestrator,
    store: StateStore,
    state_key: str,
    cycle_buffers_only: bool,
) -> None:
    """Schedule a reset from a signal handler (SIGUSR1 full, SIGUSR2 cycle buffers)."""
    logger.info(
        "Received reset signal (%s)",
        "cycle buffers" if cycle_buffers_only else "all energy totals",
    )
    task = asyncio.get_running_loop().create_task(
        _reset_once(
            orchestrator=orchestrator,
            store=store,
            state_key=state_key,
            cycle_buffers_only=cycle_buffers_only,
        )
    )
    pending.add(task)
    task.add_done_callback(pending.discard)


def main() -> None:
    """Synchronous entrypoint for the edge daemon."""
    asyncio.run(async_main())


if __name__ == "__main__":
    main()
