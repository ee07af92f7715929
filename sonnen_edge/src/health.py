"""
Health file writer for the sonnen edge daemon.

Writes a JSON health file at a configurable path with five fields:
- last_tick_ts: ISO timestamp of the most recent tick (success or not).
- last_success_ts: ISO timestamp of the most recent successful tick.
- consecutive_failures: Ticks in a row that ended stale.
- device_address: Address the battery was last read from.
- connection: connected / rediscovering / stale.

The file is rewritten on every tick, providing a simple liveness signal that
Docker HEALTHCHECK or monitoring can inspect.

CHANGELOG:
- 2026-10-19: Track tick outcome and device address instead of upload state
- 2026-10-19: Initial creation

TODO:
- None
"""

from __future__ import annotations

import json
import os
from datetime import UTC, datetime
from pathlib import Path
from typing import Any


class HealthWriter:
    """Writes daemon health status to a JSON file.

    Args:
        path: Filesystem path for the health JSON file. Accepts str or Path.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._last_tick_ts: str | None = None
        self._last_success_ts: str | None = None
        self._consecutive_failures: int = 0
        self._device_address: str | None = None
        self._connection: str | None = None

    def record_tick(
        self,
        *,
        success: bool,
        consecutive_failures: int,
        device_address: str,
        connection: str,
    ) -> None:
        """Record the outcome of one tick and write the health file."""
        now = datetime.now(tz=UTC).isoformat()
        self._last_tick_ts = now
        if success:
            self._last_success_ts = now
        self._consecutive_failures = consecutive_failures
        self._device_address = device_address
        self._connection = str(connection)
        self._write()

    def snapshot(self) -> dict[str, Any]:
        return {
            "last_tick_ts": self._last_tick_ts,
            "last_success_ts": self._last_success_ts,
            "consecutive_failures": self._consecutive_failures,
            "device_address": self._device_address,
            "connection": self._connection,
        }

    def _write(self) -> None:
        # Write-then-rename so readers never see a half-written file.
        tmp = self.path.with_name(self.path.name + ".tmp")
        tmp.write_text(json.dumps(self.snapshot()))
        os.replace(tmp, self.path)
