"""
Durable per-device EnergyState storage using async SQLite.

The accumulated totals are the only thing that cannot be re-read from the
battery, so the daemon saves the state after every successful tick and once
more at shutdown, and restores it at startup.  Each device has one row keyed
by its device id; saving again replaces the row.

Operations:
- save(device_id, state): UPSERT the JSON-encoded state.
- load(device_id): SELECT and decode the state, or None when absent.
- delete(device_id): DELETE the row.
- device_ids(): list stored device ids.
- close(): Close the underlying database connection.

Supports async context manager protocol for clean resource management.

CHANGELOG:
- 2026-10-19: Initial creation

TODO:
- None
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

import aiosqlite

from sonnen_edge.src.energy import EnergyState, dump_state, load_state

logger = logging.getLogger(__name__)

_CREATE_TABLE_SQL = """\
CREATE TABLE IF NOT EXISTS energy_state (
    device_id TEXT PRIMARY KEY,
    payload TEXT NOT NULL,
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);
"""

_UPSERT_SQL = """\
INSERT INTO energy_state (device_id, payload, updated_at)
VALUES (?, ?, datetime('now'))
ON CONFLICT(device_id) DO UPDATE SET
    payload = excluded.payload,
    updated_at = excluded.updated_at;
"""

_SELECT_SQL = "SELECT payload FROM energy_state WHERE device_id = ?;"

_DELETE_SQL = "DELETE FROM energy_state WHERE device_id = ?;"

_IDS_SQL = "SELECT device_id FROM energy_state ORDER BY device_id ASC;"


class StateStore:
    """Keyed EnergyState persistence backed by a SQLite database.

    Args:
        path: Filesystem path for the SQLite database file.
              Accepts ``str`` or ``pathlib.Path``.

    Usage::

        async with StateStore(path="/data/state.db") as store:
            state = await store.load("12345") or EnergyState()
            await store.save("12345", state)
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._db: aiosqlite.Connection | None = None

    async def open(self) -> None:
        """Open the connection in WAL mode and create the table if needed."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(str(self._path))
        await self._db.execute("PRAGMA journal_mode=WAL;")
        await self._db.execute(_CREATE_TABLE_SQL)
        await self._db.commit()

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def __aenter__(self) -> StateStore:
        await self.open()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def save(self, device_id: str, state: EnergyState) -> None:
        """Insert or replace the stored state for *device_id*."""
        assert self._db is not None, "StateStore not opened. Call open() or use async with."
        payload = json.dumps(dump_state(state))
        await self._db.execute(_UPSERT_SQL, (device_id, payload))
        await self._db.commit()

    async def load(self, device_id: str) -> EnergyState | None:
        """Return the stored state for *device_id*, or None if there is none.

        A row whose payload is not valid JSON is logged and treated as
        absent, so a corrupt record never blocks startup.
        """
        assert self._db is not None, "StateStore not opened. Call open() or use async with."
        cursor = await self._db.execute(_SELECT_SQL, (device_id,))
        row = await cursor.fetchone()
        if row is None:
            return None
        try:
            data = json.loads(row[0])
        except json.JSONDecodeError:
            logger.warning("Stored state for %s is not valid JSON, ignoring", device_id)
            return None
        if not isinstance(data, dict):
            logger.warning("Stored state for %s is not an object, ignoring", device_id)
            return None
        return load_state(data)

    async def delete(self, device_id: str) -> None:
        """Remove the stored state for *device_id*.  Missing ids are ignored."""
        assert self._db is not None, "StateStore not opened. Call open() or use async with."
        await self._db.execute(_DELETE_SQL, (device_id,))
        await self._db.commit()

    async def device_ids(self) -> list[str]:
        assert self._db is not None, "StateStore not opened. Call open() or use async with."
        cursor = await self._db.execute(_IDS_SQL)
        rows = await cursor.fetchall()
        return [row[0] for row in rows]
