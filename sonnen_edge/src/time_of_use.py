"""
Time-of-use schedules for the sonnenBatterie ``EM_ToU_Schedule`` setting.

The battery stores its schedule as a JSON *string* holding a list of
``{"start": "HH:MM", "stop": "HH:MM", "threshold_p_max": <W>}`` entries.
:class:`TimeOfUseSchedule` validates entries and converts between that JSON
string, a list of :class:`TimeOfUseEntry` models, and a human-readable
one-line-per-entry text form (``"22:00-06:00: 4000W"``).

CHANGELOG:
- 2026-10-19: Initial creation

TODO:
- None
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterable

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

_TIME_RE = re.compile(r"^([01][0-9]|2[0-3]):[0-5][0-9]$")
_LINE_RE = re.compile(r"^(\d{2}:\d{2})-(\d{2}:\d{2}):\s*(\d+)W?$")


class TimeOfUseEntry(BaseModel):
    """A single schedule window with a maximum grid-charging power."""

    model_config = ConfigDict(frozen=True, strict=True)

    start: str
    stop: str
    threshold_p_max: int

    @field_validator("start", "stop")
    @classmethod
    def time_must_be_hh_mm(cls, v: str) -> str:
        if not _TIME_RE.match(v):
            raise ValueError(f"time must be in HH:MM format (got '{v}')")
        return v

    @field_validator("threshold_p_max")
    @classmethod
    def threshold_must_be_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("threshold_p_max must be >= 0")
        return v

    def __str__(self) -> str:
        return f"{self.start}-{self.stop}: {self.threshold_p_max}W"


class TimeOfUseSchedule:
    """Validated, immutable list of :class:`TimeOfUseEntry`.

    Args:
        entries: Entries (or plain dicts with the same keys).

    Raises:
        ValueError: If any entry is missing a field or has a malformed time.
    """

    def __init__(self, entries: Iterable[TimeOfUseEntry | dict] = ()) -> None:
        validated: list[TimeOfUseEntry] = []
        for index, entry in enumerate(entries):
            if isinstance(entry, TimeOfUseEntry):
                validated.append(entry)
                continue
            try:
                validated.append(TimeOfUseEntry.model_validate(entry))
            except ValidationError as exc:
                raise ValueError(f"Invalid schedule item at index {index}: {exc}") from exc
        self._entries = tuple(validated)

    @property
    def entries(self) -> list[TimeOfUseEntry]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TimeOfUseSchedule):
            return NotImplemented
        return self._entries == other._entries

    # -- JSON string form ----------------------------------------------

    @classmethod
    def from_json_string(cls, raw: str) -> TimeOfUseSchedule:
        """Parse the battery's ``EM_ToU_Schedule`` string."""
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Failed to parse schedule JSON: {exc}") from exc
        if not isinstance(parsed, list):
            raise ValueError("Invalid schedule format: expected an array")
        return cls(parsed)

    def to_json_string(self) -> str:
        # Compact separators: the battery compares the stored string verbatim.
        return json.dumps(
            [entry.model_dump() for entry in self._entries], separators=(",", ":")
        )

    # -- text form -----------------------------------------------------

    def __str__(self) -> str:
        return "\n".join(str(entry) for entry in self._entries)

    @classmethod
    def from_string(cls, text: str) -> TimeOfUseSchedule:
        """Parse the one-line-per-entry form produced by ``str()``."""
        if not text or not text.strip():
            return cls()

        entries: list[dict] = []
        for line in (ln.strip() for ln in text.splitlines()):
            if not line:
                continue
            match = _LINE_RE.match(line)
            if match is None:
                raise ValueError(f'Invalid schedule line format: "{line}"')
            start, stop, threshold = match.groups()
            entries.append({"start": start, "stop": stop, "threshold_p_max": int(threshold)})
        return cls(entries)


def entry_for_hours(start: str, hours: int, max_power: int) -> TimeOfUseEntry:
    """Build an entry lasting *hours* from *start*, wrapping past midnight.

    >>> entry_for_hours("22:30", 4, 3000).stop
    '02:30'
    """
    if not _TIME_RE.match(start):
        raise ValueError(f"time must be in HH:MM format (got '{start}')")
    if hours < 0:
        raise ValueError("hours must be >= 0")
    start_hours, start_minutes = start.split(":")
    stop = f"{(int(start_hours) + hours) % 24:02d}:{start_minutes}"
    return TimeOfUseEntry(start=start, stop=stop, threshold_p_max=max_power)
