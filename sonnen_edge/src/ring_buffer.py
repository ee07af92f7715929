"""
Fixed-capacity circular FIFO used for the battery cycle-count history.

The buffer keeps at most ``capacity`` elements.  Once full, every ``add``
overwrites the logically oldest element.  All elements cross the API
boundary as deep copies, so neither the caller's original object nor a value
returned by an accessor can alias buffer-internal state.

The raw positional state (capacity, backing slots, head/tail cursors and the
logical count) is exposed for persistence via :meth:`serialize_state` and
:meth:`HistoryRingBuffer.restore_state`.  Older state files stored a
``{buffer, pos, size}`` layout; :meth:`HistoryRingBuffer.from_legacy_state`
migrates those.

CHANGELOG:
- 2026-10-19: Add legacy {buffer, pos, size} migration
- 2026-10-19: Initial creation

TODO:
- None
"""

from __future__ import annotations

import copy
from collections.abc import Callable, Iterator, Mapping
from typing import Any, Generic, TypeVar

T = TypeVar("T")

_MISSING: Any = object()


class HistoryRingBuffer(Generic[T]):
    """Generic fixed-capacity FIFO with deep-copy semantics.

    Args:
        capacity: Maximum number of retained elements.  Zero is legal and
            turns every :meth:`add` into a no-op.

    Raises:
        ValueError: If *capacity* is negative or not an integer.
    """

    def __init__(self, capacity: int) -> None:
        if isinstance(capacity, bool) or not isinstance(capacity, int):
            raise ValueError(f"Capacity must be an integer, got {capacity!r}")
        if capacity < 0:
            raise ValueError(f"Capacity must be non-negative, got {capacity}")
        self._capacity = capacity
        self._slots: list[T | None] = [None] * capacity
        self._head = 0
        self._tail = 0
        self._count = 0

    # ------------------------------------------------------------------
    # Size / introspection
    # ------------------------------------------------------------------

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        return self._count

    def is_empty(self) -> bool:
        return self._count == 0

    def is_full(self) -> bool:
        return self._capacity > 0 and self._count == self._capacity

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def add(self, item: T) -> None:
        """Append a deep copy of *item*, evicting the oldest element when full."""
        if self._capacity == 0:
            return

        stored = copy.deepcopy(item)
        if self._count == self._capacity:
            self._head = (self._head + 1) % self._capacity
        else:
            self._count += 1

        self._slots[self._tail] = stored
        self._tail = (self._tail + 1) % self._capacity

    def clear(self) -> None:
        """Drop every element; capacity is unchanged."""
        self._slots = [None] * self._capacity
        self._head = 0
        self._tail = 0
        self._count = 0

    # ------------------------------------------------------------------
    # Read accessors (always deep copies)
    # ------------------------------------------------------------------

    def first(self) -> T:
        """Return a copy of the oldest element.

        Raises:
            IndexError: If the buffer is empty.  A stored ``None`` payload is
                returned as ``None`` and is therefore distinguishable from an
                empty buffer.
        """
        if self._count == 0:
            raise IndexError("first() on empty HistoryRingBuffer")
        return copy.deepcopy(self._slots[self._head])  # type: ignore[return-value]

    def last(self) -> T:
        """Return a copy of the newest element.

        Raises:
            IndexError: If the buffer is empty.
        """
        if self._count == 0:
            raise IndexError("last() on empty HistoryRingBuffer")
        index = (self._tail - 1) % self._capacity
        return copy.deepcopy(self._slots[index])  # type: ignore[return-value]

    def first_or(self, default: Any = None) -> T | Any:
        if self._count == 0:
            return default
        return self.first()

    def last_or(self, default: Any = None) -> T | Any:
        if self._count == 0:
            return default
        return self.last()

    def to_list(self) -> list[T]:
        """Return the elements oldest-first as a new deep-copied list."""
        return [copy.deepcopy(item) for item in self._iter_logical()]

    def __iter__(self) -> Iterator[T]:
        # One-shot iterator over a snapshot; later adds do not affect it.
        return iter(self.to_list())

    def _iter_logical(self) -> Iterator[T]:
        index = self._head
        for _ in range(self._count):
            yield self._slots[index]  # type: ignore[misc]
            index = (index + 1) % self._capacity

    # ------------------------------------------------------------------
    # Copying
    # ------------------------------------------------------------------

    def clone(self) -> HistoryRingBuffer[T]:
        """Return a fully independent duplicate, cursors included."""
        cloned: HistoryRingBuffer[T] = HistoryRingBuffer(self._capacity)
        cloned._slots = copy.deepcopy(self._slots)
        cloned._head = self._head
        cloned._tail = self._tail
        cloned._count = self._count
        return cloned

    def __deepcopy__(self, memo: dict[int, Any]) -> HistoryRingBuffer[T]:
        return self.clone()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, HistoryRingBuffer):
            return NotImplemented
        return self._capacity == other._capacity and self.to_list() == other.to_list()

    def __repr__(self) -> str:
        return f"HistoryRingBuffer(capacity={self._capacity}, size={self._count})"

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def serialize_state(
        self,
        encode: Callable[[T], Any] | None = None,
    ) -> dict[str, Any]:
        """Return the raw positional state as plain data.

        Args:
            encode: Optional converter applied to every stored element
                (e.g. to turn a dataclass into a JSON-compatible dict).
                ``None`` padding slots are never passed to it.

        Returns:
            ``{"capacity", "buffer", "head", "tail", "count"}``.  ``buffer``
            always has ``capacity`` slots; slots that were never written
            (or were cleared) hold ``None``.
        """
        live = set(self._live_indices())
        buffer: list[Any] = []
        for index, item in enumerate(self._slots):
            if index not in live:
                buffer.append(None)
            elif encode is not None:
                buffer.append(encode(item))  # type: ignore[arg-type]
            else:
                buffer.append(copy.deepcopy(item))
        return {
            "capacity": self._capacity,
            "buffer": buffer,
            "head": self._head,
            "tail": self._tail,
            "count": self._count,
        }

    @classmethod
    def restore_state(
        cls,
        data: Mapping[str, Any],
        decode: Callable[[Any], T] | None = None,
    ) -> HistoryRingBuffer[T]:
        """Rebuild a buffer from :meth:`serialize_state` output.

        A ``buffer`` list shorter than ``capacity`` is padded with ``None``.

        Raises:
            ValueError: If the state is inconsistent (negative capacity,
                cursors out of range, count larger than capacity, or a
                count that disagrees with the head/tail distance).
        """
        try:
            capacity = int(data["capacity"])
            head = int(data.get("head", 0))
            tail = int(data.get("tail", 0))
            count = int(data.get("count", 0))
        except (KeyError, TypeError) as exc:
            raise ValueError(f"Invalid ring buffer state: {exc}") from exc

        raw_buffer = list(data.get("buffer") or [])
        buf: HistoryRingBuffer[T] = cls(capacity)

        if len(raw_buffer) > capacity:
            raise ValueError(
                f"Ring buffer state holds {len(raw_buffer)} slots for capacity {capacity}"
            )
        if not 0 <= count <= capacity:
            raise ValueError(f"Ring buffer count {count} outside 0..{capacity}")
        if capacity == 0:
            return buf
        if not (0 <= head < capacity and 0 <= tail < capacity):
            raise ValueError(
                f"Ring buffer cursors head={head} tail={tail} outside 0..{capacity - 1}"
            )
        if (head + count) % capacity != tail:
            raise ValueError(
                f"Ring buffer count {count} inconsistent with head={head} tail={tail}"
            )

        raw_buffer.extend([None] * (capacity - len(raw_buffer)))
        buf._head = head
        buf._tail = tail
        buf._count = count
        live = set(buf._live_indices())
        for index, raw in enumerate(raw_buffer):
            if index not in live:
                continue
            buf._slots[index] = decode(raw) if decode is not None else copy.deepcopy(raw)
        return buf

    @classmethod
    def from_legacy_state(
        cls,
        data: Mapping[str, Any] | None,
        capacity: int,
        decode: Callable[[Any], T] | None = None,
    ) -> HistoryRingBuffer[T]:
        """Migrate the older ``{buffer, pos, size}`` layout.

        ``pos`` is the next write position.  When the stored list is longer
        than ``pos`` the buffer had wrapped, so the logical order is
        ``buffer[pos:] + buffer[:pos]``.  Elements for which *decode* raises
        ``ValueError`` are dropped, as are ``None`` entries.  Missing or
        malformed input yields an empty buffer of *capacity*.
        """
        buf: HistoryRingBuffer[T] = cls(capacity)
        if not data:
            return buf

        items = data.get("buffer")
        if not isinstance(items, list):
            return buf

        pos = data.get("pos", 0)
        if not isinstance(pos, int) or not 0 <= pos <= len(items):
            pos = 0

        for raw in items[pos:] + items[:pos]:
            if raw is None:
                continue
            if decode is not None:
                try:
                    item = decode(raw)
                except ValueError:
                    continue
            else:
                item = raw
            buf.add(item)
        return buf

    def to_log(self) -> dict[str, Any]:
        """Compact summary for log lines."""
        return {
            "capacity": self._capacity,
            "size": self._count,
            "head": self._head,
            "tail": self._tail,
            "first": self.first_or(None),
            "last": self.last_or(None),
        }

    def _live_indices(self) -> Iterator[int]:
        index = self._head
        for _ in range(self._count):
            yield index
            index = (index + 1) % self._capacity
