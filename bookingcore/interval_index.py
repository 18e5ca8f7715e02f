"""Conflict queries over the active reservation intervals of each room.

Intervals are half-open: ``[a, b)`` and ``[c, d)`` conflict iff ``a < d`` and
``c < b``, so a booking ending at ``T`` never conflicts with one starting at
``T``. Only confirmed and pending reservations take part.

Callers validate ``start < end``; the index does not re-check ordering.
"""
from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from bisect import bisect_left, bisect_right
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from .models import Reservation, ReservationStatus
from .stores import ReservationStore


def intervals_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    return a_start < b_end and b_start < a_end


@dataclass(frozen=True)
class BookedSlot:
    start_time: datetime
    end_time: datetime
    status: ReservationStatus


class IntervalIndex(ABC):
    """Interface for answering overlap questions about one room at a time."""

    @abstractmethod
    def conflicts(
        self,
        room_id: int,
        start: datetime,
        end: datetime,
        exclude_id: Optional[int] = None,
    ) -> bool:
        """Return True if ``[start, end)`` overlaps an active reservation other than ``exclude_id``."""
        ...

    @abstractmethod
    def booked_slots(self, room_id: int, start: datetime, end: datetime) -> List[BookedSlot]:
        """Return active intervals overlapping the window, ordered by start."""
        ...

    def sync(self, reservation: Reservation) -> None:
        """Reflect a committed reservation. Storage-backed indexes have nothing to do."""

    def forget_room(self, room_id: int) -> None:
        """Drop everything known about a deleted room."""


class SqlIntervalIndex(IntervalIndex):
    """Answers queries with a range query inside the caller's transaction."""

    def __init__(self, session: Session) -> None:
        self._reservations = ReservationStore(session)

    def conflicts(
        self,
        room_id: int,
        start: datetime,
        end: datetime,
        exclude_id: Optional[int] = None,
    ) -> bool:
        return self._reservations.has_overlap(room_id, start, end, exclude_id=exclude_id)

    def booked_slots(self, room_id: int, start: datetime, end: datetime) -> List[BookedSlot]:
        return [
            BookedSlot(start_time=r.start_time, end_time=r.end_time, status=r.status)
            for r in self._reservations.overlapping(room_id, start, end)
        ]


@dataclass(frozen=True)
class _Entry:
    start: datetime
    end: datetime
    reservation_id: int
    status: ReservationStatus


class _RoomIntervals:
    """Active intervals of one room, sorted by start.

    Active intervals never overlap, so sorting by start also sorts by end.
    Everything overlapping ``[start, end)`` is therefore a contiguous run that
    ends right before the first entry starting at or after ``end``.
    """

    __slots__ = ("starts", "entries")

    def __init__(self) -> None:
        self.starts: List[datetime] = []
        self.entries: List[_Entry] = []

    def insert(self, entry: _Entry) -> None:
        pos = bisect_right(self.starts, entry.start)
        self.starts.insert(pos, entry.start)
        self.entries.insert(pos, entry)

    def remove(self, reservation_id: int, start: datetime) -> None:
        pos = bisect_left(self.starts, start)
        while pos < len(self.entries) and self.starts[pos] == start:
            if self.entries[pos].reservation_id == reservation_id:
                del self.starts[pos]
                del self.entries[pos]
                return
            pos += 1

    def overlapping(self, start: datetime, end: datetime) -> List[_Entry]:
        """Entries overlapping the window, ordered by start."""

        hi = bisect_left(self.starts, end)
        lo = hi
        while lo > 0 and self.entries[lo - 1].end > start:
            lo -= 1
        return self.entries[lo:hi]


class InMemoryIntervalIndex(IntervalIndex):
    """Per-room sorted index giving ``O(log n)`` conflict checks.

    Only valid when a single process owns all writes: it is warmed from
    storage with :meth:`load` and kept current through :meth:`sync`.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._rooms: Dict[int, _RoomIntervals] = {}
        self._located: Dict[int, _Entry] = {}
        self._room_of: Dict[int, int] = {}

    def load(self, reservations: Iterable[Reservation]) -> None:
        with self._lock:
            self._rooms.clear()
            self._located.clear()
            self._room_of.clear()
            for reservation in reservations:
                self._insert(reservation)

    def sync(self, reservation: Reservation) -> None:
        with self._lock:
            self._discard(reservation.id)
            self._insert(reservation)

    def conflicts(
        self,
        room_id: int,
        start: datetime,
        end: datetime,
        exclude_id: Optional[int] = None,
    ) -> bool:
        with self._lock:
            intervals = self._rooms.get(room_id)
            if intervals is None:
                return False
            return any(entry.reservation_id != exclude_id for entry in intervals.overlapping(start, end))

    def booked_slots(self, room_id: int, start: datetime, end: datetime) -> List[BookedSlot]:
        with self._lock:
            intervals = self._rooms.get(room_id)
            if intervals is None:
                return []
            return [
                BookedSlot(start_time=entry.start, end_time=entry.end, status=entry.status)
                for entry in intervals.overlapping(start, end)
            ]

    def forget_room(self, room_id: int) -> None:
        with self._lock:
            intervals = self._rooms.pop(room_id, None)
            if intervals is None:
                return
            for entry in intervals.entries:
                self._located.pop(entry.reservation_id, None)
                self._room_of.pop(entry.reservation_id, None)

    def __len__(self) -> int:
        return len(self._located)

    def _insert(self, reservation: Reservation) -> None:
        if not reservation.is_active or reservation.room_id is None:
            return
        entry = _Entry(
            start=reservation.start_time,
            end=reservation.end_time,
            reservation_id=reservation.id,
            status=reservation.status,
        )
        self._rooms.setdefault(reservation.room_id, _RoomIntervals()).insert(entry)
        self._located[reservation.id] = entry
        self._room_of[reservation.id] = reservation.room_id

    def _discard(self, reservation_id: int) -> None:
        entry = self._located.pop(reservation_id, None)
        if entry is None:
            return
        room_id = self._room_of.pop(reservation_id)
        self._rooms[room_id].remove(reservation_id, entry.start)
