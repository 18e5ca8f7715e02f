"""Reservation admission engine.

Every write goes through the same protocol:

1. cheap request-only checks (interval ordering, start in the future);
2. under the room's lock, a unit of work that row-locks the room, runs the
   storage-dependent checks against the interval index and writes;
3. commit, then sync the index and publish the event.

A transient storage failure rolls the whole unit back and replays it from the
start, up to ``max_commit_attempts`` times. Nothing is visible to other
callers unless step 3 committed.
"""
from __future__ import annotations

import logging
import time
from contextlib import nullcontext
from datetime import datetime
from typing import Any, Callable, ContextManager, Iterable, List, Mapping, Optional, TypeVar

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from . import lifecycle
from .clock import as_utc, utcnow
from .config import get_settings
from .errors import (
    CapacityExceededError,
    IntervalConflictError,
    InvalidIntervalError,
    ReservationError,
    ReservationNotFoundError,
    ResourceInUseError,
    ResourceNotFoundError,
    ResourceUnavailableError,
    StorageConstraintError,
    StorageUnavailableError,
)
from .events import ReservationEventPublisher
from .interval_index import BookedSlot, IntervalIndex, SqlIntervalIndex
from .locks import ResourceLocks
from .models import ACTIVE_STATUSES, OVERLAP_CONSTRAINT, Reservation, ReservationStatus, Room
from .stores import ReservationStore, RoomStore

logger = logging.getLogger(__name__)

T = TypeVar("T")
Check = Callable[[], Optional[ReservationError]]

UPDATABLE_FIELDS = frozenset({"start_time", "end_time", "purpose", "attendees", "status"})


def violated_constraint(exc: IntegrityError) -> str:
    diag = getattr(exc.orig, "diag", None)
    name = getattr(diag, "constraint_name", None)
    return name or str(exc.orig)


def check_interval_ordered(start: datetime, end: datetime) -> Optional[ReservationError]:
    if start >= end:
        return InvalidIntervalError()
    return None


def check_starts_in_future(start: datetime, now: datetime) -> Optional[ReservationError]:
    if start < now:
        return InvalidIntervalError("Start time must be in the future")
    return None


def check_room_exists(room: Optional[Room], room_id: Optional[int]) -> Optional[ReservationError]:
    if room is None:
        return ResourceNotFoundError(room_id)
    return None


def check_room_active(room: Room) -> Optional[ReservationError]:
    if not room.is_active:
        return ResourceUnavailableError(room.id)
    return None


def check_capacity(attendees: Optional[int], room: Room) -> Optional[ReservationError]:
    if attendees is not None and attendees > room.capacity:
        return CapacityExceededError(attendees, room.capacity)
    return None


def check_no_conflict(
    index: IntervalIndex,
    room_id: int,
    start: datetime,
    end: datetime,
    exclude_id: Optional[int] = None,
) -> Optional[ReservationError]:
    if index.conflicts(room_id, start, end, exclude_id=exclude_id):
        return IntervalConflictError(room_id)
    return None


def first_failure(checks: Iterable[Check]) -> Optional[ReservationError]:
    """Run checks in order and return the first error, if any."""

    for check in checks:
        error = check()
        if error is not None:
            return error
    return None


def raise_first_failure(checks: Iterable[Check]) -> None:
    error = first_failure(checks)
    if error is not None:
        raise error


class AdmissionEngine:
    """Validates and commits reservation writes for one unit of work.

    ``session`` is the storage handle owned by the caller; ``locks`` is the
    process-wide per-room lock registry. ``index`` defaults to a SQL index
    bound to the same session.
    """

    def __init__(
        self,
        session: Session,
        locks: ResourceLocks,
        index: Optional[IntervalIndex] = None,
        *,
        clock: Callable[[], datetime] = utcnow,
        max_commit_attempts: Optional[int] = None,
        retry_backoff: float = 0.05,
        publisher: Optional[ReservationEventPublisher] = None,
    ) -> None:
        self._session = session
        self._locks = locks
        self._index = index if index is not None else SqlIntervalIndex(session)
        self._rooms = RoomStore(session)
        self._reservations = ReservationStore(session)
        self._clock = clock
        self._max_attempts = max_commit_attempts or get_settings().commit_retry_attempts
        self._retry_backoff = retry_backoff
        self._publisher = publisher

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def create_reservation(
        self,
        room_id: int,
        requester_id: int,
        start: datetime,
        end: datetime,
        attendees: Optional[int] = None,
        purpose: Optional[str] = None,
    ) -> Reservation:
        start, end = as_utc(start), as_utc(end)
        raise_first_failure(
            (
                lambda: check_interval_ordered(start, end),
                lambda: check_starts_in_future(start, self._clock()),
            )
        )

        def admit() -> Reservation:
            room = self._rooms.get_room(room_id, for_update=True)
            raise_first_failure(
                (
                    lambda: check_room_exists(room, room_id),
                    lambda: check_room_active(room),
                    lambda: check_capacity(attendees, room),
                    lambda: check_no_conflict(self._index, room_id, start, end),
                )
            )
            reservation = lifecycle.new_reservation(
                room_id, requester_id, start, end, room.hourly_rate, attendees=attendees, purpose=purpose
            )
            return self._reservations.add(reservation)

        reservation = self._atomically(room_id, admit)
        logger.info(
            "Reservation %s admitted on room %s for [%s, %s) price=%s",
            reservation.id,
            room_id,
            start.isoformat(),
            end.isoformat(),
            reservation.total_price,
        )
        self._publish("reservation_created", reservation)
        return reservation

    def update_reservation(
        self,
        reservation_id: int,
        actor_id: int,
        actor_is_privileged: bool,
        changes: Mapping[str, Any],
    ) -> Reservation:
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unsupported reservation fields: {', '.join(sorted(unknown))}")

        existing = self._load(reservation_id)

        def modify() -> Reservation:
            reservation = self._load(reservation_id, refresh=True)
            room = self._rooms.get_room(reservation.room_id, for_update=True) if reservation.room_id else None
            self._apply_changes(reservation, room, actor_id, actor_is_privileged, changes)
            self._session.flush()
            return reservation

        reservation = self._atomically(existing.room_id, modify)
        logger.info("Reservation %s updated by actor %s (%s)", reservation_id, actor_id, ", ".join(sorted(changes)))
        self._publish("reservation_updated", reservation)
        return reservation

    def cancel_reservation(self, reservation_id: int, actor_id: int, actor_is_privileged: bool) -> Reservation:
        existing = self._load(reservation_id)

        def cancel() -> Reservation:
            reservation = self._load(reservation_id, refresh=True)
            if reservation.room_id is not None:
                self._rooms.get_room(reservation.room_id, for_update=True)
            lifecycle.ensure_can_cancel(reservation, actor_id, actor_is_privileged)
            lifecycle.apply_status(reservation, ReservationStatus.CANCELLED)
            self._session.flush()
            return reservation

        reservation = self._atomically(existing.room_id, cancel)
        logger.info("Reservation %s cancelled by actor %s", reservation_id, actor_id)
        self._publish("reservation_cancelled", reservation)
        return reservation

    def delete_room(self, room_id: int) -> None:
        """Delete a room that has no upcoming active reservations; history is kept."""

        def retire() -> None:
            room = self._rooms.get_room(room_id, for_update=True)
            if room is None:
                raise ResourceNotFoundError(room_id)
            if self._rooms.has_upcoming_reservations(room_id, self._clock()):
                raise ResourceInUseError(room_id)
            self._session.delete(room)
            self._session.flush()

        self._atomically(room_id, retire)
        self._index.forget_room(room_id)
        logger.info("Room %s deleted", room_id)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def get_availability(self, room_id: int, start: datetime, end: datetime) -> List[BookedSlot]:
        """Booked-slot report: active intervals overlapping ``[start, end)``."""

        start, end = as_utc(start), as_utc(end)
        raise_first_failure(
            (
                lambda: check_interval_ordered(start, end),
                lambda: check_room_exists(self._rooms.get_room(room_id), room_id),
            )
        )
        return self._index.booked_slots(room_id, start, end)

    def get_reservation(self, reservation_id: int, actor_id: int, actor_is_privileged: bool) -> Reservation:
        reservation = self._load(reservation_id)
        lifecycle.ensure_can_view(reservation, actor_id, actor_is_privileged)
        return reservation

    def list_reservations(
        self,
        actor_id: int,
        actor_is_privileged: bool,
        *,
        status: Optional[ReservationStatus] = None,
        room_id: Optional[int] = None,
        user_id: Optional[int] = None,
    ) -> List[Reservation]:
        """Regular actors only ever see their own reservations."""

        owner = user_id if actor_is_privileged else actor_id
        return self._reservations.search(user_id=owner, room_id=room_id, status=status)

    def list_for_requester(self, requester_id: int, status: Optional[ReservationStatus] = None) -> List[Reservation]:
        return self._reservations.search(user_id=requester_id, status=status, newest_first_by="start_time")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _load(self, reservation_id: int, refresh: bool = False) -> Reservation:
        reservation = self._reservations.get(reservation_id, refresh=refresh)
        if reservation is None:
            raise ReservationNotFoundError(reservation_id)
        return reservation

    def _apply_changes(
        self,
        reservation: Reservation,
        room: Optional[Room],
        actor_id: int,
        actor_is_privileged: bool,
        changes: Mapping[str, Any],
    ) -> None:
        now = self._clock()
        lifecycle.ensure_can_modify(reservation, actor_id, actor_is_privileged, now)

        target_status = reservation.status
        if "status" in changes:
            target_status = ReservationStatus(changes["status"])
            lifecycle.ensure_can_set_status(reservation, target_status, actor_is_privileged)

        new_start = as_utc(changes["start_time"]) if changes.get("start_time") else reservation.start_time
        new_end = as_utc(changes["end_time"]) if changes.get("end_time") else reservation.end_time
        interval_changed = (new_start, new_end) != (reservation.start_time, reservation.end_time)
        attendees_changed = changes.get("attendees") is not None

        checks: List[Check] = []
        if interval_changed:
            checks.append(lambda: check_interval_ordered(new_start, new_end))
            if not actor_is_privileged and new_start != reservation.start_time:
                checks.append(lambda: check_starts_in_future(new_start, now))
        if interval_changed or attendees_changed:
            checks.append(lambda: check_room_exists(room, reservation.room_id))
        if attendees_changed:
            checks.append(lambda: check_capacity(changes["attendees"], room))
        if interval_changed and target_status in ACTIVE_STATUSES:
            checks.append(
                lambda: check_no_conflict(self._index, room.id, new_start, new_end, exclude_id=reservation.id)
            )
        raise_first_failure(checks)

        if interval_changed:
            lifecycle.apply_interval(reservation, new_start, new_end, room.hourly_rate)
        if "attendees" in changes:
            reservation.attendees = changes["attendees"]
        if "purpose" in changes:
            reservation.purpose = changes["purpose"]
        if target_status != reservation.status:
            lifecycle.apply_status(reservation, target_status)

    def _atomically(self, room_id: Optional[int], work: Callable[[], T]) -> T:
        guard: ContextManager[None] = self._locks.hold(room_id) if room_id is not None else nullcontext()
        with guard:
            for attempt in range(1, self._max_attempts + 1):
                try:
                    result = work()
                    self._session.commit()
                except ReservationError as exc:
                    self._session.rollback()
                    logger.info("Reservation write on room %s rejected: %s", room_id, exc)
                    raise
                except IntegrityError as exc:
                    self._session.rollback()
                    constraint = violated_constraint(exc)
                    logger.warning("Storage constraint rejected write on room %s: %s", room_id, constraint)
                    if OVERLAP_CONSTRAINT in constraint:
                        raise IntervalConflictError(room_id) from exc
                    raise StorageConstraintError(constraint) from exc
                except OperationalError as exc:
                    self._session.rollback()
                    logger.warning(
                        "Reservation write on room %s failed (attempt %d/%d): %s",
                        room_id,
                        attempt,
                        self._max_attempts,
                        exc.orig,
                    )
                    if attempt < self._max_attempts:
                        time.sleep(self._retry_backoff * attempt)
                    continue
                if isinstance(result, Reservation):
                    self._index.sync(result)
                return result
        logger.error("Reservation write on room %s abandoned after %d attempts", room_id, self._max_attempts)
        raise StorageUnavailableError(self._max_attempts)

    def _publish(self, event: str, reservation: Reservation) -> None:
        if self._publisher is not None:
            self._publisher.publish(event, reservation)
