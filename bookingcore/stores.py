"""Repository layer responsible for room and reservation access.

Both stores wrap a caller-owned ``Session``; they never commit. Committing is
the admission engine's job so that check and write stay in one unit of work.
"""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from .models import ACTIVE_STATUSES, Reservation, ReservationStatus, Room


class RoomStore:
    """Read access to bookable rooms."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def get_room(self, room_id: int, *, for_update: bool = False) -> Optional[Room]:
        """Return the room, optionally row-locking it for the current transaction."""

        if for_update:
            return self._session.get(Room, room_id, with_for_update=True, populate_existing=True)
        return self._session.get(Room, room_id)

    def has_upcoming_reservations(self, room_id: int, now: datetime) -> bool:
        stmt = select(Reservation.id).where(
            Reservation.room_id == room_id,
            Reservation.status.in_(ACTIVE_STATUSES),
            Reservation.end_time > now,
        )
        return self._session.execute(stmt.limit(1)).first() is not None


class ReservationStore:
    """Persistence for reservation records."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, reservation_id: int, *, refresh: bool = False) -> Optional[Reservation]:
        return self._session.get(Reservation, reservation_id, populate_existing=refresh)

    def add(self, reservation: Reservation) -> Reservation:
        self._session.add(reservation)
        self._session.flush()
        return reservation

    def overlapping(
        self,
        room_id: int,
        start: datetime,
        end: datetime,
        exclude_id: Optional[int] = None,
    ) -> List[Reservation]:
        """Active reservations on ``room_id`` whose interval overlaps ``[start, end)``."""

        stmt = select(Reservation).where(
            Reservation.room_id == room_id,
            Reservation.status.in_(ACTIVE_STATUSES),
            Reservation.start_time < end,
            Reservation.end_time > start,
        )
        if exclude_id is not None:
            stmt = stmt.where(Reservation.id != exclude_id)
        return list(self._session.scalars(stmt.order_by(Reservation.start_time)))

    def has_overlap(
        self,
        room_id: int,
        start: datetime,
        end: datetime,
        exclude_id: Optional[int] = None,
    ) -> bool:
        stmt = select(Reservation.id).where(
            Reservation.room_id == room_id,
            Reservation.status.in_(ACTIVE_STATUSES),
            Reservation.start_time < end,
            Reservation.end_time > start,
        )
        if exclude_id is not None:
            stmt = stmt.where(Reservation.id != exclude_id)
        return bool(self._session.scalar(select(stmt.exists())))

    def active_for_room(self, room_id: Optional[int] = None) -> List[Reservation]:
        stmt = select(Reservation).where(Reservation.status.in_(ACTIVE_STATUSES), Reservation.room_id.is_not(None))
        if room_id is not None:
            stmt = stmt.where(Reservation.room_id == room_id)
        return list(self._session.scalars(stmt.order_by(Reservation.room_id, Reservation.start_time)))

    def search(
        self,
        *,
        user_id: Optional[int] = None,
        room_id: Optional[int] = None,
        status: Optional[ReservationStatus] = None,
        newest_first_by: str = "created_at",
    ) -> List[Reservation]:
        stmt = select(Reservation)
        if user_id is not None:
            stmt = stmt.where(Reservation.user_id == user_id)
        if room_id is not None:
            stmt = stmt.where(Reservation.room_id == room_id)
        if status is not None:
            stmt = stmt.where(Reservation.status == status)
        order_column = Reservation.start_time if newest_first_by == "start_time" else Reservation.created_at
        return list(self._session.scalars(stmt.order_by(order_column.desc(), Reservation.id.desc())))
