"""Reservation state machine and authorization-independent lifecycle rules.

``confirmed`` is the initial state. ``pending`` is never produced by the
create path but is still active. ``cancelled`` and ``completed`` are
terminal: nothing transitions out of them, and the reservation becomes
read-only.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Dict, FrozenSet, Optional

from .errors import ForbiddenError, InvalidStateError
from .models import Reservation, ReservationStatus
from .pricing import calculate_total_price

TERMINAL_STATUSES: FrozenSet[ReservationStatus] = frozenset(
    {ReservationStatus.CANCELLED, ReservationStatus.COMPLETED}
)

ALLOWED_TRANSITIONS: Dict[ReservationStatus, FrozenSet[ReservationStatus]] = {
    ReservationStatus.CONFIRMED: frozenset(ReservationStatus),
    ReservationStatus.PENDING: frozenset(ReservationStatus),
    ReservationStatus.CANCELLED: frozenset(),
    ReservationStatus.COMPLETED: frozenset(),
}


def can_transition(current: ReservationStatus, target: ReservationStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def ensure_transition(current: ReservationStatus, target: ReservationStatus) -> None:
    if not can_transition(current, target):
        raise InvalidStateError(f"Cannot change a {current.value} reservation to {target.value}")


def is_owner(reservation: Reservation, actor_id: int) -> bool:
    return reservation.user_id is not None and reservation.user_id == actor_id


def ensure_can_view(reservation: Reservation, actor_id: int, actor_is_privileged: bool) -> None:
    if not actor_is_privileged and not is_owner(reservation, actor_id):
        raise ForbiddenError("You can only view your own reservations")


def ensure_can_modify(
    reservation: Reservation,
    actor_id: int,
    actor_is_privileged: bool,
    now: datetime,
) -> None:
    """Ownership, terminal-state and history checks shared by every edit."""

    if not actor_is_privileged and not is_owner(reservation, actor_id):
        raise ForbiddenError("You can only update your own reservations")
    if reservation.status in TERMINAL_STATUSES:
        raise InvalidStateError(f"Cannot update a {reservation.status.value} reservation")
    if not actor_is_privileged and reservation.start_time < now:
        raise InvalidStateError("Cannot update past reservations")


def ensure_can_cancel(reservation: Reservation, actor_id: int, actor_is_privileged: bool) -> None:
    if not actor_is_privileged and not is_owner(reservation, actor_id):
        raise ForbiddenError("You can only cancel your own reservations")
    if reservation.status == ReservationStatus.CANCELLED:
        raise InvalidStateError("Reservation is already cancelled")
    ensure_transition(reservation.status, ReservationStatus.CANCELLED)


def ensure_can_set_status(
    reservation: Reservation,
    target: ReservationStatus,
    actor_is_privileged: bool,
) -> None:
    if not actor_is_privileged:
        raise ForbiddenError("Only admins can change reservation status")
    ensure_transition(reservation.status, target)


def apply_interval(
    reservation: Reservation,
    start: datetime,
    end: datetime,
    hourly_rate: Decimal,
) -> None:
    """Set the interval and the price that goes with it."""

    reservation.start_time = start
    reservation.end_time = end
    reservation.total_price = calculate_total_price(hourly_rate, start, end)


def apply_status(reservation: Reservation, target: ReservationStatus) -> None:
    ensure_transition(reservation.status, target)
    reservation.status = target


def new_reservation(
    room_id: int,
    requester_id: int,
    start: datetime,
    end: datetime,
    hourly_rate: Decimal,
    attendees: Optional[int] = None,
    purpose: Optional[str] = None,
) -> Reservation:
    reservation = Reservation(
        room_id=room_id,
        user_id=requester_id,
        status=ReservationStatus.CONFIRMED,
        attendees=attendees,
        purpose=purpose,
    )
    apply_interval(reservation, start, end, hourly_rate)
    return reservation
