#!/usr/bin/env python3
"""Report active reservations that overlap on the same room.

Exits with status 1 when at least one overlapping pair is found.
"""
import sys
from itertools import groupby
from typing import Iterable, List, Tuple

from bookingcore.database import SessionLocal
from bookingcore.interval_index import intervals_overlap
from bookingcore.models import Reservation
from bookingcore.stores import ReservationStore


def find_overlaps(reservations: Iterable[Reservation]) -> List[Tuple[Reservation, Reservation]]:
    """Expects reservations ordered by room, then start time."""

    pairs = []
    for _, room_reservations in groupby(reservations, key=lambda r: r.room_id):
        # reservations still open when the next one starts
        open_ones: List[Reservation] = []
        for reservation in room_reservations:
            open_ones = [r for r in open_ones if r.end_time > reservation.start_time]
            for other in open_ones:
                if intervals_overlap(other.start_time, other.end_time, reservation.start_time, reservation.end_time):
                    pairs.append((other, reservation))
            open_ones.append(reservation)
    return pairs


def audit_overlaps() -> int:
    with SessionLocal() as session:
        reservations = ReservationStore(session).active_for_room()
        pairs = find_overlaps(reservations)
        print(f"Checked {len(reservations)} active reservations")
        for first, second in pairs:
            print(
                f"Room {first.room_id}: reservation {first.id} [{first.start_time.isoformat()}, "
                f"{first.end_time.isoformat()}) overlaps reservation {second.id} "
                f"[{second.start_time.isoformat()}, {second.end_time.isoformat()})"
            )
    if pairs:
        print(f"\n{len(pairs)} overlapping pair(s) found")
        return 1
    print("No overlaps found")
    return 0


if __name__ == "__main__":
    sys.exit(audit_overlaps())
