"""Admission engine behaviour against a real database session."""
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, OperationalError

from bookingcore.admission import AdmissionEngine, first_failure
from bookingcore.errors import (
    ErrorKind,
    IntervalConflictError,
    InvalidIntervalError,
    ReservationError,
    StorageConstraintError,
    StorageUnavailableError,
)
from bookingcore.interval_index import InMemoryIntervalIndex
from bookingcore.locks import ResourceLocks
from bookingcore.models import OVERLAP_CONSTRAINT, Reservation, ReservationStatus, Room

NOW = datetime(2030, 1, 1, 8, 0)


def at(hour: float) -> datetime:
    return NOW + timedelta(days=1, hours=hour)


@pytest.fixture()
def engine(db_session):
    return AdmissionEngine(db_session, ResourceLocks(), clock=lambda: NOW, max_commit_attempts=3, retry_backoff=0)


def reservation_count(db_session) -> int:
    return db_session.scalar(select(func.count(Reservation.id)))


def expect_kind(kind: ErrorKind, call, *args, **kwargs) -> ReservationError:
    with pytest.raises(ReservationError) as exc_info:
        call(*args, **kwargs)
    assert exc_info.value.kind is kind
    return exc_info.value


class TestCreate:
    def test_admits_and_prices(self, engine, seeded):
        reservation = engine.create_reservation(seeded["small"], seeded["owner"], at(1), at(3), attendees=3)

        assert reservation.id is not None
        assert reservation.status == ReservationStatus.CONFIRMED
        assert reservation.total_price == Decimal("60.00")

    def test_back_to_back_is_not_a_conflict(self, engine, seeded):
        engine.create_reservation(seeded["small"], seeded["owner"], at(1), at(2))
        engine.create_reservation(seeded["small"], seeded["owner"], at(2), at(3))
        engine.create_reservation(seeded["small"], seeded["owner"], at(0), at(1))

    def test_conflict_leaves_storage_unchanged(self, engine, seeded, db_session):
        engine.create_reservation(seeded["small"], seeded["owner"], at(1), at(3))

        error = expect_kind(
            ErrorKind.INTERVAL_CONFLICT,
            engine.create_reservation,
            seeded["small"],
            seeded["admin"],
            at(2),
            at(4),
        )
        assert error.room_id == seeded["small"]
        assert reservation_count(db_session) == 1

    def test_same_interval_on_other_room_is_fine(self, engine, seeded):
        engine.create_reservation(seeded["small"], seeded["owner"], at(1), at(3))
        engine.create_reservation(seeded["large"], seeded["owner"], at(1), at(3))

    def test_capacity_boundary(self, engine, seeded):
        engine.create_reservation(seeded["small"], seeded["owner"], at(1), at(2), attendees=4)
        expect_kind(
            ErrorKind.CAPACITY_EXCEEDED,
            engine.create_reservation,
            seeded["small"],
            seeded["owner"],
            at(3),
            at(4),
            attendees=5,
        )

    def test_timezone_aware_input_is_normalized(self, engine, seeded):
        aware_start = (at(1) + timedelta(hours=2)).replace(tzinfo=timezone(timedelta(hours=2)))
        reservation = engine.create_reservation(seeded["small"], seeded["owner"], aware_start, aware_start + timedelta(hours=1))

        assert reservation.start_time == at(1)


class TestErrorOrder:
    """Only the first failing check is reported."""

    def test_ordering_before_everything(self, engine, seeded, db_session):
        room = db_session.get(Room, seeded["small"])
        room.is_active = False
        db_session.commit()

        expect_kind(ErrorKind.INVALID_INTERVAL, engine.create_reservation, 9999, seeded["owner"], at(3), at(1), attendees=500)

    def test_zero_length_interval(self, engine, seeded):
        expect_kind(ErrorKind.INVALID_INTERVAL, engine.create_reservation, seeded["small"], seeded["owner"], at(1), at(1))

    def test_start_in_past(self, engine, seeded):
        error = expect_kind(
            ErrorKind.INVALID_INTERVAL,
            engine.create_reservation,
            seeded["small"],
            seeded["owner"],
            NOW - timedelta(hours=1),
            NOW + timedelta(hours=1),
        )
        assert error.message == "Start time must be in the future"

    def test_missing_room_before_capacity(self, engine, seeded):
        expect_kind(ErrorKind.RESOURCE_NOT_FOUND, engine.create_reservation, 9999, seeded["owner"], at(1), at(2), attendees=500)

    def test_inactive_before_capacity(self, engine, seeded, db_session):
        db_session.get(Room, seeded["small"]).is_active = False
        db_session.commit()

        expect_kind(
            ErrorKind.RESOURCE_UNAVAILABLE,
            engine.create_reservation,
            seeded["small"],
            seeded["owner"],
            at(1),
            at(2),
            attendees=500,
        )

    def test_capacity_before_conflict(self, engine, seeded):
        engine.create_reservation(seeded["small"], seeded["owner"], at(1), at(2))

        expect_kind(
            ErrorKind.CAPACITY_EXCEEDED,
            engine.create_reservation,
            seeded["small"],
            seeded["owner"],
            at(1),
            at(2),
            attendees=5,
        )

    def test_first_failure_stops_early(self):
        calls = []

        def passing():
            calls.append("passing")
            return None

        def failing():
            calls.append("failing")
            return InvalidIntervalError()

        def never():
            calls.append("never")
            return None

        assert isinstance(first_failure([passing, failing, never]), InvalidIntervalError)
        assert calls == ["passing", "failing"]


class TestUpdate:
    def test_reschedule_excludes_itself(self, engine, seeded):
        reservation = engine.create_reservation(seeded["small"], seeded["owner"], at(1), at(2))

        updated = engine.update_reservation(
            reservation.id, seeded["owner"], False, {"start_time": at(1.5), "end_time": at(4)}
        )

        assert updated.start_time == at(1.5)
        assert updated.total_price == Decimal("90.00")

    def test_reschedule_into_conflict_keeps_original(self, engine, seeded, db_session):
        first = engine.create_reservation(seeded["small"], seeded["owner"], at(1), at(2))
        engine.create_reservation(seeded["small"], seeded["owner"], at(3), at(4))

        expect_kind(
            ErrorKind.INTERVAL_CONFLICT,
            engine.update_reservation,
            first.id,
            seeded["owner"],
            False,
            {"end_time": at(3.5)},
        )
        db_session.expire_all()
        assert db_session.get(Reservation, first.id).end_time == at(2)

    def test_reordered_interval(self, engine, seeded):
        reservation = engine.create_reservation(seeded["small"], seeded["owner"], at(1), at(2))

        expect_kind(
            ErrorKind.INVALID_INTERVAL,
            engine.update_reservation,
            reservation.id,
            seeded["owner"],
            False,
            {"end_time": at(0.5)},
        )

    def test_attendees_checked_against_capacity(self, engine, seeded):
        reservation = engine.create_reservation(seeded["small"], seeded["owner"], at(1), at(2))

        expect_kind(
            ErrorKind.CAPACITY_EXCEEDED,
            engine.update_reservation,
            reservation.id,
            seeded["owner"],
            False,
            {"attendees": 10},
        )

    def test_cancel_through_status_frees_slot(self, engine, seeded):
        reservation = engine.create_reservation(seeded["small"], seeded["owner"], at(1), at(2))

        engine.update_reservation(reservation.id, seeded["admin"], True, {"status": ReservationStatus.CANCELLED})

        engine.create_reservation(seeded["small"], seeded["owner"], at(1), at(2))

    def test_unknown_fields_rejected(self, engine, seeded):
        reservation = engine.create_reservation(seeded["small"], seeded["owner"], at(1), at(2))

        with pytest.raises(ValueError):
            engine.update_reservation(reservation.id, seeded["owner"], False, {"room_id": seeded["large"]})

    def test_unknown_reservation(self, engine, seeded):
        expect_kind(ErrorKind.NOT_FOUND, engine.update_reservation, 4242, seeded["owner"], False, {"purpose": "x"})

    def test_stranger_forbidden(self, engine, seeded):
        reservation = engine.create_reservation(seeded["small"], seeded["admin"], at(1), at(2))

        expect_kind(
            ErrorKind.FORBIDDEN,
            engine.update_reservation,
            reservation.id,
            seeded["owner"],
            False,
            {"purpose": "mine now"},
        )


class TestCancel:
    def test_cancel_then_rebook(self, engine, seeded):
        reservation = engine.create_reservation(seeded["small"], seeded["owner"], at(1), at(2))

        cancelled = engine.cancel_reservation(reservation.id, seeded["owner"], False)

        assert cancelled.status == ReservationStatus.CANCELLED
        engine.create_reservation(seeded["small"], seeded["admin"], at(1), at(2))

    def test_cancel_twice(self, engine, seeded):
        reservation = engine.create_reservation(seeded["small"], seeded["owner"], at(1), at(2))
        engine.cancel_reservation(reservation.id, seeded["owner"], False)

        expect_kind(ErrorKind.INVALID_STATE, engine.cancel_reservation, reservation.id, seeded["owner"], False)


class TestRoomsAndReads:
    def test_delete_room_in_use(self, engine, seeded):
        engine.create_reservation(seeded["small"], seeded["owner"], at(1), at(2))

        expect_kind(ErrorKind.RESOURCE_IN_USE, engine.delete_room, seeded["small"])

    def test_delete_room_keeps_history(self, engine, seeded, db_session):
        reservation = engine.create_reservation(seeded["small"], seeded["owner"], at(1), at(2))
        engine.cancel_reservation(reservation.id, seeded["owner"], False)

        engine.delete_room(seeded["small"])

        db_session.expire_all()
        assert db_session.get(Room, seeded["small"]) is None
        assert db_session.get(Reservation, reservation.id).room_id is None

    def test_delete_missing_room(self, engine):
        expect_kind(ErrorKind.RESOURCE_NOT_FOUND, engine.delete_room, 9999)

    def test_availability(self, engine, seeded):
        engine.create_reservation(seeded["small"], seeded["owner"], at(1), at(2))
        engine.create_reservation(seeded["small"], seeded["owner"], at(4), at(5))

        slots = engine.get_availability(seeded["small"], at(0), at(4.5))

        assert [(slot.start_time, slot.end_time) for slot in slots] == [(at(1), at(2)), (at(4), at(5))]
        assert engine.get_availability(seeded["small"], at(2), at(4)) == []

    @pytest.mark.parametrize("backend", ["sql", "memory"])
    def test_availability_is_stable_between_writes(self, db_session, seeded, backend):
        index = InMemoryIntervalIndex() if backend == "memory" else None
        engine = AdmissionEngine(db_session, ResourceLocks(), index, clock=lambda: NOW)
        for start in (4, 1, 6):
            engine.create_reservation(seeded["small"], seeded["owner"], at(start), at(start + 1))

        first = engine.get_availability(seeded["small"], at(0), at(8))
        second = engine.get_availability(seeded["small"], at(0), at(8))

        assert first == second
        assert [slot.start_time for slot in first] == [at(1), at(4), at(6)]

    def test_availability_validates(self, engine, seeded):
        expect_kind(ErrorKind.INVALID_INTERVAL, engine.get_availability, seeded["small"], at(2), at(1))
        expect_kind(ErrorKind.RESOURCE_NOT_FOUND, engine.get_availability, 9999, at(1), at(2))

    def test_regular_actors_only_list_their_own(self, engine, seeded):
        mine = engine.create_reservation(seeded["small"], seeded["owner"], at(1), at(2))
        engine.create_reservation(seeded["small"], seeded["admin"], at(2), at(3))

        assert [r.id for r in engine.list_reservations(seeded["owner"], False, user_id=seeded["admin"])] == [mine.id]
        assert len(engine.list_reservations(seeded["admin"], True)) == 2


class TestStorageFailures:
    def _fail_commits(self, monkeypatch, db_session, errors):
        original = db_session.commit
        pending = list(errors)

        def commit():
            if pending:
                raise pending.pop(0)
            original()

        monkeypatch.setattr(db_session, "commit", commit)

    def test_transient_failure_is_retried(self, engine, seeded, db_session, monkeypatch):
        locked = OperationalError("COMMIT", {}, Exception("database is locked"))
        self._fail_commits(monkeypatch, db_session, [locked])

        engine.create_reservation(seeded["small"], seeded["owner"], at(1), at(2))

        assert reservation_count(db_session) == 1

    def test_persistent_failure_is_reported(self, engine, seeded, db_session, monkeypatch):
        locked = OperationalError("COMMIT", {}, Exception("database is locked"))
        self._fail_commits(monkeypatch, db_session, [locked] * 3)

        with pytest.raises(StorageUnavailableError) as exc_info:
            engine.create_reservation(seeded["small"], seeded["owner"], at(1), at(2))

        assert exc_info.value.attempts == 3
        assert reservation_count(db_session) == 0

    def test_overlap_constraint_violation_is_a_conflict(self, engine, seeded, db_session, monkeypatch):
        violation = IntegrityError("INSERT", {}, Exception(f'violates exclusion constraint "{OVERLAP_CONSTRAINT}"'))
        self._fail_commits(monkeypatch, db_session, [violation])

        with pytest.raises(IntervalConflictError):
            engine.create_reservation(seeded["small"], seeded["owner"], at(1), at(2))

    def test_other_constraint_violation_is_not_a_conflict(self, engine, seeded, db_session, monkeypatch):
        self._fail_commits(monkeypatch, db_session, [IntegrityError("INSERT", {}, Exception("CHECK constraint failed"))])

        with pytest.raises(StorageConstraintError) as exc_info:
            engine.create_reservation(seeded["small"], seeded["owner"], at(1), at(2))

        assert exc_info.value.constraint == "CHECK constraint failed"
        assert reservation_count(db_session) == 0

    def test_unknown_requester_is_not_a_conflict(self, engine, seeded, db_session):
        with pytest.raises(StorageConstraintError) as exc_info:
            engine.create_reservation(seeded["small"], 424242, at(1), at(2))

        assert "FOREIGN KEY" in exc_info.value.constraint
        assert reservation_count(db_session) == 0


class TestCollaborators:
    def test_events_published_after_commit(self, db_session, seeded):
        publisher = MagicMock()
        engine = AdmissionEngine(db_session, ResourceLocks(), clock=lambda: NOW, publisher=publisher)

        reservation = engine.create_reservation(seeded["small"], seeded["owner"], at(1), at(2))
        engine.cancel_reservation(reservation.id, seeded["owner"], False)

        assert [c.args[0] for c in publisher.publish.call_args_list] == ["reservation_created", "reservation_cancelled"]

    def test_rejected_writes_publish_nothing(self, db_session, seeded):
        publisher = MagicMock()
        engine = AdmissionEngine(db_session, ResourceLocks(), clock=lambda: NOW, publisher=publisher)

        with pytest.raises(ReservationError):
            engine.create_reservation(9999, seeded["owner"], at(1), at(2))

        publisher.publish.assert_not_called()

    def test_in_memory_index_follows_writes(self, db_session, seeded):
        index = InMemoryIntervalIndex()
        engine = AdmissionEngine(db_session, ResourceLocks(), index, clock=lambda: NOW)

        reservation = engine.create_reservation(seeded["small"], seeded["owner"], at(1), at(2))
        assert index.conflicts(seeded["small"], at(1), at(2))
        expect_kind(ErrorKind.INTERVAL_CONFLICT, engine.create_reservation, seeded["small"], seeded["owner"], at(1.5), at(3))

        engine.cancel_reservation(reservation.id, seeded["owner"], False)
        assert not index.conflicts(seeded["small"], at(1), at(2))
        assert len(index) == 0

    def test_engines_sharing_an_emptied_index_stay_consistent(self, db_session, seeded):
        index = InMemoryIntervalIndex()
        locks = ResourceLocks()
        first = AdmissionEngine(db_session, locks, index, clock=lambda: NOW)
        reservation = first.create_reservation(seeded["large"], seeded["owner"], at(1), at(2))
        first.cancel_reservation(reservation.id, seeded["owner"], False)
        assert len(index) == 0

        second = AdmissionEngine(db_session, locks, index, clock=lambda: NOW)
        second.create_reservation(seeded["large"], seeded["owner"], at(3), at(4))

        assert index.conflicts(seeded["large"], at(3), at(4))
        expect_kind(ErrorKind.INTERVAL_CONFLICT, first.create_reservation, seeded["large"], seeded["admin"], at(3), at(4))
