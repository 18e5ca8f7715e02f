import logging
from datetime import datetime
from typing import List, Optional

from fastapi import Depends, FastAPI, Query, Request, status

from bookingcore.admission import AdmissionEngine
from bookingcore.config import get_settings
from bookingcore.database import SessionLocal
from bookingcore.dependencies import Actor, get_actor, get_admission_engine
from bookingcore.events import build_publisher
from bookingcore.interval_index import InMemoryIntervalIndex
from bookingcore.locks import ResourceLocks
from bookingcore.models import Reservation, ReservationStatus
from bookingcore.schemas import (
    AvailabilityRead,
    BookedSlotRead,
    ReservationCreate,
    ReservationRead,
    ReservationUpdate,
)
from bookingcore.service_app import create_service_app, limiter
from bookingcore.stores import ReservationStore

settings = get_settings()
logger = logging.getLogger(__name__)


def _prepare_admission(app: FastAPI) -> None:
    app.state.resource_locks = ResourceLocks()
    app.state.event_publisher = build_publisher(settings)
    app.state.interval_index = None
    if settings.interval_index_backend == "memory":
        index = InMemoryIntervalIndex()
        with SessionLocal() as session:
            index.load(ReservationStore(session).active_for_room())
        app.state.interval_index = index
        logger.info("In-memory interval index warmed with %d reservations", len(index))


app = create_service_app("Reservations Service", "reservations", on_startup=_prepare_admission)


@app.post("/reservations", response_model=ReservationRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
def create_reservation(
    request: Request,
    reservation_in: ReservationCreate,
    actor: Actor = Depends(get_actor),
    engine: AdmissionEngine = Depends(get_admission_engine),
) -> Reservation:
    return engine.create_reservation(
        reservation_in.room_id,
        actor.id,
        reservation_in.start_time,
        reservation_in.end_time,
        attendees=reservation_in.attendees,
        purpose=reservation_in.purpose,
    )


@app.get("/reservations", response_model=List[ReservationRead])
@limiter.limit("30/minute")
def list_reservations(
    request: Request,
    status_filter: Optional[ReservationStatus] = Query(None, alias="status"),
    room_id: Optional[int] = None,
    user_id: Optional[int] = None,
    actor: Actor = Depends(get_actor),
    engine: AdmissionEngine = Depends(get_admission_engine),
) -> List[Reservation]:
    return engine.list_reservations(
        actor.id,
        actor.is_privileged,
        status=status_filter,
        room_id=room_id,
        user_id=user_id,
    )


@app.get("/reservations/me", response_model=List[ReservationRead])
@limiter.limit("30/minute")
def my_reservations(
    request: Request,
    status_filter: Optional[ReservationStatus] = Query(None, alias="status"),
    actor: Actor = Depends(get_actor),
    engine: AdmissionEngine = Depends(get_admission_engine),
) -> List[Reservation]:
    return engine.list_for_requester(actor.id, status=status_filter)


@app.get("/reservations/availability", response_model=AvailabilityRead)
@limiter.limit("40/minute")
def check_availability(
    request: Request,
    room_id: int,
    start_time: datetime = Query(...),
    end_time: datetime = Query(...),
    engine: AdmissionEngine = Depends(get_admission_engine),
) -> AvailabilityRead:
    slots = engine.get_availability(room_id, start_time, end_time)
    return AvailabilityRead(
        room_id=room_id,
        start_time=start_time,
        end_time=end_time,
        available=not slots,
        booked_slots=[BookedSlotRead.model_validate(slot) for slot in slots],
    )


@app.get("/reservations/{reservation_id}", response_model=ReservationRead)
@limiter.limit("30/minute")
def get_reservation(
    request: Request,
    reservation_id: int,
    actor: Actor = Depends(get_actor),
    engine: AdmissionEngine = Depends(get_admission_engine),
) -> Reservation:
    return engine.get_reservation(reservation_id, actor.id, actor.is_privileged)


@app.put("/reservations/{reservation_id}", response_model=ReservationRead)
@limiter.limit("20/minute")
def update_reservation(
    request: Request,
    reservation_id: int,
    reservation_update: ReservationUpdate,
    actor: Actor = Depends(get_actor),
    engine: AdmissionEngine = Depends(get_admission_engine),
) -> Reservation:
    return engine.update_reservation(
        reservation_id,
        actor.id,
        actor.is_privileged,
        reservation_update.model_dump(exclude_unset=True),
    )


@app.delete("/reservations/{reservation_id}", response_model=ReservationRead)
@limiter.limit("20/minute")
def cancel_reservation(
    request: Request,
    reservation_id: int,
    actor: Actor = Depends(get_actor),
    engine: AdmissionEngine = Depends(get_admission_engine),
) -> Reservation:
    return engine.cancel_reservation(reservation_id, actor.id, actor.is_privileged)
