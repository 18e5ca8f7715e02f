from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from circuitbreaker import circuit
from fastapi import Depends, HTTPException, Query, Request, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from bookingcore.admission import AdmissionEngine
from bookingcore.cache import ListingCache, listing_key
from bookingcore.config import get_settings
from bookingcore.database import get_db
from bookingcore.dependencies import Actor, get_admission_engine, require_privileged
from bookingcore.models import Room
from bookingcore.schemas import AvailabilityRead, BookedSlotRead, RoomCreate, RoomRead, RoomUpdate
from bookingcore.service_app import create_service_app, limiter

settings = get_settings()
room_listing_cache: ListingCache[List[RoomRead]] = ListingCache(ttl=settings.room_cache_ttl)

app = create_service_app("Rooms Service", "rooms")


def _get_room_or_404(db: Session, room_id: int) -> Room:
    room = db.get(Room, room_id)
    if not room:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Room not found")
    return room


def _commit_room(db: Session, room: Room) -> Room:
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Room name already exists") from exc
    db.refresh(room)
    room_listing_cache.invalidate()
    return room


@app.post("/rooms", response_model=RoomRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
def add_room(
    request: Request,
    room_in: RoomCreate,
    _: Actor = Depends(require_privileged),
    db: Session = Depends(get_db),
) -> Room:
    room = Room(**room_in.model_dump())
    db.add(room)
    return _commit_room(db, room)


@circuit(failure_threshold=5, recovery_timeout=60)
def _query_rooms(
    db: Session,
    capacity: Optional[int],
    location: Optional[str],
    equipment: Optional[List[str]],
    max_rate: Optional[Decimal],
    include_inactive: bool,
) -> List[RoomRead]:
    query = db.query(Room)
    if not include_inactive:
        query = query.filter(Room.is_active.is_(True))
    if capacity:
        query = query.filter(Room.capacity >= capacity)
    if location:
        query = query.filter(Room.location.ilike(f"%{location}%"))
    if max_rate is not None:
        query = query.filter(Room.hourly_rate <= max_rate)
    rooms = query.order_by(Room.name).all()
    if equipment:
        wanted = set(equipment)
        rooms = [room for room in rooms if wanted.issubset(set(room.equipment or []))]
    return [RoomRead.model_validate(room) for room in rooms]


@app.get("/rooms", response_model=List[RoomRead])
@limiter.limit("60/minute")
def list_rooms(
    request: Request,
    capacity: Optional[int] = Query(None, ge=1),
    location: Optional[str] = None,
    equipment: Optional[List[str]] = Query(default=None),
    max_rate: Optional[Decimal] = Query(None, ge=0),
    include_inactive: bool = False,
    db: Session = Depends(get_db),
) -> List[RoomRead]:
    cache_key = listing_key(capacity, location, equipment, max_rate, include_inactive)
    cached = room_listing_cache.get(cache_key)
    if cached is not None:
        return cached
    return room_listing_cache.store(
        cache_key, _query_rooms(db, capacity, location, equipment, max_rate, include_inactive)
    )


@app.get("/rooms/{room_id}", response_model=RoomRead)
@limiter.limit("60/minute")
def get_room(request: Request, room_id: int, db: Session = Depends(get_db)) -> Room:
    return _get_room_or_404(db, room_id)


@app.put("/rooms/{room_id}", response_model=RoomRead)
@limiter.limit("15/minute")
def update_room(
    request: Request,
    room_id: int,
    room_update: RoomUpdate,
    _: Actor = Depends(require_privileged),
    db: Session = Depends(get_db),
) -> Room:
    room = _get_room_or_404(db, room_id)
    for key, value in room_update.model_dump(exclude_unset=True).items():
        setattr(room, key, value)
    return _commit_room(db, room)


@app.delete("/rooms/{room_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("15/minute")
def delete_room(
    request: Request,
    room_id: int,
    _: Actor = Depends(require_privileged),
    engine: AdmissionEngine = Depends(get_admission_engine),
) -> None:
    engine.delete_room(room_id)
    room_listing_cache.invalidate()


@app.get("/rooms/{room_id}/availability", response_model=AvailabilityRead)
@limiter.limit("40/minute")
def room_availability(
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
