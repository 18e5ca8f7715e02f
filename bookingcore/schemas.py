"""Pydantic schemas shared across the services.

Request schemas only check shape and field bounds. Interval ordering, the
future-start rule and capacity are left to the admission engine so each
failure keeps its own error kind.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

from .models import ReservationStatus, RoleEnum


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class UserBase(BaseModel):
    name: str = Field(..., max_length=100)
    username: str = Field(..., max_length=50)
    email: EmailStr
    role: RoleEnum = RoleEnum.REGULAR


class UserCreate(UserBase):
    password: str = Field(..., min_length=8)


class UserUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=100)
    email: Optional[EmailStr] = None
    role: Optional[RoleEnum] = None
    password: Optional[str] = Field(None, min_length=8)


class UserRead(UserBase):
    id: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RoomBase(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)
    description: str = Field("", max_length=500)
    capacity: int = Field(..., ge=1, le=1000)
    hourly_rate: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2)
    equipment: List[str] = Field(default_factory=list)
    location: str = Field("", max_length=255)
    floor: Optional[int] = Field(None, ge=0)
    building: Optional[str] = Field(None, max_length=50)
    is_active: bool = True


class RoomCreate(RoomBase):
    pass


class RoomUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    capacity: Optional[int] = Field(None, ge=1, le=1000)
    hourly_rate: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)
    equipment: Optional[List[str]] = None
    location: Optional[str] = Field(None, max_length=255)
    floor: Optional[int] = Field(None, ge=0)
    building: Optional[str] = Field(None, max_length=50)
    is_active: Optional[bool] = None


class RoomRead(RoomBase):
    id: int

    model_config = ConfigDict(from_attributes=True)


class ReservationCreate(BaseModel):
    room_id: int
    start_time: datetime
    end_time: datetime
    purpose: Optional[str] = Field(None, max_length=200)
    attendees: Optional[int] = Field(None, ge=1)


class ReservationUpdate(BaseModel):
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    purpose: Optional[str] = Field(None, max_length=200)
    attendees: Optional[int] = Field(None, ge=1)
    status: Optional[ReservationStatus] = None

    @model_validator(mode="after")
    def _require_a_change(self) -> "ReservationUpdate":
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided")
        return self


class ReservationRead(BaseModel):
    id: int
    room_id: Optional[int]
    user_id: Optional[int]
    start_time: datetime
    end_time: datetime
    status: ReservationStatus
    purpose: Optional[str] = None
    attendees: Optional[int] = None
    total_price: Decimal
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class BookedSlotRead(BaseModel):
    start_time: datetime
    end_time: datetime
    status: ReservationStatus

    model_config = ConfigDict(from_attributes=True)


class AvailabilityRead(BaseModel):
    room_id: int
    start_time: datetime
    end_time: datetime
    available: bool
    booked_slots: List[BookedSlotRead]
