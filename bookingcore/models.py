"""SQLAlchemy models shared across all services."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .clock import utcnow
from .database import Base


class RoleEnum(str, Enum):
    ADMIN = "admin"
    FACILITY_MANAGER = "facility_manager"
    REGULAR = "regular"


PRIVILEGED_ROLES = frozenset({RoleEnum.ADMIN, RoleEnum.FACILITY_MANAGER})


class ReservationStatus(str, Enum):
    CONFIRMED = "confirmed"
    PENDING = "pending"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


ACTIVE_STATUSES = (ReservationStatus.CONFIRMED, ReservationStatus.PENDING)

# PostgreSQL deployments may add an exclusion constraint under this name.
OVERLAP_CONSTRAINT = "ex_reservations_room_overlap"


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(100))
    username: Mapped[str] = mapped_column(String(50), unique=True, index=True)
    hashed_password: Mapped[str] = mapped_column(String(255))
    email: Mapped[str] = mapped_column(String(255), unique=True)
    role: Mapped[RoleEnum] = mapped_column(SqlEnum(RoleEnum), default=RoleEnum.REGULAR)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    reservations: Mapped[List["Reservation"]] = relationship(back_populates="user", passive_deletes=True)

    @property
    def is_privileged(self) -> bool:
        return self.role in PRIVILEGED_ROLES


class Room(Base):
    __tablename__ = "rooms"
    __table_args__ = (
        CheckConstraint("capacity > 0", name="ck_rooms_capacity_positive"),
        CheckConstraint("hourly_rate >= 0", name="ck_rooms_rate_non_negative"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(100), unique=True)
    description: Mapped[str] = mapped_column(String(500), default="")
    capacity: Mapped[int] = mapped_column(Integer, index=True)
    hourly_rate: Mapped[Decimal] = mapped_column(Numeric(10, 2), index=True)
    equipment: Mapped[list[str]] = mapped_column(JSON, default=list)
    location: Mapped[str] = mapped_column(String(255), default="", index=True)
    floor: Mapped[Optional[int]] = mapped_column(Integer, default=None)
    building: Mapped[Optional[str]] = mapped_column(String(50), default=None)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    reservations: Mapped[List["Reservation"]] = relationship(back_populates="room", passive_deletes=True)


class Reservation(Base):
    __tablename__ = "reservations"
    __table_args__ = (
        CheckConstraint("end_time > start_time", name="ck_reservations_interval_ordered"),
        CheckConstraint("total_price >= 0", name="ck_reservations_price_non_negative"),
        Index("ix_reservations_room_interval", "room_id", "start_time", "end_time"),
        Index("ix_reservations_user_status", "user_id", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), index=True)
    room_id: Mapped[Optional[int]] = mapped_column(ForeignKey("rooms.id", ondelete="SET NULL"), index=True)
    start_time: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    end_time: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    status: Mapped[ReservationStatus] = mapped_column(
        SqlEnum(ReservationStatus), default=ReservationStatus.CONFIRMED, index=True
    )
    purpose: Mapped[Optional[str]] = mapped_column(String(200), default=None)
    attendees: Mapped[Optional[int]] = mapped_column(Integer, default=None)
    total_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    user: Mapped[Optional[User]] = relationship(back_populates="reservations")
    room: Mapped[Optional[Room]] = relationship(back_populates="reservations")

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES
