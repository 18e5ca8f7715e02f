"""Domain errors raised by the reservation core.

Business failures are ``ReservationError`` subclasses carrying a stable
``ErrorKind`` that front ends map to a response. Infrastructure failures are
``InfrastructureError`` subclasses and are never mixed with the business ones.
"""
from dataclasses import dataclass
from enum import Enum


class ErrorKind(str, Enum):
    """Stable error codes exposed to callers."""

    INVALID_INTERVAL = "invalid_interval"
    RESOURCE_NOT_FOUND = "resource_not_found"
    RESOURCE_UNAVAILABLE = "resource_unavailable"
    RESOURCE_IN_USE = "resource_in_use"
    CAPACITY_EXCEEDED = "capacity_exceeded"
    INTERVAL_CONFLICT = "interval_conflict"
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    INVALID_STATE = "invalid_state"


@dataclass(frozen=True)
class ReservationError(Exception):
    """Base domain error with code and user-safe message."""

    kind: ErrorKind
    message: str

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


class InvalidIntervalError(ReservationError):
    def __init__(self, message: str = "End time must be after start time") -> None:
        super().__init__(kind=ErrorKind.INVALID_INTERVAL, message=message)


class ResourceNotFoundError(ReservationError):
    def __init__(self, room_id: int | None) -> None:
        super().__init__(kind=ErrorKind.RESOURCE_NOT_FOUND, message="Room not found")
        object.__setattr__(self, "room_id", room_id)


class ResourceUnavailableError(ReservationError):
    def __init__(self, room_id: int) -> None:
        super().__init__(kind=ErrorKind.RESOURCE_UNAVAILABLE, message="Room is not available for booking")
        object.__setattr__(self, "room_id", room_id)


class ResourceInUseError(ReservationError):
    def __init__(self, room_id: int) -> None:
        super().__init__(
            kind=ErrorKind.RESOURCE_IN_USE,
            message="Cannot delete room with active or pending reservations",
        )
        object.__setattr__(self, "room_id", room_id)


class CapacityExceededError(ReservationError):
    def __init__(self, attendees: int, capacity: int) -> None:
        super().__init__(
            kind=ErrorKind.CAPACITY_EXCEEDED,
            message=f"Number of attendees ({attendees}) exceeds room capacity ({capacity})",
        )


class IntervalConflictError(ReservationError):
    def __init__(self, room_id: int) -> None:
        super().__init__(
            kind=ErrorKind.INTERVAL_CONFLICT,
            message="Room is not available for the selected time slot",
        )
        object.__setattr__(self, "room_id", room_id)


class ReservationNotFoundError(ReservationError):
    def __init__(self, reservation_id: int) -> None:
        super().__init__(kind=ErrorKind.NOT_FOUND, message="Reservation not found")
        object.__setattr__(self, "reservation_id", reservation_id)


class ForbiddenError(ReservationError):
    def __init__(self, message: str = "Access denied") -> None:
        super().__init__(kind=ErrorKind.FORBIDDEN, message=message)


class InvalidStateError(ReservationError):
    def __init__(self, message: str) -> None:
        super().__init__(kind=ErrorKind.INVALID_STATE, message=message)


class InfrastructureError(Exception):
    """Unrecoverable failure of a collaborator; retryable at the transport layer."""


class StorageUnavailableError(InfrastructureError):
    def __init__(self, attempts: int) -> None:
        super().__init__(f"Storage unavailable after {attempts} attempt(s)")
        self.attempts = attempts


class StorageConstraintError(Exception):
    """A write broke a storage constraint other than interval overlap."""

    def __init__(self, constraint: str) -> None:
        super().__init__("Write rejected by a storage constraint")
        self.constraint = constraint
