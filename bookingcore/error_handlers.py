"""Map domain and infrastructure errors to stable HTTP responses."""
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from .errors import ErrorKind, InfrastructureError, ReservationError, StorageConstraintError

STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.INVALID_INTERVAL: status.HTTP_400_BAD_REQUEST,
    ErrorKind.RESOURCE_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.RESOURCE_UNAVAILABLE: status.HTTP_409_CONFLICT,
    ErrorKind.RESOURCE_IN_USE: status.HTTP_409_CONFLICT,
    ErrorKind.CAPACITY_EXCEEDED: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorKind.INTERVAL_CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    ErrorKind.INVALID_STATE: status.HTTP_400_BAD_REQUEST,
}


def reservation_error_handler(_: Request, exc: ReservationError) -> JSONResponse:
    return JSONResponse(
        status_code=STATUS_BY_KIND[exc.kind],
        content={"detail": exc.message, "code": exc.kind.value},
    )


def infrastructure_error_handler(_: Request, exc: InfrastructureError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": str(exc), "code": "storage_unavailable"},
        headers={"Retry-After": "1"},
    )


def storage_constraint_handler(_: Request, exc: StorageConstraintError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={"detail": str(exc), "code": "constraint_violation"},
    )


def apply_error_handlers(app: FastAPI) -> None:
    """Attach the domain error handlers to an app."""

    app.add_exception_handler(ReservationError, reservation_error_handler)
    app.add_exception_handler(InfrastructureError, infrastructure_error_handler)
    app.add_exception_handler(StorageConstraintError, storage_constraint_handler)
