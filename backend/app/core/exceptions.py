"""
Domain error taxonomy and the FastAPI handlers that translate it to HTTP.

Services raise these exceptions and never build HTTP responses themselves.
Storage failures (SQLAlchemyError) are not interpreted by the services; they
bubble up and are reported as a generic storage failure.
"""

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from app.core.logging import get_logger

logger = get_logger(__name__)


class BookingAppError(Exception):
    """Base class for all business errors surfaced to callers."""

    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFoundError(BookingAppError):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, resource: str, field: str, value):
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(f"{resource} not found with {field}: {value}")


class DuplicateEmailError(BookingAppError):
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, email: str):
        self.email = email
        super().__init__(f"User with email already exists: {email}")


class InvalidOperationError(BookingAppError):
    """A business rule rejected the request (inactive account, quota, stock)."""


class IllegalStateTransitionError(BookingAppError):
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, from_status: str, to_status: str, message: str):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(message)


class InventoryUnavailableError(BookingAppError):
    """Reservation lost: the ticket no longer has the requested quantity."""

    status_code = status.HTTP_409_CONFLICT


async def booking_error_handler(request: Request, exc: BookingAppError) -> JSONResponse:
    logger.warning(
        "business_error",
        error=type(exc).__name__,
        detail=exc.message,
        status_code=exc.status_code,
    )
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


async def storage_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error("storage_failure", error=type(exc).__name__, detail=str(exc))
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Storage failure"},
    )


EXCEPTION_HANDLERS = {
    BookingAppError: booking_error_handler,
    SQLAlchemyError: storage_error_handler,
}


def register_exception_handlers(app: FastAPI) -> None:
    for exception_class, handler in EXCEPTION_HANDLERS.items():
        app.add_exception_handler(exception_class, handler)
