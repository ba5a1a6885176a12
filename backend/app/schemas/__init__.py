from app.schemas.user import UserCreate, UserUpdate, UserResponse
from app.schemas.ticket import TicketCreate, TicketUpdate, TicketResponse, TicketListResponse
from app.schemas.booking import (
    BookingCreate, BookingCancel, BookingResponse, RefundResponse, ExpireResponse,
)

__all__ = [
    "UserCreate", "UserUpdate", "UserResponse",
    "TicketCreate", "TicketUpdate", "TicketResponse", "TicketListResponse",
    "BookingCreate", "BookingCancel", "BookingResponse", "RefundResponse", "ExpireResponse",
]
