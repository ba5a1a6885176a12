from app.models.user import User
from app.models.ticket import Ticket, TicketType
from app.models.booking import Booking, BookingStatus

__all__ = ["User", "Ticket", "TicketType", "Booking", "BookingStatus"]
