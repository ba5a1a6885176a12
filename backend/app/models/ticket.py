"""
Ticket model: one priced offer for an event with its own stock counter.

Key design decisions:
- `available_quantity` is the live stock; reservations decrement it
- `version` column enables optimistic locking for concurrent reservations
- Composite index on (event_name, event_date) for the common search path
"""

import enum
from decimal import Decimal

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Numeric, Index, CheckConstraint,
)

from app.db.base import Base, TimestampMixin


class TicketType(str, enum.Enum):
    ECONOMY = "ECONOMY"
    BUSINESS = "BUSINESS"
    FIRST_CLASS = "FIRST_CLASS"
    VIP = "VIP"


class Ticket(Base, TimestampMixin):
    __tablename__ = "tickets"

    id = Column(Integer, primary_key=True, index=True)
    event_name = Column(String(255), nullable=False)
    venue = Column(String(255), nullable=False)
    event_date = Column(DateTime(timezone=True), nullable=False)
    ticket_type = Column(String(20), nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    available_quantity = Column(Integer, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    # Optimistic locking version counter
    version = Column(Integer, nullable=False, default=1)

    __table_args__ = (
        CheckConstraint("available_quantity >= 0", name="check_available_quantity_non_negative"),
        CheckConstraint("price >= 0", name="check_price_non_negative"),
        CheckConstraint(
            "ticket_type IN ('ECONOMY', 'BUSINESS', 'FIRST_CLASS', 'VIP')",
            name="check_ticket_type",
        ),
        Index("ix_tickets_event_date", "event_date"),
        Index("ix_tickets_event_name_date", "event_name", "event_date"),
    )

    def has_available_tickets(self, requested_quantity: int) -> bool:
        return bool(self.is_active) and self.available_quantity >= requested_quantity

    def calculate_total_price(self, quantity: int) -> Decimal:
        return Decimal(self.price) * quantity

    def __repr__(self) -> str:
        return (
            f"<Ticket(id={self.id}, event={self.event_name}, type={self.ticket_type}, "
            f"available={self.available_quantity})>"
        )
