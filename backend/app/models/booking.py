"""
Booking model and its status state machine.

    PENDING -> CONFIRMED | CANCELLED | EXPIRED
    CONFIRMED -> CANCELLED

Status writes are version-checked (version_id_col), so a transition computed
from a stale read fails at flush time.

Two cancellation guards exist on purpose:
- is_cancellable(): the narrow pre-flight check (PENDING or CONFIRMED)
- cancel(): the transition guard, which only rejects an already CANCELLED booking
"""

import enum
from decimal import Decimal
from typing import Optional

from sqlalchemy import Column, Integer, String, DateTime, Numeric, ForeignKey, Index, CheckConstraint

from app.core.exceptions import IllegalStateTransitionError
from app.db.base import Base, TimestampMixin, utcnow


class BookingStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


class Booking(Base, TimestampMixin):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    ticket_id = Column(Integer, ForeignKey("tickets.id"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    # Fixed at creation time, never recomputed from the ticket price
    total_amount = Column(Numeric(10, 2), nullable=False)
    status = Column(String(20), nullable=False, default=BookingStatus.PENDING.value)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancellation_reason = Column(String(500), nullable=True)
    # Every status write is "UPDATE ... WHERE id = :id AND version = :v";
    # a stale copy raises StaleDataError instead of overwriting a newer state.
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint("quantity > 0", name="check_booking_quantity_positive"),
        CheckConstraint(
            "status IN ('PENDING', 'CONFIRMED', 'CANCELLED', 'EXPIRED')",
            name="check_booking_status",
        ),
        # Expiry sweep: WHERE status = 'PENDING' AND created_at < :cutoff
        Index("ix_bookings_status_created", "status", "created_at"),
    )

    @property
    def booking_date(self):
        return self.created_at

    def confirm(self) -> None:
        if self.status != BookingStatus.PENDING:
            raise IllegalStateTransitionError(
                self.status, BookingStatus.CONFIRMED.value,
                "Only pending bookings can be confirmed",
            )
        self.status = BookingStatus.CONFIRMED.value
        self.confirmed_at = utcnow()

    def cancel(self, reason: Optional[str] = None) -> None:
        if self.status == BookingStatus.CANCELLED:
            raise IllegalStateTransitionError(
                self.status, BookingStatus.CANCELLED.value,
                "Booking is already cancelled",
            )
        self.status = BookingStatus.CANCELLED.value
        self.cancelled_at = utcnow()
        self.cancellation_reason = reason

    def mark_expired(self) -> None:
        if self.status != BookingStatus.PENDING:
            raise IllegalStateTransitionError(
                self.status, BookingStatus.EXPIRED.value,
                "Only pending bookings can expire",
            )
        self.status = BookingStatus.EXPIRED.value

    def is_cancellable(self) -> bool:
        return self.status in (BookingStatus.CONFIRMED, BookingStatus.PENDING)

    def calculate_refund(self, cancellation_fee: Decimal) -> Decimal:
        if not self.is_cancellable():
            return Decimal("0.00")
        refund = Decimal(self.total_amount) - Decimal(cancellation_fee)
        return max(refund, Decimal("0.00"))

    def __repr__(self) -> str:
        return (
            f"<Booking(id={self.id}, user={self.user_id}, ticket={self.ticket_id}, "
            f"quantity={self.quantity}, status={self.status})>"
        )
