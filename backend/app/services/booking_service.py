"""
Booking orchestrator: the only code path that creates or mutates bookings.

It sequences the user checks, the ticket inventory calls and the booking
state machine inside the caller's transaction (one per HTTP request, see
app.db.session.get_db). Booking rules come from a BookingPolicy handed to the
constructor.

Overbooking is prevented in ticket_service.reserve (optimistic version
check). The availability pre-check below only produces the friendlier
InvalidOperationError for the common case; a caller that loses a race
between check and reserve gets InventoryUnavailableError.

Status changes are always computed from a fresh read of the booking and
written with the version check on Booking, so confirm, cancel and the expiry
sweep cannot overwrite each other.
"""

import time
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.core.config import BookingPolicy
from app.core.exceptions import (
    IllegalStateTransitionError,
    InvalidOperationError,
    InventoryUnavailableError,
    NotFoundError,
)
from app.core.logging import get_logger
from app.core.metrics import booking_latency, record_booking_attempt, record_transition
from app.db.base import utcnow
from app.models.booking import Booking, BookingStatus
from app.services import ticket_service, user_service

logger = get_logger(__name__)


class BookingService:
    def __init__(self, db: AsyncSession, policy: BookingPolicy):
        self.db = db
        self.policy = policy

    async def create_booking(self, user_id: int, ticket_id: int, quantity: int) -> Booking:
        """Validate, reserve stock and record a PENDING booking."""
        started = time.perf_counter()
        logger.info("booking_requested", user_id=user_id, ticket_id=ticket_id, quantity=quantity)

        user = await user_service.get_user(self.db, user_id)
        if not user.is_active:
            record_booking_attempt("rejected")
            raise InvalidOperationError("User account is not active")

        ticket = await ticket_service.get_ticket(self.db, ticket_id)
        if not ticket.is_active:
            record_booking_attempt("rejected")
            raise InvalidOperationError("Ticket is not active")

        if quantity < 1:
            record_booking_attempt("rejected")
            raise InvalidOperationError("Quantity must be at least 1")

        max_allowed = self.policy.max_tickets_per_user
        if not await user_service.can_book(self.db, user, quantity, max_allowed):
            record_booking_attempt("rejected")
            raise InvalidOperationError(f"User cannot book more than {max_allowed} tickets")

        if not await ticket_service.has_available(self.db, ticket_id, quantity):
            record_booking_attempt("rejected")
            raise InvalidOperationError("Requested tickets are not available")

        total_amount = await ticket_service.total_price(self.db, ticket_id, quantity)

        try:
            await ticket_service.reserve(
                self.db, ticket_id, quantity, max_attempts=self.policy.max_retry_attempts
            )
        except InventoryUnavailableError:
            record_booking_attempt("conflict")
            raise

        booking = Booking(
            user_id=user.id,
            ticket_id=ticket.id,
            quantity=quantity,
            total_amount=total_amount,
            status=BookingStatus.PENDING.value,
        )
        self.db.add(booking)
        await self.db.flush()
        await self.db.refresh(booking)

        record_booking_attempt("success")
        booking_latency.observe(time.perf_counter() - started)
        logger.info(
            "booking_created",
            booking_id=booking.id,
            user_id=user_id,
            ticket_id=ticket_id,
            quantity=quantity,
            total_amount=str(total_amount),
        )
        return booking

    async def get_booking(self, booking_id: int) -> Booking:
        booking = await self.db.get(Booking, booking_id)
        if not booking:
            raise NotFoundError("Booking", "id", booking_id)
        return booking

    async def list_bookings(
        self,
        user_id: Optional[int] = None,
        status: Optional[BookingStatus] = None,
        created_from: Optional[datetime] = None,
        created_to: Optional[datetime] = None,
    ) -> list[Booking]:
        query = select(Booking)
        if user_id is not None:
            query = query.where(Booking.user_id == user_id)
        if status is not None:
            query = query.where(Booking.status == status.value)
        if created_from is not None:
            query = query.where(Booking.created_at >= created_from)
        if created_to is not None:
            query = query.where(Booking.created_at <= created_to)

        result = await self.db.execute(query.order_by(Booking.created_at.desc(), Booking.id.desc()))
        return list(result.scalars().all())

    async def get_confirmed_bookings_by_user(self, user_id: int) -> list[Booking]:
        return await self.list_bookings(user_id=user_id, status=BookingStatus.CONFIRMED)

    async def count_user_bookings(self, user_id: int, status: BookingStatus) -> int:
        return await user_service.count_bookings(self.db, user_id, status)

    async def _load_current(self, booking_id: int) -> Booking:
        """Re-read the row, replacing whatever copy this session holds."""
        booking = await self.db.get(Booking, booking_id, populate_existing=True)
        if not booking:
            raise NotFoundError("Booking", "id", booking_id)
        return booking

    async def _write_transition(self, booking: Booking, from_status: str, to_status: BookingStatus) -> None:
        booking_id = booking.id
        try:
            await self.db.flush()
        except StaleDataError:
            logger.warning(
                "booking_transition_conflict",
                booking_id=booking_id,
                from_status=from_status,
                to_status=to_status.value,
            )
            raise IllegalStateTransitionError(
                from_status, to_status.value, "Booking was modified concurrently"
            )
        await self.db.refresh(booking)

    async def confirm_booking(self, booking_id: int) -> Booking:
        booking = await self._load_current(booking_id)
        from_status = booking.status
        booking.confirm()
        await self._write_transition(booking, from_status, BookingStatus.CONFIRMED)
        record_transition(BookingStatus.CONFIRMED.value)

        logger.info("booking_confirmed", booking_id=booking.id)
        return booking

    async def cancel_booking(self, booking_id: int, reason: Optional[str] = None) -> Booking:
        """Move the booking to CANCELLED, then release the reserved stock."""
        booking = await self._load_current(booking_id)

        if not booking.is_cancellable():
            raise InvalidOperationError("Booking cannot be cancelled")

        from_status = booking.status
        booking.cancel(reason)
        await self._write_transition(booking, from_status, BookingStatus.CANCELLED)
        await ticket_service.release(self.db, booking.ticket_id, booking.quantity)
        record_transition(BookingStatus.CANCELLED.value)

        logger.info(
            "booking_cancelled",
            booking_id=booking.id,
            ticket_id=booking.ticket_id,
            quantity_released=booking.quantity,
            reason=reason,
        )
        return booking

    async def calculate_refund(self, booking_id: int) -> Decimal:
        booking = await self.get_booking(booking_id)
        refund = booking.calculate_refund(self.policy.cancellation_fee)
        logger.info("refund_calculated", booking_id=booking_id, refund=str(refund))
        return refund

    async def expire_pending_bookings(self, max_age_hours: int) -> int:
        """
        Expire PENDING bookings older than max_age_hours and give their stock
        back. Each booking is re-read, expired and committed on its own:
        bookings confirmed or cancelled in the meantime are skipped, and a
        failure midway keeps the bookings already processed.
        """
        cutoff = utcnow() - timedelta(hours=max_age_hours)
        logger.info("expiring_pending_bookings", max_age_hours=max_age_hours, cutoff=cutoff.isoformat())

        stale_ids = (
            await self.db.scalars(
                select(Booking.id)
                .where(
                    Booking.status == BookingStatus.PENDING.value,
                    Booking.created_at < cutoff,
                )
                .order_by(Booking.id)
            )
        ).all()

        expired = 0
        for booking_id in stale_ids:
            booking = await self._load_current(booking_id)
            if booking.status != BookingStatus.PENDING:
                logger.info("booking_expiry_skipped", booking_id=booking_id, status=booking.status)
                continue

            try:
                booking.mark_expired()
                await self._write_transition(booking, BookingStatus.PENDING.value, BookingStatus.EXPIRED)
                await ticket_service.release(self.db, booking.ticket_id, booking.quantity)
                await self.db.commit()
            except IllegalStateTransitionError:
                await self.db.rollback()
                logger.info("booking_expiry_skipped", booking_id=booking_id, reason="modified_concurrently")
                continue
            except Exception:
                await self.db.rollback()
                logger.error("booking_expiry_failed", booking_id=booking_id, processed=expired)
                raise
            expired += 1
            record_transition(BookingStatus.EXPIRED.value)

        logger.info("bookings_expired", count=expired)
        return expired
