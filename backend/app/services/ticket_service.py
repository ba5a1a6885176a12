"""
Ticket inventory service: ticket CRUD, search, and stock reservation.

CONCURRENCY STRATEGY: Optimistic Locking with Retry
====================================================

Availability check and decrement happen in one statement:

    UPDATE tickets
       SET available_quantity = available_quantity - :q, version = version + 1
     WHERE id = :id AND version = :v AND is_active AND available_quantity >= :q

Zero affected rows means either someone else touched the row first (retry
with a fresh read) or the stock is really gone (InventoryUnavailableError).
The CHECK constraint available_quantity >= 0 is the last line of defence.

Release is an unconditional increment. It is not clamped to any original
capacity, so releasing twice for one booking inflates the stock.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.ticket import Ticket, TicketType
from app.models.booking import Booking
from app.schemas.ticket import TicketCreate, TicketUpdate
from app.core.config import get_settings
from app.core.exceptions import InvalidOperationError, InventoryUnavailableError, NotFoundError
from app.core.metrics import record_inventory_operation, reservation_retries
from app.core.logging import get_logger

logger = get_logger(__name__)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


async def create_ticket(db: AsyncSession, ticket_data: TicketCreate) -> Ticket:
    """Create a ticket offer. The event must lie in the future."""
    event_date = _as_utc(ticket_data.event_date)
    if event_date <= datetime.now(timezone.utc):
        raise InvalidOperationError("Event date cannot be in the past")

    ticket = Ticket(
        event_name=ticket_data.event_name,
        venue=ticket_data.venue,
        event_date=event_date,
        ticket_type=ticket_data.ticket_type.value,
        price=ticket_data.price,
        available_quantity=ticket_data.available_quantity,
        is_active=True,
    )
    db.add(ticket)
    await db.flush()
    await db.refresh(ticket)

    logger.info(
        "ticket_created",
        ticket_id=ticket.id,
        event_name=ticket.event_name,
        quantity=ticket.available_quantity,
    )
    return ticket


async def get_ticket(db: AsyncSession, ticket_id: int) -> Ticket:
    ticket = await db.get(Ticket, ticket_id)
    if not ticket:
        raise NotFoundError("Ticket", "id", ticket_id)
    return ticket


async def list_tickets(
    db: AsyncSession,
    page: int = 1,
    page_size: int = 20,
    event_name: Optional[str] = None,
    venue: Optional[str] = None,
    ticket_type: Optional[TicketType] = None,
    min_price: Optional[Decimal] = None,
    max_price: Optional[Decimal] = None,
    available_only: bool = False,
    upcoming_only: bool = False,
    bookable_within_days: Optional[int] = None,
) -> tuple[list[Ticket], int]:
    """
    Search tickets with pagination.
    `bookable_within_days` keeps active tickets whose event falls between
    now and now + that many days.
    """
    now = datetime.now(timezone.utc)
    query = select(Ticket)

    if event_name:
        query = query.where(Ticket.event_name == event_name)
    if venue:
        query = query.where(Ticket.venue == venue)
    if ticket_type:
        query = query.where(Ticket.ticket_type == ticket_type.value)
    if min_price is not None:
        query = query.where(Ticket.price >= min_price)
    if max_price is not None:
        query = query.where(Ticket.price <= max_price)
    if available_only:
        query = query.where(Ticket.available_quantity > 0, Ticket.is_active.is_(True))
    if upcoming_only:
        query = query.where(Ticket.event_date > now, Ticket.is_active.is_(True))
    if bookable_within_days is not None:
        query = query.where(
            Ticket.event_date > now,
            Ticket.event_date <= now + timedelta(days=bookable_within_days),
            Ticket.is_active.is_(True),
        )

    count_query = select(func.count()).select_from(query.subquery())
    total = (await db.execute(count_query)).scalar()

    tickets_query = (
        query
        .order_by(Ticket.event_date.asc(), Ticket.id.asc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    result = await db.execute(tickets_query)
    return list(result.scalars().all()), total


async def update_ticket(db: AsyncSession, ticket_id: int, ticket_data: TicketUpdate) -> Ticket:
    """Administrative edit. Bumps the version so in-flight reservations retry."""
    ticket = await get_ticket(db, ticket_id)

    ticket.event_name = ticket_data.event_name
    ticket.venue = ticket_data.venue
    ticket.event_date = _as_utc(ticket_data.event_date)
    ticket.ticket_type = ticket_data.ticket_type.value
    ticket.price = ticket_data.price
    ticket.available_quantity = ticket_data.available_quantity
    ticket.is_active = ticket_data.is_active
    ticket.version = ticket.version + 1
    await db.flush()
    await db.refresh(ticket)

    logger.info("ticket_updated", ticket_id=ticket.id, version=ticket.version)
    return ticket


async def delete_ticket(db: AsyncSession, ticket_id: int) -> None:
    ticket = await get_ticket(db, ticket_id)
    referenced = await db.scalar(
        select(func.count()).select_from(Booking).where(Booking.ticket_id == ticket_id)
    )
    if referenced:
        raise InvalidOperationError(f"Ticket {ticket_id} is referenced by {referenced} booking(s)")

    await db.delete(ticket)
    await db.flush()
    logger.info("ticket_deleted", ticket_id=ticket_id)


async def has_available(db: AsyncSession, ticket_id: int, quantity: int) -> bool:
    ticket = await get_ticket(db, ticket_id)
    return ticket.has_available_tickets(quantity)


async def total_price(db: AsyncSession, ticket_id: int, quantity: int) -> Decimal:
    ticket = await get_ticket(db, ticket_id)
    return ticket.calculate_total_price(quantity)


async def reserve(
    db: AsyncSession,
    ticket_id: int,
    quantity: int,
    max_attempts: Optional[int] = None,
) -> Ticket:
    """
    Atomically check and decrement stock.
    Retries up to max_attempts (default BOOKING_MAX_RETRY_ATTEMPTS) on version conflicts.
    """
    if max_attempts is None:
        max_attempts = get_settings().BOOKING_MAX_RETRY_ATTEMPTS
    ticket = await get_ticket(db, ticket_id)

    for attempt in range(1, max_attempts + 1):
        if not ticket.has_available_tickets(quantity):
            logger.warning(
                "reservation_failed_no_stock",
                ticket_id=ticket_id,
                requested=quantity,
                available=ticket.available_quantity,
                active=ticket.is_active,
            )
            raise InventoryUnavailableError(
                f"Not enough tickets available. Requested: {quantity}, "
                f"Available: {ticket.available_quantity}"
            )

        current_version = ticket.version
        update_result = await db.execute(
            update(Ticket)
            .where(
                Ticket.id == ticket_id,
                Ticket.version == current_version,
                Ticket.is_active.is_(True),
                Ticket.available_quantity >= quantity,
            )
            .values(
                available_quantity=Ticket.available_quantity - quantity,
                version=Ticket.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        await db.refresh(ticket)

        if update_result.rowcount == 1:
            record_inventory_operation("reserve")
            logger.info(
                "tickets_reserved",
                ticket_id=ticket_id,
                quantity=quantity,
                remaining=ticket.available_quantity,
                attempt=attempt,
            )
            return ticket

        reservation_retries.inc()
        logger.info(
            "reservation_retry",
            ticket_id=ticket_id,
            attempt=attempt,
            reason="version_conflict",
        )

    raise InventoryUnavailableError("Reservation failed due to high demand. Please try again.")


async def release(db: AsyncSession, ticket_id: int, quantity: int) -> Ticket:
    """Return stock to a ticket. No ceiling check against the original capacity."""
    ticket = await get_ticket(db, ticket_id)

    await db.execute(
        update(Ticket)
        .where(Ticket.id == ticket_id)
        .values(
            available_quantity=Ticket.available_quantity + quantity,
            version=Ticket.version + 1,
        )
        .execution_options(synchronize_session=False)
    )
    await db.refresh(ticket)

    record_inventory_operation("release")
    logger.info(
        "tickets_released",
        ticket_id=ticket_id,
        quantity=quantity,
        available=ticket.available_quantity,
    )
    return ticket
