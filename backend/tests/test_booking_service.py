"""
Service-level tests for the booking orchestrator and the ticket inventory,
including the reservation race and collaboration checks with mocks.
"""

from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select, update

from app.core.config import BookingPolicy, Settings
from app.core.exceptions import (
    IllegalStateTransitionError,
    InventoryUnavailableError,
    InvalidOperationError,
    NotFoundError,
)
from app.db.base import utcnow
from app.models import Booking, BookingStatus, Ticket, TicketType, User
from app.services import ticket_service
from app.services.booking_service import BookingService


async def backdate(db_session, booking: Booking, hours: int) -> None:
    booking.created_at = utcnow() - timedelta(hours=hours)
    await db_session.commit()


async def booking_count(db_session) -> int:
    return await db_session.scalar(select(func.count()).select_from(Booking))


@pytest.mark.asyncio
async def test_expire_only_stale_pending_bookings(db_session, booking_service, test_user, test_ticket):
    stale = await booking_service.create_booking(test_user.id, test_ticket.id, 3)
    fresh = await booking_service.create_booking(test_user.id, test_ticket.id, 2)
    await backdate(db_session, stale, 25)
    await backdate(db_session, fresh, 1)
    assert test_ticket.available_quantity == 95

    expired = await booking_service.expire_pending_bookings(24)

    assert expired == 1
    assert stale.status == BookingStatus.EXPIRED
    assert fresh.status == BookingStatus.PENDING
    await db_session.refresh(test_ticket)
    assert test_ticket.available_quantity == 98


@pytest.mark.asyncio
async def test_expire_ignores_old_confirmed_bookings(db_session, booking_service, test_user, test_ticket):
    booking = await booking_service.create_booking(test_user.id, test_ticket.id, 1)
    await booking_service.confirm_booking(booking.id)
    await backdate(db_session, booking, 48)

    assert await booking_service.expire_pending_bookings(24) == 0
    assert booking.status == BookingStatus.CONFIRMED


@pytest.mark.asyncio
async def test_expired_booking_cannot_be_cancelled(db_session, booking_service, test_user, test_ticket):
    booking = await booking_service.create_booking(test_user.id, test_ticket.id, 1)
    await backdate(db_session, booking, 25)
    await booking_service.expire_pending_bookings(24)

    with pytest.raises(InvalidOperationError):
        await booking_service.cancel_booking(booking.id, "too late")
    await db_session.refresh(test_ticket)
    assert test_ticket.available_quantity == 100


@pytest.mark.asyncio
async def test_expiry_failure_keeps_already_processed_bookings(
    db_session, booking_service, test_user, test_ticket
):
    first = await booking_service.create_booking(test_user.id, test_ticket.id, 1)
    second = await booking_service.create_booking(test_user.id, test_ticket.id, 1)
    await backdate(db_session, first, 30)
    await backdate(db_session, second, 30)

    release = AsyncMock(side_effect=[test_ticket, RuntimeError("storage down")])
    with patch.object(ticket_service, "release", release):
        with pytest.raises(RuntimeError):
            await booking_service.expire_pending_bookings(24)

    await db_session.refresh(first)
    await db_session.refresh(second)
    assert first.status == BookingStatus.EXPIRED
    assert second.status == BookingStatus.PENDING


@pytest.mark.asyncio
async def test_reserve_then_release_round_trip(db_session, test_ticket):
    await ticket_service.reserve(db_session, test_ticket.id, 7)
    assert test_ticket.available_quantity == 93

    await ticket_service.release(db_session, test_ticket.id, 7)
    assert test_ticket.available_quantity == 100


@pytest.mark.asyncio
async def test_reserve_never_drives_stock_negative(db_session, test_ticket):
    await ticket_service.reserve(db_session, test_ticket.id, 100)
    assert test_ticket.available_quantity == 0

    with pytest.raises(InventoryUnavailableError):
        await ticket_service.reserve(db_session, test_ticket.id, 1)
    assert test_ticket.available_quantity == 0


@pytest.mark.asyncio
async def test_reserve_refuses_inactive_ticket(db_session, inactive_ticket):
    with pytest.raises(InventoryUnavailableError):
        await ticket_service.reserve(db_session, inactive_ticket.id, 1)


@pytest.mark.asyncio
async def test_release_is_not_clamped_to_original_stock(db_session, test_ticket):
    await ticket_service.release(db_session, test_ticket.id, 5)
    assert test_ticket.available_quantity == 105


@pytest.mark.asyncio
async def test_reserve_retries_on_version_conflict(db_session, test_ticket):
    """A concurrent writer bumps the version; the reservation re-reads and succeeds."""
    original_version = test_ticket.version
    await db_session.execute(
        update(Ticket)
        .where(Ticket.id == test_ticket.id)
        .values(available_quantity=Ticket.available_quantity - 10, version=Ticket.version + 1)
        .execution_options(synchronize_session=False)
    )

    ticket = await ticket_service.reserve(db_session, test_ticket.id, 5)

    assert ticket.available_quantity == 85
    assert ticket.version == original_version + 2


@pytest.mark.asyncio
async def test_race_loser_gets_inventory_unavailable(db_session, booking_service, test_user, test_ticket):
    """Stock vanishes between the availability check and the reservation."""
    await db_session.execute(
        update(Ticket)
        .where(Ticket.id == test_ticket.id)
        .values(available_quantity=0, version=Ticket.version + 1)
        .execution_options(synchronize_session=False)
    )

    with pytest.raises(InventoryUnavailableError):
        await booking_service.create_booking(test_user.id, test_ticket.id, 1)
    assert await booking_count(db_session) == 0


@pytest.mark.asyncio
async def test_inactive_user_never_reaches_inventory(booking_service, inactive_user, test_ticket):
    with patch.object(ticket_service, "reserve", AsyncMock()) as reserve:
        with pytest.raises(InvalidOperationError):
            await booking_service.create_booking(inactive_user.id, test_ticket.id, 1)
    reserve.assert_not_awaited()


@pytest.mark.asyncio
async def test_failed_reservation_creates_no_booking(db_session, booking_service, test_user, test_ticket):
    reserve = AsyncMock(side_effect=InventoryUnavailableError("gone"))
    with patch.object(ticket_service, "reserve", reserve):
        with pytest.raises(InventoryUnavailableError):
            await booking_service.create_booking(test_user.id, test_ticket.id, 2)

    reserve.assert_awaited_once_with(db_session, test_ticket.id, 2, max_attempts=3)
    assert await booking_count(db_session) == 0


@pytest.mark.asyncio
async def test_cancel_releases_booked_quantity(booking_service, test_user, test_ticket):
    booking = await booking_service.create_booking(test_user.id, test_ticket.id, 4)

    with patch.object(ticket_service, "release", AsyncMock()) as release:
        await booking_service.cancel_booking(booking.id, "x")

    release.assert_awaited_once_with(booking_service.db, test_ticket.id, 4)
    assert booking.status == BookingStatus.CANCELLED


@pytest.mark.asyncio
async def test_total_amount_fixed_at_creation(db_session, booking_service, test_user, test_ticket):
    booking = await booking_service.create_booking(test_user.id, test_ticket.id, 3)
    test_ticket.price = test_ticket.price * 2
    await db_session.flush()

    await booking_service.confirm_booking(booking.id)
    assert booking.total_amount == 300


@pytest.mark.asyncio
async def test_count_and_confirmed_listing(booking_service, test_user, test_ticket):
    first = await booking_service.create_booking(test_user.id, test_ticket.id, 1)
    await booking_service.create_booking(test_user.id, test_ticket.id, 1)
    await booking_service.confirm_booking(first.id)

    assert await booking_service.count_user_bookings(test_user.id, BookingStatus.CONFIRMED) == 1
    assert await booking_service.count_user_bookings(test_user.id, BookingStatus.PENDING) == 1
    confirmed = await booking_service.get_confirmed_bookings_by_user(test_user.id)
    assert [b.id for b in confirmed] == [first.id]


@pytest.mark.asyncio
async def test_operations_on_missing_booking(booking_service):
    with pytest.raises(NotFoundError):
        await booking_service.confirm_booking(424242)
    with pytest.raises(NotFoundError):
        await booking_service.cancel_booking(424242, "x")
    with pytest.raises(NotFoundError):
        await booking_service.calculate_refund(424242)


@pytest.mark.asyncio
async def test_missing_user_reported_before_bad_quantity(booking_service, test_ticket):
    with pytest.raises(NotFoundError):
        await booking_service.create_booking(999, test_ticket.id, 0)


@pytest.mark.asyncio
async def test_zero_quantity_rejected_after_lookups(booking_service, test_user, test_ticket):
    with pytest.raises(InvalidOperationError, match="Quantity must be at least 1"):
        await booking_service.create_booking(test_user.id, test_ticket.id, 0)


@pytest.mark.asyncio
async def test_reserve_attempts_default_to_configured_limit(db_session, test_ticket):
    await db_session.execute(
        update(Ticket)
        .where(Ticket.id == test_ticket.id)
        .values(version=Ticket.version + 1)
        .execution_options(synchronize_session=False)
    )

    single_attempt = Settings(_env_file=None, BOOKING_MAX_RETRY_ATTEMPTS=1)
    with patch.object(ticket_service, "get_settings", return_value=single_attempt):
        with pytest.raises(InventoryUnavailableError, match="high demand"):
            await ticket_service.reserve(db_session, test_ticket.id, 5)


# Two sessions on one file-backed database: one runs the expiry sweep or a
# confirm, the other commits a competing transition in between.


async def seed_stale_booking(session_factory) -> tuple[int, int]:
    """A committed 5-ticket PENDING booking created 25 hours ago."""
    async with session_factory() as session:
        user = User(name="Late Buyer", email="late@example.com", phone_number="+14155550102", is_active=True)
        ticket = Ticket(
            event_name="Midnight Show",
            venue="Test Arena",
            event_date=utcnow() + timedelta(days=5),
            ticket_type=TicketType.ECONOMY.value,
            price=Decimal("20.00"),
            available_quantity=100,
            is_active=True,
        )
        session.add_all([user, ticket])
        await session.commit()

        booking = await BookingService(session, BookingPolicy()).create_booking(user.id, ticket.id, 5)
        booking.created_at = utcnow() - timedelta(hours=25)
        await session.commit()
        return booking.id, ticket.id


async def current_state(session_factory, booking_id: int, ticket_id: int) -> tuple[str, int]:
    async with session_factory() as session:
        booking = await session.get(Booking, booking_id)
        ticket = await session.get(Ticket, ticket_id)
        return booking.status, ticket.available_quantity


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "action, expected_status, expected_available",
    [
        ("confirm", BookingStatus.CONFIRMED, 95),
        ("cancel", BookingStatus.CANCELLED, 100),
    ],
)
async def test_sweep_skips_booking_changed_by_another_session(
    session_factory, action, expected_status, expected_available
):
    booking_id, ticket_id = await seed_stale_booking(session_factory)

    async with session_factory() as sweep_db, session_factory() as other_db:
        sweeper = BookingService(sweep_db, BookingPolicy())
        other = BookingService(other_db, BookingPolicy())
        load_current = sweeper._load_current

        async def load_then_change_elsewhere(target_id):
            booking = await load_current(target_id)
            if action == "confirm":
                await other.confirm_booking(target_id)
            else:
                await other.cancel_booking(target_id, "changed plans")
            await other_db.commit()
            return booking

        with patch.object(sweeper, "_load_current", side_effect=load_then_change_elsewhere):
            expired = await sweeper.expire_pending_bookings(24)

    assert expired == 0
    assert await current_state(session_factory, booking_id, ticket_id) == (expected_status, expected_available)


@pytest.mark.asyncio
async def test_confirm_loses_to_expiry_committed_in_between(session_factory):
    booking_id, ticket_id = await seed_stale_booking(session_factory)

    async with session_factory() as confirm_db, session_factory() as sweep_db:
        service = BookingService(confirm_db, BookingPolicy())
        load_current = service._load_current

        async def load_then_expire_elsewhere(target_id):
            booking = await load_current(target_id)
            assert await BookingService(sweep_db, BookingPolicy()).expire_pending_bookings(24) == 1
            return booking

        with patch.object(service, "_load_current", side_effect=load_then_expire_elsewhere):
            with pytest.raises(IllegalStateTransitionError, match="modified concurrently"):
                await service.confirm_booking(booking_id)
        await confirm_db.rollback()

    assert await current_state(session_factory, booking_id, ticket_id) == (BookingStatus.EXPIRED, 100)


@pytest.mark.asyncio
async def test_cancel_after_committed_expiry_is_refused(session_factory):
    booking_id, ticket_id = await seed_stale_booking(session_factory)

    async with session_factory() as sweep_db:
        assert await BookingService(sweep_db, BookingPolicy()).expire_pending_bookings(24) == 1

    async with session_factory() as cancel_db:
        with pytest.raises(InvalidOperationError):
            await BookingService(cancel_db, BookingPolicy()).cancel_booking(booking_id, "too late")

    assert await current_state(session_factory, booking_id, ticket_id) == (BookingStatus.EXPIRED, 100)
