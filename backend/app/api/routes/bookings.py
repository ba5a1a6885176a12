"""
Booking endpoints. Every mutation goes through BookingService.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Body, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import BookingPolicy, get_booking_policy, get_settings
from app.db.session import get_db
from app.models.booking import BookingStatus
from app.schemas.booking import (
    BookingCreate, BookingCancel, BookingResponse, RefundResponse, ExpireResponse,
)
from app.services.booking_service import BookingService
from app.services.cache_service import invalidate_ticket_cache

router = APIRouter(prefix="/bookings", tags=["Bookings"])


def get_booking_service(
    db: AsyncSession = Depends(get_db),
    policy: BookingPolicy = Depends(get_booking_policy),
) -> BookingService:
    return BookingService(db, policy)


@router.post("/", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    booking_data: BookingCreate,
    service: BookingService = Depends(get_booking_service),
):
    """
    Book tickets. The booking starts PENDING and holds the stock until it is
    confirmed, cancelled or expired.

    400 for business-rule violations (inactive user or ticket, quota, stock),
    409 if a concurrent booking took the last tickets first.
    """
    booking = await service.create_booking(
        booking_data.user_id, booking_data.ticket_id, booking_data.quantity
    )
    await invalidate_ticket_cache()
    return booking


@router.get("/", response_model=list[BookingResponse])
async def list_bookings(
    user_id: Optional[int] = Query(None),
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    created_from: Optional[datetime] = Query(None),
    created_to: Optional[datetime] = Query(None),
    service: BookingService = Depends(get_booking_service),
):
    """List bookings, newest first, filtered by user, status and creation date."""
    return await service.list_bookings(
        user_id=user_id,
        status=status_filter,
        created_from=created_from,
        created_to=created_to,
    )


@router.post("/expire", response_model=ExpireResponse)
async def expire_pending_bookings(
    max_age_hours: int = Query(get_settings().PENDING_BOOKING_MAX_AGE_HOURS, ge=0),
    service: BookingService = Depends(get_booking_service),
):
    """Expire PENDING bookings older than max_age_hours and release their stock."""
    expired = await service.expire_pending_bookings(max_age_hours)
    if expired:
        await invalidate_ticket_cache()
    return ExpireResponse(expired=expired, max_age_hours=max_age_hours)


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(booking_id: int, service: BookingService = Depends(get_booking_service)):
    return await service.get_booking(booking_id)


@router.patch("/{booking_id}/confirm", response_model=BookingResponse)
async def confirm_booking(booking_id: int, service: BookingService = Depends(get_booking_service)):
    """Confirm a PENDING booking. 409 from any other state."""
    return await service.confirm_booking(booking_id)


@router.patch("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: int,
    cancel_data: Optional[BookingCancel] = Body(None),
    service: BookingService = Depends(get_booking_service),
):
    """Cancel a PENDING or CONFIRMED booking and release its tickets."""
    reason = cancel_data.reason if cancel_data else None
    booking = await service.cancel_booking(booking_id, reason)
    await invalidate_ticket_cache()
    return booking


@router.get("/{booking_id}/refund", response_model=RefundResponse)
async def refund_quote(booking_id: int, service: BookingService = Depends(get_booking_service)):
    """Refund the booking would get if cancelled now (total minus cancellation fee)."""
    refund = await service.calculate_refund(booking_id)
    return RefundResponse(booking_id=booking_id, refund_amount=refund)
