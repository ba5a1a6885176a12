"""
Pydantic schemas for booking-related request/response validation.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from app.models.booking import BookingStatus


class BookingCreate(BaseModel):
    user_id: int
    ticket_id: int
    quantity: int = Field(default=1, gt=0)


class BookingCancel(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class BookingResponse(BaseModel):
    id: int
    user_id: int
    ticket_id: int
    quantity: int
    total_amount: Decimal
    status: BookingStatus
    booking_date: datetime
    confirmed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None

    model_config = {"from_attributes": True}


class RefundResponse(BaseModel):
    booking_id: int
    refund_amount: Decimal


class ExpireResponse(BaseModel):
    expired: int
    max_age_hours: int
