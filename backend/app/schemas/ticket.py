"""
Pydantic schemas for ticket-related request/response validation.
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from app.models.ticket import TicketType


class TicketCreate(BaseModel):
    event_name: str = Field(..., min_length=1, max_length=255)
    venue: str = Field(..., min_length=1, max_length=255)
    event_date: datetime
    ticket_type: TicketType
    price: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2)
    available_quantity: int = Field(..., ge=0)


class TicketUpdate(TicketCreate):
    is_active: bool = True


class TicketResponse(BaseModel):
    id: int
    event_name: str
    venue: str
    event_date: datetime
    ticket_type: TicketType
    price: Decimal
    available_quantity: int
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class TicketListResponse(BaseModel):
    tickets: list[TicketResponse]
    total: int
    page: int
    page_size: int
    cached: bool = False
