"""
Ticket endpoints with Redis caching on the search listing.
"""

from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import BookingPolicy, get_booking_policy
from app.core.logging import get_logger
from app.db.session import get_db
from app.models.ticket import TicketType
from app.schemas.ticket import TicketCreate, TicketUpdate, TicketResponse, TicketListResponse
from app.services import ticket_service
from app.services.cache_service import get_cached_tickets, set_cached_tickets, invalidate_ticket_cache

logger = get_logger(__name__)
router = APIRouter(prefix="/tickets", tags=["Tickets"])


@router.post("/", response_model=TicketResponse, status_code=status.HTTP_201_CREATED)
async def create_ticket(ticket_data: TicketCreate, db: AsyncSession = Depends(get_db)):
    """Create a ticket offer. Event date must be in the future."""
    ticket = await ticket_service.create_ticket(db, ticket_data)
    await invalidate_ticket_cache()
    return ticket


@router.get("/", response_model=TicketListResponse)
async def list_tickets(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    event_name: Optional[str] = Query(None),
    venue: Optional[str] = Query(None),
    ticket_type: Optional[TicketType] = Query(None),
    min_price: Optional[Decimal] = Query(None, ge=0),
    max_price: Optional[Decimal] = Query(None, ge=0),
    available_only: bool = Query(False),
    upcoming_only: bool = Query(False),
    bookable_only: bool = Query(False),
    db: AsyncSession = Depends(get_db),
    policy: BookingPolicy = Depends(get_booking_policy),
):
    """
    Search tickets with pagination.
    `bookable_only` limits results to events within the advance booking window.
    Results are cached in Redis; any stock change invalidates the cache.
    """
    params = {
        "page": page,
        "page_size": page_size,
        "event_name": event_name,
        "venue": venue,
        "ticket_type": ticket_type.value if ticket_type else None,
        "min_price": min_price,
        "max_price": max_price,
        "available_only": available_only,
        "upcoming_only": upcoming_only,
        "bookable_within_days": policy.advance_booking_days if bookable_only else None,
    }

    cached = await get_cached_tickets(params)
    if cached:
        logger.info("tickets_list_cache_hit", page=page)
        cached["cached"] = True
        return TicketListResponse(**cached)

    tickets, total = await ticket_service.list_tickets(
        db,
        page=page,
        page_size=page_size,
        event_name=event_name,
        venue=venue,
        ticket_type=ticket_type,
        min_price=min_price,
        max_price=max_price,
        available_only=available_only,
        upcoming_only=upcoming_only,
        bookable_within_days=params["bookable_within_days"],
    )

    response_data = {
        "tickets": [TicketResponse.model_validate(t).model_dump(mode="json") for t in tickets],
        "total": total,
        "page": page,
        "page_size": page_size,
        "cached": False,
    }
    await set_cached_tickets(params, response_data)

    return TicketListResponse(**response_data)


@router.get("/{ticket_id}", response_model=TicketResponse)
async def get_ticket(ticket_id: int, db: AsyncSession = Depends(get_db)):
    """Get a single ticket. Never cached, stock must be live."""
    return await ticket_service.get_ticket(db, ticket_id)


@router.put("/{ticket_id}", response_model=TicketResponse)
async def update_ticket(ticket_id: int, ticket_data: TicketUpdate, db: AsyncSession = Depends(get_db)):
    ticket = await ticket_service.update_ticket(db, ticket_id, ticket_data)
    await invalidate_ticket_cache()
    return ticket


@router.delete("/{ticket_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_ticket(ticket_id: int, db: AsyncSession = Depends(get_db)):
    """Delete a ticket nobody has booked. Returns 400 if bookings reference it."""
    await ticket_service.delete_ticket(db, ticket_id)
    await invalidate_ticket_cache()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
