"""
Ticket Booking API

Users register, browse ticket inventory and book it. Bookings move through
PENDING -> CONFIRMED / CANCELLED / EXPIRED; stock is reserved with an
optimistic-lock conditional update so it can never go negative.
"""

from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.middleware import RequestLoggingMiddleware
from app.api.router import api_router
from app.core.config import BookingPolicy, get_booking_policy, get_settings
from app.core.exceptions import register_exception_handlers
from app.core.logging import get_logger, setup_logging
from app.core.metrics import metrics_endpoint
from app.db.session import engine, get_db
from app.services.cache_service import close_redis, get_cache_stats, get_redis

settings = get_settings()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    policy = get_booking_policy()
    logger.info(
        "application_starting",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        max_tickets_per_user=policy.max_tickets_per_user,
        cancellation_fee=str(policy.cancellation_fee),
        advance_booking_days=policy.advance_booking_days,
    )

    if await get_redis() is None:
        logger.warning("ticket_cache_disabled", redis_enabled=settings.REDIS_ENABLED)

    yield

    await close_redis()
    await engine.dispose()
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Users, ticket inventory and the booking lifecycle",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)

register_exception_handlers(app)
app.include_router(api_router)


async def _database_status(db: AsyncSession) -> str:
    try:
        await db.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.error("health_database_unreachable", error=str(exc))
        return "unavailable"
    return "ok"


@app.get("/health", tags=["Health"])
async def health_check(
    db: AsyncSession = Depends(get_db),
    policy: BookingPolicy = Depends(get_booking_policy),
):
    """Liveness plus database, cache and active booking rules."""
    database = await _database_status(db)
    return {
        "status": "healthy" if database == "ok" else "degraded",
        "version": settings.APP_VERSION,
        "database": database,
        "cache": await get_cache_stats(),
        "booking_rules": {
            "max_tickets_per_user": policy.max_tickets_per_user,
            "cancellation_fee": str(policy.cancellation_fee),
            "advance_booking_days": policy.advance_booking_days,
        },
    }


@app.get("/metrics", tags=["Health"], include_in_schema=False)
async def metrics():
    return metrics_endpoint()


@app.get("/", tags=["Root"])
async def root():
    return {"service": settings.APP_NAME, "version": settings.APP_VERSION, "docs": "/docs"}
