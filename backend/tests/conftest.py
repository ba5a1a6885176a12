"""
Pytest fixtures for test database, client, and seed data.

Every test gets its own in-memory SQLite database (aiosqlite + StaticPool so
the app and the fixtures share one connection). Redis is disabled.
"""

import os

os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("ENVIRONMENT", "test")

from datetime import datetime, timezone, timedelta  # noqa: E402
from decimal import Decimal  # noqa: E402
from typing import AsyncGenerator  # noqa: E402

import pytest_asyncio  # noqa: E402
from httpx import AsyncClient, ASGITransport  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from app.main import app  # noqa: E402
from app.core.config import BookingPolicy  # noqa: E402
from app.db.base import Base  # noqa: E402
from app.db.session import get_db  # noqa: E402
from app.models import User, Ticket, TicketType  # noqa: E402
from app.services.booking_service import BookingService  # noqa: E402

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create tables in a fresh database, yield a session, then dispose."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker, None]:
    """File-backed database for tests that need two independent sessions."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'bookings.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client that overrides the DB dependency with the test session."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def booking_service(db_session: AsyncSession) -> BookingService:
    """Orchestrator with the default rules: 10 tickets per user, 50.00 fee."""
    return BookingService(db_session, BookingPolicy())


async def _add(db_session: AsyncSession, obj):
    db_session.add(obj)
    await db_session.commit()
    await db_session.refresh(obj)
    return obj


@pytest_asyncio.fixture
async def test_user(db_session: AsyncSession) -> User:
    return await _add(db_session, User(
        name="Test User",
        email="test@example.com",
        phone_number="+14155550100",
        is_active=True,
    ))


@pytest_asyncio.fixture
async def inactive_user(db_session: AsyncSession) -> User:
    return await _add(db_session, User(
        name="Dormant User",
        email="dormant@example.com",
        phone_number="+14155550101",
        is_active=False,
    ))


def _ticket(**overrides) -> Ticket:
    fields = dict(
        event_name="Test Concert",
        venue="Test Arena",
        event_date=datetime.now(timezone.utc) + timedelta(days=10),
        ticket_type=TicketType.VIP.value,
        price=Decimal("100.00"),
        available_quantity=100,
        is_active=True,
    )
    fields.update(overrides)
    return Ticket(**fields)


@pytest_asyncio.fixture
async def test_ticket(db_session: AsyncSession) -> Ticket:
    """100 VIP tickets at 100.00 each, event in 10 days."""
    return await _add(db_session, _ticket())


@pytest_asyncio.fixture
async def inactive_ticket(db_session: AsyncSession) -> Ticket:
    return await _add(db_session, _ticket(event_name="Withdrawn Show", is_active=False))


@pytest_asyncio.fixture
async def sold_out_ticket(db_session: AsyncSession) -> Ticket:
    return await _add(db_session, _ticket(event_name="Sold Out Show", available_quantity=0))
