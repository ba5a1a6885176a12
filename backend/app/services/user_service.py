"""
User account service: registration, profile updates, activation and the
booking-quota check.
"""

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.user import User
from app.models.booking import Booking, BookingStatus
from app.schemas.user import UserCreate, UserUpdate
from app.core.exceptions import DuplicateEmailError, InvalidOperationError, NotFoundError
from app.core.logging import get_logger

logger = get_logger(__name__)


async def exists_by_email(db: AsyncSession, email: str) -> bool:
    result = await db.execute(select(User.id).where(User.email == email))
    return result.first() is not None


async def create_user(db: AsyncSession, user_data: UserCreate) -> User:
    """
    Register a new user.
    Raises DuplicateEmailError if the email is already registered.
    """
    if await exists_by_email(db, user_data.email):
        logger.warning("registration_failed", reason="email_exists", email=user_data.email)
        raise DuplicateEmailError(user_data.email)

    user = User(
        name=user_data.name,
        email=user_data.email,
        phone_number=user_data.phone_number,
        is_active=True,
    )
    db.add(user)
    await db.flush()
    await db.refresh(user)

    logger.info("user_registered", user_id=user.id, email=user.email)
    return user


async def get_user(db: AsyncSession, user_id: int) -> User:
    user = await db.get(User, user_id)
    if not user:
        raise NotFoundError("User", "id", user_id)
    return user


async def get_user_by_email(db: AsyncSession, email: str) -> User:
    result = await db.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()
    if not user:
        raise NotFoundError("User", "email", email)
    return user


async def list_users(db: AsyncSession, active_only: bool = False) -> list[User]:
    query = select(User)
    if active_only:
        query = query.where(User.is_active.is_(True))
    result = await db.execute(query.order_by(User.id))
    return list(result.scalars().all())


async def update_user(db: AsyncSession, user_id: int, user_data: UserUpdate) -> User:
    """Update profile fields. Email and activity are not editable here."""
    user = await get_user(db, user_id)
    user.name = user_data.name
    user.phone_number = user_data.phone_number
    await db.flush()
    await db.refresh(user)

    logger.info("user_updated", user_id=user.id)
    return user


async def _set_active(db: AsyncSession, user_id: int, active: bool) -> User:
    user = await get_user(db, user_id)
    user.is_active = active
    await db.flush()

    logger.info("user_activated" if active else "user_deactivated", user_id=user.id)
    return user


async def activate_user(db: AsyncSession, user_id: int) -> User:
    return await _set_active(db, user_id, True)


async def deactivate_user(db: AsyncSession, user_id: int) -> User:
    return await _set_active(db, user_id, False)


async def delete_user(db: AsyncSession, user_id: int) -> None:
    """
    Hard delete. Refused while any booking references the user;
    deactivation is the normal way to retire an account.
    """
    user = await get_user(db, user_id)
    referenced = await db.scalar(
        select(func.count()).select_from(Booking).where(Booking.user_id == user_id)
    )
    if referenced:
        raise InvalidOperationError(
            f"User {user_id} has {referenced} booking(s); deactivate the account instead"
        )

    await db.delete(user)
    await db.flush()
    logger.info("user_deleted", user_id=user_id)


async def count_bookings(db: AsyncSession, user_id: int, status: BookingStatus) -> int:
    count = await db.scalar(
        select(func.count())
        .select_from(Booking)
        .where(Booking.user_id == user_id, Booking.status == status.value)
    )
    return count or 0


async def can_book(db: AsyncSession, user: User, requested_quantity: int, max_allowed: int) -> bool:
    """Quota check against the user's CONFIRMED bookings."""
    if not user.is_active:
        return False
    confirmed = await count_bookings(db, user.id, BookingStatus.CONFIRMED)
    return user.can_book(requested_quantity, max_allowed, confirmed)
