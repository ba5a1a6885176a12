"""
User endpoints: registration, profile and account activation.
"""

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.session import get_db
from app.schemas.user import UserCreate, UserUpdate, UserResponse
from app.services import user_service

router = APIRouter(prefix="/users", tags=["Users"])


@router.post("/", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(user_data: UserCreate, db: AsyncSession = Depends(get_db)):
    """Register a new user. Returns 409 if the email is taken."""
    return await user_service.create_user(db, user_data)


@router.get("/", response_model=list[UserResponse])
async def list_users(
    active_only: bool = Query(False),
    db: AsyncSession = Depends(get_db),
):
    return await user_service.list_users(db, active_only=active_only)


@router.get("/email/{email}", response_model=UserResponse)
async def get_user_by_email(email: str, db: AsyncSession = Depends(get_db)):
    return await user_service.get_user_by_email(db, email)


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(user_id: int, db: AsyncSession = Depends(get_db)):
    return await user_service.get_user(db, user_id)


@router.put("/{user_id}", response_model=UserResponse)
async def update_user(user_id: int, user_data: UserUpdate, db: AsyncSession = Depends(get_db)):
    """Update name and phone number."""
    return await user_service.update_user(db, user_id, user_data)


@router.patch("/{user_id}/activate", status_code=status.HTTP_204_NO_CONTENT)
async def activate_user(user_id: int, db: AsyncSession = Depends(get_db)):
    await user_service.activate_user(db, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.patch("/{user_id}/deactivate", status_code=status.HTTP_204_NO_CONTENT)
async def deactivate_user(user_id: int, db: AsyncSession = Depends(get_db)):
    """Soft delete: the account stays, new bookings are refused."""
    await user_service.deactivate_user(db, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_user(user_id: int, db: AsyncSession = Depends(get_db)):
    """Hard delete. Refused with 400 while bookings reference the user."""
    await user_service.delete_user(db, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
