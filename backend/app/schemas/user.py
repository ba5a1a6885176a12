"""
Pydantic schemas for user-related request/response validation.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field

PHONE_PATTERN = r"^\+?[1-9]\d{9,14}$"


class UserCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    phone_number: str = Field(..., pattern=PHONE_PATTERN)


class UserUpdate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    phone_number: str = Field(..., pattern=PHONE_PATTERN)


class UserResponse(BaseModel):
    id: int
    name: str
    email: str
    phone_number: str
    is_active: bool
    registered_at: Optional[datetime] = None

    model_config = {"from_attributes": True}
