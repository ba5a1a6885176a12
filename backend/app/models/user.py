"""
User model: a customer who books tickets.

Bookings point at users through `bookings.user_id`; the user row keeps no
collection of them, quota checks count confirmed bookings with a query.
"""

from sqlalchemy import Column, Integer, String, Boolean

from app.db.base import Base, TimestampMixin


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    phone_number = Column(String(20), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    @property
    def registered_at(self):
        return self.created_at

    def can_book(self, requested_quantity: int, max_allowed: int, confirmed_bookings: int) -> bool:
        """
        Quota check. Only CONFIRMED bookings count against the limit;
        pending ones do not.
        """
        if not self.is_active:
            return False
        return confirmed_bookings + requested_quantity <= max_allowed

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email}, active={self.is_active})>"
