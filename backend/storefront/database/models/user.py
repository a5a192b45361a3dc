"""
User model used for order ownership and notification contacts.

Account registration and authentication live in a separate service; this
table is read here to resolve customer display data and roles.
"""

import enum
from typing import Optional

from sqlalchemy import Boolean, Enum as SQLEnum, String
from sqlalchemy.orm import Mapped, mapped_column

from storefront.database.base import BaseModel


class UserRole(str, enum.Enum):
    """User role enumeration for role-based access control."""

    CUSTOMER = "customer"
    ADMIN = "admin"


class User(BaseModel):
    """
    Storefront account.

    Attributes:
        id: Unique user identifier (UUID)
        email: Contact e-mail address
        full_name: Display name
        phone: Contact phone number
        role: Customer or admin
        is_active: Whether the account may place orders
    """

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    full_name: Mapped[str] = mapped_column(String(200), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    role: Mapped[UserRole] = mapped_column(
        SQLEnum(
            UserRole,
            name="user_role",
            native_enum=False,
            create_constraint=True,
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
        ),
        nullable=False,
        default=UserRole.CUSTOMER,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email}, role={self.role.value})>"
