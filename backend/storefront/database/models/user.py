"""
User and cart models.

Accounts and cart contents are owned by the storefront's account and cart
services; this service reads users for authorization and clears cart items
once an order has been placed.
"""

import enum
import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    String,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from storefront.database.base import BaseModel, utcnow


class UserRole(str, enum.Enum):
    """User role enumeration for role-based access control."""

    CUSTOMER = "customer"
    SELLER = "seller"
    ADMIN = "admin"


class User(BaseModel):
    """
    Storefront account.

    Attributes:
        email: Unique login email
        name: Display name
        role: Customer, seller or admin
        is_active: Account active status
        locked_until: Account lock expiry, if locked
    """

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
        comment="User email address",
    )

    name: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
        comment="Display name",
    )

    role: Mapped[UserRole] = mapped_column(
        SQLEnum(
            UserRole,
            name="user_role",
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        default=UserRole.CUSTOMER,
        comment="Access role",
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        comment="Account active status",
    )

    locked_until: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Account lock expiry",
    )

    __table_args__ = (
        Index("ix_users_role_active", "role", "is_active"),
        {"comment": "Storefront user accounts"},
    )

    @property
    def is_locked(self) -> bool:
        """True while the lock period has not expired."""
        if self.locked_until is None:
            return False
        return utcnow() < self.locked_until

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def is_seller(self) -> bool:
        return self.role == UserRole.SELLER


class CartItem(BaseModel):
    """A product line sitting in a user's cart."""

    __tablename__ = "cart_items"

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    product_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
    )

    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    variant: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSONB,
        nullable=True,
        comment="Selected variant attributes",
    )

    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_cart_items_quantity_positive"),
        {"comment": "Shopping cart lines"},
    )
