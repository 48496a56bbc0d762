"""
Database models package initialization.

Models are imported here so they are registered with the Base metadata for
Alembic and for relationship resolution.
"""

from storefront.database.base import Base, BaseModel, AppendOnlyModel
from storefront.database.models.audit import AuditEvent
from storefront.database.models.order import (
    Order,
    OrderItem,
    OrderRefund,
    OrderStatusHistory,
    order_number_seq,
)
from storefront.database.models.product import Product, ProductStatus, ProductVariant
from storefront.database.models.user import CartItem, User, UserRole

__all__ = [
    "Base",
    "BaseModel",
    "AppendOnlyModel",
    "AuditEvent",
    "CartItem",
    "Order",
    "OrderItem",
    "OrderRefund",
    "OrderStatusHistory",
    "Product",
    "ProductStatus",
    "ProductVariant",
    "User",
    "UserRole",
    "order_number_seq",
]
