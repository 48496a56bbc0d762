"""
Order models for checkout, fulfilment tracking and refund bookkeeping.

An Order owns immutable line-item snapshots, an append-only status history
and its refund requests. Tracking details (carrier, tracking number, delivery
dates) are plain columns on the order and exposed together through
``Order.tracking_info``.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    Sequence,
    String,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storefront.database.base import AppendOnlyModel, Base, BaseModel, utcnow
from storefront.services.orders.enums import (
    OrderPriority,
    OrderSource,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    RefundStatus,
    ShippingMethod,
)

# Order numbers draw from their own sequence, independent of primary keys
order_number_seq = Sequence("order_number_seq", metadata=Base.metadata)


def _pg_enum(enum_cls, name: str) -> SQLEnum:
    return SQLEnum(
        enum_cls,
        name=name,
        values_callable=lambda e: [m.value for m in e],
    )


def _money(comment: str, default: Optional[Decimal] = Decimal("0.00")):
    return mapped_column(
        Numeric(precision=12, scale=2),
        nullable=False,
        default=default,
        comment=comment,
    )


class Order(BaseModel):
    """
    Customer order.

    Attributes:
        order_number: Human-readable unique order number
        user_id: Customer who placed the order
        subtotal/tax_amount/shipping_amount/discount_amount/total_amount:
            Pricing breakdown; a check constraint ties total to its parts
        status: Current lifecycle status
        status_changed_at: When the order entered its current status
        payment_status: Payment bookkeeping status
        shipping_address/billing_address: Address snapshots
        tracking_number/carrier/tracking_url/shipped_at/estimated_delivery/
        actual_delivery: Shipment tracking details
    """

    __tablename__ = "orders"

    order_number: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True,
        comment="Human-readable order number",
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
        comment="Customer who placed the order",
    )

    # Pricing
    subtotal: Mapped[Decimal] = _money("Sum of line totals", default=None)
    tax_amount: Mapped[Decimal] = _money("Tax on the subtotal")
    shipping_amount: Mapped[Decimal] = _money("Shipping charge")
    discount_amount: Mapped[Decimal] = _money("Coupon discount")
    total_amount: Mapped[Decimal] = _money("Amount payable", default=None)

    currency: Mapped[str] = mapped_column(
        String(3),
        nullable=False,
        default="KES",
    )

    coupon_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    # Payment
    payment_method: Mapped[PaymentMethod] = mapped_column(
        _pg_enum(PaymentMethod, "payment_method"),
        nullable=False,
    )

    payment_status: Mapped[PaymentStatus] = mapped_column(
        _pg_enum(PaymentStatus, "payment_status"),
        nullable=False,
        default=PaymentStatus.PENDING,
        index=True,
    )

    payment_details: Mapped[dict[str, Any]] = mapped_column(
        JSONB,
        nullable=False,
        default=dict,
        server_default=text("'{}'::jsonb"),
        comment="Payment provider references",
    )

    # Lifecycle
    status: Mapped[OrderStatus] = mapped_column(
        _pg_enum(OrderStatus, "order_status"),
        nullable=False,
        default=OrderStatus.PENDING,
        index=True,
    )

    status_changed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        comment="When the order entered its current status",
    )

    # Addresses
    shipping_address: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False)
    billing_address: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False)

    # Fulfilment preferences
    shipping_method: Mapped[ShippingMethod] = mapped_column(
        _pg_enum(ShippingMethod, "shipping_method"),
        nullable=False,
        default=ShippingMethod.STANDARD,
    )

    delivery_instructions: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    admin_notes: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)

    priority: Mapped[OrderPriority] = mapped_column(
        _pg_enum(OrderPriority, "order_priority"),
        nullable=False,
        default=OrderPriority.NORMAL,
    )

    source: Mapped[OrderSource] = mapped_column(
        _pg_enum(OrderSource, "order_source"),
        nullable=False,
        default=OrderSource.WEB,
    )

    is_gift: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    gift_message: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    customer_ip: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # Tracking
    tracking_number: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
        unique=True,
    )
    carrier: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    tracking_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    shipped_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    estimated_delivery: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        index=True,
    )
    actual_delivery: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Set once when first delivered",
    )

    # Relationships
    items: Mapped[list["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    status_history: Mapped[list["OrderStatusHistory"]] = relationship(
        "OrderStatusHistory",
        back_populates="order",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="OrderStatusHistory.created_at",
    )

    refunds: Mapped[list["OrderRefund"]] = relationship(
        "OrderRefund",
        back_populates="order",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="OrderRefund.created_at",
    )

    __table_args__ = (
        Index("ix_orders_user_status", "user_id", "status"),
        Index("ix_orders_status_created", "status", "created_at"),
        Index("ix_orders_status_changed", "status", "status_changed_at"),
        CheckConstraint("subtotal >= 0", name="ck_orders_subtotal_non_negative"),
        CheckConstraint("tax_amount >= 0", name="ck_orders_tax_amount_non_negative"),
        CheckConstraint(
            "shipping_amount >= 0",
            name="ck_orders_shipping_amount_non_negative",
        ),
        CheckConstraint(
            "discount_amount >= 0",
            name="ck_orders_discount_amount_non_negative",
        ),
        CheckConstraint(
            "total_amount = subtotal + tax_amount + shipping_amount - discount_amount",
            name="ck_orders_total_matches_parts",
        ),
        {"comment": "Customer orders"},
    )

    @property
    def tracking_info(self) -> dict[str, Any]:
        return {
            "tracking_number": self.tracking_number,
            "carrier": self.carrier,
            "tracking_url": self.tracking_url,
            "shipped_date": self.shipped_at,
            "estimated_delivery": self.estimated_delivery,
            "actual_delivery": self.actual_delivery,
        }

    @property
    def seller_ids(self) -> set[uuid.UUID]:
        return {item.seller_id for item in self.items if item.seller_id is not None}

    def has_seller(self, seller_id: uuid.UUID) -> bool:
        return seller_id in self.seller_ids

    def refund_total(self, *statuses: RefundStatus) -> Decimal:
        """Sum of refund amounts in the given statuses."""
        return sum(
            (refund.amount for refund in self.refunds if refund.status in statuses),
            Decimal("0.00"),
        )

    @property
    def refundable_balance(self) -> Decimal:
        """Amount still available for new refund requests."""
        committed = self.refund_total(RefundStatus.APPROVED, RefundStatus.PENDING)
        return max(self.total_amount - committed, Decimal("0.00"))


class OrderItem(BaseModel):
    """
    Line item snapshot.

    Name, price, variant and seller are copied from the catalog at order time
    and never re-read.
    """

    __tablename__ = "order_items"

    order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    product_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    variant_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("product_variants.id", ondelete="SET NULL"),
        nullable=True,
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    price: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=False,
        comment="Unit price at order time",
    )

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    variant: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONB, nullable=True)

    sku: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    image: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONB, nullable=True)

    seller_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    order: Mapped["Order"] = relationship("Order", back_populates="items")

    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_order_items_quantity_positive"),
        CheckConstraint("price >= 0", name="ck_order_items_price_non_negative"),
        {"comment": "Order line-item snapshots"},
    )


class OrderStatusHistory(AppendOnlyModel):
    """Append-only record of an order entering a status."""

    __tablename__ = "order_status_history"

    order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
    )

    status: Mapped[OrderStatus] = mapped_column(
        _pg_enum(OrderStatus, "order_status"),
        nullable=False,
    )

    note: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    updated_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        comment="Acting user; NULL for system transitions",
    )

    order: Mapped["Order"] = relationship("Order", back_populates="status_history")

    __table_args__ = (
        Index("ix_order_status_history_order_created", "order_id", "created_at"),
        {"comment": "Order status change history"},
    )


class OrderRefund(BaseModel):
    """Refund request and its review outcome."""

    __tablename__ = "order_refunds"

    order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    amount: Mapped[Decimal] = mapped_column(Numeric(precision=12, scale=2), nullable=False)

    reason: Mapped[str] = mapped_column(String(500), nullable=False)

    status: Mapped[RefundStatus] = mapped_column(
        _pg_enum(RefundStatus, "refund_status"),
        nullable=False,
        default=RefundStatus.PENDING,
    )

    requested_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    processed_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    refund_reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    review_note: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    order: Mapped["Order"] = relationship("Order", back_populates="refunds")

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_order_refunds_amount_positive"),
        {"comment": "Order refund requests"},
    )
