"""
Order Pydantic schemas for API request/response validation.

Covers order placement, status changes, refund submission and review, and
the serialized order representation (line items, history, refunds and
tracking details).
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from storefront.services.orders.enums import (
    OrderPriority,
    OrderSource,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    RefundDecision,
    RefundStatus,
    ShippingMethod,
)


class AddressSchema(BaseModel):
    """Shipping or billing address."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=200, description="Recipient name")
    street: str = Field(..., min_length=1, max_length=255, description="Street address")
    city: str = Field(..., min_length=1, max_length=100, description="City")
    county: str = Field(..., min_length=1, max_length=100, description="County")
    postal_code: Optional[str] = Field(None, max_length=20, description="Postal code")
    phone: str = Field(..., min_length=7, max_length=20, description="Contact phone")
    email: Optional[str] = Field(None, max_length=255, description="Contact email")

    @field_validator("email")
    @classmethod
    def validate_email_format(cls, v: Optional[str]) -> Optional[str]:
        if v is None or v == "":
            return None
        if "@" not in v or "." not in v.split("@")[-1]:
            raise ValueError("Invalid email format")
        return v.lower()


class VariantSelection(BaseModel):
    """Selected variant attributes for a line item."""

    size: Optional[str] = Field(None, max_length=50)
    color: Optional[str] = Field(None, max_length=50)
    material: Optional[str] = Field(None, max_length=100)

    def as_dict(self) -> Optional[dict[str, str]]:
        selected = self.model_dump(exclude_none=True)
        return selected or None


class OrderItemRequest(BaseModel):
    """One requested line item."""

    product_id: UUID = Field(..., description="Product ID")
    quantity: int = Field(..., ge=1, le=1000, description="Quantity")
    variant: Optional[VariantSelection] = Field(None, description="Selected variant")


class OrderCreateRequest(BaseModel):
    """Request schema for placing an order."""

    items: list[OrderItemRequest] = Field(
        ...,
        max_length=100,
        description="Order items",
    )
    shipping_address: AddressSchema = Field(..., description="Shipping address")
    billing_address: Optional[AddressSchema] = Field(
        None,
        description="Billing address; defaults to the shipping address",
    )
    payment_method: PaymentMethod = Field(..., description="Payment method")
    shipping_method: ShippingMethod = Field(
        default=ShippingMethod.STANDARD,
        description="Shipping method",
    )
    coupon_code: Optional[str] = Field(None, max_length=50, description="Coupon code")
    delivery_instructions: Optional[str] = Field(None, max_length=500)
    notes: Optional[str] = Field(None, max_length=1000)
    priority: OrderPriority = Field(default=OrderPriority.NORMAL)
    source: OrderSource = Field(default=OrderSource.WEB)
    is_gift: bool = Field(default=False)
    gift_message: Optional[str] = Field(None, max_length=500)


class OrderStatusUpdateRequest(BaseModel):
    """Request schema for changing an order's status."""

    status: OrderStatus = Field(..., description="Target status")
    note: Optional[str] = Field(None, max_length=500, description="History note")
    carrier: Optional[str] = Field(None, max_length=100)
    estimated_delivery: Optional[datetime] = None
    tracking_url: Optional[str] = Field(None, max_length=500)
    delivery_date: Optional[datetime] = None
    admin_notes: Optional[str] = Field(None, max_length=1000, description="Internal staff notes")


class PaymentStatusUpdateRequest(BaseModel):
    """Payment outcome reported by staff or a payment provider callback."""

    payment_status: PaymentStatus = Field(..., description="New payment status")
    transaction_id: Optional[str] = Field(None, max_length=100, description="Provider reference")
    note: Optional[str] = Field(None, max_length=500, description="Failure reason or remark")

    @field_validator("payment_status")
    @classmethod
    def reject_refund_states(cls, v: PaymentStatus) -> PaymentStatus:
        if v in (PaymentStatus.REFUNDED, PaymentStatus.PARTIALLY_REFUNDED):
            raise ValueError("Refund payment states are set by refund review")
        return v


class RefundRequest(BaseModel):
    """Refund submission."""

    amount: Decimal = Field(..., gt=0, decimal_places=2, description="Refund amount")
    reason: str = Field(..., min_length=1, max_length=500, description="Refund reason")


class RefundReviewRequest(BaseModel):
    """Approve or reject a pending refund."""

    decision: RefundDecision
    note: Optional[str] = Field(None, max_length=500)
    refund_reference: Optional[str] = Field(None, max_length=100)


class OrderItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    product_id: UUID
    variant_id: Optional[UUID] = None
    name: str
    price: float
    quantity: int
    variant: Optional[dict[str, Any]] = None
    sku: Optional[str] = None
    image: Optional[dict[str, Any]] = None
    seller_id: Optional[UUID] = None


class StatusHistoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    status: OrderStatus
    note: Optional[str] = None
    updated_by: Optional[UUID] = None
    timestamp: datetime = Field(validation_alias="created_at")


class RefundResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    amount: float
    reason: str
    status: RefundStatus
    requested_by: Optional[UUID] = None
    processed_by: Optional[UUID] = None
    processed_at: Optional[datetime] = None
    refund_reference: Optional[str] = None
    review_note: Optional[str] = None
    created_at: datetime


class TrackingInfoResponse(BaseModel):
    tracking_number: Optional[str] = None
    carrier: Optional[str] = None
    tracking_url: Optional[str] = None
    shipped_date: Optional[datetime] = None
    estimated_delivery: Optional[datetime] = None
    actual_delivery: Optional[datetime] = None


class OrderResponse(BaseModel):
    """Complete order representation."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_number: str
    user_id: UUID
    items: list[OrderItemResponse]
    subtotal: float
    tax_amount: float
    shipping_amount: float
    discount_amount: float
    total_amount: float
    currency: str
    coupon_code: Optional[str] = None
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    status: OrderStatus
    status_changed_at: datetime
    status_history: list[StatusHistoryResponse]
    shipping_address: dict[str, Any]
    billing_address: dict[str, Any]
    shipping_method: ShippingMethod
    delivery_instructions: Optional[str] = None
    notes: Optional[str] = None
    priority: OrderPriority
    source: OrderSource
    is_gift: bool
    gift_message: Optional[str] = None
    tracking_info: TrackingInfoResponse
    estimated_delivery: Optional[datetime] = None
    actual_delivery: Optional[datetime] = None
    refunds: list[RefundResponse]
    created_at: datetime
    updated_at: datetime


class OrderSummaryResponse(BaseModel):
    """Compact order row for dashboards and worklists."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_number: str
    user_id: UUID
    status: OrderStatus
    total_amount: float
    estimated_delivery: Optional[datetime] = None
    created_at: datetime
