"""Order lifecycle enums and the order status transition table.

Defines order, payment, refund, shipping and bookkeeping enums shared by the
ORM models, the pricing helpers and the state machine.
"""

from enum import Enum
from typing import Dict, Set


class OrderStatus(str, Enum):
    """Order lifecycle status.

    Valid transitions:
    - PENDING -> CONFIRMED, CANCELLED
    - CONFIRMED -> PROCESSING, CANCELLED
    - PROCESSING -> SHIPPED, CANCELLED
    - SHIPPED -> DELIVERED
    - DELIVERED -> REFUNDED
    - CANCELLED -> REFUNDED
    - REFUNDED -> (terminal state)
    """

    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"

    @classmethod
    def from_string(cls, value: str) -> "OrderStatus":
        """Convert string to OrderStatus enum.

        Raises:
            ValueError: If value is not a valid status
        """
        try:
            return cls(value.strip().lower())
        except (ValueError, AttributeError):
            valid_values = ", ".join(s.value for s in cls)
            raise ValueError(
                f"Invalid order status: {value}. Valid values are: {valid_values}"
            )

    def is_terminal(self) -> bool:
        return self == OrderStatus.REFUNDED

    def can_refund(self) -> bool:
        """Check if a refund may be requested from current status."""
        return self == OrderStatus.DELIVERED


class PaymentStatus(str, Enum):
    """Payment bookkeeping status for an order."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"

    def can_refund(self) -> bool:
        return self in {PaymentStatus.COMPLETED, PaymentStatus.PARTIALLY_REFUNDED}


class PaymentMethod(str, Enum):
    MPESA = "mpesa"
    CARD = "card"
    BANK_TRANSFER = "bank_transfer"
    CASH_ON_DELIVERY = "cash_on_delivery"


class ShippingMethod(str, Enum):
    STANDARD = "standard"
    EXPRESS = "express"
    OVERNIGHT = "overnight"
    PICKUP = "pickup"


class OrderPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class OrderSource(str, Enum):
    WEB = "web"
    MOBILE = "mobile"
    ADMIN = "admin"


class RefundStatus(str, Enum):
    """Refund request review status.

    A refund is submitted as PENDING and reviewed exactly once.
    """

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class RefundDecision(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


# State transition validation rules
ORDER_STATUS_TRANSITIONS: Dict[OrderStatus, Set[OrderStatus]] = {
    OrderStatus.PENDING: {OrderStatus.CONFIRMED, OrderStatus.CANCELLED},
    OrderStatus.CONFIRMED: {OrderStatus.PROCESSING, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: {OrderStatus.REFUNDED},
    OrderStatus.CANCELLED: {OrderStatus.REFUNDED},
    OrderStatus.REFUNDED: set(),  # Terminal
}

# Payment changes recorded by staff or payment callbacks. Refunded states are
# reached only through refund review.
PAYMENT_STATUS_TRANSITIONS: Dict[PaymentStatus, Set[PaymentStatus]] = {
    PaymentStatus.PENDING: {
        PaymentStatus.PROCESSING,
        PaymentStatus.COMPLETED,
        PaymentStatus.FAILED,
    },
    PaymentStatus.PROCESSING: {PaymentStatus.COMPLETED, PaymentStatus.FAILED},
    PaymentStatus.FAILED: {
        PaymentStatus.PENDING,
        PaymentStatus.PROCESSING,
        PaymentStatus.COMPLETED,
    },
    PaymentStatus.COMPLETED: set(),
    PaymentStatus.REFUNDED: set(),
    PaymentStatus.PARTIALLY_REFUNDED: set(),
}

# Fulfilment progression used for tracking progress percentages
TRACKING_PROGRESSION: tuple[OrderStatus, ...] = (
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.PROCESSING,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
)


def validate_order_status_transition(current: OrderStatus, new: OrderStatus) -> bool:
    """Validate if order status transition is allowed."""
    return new in ORDER_STATUS_TRANSITIONS.get(current, set())


def get_allowed_order_transitions(current: OrderStatus) -> Set[OrderStatus]:
    """Get all allowed transitions from current order status."""
    return ORDER_STATUS_TRANSITIONS.get(current, set()).copy()


def get_allowed_payment_transitions(current: PaymentStatus) -> Set[PaymentStatus]:
    return PAYMENT_STATUS_TRANSITIONS.get(current, set()).copy()
