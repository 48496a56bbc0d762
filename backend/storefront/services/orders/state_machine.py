"""Order state machine implementation with transition validation.

Every order status change goes through OrderStateMachine: the transition
table is checked, exactly one history entry is appended, the dwell-time
anchor is reset and the target status' side effects run (tracking number
assignment, shipment details, delivery stamp and cash-on-delivery
collection, stock restoration).
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, Optional
from uuid import UUID

from storefront.core.config import Settings, get_settings
from storefront.core.errors import InvalidStatusTransitionError
from storefront.core.logging import get_logger
from storefront.database.base import utcnow
from storefront.database.models import Order, OrderStatusHistory
from storefront.services.orders.enums import (
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    get_allowed_order_transitions,
    validate_order_status_transition,
)
from storefront.services.orders.repository import OrderRepository
from storefront.services.tracking.delivery import build_tracking_url, generate_tracking_number

logger = get_logger(__name__)


@dataclass
class TransitionDetails:
    """Optional shipment details supplied with a status change."""

    carrier: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    tracking_url: Optional[str] = None
    delivery_date: Optional[datetime] = None


SideEffect = Callable[[Order, TransitionDetails], Awaitable[None]]


class OrderStateMachine:
    """State machine for order lifecycle transitions.

    Example:
        >>> machine = OrderStateMachine(repository)
        >>> changed = await machine.apply_transition(order, OrderStatus.SHIPPED, actor_id)
    """

    def __init__(self, repository: OrderRepository, settings: Optional[Settings] = None):
        self.repository = repository
        self.settings = settings or get_settings()
        self._side_effects: Dict[OrderStatus, SideEffect] = {
            OrderStatus.PROCESSING: self._effect_processing,
            OrderStatus.SHIPPED: self._effect_shipped,
            OrderStatus.DELIVERED: self._effect_delivered,
            OrderStatus.CANCELLED: self._effect_cancelled,
            OrderStatus.REFUNDED: self._effect_refunded,
        }

    def validate_transition(self, order: Order, target_status: OrderStatus) -> None:
        """Raise InvalidStatusTransitionError unless the move is in the table."""
        current_status = OrderStatus(order.status)

        if not validate_order_status_transition(current_status, target_status):
            allowed = sorted(s.value for s in get_allowed_order_transitions(current_status))
            raise InvalidStatusTransitionError(
                f"Cannot change order status from {current_status.value} to "
                f"{target_status.value}",
                current_status=current_status.value,
                target_status=target_status.value,
                allowed_transitions=allowed,
                order_id=str(order.id),
            )

    async def apply_transition(
        self,
        order: Order,
        target_status: OrderStatus,
        actor_id: Optional[UUID] = None,
        note: Optional[str] = None,
        details: Optional[TransitionDetails] = None,
    ) -> bool:
        """
        Move an order to ``target_status``.

        Re-submitting the current status is a no-op: nothing is written and
        no history entry is added.

        Returns:
            True if the status changed, False for a same-status no-op

        Raises:
            InvalidStatusTransitionError: If the transition is not allowed
        """
        current_status = OrderStatus(order.status)
        if current_status == target_status:
            logger.info(
                "Status update skipped, order already in status",
                order_id=str(order.id),
                status=target_status.value,
            )
            return False

        self.validate_transition(order, target_status)

        now = utcnow()
        order.status = target_status
        order.status_changed_at = now
        self._record_status_change(
            order,
            target_status,
            actor_id,
            note or f"Status updated to {target_status.value}",
            now,
        )

        side_effect = self._side_effects.get(target_status)
        if side_effect is not None:
            await side_effect(order, details or TransitionDetails())

        logger.info(
            "Order status changed",
            order_id=str(order.id),
            order_number=order.order_number,
            transition=f"{current_status.value}->{target_status.value}",
            actor_id=str(actor_id) if actor_id else "system",
        )
        return True

    def _record_status_change(
        self,
        order: Order,
        status: OrderStatus,
        actor_id: Optional[UUID],
        note: str,
        timestamp: datetime,
    ) -> None:
        order.status_history.append(
            OrderStatusHistory(
                order_id=order.id,
                status=status,
                note=note,
                updated_by=actor_id,
                created_at=timestamp,
            )
        )

    # Side Effects

    async def _effect_processing(self, order: Order, details: TransitionDetails) -> None:
        if not order.tracking_number:
            order.tracking_number = generate_tracking_number(details.carrier)

    async def _effect_shipped(self, order: Order, details: TransitionDetails) -> None:
        now = utcnow()
        order.tracking_number = order.tracking_number or generate_tracking_number(details.carrier)
        order.carrier = details.carrier or order.carrier or self.settings.default_carrier
        order.shipped_at = now
        order.estimated_delivery = (
            details.estimated_delivery
            or order.estimated_delivery
            or now + timedelta(days=self.settings.shipped_delivery_days)
        )
        order.tracking_url = details.tracking_url or build_tracking_url(
            order.tracking_number, self.settings
        )

    async def _effect_delivered(self, order: Order, details: TransitionDetails) -> None:
        # First delivery timestamp wins
        if order.actual_delivery is None:
            order.actual_delivery = details.delivery_date or utcnow()

        # Cash is collected at the door
        if (
            PaymentMethod(order.payment_method) == PaymentMethod.CASH_ON_DELIVERY
            and PaymentStatus(order.payment_status)
            in (PaymentStatus.PENDING, PaymentStatus.PROCESSING)
        ):
            order.payment_status = PaymentStatus.COMPLETED
            order.payment_details = {
                **(order.payment_details or {}),
                "collected_at": order.actual_delivery.isoformat(),
            }

    async def _effect_cancelled(self, order: Order, details: TransitionDetails) -> None:
        for item in order.items:
            await self.repository.restore_stock(item.product_id, item.quantity, item.variant_id)
        logger.info(
            "Inventory restored for cancelled order",
            order_id=str(order.id),
            item_count=len(order.items),
        )

    async def _effect_refunded(self, order: Order, details: TransitionDetails) -> None:
        if PaymentStatus(order.payment_status).can_refund():
            order.payment_status = PaymentStatus.REFUNDED
