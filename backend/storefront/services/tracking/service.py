"""
Order tracking service.

Read-side tracking views (per order, per tracking number), the admin and
seller dashboard, the pending-updates worklist, delivery metrics, the
automated status sweep and simulated shipment events. Sellers only ever see
orders that contain at least one of their items.
"""

import uuid
from datetime import datetime, time, timedelta
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.config import Settings, get_settings
from storefront.core.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    StorefrontError,
    ValidationError,
)
from storefront.core.logging import get_logger, log_performance
from storefront.database.base import as_utc, utcnow
from storefront.database.models import Order, User
from storefront.services.audit.emitter import (
    AuditEventEmitter,
    AuditEventType,
    get_audit_emitter,
)
from storefront.services.orders.enums import (
    TRACKING_PROGRESSION,
    OrderStatus,
    PaymentStatus,
    ShippingMethod,
)
from storefront.services.orders.repository import OrderRepository
from storefront.services.orders.state_machine import OrderStateMachine

logger = get_logger(__name__)

DASHBOARD_LIST_LIMIT = 5

STATUS_DESCRIPTIONS: dict[OrderStatus, str] = {
    OrderStatus.PENDING: "Order placed and waiting for payment confirmation",
    OrderStatus.CONFIRMED: "Payment confirmed, order is being prepared",
    OrderStatus.PROCESSING: "Order is being packed and prepared for shipment",
    OrderStatus.SHIPPED: "Order shipped via {carrier}",
    OrderStatus.DELIVERED: "Order successfully delivered to customer",
    OrderStatus.CANCELLED: "Order has been cancelled",
}

STATUS_LOCATIONS: dict[OrderStatus, str] = {
    OrderStatus.PENDING: "Online Store",
    OrderStatus.CONFIRMED: "Order Processing Center",
    OrderStatus.PROCESSING: "Fulfillment Center",
    OrderStatus.SHIPPED: "In Transit",
    OrderStatus.DELIVERED: "Customer Location",
    OrderStatus.CANCELLED: "Order Cancelled",
}


def describe_status(status: OrderStatus, carrier: Optional[str] = None) -> str:
    template = STATUS_DESCRIPTIONS.get(status)
    if template is None:
        return f"Order status: {status.value}"
    return template.format(carrier=carrier or "carrier")


def status_location(status: OrderStatus) -> str:
    return STATUS_LOCATIONS.get(status, "Unknown")


def tracking_progress(status: OrderStatus) -> int:
    """Percent through pending→delivered; 0 for cancelled or refunded orders."""
    if status not in TRACKING_PROGRESSION:
        return 0
    index = TRACKING_PROGRESSION.index(status)
    return round((index + 1) / len(TRACKING_PROGRESSION) * 100)


class OrderTrackingService:
    """
    Tracking views, dashboards and status automation.

    Example:
        >>> service = OrderTrackingService(session)
        >>> dashboard = await service.get_dashboard(admin_user)
    """

    def __init__(
        self,
        session: AsyncSession,
        audit: Optional[AuditEventEmitter] = None,
        settings: Optional[Settings] = None,
    ):
        self.session = session
        self.settings = settings or get_settings()
        self.repository = OrderRepository(session)
        self.state_machine = OrderStateMachine(self.repository, self.settings)
        self.audit = audit or get_audit_emitter()

    def _scope(self, user: User) -> Optional[uuid.UUID]:
        """Seller id to restrict queries to, or None for admins."""
        if user.is_admin:
            return None
        if user.is_seller:
            return user.id
        raise AuthorizationError("Admin or seller access required", user_id=str(user.id))

    # ------------------------------------------------------------------
    # Tracking views
    # ------------------------------------------------------------------

    def build_tracking_view(self, order: Order) -> dict[str, Any]:
        status = OrderStatus(order.status)
        events = [
            {
                "status": OrderStatus(entry.status).value,
                "timestamp": entry.created_at,
                "note": entry.note,
                "description": describe_status(OrderStatus(entry.status), order.carrier),
                "location": status_location(OrderStatus(entry.status)),
                "is_completed": True,
            }
            for entry in sorted(order.status_history, key=lambda e: e.created_at, reverse=True)
        ]

        return {
            "order": {
                "id": order.id,
                "order_number": order.order_number,
                "status": status.value,
                "created_at": order.created_at,
                "total_amount": float(order.total_amount),
            },
            "tracking": {
                **order.tracking_info,
                "current_status": status.value,
                "progress": tracking_progress(status),
                "events": events,
            },
            "shipping": {
                "address": order.shipping_address,
                "method": ShippingMethod(order.shipping_method).value,
            },
            "items": [
                {
                    "name": item.name,
                    "quantity": item.quantity,
                    "price": float(item.price),
                    "image": item.image,
                }
                for item in order.items
            ],
        }

    async def get_order_tracking(self, order_id: uuid.UUID, user: User) -> dict[str, Any]:
        """Tracking view for the order's owner or an admin; 404 for anyone else."""
        order = await self.repository.get_order_by_id(order_id)
        if order is None or (not user.is_admin and order.user_id != user.id):
            raise NotFoundError("Order not found", order_id=str(order_id))
        return self.build_tracking_view(order)

    async def track_by_number(self, tracking_number: str) -> dict[str, Any]:
        order = await self.repository.get_order_by_tracking_number(tracking_number)
        if order is None:
            raise NotFoundError(
                "Tracking number not found",
                tracking_number=tracking_number,
            )
        return self.build_tracking_view(order)

    # ------------------------------------------------------------------
    # Dashboard and worklists
    # ------------------------------------------------------------------

    def _today_bounds(self, now: datetime) -> tuple[datetime, datetime]:
        """Local midnight to next midnight in the store timezone."""
        local_now = now.astimezone(self.settings.timezone)
        start = datetime.combine(local_now.date(), time.min, tzinfo=self.settings.timezone)
        return start, start + timedelta(days=1)

    async def get_dashboard(self, user: User) -> dict[str, Any]:
        """
        Status counts, stale pending orders, overdue shipments and today's
        totals, scoped to the caller.
        """
        seller_id = self._scope(user)
        now = utcnow()

        with log_performance(logger, "tracking_dashboard", seller_scoped=seller_id is not None):
            counts = await self.repository.count_by_status(seller_id)
            pending = await self.repository.find_orders(
                [OrderStatus.PENDING, OrderStatus.CONFIRMED],
                seller_id=seller_id,
                created_before=now - timedelta(hours=self.settings.pending_threshold_hours),
                order_by=Order.created_at.asc(),
                limit=DASHBOARD_LIST_LIMIT,
            )
            overdue = await self.repository.find_orders(
                [OrderStatus.SHIPPED],
                seller_id=seller_id,
                estimated_delivery_before=now,
                order_by=Order.estimated_delivery.asc(),
                limit=DASHBOARD_LIST_LIMIT,
            )
            day_start, day_end = self._today_bounds(now)
            today = await self.repository.created_since_stats(day_start, day_end, seller_id)

        return {
            "status_counts": {status.value: counts.get(status.value, 0) for status in OrderStatus},
            "pending_orders": list(pending),
            "overdue_deliveries": list(overdue),
            "today_stats": today,
        }

    async def get_pending_updates(self, user: User) -> dict[str, Any]:
        """Orders that need a manual nudge, with a suggested next step."""
        seller_id = self._scope(user)
        now = utcnow()

        stale = await self.repository.find_orders(
            [OrderStatus.CONFIRMED, OrderStatus.PROCESSING],
            seller_id=seller_id,
            created_before=now - timedelta(hours=self.settings.pending_threshold_hours),
            order_by=Order.created_at.asc(),
        )
        overdue = await self.repository.find_orders(
            [OrderStatus.SHIPPED],
            seller_id=seller_id,
            estimated_delivery_before=now,
            order_by=Order.estimated_delivery.asc(),
        )

        needs_update = [
            {
                "id": order.id,
                "order_number": order.order_number,
                "status": OrderStatus(order.status).value,
                "created_at": order.created_at,
                "age_in_days": (now - order.created_at).days,
                "suggested_action": (
                    "Move to Processing"
                    if OrderStatus(order.status) == OrderStatus.CONFIRMED
                    else "Generate Tracking"
                ),
            }
            for order in stale
        ]
        overdue_shipments = [
            {
                "id": order.id,
                "order_number": order.order_number,
                "tracking_number": order.tracking_number,
                "carrier": order.carrier,
                "estimated_delivery": order.estimated_delivery,
                "days_overdue": (now - order.estimated_delivery).days,
            }
            for order in overdue
        ]
        return {
            "needs_update": needs_update,
            "overdue_shipments": overdue_shipments,
            "total": len(needs_update) + len(overdue_shipments),
        }

    async def get_delivery_metrics(
        self,
        start_date: Optional[datetime],
        end_date: Optional[datetime],
    ) -> dict[str, Any]:
        if start_date is None or end_date is None:
            raise ValidationError("Start date and end date are required")
        start_date, end_date = as_utc(start_date), as_utc(end_date)
        if start_date > end_date:
            raise ValidationError(
                "Start date must be before end date",
                start_date=start_date.isoformat(),
                end_date=end_date.isoformat(),
            )

        with log_performance(logger, "delivery_metrics"):
            delivery_stats = await self.repository.delivery_stats_by_status(start_date, end_date)
            on_time = await self.repository.on_time_delivery(start_date, end_date)
            carriers = await self.repository.carrier_performance(start_date, end_date)

        return {
            "period": {"start_date": start_date, "end_date": end_date},
            "delivery_stats": delivery_stats,
            "on_time_delivery": on_time,
            "carrier_performance": carriers,
        }

    # ------------------------------------------------------------------
    # Automation
    # ------------------------------------------------------------------

    async def process_automated_updates(self) -> list[dict[str, Any]]:
        """
        Advance orders that have dwelt in a status past its limit.

        Paid pending orders are confirmed, confirmed orders move to
        processing and shipments past their estimate are marked delivered.
        Each order is advanced in its own savepoint; one failure is logged
        and skipped.

        Returns:
            One ``{order_id, order_number, action}`` entry per advanced order
        """
        now = utcnow()
        updates: list[dict[str, Any]] = []

        sweeps = [
            (
                await self.repository.find_orders(
                    [OrderStatus.PENDING],
                    payment_status=PaymentStatus.COMPLETED,
                    created_before=now - timedelta(hours=self.settings.auto_confirm_after_hours),
                ),
                OrderStatus.CONFIRMED,
                "Order automatically confirmed after payment verification",
                "auto_confirmed",
            ),
            (
                await self.repository.find_orders(
                    [OrderStatus.CONFIRMED],
                    status_changed_before=now
                    - timedelta(hours=self.settings.auto_process_after_hours),
                ),
                OrderStatus.PROCESSING,
                "Order moved to processing automatically",
                "moved_to_processing",
            ),
            (
                await self.repository.find_orders(
                    [OrderStatus.SHIPPED],
                    estimated_delivery_before=now,
                ),
                OrderStatus.DELIVERED,
                "Order marked delivered after estimated delivery date",
                "marked_delivered",
            ),
        ]

        for orders, target, note, action in sweeps:
            for order in orders:
                if await self._advance(order, target, note):
                    updates.append(
                        {
                            "order_id": order.id,
                            "order_number": order.order_number,
                            "action": action,
                        }
                    )

        logger.info("Automated status updates processed", count=len(updates))
        return updates

    async def _advance(self, order: Order, target: OrderStatus, note: str) -> bool:
        previous = OrderStatus(order.status)
        try:
            async with self.session.begin_nested():
                changed = await self.state_machine.apply_transition(order, target, note=note)
        except StorefrontError as e:
            logger.warning(
                "Automated status update skipped",
                order_id=str(order.id),
                target_status=target.value,
                error=e.message,
            )
            return False

        if changed:
            self.audit.emit_after_commit(
                AuditEventType.ORDER_AUTOMATED_UPDATE,
                session=self.session,
                order_id=order.id,
                order_number=order.order_number,
                from_status=previous.value,
                to_status=target.value,
            )
        return changed

    async def simulate_shipment(self, order_id: uuid.UUID) -> dict[str, Any]:
        """Fabricated carrier events for a shipped order, for demos and testing."""
        order = await self.repository.get_order_by_id(order_id)
        if order is None:
            raise NotFoundError("Order not found", order_id=str(order_id))
        if OrderStatus(order.status) != OrderStatus.SHIPPED:
            raise ConflictError(
                "Order must be shipped to simulate tracking",
                order_id=str(order.id),
                status=OrderStatus(order.status).value,
            )

        shipped_at = order.shipped_at or order.status_changed_at
        city = (order.shipping_address or {}).get("city") or "Destination"
        events = [
            {
                "status": "picked_up",
                "location": self.settings.warehouse_location,
                "description": "Package picked up by carrier",
                "timestamp": shipped_at,
            },
            {
                "status": "in_transit",
                "location": self.settings.sorting_facility_location,
                "description": "Package arrived at sorting facility",
                "timestamp": shipped_at + timedelta(hours=2),
            },
            {
                "status": "out_for_delivery",
                "location": f"Distribution Center - {city}",
                "description": "Package arrived at local distribution center",
                "timestamp": shipped_at + timedelta(hours=24),
            },
        ]
        if order.estimated_delivery is not None:
            events.append(
                {
                    "status": "estimated_delivery",
                    "location": city,
                    "description": "Estimated delivery",
                    "timestamp": order.estimated_delivery,
                }
            )

        return {
            "order_number": order.order_number,
            "tracking_number": order.tracking_number,
            "carrier": order.carrier,
            "events": events,
        }
