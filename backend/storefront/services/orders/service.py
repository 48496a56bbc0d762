"""
Order service orchestrating checkout, status changes and refunds.

Checkout validates each requested line against the live catalog, prices the
order, persists it with line-item snapshots and takes stock with atomic
conditional decrements, all inside the caller's transaction. A line that
cannot be satisfied raises before the transaction commits, so either the
whole order lands with every decrement applied or nothing does.

Status changes go through OrderStateMachine; payment outcomes are recorded
separately. Refunds are submitted as pending requests and approved or
rejected in a separate review step, which is the only way an order reaches
the refunded status.
"""

import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.config import Settings, get_settings
from storefront.core.errors import (
    AuthorizationError,
    InsufficientStockError,
    InvalidStatusTransitionError,
    NotFoundError,
    ProductUnavailableError,
    RefundNotAllowedError,
    StorefrontError,
    ValidationError,
)
from storefront.core.logging import get_logger, log_performance
from storefront.database.base import as_utc, utcnow
from storefront.database.models import (
    Order,
    OrderItem,
    OrderRefund,
    OrderStatusHistory,
    Product,
    ProductVariant,
    User,
)
from storefront.schemas.orders import (
    OrderCreateRequest,
    OrderItemRequest,
    OrderStatusUpdateRequest,
    PaymentStatusUpdateRequest,
    RefundRequest,
    RefundReviewRequest,
)
from storefront.services.audit.emitter import (
    AuditEventEmitter,
    AuditEventType,
    get_audit_emitter,
)
from storefront.services.orders.enums import (
    OrderStatus,
    PaymentStatus,
    RefundDecision,
    RefundStatus,
    get_allowed_payment_transitions,
)
from storefront.services.orders.pricing import OrderPricing, quantize_money
from storefront.services.orders.repository import OrderRepository
from storefront.services.orders.state_machine import OrderStateMachine, TransitionDetails
from storefront.services.tracking.delivery import calculate_estimated_delivery

logger = get_logger(__name__)


def generate_order_number(sequence: int, now: Optional[datetime] = None) -> str:
    """
    ``ORD`` + epoch milliseconds + last four digits of the order sequence.

    Example:
        >>> generate_order_number(42)  # doctest: +SKIP
        'ORD17290000000000042'
    """
    millis = int((now.timestamp() if now else time.time()) * 1000)
    return f"ORD{millis}{sequence % 10000:04d}"


@dataclass
class _PreparedLine:
    product: Product
    variant: Optional[ProductVariant]
    quantity: int
    unit_price: Decimal
    selection: Optional[dict[str, str]]

    def to_item(self) -> OrderItem:
        product = self.product
        image = {"url": product.image_url, "alt": product.name} if product.image_url else None
        return OrderItem(
            product_id=product.id,
            variant_id=self.variant.id if self.variant else None,
            name=product.name,
            price=self.unit_price,
            quantity=self.quantity,
            variant=self.selection,
            sku=(self.variant.sku if self.variant and self.variant.sku else product.sku),
            image=image,
            seller_id=product.seller_id,
        )


class OrderService:
    """
    Service for order lifecycle operations.

    Example:
        >>> service = OrderService(session)
        >>> order = await service.create_order(user, request)
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
        self.pricing = OrderPricing(self.settings)
        self.audit = audit or get_audit_emitter()

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------

    async def create_order(
        self,
        user: User,
        request: OrderCreateRequest,
        customer_ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Order:
        """
        Place an order for ``user``.

        Args:
            user: Authenticated customer
            request: Validated order request
            customer_ip: Client address for fraud review
            user_agent: Client user agent

        Returns:
            The persisted order with items and history loaded

        Raises:
            ValidationError: If the order has no items
            NotFoundError: If a product does not exist
            ProductUnavailableError: If a product is not active
            InsufficientStockError: If any line cannot be fulfilled
        """
        if not request.items:
            raise ValidationError("Order must contain at least one item", user_id=str(user.id))

        with log_performance(logger, "create_order", user_id=str(user.id)):
            products = await self.repository.get_products(
                item.product_id for item in request.items
            )
            lines = [self._prepare_line(item, products) for item in request.items]

            breakdown = self.pricing.price_order(
                ((line.unit_price, line.quantity) for line in lines),
                request.shipping_method,
                request.coupon_code,
            )

            now = utcnow()
            sequence = await self.repository.next_order_sequence()
            shipping_address = request.shipping_address.model_dump()
            billing_address = (request.billing_address or request.shipping_address).model_dump()

            order = Order(
                id=uuid.uuid4(),
                order_number=generate_order_number(sequence, now),
                user_id=user.id,
                subtotal=breakdown.subtotal,
                tax_amount=breakdown.tax_amount,
                shipping_amount=breakdown.shipping_amount,
                discount_amount=breakdown.discount_amount,
                total_amount=breakdown.total_amount,
                currency=self.settings.currency,
                coupon_code=breakdown.coupon_code,
                payment_method=request.payment_method,
                payment_status=PaymentStatus.PENDING,
                payment_details={},
                status=OrderStatus.PENDING,
                status_changed_at=now,
                shipping_address=shipping_address,
                billing_address=billing_address,
                shipping_method=request.shipping_method,
                delivery_instructions=request.delivery_instructions,
                notes=request.notes,
                priority=request.priority,
                source=request.source,
                is_gift=request.is_gift,
                gift_message=request.gift_message,
                customer_ip=customer_ip,
                user_agent=user_agent,
                estimated_delivery=calculate_estimated_delivery(
                    request.shipping_method,
                    request.shipping_address.county,
                    now,
                    self.settings,
                ),
                items=[line.to_item() for line in lines],
                status_history=[
                    OrderStatusHistory(
                        status=OrderStatus.PENDING,
                        note="Order created",
                        updated_by=user.id,
                        created_at=now,
                    )
                ],
                refunds=[],
            )

            await self.repository.add_order(order)
            await self._take_stock(order, lines)
            await self.repository.clear_cart(user.id)

        logger.info(
            "Order created",
            order_id=str(order.id),
            order_number=order.order_number,
            user_id=str(user.id),
            item_count=len(lines),
            total_amount=float(order.total_amount),
        )
        self.audit.emit_after_commit(
            AuditEventType.ORDER_CREATED,
            session=self.session,
            order_id=order.id,
            actor_id=user.id,
            order_number=order.order_number,
            pricing=breakdown.as_dict(),
            item_count=len(lines),
        )
        return order

    def _prepare_line(
        self, item: OrderItemRequest, products: dict[uuid.UUID, Product]
    ) -> _PreparedLine:
        product = products.get(item.product_id)
        if product is None:
            raise NotFoundError(
                f"Product {item.product_id} not found",
                product_id=str(item.product_id),
            )
        if not product.is_available:
            raise ProductUnavailableError(
                f"Product {product.name} is not available",
                product_id=str(product.id),
                product_status=str(product.status),
            )

        selection = item.variant.as_dict() if item.variant else None
        variant = product.find_variant(selection)
        available = variant.stock if variant is not None else product.stock
        if item.quantity > available:
            raise InsufficientStockError(
                f"Insufficient stock for {product.name}. Available: {available}",
                product_id=str(product.id),
                requested=item.quantity,
                available=available,
            )

        unit_price = self.pricing.resolve_unit_price(
            product.price,
            product.discount,
            variant.price if variant is not None else None,
        )
        return _PreparedLine(
            product=product,
            variant=variant,
            quantity=item.quantity,
            unit_price=unit_price,
            selection=selection,
        )

    async def _take_stock(self, order: Order, lines: Iterable[_PreparedLine]) -> None:
        """Apply every stock decrement or raise, leaving rollback to the session."""
        for line in lines:
            if line.variant is not None:
                remaining = await self.repository.decrement_variant_stock(
                    line.variant.id, line.quantity
                )
            else:
                remaining = await self.repository.decrement_product_stock(
                    line.product.id, line.quantity
                )

            if remaining is None:
                logger.warning(
                    "Stock decrement failed, aborting order",
                    order_number=order.order_number,
                    product_id=str(line.product.id),
                    requested=line.quantity,
                )
                raise InsufficientStockError(
                    f"Insufficient stock for {line.product.name}",
                    product_id=str(line.product.id),
                    requested=line.quantity,
                )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_order(self, order_id: uuid.UUID, user: User) -> Order:
        """Order visible to its owner and to admins; anyone else gets 404."""
        order = await self.repository.get_order_by_id(order_id)
        if order is None or (not user.is_admin and order.user_id != user.id):
            raise NotFoundError("Order not found", order_id=str(order_id))
        return order

    async def get_order_by_number(self, order_number: str) -> Order:
        order = await self.repository.get_order_by_number(order_number)
        if order is None:
            raise NotFoundError("Order not found", order_number=order_number)
        return order

    async def list_orders(
        self,
        status: Optional[OrderStatus] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[Sequence[Order], int]:
        start_date, end_date = as_utc(start_date), as_utc(end_date)
        if start_date and end_date and start_date > end_date:
            raise ValidationError(
                "start_date must be before end_date",
                start_date=start_date.isoformat(),
                end_date=end_date.isoformat(),
            )
        return await self.repository.list_orders(
            status=status,
            start_date=start_date,
            end_date=end_date,
            skip=(page - 1) * limit,
            limit=limit,
        )

    # ------------------------------------------------------------------
    # Status changes
    # ------------------------------------------------------------------

    def ensure_can_manage(self, order: Order, user: User) -> None:
        """Admins manage every order; sellers only orders holding their items."""
        if user.is_admin:
            return
        if user.is_seller and order.has_seller(user.id):
            return
        raise AuthorizationError(
            "Not authorized to update this order",
            order_id=str(order.id),
            user_id=str(user.id),
        )

    async def update_status(
        self,
        order_id: uuid.UUID,
        request: OrderStatusUpdateRequest,
        user: User,
    ) -> tuple[Order, bool]:
        """
        Change an order's status.

        Returns:
            Tuple of (order, changed); changed is False for a same-status no-op

        Raises:
            NotFoundError: If the order does not exist
            AuthorizationError: If the user may not manage the order
            InvalidStatusTransitionError: If the transition is not allowed
        """
        order = await self.repository.get_order_by_id(order_id, for_update=True)
        if order is None:
            raise NotFoundError("Order not found", order_id=str(order_id))

        self.ensure_can_manage(order, user)

        if (
            request.status == OrderStatus.REFUNDED
            and OrderStatus(order.status) != OrderStatus.REFUNDED
        ):
            raise InvalidStatusTransitionError(
                "Orders are refunded through refund review, not a status update",
                current_status=OrderStatus(order.status).value,
                target_status=request.status.value,
                order_id=str(order.id),
            )

        previous_status = OrderStatus(order.status)
        changed = await self.state_machine.apply_transition(
            order,
            request.status,
            actor_id=user.id,
            note=request.note,
            details=TransitionDetails(
                carrier=request.carrier,
                estimated_delivery=request.estimated_delivery,
                tracking_url=request.tracking_url,
                delivery_date=request.delivery_date,
            ),
        )
        if request.admin_notes is not None:
            order.admin_notes = request.admin_notes

        if changed:
            await self.repository.flush()
            self.audit.emit_after_commit(
                AuditEventType.ORDER_STATUS_CHANGED,
                session=self.session,
                order_id=order.id,
                actor_id=user.id,
                order_number=order.order_number,
                from_status=previous_status.value,
                to_status=request.status.value,
                note=request.note,
            )
        return order, changed

    async def bulk_update_status(
        self,
        order_ids: Sequence[str],
        status: Optional[str],
        user: User,
        note: Optional[str] = None,
        carrier: Optional[str] = None,
    ) -> dict[str, Any]:
        """
        Apply one target status to many orders independently.

        Each order runs in its own savepoint, so a failure rolls back only
        that order and is reported in its result entry.

        Returns:
            Dictionary with per-order ``results`` and a ``summary`` of counts
        """
        if not user.is_admin:
            raise AuthorizationError("Admin access required", user_id=str(user.id))
        if not order_ids:
            raise ValidationError("Order IDs are required")
        if not status:
            raise ValidationError("Status is required")

        target: Optional[OrderStatus] = None
        status_error: Optional[str] = None
        try:
            target = OrderStatus.from_string(status)
        except ValueError as e:
            status_error = str(e)

        results: list[dict[str, Any]] = []
        for raw_id in order_ids:
            if target is None:
                results.append({"order_id": raw_id, "success": False, "error": status_error})
                continue
            try:
                order_id = uuid.UUID(str(raw_id))
            except ValueError:
                results.append({"order_id": raw_id, "success": False, "error": "Invalid order ID"})
                continue

            try:
                async with self.session.begin_nested():
                    order, changed = await self.update_status(
                        order_id,
                        OrderStatusUpdateRequest(status=target, note=note, carrier=carrier),
                        user,
                    )
            except StorefrontError as e:
                results.append({"order_id": raw_id, "success": False, "error": e.message})
                continue

            results.append(
                {
                    "order_id": raw_id,
                    "success": True,
                    "result": {
                        "order_number": order.order_number,
                        "status": OrderStatus(order.status).value,
                        "changed": changed,
                    },
                }
            )

        succeeded = sum(1 for result in results if result["success"])
        summary = {
            "total": len(results),
            "success": succeeded,
            "failed": len(results) - succeeded,
        }

        logger.info(
            "Bulk status update finished",
            target_status=status,
            **summary,
        )
        self.audit.emit_after_commit(
            AuditEventType.ORDER_BULK_STATUS_CHANGED,
            session=self.session,
            actor_id=user.id,
            target_status=status,
            summary=summary,
        )
        return {"results": results, "summary": summary}

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    async def update_payment_status(
        self,
        order_id: uuid.UUID,
        request: PaymentStatusUpdateRequest,
        user: User,
    ) -> tuple[Order, bool]:
        """
        Record a payment outcome for an order.

        A completed payment makes a delivered order refundable and lets the
        automated sweep confirm a pending one. Re-submitting the current
        payment status is a no-op.

        Returns:
            Tuple of (order, changed)

        Raises:
            AuthorizationError: If the user is not an admin
            NotFoundError: If the order does not exist
            InvalidStatusTransitionError: If the payment change is not allowed
        """
        if not user.is_admin:
            raise AuthorizationError("Admin access required", user_id=str(user.id))

        order = await self.repository.get_order_by_id(order_id, for_update=True)
        if order is None:
            raise NotFoundError("Order not found", order_id=str(order_id))

        current = PaymentStatus(order.payment_status)
        target = request.payment_status
        if current == target:
            logger.info(
                "Payment status update skipped, order already in status",
                order_id=str(order.id),
                payment_status=target.value,
            )
            return order, False

        allowed = get_allowed_payment_transitions(current)
        if target not in allowed:
            raise InvalidStatusTransitionError(
                f"Cannot change payment status from {current.value} to {target.value}",
                current_status=current.value,
                target_status=target.value,
                allowed_transitions=sorted(s.value for s in allowed),
                order_id=str(order.id),
            )

        details = dict(order.payment_details or {})
        if request.transaction_id:
            details["transaction_id"] = request.transaction_id
        if target == PaymentStatus.COMPLETED:
            details["paid_at"] = utcnow().isoformat()
        elif target == PaymentStatus.FAILED and request.note:
            details["failure_reason"] = request.note
        order.payment_details = details
        order.payment_status = target
        await self.repository.flush()

        logger.info(
            "Payment status changed",
            order_id=str(order.id),
            order_number=order.order_number,
            transition=f"{current.value}->{target.value}",
            actor_id=str(user.id),
        )
        self.audit.emit_after_commit(
            AuditEventType.PAYMENT_STATUS_CHANGED,
            session=self.session,
            order_id=order.id,
            actor_id=user.id,
            order_number=order.order_number,
            from_status=current.value,
            to_status=target.value,
            transaction_id=request.transaction_id,
        )
        return order, True

    # ------------------------------------------------------------------
    # Refunds
    # ------------------------------------------------------------------

    async def _get_order_for_refund(self, order_id: uuid.UUID, user: User) -> Order:
        if not user.is_admin:
            raise AuthorizationError("Admin access required", user_id=str(user.id))
        order = await self.repository.get_order_by_id(order_id, for_update=True)
        if order is None:
            raise NotFoundError("Order not found", order_id=str(order_id))
        return order

    async def submit_refund(
        self,
        order_id: uuid.UUID,
        request: RefundRequest,
        user: User,
    ) -> tuple[Order, OrderRefund]:
        """
        Record a pending refund request.

        The order must be delivered with a settled payment, and the amount
        may not exceed what remains after approved and pending refunds.
        Order and payment status are untouched until review.
        """
        order = await self._get_order_for_refund(order_id, user)

        if not (
            OrderStatus(order.status).can_refund()
            and PaymentStatus(order.payment_status).can_refund()
        ):
            raise RefundNotAllowedError(
                "Order is not eligible for refund",
                order_id=str(order.id),
                status=OrderStatus(order.status).value,
                payment_status=PaymentStatus(order.payment_status).value,
            )

        amount = quantize_money(request.amount)
        balance = order.refundable_balance
        if amount > balance:
            raise RefundNotAllowedError(
                f"Refund amount exceeds refundable balance of {balance}",
                order_id=str(order.id),
                amount=float(amount),
                refundable_balance=float(balance),
            )

        refund = OrderRefund(
            id=uuid.uuid4(),
            order_id=order.id,
            amount=amount,
            reason=request.reason,
            status=RefundStatus.PENDING,
            requested_by=user.id,
        )
        order.refunds.append(refund)
        await self.repository.flush()

        logger.info(
            "Refund requested",
            order_id=str(order.id),
            refund_id=str(refund.id),
            amount=float(amount),
        )
        self.audit.emit_after_commit(
            AuditEventType.REFUND_REQUESTED,
            session=self.session,
            order_id=order.id,
            actor_id=user.id,
            refund_id=str(refund.id),
            amount=float(amount),
            reason=request.reason,
        )
        return order, refund

    async def review_refund(
        self,
        order_id: uuid.UUID,
        refund_id: uuid.UUID,
        request: RefundReviewRequest,
        user: User,
    ) -> tuple[Order, OrderRefund]:
        """
        Approve or reject a pending refund.

        Approval that brings the approved total up to the order total moves
        the order to refunded; a smaller approval marks the payment
        partially refunded. Rejection only closes the request.
        """
        order = await self._get_order_for_refund(order_id, user)

        refund = next((r for r in order.refunds if r.id == refund_id), None)
        if refund is None:
            raise NotFoundError(
                "Refund not found",
                order_id=str(order.id),
                refund_id=str(refund_id),
            )
        if RefundStatus(refund.status) != RefundStatus.PENDING:
            raise RefundNotAllowedError(
                "Refund has already been reviewed",
                refund_id=str(refund.id),
                refund_status=RefundStatus(refund.status).value,
            )

        refund.processed_by = user.id
        refund.processed_at = utcnow()
        refund.review_note = request.note

        if request.decision == RefundDecision.REJECT:
            refund.status = RefundStatus.REJECTED
            event_type = AuditEventType.REFUND_REJECTED
        else:
            refund.status = RefundStatus.APPROVED
            refund.refund_reference = request.refund_reference
            event_type = AuditEventType.REFUND_APPROVED

            if order.refund_total(RefundStatus.APPROVED) >= order.total_amount:
                await self.state_machine.apply_transition(
                    order,
                    OrderStatus.REFUNDED,
                    actor_id=user.id,
                    note=f"Order refunded: {refund.reason}",
                )
                order.payment_status = PaymentStatus.REFUNDED
            else:
                order.payment_status = PaymentStatus.PARTIALLY_REFUNDED

        await self.repository.flush()

        logger.info(
            "Refund reviewed",
            order_id=str(order.id),
            refund_id=str(refund.id),
            decision=request.decision.value,
            order_status=OrderStatus(order.status).value,
            payment_status=PaymentStatus(order.payment_status).value,
        )
        self.audit.emit_after_commit(
            event_type,
            session=self.session,
            order_id=order.id,
            actor_id=user.id,
            refund_id=str(refund.id),
            amount=float(refund.amount),
            payment_status=PaymentStatus(order.payment_status).value,
        )
        return order, refund
