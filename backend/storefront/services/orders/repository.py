"""
Order data access repository.

All SQL for orders lives here: loading orders with their items, history and
refunds, listing with filters, atomic conditional stock decrements used by
checkout, stock restoration on cancellation, cart clearing and the
aggregation queries behind dashboards and delivery metrics. Database
failures are wrapped in InternalError; transaction boundaries belong to the
caller's session.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, Optional, Sequence

from sqlalchemy import and_, case, delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from storefront.core.errors import InternalError
from storefront.core.logging import get_logger
from storefront.database.models import (
    CartItem,
    Order,
    OrderItem,
    Product,
    ProductStatus,
    ProductVariant,
    order_number_seq,
)
from storefront.services.orders.enums import OrderStatus, PaymentStatus

logger = get_logger(__name__)

SECONDS_PER_DAY = 86400


def _order_load_options() -> list:
    return [
        selectinload(Order.items),
        selectinload(Order.status_history),
        selectinload(Order.refunds),
    ]


def _seller_scope(seller_id: uuid.UUID):
    """Restrict a query to orders containing at least one of the seller's items."""
    return Order.id.in_(
        select(OrderItem.order_id).where(OrderItem.seller_id == seller_id)
    )


class OrderRepository:
    """
    Repository for order data access operations.

    Example:
        >>> repository = OrderRepository(session)
        >>> order = await repository.get_order_by_id(order_id)
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    def _database_error(self, operation: str, error: SQLAlchemyError, **context: Any) -> InternalError:
        logger.error(
            "Order repository operation failed",
            operation=operation,
            error=str(error),
            error_type=type(error).__name__,
            **context,
        )
        return InternalError(f"Database error during {operation}", operation=operation, **context)

    # ------------------------------------------------------------------
    # Catalog and cart
    # ------------------------------------------------------------------

    async def get_products(self, product_ids: Iterable[uuid.UUID]) -> dict[uuid.UUID, Product]:
        """Load products with their variants, keyed by id."""
        ids = list(set(product_ids))
        if not ids:
            return {}
        try:
            result = await self.session.execute(
                select(Product)
                .where(Product.id.in_(ids))
                .options(selectinload(Product.variants))
            )
            return {product.id: product for product in result.scalars().all()}
        except SQLAlchemyError as e:
            raise self._database_error("get_products", e) from e

    async def decrement_product_stock(self, product_id: uuid.UUID, quantity: int) -> Optional[int]:
        """
        Atomically take ``quantity`` units from an active product.

        The update only applies when enough stock remains, so concurrent
        checkouts can never drive stock negative. A product left with zero
        units is flagged out of stock.

        Returns:
            Remaining stock, or None when the decrement did not apply
        """
        try:
            result = await self.session.execute(
                update(Product)
                .where(
                    Product.id == product_id,
                    Product.stock >= quantity,
                    Product.status == ProductStatus.ACTIVE,
                )
                .values(stock=Product.stock - quantity)
                .returning(Product.stock)
                .execution_options(synchronize_session=False)
            )
            remaining = result.scalar_one_or_none()
            if remaining == 0:
                await self.session.execute(
                    update(Product)
                    .where(Product.id == product_id, Product.stock == 0)
                    .values(status=ProductStatus.OUT_OF_STOCK)
                    .execution_options(synchronize_session=False)
                )
            return remaining
        except SQLAlchemyError as e:
            raise self._database_error(
                "decrement_product_stock", e, product_id=str(product_id)
            ) from e

    async def decrement_variant_stock(self, variant_id: uuid.UUID, quantity: int) -> Optional[int]:
        """Atomically take ``quantity`` units from a variant; None if short."""
        try:
            result = await self.session.execute(
                update(ProductVariant)
                .where(
                    ProductVariant.id == variant_id,
                    ProductVariant.stock >= quantity,
                )
                .values(stock=ProductVariant.stock - quantity)
                .returning(ProductVariant.stock)
                .execution_options(synchronize_session=False)
            )
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise self._database_error(
                "decrement_variant_stock", e, variant_id=str(variant_id)
            ) from e

    async def restore_stock(
        self,
        product_id: uuid.UUID,
        quantity: int,
        variant_id: Optional[uuid.UUID] = None,
    ) -> None:
        """
        Return units to a variant (or the product) and reactivate the product
        if it had been flagged out of stock.
        """
        try:
            if variant_id is not None:
                await self.session.execute(
                    update(ProductVariant)
                    .where(ProductVariant.id == variant_id)
                    .values(stock=ProductVariant.stock + quantity)
                    .execution_options(synchronize_session=False)
                )
            else:
                await self.session.execute(
                    update(Product)
                    .where(Product.id == product_id)
                    .values(stock=Product.stock + quantity)
                    .execution_options(synchronize_session=False)
                )

            variant_stock = (
                select(func.coalesce(func.sum(ProductVariant.stock), 0))
                .where(ProductVariant.product_id == product_id)
                .scalar_subquery()
            )
            await self.session.execute(
                update(Product)
                .where(
                    Product.id == product_id,
                    Product.status == ProductStatus.OUT_OF_STOCK,
                    Product.stock + variant_stock > 0,
                )
                .values(status=ProductStatus.ACTIVE)
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as e:
            raise self._database_error("restore_stock", e, product_id=str(product_id)) from e

    async def clear_cart(self, user_id: uuid.UUID) -> None:
        try:
            await self.session.execute(delete(CartItem).where(CartItem.user_id == user_id))
        except SQLAlchemyError as e:
            raise self._database_error("clear_cart", e, user_id=str(user_id)) from e

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    async def next_order_sequence(self) -> int:
        """Next value of the order number sequence."""
        try:
            result = await self.session.execute(select(order_number_seq.next_value()))
            return int(result.scalar_one())
        except SQLAlchemyError as e:
            raise self._database_error("next_order_sequence", e) from e

    async def add_order(self, order: Order) -> Order:
        """Persist a new order with its items and initial history."""
        try:
            self.session.add(order)
            await self.session.flush()
            logger.debug("Order flushed", order_id=str(order.id), order_number=order.order_number)
            return order
        except SQLAlchemyError as e:
            raise self._database_error("add_order", e, order_number=order.order_number) from e

    async def flush(self) -> None:
        try:
            await self.session.flush()
        except SQLAlchemyError as e:
            raise self._database_error("flush", e) from e

    async def get_order_by_id(
        self,
        order_id: uuid.UUID,
        for_update: bool = False,
    ) -> Optional[Order]:
        """
        Get order by ID with items, history and refunds loaded.

        Args:
            order_id: Order identifier
            for_update: Lock the order row for the rest of the transaction
        """
        try:
            stmt = select(Order).where(Order.id == order_id).options(*_order_load_options())
            if for_update:
                stmt = stmt.with_for_update(of=Order).execution_options(populate_existing=True)
            result = await self.session.execute(stmt)
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise self._database_error("get_order_by_id", e, order_id=str(order_id)) from e

    async def get_order_by_number(self, order_number: str) -> Optional[Order]:
        try:
            result = await self.session.execute(
                select(Order)
                .where(Order.order_number == order_number)
                .options(*_order_load_options())
            )
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise self._database_error(
                "get_order_by_number", e, order_number=order_number
            ) from e

    async def get_order_by_tracking_number(self, tracking_number: str) -> Optional[Order]:
        try:
            result = await self.session.execute(
                select(Order)
                .where(Order.tracking_number == tracking_number)
                .options(*_order_load_options())
            )
            return result.scalars().first()
        except SQLAlchemyError as e:
            raise self._database_error(
                "get_order_by_tracking_number", e, tracking_number=tracking_number
            ) from e

    async def list_orders(
        self,
        status: Optional[OrderStatus] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        user_id: Optional[uuid.UUID] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> tuple[Sequence[Order], int]:
        """
        Get orders, newest first, with pagination.

        Returns:
            Tuple of (orders, total_count)
        """
        conditions = []
        if status is not None:
            conditions.append(Order.status == status)
        if start_date is not None:
            conditions.append(Order.created_at >= start_date)
        if end_date is not None:
            conditions.append(Order.created_at <= end_date)
        if user_id is not None:
            conditions.append(Order.user_id == user_id)

        try:
            stmt = (
                select(Order)
                .where(*conditions)
                .options(*_order_load_options())
                .order_by(Order.created_at.desc())
                .offset(skip)
                .limit(limit)
            )
            count_stmt = select(func.count()).select_from(Order).where(*conditions)

            orders = (await self.session.execute(stmt)).scalars().all()
            total = (await self.session.execute(count_stmt)).scalar_one()
            return orders, total
        except SQLAlchemyError as e:
            raise self._database_error("list_orders", e) from e

    # ------------------------------------------------------------------
    # Workflow queries
    # ------------------------------------------------------------------

    async def find_orders(
        self,
        statuses: Sequence[OrderStatus],
        seller_id: Optional[uuid.UUID] = None,
        created_before: Optional[datetime] = None,
        status_changed_before: Optional[datetime] = None,
        estimated_delivery_before: Optional[datetime] = None,
        payment_status: Optional[PaymentStatus] = None,
        order_by: Any = None,
        limit: Optional[int] = None,
    ) -> Sequence[Order]:
        """Orders in the given statuses matching optional age filters."""
        conditions = [Order.status.in_(list(statuses))]
        if seller_id is not None:
            conditions.append(_seller_scope(seller_id))
        if created_before is not None:
            conditions.append(Order.created_at < created_before)
        if status_changed_before is not None:
            conditions.append(Order.status_changed_at < status_changed_before)
        if estimated_delivery_before is not None:
            conditions.append(Order.estimated_delivery.is_not(None))
            conditions.append(Order.estimated_delivery < estimated_delivery_before)
        if payment_status is not None:
            conditions.append(Order.payment_status == payment_status)

        try:
            stmt = (
                select(Order)
                .where(and_(*conditions))
                .options(*_order_load_options())
                .order_by(order_by if order_by is not None else Order.created_at.asc())
            )
            if limit is not None:
                stmt = stmt.limit(limit)
            return (await self.session.execute(stmt)).scalars().all()
        except SQLAlchemyError as e:
            raise self._database_error("find_orders", e) from e

    # ------------------------------------------------------------------
    # Aggregations
    # ------------------------------------------------------------------

    async def count_by_status(self, seller_id: Optional[uuid.UUID] = None) -> dict[str, int]:
        try:
            stmt = select(Order.status, func.count()).group_by(Order.status)
            if seller_id is not None:
                stmt = stmt.where(_seller_scope(seller_id))
            rows = (await self.session.execute(stmt)).all()
            return {OrderStatus(status).value: count for status, count in rows}
        except SQLAlchemyError as e:
            raise self._database_error("count_by_status", e) from e

    async def created_since_stats(
        self,
        since: datetime,
        until: datetime,
        seller_id: Optional[uuid.UUID] = None,
    ) -> dict[str, Any]:
        """Order count, revenue and delivered/shipped counts for a creation window."""
        try:
            stmt = select(
                func.count(Order.id),
                func.coalesce(func.sum(Order.total_amount), 0),
                func.count(case((Order.status == OrderStatus.DELIVERED, 1))),
                func.count(case((Order.status == OrderStatus.SHIPPED, 1))),
            ).where(Order.created_at >= since, Order.created_at < until)
            if seller_id is not None:
                stmt = stmt.where(_seller_scope(seller_id))
            total_orders, revenue, delivered, shipped = (await self.session.execute(stmt)).one()
            return {
                "total_orders": total_orders,
                "total_revenue": float(Decimal(revenue)),
                "delivered": delivered,
                "shipped": shipped,
            }
        except SQLAlchemyError as e:
            raise self._database_error("created_since_stats", e) from e

    async def delivery_stats_by_status(
        self, start_date: datetime, end_date: datetime
    ) -> list[dict[str, Any]]:
        """Per-status order count and average days from creation to delivery."""
        delivery_days = (
            func.extract("epoch", Order.actual_delivery - Order.created_at) / SECONDS_PER_DAY
        )
        try:
            stmt = (
                select(Order.status, func.count(), func.avg(delivery_days))
                .where(Order.created_at >= start_date, Order.created_at <= end_date)
                .group_by(Order.status)
            )
            rows = (await self.session.execute(stmt)).all()
            return [
                {
                    "status": OrderStatus(status).value,
                    "count": count,
                    "average_delivery_days": (
                        round(float(avg_days), 1) if avg_days is not None else None
                    ),
                }
                for status, count, avg_days in rows
            ]
        except SQLAlchemyError as e:
            raise self._database_error("delivery_stats_by_status", e) from e

    async def on_time_delivery(self, start_date: datetime, end_date: datetime) -> dict[str, Any]:
        """Delivered orders with both dates set, and how many arrived on time."""
        try:
            stmt = select(
                func.count(),
                func.count(case((Order.actual_delivery <= Order.estimated_delivery, 1))),
            ).where(
                Order.created_at >= start_date,
                Order.created_at <= end_date,
                Order.status == OrderStatus.DELIVERED,
                Order.actual_delivery.is_not(None),
                Order.estimated_delivery.is_not(None),
            )
            total, on_time = (await self.session.execute(stmt)).one()
            return {
                "total": total,
                "on_time": on_time,
                "on_time_rate": round(on_time / total * 100, 1) if total else 0.0,
            }
        except SQLAlchemyError as e:
            raise self._database_error("on_time_delivery", e) from e

    async def carrier_performance(
        self, start_date: datetime, end_date: datetime
    ) -> list[dict[str, Any]]:
        """Delivered order count, average delivery days and on-time rate per carrier."""
        delivery_days = (
            func.extract("epoch", Order.actual_delivery - Order.created_at) / SECONDS_PER_DAY
        )
        try:
            stmt = (
                select(
                    Order.carrier,
                    func.count(),
                    func.avg(delivery_days),
                    func.count(case((Order.actual_delivery <= Order.estimated_delivery, 1))),
                )
                .where(
                    Order.created_at >= start_date,
                    Order.created_at <= end_date,
                    Order.status == OrderStatus.DELIVERED,
                    Order.carrier.is_not(None),
                )
                .group_by(Order.carrier)
                .order_by(Order.carrier)
            )
            rows = (await self.session.execute(stmt)).all()
            return [
                {
                    "carrier": carrier,
                    "deliveries": deliveries,
                    "average_delivery_days": (
                        round(float(avg_days), 1) if avg_days is not None else None
                    ),
                    "on_time_rate": round(on_time / deliveries * 100, 1) if deliveries else 0.0,
                }
                for carrier, deliveries, avg_days, on_time in rows
            ]
        except SQLAlchemyError as e:
            raise self._database_error("carrier_performance", e) from e
