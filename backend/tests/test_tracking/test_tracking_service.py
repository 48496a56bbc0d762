"""
Tests for the order tracking service.

Covers tracking views, dashboard scoping, the pending-updates worklist,
delivery metrics, the automated status sweep and simulated shipments.
"""

import uuid
from datetime import datetime, timedelta, timezone

import pytest

from conftest import make_order
from storefront.core.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from storefront.database.base import utcnow
from storefront.database.models import OrderStatusHistory
from storefront.schemas.tracking import (
    DashboardResponse,
    OrderTrackingResponse,
    PendingUpdatesResponse,
)
from storefront.services.audit.emitter import AuditEventType
from storefront.services.orders.enums import OrderStatus, PaymentStatus
from storefront.services.tracking.service import describe_status, tracking_progress

TODAY = {"total_orders": 3, "total_revenue": 4380.0, "delivered": 1, "shipped": 1}


# ============================================================================
# Helper Tests
# ============================================================================


class TestHelpers:
    """Tests for status descriptions and progress."""

    @pytest.mark.parametrize(
        "status,expected",
        [
            (OrderStatus.PENDING, 20),
            (OrderStatus.CONFIRMED, 40),
            (OrderStatus.PROCESSING, 60),
            (OrderStatus.SHIPPED, 80),
            (OrderStatus.DELIVERED, 100),
            (OrderStatus.CANCELLED, 0),
            (OrderStatus.REFUNDED, 0),
        ],
    )
    def test_progress(self, status, expected):
        assert tracking_progress(status) == expected

    def test_shipped_description_names_carrier(self):
        assert describe_status(OrderStatus.SHIPPED, "DHL") == "Order shipped via DHL"
        assert describe_status(OrderStatus.SHIPPED) == "Order shipped via carrier"

    def test_refunded_has_generic_description(self):
        assert describe_status(OrderStatus.REFUNDED) == "Order status: refunded"


# ============================================================================
# Tracking View Tests
# ============================================================================


class TestTrackingView:
    """Tests for per-order tracking views."""

    def test_events_newest_first(self, tracking_service):
        order = make_order(OrderStatus.CONFIRMED, age=timedelta(hours=2))
        order.status_history.append(
            OrderStatusHistory(
                id=uuid.uuid4(),
                order_id=order.id,
                status=OrderStatus.CONFIRMED,
                note="Paid",
                created_at=utcnow(),
            )
        )

        view = tracking_service.build_tracking_view(order)

        events = view["tracking"]["events"]
        assert [e["status"] for e in events] == ["confirmed", "pending"]
        assert events[0]["location"] == "Order Processing Center"
        assert events[0]["is_completed"] is True
        assert view["tracking"]["progress"] == 40
        assert view["tracking"]["current_status"] == "confirmed"
        assert view["shipping"]["method"] == "standard"
        assert view["items"][0]["price"] == 1000.0
        OrderTrackingResponse.model_validate(view)

    async def test_owner_can_track(self, tracking_service, mock_repository, customer_user):
        order = make_order(user=customer_user)
        mock_repository.get_order_by_id.return_value = order

        view = await tracking_service.get_order_tracking(order.id, customer_user)

        assert view["order"]["order_number"] == order.order_number

    async def test_other_customer_gets_not_found(self, tracking_service, mock_repository, customer_user):
        mock_repository.get_order_by_id.return_value = make_order()

        with pytest.raises(NotFoundError):
            await tracking_service.get_order_tracking(uuid.uuid4(), customer_user)

    async def test_unknown_tracking_number(self, tracking_service, mock_repository):
        mock_repository.get_order_by_tracking_number.return_value = None

        with pytest.raises(NotFoundError, match="Tracking number not found"):
            await tracking_service.track_by_number("NOPE")


# ============================================================================
# Dashboard Tests
# ============================================================================


class TestDashboard:
    """Tests for the tracking dashboard."""

    async def test_admin_dashboard_zero_fills_counts(self, tracking_service, mock_repository, admin_user):
        stale = make_order(OrderStatus.PENDING, age=timedelta(days=2))
        mock_repository.count_by_status.return_value = {"pending": 2, "shipped": 1}
        mock_repository.find_orders.side_effect = [[stale], []]
        mock_repository.created_since_stats.return_value = TODAY

        dashboard = await tracking_service.get_dashboard(admin_user)

        assert dashboard["status_counts"] == {
            "pending": 2,
            "confirmed": 0,
            "processing": 0,
            "shipped": 1,
            "delivered": 0,
            "cancelled": 0,
            "refunded": 0,
        }
        assert dashboard["pending_orders"] == [stale]
        assert dashboard["today_stats"] == TODAY
        mock_repository.count_by_status.assert_awaited_once_with(None)
        DashboardResponse.model_validate(dashboard, from_attributes=True)

    async def test_seller_dashboard_is_scoped(self, tracking_service, mock_repository, seller_user):
        mock_repository.count_by_status.return_value = {}
        mock_repository.find_orders.side_effect = [[], []]
        mock_repository.created_since_stats.return_value = TODAY

        await tracking_service.get_dashboard(seller_user)

        mock_repository.count_by_status.assert_awaited_once_with(seller_user.id)
        for call in mock_repository.find_orders.await_args_list:
            assert call.kwargs["seller_id"] == seller_user.id
            assert call.kwargs["limit"] == 5
        assert mock_repository.created_since_stats.await_args.args[2] == seller_user.id

    async def test_today_starts_at_store_midnight(self, tracking_service, mock_repository, admin_user):
        mock_repository.count_by_status.return_value = {}
        mock_repository.find_orders.side_effect = [[], []]
        mock_repository.created_since_stats.return_value = TODAY

        await tracking_service.get_dashboard(admin_user)

        day_start, day_end = mock_repository.created_since_stats.await_args.args[:2]
        local_start = day_start.astimezone(tracking_service.settings.timezone)
        assert (local_start.hour, local_start.minute) == (0, 0)
        assert day_end - day_start == timedelta(days=1)

    async def test_customer_forbidden(self, tracking_service, customer_user):
        with pytest.raises(AuthorizationError):
            await tracking_service.get_dashboard(customer_user)


# ============================================================================
# Pending Updates Tests
# ============================================================================


class TestPendingUpdates:
    """Tests for the pending-updates worklist."""

    async def test_suggested_actions(self, tracking_service, mock_repository, admin_user):
        confirmed = make_order(OrderStatus.CONFIRMED, age=timedelta(days=2, hours=1))
        processing = make_order(OrderStatus.PROCESSING, age=timedelta(days=3, hours=1))
        shipped = make_order(
            OrderStatus.SHIPPED,
            age=timedelta(days=8),
            tracking_number="DHL123456ABCDEF",
            carrier="DHL",
            estimated_delivery=utcnow() - timedelta(days=3, hours=1),
        )
        mock_repository.find_orders.side_effect = [[confirmed, processing], [shipped]]

        pending = await tracking_service.get_pending_updates(admin_user)

        needs_update = pending["needs_update"]
        assert needs_update[0]["suggested_action"] == "Move to Processing"
        assert needs_update[0]["age_in_days"] == 2
        assert needs_update[1]["suggested_action"] == "Generate Tracking"
        assert pending["overdue_shipments"][0]["days_overdue"] == 3
        assert pending["overdue_shipments"][0]["carrier"] == "DHL"
        assert pending["total"] == 3
        PendingUpdatesResponse.model_validate(pending)


# ============================================================================
# Metrics Tests
# ============================================================================


class TestDeliveryMetrics:
    """Tests for delivery metrics."""

    async def test_dates_required(self, tracking_service):
        with pytest.raises(ValidationError, match="Start date and end date are required"):
            await tracking_service.get_delivery_metrics(None, utcnow())

    async def test_inverted_range(self, tracking_service):
        now = utcnow()
        with pytest.raises(ValidationError):
            await tracking_service.get_delivery_metrics(now, now - timedelta(days=1))

    async def test_metrics_shape(self, tracking_service, mock_repository):
        start = datetime(2026, 10, 1, tzinfo=timezone.utc)
        end = datetime(2026, 10, 19, tzinfo=timezone.utc)
        mock_repository.delivery_stats_by_status.return_value = [
            {"status": "delivered", "count": 4, "average_delivery_days": 3.5}
        ]
        mock_repository.on_time_delivery.return_value = {
            "total": 4,
            "on_time": 3,
            "on_time_rate": 75.0,
        }
        mock_repository.carrier_performance.return_value = []

        metrics = await tracking_service.get_delivery_metrics(start, end)

        assert metrics["period"] == {"start_date": start, "end_date": end}
        assert metrics["on_time_delivery"]["on_time_rate"] == 75.0
        mock_repository.on_time_delivery.assert_awaited_once_with(start, end)

    async def test_naive_dates_treated_as_utc(self, tracking_service, mock_repository):
        mock_repository.delivery_stats_by_status.return_value = []
        mock_repository.on_time_delivery.return_value = {
            "total": 0,
            "on_time": 0,
            "on_time_rate": 0.0,
        }
        mock_repository.carrier_performance.return_value = []
        nairobi = timezone(timedelta(hours=3))

        metrics = await tracking_service.get_delivery_metrics(
            datetime(2026, 10, 1),
            datetime(2026, 10, 19, 3, 0, tzinfo=nairobi),
        )

        start = datetime(2026, 10, 1, tzinfo=timezone.utc)
        end = datetime(2026, 10, 19, tzinfo=timezone.utc)
        assert metrics["period"] == {"start_date": start, "end_date": end}
        assert metrics["period"]["start_date"].tzinfo == timezone.utc
        mock_repository.delivery_stats_by_status.assert_awaited_once_with(start, end)
        mock_repository.carrier_performance.assert_awaited_once_with(start, end)

    async def test_naive_and_aware_dates_compared(self, tracking_service, mock_repository):
        with pytest.raises(ValidationError, match="Start date must be before end date"):
            await tracking_service.get_delivery_metrics(
                datetime(2026, 10, 19, 12, 0),
                datetime(2026, 10, 19, 13, 0, tzinfo=timezone(timedelta(hours=3))),
            )
        mock_repository.on_time_delivery.assert_not_awaited()


# ============================================================================
# Automated Update Tests
# ============================================================================


class TestAutomatedUpdates:
    """Tests for the automated status sweep."""

    async def test_sweep_advances_each_stage(
        self, tracking_service, mock_repository, mock_session, mock_audit
    ):
        paid = make_order(
            OrderStatus.PENDING,
            payment_status=PaymentStatus.COMPLETED,
            age=timedelta(hours=2),
        )
        confirmed = make_order(OrderStatus.CONFIRMED, age=timedelta(days=2))
        shipped = make_order(
            OrderStatus.SHIPPED,
            age=timedelta(days=7),
            estimated_delivery=utcnow() - timedelta(hours=1),
        )
        mock_repository.find_orders.side_effect = [[paid], [confirmed], [shipped]]

        updates = await tracking_service.process_automated_updates()

        assert [u["action"] for u in updates] == [
            "auto_confirmed",
            "moved_to_processing",
            "marked_delivered",
        ]
        assert updates[0]["order_number"] == paid.order_number
        assert paid.status == OrderStatus.CONFIRMED
        assert paid.status_history[-1].note == (
            "Order automatically confirmed after payment verification"
        )
        assert paid.status_history[-1].updated_by is None
        assert confirmed.status == OrderStatus.PROCESSING
        assert confirmed.tracking_number
        assert shipped.status == OrderStatus.DELIVERED
        assert shipped.actual_delivery is not None
        assert mock_session.begin_nested.call_count == 3
        assert mock_audit.emit_after_commit.call_count == 3
        assert mock_audit.emit_after_commit.call_args.args[0] == AuditEventType.ORDER_AUTOMATED_UPDATE

        first_query = mock_repository.find_orders.await_args_list[0]
        assert first_query.args[0] == [OrderStatus.PENDING]
        assert first_query.kwargs["payment_status"] == PaymentStatus.COMPLETED

    async def test_failed_order_is_skipped(self, tracking_service, mock_repository, mock_audit):
        # Stale state: the row moved on after it was selected
        stale = make_order(OrderStatus.DELIVERED, age=timedelta(days=2))
        confirmed = make_order(OrderStatus.CONFIRMED, age=timedelta(days=2))
        mock_repository.find_orders.side_effect = [[], [stale, confirmed], []]

        updates = await tracking_service.process_automated_updates()

        assert [u["order_id"] for u in updates] == [confirmed.id]
        assert stale.status == OrderStatus.DELIVERED
        assert mock_audit.emit_after_commit.call_count == 1

    async def test_nothing_to_do(self, tracking_service, mock_repository, mock_audit):
        mock_repository.find_orders.side_effect = [[], [], []]

        assert await tracking_service.process_automated_updates() == []
        mock_audit.emit_after_commit.assert_not_called()


# ============================================================================
# Simulation Tests
# ============================================================================


class TestSimulateShipment:
    """Tests for simulated carrier events."""

    async def test_simulated_events(self, tracking_service, mock_repository):
        shipped_at = utcnow() - timedelta(days=1)
        order = make_order(
            OrderStatus.SHIPPED,
            shipped_at=shipped_at,
            tracking_number="DHL123456ABCDEF",
            carrier="DHL",
        )
        mock_repository.get_order_by_id.return_value = order

        simulation = await tracking_service.simulate_shipment(order.id)

        events = simulation["events"]
        assert [e["status"] for e in events] == [
            "picked_up",
            "in_transit",
            "out_for_delivery",
            "estimated_delivery",
        ]
        assert events[0]["location"] == "Warehouse - Nairobi"
        assert events[0]["timestamp"] == shipped_at
        assert events[1]["location"] == "Sorting Facility - Nairobi"
        assert events[1]["timestamp"] == shipped_at + timedelta(hours=2)
        assert events[2]["location"] == "Distribution Center - Nairobi"
        assert events[3]["timestamp"] == order.estimated_delivery
        assert simulation["tracking_number"] == "DHL123456ABCDEF"

    async def test_requires_shipped_order(self, tracking_service, mock_repository):
        mock_repository.get_order_by_id.return_value = make_order(OrderStatus.PROCESSING)

        with pytest.raises(ConflictError, match="must be shipped"):
            await tracking_service.simulate_shipment(uuid.uuid4())

    async def test_unknown_order(self, tracking_service, mock_repository):
        mock_repository.get_order_by_id.return_value = None

        with pytest.raises(NotFoundError):
            await tracking_service.simulate_shipment(uuid.uuid4())
