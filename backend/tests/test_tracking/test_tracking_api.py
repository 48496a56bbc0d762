"""
Tests for the tracking API endpoints.
"""

import uuid
from unittest.mock import AsyncMock, MagicMock

from conftest import authenticate_as, make_order, make_user
from storefront.core.errors import NotFoundError, ValidationError
from storefront.database.models import UserRole
from storefront.services.orders.enums import OrderStatus
from storefront.services.tracking.service import OrderTrackingService

TODAY = {"total_orders": 0, "total_revenue": 0.0, "delivered": 0, "shipped": 0}


def tracking_view(order):
    service = OrderTrackingService(AsyncMock(), audit=MagicMock())
    return service.build_tracking_view(order)


class TestDashboardEndpoints:
    """Tests for dashboard and worklist routes."""

    def test_dashboard_not_shadowed_by_tracking_lookup(
        self, test_client, api_tracking_service
    ):
        authenticate_as(make_user(UserRole.ADMIN))
        api_tracking_service.get_dashboard.return_value = {
            "status_counts": {status.value: 0 for status in OrderStatus},
            "pending_orders": [make_order(OrderStatus.PENDING)],
            "overdue_deliveries": [],
            "today_stats": TODAY,
        }

        response = test_client.get("/api/tracking/dashboard")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["status_counts"]["pending"] == 0
        assert data["pending_orders"][0]["status"] == "pending"
        api_tracking_service.track_by_number.assert_not_awaited()

    def test_dashboard_forbidden_for_customers(self, test_client):
        authenticate_as(make_user(UserRole.CUSTOMER))

        response = test_client.get("/api/tracking/dashboard")

        assert response.status_code == 403

    def test_pending_updates(self, test_client, api_tracking_service):
        authenticate_as(make_user(UserRole.SELLER))
        api_tracking_service.get_pending_updates.return_value = {
            "needs_update": [],
            "overdue_shipments": [],
            "total": 0,
        }

        response = test_client.get("/api/tracking/pending-updates")

        assert response.status_code == 200
        assert response.json()["data"]["total"] == 0

    def test_metrics_requires_dates(self, test_client, api_tracking_service):
        authenticate_as(make_user(UserRole.ADMIN))
        api_tracking_service.get_delivery_metrics.side_effect = ValidationError(
            "Start date and end date are required"
        )

        response = test_client.get("/api/tracking/metrics")

        assert response.status_code == 400
        assert response.json()["message"] == "Start date and end date are required"
        api_tracking_service.get_delivery_metrics.assert_awaited_once_with(None, None)

    def test_metrics_admin_only(self, test_client):
        authenticate_as(make_user(UserRole.SELLER))

        response = test_client.get(
            "/api/tracking/metrics?startDate=2026-10-01T00:00:00Z&endDate=2026-10-19T00:00:00Z"
        )

        assert response.status_code == 403


class TestStatusUpdateEndpoints:
    """Tests for bulk and automated status updates."""

    def test_bulk_update_message(self, test_client, api_order_service):
        admin = make_user(UserRole.ADMIN)
        authenticate_as(admin)
        first, second = str(uuid.uuid4()), str(uuid.uuid4())
        api_order_service.bulk_update_status.return_value = {
            "results": [
                {
                    "order_id": first,
                    "success": True,
                    "result": {"order_number": "ORD1", "status": "shipped", "changed": True},
                },
                {"order_id": second, "success": False, "error": "Order not found"},
            ],
            "summary": {"total": 2, "success": 1, "failed": 1},
        }

        response = test_client.patch(
            "/api/tracking/orders/bulk-status",
            json={"orderIds": [first, second], "status": "shipped", "carrier": "DHL"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Updated 1 orders, 1 failed"
        assert body["data"]["results"][1]["error"] == "Order not found"
        api_order_service.bulk_update_status.assert_awaited_once_with(
            [first, second], "shipped", admin, note=None, carrier="DHL"
        )

    def test_bulk_update_admin_only(self, test_client):
        authenticate_as(make_user(UserRole.SELLER))

        response = test_client.patch(
            "/api/tracking/orders/bulk-status",
            json={"orderIds": [str(uuid.uuid4())], "status": "shipped"},
        )

        assert response.status_code == 403

    def test_automated_updates(self, test_client, api_tracking_service):
        authenticate_as(make_user(UserRole.ADMIN))
        order_id = uuid.uuid4()
        api_tracking_service.process_automated_updates.return_value = [
            {"order_id": order_id, "order_number": "ORD1", "action": "auto_confirmed"}
        ]

        response = test_client.post("/api/tracking/automated-updates")

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Processed 1 automated updates"
        assert body["data"][0]["order_id"] == str(order_id)

    def test_tracking_status_update(self, test_client, api_order_service):
        authenticate_as(make_user(UserRole.ADMIN))
        order = make_order(OrderStatus.SHIPPED, carrier="DHL")
        api_order_service.update_status.return_value = (order, True)

        response = test_client.patch(
            f"/api/tracking/order/{order.id}/status",
            json={"status": "shipped", "carrier": "DHL"},
        )

        assert response.status_code == 200
        assert response.json()["data"]["tracking_info"]["carrier"] == "DHL"


class TestTrackingLookupEndpoints:
    """Tests for tracking views."""

    def test_order_tracking_view(self, test_client, api_tracking_service):
        user = make_user(UserRole.CUSTOMER)
        authenticate_as(user)
        order = make_order(user=user)
        api_tracking_service.get_order_tracking.return_value = tracking_view(order)

        response = test_client.get(f"/api/tracking/order/{order.id}")

        assert response.status_code == 200
        assert response.json()["data"]["tracking"]["progress"] == 20

    def test_public_tracking_lookup(self, test_client, api_tracking_service):
        order = make_order(OrderStatus.SHIPPED, tracking_number="DHL123456ABCDEF", carrier="DHL")
        api_tracking_service.track_by_number.return_value = tracking_view(order)

        response = test_client.get("/api/tracking/DHL123456ABCDEF")

        assert response.status_code == 200
        tracking = response.json()["data"]["tracking"]
        assert tracking["tracking_number"] == "DHL123456ABCDEF"
        assert tracking["progress"] == 80
        api_tracking_service.track_by_number.assert_awaited_once_with("DHL123456ABCDEF")

    def test_unknown_tracking_number(self, test_client, api_tracking_service):
        api_tracking_service.track_by_number.side_effect = NotFoundError(
            "Tracking number not found"
        )

        response = test_client.get("/api/tracking/NOPE")

        assert response.status_code == 404
        assert response.json()["message"] == "Tracking number not found"

    def test_simulate_admin_only(self, test_client):
        authenticate_as(make_user(UserRole.CUSTOMER))

        response = test_client.get(f"/api/tracking/order/{uuid.uuid4()}/simulate")

        assert response.status_code == 403
