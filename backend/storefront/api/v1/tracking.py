"""
Order tracking API endpoints.

Dashboard, worklists, delivery metrics, bulk and automated status updates,
per-order tracking views and the public tracking-number lookup. The
catch-all ``/{tracking_number}`` route is registered last so it never
shadows the fixed paths.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Query, Request

from storefront.api.deps import (
    CurrentAdmin,
    CurrentStaff,
    CurrentUser,
    OrderServiceDep,
    TrackingServiceDep,
)
from storefront.core.config import get_settings
from storefront.core.logging import get_logger
from storefront.core.rate_limit import limiter
from storefront.schemas.common import ApiResponse
from storefront.schemas.orders import OrderResponse, OrderStatusUpdateRequest
from storefront.schemas.tracking import (
    AutomatedUpdate,
    BulkStatusUpdateRequest,
    BulkStatusUpdateResponse,
    DashboardResponse,
    DeliveryMetricsResponse,
    OrderTrackingResponse,
    PendingUpdatesResponse,
    SimulatedTrackingResponse,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/tracking", tags=["Tracking"])


@router.get(
    "/dashboard",
    response_model=ApiResponse[DashboardResponse],
    summary="Order tracking dashboard",
)
async def get_dashboard(
    current_user: CurrentStaff,
    service: TrackingServiceDep,
) -> ApiResponse[DashboardResponse]:
    """Status counts, stale and overdue orders and today's totals for the caller."""
    dashboard = await service.get_dashboard(current_user)
    return ApiResponse(data=DashboardResponse.model_validate(dashboard, from_attributes=True))


@router.get(
    "/pending-updates",
    response_model=ApiResponse[PendingUpdatesResponse],
    summary="Orders needing a status update",
)
async def get_pending_updates(
    current_user: CurrentStaff,
    service: TrackingServiceDep,
) -> ApiResponse[PendingUpdatesResponse]:
    pending = await service.get_pending_updates(current_user)
    return ApiResponse(data=PendingUpdatesResponse.model_validate(pending))


@router.get(
    "/metrics",
    response_model=ApiResponse[DeliveryMetricsResponse],
    summary="Delivery performance metrics",
)
async def get_delivery_metrics(
    current_user: CurrentAdmin,
    service: TrackingServiceDep,
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
) -> ApiResponse[DeliveryMetricsResponse]:
    metrics = await service.get_delivery_metrics(start_date, end_date)
    return ApiResponse(data=DeliveryMetricsResponse.model_validate(metrics))


@router.post(
    "/automated-updates",
    response_model=ApiResponse[list[AutomatedUpdate]],
    summary="Run the automated status sweep",
)
async def run_automated_updates(
    current_user: CurrentAdmin,
    service: TrackingServiceDep,
) -> ApiResponse[list[AutomatedUpdate]]:
    logger.info("Automated status sweep triggered", user_id=str(current_user.id))
    updates = await service.process_automated_updates()
    return ApiResponse(
        data=[AutomatedUpdate.model_validate(update) for update in updates],
        message=f"Processed {len(updates)} automated updates",
    )


@router.patch(
    "/orders/bulk-status",
    response_model=ApiResponse[BulkStatusUpdateResponse],
    summary="Update the status of many orders",
)
async def bulk_update_status(
    payload: BulkStatusUpdateRequest,
    current_user: CurrentAdmin,
    service: OrderServiceDep,
) -> ApiResponse[BulkStatusUpdateResponse]:
    """
    Apply one status to every listed order.

    Orders are updated independently; failures are reported per order and
    do not abort the batch.
    """
    outcome = await service.bulk_update_status(
        payload.order_ids,
        payload.status,
        current_user,
        note=payload.note,
        carrier=payload.carrier,
    )
    summary = outcome["summary"]
    return ApiResponse(
        data=BulkStatusUpdateResponse.model_validate(outcome),
        message=f"Updated {summary['success']} orders, {summary['failed']} failed",
    )


@router.get(
    "/order/{order_id}",
    response_model=ApiResponse[OrderTrackingResponse],
    summary="Tracking view of an order",
)
async def get_order_tracking(
    order_id: UUID,
    current_user: CurrentUser,
    service: TrackingServiceDep,
) -> ApiResponse[OrderTrackingResponse]:
    tracking = await service.get_order_tracking(order_id, current_user)
    return ApiResponse(data=OrderTrackingResponse.model_validate(tracking))


@router.patch(
    "/order/{order_id}/status",
    response_model=ApiResponse[OrderResponse],
    summary="Update order status from the tracking console",
)
async def update_tracking_status(
    order_id: UUID,
    payload: OrderStatusUpdateRequest,
    current_user: CurrentStaff,
    service: OrderServiceDep,
) -> ApiResponse[OrderResponse]:
    order, changed = await service.update_status(order_id, payload, current_user)
    message = (
        "Order status updated successfully"
        if changed
        else f"Order is already {payload.status.value}"
    )
    return ApiResponse(data=OrderResponse.model_validate(order), message=message)


@router.get(
    "/order/{order_id}/simulate",
    response_model=ApiResponse[SimulatedTrackingResponse],
    summary="Simulated carrier events for a shipped order",
)
async def simulate_tracking(
    order_id: UUID,
    current_user: CurrentAdmin,
    service: TrackingServiceDep,
) -> ApiResponse[SimulatedTrackingResponse]:
    simulation = await service.simulate_shipment(order_id)
    return ApiResponse(
        data=SimulatedTrackingResponse.model_validate(simulation),
        message="Simulated tracking events generated",
    )


@router.get(
    "/{tracking_number}",
    response_model=ApiResponse[OrderTrackingResponse],
    summary="Public tracking lookup",
)
@limiter.limit(get_settings().public_lookup_rate_limit)
async def track_by_number(
    request: Request,
    tracking_number: str,
    service: TrackingServiceDep,
) -> ApiResponse[OrderTrackingResponse]:
    tracking = await service.track_by_number(tracking_number)
    return ApiResponse(data=OrderTrackingResponse.model_validate(tracking))
