"""
Order API endpoints.

Checkout, order reads and listing, status changes, payment outcomes and
refund submission and review. Domain errors raised by OrderService
propagate to the application exception handlers, which render the standard
error envelope.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Query, Request, status

from storefront.api.deps import CurrentAdmin, CurrentStaff, CurrentUser, OrderServiceDep
from storefront.core.config import get_settings
from storefront.core.logging import get_logger
from storefront.core.rate_limit import limiter
from storefront.schemas.common import ApiResponse, Pagination
from storefront.schemas.orders import (
    OrderCreateRequest,
    OrderResponse,
    OrderStatusUpdateRequest,
    PaymentStatusUpdateRequest,
    RefundRequest,
    RefundReviewRequest,
)
from storefront.services.orders.enums import OrderStatus, RefundStatus

logger = get_logger(__name__)

router = APIRouter(prefix="/orders", tags=["Orders"])


@router.post(
    "",
    response_model=ApiResponse[OrderResponse],
    status_code=status.HTTP_201_CREATED,
    summary="Create order",
)
async def create_order(
    request: Request,
    payload: OrderCreateRequest,
    current_user: CurrentUser,
    service: OrderServiceDep,
) -> ApiResponse[OrderResponse]:
    """
    Place an order from the submitted items.

    Stock for every line is taken atomically with the order insert; if any
    line cannot be fulfilled nothing is written.
    """
    logger.info(
        "Creating order",
        user_id=str(current_user.id),
        item_count=len(payload.items),
    )
    order = await service.create_order(
        current_user,
        payload,
        customer_ip=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    return ApiResponse(
        data=OrderResponse.model_validate(order),
        message="Order created successfully",
    )


@router.get(
    "",
    response_model=ApiResponse[list[OrderResponse]],
    summary="List orders",
)
async def list_orders(
    current_user: CurrentAdmin,
    service: OrderServiceDep,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status_filter: Optional[OrderStatus] = Query(None, alias="status"),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
) -> ApiResponse[list[OrderResponse]]:
    orders, total = await service.list_orders(
        status=status_filter,
        start_date=start_date,
        end_date=end_date,
        page=page,
        limit=limit,
    )
    return ApiResponse(
        data=[OrderResponse.model_validate(order) for order in orders],
        pagination=Pagination.build(page, limit, total),
    )


@router.get(
    "/number/{order_number}",
    response_model=ApiResponse[OrderResponse],
    summary="Look up order by order number",
)
@limiter.limit(get_settings().public_lookup_rate_limit)
async def get_order_by_number(
    request: Request,
    order_number: str,
    service: OrderServiceDep,
) -> ApiResponse[OrderResponse]:
    order = await service.get_order_by_number(order_number)
    return ApiResponse(data=OrderResponse.model_validate(order))


@router.get(
    "/{order_id}",
    response_model=ApiResponse[OrderResponse],
    summary="Get order",
)
async def get_order(
    order_id: UUID,
    current_user: CurrentUser,
    service: OrderServiceDep,
) -> ApiResponse[OrderResponse]:
    order = await service.get_order(order_id, current_user)
    return ApiResponse(data=OrderResponse.model_validate(order))


@router.patch(
    "/{order_id}/status",
    response_model=ApiResponse[OrderResponse],
    summary="Update order status",
)
async def update_order_status(
    order_id: UUID,
    payload: OrderStatusUpdateRequest,
    current_user: CurrentStaff,
    service: OrderServiceDep,
) -> ApiResponse[OrderResponse]:
    """
    Move an order to a new status.

    Admins may update any order; sellers only orders containing their items.
    Re-submitting the current status changes nothing.
    """
    order, changed = await service.update_status(order_id, payload, current_user)
    message = (
        "Order status updated successfully"
        if changed
        else f"Order is already {payload.status.value}"
    )
    return ApiResponse(data=OrderResponse.model_validate(order), message=message)


@router.patch(
    "/{order_id}/payment",
    response_model=ApiResponse[OrderResponse],
    summary="Record payment outcome",
)
async def update_payment_status(
    order_id: UUID,
    payload: PaymentStatusUpdateRequest,
    current_user: CurrentAdmin,
    service: OrderServiceDep,
) -> ApiResponse[OrderResponse]:
    """
    Record a payment result from staff or a payment provider callback.

    Refunded payment states are set only by refund review.
    """
    order, changed = await service.update_payment_status(order_id, payload, current_user)
    message = (
        "Payment status updated successfully"
        if changed
        else f"Payment is already {payload.payment_status.value}"
    )
    return ApiResponse(data=OrderResponse.model_validate(order), message=message)


@router.post(
    "/{order_id}/refund",
    response_model=ApiResponse[OrderResponse],
    status_code=status.HTTP_201_CREATED,
    summary="Submit refund request",
)
async def submit_refund(
    order_id: UUID,
    payload: RefundRequest,
    current_user: CurrentAdmin,
    service: OrderServiceDep,
) -> ApiResponse[OrderResponse]:
    order, refund = await service.submit_refund(order_id, payload, current_user)
    return ApiResponse(
        data=OrderResponse.model_validate(order),
        message=f"Refund request {refund.id} submitted",
    )


@router.patch(
    "/{order_id}/refunds/{refund_id}",
    response_model=ApiResponse[OrderResponse],
    summary="Approve or reject a refund request",
)
async def review_refund(
    order_id: UUID,
    refund_id: UUID,
    payload: RefundReviewRequest,
    current_user: CurrentAdmin,
    service: OrderServiceDep,
) -> ApiResponse[OrderResponse]:
    order, refund = await service.review_refund(order_id, refund_id, payload, current_user)
    return ApiResponse(
        data=OrderResponse.model_validate(order),
        message=f"Refund {RefundStatus(refund.status).value}",
    )
