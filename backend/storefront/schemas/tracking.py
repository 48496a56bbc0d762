"""
Tracking, dashboard and workflow schemas.
"""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from storefront.schemas.orders import OrderSummaryResponse


class BulkStatusUpdateRequest(BaseModel):
    """Apply one status to many orders."""

    model_config = ConfigDict(populate_by_name=True)

    order_ids: list[str] = Field(
        default_factory=list,
        max_length=500,
        validation_alias=AliasChoices("order_ids", "orderIds"),
        description="Orders to update",
    )
    status: Optional[str] = Field(None, description="Target status for every order")
    note: Optional[str] = Field(None, max_length=500)
    carrier: Optional[str] = Field(None, max_length=100)


class BulkStatusResult(BaseModel):
    order_id: str
    success: bool
    result: Optional[dict[str, Any]] = None
    error: Optional[str] = None


class BulkStatusSummary(BaseModel):
    total: int
    success: int
    failed: int


class BulkStatusUpdateResponse(BaseModel):
    results: list[BulkStatusResult]
    summary: BulkStatusSummary


class TrackingEvent(BaseModel):
    status: str
    timestamp: datetime
    note: Optional[str] = None
    description: str
    location: str
    is_completed: bool = True


class TrackingDetails(BaseModel):
    tracking_number: Optional[str] = None
    carrier: Optional[str] = None
    tracking_url: Optional[str] = None
    shipped_date: Optional[datetime] = None
    estimated_delivery: Optional[datetime] = None
    actual_delivery: Optional[datetime] = None
    current_status: str
    progress: int = Field(..., ge=0, le=100)
    events: list[TrackingEvent]


class TrackingOrderSummary(BaseModel):
    id: UUID
    order_number: str
    status: str
    created_at: datetime
    total_amount: float


class TrackingShipping(BaseModel):
    address: dict[str, Any]
    method: str


class TrackingItem(BaseModel):
    name: str
    quantity: int
    price: float
    image: Optional[dict[str, Any]] = None


class OrderTrackingResponse(BaseModel):
    """Customer-facing tracking view of one order."""

    order: TrackingOrderSummary
    tracking: TrackingDetails
    shipping: TrackingShipping
    items: list[TrackingItem]


class TodayStats(BaseModel):
    total_orders: int
    total_revenue: float
    delivered: int
    shipped: int


class DashboardResponse(BaseModel):
    status_counts: dict[str, int]
    pending_orders: list[OrderSummaryResponse]
    overdue_deliveries: list[OrderSummaryResponse]
    today_stats: TodayStats


class PendingUpdateItem(BaseModel):
    id: UUID
    order_number: str
    status: str
    created_at: datetime
    age_in_days: int
    suggested_action: str


class OverdueShipment(BaseModel):
    id: UUID
    order_number: str
    tracking_number: Optional[str] = None
    carrier: Optional[str] = None
    estimated_delivery: datetime
    days_overdue: int


class PendingUpdatesResponse(BaseModel):
    needs_update: list[PendingUpdateItem]
    overdue_shipments: list[OverdueShipment]
    total: int


class MetricsPeriod(BaseModel):
    start_date: datetime
    end_date: datetime


class DeliveryStatusStat(BaseModel):
    status: str
    count: int
    average_delivery_days: Optional[float] = None


class OnTimeStats(BaseModel):
    total: int
    on_time: int
    on_time_rate: float


class CarrierStat(BaseModel):
    carrier: str
    deliveries: int
    average_delivery_days: Optional[float] = None
    on_time_rate: float


class DeliveryMetricsResponse(BaseModel):
    period: MetricsPeriod
    delivery_stats: list[DeliveryStatusStat]
    on_time_delivery: OnTimeStats
    carrier_performance: list[CarrierStat]


class AutomatedUpdate(BaseModel):
    order_id: UUID
    order_number: str
    action: str


class SimulatedEvent(BaseModel):
    status: str
    location: str
    description: str
    timestamp: datetime


class SimulatedTrackingResponse(BaseModel):
    order_number: str
    tracking_number: Optional[str] = None
    carrier: Optional[str] = None
    events: list[SimulatedEvent]
