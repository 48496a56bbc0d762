"""
Pytest configuration and shared test fixtures.

Settings are forced into the test environment before the application is
imported. Factories build fully populated in-memory ORM objects so services
and response schemas can be exercised without a database.
"""

import os

os.environ.setdefault("APP_ENVIRONMENT", "test")
os.environ.setdefault("APP_SECRET_KEY", "test-secret-key-for-storefront-orders-0123456789")

import uuid
from contextlib import asynccontextmanager
from datetime import timedelta
from decimal import Decimal
from typing import Any, Generator, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.api.deps import get_current_user, get_order_service, get_tracking_service
from storefront.database.base import utcnow
from storefront.database.connection import get_db
from storefront.database.models import (
    Order,
    OrderItem,
    OrderRefund,
    OrderStatusHistory,
    Product,
    ProductStatus,
    ProductVariant,
    User,
    UserRole,
)
from storefront.main import app
from storefront.services.audit.emitter import AuditEventEmitter, get_audit_emitter
from storefront.services.orders.enums import (
    OrderPriority,
    OrderSource,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    RefundStatus,
    ShippingMethod,
)
from storefront.services.orders.repository import OrderRepository
from storefront.services.orders.service import OrderService
from storefront.services.tracking.service import OrderTrackingService


# ============================================================================
# Factories
# ============================================================================


def make_user(role: UserRole = UserRole.CUSTOMER, **overrides: Any) -> User:
    values = {
        "id": uuid.uuid4(),
        "email": f"{role.value}-{uuid.uuid4().hex[:8]}@example.com",
        "name": f"Test {role.value.title()}",
        "role": role,
        "is_active": True,
        "locked_until": None,
    }
    values.update(overrides)
    return User(**values)


def make_product(
    price: str = "1000.00",
    stock: int = 10,
    discount: str = "0",
    status: ProductStatus = ProductStatus.ACTIVE,
    variants: Optional[list[ProductVariant]] = None,
    **overrides: Any,
) -> Product:
    values = {
        "id": uuid.uuid4(),
        "name": "Canvas Tote",
        "sku": f"SKU-{uuid.uuid4().hex[:6]}",
        "price": Decimal(price),
        "discount": Decimal(discount),
        "stock": stock,
        "status": status,
        "seller_id": uuid.uuid4(),
        "image_url": "https://cdn.example.com/tote.jpg",
        "variants": variants or [],
    }
    values.update(overrides)
    return Product(**values)


def make_variant(
    size: Optional[str] = "M",
    color: Optional[str] = "red",
    price: Optional[str] = None,
    stock: int = 5,
) -> ProductVariant:
    return ProductVariant(
        id=uuid.uuid4(),
        size=size,
        color=color,
        material=None,
        price=Decimal(price) if price is not None else None,
        stock=stock,
        sku=f"VAR-{uuid.uuid4().hex[:6]}",
    )


def make_order(
    status: OrderStatus = OrderStatus.PENDING,
    payment_status: PaymentStatus = PaymentStatus.PENDING,
    user: Optional[User] = None,
    seller_id: Optional[uuid.UUID] = None,
    subtotal: str = "1000.00",
    age: timedelta = timedelta(0),
    **overrides: Any,
) -> Order:
    created_at = utcnow() - age
    order_id = overrides.pop("id", uuid.uuid4())
    subtotal_amount = Decimal(subtotal)
    tax = (subtotal_amount * Decimal("0.16")).quantize(Decimal("0.01"))
    shipping = Decimal("300.00")

    item = OrderItem(
        id=uuid.uuid4(),
        order_id=order_id,
        product_id=uuid.uuid4(),
        variant_id=None,
        name="Canvas Tote",
        price=subtotal_amount,
        quantity=1,
        variant=None,
        sku="SKU-1",
        image={"url": "https://cdn.example.com/tote.jpg", "alt": "Canvas Tote"},
        seller_id=seller_id,
        created_at=created_at,
        updated_at=created_at,
    )
    history = OrderStatusHistory(
        id=uuid.uuid4(),
        order_id=order_id,
        status=OrderStatus.PENDING,
        note="Order created",
        updated_by=None,
        created_at=created_at,
    )

    values = {
        "id": order_id,
        "order_number": f"ORD{int(created_at.timestamp() * 1000)}0001",
        "user_id": (user.id if user else uuid.uuid4()),
        "subtotal": subtotal_amount,
        "tax_amount": tax,
        "shipping_amount": shipping,
        "discount_amount": Decimal("0.00"),
        "total_amount": subtotal_amount + tax + shipping,
        "currency": "KES",
        "coupon_code": None,
        "payment_method": PaymentMethod.MPESA,
        "payment_status": payment_status,
        "payment_details": {},
        "status": status,
        "status_changed_at": created_at,
        "shipping_address": {
            "name": "Jane Wanjiku",
            "street": "12 Moi Avenue",
            "city": "Nairobi",
            "county": "Nairobi",
            "postal_code": "00100",
            "phone": "+254700000000",
            "email": "jane@example.com",
        },
        "billing_address": {
            "name": "Jane Wanjiku",
            "street": "12 Moi Avenue",
            "city": "Nairobi",
            "county": "Nairobi",
            "postal_code": "00100",
            "phone": "+254700000000",
            "email": "jane@example.com",
        },
        "shipping_method": ShippingMethod.STANDARD,
        "delivery_instructions": None,
        "notes": None,
        "admin_notes": None,
        "priority": OrderPriority.NORMAL,
        "source": OrderSource.WEB,
        "is_gift": False,
        "gift_message": None,
        "customer_ip": None,
        "user_agent": None,
        "tracking_number": None,
        "carrier": None,
        "tracking_url": None,
        "shipped_at": None,
        "estimated_delivery": created_at + timedelta(days=5),
        "actual_delivery": None,
        "items": [item],
        "status_history": [history],
        "refunds": [],
        "created_at": created_at,
        "updated_at": created_at,
    }
    values.update(overrides)
    return Order(**values)


def make_refund(order: Order, amount: str, status: RefundStatus = RefundStatus.PENDING) -> OrderRefund:
    now = utcnow()
    return OrderRefund(
        id=uuid.uuid4(),
        order_id=order.id,
        amount=Decimal(amount),
        reason="Damaged on arrival",
        status=status,
        requested_by=None,
        processed_by=None,
        processed_at=None,
        refund_reference=None,
        review_note=None,
        created_at=now,
        updated_at=now,
    )


def address_payload(county: str = "Nairobi") -> dict[str, Any]:
    return {
        "name": "Jane Wanjiku",
        "street": "12 Moi Avenue",
        "city": "Nairobi",
        "county": county,
        "postal_code": "00100",
        "phone": "+254700000000",
        "email": "jane@example.com",
    }


# ============================================================================
# Service Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def reset_audit_emitter() -> Generator[None, None, None]:
    """Give every test a fresh process-wide emitter bound to its own loop."""
    get_audit_emitter.cache_clear()
    yield
    get_audit_emitter.cache_clear()


@pytest.fixture
def mock_session() -> AsyncMock:
    """
    Mock async session whose savepoints behave like real ones: an exception
    inside ``begin_nested()`` propagates to the caller.
    """
    session = AsyncMock(spec=AsyncSession)

    @asynccontextmanager
    async def savepoint():
        yield

    session.begin_nested = MagicMock(side_effect=lambda: savepoint())
    return session


@pytest.fixture
def mock_audit() -> MagicMock:
    return MagicMock(spec=AuditEventEmitter)


@pytest.fixture
def mock_repository() -> AsyncMock:
    return AsyncMock(spec=OrderRepository)


@pytest.fixture
def order_service(
    mock_session: AsyncMock,
    mock_audit: MagicMock,
    mock_repository: AsyncMock,
) -> OrderService:
    """OrderService wired to a mocked repository."""
    service = OrderService(mock_session, audit=mock_audit)
    service.repository = mock_repository
    service.state_machine.repository = mock_repository
    return service


@pytest.fixture
def tracking_service(
    mock_session: AsyncMock,
    mock_audit: MagicMock,
    mock_repository: AsyncMock,
) -> OrderTrackingService:
    service = OrderTrackingService(mock_session, audit=mock_audit)
    service.repository = mock_repository
    service.state_machine.repository = mock_repository
    return service


@pytest.fixture
def admin_user() -> User:
    return make_user(UserRole.ADMIN)


@pytest.fixture
def seller_user() -> User:
    return make_user(UserRole.SELLER)


@pytest.fixture
def customer_user() -> User:
    return make_user(UserRole.CUSTOMER)


# ============================================================================
# API Fixtures
# ============================================================================


@pytest.fixture
def api_order_service() -> AsyncMock:
    return AsyncMock(spec=OrderService)


@pytest.fixture
def api_tracking_service() -> AsyncMock:
    return AsyncMock(spec=OrderTrackingService)


@pytest.fixture
def db_session() -> AsyncMock:
    return AsyncMock(spec=AsyncSession)


@pytest.fixture
def test_client(
    api_order_service: AsyncMock,
    api_tracking_service: AsyncMock,
    db_session: AsyncMock,
) -> Generator[TestClient, None, None]:
    """
    Test client with services and the database session replaced by mocks.

    Authentication still runs for real unless a test installs an override
    with ``authenticate_as``.
    """

    async def override_db():
        yield db_session

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_order_service] = lambda: api_order_service
    app.dependency_overrides[get_tracking_service] = lambda: api_tracking_service

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()


def authenticate_as(user: User) -> None:
    """Make every request in the current test run as ``user``."""
    app.dependency_overrides[get_current_user] = lambda: user
