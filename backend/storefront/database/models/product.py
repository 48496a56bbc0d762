"""
Product catalog models.

The catalog is maintained elsewhere; orders read live prices, discounts and
status from it and decrement stock atomically. ``stock >= 0`` is enforced
by a check constraint as a last line against overselling.
"""

import enum
import uuid
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storefront.database.base import BaseModel

VARIANT_ATTRIBUTES = ("size", "color", "material")


class ProductStatus(str, enum.Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    INACTIVE = "inactive"
    OUT_OF_STOCK = "out_of_stock"


class Product(BaseModel):
    """
    Sellable catalog product.

    Attributes:
        name: Product name
        sku: Stock keeping unit
        price: Base unit price
        discount: Percentage discount (0-100) applied to the base price
        stock: Units available when the product has no matching variant
        status: Catalog status; only active products can be ordered
        seller_id: Owning seller account
    """

    __tablename__ = "products"

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    sku: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, unique=True)

    price: Mapped[Decimal] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=False,
        comment="Base unit price",
    )

    discount: Mapped[Decimal] = mapped_column(
        Numeric(precision=5, scale=2),
        nullable=False,
        default=Decimal("0"),
        comment="Percentage discount",
    )

    stock: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Units in stock",
    )

    status: Mapped[ProductStatus] = mapped_column(
        SQLEnum(
            ProductStatus,
            name="product_status",
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        default=ProductStatus.DRAFT,
    )

    seller_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    image_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    variants: Mapped[list["ProductVariant"]] = relationship(
        "ProductVariant",
        back_populates="product",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_products_status", "status"),
        CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
        CheckConstraint("price >= 0", name="ck_products_price_non_negative"),
        CheckConstraint(
            "discount >= 0 AND discount <= 100",
            name="ck_products_discount_range",
        ),
        {"comment": "Catalog products"},
    )

    @property
    def is_available(self) -> bool:
        return self.status == ProductStatus.ACTIVE

    def find_variant(self, selection: Optional[dict]) -> Optional["ProductVariant"]:
        """
        Return the variant matching every attribute given in ``selection``.

        Attributes absent from the selection are not compared. Returns None
        when nothing was selected or no variant matches.
        """
        if not selection:
            return None
        wanted = {
            key: selection.get(key)
            for key in VARIANT_ATTRIBUTES
            if selection.get(key) is not None
        }
        if not wanted:
            return None
        for variant in self.variants:
            if all(getattr(variant, key) == value for key, value in wanted.items()):
                return variant
        return None


class ProductVariant(BaseModel):
    """Size/color/material variant with its own stock and optional price."""

    __tablename__ = "product_variants"

    product_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    size: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    color: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    material: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    price: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(precision=12, scale=2),
        nullable=True,
        comment="Overrides the product price when set",
    )

    stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    sku: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    product: Mapped["Product"] = relationship("Product", back_populates="variants")

    __table_args__ = (
        CheckConstraint("stock >= 0", name="ck_product_variants_stock_non_negative"),
        {"comment": "Product variants"},
    )
