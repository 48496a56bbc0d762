"""
Order pricing calculations.

Computes unit prices from catalog data and the order-level breakdown:
subtotal, tax, shipping tier, coupon discount and total. All amounts are
Decimals rounded half-up to two places; the tax rate, shipping fees and
coupon table come from application settings and apply store-wide.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from storefront.core.config import Settings, get_settings
from storefront.core.logging import get_logger
from storefront.services.orders.enums import ShippingMethod

logger = get_logger(__name__)

TWO_PLACES = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")


def quantize_money(value: Decimal | int | float | str) -> Decimal:
    """Round a monetary amount half-up to two decimal places."""
    return Decimal(str(value)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PricingBreakdown:
    subtotal: Decimal
    tax_amount: Decimal
    shipping_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    coupon_code: Optional[str] = None

    def as_dict(self) -> dict[str, float]:
        return {
            "subtotal": float(self.subtotal),
            "tax": float(self.tax_amount),
            "shipping": float(self.shipping_amount),
            "discount": float(self.discount_amount),
            "total": float(self.total_amount),
        }


class OrderPricing:
    """
    Store-wide order pricing rules.

    Example:
        >>> pricing = OrderPricing()
        >>> breakdown = pricing.price_order([(Decimal("1000"), 1)], ShippingMethod.STANDARD)
        >>> breakdown.total_amount
        Decimal('1460.00')
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def resolve_unit_price(
        self,
        base_price: Decimal,
        discount_percent: Optional[Decimal] = None,
        variant_price: Optional[Decimal] = None,
    ) -> Decimal:
        """
        Unit price for a line.

        A matched variant's own price takes precedence; otherwise the base
        price is reduced by the product's percentage discount.
        """
        if variant_price is not None:
            return quantize_money(variant_price)

        price = Decimal(base_price)
        if discount_percent and discount_percent > 0:
            price = price * (HUNDRED - Decimal(discount_percent)) / HUNDRED
        return quantize_money(price)

    def calculate_subtotal(self, lines: Iterable[tuple[Decimal, int]]) -> Decimal:
        return quantize_money(
            sum((Decimal(price) * quantity for price, quantity in lines), ZERO)
        )

    def calculate_tax(self, subtotal: Decimal) -> Decimal:
        return quantize_money(subtotal * self.settings.tax_rate)

    def calculate_shipping(
        self, subtotal: Decimal, shipping_method: ShippingMethod | str
    ) -> Decimal:
        """
        Shipping fee for the method and subtotal.

        Express and overnight are flat fees; pickup is free; standard is
        free at or above the threshold.
        """
        method = ShippingMethod(shipping_method)
        if method == ShippingMethod.EXPRESS:
            fee = self.settings.express_shipping_fee
        elif method == ShippingMethod.OVERNIGHT:
            fee = self.settings.overnight_shipping_fee
        elif method == ShippingMethod.PICKUP:
            fee = ZERO
        elif subtotal < self.settings.free_shipping_threshold:
            fee = self.settings.standard_shipping_fee
        else:
            fee = ZERO
        return quantize_money(fee)

    def normalize_coupon(self, coupon_code: Optional[str]) -> Optional[str]:
        if not coupon_code or not coupon_code.strip():
            return None
        return coupon_code.strip().upper()

    def calculate_discount(self, subtotal: Decimal, coupon_code: Optional[str]) -> Decimal:
        """Coupon discount; unknown or empty codes give zero."""
        code = self.normalize_coupon(coupon_code)
        if code is None:
            return ZERO

        percent = self.settings.coupon_rules.get(code)
        if percent is None:
            logger.info("Unknown coupon code ignored", coupon_code=code)
            return ZERO

        return quantize_money(subtotal * Decimal(percent) / HUNDRED)

    def price_order(
        self,
        lines: Iterable[tuple[Decimal, int]],
        shipping_method: ShippingMethod | str = ShippingMethod.STANDARD,
        coupon_code: Optional[str] = None,
    ) -> PricingBreakdown:
        """
        Full pricing breakdown for (unit_price, quantity) lines.

        total = subtotal + tax + shipping - discount
        """
        subtotal = self.calculate_subtotal(lines)
        tax_amount = self.calculate_tax(subtotal)
        shipping_amount = self.calculate_shipping(subtotal, shipping_method)
        discount_amount = self.calculate_discount(subtotal, coupon_code)
        total_amount = subtotal + tax_amount + shipping_amount - discount_amount

        return PricingBreakdown(
            subtotal=subtotal,
            tax_amount=tax_amount,
            shipping_amount=shipping_amount,
            discount_amount=discount_amount,
            total_amount=total_amount,
            coupon_code=self.normalize_coupon(coupon_code),
        )
