"""
Delivery estimation and tracking number helpers.

Pure functions shared by order creation, the status state machine and the
tracking views.
"""

import secrets
import string
import time
from datetime import datetime, timedelta
from typing import Optional

from storefront.core.config import Settings, get_settings
from storefront.database.base import utcnow
from storefront.services.orders.enums import ShippingMethod

TRACKING_ALPHABET = string.ascii_uppercase + string.digits
SATURDAY = 5
SUNDAY = 6


def generate_tracking_number(carrier: Optional[str] = None) -> str:
    """
    Build a tracking number: carrier prefix, timestamp tail, random suffix.

    Example:
        >>> generate_tracking_number("DHL")  # doctest: +SKIP
        'DHL482913Q7ZK2M'
    """
    prefix = "".join(ch for ch in (carrier or "STANDARD") if ch.isalnum())[:3].upper()
    prefix = prefix or "STD"
    timestamp = str(int(time.time() * 1000))[-6:]
    suffix = "".join(secrets.choice(TRACKING_ALPHABET) for _ in range(6))
    return f"{prefix}{timestamp}{suffix}"


def build_tracking_url(tracking_number: str, settings: Optional[Settings] = None) -> str:
    settings = settings or get_settings()
    return settings.tracking_url_template.format(tracking_number=tracking_number)


def is_remote_county(county: Optional[str], settings: Optional[Settings] = None) -> bool:
    if not county:
        return False
    settings = settings or get_settings()
    remote = {name.strip().lower() for name in settings.remote_counties}
    return county.strip().lower() in remote


def calculate_estimated_delivery(
    shipping_method: ShippingMethod | str = ShippingMethod.STANDARD,
    county: Optional[str] = None,
    from_date: Optional[datetime] = None,
    settings: Optional[Settings] = None,
) -> datetime:
    """
    Estimate the delivery date for a shipment.

    Adds the method's delivery window, extra days for remote counties, and
    rolls a weekend result forward to Monday (in the store timezone).

    Args:
        shipping_method: Shipping method of the order
        county: Destination county from the shipping address
        from_date: Start point, defaults to now
        settings: Optional settings override

    Returns:
        Timezone-aware estimated delivery datetime
    """
    settings = settings or get_settings()
    method = ShippingMethod(shipping_method)

    days = settings.delivery_days.get(method.value, settings.delivery_days["standard"])
    if is_remote_county(county, settings):
        days += settings.remote_county_extra_days

    start = from_date or utcnow()
    estimate = (start + timedelta(days=days)).astimezone(settings.timezone)

    weekday = estimate.weekday()
    if weekday == SATURDAY:
        estimate += timedelta(days=2)
    elif weekday == SUNDAY:
        estimate += timedelta(days=1)

    return estimate
