"""
Tests for delivery estimation and tracking number helpers.
"""

import re
from datetime import date, datetime, timezone

import pytest

from storefront.services.orders.enums import ShippingMethod
from storefront.services.tracking.delivery import (
    build_tracking_url,
    calculate_estimated_delivery,
    generate_tracking_number,
    is_remote_county,
)

# 2026-10-19 is a Monday; 09:00 UTC is noon in Nairobi
MONDAY_MORNING = datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)
FRIDAY_MORNING = datetime(2026, 10, 23, 9, 0, tzinfo=timezone.utc)
SUNDAY_MORNING = datetime(2026, 10, 25, 9, 0, tzinfo=timezone.utc)


class TestTrackingNumber:
    """Tests for tracking number generation."""

    def test_carrier_prefix(self):
        number = generate_tracking_number("DHL Express")
        assert re.fullmatch(r"DHL\d{6}[A-Z0-9]{6}", number)

    def test_default_prefix(self):
        assert generate_tracking_number().startswith("STA")

    def test_symbol_only_carrier_falls_back(self):
        assert generate_tracking_number("--").startswith("STD")

    def test_numbers_differ(self):
        assert generate_tracking_number("DHL") != generate_tracking_number("DHL")

    def test_tracking_url(self):
        assert build_tracking_url("DHL123") == "https://tracking.example.com/DHL123"


class TestEstimatedDelivery:
    """Tests for delivery date estimation."""

    @pytest.mark.parametrize(
        "method,start,county,expected",
        [
            # +5 days lands on Saturday, rolled to Monday
            (ShippingMethod.STANDARD, MONDAY_MORNING, "Nairobi", date(2026, 10, 26)),
            (ShippingMethod.EXPRESS, MONDAY_MORNING, "Nairobi", date(2026, 10, 21)),
            # +5 days plus 2 remote days lands on Monday
            (ShippingMethod.STANDARD, MONDAY_MORNING, "Turkana", date(2026, 10, 26)),
            (ShippingMethod.OVERNIGHT, FRIDAY_MORNING, "Nairobi", date(2026, 10, 26)),
            (ShippingMethod.PICKUP, SUNDAY_MORNING, "Nairobi", date(2026, 10, 26)),
        ],
    )
    def test_estimates(self, method, start, county, expected):
        estimate = calculate_estimated_delivery(method, county, start)
        assert estimate.date() == expected
        assert estimate.weekday() < 5

    def test_estimate_is_in_store_timezone(self):
        estimate = calculate_estimated_delivery(ShippingMethod.EXPRESS, None, MONDAY_MORNING)
        assert estimate.hour == 12
        assert estimate.utcoffset().total_seconds() == 3 * 3600

    def test_accepts_string_method(self):
        estimate = calculate_estimated_delivery("express", None, MONDAY_MORNING)
        assert estimate.date() == date(2026, 10, 21)

    def test_remote_county_case_insensitive(self):
        assert is_remote_county(" turkana ")
        assert not is_remote_county("Nairobi")
        assert not is_remote_county(None)
