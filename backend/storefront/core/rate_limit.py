"""
Request rate limiting.

Public lookups (order number, tracking number) are unauthenticated, so they
are throttled per client address with slowapi.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from storefront.core.config import get_settings

limiter = Limiter(
    key_func=get_remote_address,
    enabled=not get_settings().is_test,
)
