"""
Application error taxonomy.

Every domain failure raised by the services is a StorefrontError subclass
carrying an HTTP status, a stable machine-readable code and structured
context for logging. The API layer renders them into the standard
``{"success": false, "message": ...}`` envelope.
"""

from typing import Any


class StorefrontError(Exception):
    """Base exception for all storefront domain errors."""

    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, code: str | None = None, **context: Any):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.context = context


class ValidationError(StorefrontError):
    """Malformed input or a business-rule violation in the request."""

    status_code = 400
    code = "VALIDATION_ERROR"


class AuthenticationError(StorefrontError):
    """Missing or invalid credentials."""

    status_code = 401
    code = "AUTHENTICATION_REQUIRED"


class AuthorizationError(StorefrontError):
    """Authenticated caller lacks permission for the resource."""

    status_code = 403
    code = "FORBIDDEN"


class NotFoundError(StorefrontError):
    status_code = 404
    code = "NOT_FOUND"


class ConflictError(StorefrontError):
    """Request conflicts with the current state of the resource."""

    status_code = 409
    code = "CONFLICT"


class InsufficientStockError(ConflictError):
    code = "INSUFFICIENT_STOCK"


class ProductUnavailableError(ConflictError):
    """Product exists but is not purchasable."""

    status_code = 400
    code = "PRODUCT_UNAVAILABLE"


class InvalidStatusTransitionError(ConflictError):
    """Order status change not permitted by the transition table."""

    code = "INVALID_STATUS_TRANSITION"

    def __init__(self, message: str, current_status: str, target_status: str, **context: Any):
        super().__init__(
            message,
            current_status=current_status,
            target_status=target_status,
            **context,
        )
        self.current_status = current_status
        self.target_status = target_status


class RefundNotAllowedError(ConflictError):
    code = "REFUND_NOT_ALLOWED"


class LockedError(StorefrontError):
    """Account is temporarily locked."""

    status_code = 423
    code = "ACCOUNT_LOCKED"


class InternalError(StorefrontError):
    """Unexpected persistence or infrastructure failure."""

    status_code = 500
    code = "INTERNAL_ERROR"
