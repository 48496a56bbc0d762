"""
JWT access token handling.

Login and password storage live outside this service; this module only
issues and validates the bearer tokens that identify callers.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from uuid import UUID

from jose import ExpiredSignatureError, JWTError, jwt

from storefront.core.config import get_settings
from storefront.core.logging import get_logger

logger = get_logger(__name__)


class TokenError(Exception):
    """Exception raised for token-related errors."""

    def __init__(self, message: str, code: str, **context):
        super().__init__(message)
        self.code = code
        self.context = context


def create_access_token(
    subject: UUID | str,
    role: str,
    expires_delta: Optional[timedelta] = None,
    **claims: Any,
) -> str:
    """
    Create a signed JWT access token.

    Args:
        subject: User identifier stored in the ``sub`` claim
        role: Caller role (customer, seller or admin)
        expires_delta: Optional custom lifetime

    Returns:
        Encoded JWT token string
    """
    settings = get_settings()
    now = datetime.now(timezone.utc)
    expire = now + (
        expires_delta
        or timedelta(minutes=settings.jwt_access_token_expire_minutes)
    )

    to_encode = {
        **claims,
        "sub": str(subject),
        "role": role,
        "exp": expire,
        "iat": now,
        "type": "access",
    }

    token = jwt.encode(to_encode, settings.secret_key, algorithm=settings.jwt_algorithm)
    logger.debug("Access token created", subject=str(subject), expires_at=expire.isoformat())
    return token


def decode_token(token: str) -> Dict[str, Any]:
    """
    Decode and validate a JWT token.

    Raises:
        TokenError: If token is empty, expired, or malformed
    """
    if not token:
        raise TokenError("Token cannot be empty", code="EMPTY_TOKEN")

    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except ExpiredSignatureError as e:
        logger.info("Token has expired")
        raise TokenError("Token has expired", code="TOKEN_EXPIRED") from e
    except JWTError as e:
        logger.warning("Invalid token", error=str(e))
        raise TokenError("Invalid token", code="TOKEN_INVALID") from e

    if payload.get("type") != "access":
        raise TokenError("Invalid token type", code="TOKEN_INVALID")

    return payload


def get_token_user_id(payload: Dict[str, Any]) -> UUID:
    """
    Extract the user id from a decoded token payload.

    Raises:
        TokenError: If the subject claim is missing or not a UUID
    """
    subject = payload.get("sub")
    try:
        return UUID(str(subject))
    except (TypeError, ValueError) as e:
        raise TokenError("Invalid token subject", code="TOKEN_INVALID") from e
