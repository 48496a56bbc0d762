"""
FastAPI dependencies for authentication, authorization and services.

Bearer tokens identify the caller; account state decides whether the call
may proceed (inactive accounts are forbidden, locked accounts get 423).
Failures raise storefront errors so they are rendered through the same
error envelope as every other failure.
"""

from typing import Annotated, Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.errors import AuthenticationError, AuthorizationError, LockedError
from storefront.core.logging import get_logger, set_user_id
from storefront.core.security import TokenError, decode_token, get_token_user_id
from storefront.database.connection import get_db
from storefront.database.models import User, UserRole
from storefront.services.orders.service import OrderService
from storefront.services.tracking.service import OrderTrackingService

logger = get_logger(__name__)

security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    """
    Validate the bearer token and load the calling user.

    Raises:
        AuthenticationError: 401 if the token is missing or invalid, or the
            user no longer exists
        AuthorizationError: 403 if the account is inactive
        LockedError: 423 if the account is locked
    """
    if credentials is None:
        logger.warning("Authentication failed: No credentials provided")
        raise AuthenticationError("Not authorized, no token")

    try:
        payload = decode_token(credentials.credentials)
        user_id = get_token_user_id(payload)
    except TokenError as e:
        logger.warning("Authentication failed: Token rejected", code=e.code)
        raise AuthenticationError("Not authorized, token failed", code=e.code) from e

    user = await db.get(User, user_id)
    if user is None:
        logger.warning("Authentication failed: User not found", user_id=str(user_id))
        raise AuthenticationError("Not authorized, user not found")

    if not user.is_active:
        logger.warning("Authentication failed: User account is inactive", user_id=str(user.id))
        raise AuthorizationError("Account is deactivated", user_id=str(user.id))

    if user.is_locked:
        logger.warning("Authentication failed: User account is locked", user_id=str(user.id))
        raise LockedError(
            "Account is temporarily locked",
            user_id=str(user.id),
            locked_until=user.locked_until.isoformat(),
        )

    set_user_id(str(user.id))
    return user


def require_role(*allowed_roles: UserRole):
    """
    Create a dependency that requires one of the given roles.

    Example:
        @router.get("/metrics")
        async def metrics(user: Annotated[User, Depends(require_role(UserRole.ADMIN))]):
            ...
    """

    async def role_checker(
        current_user: Annotated[User, Depends(get_current_user)],
    ) -> User:
        if current_user.role not in allowed_roles:
            logger.warning(
                "Access denied: Insufficient permissions",
                user_id=str(current_user.id),
                user_role=UserRole(current_user.role).value,
                required_roles=[role.value for role in allowed_roles],
            )
            raise AuthorizationError(
                f"User role {UserRole(current_user.role).value} is not authorized "
                "to access this route",
                user_id=str(current_user.id),
            )
        return current_user

    return role_checker


async def get_order_service(db: Annotated[AsyncSession, Depends(get_db)]) -> OrderService:
    return OrderService(db)


async def get_tracking_service(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> OrderTrackingService:
    return OrderTrackingService(db)


CurrentUser = Annotated[User, Depends(get_current_user)]
CurrentAdmin = Annotated[User, Depends(require_role(UserRole.ADMIN))]
CurrentStaff = Annotated[User, Depends(require_role(UserRole.ADMIN, UserRole.SELLER))]
OrderServiceDep = Annotated[OrderService, Depends(get_order_service)]
TrackingServiceDep = Annotated[OrderTrackingService, Depends(get_tracking_service)]
