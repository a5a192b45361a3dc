"""
FastAPI dependencies for authentication, authorization and services.

Tokens are issued by the account service; this API only verifies them and
loads the referenced user to establish ownership and role.
"""

from typing import Annotated, Optional
from uuid import UUID

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.config import get_settings
from storefront.core.logging import get_logger, set_actor_id
from storefront.database.connection import get_db
from storefront.database.models.user import User, UserRole
from storefront.services.accounts import SqlAccountDirectory
from storefront.services.catalog import SqlCatalogService
from storefront.services.notifications.tasks import NotificationDispatcher
from storefront.services.orders.service import OrderService

logger = get_logger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid or missing access token",
        headers={"WWW-Authenticate": "Bearer"},
    )


def decode_access_token(token: str) -> Optional[UUID]:
    """
    Verify an access token and return the user ID in its ``sub`` claim.

    Returns:
        The user ID, or None when the token is expired, tampered with or
        does not name a user
    """
    settings = get_settings()
    try:
        claims = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError as e:
        logger.warning("Access token rejected", reason=str(e))
        return None

    try:
        return UUID(str(claims["sub"]))
    except (KeyError, ValueError):
        logger.warning("Access token has no usable subject", subject=claims.get("sub"))
        return None


async def get_current_user(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(bearer_scheme)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    """
    Resolve the bearer token to an active user.

    Raises:
        HTTPException: 401 for a missing or invalid token or an unknown
            user, 403 for a deactivated account
    """
    if credentials is None:
        raise _unauthorized()

    user_id = decode_access_token(credentials.credentials)
    user = await db.get(User, user_id) if user_id else None
    if user is None:
        if user_id:
            logger.warning("Access token names unknown user", user_id=str(user_id))
        raise _unauthorized()

    if not user.is_active:
        logger.warning("Deactivated account attempted access", user_id=str(user.id))
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is deactivated",
        )

    set_actor_id(str(user.id))
    return user


async def get_current_admin(
    current_user: Annotated[User, Depends(get_current_user)],
) -> User:
    """Require the store administrator role."""
    if current_user.role != UserRole.ADMIN:
        logger.warning(
            "Administrator route refused",
            user_id=str(current_user.id),
            role=current_user.role.value,
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Administrator access required",
        )
    return current_user


def get_notification_dispatcher(request: Request) -> Optional[NotificationDispatcher]:
    """Dispatcher created at startup, if any."""
    return getattr(request.app.state, "notifier", None)


async def get_order_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    notifier: Annotated[Optional[NotificationDispatcher], Depends(get_notification_dispatcher)],
) -> OrderService:
    return OrderService(
        db,
        notifier=notifier,
        catalog=SqlCatalogService(db),
        accounts=SqlAccountDirectory(db),
    )


CurrentUser = Annotated[User, Depends(get_current_user)]
CurrentAdmin = Annotated[User, Depends(get_current_admin)]
OrderServiceDep = Annotated[OrderService, Depends(get_order_service)]
