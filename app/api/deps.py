from typing import Annotated
import logging

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.core.security import decode_access_token
from app.models.user import User, UserRole
from app.services.ownership_service import ActorContext


logger = logging.getLogger(__name__)

# HTTP Bearer security scheme
security = HTTPBearer()


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    """
    Dependency to get the current authenticated user.
    Validates the JWT token and returns the user object.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    claims = decode_access_token(credentials.credentials)
    if claims is None:
        logger.warning("Token verification failed - invalid or expired token")
        raise credentials_exception

    user_id = claims["sub"]
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if user is None:
        logger.warning(f"User {user_id} not found")
        raise credentials_exception

    if claims.get("role") != user.role:
        logger.warning(f"Stale token for user {user_id}: role changed to {user.role}")
        raise credentials_exception

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is deactivated"
        )

    return user


async def get_current_actor(
    user: Annotated[User, Depends(get_current_user)],
) -> ActorContext:
    """The authenticated user as seen by the workflow services."""
    return ActorContext(user_id=user.id, role=user.role)


def require_roles(*roles: UserRole):
    """
    Dependency factory to require one of the given roles.
    ADMIN always passes.

    Usage:
        @router.post("/", dependencies=[Depends(require_roles(UserRole.SHOPKEEPER))])
        async def shop_endpoint():
            ...
    """
    allowed = {r.value for r in roles} | {UserRole.ADMIN.value}

    async def role_dependency(
        actor: Annotated[ActorContext, Depends(get_current_actor)]
    ) -> ActorContext:
        if actor.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission denied. Required role: {', '.join(sorted(r.value for r in roles))}"
            )
        return actor

    return role_dependency


# Type aliases for cleaner endpoint signatures
CurrentUser = Annotated[User, Depends(get_current_user)]
CurrentActor = Annotated[ActorContext, Depends(get_current_actor)]
DB = Annotated[AsyncSession, Depends(get_db)]
CustomerActor = Annotated[ActorContext, Depends(require_roles(UserRole.CUSTOMER))]
ShopkeeperActor = Annotated[ActorContext, Depends(require_roles(UserRole.SHOPKEEPER))]
RiderActor = Annotated[ActorContext, Depends(require_roles(UserRole.DELIVERY_BOY))]
