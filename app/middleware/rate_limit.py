"""
Per-actor rate limiting for order and return mutations.

Fixed window counter kept in the cache backend. When Redis is unreachable
the counter reads 0 and requests pass.
"""
from typing import Annotated
import logging

from fastapi import Depends, HTTPException, status

from app.api.deps import get_current_actor
from app.config import settings
from app.services.cache_service import get_cache
from app.services.ownership_service import ActorContext

logger = logging.getLogger(__name__)


def rate_limit(scope: str):
    """
    Dependency factory limiting how often one actor may hit a scope.

    Usage:
        @router.post("", dependencies=[Depends(rate_limit("orders"))])
    """

    async def rate_limit_dependency(
        actor: Annotated[ActorContext, Depends(get_current_actor)]
    ) -> None:
        window = settings.ORDER_RATE_LIMIT_WINDOW_SECONDS
        count = await get_cache().incr_window(scope, str(actor.user_id), window)
        if count > settings.ORDER_RATE_LIMIT_REQUESTS:
            logger.warning(f"Rate limit hit: {scope} by {actor.role} {actor.user_id} ({count} in {window}s)")
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Too many requests, please slow down",
                headers={"Retry-After": str(window)},
            )

    return rate_limit_dependency


order_rate_limit = rate_limit("orders")
return_rate_limit = rate_limit("returns")
