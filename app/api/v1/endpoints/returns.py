"""
Return Request API Endpoints

Customers request returns of delivered items; the shop approves, collects,
receives and refunds them. Every step is recorded in the request history.
"""
from typing import Optional, List
import uuid

from fastapi import APIRouter, status, Query, Depends

from app.api.deps import DB, CurrentActor, CustomerActor, ShopkeeperActor, require_roles
from app.middleware.rate_limit import return_rate_limit
from app.models.return_request import ReturnStatus
from app.models.user import UserRole
from app.schemas.return_request import (
    ReturnCreate,
    ReturnProcessRequest,
    ReturnNoteRequest,
    ReturnResponse,
)
from app.services.ownership_service import ActorContext
from app.services.returns_service import ReturnsService


router = APIRouter(tags=["Returns"])


# ==================== Customer ====================

@router.post(
    "/order-items/{order_item_id}/returns",
    response_model=ReturnResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(return_rate_limit)],
)
async def request_return(
    order_item_id: uuid.UUID,
    data: ReturnCreate,
    db: DB,
    actor: CustomerActor,
):
    """Request a return of a delivered item within its return window."""
    service = ReturnsService(db)
    return await service.request_return(actor, order_item_id, data.reason)


@router.get("/order-items/{order_item_id}/returns", response_model=List[ReturnResponse])
async def get_return_history(
    order_item_id: uuid.UUID,
    db: DB,
    actor: CurrentActor,
):
    """Return requests of an item with their history. Customer or owning shop."""
    service = ReturnsService(db)
    return await service.get_return_history(actor, order_item_id)


# ==================== Shop ====================

@router.get("/shop/returns", response_model=List[ReturnResponse])
async def list_shop_returns(
    db: DB,
    actor: ShopkeeperActor,
    status: Optional[ReturnStatus] = Query(None),
):
    service = ReturnsService(db)
    return await service.list_shop_returns(actor, status.value if status else None)


@router.post(
    "/returns/{return_id}/process",
    response_model=ReturnResponse,
    dependencies=[Depends(return_rate_limit)],
)
async def process_return(
    return_id: uuid.UUID,
    data: ReturnProcessRequest,
    db: DB,
    actor: ShopkeeperActor,
):
    """Approve or reject a requested return."""
    service = ReturnsService(db)
    return await service.process_return(actor, return_id, data.action, data.note)


@router.post(
    "/returns/{return_id}/pickup",
    response_model=ReturnResponse,
    dependencies=[Depends(return_rate_limit)],
)
async def mark_picked_up(
    return_id: uuid.UUID,
    db: DB,
    actor: ActorContext = Depends(require_roles(UserRole.SHOPKEEPER, UserRole.DELIVERY_BOY)),
    data: Optional[ReturnNoteRequest] = None,
):
    """Item collected from the customer, by the shop or one of its riders."""
    service = ReturnsService(db)
    return await service.mark_picked_up(actor, return_id, data.note if data else None)


@router.post(
    "/returns/{return_id}/receive",
    response_model=ReturnResponse,
    dependencies=[Depends(return_rate_limit)],
)
async def mark_received(
    return_id: uuid.UUID,
    db: DB,
    actor: ShopkeeperActor,
    data: Optional[ReturnNoteRequest] = None,
):
    service = ReturnsService(db)
    return await service.mark_received(actor, return_id, data.note if data else None)


@router.post(
    "/returns/{return_id}/refund",
    response_model=ReturnResponse,
    dependencies=[Depends(return_rate_limit)],
)
async def mark_refunded(
    return_id: uuid.UUID,
    db: DB,
    actor: ShopkeeperActor,
    data: Optional[ReturnNoteRequest] = None,
):
    """Refund issued for a received return."""
    service = ReturnsService(db)
    return await service.mark_refunded(actor, return_id, data.note if data else None)
