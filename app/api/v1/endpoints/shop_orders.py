"""
Shopkeeper endpoints: incoming orders, acceptance and rider dispatch.
"""
from typing import Optional, List
import uuid
from math import ceil

from fastapi import APIRouter, Query, Depends

from app.api.deps import DB, ShopkeeperActor
from app.middleware.rate_limit import order_rate_limit
from app.models.order import OrderStatus
from app.schemas.order import (
    OrderAcceptRequest,
    OrderCancelRequest,
    AssignRiderRequest,
    OrderResponse,
    OrderDetailResponse,
    OrderListResponse,
)
from app.schemas.rider import RiderResponse
from app.services.order_service import OrderService
from app.services.rider_assignment_service import RiderAssignmentService


router = APIRouter(tags=["Shop Orders"])


@router.get("/orders", response_model=OrderListResponse)
async def list_shop_orders(
    db: DB,
    actor: ShopkeeperActor,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    status: Optional[OrderStatus] = Query(None),
):
    """Orders received by the shopkeeper's shop."""
    service = OrderService(db)
    orders, total = await service.list_shop_orders(
        actor, status=status, skip=(page - 1) * size, limit=size
    )
    return OrderListResponse(
        items=[OrderResponse.model_validate(o) for o in orders],
        total=total,
        page=page,
        size=size,
        pages=ceil(total / size) if total > 0 else 1,
    )


@router.get("/orders/{order_id}", response_model=OrderDetailResponse)
async def get_shop_order(
    order_id: uuid.UUID,
    db: DB,
    actor: ShopkeeperActor,
):
    service = OrderService(db)
    return await service.get_shop_order(actor, order_id)


@router.post(
    "/orders/{order_id}/accept",
    response_model=OrderDetailResponse,
    dependencies=[Depends(order_rate_limit)],
)
async def accept_order(
    order_id: uuid.UUID,
    db: DB,
    actor: ShopkeeperActor,
    data: Optional[OrderAcceptRequest] = None,
):
    """
    Accept a pending order as CONFIRMED, PREPARING or READY.

    Confirming while exactly one rider of the shop is available hands the
    order to that rider straight away.
    """
    data = data or OrderAcceptRequest()
    service = OrderService(db)
    return await service.accept_order(actor, order_id, data.status, data.notes)


@router.post(
    "/orders/{order_id}/reject",
    response_model=OrderDetailResponse,
    dependencies=[Depends(order_rate_limit)],
)
async def reject_order(
    order_id: uuid.UUID,
    db: DB,
    actor: ShopkeeperActor,
    data: Optional[OrderCancelRequest] = None,
):
    service = OrderService(db)
    return await service.reject_order(actor, order_id, data.reason if data else None)


@router.post(
    "/orders/{order_id}/assign-rider",
    response_model=OrderDetailResponse,
    dependencies=[Depends(order_rate_limit)],
)
async def assign_rider(
    order_id: uuid.UUID,
    data: AssignRiderRequest,
    db: DB,
    actor: ShopkeeperActor,
):
    """Assign one of the shop's delivery partners to an order."""
    service = RiderAssignmentService(db)
    return await service.assign_rider(actor, order_id, data.delivery_boy_id)


@router.get("/riders", response_model=List[RiderResponse])
async def list_shop_riders(
    db: DB,
    actor: ShopkeeperActor,
    available_only: bool = Query(False),
):
    """Delivery partners of the shop. available_only applies the dispatch filter."""
    service = RiderAssignmentService(db)
    return await service.list_shop_riders(actor, available_only=available_only)
