"""
Delivery partner endpoints: pickup queue, hand-over with OTP, availability
and live location.
"""
from typing import Optional
import uuid
from math import ceil

from fastapi import APIRouter, Query, Depends

from app.api.deps import DB, RiderActor
from app.middleware.rate_limit import order_rate_limit
from app.schemas.order import (
    OrderCancelRequest,
    DeliverOrderRequest,
    OrderResponse,
    OrderDetailResponse,
    OrderListResponse,
)
from app.schemas.rider import (
    RiderResponse,
    AvailabilityUpdate,
    LocationUpdate,
    RiderLocationResponse,
)
from app.services.rider_assignment_service import RiderAssignmentService


router = APIRouter(tags=["Delivery"])


def _page(orders, total: int, page: int, size: int) -> OrderListResponse:
    return OrderListResponse(
        items=[OrderResponse.model_validate(o) for o in orders],
        total=total,
        page=page,
        size=size,
        pages=ceil(total / size) if total > 0 else 1,
    )


# ==================== Order Queues ====================

@router.get("/orders/available", response_model=OrderListResponse)
async def list_available_orders(
    db: DB,
    actor: RiderActor,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
):
    """Unassigned orders of the rider's shop waiting for pickup, oldest first."""
    service = RiderAssignmentService(db)
    orders, total = await service.list_available_orders(actor, skip=(page - 1) * size, limit=size)
    return _page(orders, total, page, size)


@router.get("/orders/assigned", response_model=OrderListResponse)
async def list_assigned_orders(
    db: DB,
    actor: RiderActor,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
):
    service = RiderAssignmentService(db)
    orders, total = await service.list_assigned_orders(actor, skip=(page - 1) * size, limit=size)
    return _page(orders, total, page, size)


@router.get("/orders/history", response_model=OrderListResponse)
async def list_delivery_history(
    db: DB,
    actor: RiderActor,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
):
    service = RiderAssignmentService(db)
    orders, total = await service.list_delivery_history(actor, skip=(page - 1) * size, limit=size)
    return _page(orders, total, page, size)


# ==================== Order Actions ====================

@router.post(
    "/orders/{order_id}/claim",
    response_model=OrderDetailResponse,
    dependencies=[Depends(order_rate_limit)],
)
async def claim_order(
    order_id: uuid.UUID,
    db: DB,
    actor: RiderActor,
):
    """Take an unassigned order and head out with it."""
    service = RiderAssignmentService(db)
    return await service.claim_order(actor, order_id)


@router.post(
    "/orders/{order_id}/ship",
    response_model=OrderDetailResponse,
    dependencies=[Depends(order_rate_limit)],
)
async def ship_order(
    order_id: uuid.UUID,
    db: DB,
    actor: RiderActor,
):
    service = RiderAssignmentService(db)
    return await service.ship_order(actor, order_id)


@router.post(
    "/orders/{order_id}/deliver",
    response_model=OrderDetailResponse,
    dependencies=[Depends(order_rate_limit)],
)
async def deliver_order(
    order_id: uuid.UUID,
    data: DeliverOrderRequest,
    db: DB,
    actor: RiderActor,
):
    """
    Hand the order over. The customer's delivery code must match.
    Cash on delivery orders are marked paid.
    """
    service = RiderAssignmentService(db)
    return await service.mark_delivered(actor, order_id, data.otp)


@router.post(
    "/orders/{order_id}/cancel",
    response_model=OrderDetailResponse,
    dependencies=[Depends(order_rate_limit)],
)
async def cancel_order(
    order_id: uuid.UUID,
    db: DB,
    actor: RiderActor,
    data: Optional[OrderCancelRequest] = None,
):
    service = RiderAssignmentService(db)
    return await service.cancel_by_rider(actor, order_id, data.reason if data else None)


# ==================== Availability & Location ====================

@router.post("/availability", response_model=RiderResponse)
async def set_availability(
    db: DB,
    actor: RiderActor,
    data: Optional[AvailabilityUpdate] = None,
):
    """Go online or offline. Without a body the flag is toggled."""
    service = RiderAssignmentService(db)
    return await service.set_availability(actor, data.is_available if data else None)


@router.post("/location", response_model=RiderLocationResponse)
async def update_location(
    data: LocationUpdate,
    db: DB,
    actor: RiderActor,
):
    service = RiderAssignmentService(db)
    return await service.update_location(actor, data.latitude, data.longitude)
