"""
Customer order endpoints: checkout, tracking and cancellation.
"""
from typing import Optional
import uuid
from math import ceil

from fastapi import APIRouter, HTTPException, status, Query, Depends

from app.api.deps import DB, CustomerActor
from app.middleware.rate_limit import order_rate_limit
from app.models.order import OrderStatus
from app.schemas.order import (
    OrderCreate,
    OrderCancelRequest,
    OrderResponse,
    CustomerOrderDetailResponse,
    OrderListResponse,
    PlaceOrderResponse,
)
from app.schemas.rider import RiderLocationResponse
from app.services.order_service import OrderService
from app.services.rider_assignment_service import RiderAssignmentService


router = APIRouter(tags=["Orders"])


@router.post(
    "",
    response_model=PlaceOrderResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(order_rate_limit)],
)
async def place_order(
    data: OrderCreate,
    db: DB,
    actor: CustomerActor,
):
    """
    Place a checkout. Lines from several shops produce one order per shop.
    Stock is reserved for every line or for none.
    """
    service = OrderService(db)
    orders = await service.place_order(actor, data)
    return PlaceOrderResponse(
        orders=[CustomerOrderDetailResponse.model_validate(o) for o in orders],
        grand_total=sum((o.total_amount for o in orders), start=0),
    )


@router.get("", response_model=OrderListResponse)
async def list_my_orders(
    db: DB,
    actor: CustomerActor,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    status: Optional[OrderStatus] = Query(None),
):
    """Orders placed by the current customer, newest first."""
    service = OrderService(db)
    orders, total = await service.list_customer_orders(
        actor, status=status, skip=(page - 1) * size, limit=size
    )
    return OrderListResponse(
        items=[OrderResponse.model_validate(o) for o in orders],
        total=total,
        page=page,
        size=size,
        pages=ceil(total / size) if total > 0 else 1,
    )


@router.get("/{order_id}", response_model=CustomerOrderDetailResponse)
async def get_my_order(
    order_id: uuid.UUID,
    db: DB,
    actor: CustomerActor,
):
    """Order detail including the delivery code to hand to the rider."""
    service = OrderService(db)
    return await service.get_customer_order(actor, order_id)


@router.post(
    "/{order_id}/cancel",
    response_model=CustomerOrderDetailResponse,
    dependencies=[Depends(order_rate_limit)],
)
async def cancel_my_order(
    order_id: uuid.UUID,
    db: DB,
    actor: CustomerActor,
    data: Optional[OrderCancelRequest] = None,
):
    """Cancel a pending or confirmed order. Reserved stock is released."""
    service = OrderService(db)
    return await service.cancel_by_customer(actor, order_id, data.reason if data else None)


@router.get("/{order_id}/rider-location", response_model=RiderLocationResponse)
async def track_rider(
    order_id: uuid.UUID,
    db: DB,
    actor: CustomerActor,
):
    """Last known location of the rider carrying the order."""
    order = await OrderService(db).get_customer_order(actor, order_id)
    if order.delivery_boy_id is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No delivery partner assigned yet"
        )

    location = await RiderAssignmentService(db).get_rider_location(order.delivery_boy_id)
    if location is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Location not available"
        )
    return location
