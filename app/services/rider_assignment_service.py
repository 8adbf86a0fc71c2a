"""
Rider Assignment Service

Dispatch side of the order lifecycle:
- shopkeeper assigns a rider of their shop to an unassigned order
- a confirmed order is auto-assigned when exactly one shop rider is available
- riders claim, ship, deliver (OTP gated) and cancel their own orders
- rider availability and live location

Assignment uses the same compare-and-set primitive as status changes, with an
extra guard on delivery_boy_id so two shopkeepers (or two riders claiming)
cannot both win.
"""
from typing import Dict, List, Optional, Tuple
import logging
import uuid

from sqlalchemy import select, update, func, not_
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.errors import NotFoundError, InvalidTransitionError, RiderAtCapacityError
from app.db_types import utc_now
from app.models.order import Order, OrderStatus, PaymentMethod, PaymentStatus
from app.models.rider import DeliveryBoy
from app.services.cache_service import get_cache
from app.services.notification_service import NotificationService, NotificationType
from app.services.order_service import OrderService
from app.services.order_state_machine import (
    ASSIGNABLE_STATUSES, PICKUP_STATUSES, RIDER_ACTIVE_STATUSES, validate_transition,
)
from app.services.ownership_service import ActorContext, OwnershipService

logger = logging.getLogger(__name__)


SYSTEM_ACTOR_ROLE = "SYSTEM"


class RiderAssignmentService:
    """Assigns riders to orders and runs the rider's side of delivery."""

    def __init__(self, db: AsyncSession, notifier: Optional[NotificationService] = None):
        self.db = db
        self.notifier = notifier or NotificationService()
        self.orders = OrderService(db, self.notifier)
        self.ownership = OwnershipService(db)
        self.cache = get_cache()

    # ==================== RIDER LOOKUPS ====================

    async def active_order_counts(self, rider_ids: List[uuid.UUID]) -> Dict[uuid.UUID, int]:
        """Number of non-terminal orders currently held by each rider."""
        if not rider_ids:
            return {}
        result = await self.db.execute(
            select(Order.delivery_boy_id, func.count(Order.id))
            .where(
                Order.delivery_boy_id.in_(rider_ids),
                Order.status.in_(RIDER_ACTIVE_STATUSES),
            )
            .group_by(Order.delivery_boy_id)
        )
        return {rider_id: count for rider_id, count in result.all()}

    async def find_available_riders(self, shop_id: uuid.UUID) -> List[DeliveryBoy]:
        """
        Riders of a shop who can take an order right now.

        Available and active; when RIDER_MAX_ACTIVE_ORDERS is set, riders at
        the cap are left out.
        """
        result = await self.db.execute(
            select(DeliveryBoy)
            .where(
                DeliveryBoy.shop_id == shop_id,
                DeliveryBoy.is_available == True,  # noqa: E712
                DeliveryBoy.is_active == True,  # noqa: E712
            )
            .order_by(DeliveryBoy.created_at)
        )
        riders = list(result.scalars().all())

        cap = settings.RIDER_MAX_ACTIVE_ORDERS
        if cap is None:
            return riders
        loads = await self.active_order_counts([r.id for r in riders])
        return [r for r in riders if loads.get(r.id, 0) < cap]

    async def list_shop_riders(self, actor: ActorContext, available_only: bool = False) -> List[DeliveryBoy]:
        """Riders of the shopkeeper's shop."""
        shop = await self.ownership.require_shop(actor)
        if available_only:
            return await self.find_available_riders(shop.id)
        result = await self.db.execute(
            select(DeliveryBoy)
            .where(DeliveryBoy.shop_id == shop.id)
            .order_by(DeliveryBoy.created_at)
        )
        return list(result.scalars().all())

    async def _check_capacity(self, rider: DeliveryBoy) -> None:
        cap = settings.RIDER_MAX_ACTIVE_ORDERS
        if cap is None:
            return
        loads = await self.active_order_counts([rider.id])
        if loads.get(rider.id, 0) >= cap:
            logger.warning(f"Rider {rider.id} at capacity ({cap} active orders)")
            raise RiderAtCapacityError(f"Delivery partner already has {cap} active orders")

    # ==================== ASSIGNMENT ====================

    async def _attach_rider(
        self,
        order: Order,
        rider: DeliveryBoy,
        actor: ActorContext,
        new_status: str,
        notes: str,
        auto: bool = False,
        actor_role: Optional[str] = None,
    ) -> None:
        """Set the rider (and status) with a guard on the current assignment. Does not commit."""
        if order.delivery_boy_id is not None and not settings.ALLOW_RIDER_REASSIGNMENT:
            raise InvalidTransitionError(
                f"Order {order.order_number} already has a delivery partner",
                current_status=order.status,
            )

        if order.delivery_boy_id is None:
            guard = Order.delivery_boy_id.is_(None)
        else:
            guard = Order.delivery_boy_id == order.delivery_boy_id

        now = utc_now()
        values = {
            "status": new_status,
            "delivery_boy_id": rider.id,
            "rider_assigned_at": now,
            "auto_assigned": auto,
        }
        if order.status == OrderStatus.PENDING.value:
            values["confirmed_at"] = now
        if new_status == OrderStatus.SHIPPED.value:
            values["shipped_at"] = now

        from_status = order.status
        await self.orders.compare_and_set(order, values, criteria=[guard])
        self.orders.add_history(order.id, from_status, new_status, actor, notes, actor_role=actor_role)
        logger.info(
            f"Order {order.order_number}: rider {rider.id} attached ({from_status} -> {new_status}, auto={auto})"
        )

    async def assign_rider(
        self,
        actor: ActorContext,
        order_id: uuid.UUID,
        rider_id: uuid.UUID,
    ) -> Order:
        """
        Shopkeeper assigns one of the shop's riders to an unassigned order.

        The order ends up CONFIRMED with the rider attached. The rider does
        not have to be flagged available for a manual assignment.
        """
        order = await self.orders.get_shop_order(actor, order_id)
        if not await self.ownership.rider_belongs_to_shop(rider_id, order.shop_id):
            raise NotFoundError("Delivery partner not found")
        rider = await self.db.get(DeliveryBoy, rider_id)
        if rider is None or not rider.is_active:
            raise NotFoundError("Delivery partner not found")

        if order.status not in ASSIGNABLE_STATUSES:
            raise InvalidTransitionError(
                f"A delivery partner cannot be assigned to an order in '{order.status}' status",
                current_status=order.status,
            )
        if order.delivery_boy_id == rider.id:
            raise InvalidTransitionError(
                f"Order {order.order_number} is already assigned to this delivery partner",
                current_status=order.status,
            )

        try:
            await self._check_capacity(rider)
            await self._attach_rider(
                order, rider, actor, OrderStatus.CONFIRMED.value, notes="Delivery partner assigned by shop"
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        order = await self.orders.get_order_by_id(order_id)
        await self.notifier.notify_order_event(order, NotificationType.RIDER_ASSIGNED)
        return order

    async def auto_assign_in_transaction(self, order: Order, actor: ActorContext) -> Optional[DeliveryBoy]:
        """
        Assign the only available rider and ship the order. Does not commit.

        No-op unless the order is CONFIRMED, unassigned and exactly one shop
        rider is available. Zero or several candidates leave the order as is.
        """
        if order.status != OrderStatus.CONFIRMED.value or order.delivery_boy_id is not None:
            return None

        riders = await self.find_available_riders(order.shop_id)
        if len(riders) != 1:
            logger.info(
                f"Order {order.order_number}: {len(riders)} available riders, skipping auto-assign"
            )
            return None

        rider = riders[0]
        await self._attach_rider(
            order,
            rider,
            actor,
            OrderStatus.SHIPPED.value,
            notes="Auto-assigned to the only available delivery partner",
            auto=True,
            actor_role=SYSTEM_ACTOR_ROLE,
        )
        return rider

    async def auto_assign_if_single_rider(
        self,
        actor: ActorContext,
        shop_id: uuid.UUID,
        order_id: uuid.UUID,
    ) -> Tuple[Order, Optional[DeliveryBoy]]:
        """Standalone auto-assignment for an already confirmed order of a shop."""
        order = await self.orders.get_order_by_id(order_id)
        if order is None or order.shop_id != shop_id:
            raise NotFoundError("Order not found")

        try:
            rider = await self.auto_assign_in_transaction(order, actor)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        order = await self.orders.get_order_by_id(order_id)
        if rider is not None:
            await self.notifier.notify_order_event(order, NotificationType.RIDER_ASSIGNED)
        return order, rider

    # ==================== RIDER ORDER ACTIONS ====================

    async def _get_rider_order(self, rider: DeliveryBoy, order_id: uuid.UUID) -> Order:
        """Order assigned to this rider; anything else is reported as missing."""
        order = await self.orders.get_order_by_id(order_id)
        if order is None or order.delivery_boy_id != rider.id:
            raise NotFoundError("Order not found")
        return order

    async def claim_order(self, actor: ActorContext, order_id: uuid.UUID) -> Order:
        """Rider picks an unassigned confirmed/ready order of their shop and ships it."""
        rider = await self.ownership.require_rider(actor)
        order = await self.orders.get_order_by_id(order_id)
        if order is None or order.shop_id != rider.shop_id:
            raise NotFoundError("Order not found")
        if order.delivery_boy_id is not None:
            raise InvalidTransitionError(
                f"Order {order.order_number} has already been taken",
                current_status=order.status,
            )
        if order.status not in PICKUP_STATUSES:
            raise InvalidTransitionError(
                f"Order in '{order.status}' status is not ready for pickup",
                current_status=order.status,
            )

        validate_transition(actor.role, order.status, OrderStatus.SHIPPED.value)

        try:
            await self._check_capacity(rider)
            await self._attach_rider(
                order, rider, actor, OrderStatus.SHIPPED.value, notes="Claimed and picked up by delivery partner"
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        return await self.orders.reload_and_notify(order_id)

    async def ship_order(self, actor: ActorContext, order_id: uuid.UUID) -> Order:
        """Rider picked the order up from the shop."""
        rider = await self.ownership.require_rider(actor)
        order = await self._get_rider_order(rider, order_id)
        try:
            await self.orders.transition_order_status(
                order, actor, OrderStatus.SHIPPED.value,
                criteria=[Order.delivery_boy_id == rider.id],
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        return await self.orders.reload_and_notify(order_id)

    async def mark_delivered(self, actor: ActorContext, order_id: uuid.UUID, otp: str) -> Order:
        """
        Rider hands the order over. The customer's delivery code is required.

        The transition is validated before the code is checked, so a second
        call on a delivered order fails as an invalid transition and does
        not burn an OTP attempt.
        """
        rider = await self.ownership.require_rider(actor)
        order = await self._get_rider_order(rider, order_id)
        validate_transition(actor.role, order.status, OrderStatus.DELIVERED.value)

        await self.orders.otp.verify(order, otp)

        values = {}
        if order.payment_method == PaymentMethod.COD.value:
            values["payment_status"] = PaymentStatus.PAID.value
        try:
            await self.orders.transition_order_status(
                order, actor, OrderStatus.DELIVERED.value,
                values=values,
                criteria=[Order.delivery_boy_id == rider.id],
            )
            await self.db.execute(
                update(DeliveryBoy)
                .where(DeliveryBoy.id == rider.id)
                .values(total_deliveries=DeliveryBoy.total_deliveries + 1)
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        return await self.orders.reload_and_notify(order_id)

    async def cancel_by_rider(
        self,
        actor: ActorContext,
        order_id: uuid.UUID,
        reason: Optional[str] = None,
    ) -> Order:
        """Rider cancels an order they hold; stock is restored and the rider detached."""
        rider = await self.ownership.require_rider(actor)
        order = await self._get_rider_order(rider, order_id)
        reason = reason or "Cancelled by delivery partner"
        try:
            await self.orders.cancel_order(
                order, actor, reason, criteria=[Order.delivery_boy_id == rider.id]
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        return await self.orders.reload_and_notify(order_id, reason)

    # ==================== RIDER ORDER LISTS ====================

    async def list_available_orders(
        self, actor: ActorContext, skip: int = 0, limit: int = 20
    ) -> Tuple[List[Order], int]:
        """Unassigned orders of the rider's shop waiting for pickup."""
        rider = await self.ownership.require_rider(actor)
        return await self.orders.list_orders(
            [
                Order.shop_id == rider.shop_id,
                Order.status.in_(PICKUP_STATUSES),
                Order.delivery_boy_id.is_(None),
            ],
            skip, limit,
            order_by=Order.created_at.asc(),
        )

    async def list_assigned_orders(
        self, actor: ActorContext, skip: int = 0, limit: int = 20
    ) -> Tuple[List[Order], int]:
        """Orders the rider currently holds."""
        rider = await self.ownership.require_rider(actor)
        return await self.orders.list_orders(
            [
                Order.delivery_boy_id == rider.id,
                Order.status.in_(RIDER_ACTIVE_STATUSES),
            ],
            skip, limit,
        )

    async def list_delivery_history(
        self, actor: ActorContext, skip: int = 0, limit: int = 20
    ) -> Tuple[List[Order], int]:
        rider = await self.ownership.require_rider(actor)
        return await self.orders.list_orders(
            [
                Order.delivery_boy_id == rider.id,
                Order.status == OrderStatus.DELIVERED.value,
            ],
            skip, limit,
            order_by=Order.delivered_at.desc(),
        )

    # ==================== AVAILABILITY & LOCATION ====================

    async def set_availability(self, actor: ActorContext, is_available: Optional[bool] = None) -> DeliveryBoy:
        """Set availability, or toggle it when is_available is None."""
        rider = await self.ownership.require_rider(actor)
        new_value = not_(DeliveryBoy.is_available) if is_available is None else is_available
        try:
            await self.db.execute(
                update(DeliveryBoy)
                .where(DeliveryBoy.id == rider.id)
                .values(is_available=new_value)
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        await self.db.refresh(rider)
        logger.info(f"Rider {rider.id} availability set to {rider.is_available}")
        return rider

    async def toggle_availability(self, actor: ActorContext) -> DeliveryBoy:
        return await self.set_availability(actor, None)

    async def update_location(self, actor: ActorContext, latitude: float, longitude: float) -> dict:
        """Record the rider's location. Last write wins."""
        rider = await self.ownership.require_rider(actor)
        now = utc_now()
        try:
            await self.db.execute(
                update(DeliveryBoy)
                .where(DeliveryBoy.id == rider.id)
                .values(
                    current_latitude=latitude,
                    current_longitude=longitude,
                    location_updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        location = {
            "rider_id": str(rider.id),
            "latitude": latitude,
            "longitude": longitude,
            "updated_at": now.isoformat(),
        }
        await self.cache.set_rider_location(str(rider.id), location)
        return location

    async def get_rider_location(self, rider_id: uuid.UUID) -> Optional[dict]:
        """Latest rider location, from the cache when warm."""
        cached = await self.cache.get_rider_location(str(rider_id))
        if cached:
            return cached

        rider = (await self.db.execute(
            select(DeliveryBoy)
            .where(DeliveryBoy.id == rider_id)
            .execution_options(populate_existing=True)
        )).scalar_one_or_none()
        if rider is None or rider.current_latitude is None or rider.location_updated_at is None:
            return None
        return {
            "rider_id": str(rider.id),
            "latitude": rider.current_latitude,
            "longitude": rider.current_longitude,
            "updated_at": rider.location_updated_at.isoformat(),
        }
