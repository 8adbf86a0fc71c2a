"""
Order Service

Checkout, order reads and the order status transition primitive.

Every status change goes through compare_and_set(): a conditional UPDATE on
the status column that only succeeds when the row still has the status the
caller validated against. Losing a race therefore surfaces as
InvalidTransitionError instead of silently overwriting another actor's change.
Public mutating methods commit on success and roll back on any failure.
"""
from typing import Any, Dict, Iterable, List, Optional, Tuple
from collections import OrderedDict
from decimal import Decimal
import logging
import secrets
import string
import time
import uuid

from sqlalchemy import select, update, func
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.attributes import set_committed_value
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.enum_utils import get_enum_value, normalize_to_uppercase
from app.core.errors import NotFoundError, InvalidTransitionError, OrderValidationError
from app.db_types import utc_now
from app.models.address import Address
from app.models.order import (
    Order, OrderItem, OrderStatus, OrderStatusHistory,
    PaymentMethod, PaymentStatus, CancelActor,
)
from app.models.shop import ShopProduct, ProductPriceOption
from app.models.user import UserRole
from app.schemas.order import OrderCreate
from app.services.delivery_otp_service import DeliveryOtpService
from app.services.notification_service import NotificationService, NotificationType
from app.services.order_state_machine import validate_transition, get_transition_action
from app.services.ownership_service import ActorContext, OwnershipService
from app.services.stock_service import StockService, StockLine

logger = logging.getLogger(__name__)


ORDER_NUMBER_PREFIX = "EZ"
ORDER_NUMBER_ALPHABET = string.ascii_uppercase + string.digits

# Timestamp column stamped when an order enters a status
STATUS_TIMESTAMPS = {
    OrderStatus.CONFIRMED.value: "confirmed_at",
    OrderStatus.PREPARING.value: "confirmed_at",
    OrderStatus.READY.value: "confirmed_at",
    OrderStatus.SHIPPED.value: "shipped_at",
    OrderStatus.DELIVERED.value: "delivered_at",
    OrderStatus.CANCELLED.value: "cancelled_at",
}

CANCEL_ACTORS = {
    UserRole.CUSTOMER.value: CancelActor.CUSTOMER.value,
    UserRole.SHOPKEEPER.value: CancelActor.SHOPKEEPER.value,
    UserRole.DELIVERY_BOY.value: CancelActor.DELIVERY_BOY.value,
}

ACCEPT_STATUSES = (
    OrderStatus.CONFIRMED.value,
    OrderStatus.PREPARING.value,
    OrderStatus.READY.value,
)

ORDER_STATUS_VALUES = {s.value for s in OrderStatus}


def order_status_value(status: Any) -> Optional[str]:
    """Accept an OrderStatus or a status name in any case."""
    return normalize_to_uppercase(get_enum_value(status), ORDER_STATUS_VALUES)


class OrderService:
    """Service for placing orders and moving them through their lifecycle."""

    def __init__(self, db: AsyncSession, notifier: Optional[NotificationService] = None):
        self.db = db
        self.stock = StockService(db)
        self.ownership = OwnershipService(db)
        self.otp = DeliveryOtpService(db)
        self.notifier = notifier or NotificationService()

    # ==================== ORDER NUMBER GENERATION ====================

    def generate_order_number(self) -> str:
        """Generate unique order number: EZ<epoch millis><4 random chars>"""
        suffix = "".join(secrets.choice(ORDER_NUMBER_ALPHABET) for _ in range(4))
        return f"{ORDER_NUMBER_PREFIX}{int(time.time() * 1000)}{suffix}"

    # ==================== READS ====================

    async def get_order_by_id(
        self,
        order_id: uuid.UUID,
        include_all: bool = True
    ) -> Optional[Order]:
        """
        Get order by ID.
        Always re-reads the row; status updates bypass the identity map.
        """
        stmt = (
            select(Order)
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        )
        if include_all:
            stmt = stmt.options(
                selectinload(Order.items),
                selectinload(Order.status_history),
            )

        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def list_orders(
        self,
        filters: Iterable[Any],
        skip: int = 0,
        limit: int = 20,
        order_by: Any = None,
    ) -> Tuple[List[Order], int]:
        """Get paginated orders matching filters, newest first by default."""
        filters = list(filters)

        count_stmt = select(func.count(Order.id)).where(*filters)
        total = (await self.db.execute(count_stmt)).scalar() or 0

        stmt = (
            select(Order)
            .options(selectinload(Order.items))
            .where(*filters)
            .order_by(order_by if order_by is not None else Order.created_at.desc())
            .offset(skip)
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().unique().all()), total

    async def get_customer_order(self, actor: ActorContext, order_id: uuid.UUID) -> Order:
        """Order placed by the actor. Other customers' orders are reported as missing."""
        order = await self.get_order_by_id(order_id)
        if order is None or (order.customer_id != actor.user_id and not actor.is_admin):
            raise NotFoundError("Order not found")
        return order

    async def list_customer_orders(
        self,
        actor: ActorContext,
        status: Optional[str] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> Tuple[List[Order], int]:
        filters = [Order.customer_id == actor.user_id]
        if status:
            filters.append(Order.status == order_status_value(status))
        return await self.list_orders(filters, skip, limit)

    async def get_shop_order(self, actor: ActorContext, order_id: uuid.UUID) -> Order:
        """Order of the shop the actor owns."""
        shop = await self.ownership.require_shop(actor)
        order = await self.get_order_by_id(order_id)
        if order is None or order.shop_id != shop.id:
            raise NotFoundError("Order not found")
        return order

    async def list_shop_orders(
        self,
        actor: ActorContext,
        status: Optional[str] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> Tuple[List[Order], int]:
        shop = await self.ownership.require_shop(actor)
        filters = [Order.shop_id == shop.id]
        if status:
            filters.append(Order.status == order_status_value(status))
        return await self.list_orders(filters, skip, limit)

    # ==================== PLACEMENT ====================

    async def place_order(self, actor: ActorContext, data: OrderCreate) -> List[Order]:
        """
        Place a checkout.

        Lines are grouped by shop and one order is created per shop. Stock
        for every line is decremented in the same transaction; any failure
        leaves no order and no stock movement behind.
        """
        address = (await self.db.execute(
            select(Address).where(
                Address.id == data.address_id,
                Address.user_id == actor.user_id,
            )
        )).scalar_one_or_none()
        if address is None:
            raise NotFoundError("Address not found")

        product_ids = {line.shop_product_id for line in data.items}
        products = {
            p.id: p for p in (await self.db.execute(
                select(ShopProduct)
                .options(selectinload(ShopProduct.shop))
                .where(ShopProduct.id.in_(product_ids))
            )).scalars()
        }
        option_ids = {line.price_option_id for line in data.items if line.price_option_id}
        price_options = {}
        if option_ids:
            price_options = {
                o.id: o for o in (await self.db.execute(
                    select(ProductPriceOption).where(ProductPriceOption.id.in_(option_ids))
                )).scalars()
            }

        # shop_id -> list of priced lines, in checkout order
        grouped: "OrderedDict[uuid.UUID, List[Dict[str, Any]]]" = OrderedDict()
        for line in data.items:
            product = products.get(line.shop_product_id)
            if product is None or not product.is_active or not product.shop.is_active:
                raise OrderValidationError(f"Product {line.shop_product_id} is not available")

            option = None
            if line.price_option_id:
                option = price_options.get(line.price_option_id)
                if option is None or option.shop_product_id != product.id or not option.is_active:
                    raise OrderValidationError(f"Selected pack size is not available for {product.name}")

            unit_price = option.price if option else product.price
            grouped.setdefault(product.shop_id, []).append({
                "product": product,
                "option": option,
                "quantity": line.quantity,
                "unit_price": unit_price,
            })

        payment_method = get_enum_value(data.payment_method)
        payment_status = (
            PaymentStatus.PENDING.value if payment_method == PaymentMethod.COD.value
            else PaymentStatus.PAID.value
        )
        snapshot = address.to_snapshot()

        orders = []
        try:
            await self.stock.decrement([
                StockLine(
                    shop_product_id=priced["product"].id,
                    quantity=priced["quantity"],
                    product_name=priced["product"].name,
                )
                for lines in grouped.values() for priced in lines
            ])

            for shop_id, lines in grouped.items():
                order = self._build_order(
                    actor, shop_id, lines, snapshot, payment_method, payment_status, data.notes
                )
                self.db.add(order)
                orders.append(order)

            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.warning(f"Order placement failed for customer {actor.user_id}: {e}")
            raise

        placed = []
        for order in orders:
            placed_order = await self.get_order_by_id(order.id)
            placed.append(placed_order)
            logger.info(
                f"Order {placed_order.order_number} placed: shop={placed_order.shop_id} "
                f"items={placed_order.total_items} total={placed_order.total_amount}"
            )
            await self.notifier.notify_order_event(placed_order, NotificationType.ORDER_PLACED)
        return placed

    def _build_order(
        self,
        actor: ActorContext,
        shop_id: uuid.UUID,
        lines: List[Dict[str, Any]],
        address_snapshot: dict,
        payment_method: str,
        payment_status: str,
        notes: Optional[str],
    ) -> Order:
        items = []
        subtotal = Decimal("0.00")
        total_items = 0
        for priced in lines:
            product = priced["product"]
            option = priced["option"]
            line_total = priced["unit_price"] * priced["quantity"]
            subtotal += line_total
            total_items += priced["quantity"]
            items.append(OrderItem(
                shop_product_id=product.id,
                price_option_id=option.id if option else None,
                product_name=product.name,
                product_brand=product.brand,
                product_image=product.image_url,
                weight=option.weight if option else product.weight,
                unit=option.unit if option else product.unit,
                quantity=priced["quantity"],
                unit_price=priced["unit_price"],
                total_price=line_total,
                is_returnable=product.is_returnable,
                return_period_days=product.return_period_days,
            ))

        delivery_fee = settings.DELIVERY_FEE
        return Order(
            order_number=self.generate_order_number(),
            customer_id=actor.user_id,
            shop_id=shop_id,
            status=OrderStatus.PENDING.value,
            subtotal=subtotal,
            delivery_fee=delivery_fee,
            total_amount=subtotal + delivery_fee,
            total_items=total_items,
            payment_method=payment_method,
            payment_status=payment_status,
            delivery_address=address_snapshot,
            notes=notes,
            delivery_otp=self.otp.generate_otp(),
            delivery_otp_attempts=0,
            items=items,
            status_history=[
                OrderStatusHistory(
                    from_status=None,
                    to_status=OrderStatus.PENDING.value,
                    changed_by=actor.user_id,
                    actor_role=actor.role,
                    notes="Order placed",
                )
            ],
        )

    # ==================== TRANSITION PRIMITIVES ====================

    async def compare_and_set(
        self,
        order: Order,
        values: Dict[str, Any],
        criteria: Iterable[Any] = (),
    ) -> None:
        """
        Apply values only if the row still has order.status (and criteria hold).

        On success the in-memory order is updated without marking it dirty.
        Does not commit.
        """
        values = dict(values)
        values.setdefault("updated_at", utc_now())
        result = await self.db.execute(
            update(Order)
            .where(Order.id == order.id, Order.status == order.status, *criteria)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            current = (await self.db.execute(
                select(Order.status).where(Order.id == order.id)
            )).scalar_one_or_none()
            logger.warning(
                f"Order {order.order_number} update lost a race: expected '{order.status}', found '{current}'"
            )
            raise InvalidTransitionError(
                f"Order {order.order_number} was changed by someone else (now '{current}')",
                current_status=current,
            )
        for key, value in values.items():
            set_committed_value(order, key, value)

    def add_history(
        self,
        order_id: uuid.UUID,
        from_status: Optional[str],
        to_status: str,
        actor: ActorContext,
        notes: Optional[str] = None,
        actor_role: Optional[str] = None,
    ) -> OrderStatusHistory:
        entry = OrderStatusHistory(
            order_id=order_id,
            from_status=from_status,
            to_status=to_status,
            changed_by=actor.user_id,
            actor_role=actor_role or actor.role,
            notes=notes,
            # Stamped here so rows added in one flush keep their order
            created_at=utc_now(),
        )
        self.db.add(entry)
        return entry

    async def transition_order_status(
        self,
        order: Order,
        actor: ActorContext,
        new_status: str,
        values: Optional[Dict[str, Any]] = None,
        criteria: Iterable[Any] = (),
        notes: Optional[str] = None,
    ) -> None:
        """
        Validate and apply one status transition with its history entry.
        Does not commit.
        """
        new_status = order_status_value(new_status)
        from_status = order.status
        validate_transition(actor.role, from_status, new_status)

        changes = dict(values or {})
        changes["status"] = new_status
        timestamp_column = STATUS_TIMESTAMPS.get(new_status)
        if timestamp_column and timestamp_column not in changes:
            changes[timestamp_column] = utc_now()

        await self.compare_and_set(order, changes, criteria)
        self.add_history(
            order.id, from_status, new_status, actor,
            notes or get_transition_action(from_status, new_status),
        )
        logger.info(f"Order {order.order_number}: {from_status} -> {new_status} by {actor.role} {actor.user_id}")

    async def cancel_order(
        self,
        order: Order,
        actor: ActorContext,
        reason: str,
        criteria: Iterable[Any] = (),
    ) -> int:
        """
        Cancel an order, detach its rider and restore stock.
        Does not commit.

        Returns:
            Units of stock restored
        """
        await self.transition_order_status(
            order,
            actor,
            OrderStatus.CANCELLED.value,
            values={
                "cancel_reason": reason,
                "cancelled_by": CANCEL_ACTORS.get(actor.role, actor.role),
                "delivery_boy_id": None,
            },
            criteria=criteria,
            notes=reason,
        )
        restored = await self.stock.restore_for_order(order.id)
        logger.info(f"Order {order.order_number} cancelled by {actor.role}, {restored} units restored")
        return restored

    async def reload_and_notify(self, order_id: uuid.UUID, reason: Optional[str] = None) -> Order:
        order = await self.get_order_by_id(order_id)
        await self.notifier.notify_status_change(order, reason=reason)
        return order

    # ==================== CUSTOMER ACTIONS ====================

    async def cancel_by_customer(
        self,
        actor: ActorContext,
        order_id: uuid.UUID,
        reason: Optional[str] = None,
    ) -> Order:
        """Customer cancels a pending or confirmed order."""
        order = await self.get_customer_order(actor, order_id)
        reason = reason or "Cancelled by customer"
        try:
            await self.cancel_order(order, actor, reason)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        return await self.reload_and_notify(order_id, reason)

    # ==================== SHOPKEEPER ACTIONS ====================

    async def accept_order(
        self,
        actor: ActorContext,
        order_id: uuid.UUID,
        new_status: str = OrderStatus.CONFIRMED.value,
        notes: Optional[str] = None,
    ) -> Order:
        """
        Shopkeeper accepts a pending order as CONFIRMED, PREPARING or READY.

        Accepting as CONFIRMED while exactly one shop rider is available
        assigns that rider and ships the order in the same transaction.
        """
        new_status = order_status_value(new_status)
        if new_status not in ACCEPT_STATUSES:
            raise OrderValidationError(f"Orders can only be accepted as {', '.join(ACCEPT_STATUSES)}")

        from app.services.rider_assignment_service import RiderAssignmentService

        order = await self.get_shop_order(actor, order_id)
        rider = None
        try:
            await self.transition_order_status(order, actor, new_status, notes=notes)
            if new_status == OrderStatus.CONFIRMED.value:
                riders = RiderAssignmentService(self.db, self.notifier)
                rider = await riders.auto_assign_in_transaction(order, actor)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        order = await self.reload_and_notify(order_id)
        if rider is not None:
            await self.notifier.notify_order_event(order, NotificationType.RIDER_ASSIGNED)
        return order

    async def reject_order(
        self,
        actor: ActorContext,
        order_id: uuid.UUID,
        reason: Optional[str] = None,
    ) -> Order:
        """Shopkeeper rejects a pending order; stock goes back on the shelf."""
        order = await self.get_shop_order(actor, order_id)
        reason = reason or "Rejected by shop"
        try:
            await self.cancel_order(order, actor, reason)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        return await self.reload_and_notify(order_id, reason)
