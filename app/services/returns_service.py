"""
Returns Service

Customer returns for delivered order items:

    REQUESTED → APPROVED → PICKED_UP → RECEIVED → REFUNDED
             ↘ REJECTED

Rules:
- only items of a DELIVERED order, flagged returnable, within the item's
  return window measured from delivery
- at most one active (non-terminal) return per order item; a partial unique
  index backs this up at the database level
- every change appends an immutable history entry in the same transaction
"""
from datetime import datetime
from typing import Callable, Dict, List, Optional
import logging
import uuid

from sqlalchemy import select, update
from sqlalchemy.orm import selectinload
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError

from app.config import settings
from app.core.errors import (
    NotFoundError, InvalidTransitionError, DuplicateActiveReturnError,
    ReturnWindowExpiredError, ItemNotReturnableError, OrderNotDeliveredError,
    OrderValidationError,
)
from app.db_types import utc_now
from app.models.order import Order, OrderItem, OrderStatus
from app.models.return_request import (
    ReturnRequest, ReturnRequestHistory, ReturnStatus, ACTIVE_RETURN_STATUSES,
)
from app.models.user import UserRole
from app.schemas.return_request import MIN_REASON_LENGTH
from app.services.notification_service import NotificationService, NotificationType
from app.services.ownership_service import ActorContext, OwnershipService

logger = logging.getLogger(__name__)


SECONDS_PER_DAY = 86400

# current_status -> [allowed next statuses]
RETURN_TRANSITIONS: Dict[str, List[str]] = {
    ReturnStatus.REQUESTED.value: [ReturnStatus.APPROVED.value, ReturnStatus.REJECTED.value],
    ReturnStatus.APPROVED.value: [ReturnStatus.PICKED_UP.value],
    ReturnStatus.PICKED_UP.value: [ReturnStatus.RECEIVED.value],
    ReturnStatus.RECEIVED.value: [ReturnStatus.REFUNDED.value],
    ReturnStatus.REJECTED.value: [],   # Terminal
    ReturnStatus.REFUNDED.value: [],   # Terminal
}


def validate_return_transition(current_status: str, new_status: str) -> None:
    """Raises InvalidTransitionError unless the return may move to new_status."""
    allowed = RETURN_TRANSITIONS.get(current_status, [])
    if new_status in allowed:
        return
    if not allowed:
        raise InvalidTransitionError(
            f"Return in '{current_status}' status cannot be modified. This is a terminal state.",
            current_status=current_status,
        )
    raise InvalidTransitionError(
        f"Cannot change return from '{current_status}' to '{new_status}'. "
        f"Allowed transitions: {', '.join(allowed)}",
        current_status=current_status,
    )


class ReturnsService:
    """Service for the return request workflow."""

    def __init__(
        self,
        db: AsyncSession,
        notifier: Optional[NotificationService] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db = db
        self.notifier = notifier or NotificationService()
        self.ownership = OwnershipService(db)
        self.clock = clock

    # ==================== LOOKUPS ====================

    async def _get_item_with_order(self, order_item_id: uuid.UUID) -> Optional[OrderItem]:
        result = await self.db.execute(
            select(OrderItem)
            .options(selectinload(OrderItem.order))
            .where(OrderItem.id == order_item_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_return_by_id(self, return_id: uuid.UUID) -> Optional[ReturnRequest]:
        result = await self.db.execute(
            select(ReturnRequest)
            .options(selectinload(ReturnRequest.history))
            .where(ReturnRequest.id == return_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _get_shop_return(self, actor: ActorContext, return_id: uuid.UUID) -> ReturnRequest:
        shop = await self.ownership.require_shop(actor)
        ret = await self.get_return_by_id(return_id)
        if ret is None or ret.shop_id != shop.id:
            raise NotFoundError("Return request not found")
        return ret

    async def has_active_return(self, order_item_id: uuid.UUID) -> bool:
        result = await self.db.execute(
            select(ReturnRequest.id).where(
                ReturnRequest.order_item_id == order_item_id,
                ReturnRequest.status.in_(ACTIVE_RETURN_STATUSES),
            ).limit(1)
        )
        return result.scalar_one_or_none() is not None

    # ==================== REQUEST ====================

    def return_period_days(self, item: OrderItem) -> int:
        if item.return_period_days is None:
            return settings.DEFAULT_RETURN_PERIOD_DAYS
        return item.return_period_days

    async def request_return(
        self,
        actor: ActorContext,
        order_item_id: uuid.UUID,
        reason: str,
    ) -> ReturnRequest:
        """
        Customer asks to return one delivered item.

        Raises:
            NotFoundError: item missing or not the customer's
            OrderValidationError: reason too short
            OrderNotDeliveredError, ItemNotReturnableError,
            ReturnWindowExpiredError, DuplicateActiveReturnError
        """
        item = await self._get_item_with_order(order_item_id)
        if item is None or item.order.customer_id != actor.user_id:
            raise NotFoundError("Order item not found")

        reason = (reason or "").strip()
        if len(reason) < MIN_REASON_LENGTH:
            raise OrderValidationError(f"Reason must be at least {MIN_REASON_LENGTH} characters")

        order = item.order
        if order.status != OrderStatus.DELIVERED.value or order.delivered_at is None:
            raise OrderNotDeliveredError("Only delivered orders can be returned")

        if not item.is_returnable:
            raise ItemNotReturnableError(f"{item.product_name} is not returnable")

        period = self.return_period_days(item)
        elapsed_days = (self.clock() - order.delivered_at).total_seconds() / SECONDS_PER_DAY
        if elapsed_days > period:
            raise ReturnWindowExpiredError(f"Return period expired ({period} days)")

        if await self.has_active_return(item.id):
            raise DuplicateActiveReturnError("A return is already in progress for this item")

        ret = ReturnRequest(
            order_item_id=item.id,
            customer_id=actor.user_id,
            shop_id=order.shop_id,
            status=ReturnStatus.REQUESTED.value,
            reason=reason,
            refund_amount=item.unit_price * item.quantity,
            history=[
                ReturnRequestHistory(
                    status=ReturnStatus.REQUESTED.value,
                    changed_by=actor.user_id,
                    actor_role=actor.role,
                    note=reason,
                )
            ],
        )
        try:
            self.db.add(ret)
            await self.db.commit()
        except IntegrityError:
            # Lost a race with a concurrent request for the same item
            await self.db.rollback()
            logger.warning(f"Duplicate active return rejected by index for item {order_item_id}")
            raise DuplicateActiveReturnError("A return is already in progress for this item")
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Return {ret.id} requested for item {item.id} (order {order.order_number})")
        ret = await self.get_return_by_id(ret.id)
        await self.notifier.notify_return_event(
            ret, NotificationType.RETURN_REQUESTED, item.product_name, order.order_number
        )
        return ret

    # ==================== TRANSITIONS ====================

    async def _transition(
        self,
        ret: ReturnRequest,
        actor: ActorContext,
        new_status: str,
        note: Optional[str] = None,
    ) -> ReturnRequest:
        """Compare-and-set the return status and append history, in one transaction."""
        validate_return_transition(ret.status, new_status)

        now = self.clock()
        values = {"status": new_status, "updated_at": now}
        if new_status == ReturnStatus.REFUNDED.value:
            values["refunded_at"] = now

        from_status = ret.status
        try:
            result = await self.db.execute(
                update(ReturnRequest)
                .where(ReturnRequest.id == ret.id, ReturnRequest.status == from_status)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                current = (await self.db.execute(
                    select(ReturnRequest.status).where(ReturnRequest.id == ret.id)
                )).scalar_one_or_none()
                logger.warning(f"Return {ret.id} update lost a race: expected '{from_status}', found '{current}'")
                raise InvalidTransitionError(
                    f"Return request was changed by someone else (now '{current}')",
                    current_status=current,
                )
            self.db.add(ReturnRequestHistory(
                return_request_id=ret.id,
                status=new_status,
                changed_by=actor.user_id,
                actor_role=actor.role,
                note=note,
            ))
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Return {ret.id}: {from_status} -> {new_status} by {actor.role} {actor.user_id}")
        ret = await self.get_return_by_id(ret.id)

        item = await self._get_item_with_order(ret.order_item_id)
        await self.notifier.notify_return_event(
            ret, NotificationType.RETURN_UPDATED, item.product_name, item.order.order_number
        )
        return ret

    async def process_return(
        self,
        actor: ActorContext,
        return_id: uuid.UUID,
        action: str,
        note: Optional[str] = None,
    ) -> ReturnRequest:
        """Owning shopkeeper approves or rejects a requested return."""
        if action not in (ReturnStatus.APPROVED.value, ReturnStatus.REJECTED.value):
            raise OrderValidationError("Action must be APPROVED or REJECTED")
        ret = await self._get_shop_return(actor, return_id)
        return await self._transition(ret, actor, action, note)

    async def mark_picked_up(
        self,
        actor: ActorContext,
        return_id: uuid.UUID,
        note: Optional[str] = None,
    ) -> ReturnRequest:
        """Item collected from the customer, by the shop or one of its riders."""
        if actor.role == UserRole.DELIVERY_BOY.value:
            rider = await self.ownership.require_rider(actor)
            ret = await self.get_return_by_id(return_id)
            if ret is None or ret.shop_id != rider.shop_id:
                raise NotFoundError("Return request not found")
        else:
            ret = await self._get_shop_return(actor, return_id)
        return await self._transition(ret, actor, ReturnStatus.PICKED_UP.value, note or "Picked up from customer")

    async def mark_received(
        self,
        actor: ActorContext,
        return_id: uuid.UUID,
        note: Optional[str] = None,
    ) -> ReturnRequest:
        """Returned item arrived back at the shop."""
        ret = await self._get_shop_return(actor, return_id)
        return await self._transition(ret, actor, ReturnStatus.RECEIVED.value, note or "Received at shop")

    async def mark_refunded(
        self,
        actor: ActorContext,
        return_id: uuid.UUID,
        note: Optional[str] = None,
    ) -> ReturnRequest:
        """Refund issued. Only from RECEIVED."""
        ret = await self._get_shop_return(actor, return_id)
        return await self._transition(ret, actor, ReturnStatus.REFUNDED.value, note or "Refund issued")

    # ==================== READS ====================

    async def get_return_history(
        self,
        actor: ActorContext,
        order_item_id: uuid.UUID,
    ) -> List[ReturnRequest]:
        """All return requests of an item with their history, newest first."""
        item = await self._get_item_with_order(order_item_id)
        if item is None:
            raise NotFoundError("Order item not found")

        order: Order = item.order
        allowed = (
            actor.is_admin
            or order.customer_id == actor.user_id
            or await self.ownership.is_shop_owner(actor.user_id, order.shop_id)
        )
        if not allowed:
            raise NotFoundError("Order item not found")

        result = await self.db.execute(
            select(ReturnRequest)
            .options(selectinload(ReturnRequest.history))
            .where(ReturnRequest.order_item_id == order_item_id)
            .order_by(ReturnRequest.created_at.desc())
        )
        return list(result.scalars().all())

    async def list_shop_returns(
        self,
        actor: ActorContext,
        status: Optional[str] = None,
    ) -> List[ReturnRequest]:
        """Return requests of the shopkeeper's shop, newest first."""
        shop = await self.ownership.require_shop(actor)
        stmt = (
            select(ReturnRequest)
            .options(selectinload(ReturnRequest.history))
            .where(ReturnRequest.shop_id == shop.id)
            .order_by(ReturnRequest.created_at.desc())
        )
        if status:
            stmt = stmt.where(ReturnRequest.status == status)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())
