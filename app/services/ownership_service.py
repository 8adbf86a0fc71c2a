"""
Ownership lookups used by the order workflow.

Answers "who is acting" questions: which shop a shopkeeper owns, which rider
profile belongs to a user, whether a rider works for a shop. Callers turn a
failed lookup into NotFoundError so other actors' records are never revealed.
"""
import uuid
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import NotFoundError
from app.models.rider import DeliveryBoy
from app.models.shop import Shop
from app.models.user import UserRole


@dataclass(frozen=True)
class ActorContext:
    """The authenticated caller of a workflow operation."""
    user_id: uuid.UUID
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value


class OwnershipService:
    """Resolves shops and rider profiles for an actor."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def shop_owned_by(self, user_id: uuid.UUID) -> Optional[Shop]:
        """Active shop owned by a user (oldest first if there are several)."""
        result = await self.db.execute(
            select(Shop)
            .where(Shop.owner_id == user_id, Shop.is_active == True)  # noqa: E712
            .order_by(Shop.created_at)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def is_shop_owner(self, user_id: uuid.UUID, shop_id: uuid.UUID) -> bool:
        result = await self.db.execute(
            select(Shop.id).where(Shop.id == shop_id, Shop.owner_id == user_id)
        )
        return result.scalar_one_or_none() is not None

    async def rider_for_user(self, user_id: uuid.UUID) -> Optional[DeliveryBoy]:
        result = await self.db.execute(
            select(DeliveryBoy).where(DeliveryBoy.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def rider_belongs_to_shop(self, rider_id: uuid.UUID, shop_id: uuid.UUID) -> bool:
        result = await self.db.execute(
            select(DeliveryBoy.id).where(
                DeliveryBoy.id == rider_id,
                DeliveryBoy.shop_id == shop_id,
            )
        )
        return result.scalar_one_or_none() is not None

    async def require_shop(self, actor: ActorContext) -> Shop:
        shop = await self.shop_owned_by(actor.user_id)
        if shop is None:
            raise NotFoundError("Shop not found")
        return shop

    async def require_rider(self, actor: ActorContext) -> DeliveryBoy:
        rider = await self.rider_for_user(actor.user_id)
        if rider is None or not rider.is_active:
            raise NotFoundError("Delivery profile not found")
        return rider
