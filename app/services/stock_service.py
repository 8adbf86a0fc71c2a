"""
Stock Service for shop product inventory.

Stock is only ever changed through single atomic UPDATE statements:

    decrement:  UPDATE ... SET stock = stock - :qty WHERE id = :id AND stock >= :qty
    restore:    UPDATE ... SET stock = stock + :qty WHERE id = :id

There is no read-modify-write, so concurrent checkouts cannot oversell.
Methods never commit; they run inside the caller's transaction so the stock
movement commits or rolls back together with the order change.
"""
import uuid
import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import InsufficientStockError, NotFoundError
from app.models.order import OrderItem
from app.models.shop import ShopProduct

logger = logging.getLogger(__name__)


@dataclass
class StockLine:
    """Quantity of one shop product to move."""
    shop_product_id: uuid.UUID
    quantity: int
    product_name: Optional[str] = None


def _merge_lines(lines: Iterable[StockLine]) -> "OrderedDict[uuid.UUID, StockLine]":
    """
    Merge lines per product and sort by product id.
    A fixed lock order keeps two concurrent checkouts from deadlocking.
    """
    merged: Dict[uuid.UUID, StockLine] = {}
    for line in lines:
        if line.shop_product_id in merged:
            merged[line.shop_product_id].quantity += line.quantity
        else:
            merged[line.shop_product_id] = StockLine(
                shop_product_id=line.shop_product_id,
                quantity=line.quantity,
                product_name=line.product_name,
            )
    return OrderedDict(sorted(merged.items(), key=lambda kv: str(kv[0])))


class StockService:
    """Atomic decrement / restore of ShopProduct.stock_quantity."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_stock(self, shop_product_id: uuid.UUID) -> int:
        """Current stock as stored, bypassing the session identity map."""
        result = await self.db.execute(
            select(ShopProduct.stock_quantity).where(ShopProduct.id == shop_product_id)
        )
        stock = result.scalar_one_or_none()
        if stock is None:
            raise NotFoundError("Product not found")
        return stock

    async def decrement(self, lines: List[StockLine]) -> None:
        """
        Decrement stock for every line or raise InsufficientStockError.

        The caller must roll back on error; earlier lines may already have
        been decremented in the open transaction.
        """
        for product_id, line in _merge_lines(lines).items():
            result = await self.db.execute(
                update(ShopProduct)
                .where(
                    ShopProduct.id == product_id,
                    ShopProduct.stock_quantity >= line.quantity,
                )
                .values(stock_quantity=ShopProduct.stock_quantity - line.quantity)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                name = line.product_name
                if name is None:
                    name = (await self.db.execute(
                        select(ShopProduct.name).where(ShopProduct.id == product_id)
                    )).scalar_one_or_none() or str(product_id)
                logger.warning(f"Insufficient stock for {name} ({product_id}), requested {line.quantity}")
                raise InsufficientStockError(product_id, name)

            logger.info(f"Stock decremented: product={product_id} qty={line.quantity}")

    async def restore(self, lines: List[StockLine]) -> None:
        """Add quantities back to stock."""
        for product_id, line in _merge_lines(lines).items():
            await self.db.execute(
                update(ShopProduct)
                .where(ShopProduct.id == product_id)
                .values(stock_quantity=ShopProduct.stock_quantity + line.quantity)
                .execution_options(synchronize_session=False)
            )
            logger.info(f"Stock restored: product={product_id} qty={line.quantity}")

    async def restore_for_order(self, order_id: uuid.UUID) -> int:
        """
        Restore stock for every line item of an order.

        Returns:
            Total units restored
        """
        result = await self.db.execute(
            select(OrderItem.shop_product_id, OrderItem.quantity)
            .where(OrderItem.order_id == order_id)
        )
        lines = [StockLine(shop_product_id=pid, quantity=qty) for pid, qty in result.all()]
        await self.restore(lines)
        return sum(line.quantity for line in lines)
