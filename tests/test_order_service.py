import uuid
from decimal import Decimal

import pytest
from sqlalchemy.orm.attributes import set_committed_value

from app.config import settings
from app.core.errors import (
    InsufficientStockError, InvalidTransitionError, NotFoundError, OrderValidationError,
)
from app.models.order import OrderStatus, PaymentStatus
from app.models.user import UserRole
from app.schemas.order import OrderCreate, OrderItemCreate
from app.services.order_service import OrderService
from app.services.stock_service import StockService

from tests.conftest import actor_for, place_single_order


# ---------------------------------------------------------------------------
# Placement
# ---------------------------------------------------------------------------

async def test_place_order_snapshots_and_reserves_stock(db, world, notifier):
    service = OrderService(db, notifier)
    orders = await service.place_order(world.customer_actor, world.checkout())

    order = orders[0]
    assert order.status == OrderStatus.PENDING.value
    assert order.order_number.startswith("EZ")
    assert order.total_items == 3
    assert order.subtotal == Decimal("150.00")
    assert order.total_amount == Decimal("150.00") + settings.DELIVERY_FEE
    assert order.payment_status == PaymentStatus.PENDING.value
    assert order.delivery_address["city"] == "Bengaluru"
    assert len(order.delivery_otp) == settings.DELIVERY_OTP_LENGTH
    assert order.delivery_otp.isdigit()
    assert order.delivery_boy_id is None

    item = order.items[0]
    assert item.product_name == "Basmati Rice"
    assert item.unit_price == Decimal("50.00")
    assert item.is_returnable is True

    assert [(h.from_status, h.to_status) for h in order.status_history] == [(None, "PENDING")]
    assert await StockService(db).get_stock(world.product_id) == 7
    assert [(n["type"], n["recipient"]) for n in notifier.sent] == [("order_placed", "shop")]


async def test_prepaid_order_is_marked_paid(db, world):
    order = await place_single_order(db, world, payment_method="upi")
    assert order.payment_method == "UPI"
    assert order.payment_status == PaymentStatus.PAID.value


async def test_price_option_overrides_base_price(db, world, factory):
    option = await factory.price_option(world.product_id, price="230.00")
    data = OrderCreate(
        address_id=world.address_id,
        items=[OrderItemCreate(shop_product_id=world.product_id, price_option_id=option.id, quantity=2)],
    )
    orders = await OrderService(db).place_order(world.customer_actor, data)
    item = orders[0].items[0]
    assert item.unit_price == Decimal("230.00")
    assert item.total_price == Decimal("460.00")
    assert item.unit == "kg"


async def test_checkout_across_shops_creates_one_order_per_shop(db, world, factory):
    other_shop = await factory.shop(name="Fresh Farm")
    milk = await factory.product(other_shop.id, name="Milk", stock=5, price="28.00")

    orders = await OrderService(db).place_order(
        world.customer_actor, world.checkout((world.product_id, 2), (milk.id, 1))
    )

    assert {o.shop_id for o in orders} == {world.shop_id, other_shop.id}
    stock = StockService(db)
    assert await stock.get_stock(world.product_id) == 8
    assert await stock.get_stock(milk.id) == 4


async def test_duplicate_lines_are_reserved_together(db, world):
    orders = await OrderService(db).place_order(
        world.customer_actor, world.checkout((world.product_id, 6), (world.product_id, 4))
    )
    assert orders[0].total_items == 10
    assert await StockService(db).get_stock(world.product_id) == 0


async def test_insufficient_stock_rolls_back_everything(db, world, factory):
    scarce = await factory.product(world.shop_id, name="Saffron", stock=1)
    scarce_id = scarce.id

    with pytest.raises(InsufficientStockError) as exc:
        await OrderService(db).place_order(
            world.customer_actor, world.checkout((world.product_id, 3), (scarce_id, 2))
        )

    assert exc.value.product_name == "Saffron"
    assert exc.value.product_id == scarce_id
    stock = StockService(db)
    assert await stock.get_stock(world.product_id) == 10
    assert await stock.get_stock(scarce_id) == 1
    orders, total = await OrderService(db).list_customer_orders(world.customer_actor)
    assert total == 0


async def test_address_of_another_customer_is_not_found(db, world, factory):
    stranger = await factory.user(UserRole.CUSTOMER)
    with pytest.raises(NotFoundError):
        await OrderService(db).place_order(actor_for(stranger), world.checkout())


async def test_inactive_product_is_rejected(db, world, factory):
    hidden = await factory.product(world.shop_id, name="Old Stock")
    hidden.is_active = False
    await db.commit()

    with pytest.raises(OrderValidationError):
        await OrderService(db).place_order(world.customer_actor, world.checkout((hidden.id, 1)))


async def test_unknown_product_is_rejected(db, world):
    data = OrderCreate(
        address_id=world.address_id,
        items=[OrderItemCreate(shop_product_id=uuid.uuid4(), quantity=1)],
    )
    with pytest.raises(OrderValidationError):
        await OrderService(db).place_order(world.customer_actor, data)


# ---------------------------------------------------------------------------
# Cancellation and rejection
# ---------------------------------------------------------------------------

async def test_customer_cancel_restores_stock_then_shop_cannot_confirm(db, world):
    order = await place_single_order(db, world)
    order_id = order.id
    service = OrderService(db)
    assert await StockService(db).get_stock(world.product_id) == 7

    cancelled = await service.cancel_by_customer(world.customer_actor, order_id, "Changed my mind")

    assert cancelled.status == OrderStatus.CANCELLED.value
    assert cancelled.cancelled_by == "CUSTOMER"
    assert cancelled.cancel_reason == "Changed my mind"
    assert cancelled.cancelled_at is not None
    assert await StockService(db).get_stock(world.product_id) == 10

    with pytest.raises(InvalidTransitionError):
        await service.accept_order(world.shop_actor, order_id)

    reloaded = await service.get_order_by_id(order_id)
    assert reloaded.status == OrderStatus.CANCELLED.value
    assert await StockService(db).get_stock(world.product_id) == 10


async def test_second_cancel_is_an_invalid_transition(db, world):
    order = await place_single_order(db, world)
    service = OrderService(db)
    await service.cancel_by_customer(world.customer_actor, order.id)

    with pytest.raises(InvalidTransitionError):
        await service.cancel_by_customer(world.customer_actor, order.id)
    assert await StockService(db).get_stock(world.product_id) == 10


async def test_customer_cannot_touch_someone_elses_order(db, world, factory):
    order = await place_single_order(db, world)
    stranger = await factory.user(UserRole.CUSTOMER)

    with pytest.raises(NotFoundError):
        await OrderService(db).cancel_by_customer(actor_for(stranger), order.id)


async def test_shop_reject_restores_stock(db, world):
    order = await place_single_order(db, world)
    rejected = await OrderService(db).reject_order(world.shop_actor, order.id, "Closing early")

    assert rejected.status == OrderStatus.CANCELLED.value
    assert rejected.cancelled_by == "SHOPKEEPER"
    assert await StockService(db).get_stock(world.product_id) == 10


async def test_other_shop_cannot_accept(db, world, factory):
    order = await place_single_order(db, world)
    other_owner = await factory.user(UserRole.SHOPKEEPER)
    await factory.shop(other_owner, name="Rival Store")

    with pytest.raises(NotFoundError):
        await OrderService(db).accept_order(actor_for(other_owner), order.id)


# ---------------------------------------------------------------------------
# Acceptance
# ---------------------------------------------------------------------------

async def test_accept_without_riders_stays_confirmed(db, world):
    order = await place_single_order(db, world)
    accepted = await OrderService(db).accept_order(world.shop_actor, order.id)

    assert accepted.status == OrderStatus.CONFIRMED.value
    assert accepted.delivery_boy_id is None
    assert accepted.confirmed_at is not None
    assert [h.to_status for h in accepted.status_history] == ["PENDING", "CONFIRMED"]


@pytest.mark.parametrize("requested", ["preparing", "Preparing", OrderStatus.PREPARING])
async def test_accept_as_preparing(db, world, requested):
    order = await place_single_order(db, world)
    accepted = await OrderService(db).accept_order(world.shop_actor, order.id, requested)
    assert accepted.status == OrderStatus.PREPARING.value


async def test_accept_rejects_non_accept_status(db, world):
    order = await place_single_order(db, world)
    with pytest.raises(OrderValidationError):
        await OrderService(db).accept_order(world.shop_actor, order.id, OrderStatus.SHIPPED.value)


async def test_stale_status_loses_compare_and_set(db, world):
    order = await place_single_order(db, world)
    service = OrderService(db)
    stale = await service.get_order_by_id(order.id)

    await service.cancel_by_customer(world.customer_actor, order.id)

    # Pretend the shop read the order before the cancellation landed
    set_committed_value(stale, "status", OrderStatus.PENDING.value)

    with pytest.raises(InvalidTransitionError) as exc:
        await service.transition_order_status(stale, world.shop_actor, OrderStatus.CONFIRMED.value)
    assert exc.value.current_status == OrderStatus.CANCELLED.value
    await db.rollback()


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

async def test_list_orders_filters_and_paginates(db, world):
    first = await place_single_order(db, world, (world.product_id, 1))
    await place_single_order(db, world, (world.product_id, 1))
    service = OrderService(db)
    await service.cancel_by_customer(world.customer_actor, first.id)

    orders, total = await service.list_customer_orders(world.customer_actor, limit=1)
    assert total == 2
    assert len(orders) == 1

    cancelled, total = await service.list_customer_orders(world.customer_actor, status="CANCELLED")
    assert total == 1
    assert cancelled[0].id == first.id

    cancelled, total = await service.list_customer_orders(world.customer_actor, status="cancelled")
    assert total == 1

    shop_orders, total = await service.list_shop_orders(world.shop_actor, status=OrderStatus.PENDING)
    assert total == 1
