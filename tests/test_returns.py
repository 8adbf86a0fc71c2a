from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy.orm.attributes import set_committed_value

from app.core.errors import (
    DuplicateActiveReturnError, InvalidTransitionError, ItemNotReturnableError,
    NotFoundError, OrderNotDeliveredError, OrderValidationError, ReturnWindowExpiredError,
)
from app.models.return_request import ReturnStatus
from app.models.user import UserRole
from app.services.returns_service import ReturnsService, validate_return_transition

from tests.conftest import actor_for, deliver_order, place_single_order, rider_actor

R = ReturnStatus


async def _delivered_item(db, world, factory, *lines):
    """Returns (order_item_id, delivered_at) of the first item of a delivered order."""
    order = await deliver_order(db, world, factory, *lines)
    return order.items[0].id, order.delivered_at


def _clock_at(moment):
    return lambda: moment


# ---------------------------------------------------------------------------
# Eligibility
# ---------------------------------------------------------------------------

async def test_request_return_for_delivered_item(db, world, factory, notifier):
    item_id, _ = await _delivered_item(db, world, factory, (world.product_id, 2))

    ret = await ReturnsService(db, notifier).request_return(world.customer_actor, item_id, "Packet was torn")

    assert ret.status == R.REQUESTED.value
    assert ret.refund_amount == Decimal("100.00")
    assert ret.shop_id == world.shop_id
    assert [h.status for h in ret.history] == [R.REQUESTED.value]
    assert notifier.sent[-1]["type"] == "return_requested"
    assert notifier.sent[-1]["recipient"] == "shop"


@pytest.mark.parametrize("days, allowed", [(7, True), (8, False)])
async def test_return_window_boundary(db, world, factory, days, allowed):
    item_id, delivered_at = await _delivered_item(db, world, factory)
    service = ReturnsService(db, clock=_clock_at(delivered_at + timedelta(days=days)))

    if allowed:
        ret = await service.request_return(world.customer_actor, item_id, "Wrong variety")
        assert ret.status == R.REQUESTED.value
    else:
        with pytest.raises(ReturnWindowExpiredError):
            await service.request_return(world.customer_actor, item_id, "Wrong variety")


async def test_missing_return_period_uses_default(db, world, factory):
    loose = await factory.product(world.shop_id, name="Loose Dal", return_period_days=None)
    item_id, delivered_at = await _delivered_item(db, world, factory, (loose.id, 1))

    late = ReturnsService(db, clock=_clock_at(delivered_at + timedelta(days=7, hours=1)))
    with pytest.raises(ReturnWindowExpiredError, match="7 days"):
        await late.request_return(world.customer_actor, item_id, "Stale smell")


async def test_undelivered_order_cannot_be_returned(db, world):
    order = await place_single_order(db, world)
    with pytest.raises(OrderNotDeliveredError):
        await ReturnsService(db).request_return(world.customer_actor, order.items[0].id, "Not needed")


async def test_non_returnable_item(db, world, factory):
    milk = await factory.product(world.shop_id, name="Milk", is_returnable=False)
    item_id, _ = await _delivered_item(db, world, factory, (milk.id, 1))

    with pytest.raises(ItemNotReturnableError):
        await ReturnsService(db).request_return(world.customer_actor, item_id, "Gone sour")


async def test_reason_must_be_meaningful(db, world, factory):
    item_id, _ = await _delivered_item(db, world, factory)
    with pytest.raises(OrderValidationError):
        await ReturnsService(db).request_return(world.customer_actor, item_id, "  bad  ")


async def test_other_customer_cannot_return_item(db, world, factory):
    item_id, _ = await _delivered_item(db, world, factory)
    stranger = await factory.user(UserRole.CUSTOMER)

    with pytest.raises(NotFoundError):
        await ReturnsService(db).request_return(actor_for(stranger), item_id, "Not mine anyway")


async def test_only_one_active_return_per_item(db, world, factory):
    item_id, _ = await _delivered_item(db, world, factory)
    service = ReturnsService(db)
    await service.request_return(world.customer_actor, item_id, "Damaged bag")

    with pytest.raises(DuplicateActiveReturnError):
        await service.request_return(world.customer_actor, item_id, "Damaged bag again")


# ---------------------------------------------------------------------------
# Workflow
# ---------------------------------------------------------------------------

async def test_full_return_flow_to_refund(db, world, factory):
    item_id, _ = await _delivered_item(db, world, factory)
    rider = await factory.rider(world.shop_id)
    service = ReturnsService(db)

    ret = await service.request_return(world.customer_actor, item_id, "Insects in rice")
    ret = await service.process_return(world.shop_actor, ret.id, R.APPROVED.value, "Sorry about that")
    assert ret.status == R.APPROVED.value

    ret = await service.mark_picked_up(rider_actor(rider), ret.id)
    assert ret.status == R.PICKED_UP.value
    assert ret.history[-1].actor_role == UserRole.DELIVERY_BOY.value

    ret = await service.mark_received(world.shop_actor, ret.id)
    assert ret.refunded_at is None

    ret = await service.mark_refunded(world.shop_actor, ret.id)
    assert ret.status == R.REFUNDED.value
    assert ret.refunded_at is not None
    assert ret.refund_amount == Decimal("150.00")
    assert [h.status for h in ret.history] == [
        R.REQUESTED.value, R.APPROVED.value, R.PICKED_UP.value, R.RECEIVED.value, R.REFUNDED.value,
    ]


async def test_refund_requires_received(db, world, factory):
    item_id, _ = await _delivered_item(db, world, factory)
    service = ReturnsService(db)
    ret = await service.request_return(world.customer_actor, item_id, "Wrong brand")
    ret = await service.process_return(world.shop_actor, ret.id, R.APPROVED.value)
    return_id = ret.id

    with pytest.raises(InvalidTransitionError) as exc:
        await service.mark_refunded(world.shop_actor, return_id)
    assert exc.value.current_status == R.APPROVED.value

    ret = await service.get_return_by_id(return_id)
    assert ret.status == R.APPROVED.value
    assert ret.refunded_at is None


async def test_rejected_return_allows_a_new_request(db, world, factory):
    item_id, _ = await _delivered_item(db, world, factory)
    service = ReturnsService(db)

    first = await service.request_return(world.customer_actor, item_id, "Too much salt")
    first = await service.process_return(world.shop_actor, first.id, R.REJECTED.value, "Used product")
    second = await service.request_return(world.customer_actor, item_id, "Seal was broken")

    history = await service.get_return_history(world.customer_actor, item_id)
    assert [r.id for r in history] == [second.id, first.id]

    shop_view = await service.get_return_history(world.shop_actor, item_id)
    assert len(shop_view) == 2

    pending = await service.list_shop_returns(world.shop_actor, status=R.REQUESTED.value)
    assert [r.id for r in pending] == [second.id]


async def test_rejected_return_is_terminal(db, world, factory):
    item_id, _ = await _delivered_item(db, world, factory)
    service = ReturnsService(db)
    ret = await service.request_return(world.customer_actor, item_id, "Too much salt")
    ret = await service.process_return(world.shop_actor, ret.id, R.REJECTED.value)

    with pytest.raises(InvalidTransitionError, match="terminal"):
        await service.process_return(world.shop_actor, ret.id, R.APPROVED.value)


async def test_process_action_must_be_a_decision(db, world, factory):
    item_id, _ = await _delivered_item(db, world, factory)
    service = ReturnsService(db)
    ret = await service.request_return(world.customer_actor, item_id, "Too much salt")

    with pytest.raises(OrderValidationError):
        await service.process_return(world.shop_actor, ret.id, R.REFUNDED.value)


async def test_other_shop_cannot_process_return(db, world, factory):
    item_id, _ = await _delivered_item(db, world, factory)
    ret = await ReturnsService(db).request_return(world.customer_actor, item_id, "Leaking pack")
    rival_owner = await factory.user(UserRole.SHOPKEEPER)
    await factory.shop(rival_owner, name="Rival Store")
    rival_shop = await factory.shop(name="Far Away Mart")
    outsider_rider = await factory.rider(rival_shop.id)

    service = ReturnsService(db)
    with pytest.raises(NotFoundError):
        await service.process_return(actor_for(rival_owner), ret.id, R.APPROVED.value)
    with pytest.raises(NotFoundError):
        await service.mark_picked_up(rider_actor(outsider_rider), ret.id)
    with pytest.raises(NotFoundError):
        await service.get_return_history(actor_for(rival_owner), item_id)


async def test_stale_return_status_reports_current_status(db, world, factory):
    item_id, _ = await _delivered_item(db, world, factory)
    service = ReturnsService(db)
    ret = await service.request_return(world.customer_actor, item_id, "Leaking pack")
    stale = await service.get_return_by_id(ret.id)

    await service.process_return(world.shop_actor, ret.id, R.REJECTED.value)

    # Pretend this copy was read before the rejection landed
    set_committed_value(stale, "status", R.REQUESTED.value)

    with pytest.raises(InvalidTransitionError) as exc:
        await service._transition(stale, world.shop_actor, R.APPROVED.value)
    assert exc.value.current_status == R.REJECTED.value


@pytest.mark.parametrize("current, new", [
    (R.REQUESTED, R.PICKED_UP),
    (R.APPROVED, R.RECEIVED),
    (R.PICKED_UP, R.REFUNDED),
    (R.REFUNDED, R.REQUESTED),
])
def test_return_edges_are_enforced(current, new):
    with pytest.raises(InvalidTransitionError):
        validate_return_transition(current.value, new.value)
