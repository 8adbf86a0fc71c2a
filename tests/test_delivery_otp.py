import pytest

from app.config import settings
from app.core.errors import InvalidOtpError, InvalidTransitionError, NotFoundError, OtpAttemptsExceededError
from app.models.order import OrderStatus, PaymentStatus
from app.models.rider import DeliveryBoy
from app.services.order_service import OrderService
from app.services.rider_assignment_service import RiderAssignmentService

from tests.conftest import place_single_order, rider_actor


def _wrong(otp: str) -> str:
    return "".join(str((int(digit) + 1) % 10) for digit in otp)


async def _shipped_order(db, world, factory, payment_method="COD"):
    """Returns (order_id, otp, rider actor) for an order out for delivery."""
    rider = await factory.rider(world.shop_id)
    actor = rider_actor(rider)
    order = await place_single_order(db, world, payment_method=payment_method)
    order = await OrderService(db).accept_order(world.shop_actor, order.id)
    assert order.status == OrderStatus.SHIPPED.value
    return order.id, order.delivery_otp, actor


async def test_wrong_code_is_rejected_and_counted(db, world, factory):
    order_id, otp, actor = await _shipped_order(db, world, factory)
    service = RiderAssignmentService(db)

    with pytest.raises(InvalidOtpError, match="attempts remaining"):
        await service.mark_delivered(actor, order_id, _wrong(otp))

    order = await OrderService(db).get_order_by_id(order_id)
    assert order.status == OrderStatus.SHIPPED.value
    assert order.delivery_otp_attempts == 1
    assert order.delivered_at is None


async def test_correct_code_delivers_and_settles_cod(db, world, factory):
    order_id, otp, actor = await _shipped_order(db, world, factory)

    delivered = await RiderAssignmentService(db).mark_delivered(actor, order_id, otp)

    assert delivered.status == OrderStatus.DELIVERED.value
    assert delivered.delivered_at is not None
    assert delivered.payment_status == PaymentStatus.PAID.value
    assert delivered.status_history[-1].from_status == OrderStatus.SHIPPED.value
    assert delivered.status_history[-1].to_status == OrderStatus.DELIVERED.value

    rider = await db.get(DeliveryBoy, delivered.delivery_boy_id, populate_existing=True)
    assert rider.total_deliveries == 1


async def test_code_with_surrounding_whitespace_is_accepted(db, world, factory):
    order_id, otp, actor = await _shipped_order(db, world, factory)
    delivered = await RiderAssignmentService(db).mark_delivered(actor, order_id, f" {otp} ")
    assert delivered.status == OrderStatus.DELIVERED.value


async def test_second_delivery_is_an_invalid_transition(db, world, factory):
    order_id, otp, actor = await _shipped_order(db, world, factory)
    service = RiderAssignmentService(db)
    await service.mark_delivered(actor, order_id, otp)

    with pytest.raises(InvalidTransitionError, match="terminal"):
        await service.mark_delivered(actor, order_id, otp)

    order = await OrderService(db).get_order_by_id(order_id)
    assert order.delivery_otp_attempts == 0


async def test_code_locked_after_max_attempts(db, world, factory, monkeypatch):
    monkeypatch.setattr(settings, "DELIVERY_OTP_MAX_ATTEMPTS", 2)
    order_id, otp, actor = await _shipped_order(db, world, factory)
    service = RiderAssignmentService(db)

    for _ in range(2):
        with pytest.raises(InvalidOtpError):
            await service.mark_delivered(actor, order_id, _wrong(otp))

    with pytest.raises(OtpAttemptsExceededError):
        await service.mark_delivered(actor, order_id, otp)

    order = await OrderService(db).get_order_by_id(order_id)
    assert order.status == OrderStatus.SHIPPED.value
    assert order.delivery_otp_attempts == 2


async def test_order_not_yet_picked_up_cannot_be_delivered(db, world, factory):
    rider = await factory.rider(world.shop_id, is_available=False)
    actor, rider_id = rider_actor(rider), rider.id
    order = await place_single_order(db, world)
    order_id, otp = order.id, order.delivery_otp
    await RiderAssignmentService(db).assign_rider(world.shop_actor, order_id, rider_id)

    with pytest.raises(InvalidTransitionError):
        await RiderAssignmentService(db).mark_delivered(actor, order_id, otp)

    order = await OrderService(db).get_order_by_id(order_id)
    assert order.delivery_otp_attempts == 0


async def test_other_rider_cannot_deliver(db, world, factory):
    order_id, otp, _ = await _shipped_order(db, world, factory)
    bystander = await factory.rider(world.shop_id)

    with pytest.raises(NotFoundError):
        await RiderAssignmentService(db).mark_delivered(rider_actor(bystander), order_id, otp)


async def test_prepaid_order_stays_paid(db, world, factory):
    order_id, otp, actor = await _shipped_order(db, world, factory, payment_method="CARD")
    delivered = await RiderAssignmentService(db).mark_delivered(actor, order_id, otp)
    assert delivered.payment_status == PaymentStatus.PAID.value
