"""
HTTP surface tests: routing, auth, role checks and error rendering.
"""
import uuid

from app.models.user import User, UserRole

from tests.conftest import auth_headers, deliver_order


def _checkout(world, quantity=2):
    return {
        "address_id": str(world.address_id),
        "items": [{"shop_product_id": str(world.product_id), "quantity": quantity}],
        "payment_method": "cod",
    }


async def _place(client, world, quantity=2) -> dict:
    response = await client.post(
        "/api/v1/orders", json=_checkout(world, quantity), headers=auth_headers(world.customer)
    )
    assert response.status_code == 201, response.text
    return response.json()["orders"][0]


async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["checks"]["database"] == "connected"


async def test_place_order(client, world):
    response = await client.post(
        "/api/v1/orders", json=_checkout(world), headers=auth_headers(world.customer)
    )

    assert response.status_code == 201
    body = response.json()
    assert len(body["orders"]) == 1
    order = body["orders"][0]
    assert order["status"] == "PENDING"
    assert order["payment_method"] == "COD"
    assert len(order["delivery_otp"]) == 4
    assert float(body["grand_total"]) == float(order["total_amount"])


async def test_delivery_code_is_only_shown_to_the_customer(client, world):
    order = await _place(client, world)

    customer_view = await client.get(
        f"/api/v1/orders/{order['id']}", headers=auth_headers(world.customer)
    )
    assert customer_view.status_code == 200
    assert customer_view.json()["delivery_otp"] == order["delivery_otp"]

    shop_view = await client.get(
        f"/api/v1/shop/orders/{order['id']}", headers=auth_headers(world.shopkeeper)
    )
    assert shop_view.status_code == 200
    assert "delivery_otp" not in shop_view.json()


async def test_workflow_error_is_rendered_with_kind(client, world):
    order = await _place(client, world)
    headers = auth_headers(world.customer)

    first = await client.post(f"/api/v1/orders/{order['id']}/cancel", headers=headers)
    assert first.status_code == 200
    assert first.json()["status"] == "CANCELLED"

    second = await client.post(
        f"/api/v1/orders/{order['id']}/cancel", json={"reason": "again"}, headers=headers
    )
    assert second.status_code == 409
    body = second.json()
    assert body["kind"] == "INVALID_TRANSITION"
    assert body["current_status"] == "CANCELLED"
    assert body["path"] == f"/api/v1/orders/{order['id']}/cancel"
    assert body["method"] == "POST"


async def test_insufficient_stock_is_a_conflict(client, world):
    response = await client.post(
        "/api/v1/orders", json=_checkout(world, quantity=11), headers=auth_headers(world.customer)
    )
    assert response.status_code == 409
    body = response.json()
    assert body["kind"] == "INSUFFICIENT_STOCK"
    assert body["product_id"] == str(world.product_id)


async def test_someone_elses_order_is_not_found(client, world, factory):
    order = await _place(client, world)
    stranger = await factory.user(UserRole.CUSTOMER)

    response = await client.get(f"/api/v1/orders/{order['id']}", headers=auth_headers(stranger))
    assert response.status_code == 404
    assert response.json()["kind"] == "NOT_FOUND"


async def test_invalid_token_is_unauthorized(client):
    response = await client.get("/api/v1/orders", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


async def test_wrong_role_is_forbidden(client, world):
    response = await client.post(
        "/api/v1/orders", json=_checkout(world), headers=auth_headers(world.shopkeeper)
    )
    assert response.status_code == 403
    assert "CUSTOMER" in response.json()["detail"]


async def test_request_validation_errors(client, world):
    headers = auth_headers(world.customer)

    bad = _checkout(world)
    bad["items"][0]["quantity"] = 0
    response = await client.post("/api/v1/orders", json=bad, headers=headers)
    assert response.status_code == 422
    body = response.json()
    assert body["kind"] == "VALIDATION_ERROR"
    assert body["path"] == "/api/v1/orders"
    assert body["method"] == "POST"
    assert body["errors"][0]["loc"] == ["body", "items", "0", "quantity"]

    missing = _checkout(world)
    del missing["address_id"]
    response = await client.post("/api/v1/orders", json=missing, headers=headers)
    assert response.status_code == 422
    assert response.json()["kind"] == "VALIDATION_ERROR"

    response = await client.get("/api/v1/orders/not-a-uuid", headers=headers)
    assert response.status_code == 422
    assert response.json()["kind"] == "VALIDATION_ERROR"

    response = await client.get(f"/api/v1/orders/{uuid.uuid4()}", headers=headers)
    assert response.status_code == 404


async def test_shop_accepts_and_rider_delivers(client, world, factory):
    rider = await factory.rider(world.shop_id)
    rider_user = await factory.db.get(User, rider.user_id)
    order = await _place(client, world)
    shop_headers = auth_headers(world.shopkeeper)
    rider_headers = auth_headers(rider_user)

    accepted = await client.post(f"/api/v1/shop/orders/{order['id']}/accept", headers=shop_headers)
    assert accepted.status_code == 200
    assert accepted.json()["status"] == "SHIPPED"

    located = await client.post(
        "/api/v1/delivery/location", json={"latitude": 12.97, "longitude": 77.59}, headers=rider_headers
    )
    assert located.status_code == 200
    tracking = await client.get(
        f"/api/v1/orders/{order['id']}/rider-location", headers=auth_headers(world.customer)
    )
    assert tracking.status_code == 200
    assert tracking.json()["latitude"] == 12.97

    wrong = await client.post(
        f"/api/v1/delivery/orders/{order['id']}/deliver", json={"otp": "xxxx"}, headers=rider_headers
    )
    assert wrong.status_code == 400
    assert wrong.json()["kind"] == "INVALID_OTP"

    delivered = await client.post(
        f"/api/v1/delivery/orders/{order['id']}/deliver",
        json={"otp": order["delivery_otp"]},
        headers=rider_headers,
    )
    assert delivered.status_code == 200
    assert delivered.json()["status"] == "DELIVERED"
    assert delivered.json()["payment_status"] == "PAID"

    history = await client.get("/api/v1/delivery/orders/history", headers=rider_headers)
    assert history.json()["total"] == 1


async def test_return_request_over_http(client, world, factory):
    delivered = await deliver_order(factory.db, world, factory)
    item_id = delivered.items[0].id
    headers = auth_headers(world.customer)

    too_short = await client.post(
        f"/api/v1/order-items/{item_id}/returns", json={"reason": "bad"}, headers=headers
    )
    assert too_short.status_code == 422

    created = await client.post(
        f"/api/v1/order-items/{item_id}/returns", json={"reason": "Bag was torn"}, headers=headers
    )
    assert created.status_code == 201
    return_id = created.json()["id"]

    duplicate = await client.post(
        f"/api/v1/order-items/{item_id}/returns", json={"reason": "Bag was torn"}, headers=headers
    )
    assert duplicate.status_code == 409
    assert duplicate.json()["kind"] == "DUPLICATE_ACTIVE_RETURN"

    approved = await client.post(
        f"/api/v1/returns/{return_id}/process",
        json={"action": "APPROVED"},
        headers=auth_headers(world.shopkeeper),
    )
    assert approved.status_code == 200
    assert approved.json()["status"] == "APPROVED"

    listed = await client.get("/api/v1/shop/returns?status=APPROVED", headers=auth_headers(world.shopkeeper))
    assert [r["id"] for r in listed.json()] == [return_id]


async def test_token_issued_before_role_change_is_rejected(client, world, factory):
    headers = auth_headers(world.customer)
    world.customer.role = UserRole.DELIVERY_BOY.value
    await factory.db.commit()

    response = await client.get("/api/v1/orders", headers=headers)
    assert response.status_code == 401


async def test_shop_lists_its_riders(client, world, factory):
    online = await factory.rider(world.shop_id)
    await factory.rider(world.shop_id, is_available=False)
    other_shop = await factory.shop(name="Elsewhere")
    await factory.rider(other_shop.id)
    headers = auth_headers(world.shopkeeper)

    everyone = await client.get("/api/v1/shop/riders", headers=headers)
    assert everyone.status_code == 200
    assert len(everyone.json()) == 2

    available = await client.get("/api/v1/shop/riders?available_only=true", headers=headers)
    assert [r["id"] for r in available.json()] == [str(online.id)]
