"""HTTP-level tests: routing, auth, envelopes and the payment flow end to end."""

from storefront.gateway import EVENT_PAYMENT_SUCCEEDED
from tests.fakes import BUYER_ID, OTHER_SELLER_ID, signed_event

API = "/api/v1"


def place_order(client, world, headers, method="online", price="120.00", quantity=2):
    product = world.add_product(price=price, stock=10)
    address = world.add_address()
    client.post(f"{API}/cart/add/item", json={"product_id": product.id, "quantity": quantity}, headers=headers)
    response = client.post(
        f"{API}/order/create",
        json={"shipping_address_id": address.id, "payment_method": method},
        headers=headers,
    )
    assert response.status_code == 201, response.text
    return response.json()["data"]


class TestPlumbing:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_security_and_correlation_headers(self, client):
        response = client.get("/health", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"
        assert response.headers["X-Frame-Options"] == "DENY"

    def test_missing_token_is_401_envelope(self, client):
        response = client.get(f"{API}/order/user")
        assert response.status_code == 401
        assert response.json() == {"success": False, "message": "Unauthorized: No token provided", "details": None}

    def test_bad_token(self, client):
        response = client.get(f"{API}/order/user", headers={"Authorization": "Bearer not.a.token"})
        assert response.status_code == 401

    def test_body_validation_is_400(self, client, buyer_headers):
        response = client.post(f"{API}/cart/add/item", json={"product_id": "x", "quantity": 0}, headers=buyer_headers)
        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["message"].startswith("Validation failed")

    def test_unhandled_error_is_redacted(self, client, world, buyer_headers, monkeypatch):
        async def boom(user_id):
            raise RuntimeError("connection string leaked")

        monkeypatch.setattr(world.orders, "list_by_user", boom)
        response = client.get(f"{API}/order/user", headers=buyer_headers)
        assert response.status_code == 500
        assert response.json()["message"] == "Internal server error"

    def test_payment_config_is_public(self, client):
        response = client.get(f"{API}/payments/config")
        assert response.json()["data"] == {"publishable_key": "pk_test", "currency": "inr"}


class TestCartApi:

    def test_add_and_read_cart(self, client, world, buyer_headers):
        product = world.add_product(price="49.99", stock=3)
        response = client.post(f"{API}/cart/add/item", json={"product_id": product.id, "quantity": 2}, headers=buyer_headers)
        assert response.status_code == 200

        cart = client.get(f"{API}/cart/get", headers=buyer_headers).json()["data"]
        assert cart["total_price"] == "99.98"
        assert cart["items"][0]["quantity"] == 2

    def test_mixed_sellers_rejected(self, client, world, buyer_headers):
        first = world.add_product()
        second = world.add_product(seller_id=OTHER_SELLER_ID)
        client.post(f"{API}/cart/add/item", json={"product_id": first.id}, headers=buyer_headers)
        response = client.post(f"{API}/cart/add/item", json={"product_id": second.id}, headers=buyer_headers)
        assert response.status_code == 400

    def test_empty_cart_message(self, client, buyer_headers):
        response = client.get(f"{API}/cart/get", headers=buyer_headers)
        assert response.json()["message"] == "Cart is empty"


class TestOrderApi:

    def test_create_order(self, client, world, buyer_headers):
        order = place_order(client, world, buyer_headers)
        assert order["order_status"] == "pending"
        assert order["total_amount"] == "240.00"
        assert order["user_id"] == BUYER_ID

    def test_buyer_cannot_update_status(self, client, world, buyer_headers):
        order = place_order(client, world, buyer_headers)
        response = client.put(
            f"{API}/order/status/update/{order['id']}", json={"order_status": "dispatched"}, headers=buyer_headers
        )
        assert response.status_code == 403

    def test_seller_updates_status(self, client, world, buyer_headers, seller_headers):
        order = place_order(client, world, buyer_headers)
        response = client.put(
            f"{API}/order/status/update/{order['id']}", json={"order_status": "dispatched"}, headers=seller_headers
        )
        assert response.status_code == 200
        assert response.json()["data"]["order_status"] == "dispatched"

    def test_delivered_order_is_conflict_for_buyer_too(self, client, world, buyer_headers, seller_headers):
        order = place_order(client, world, buyer_headers)
        url = f"{API}/order/status/update/{order['id']}"
        for step in ("dispatched", "shipped", "delivered"):
            assert client.put(url, json={"order_status": step}, headers=seller_headers).status_code == 200

        response = client.put(url, json={"order_status": "shipped"}, headers=buyer_headers)

        assert response.status_code == 400
        assert response.json()["message"] == "Cannot update status of a delivered order"

    def test_invalid_status_value(self, client, world, buyer_headers, seller_headers):
        order = place_order(client, world, buyer_headers)
        response = client.put(
            f"{API}/order/status/update/{order['id']}", json={"order_status": "teleported"}, headers=seller_headers
        )
        assert response.status_code == 400

    def test_skipped_step_is_400(self, client, world, buyer_headers, seller_headers):
        order = place_order(client, world, buyer_headers)
        response = client.put(
            f"{API}/order/status/update/{order['id']}", json={"order_status": "delivered"}, headers=seller_headers
        )
        assert response.status_code == 400

    def test_cancel_then_gone(self, client, world, buyer_headers):
        order = place_order(client, world, buyer_headers)
        response = client.delete(f"{API}/orders/cancel/{order['id']}", headers=buyer_headers)
        assert response.status_code == 200
        assert client.get(f"{API}/order/get/{order['id']}", headers=buyer_headers).status_code == 404

    def test_malformed_order_id(self, client, buyer_headers):
        response = client.get(f"{API}/order/get/not-an-id", headers=buyer_headers)
        assert response.status_code == 400

    def test_seller_listing_requires_role(self, client, buyer_headers, seller_headers):
        assert client.get(f"{API}/orders/seller", headers=buyer_headers).status_code == 403
        response = client.get(f"{API}/orders/seller", headers=seller_headers)
        assert response.status_code == 200
        assert response.json()["data"] == []


class TestPaymentFlow:

    def test_intent_webhook_dispatches_order(self, client, world, buyer_headers):
        order = place_order(client, world, buyer_headers)

        response = client.post(f"{API}/payments/intent", json={"order_id": order["id"]}, headers=buyer_headers)
        assert response.status_code == 200
        intent = response.json()["data"]
        assert intent["amount"] == "240.00"

        body, header = signed_event(EVENT_PAYMENT_SUCCEEDED, {
            "id": intent["payment_id"],
            "metadata": {"order_id": order["id"], "user_id": BUYER_ID},
        })
        for _ in range(2):
            response = client.post(f"{API}/payments/webhook", content=body, headers={"Stripe-Signature": header})
            assert response.status_code == 200
            assert response.json()["message"] == "Webhook processed successfully"

        fetched = client.get(f"{API}/order/get/{order['id']}", headers=buyer_headers).json()["data"]
        assert fetched["order_status"] == "dispatched"

        payment = client.get(f"{API}/payments/order/{order['id']}", headers=buyer_headers).json()["data"]
        assert payment["status"] == "success"

    def test_unsigned_webhook_rejected(self, client):
        response = client.post(f"{API}/payments/webhook", content=b'{"id": "evt_1", "type": "x"}')
        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_refund_is_admin_only(self, client, world, buyer_headers, admin_headers):
        order = place_order(client, world, buyer_headers)
        intent = client.post(f"{API}/payments/intent", json={"order_id": order["id"]}, headers=buyer_headers).json()["data"]
        body, header = signed_event(EVENT_PAYMENT_SUCCEEDED, {
            "id": intent["payment_id"],
            "metadata": {"order_id": order["id"], "user_id": BUYER_ID},
        })
        client.post(f"{API}/payments/webhook", content=body, headers={"Stripe-Signature": header})

        denied = client.post(f"{API}/payments/refund", json={"payment_id": intent["payment_id"]}, headers=buyer_headers)
        assert denied.status_code == 403

        response = client.post(f"{API}/payments/refund", json={"payment_id": intent["payment_id"]}, headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["data"]["status"] == "refunded"
