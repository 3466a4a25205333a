"""API tests for the checkout endpoint.

The catalog runs on the shared in-memory stub; carts and orders are real
ORM rows, so these tests need the database.
"""

import pytest

from apps.orders.domain import (
    GatewayPayment,
    Order,
    OrderItem,
    OrderStatus,
    PaymentStatus,
    ShippingAddress,
)
from apps.orders.errors import PaymentAlreadyUsed
from apps.orders.models import OrderModel
from apps.orders.repository import OrderRepository
from apps.orders.verification import payment_signature

CHECKOUT_URL = "/api/orders/checkout/"
CART_URL = "/api/cart/"


@pytest.fixture
def shirt(catalog):
    return catalog.seed("SKU1", "Shirt", 100, 5)


def fill_cart(client, product_id="SKU1", quantity=2, size=None):
    r = client.post(CART_URL, {"product_id": product_id, "quantity": quantity, "size": size}, format="json")
    assert r.status_code == 200, r.content


def cod(shipping, **extra):
    return {"shipping_address": shipping, "payment_info": {"method": "cod"}, **extra}


@pytest.mark.django_db
def test_cod_checkout_creates_processing_order(api_for, alice, shirt, catalog, shipping):
    client = api_for(alice)
    fill_cart(client)

    r = client.post(CHECKOUT_URL, cod(shipping), format="json")

    assert r.status_code == 201
    body = r.json()
    assert body["total_cents"] == 200
    assert body["currency"] == "INR"
    assert body["status"] == "processing"
    assert body["payment_status"] == "unpaid"
    assert body["user_id"] == alice.pk
    assert body["items"][0]["product_name"] == "Shirt"
    assert body["payment_info"] == {"method": "cod"}
    assert catalog.get("SKU1").stock == 3
    assert client.get(CART_URL).json()["items"] == []
    assert OrderModel.objects.filter(pk=body["id"]).exists()


@pytest.mark.django_db
def test_gateway_checkout_is_paid_and_signature_not_echoed(api_for, alice, shirt, shipping):
    client = api_for(alice)
    fill_cart(client, quantity=1)
    payment = {
        "method": "razorpay",
        "gateway_order_id": "order_ABC",
        "gateway_payment_id": "pay_XYZ",
        "gateway_signature": payment_signature("test-secret", "order_ABC", "pay_XYZ"),
    }

    r = client.post(
        CHECKOUT_URL,
        {"shipping_address": shipping, "payment_info": payment, "client_total_cents": 100},
        format="json",
    )

    assert r.status_code == 201
    body = r.json()
    assert body["payment_status"] == "paid"
    assert body["payment_info"]["gateway_order_id"] == "order_ABC"
    assert "gateway_signature" not in body["payment_info"]


@pytest.mark.django_db
def test_bad_signature_is_rejected_and_cart_kept(api_for, alice, shirt, catalog, shipping):
    client = api_for(alice)
    fill_cart(client)
    payment = {
        "method": "razorpay",
        "gateway_order_id": "order_ABC",
        "gateway_payment_id": "pay_XYZ",
        "gateway_signature": "0" * 64,
    }

    r = client.post(CHECKOUT_URL, {"shipping_address": shipping, "payment_info": payment}, format="json")

    assert r.status_code == 400
    assert r.json()["detail"] == "INVALID_PAYMENT_SIGNATURE"
    assert catalog.get("SKU1").stock == 5
    assert len(client.get(CART_URL).json()["items"]) == 1
    assert OrderModel.objects.count() == 0


@pytest.mark.django_db
def test_missing_gateway_ids(api_for, alice, shirt, shipping):
    client = api_for(alice)
    fill_cart(client)
    r = client.post(
        CHECKOUT_URL,
        {"shipping_address": shipping, "payment_info": {"method": "razorpay"}},
        format="json",
    )
    assert r.status_code == 400
    assert r.json()["detail"] == "MISSING_PAYMENT_DETAILS"


@pytest.mark.django_db
def test_empty_cart(api_for, alice, shirt, shipping):
    r = api_for(alice).post(CHECKOUT_URL, cod(shipping), format="json")
    assert r.status_code == 400
    assert r.json()["detail"] == "EMPTY_CART"


@pytest.mark.django_db
def test_stock_sold_out_after_add(api_for, alice, shirt, catalog, shipping):
    client = api_for(alice)
    fill_cart(client, quantity=3)
    catalog.seed("SKU1", "Shirt", 100, 2)

    r = client.post(CHECKOUT_URL, cod(shipping), format="json")

    assert r.status_code == 400
    assert r.json()["detail"] == "INSUFFICIENT_STOCK"
    assert catalog.get("SKU1").stock == 2


@pytest.mark.django_db
def test_total_mismatch(api_for, alice, shirt, shipping):
    client = api_for(alice)
    fill_cart(client)
    r = client.post(CHECKOUT_URL, cod(shipping, client_total_cents=50), format="json")
    assert r.status_code == 400
    assert r.json()["detail"] == "TOTAL_MISMATCH"


@pytest.mark.django_db
def test_incomplete_address_is_validation_error(api_for, alice, shirt, shipping):
    client = api_for(alice)
    fill_cart(client)
    shipping["city"] = "   "
    r = client.post(CHECKOUT_URL, cod(shipping), format="json")
    assert r.status_code == 400
    assert r.json()["detail"] == "VALIDATION_ERROR"


@pytest.mark.django_db
def test_unknown_payment_method_is_validation_error(api_for, alice, shirt, shipping):
    r = api_for(alice).post(
        CHECKOUT_URL, {"shipping_address": shipping, "payment_info": {"method": "card"}}, format="json"
    )
    assert r.status_code == 400
    assert r.json()["detail"] == "VALIDATION_ERROR"


@pytest.mark.django_db
def test_checkout_requires_authentication(api_for, shipping):
    r = api_for().post(CHECKOUT_URL, cod(shipping), format="json")
    assert r.status_code == 401


@pytest.mark.django_db
def test_unexpected_failure_is_internal_error(api_for, alice, monkeypatch, shipping):
    class Broken:
        def checkout(self, **kwargs):
            raise RuntimeError("boom")

    monkeypatch.setattr("apps.orders.providers.get_order_service", lambda: Broken(), raising=True)
    r = api_for(alice).post(CHECKOUT_URL, cod(shipping), format="json")
    assert r.status_code == 500
    assert r.json()["detail"] == "INTERNAL_ERROR"


# ---- idempotency ----

@pytest.mark.django_db
def test_idempotent_retry_replays_the_same_order(api_for, alice, shirt, catalog, shipping):
    client = api_for(alice)
    fill_cart(client)
    payload = cod(shipping)

    r1 = client.post(CHECKOUT_URL, payload, format="json", HTTP_IDEMPOTENCY_KEY="idem-1")
    r2 = client.post(CHECKOUT_URL, payload, format="json", HTTP_IDEMPOTENCY_KEY="idem-1")

    assert r1.status_code == 201
    assert r2.status_code == 201
    assert r2.json() == r1.json()
    assert r2.headers.get("Idempotent-Replay") == "true"
    assert OrderModel.objects.count() == 1
    assert catalog.get("SKU1").stock == 3


@pytest.mark.django_db
def test_idempotency_key_reused_with_other_payload(api_for, alice, shirt, shipping):
    client = api_for(alice)
    fill_cart(client)

    r1 = client.post(CHECKOUT_URL, cod(shipping), format="json", HTTP_IDEMPOTENCY_KEY="idem-2")
    r2 = client.post(
        CHECKOUT_URL, cod(shipping, client_total_cents=200), format="json", HTTP_IDEMPOTENCY_KEY="idem-2"
    )

    assert r1.status_code == 201
    assert r2.status_code == 409
    assert r2.json()["detail"] == "IDEMPOTENCY_CONFLICT"


@pytest.mark.django_db
def test_idempotent_replay_preserves_client_error(api_for, alice, shirt, shipping):
    client = api_for(alice)

    r1 = client.post(CHECKOUT_URL, cod(shipping), format="json", HTTP_IDEMPOTENCY_KEY="idem-3")
    fill_cart(client)
    r2 = client.post(CHECKOUT_URL, cod(shipping), format="json", HTTP_IDEMPOTENCY_KEY="idem-3")

    assert r1.status_code == 400
    assert r2.status_code == 400
    assert r2.json() == {"detail": "EMPTY_CART", "message": "Cart is empty"}
    assert r2.headers.get("Idempotent-Replay") == "true"


@pytest.mark.django_db
def test_idempotency_keys_are_per_user(api_for, alice, bob, shirt, shipping):
    a, b = api_for(alice), api_for(bob)
    fill_cart(a, quantity=1)
    fill_cart(b, quantity=1)

    ra = a.post(CHECKOUT_URL, cod(shipping), format="json", HTTP_IDEMPOTENCY_KEY="shared")
    rb = b.post(CHECKOUT_URL, cod(shipping), format="json", HTTP_IDEMPOTENCY_KEY="shared")

    assert ra.status_code == rb.status_code == 201
    assert ra.json()["id"] != rb.json()["id"]


@pytest.mark.django_db
def test_signed_payment_cannot_back_a_second_order(api_for, alice, shirt, catalog, shipping):
    client = api_for(alice)
    payment = {
        "method": "razorpay",
        "gateway_order_id": "order_ABC",
        "gateway_payment_id": "pay_XYZ",
        "gateway_signature": payment_signature("test-secret", "order_ABC", "pay_XYZ"),
    }
    fill_cart(client, quantity=1)
    first = client.post(CHECKOUT_URL, {"shipping_address": shipping, "payment_info": payment}, format="json")
    assert first.status_code == 201

    fill_cart(client, quantity=3)
    r = client.post(CHECKOUT_URL, {"shipping_address": shipping, "payment_info": payment}, format="json")

    assert r.status_code == 409
    assert r.json()["detail"] == "PAYMENT_ALREADY_USED"
    assert catalog.get("SKU1").stock == 4
    assert len(client.get(CART_URL).json()["items"]) == 1
    assert OrderModel.objects.filter(gateway_payment_id="pay_XYZ").count() == 1


@pytest.mark.django_db
def test_store_refuses_a_second_order_for_one_payment(alice):
    def order():
        return Order(
            id=None,
            user_id=alice.pk,
            items=[OrderItem("SKU1", "Shirt", 100, 1, 100)],
            total_cents=100,
            currency="INR",
            status=OrderStatus.PROCESSING,
            payment_status=PaymentStatus.PAID,
            shipping_address=ShippingAddress("1 Road", "Pune", "MH", "411001", "IN"),
            payment=GatewayPayment("order_ABC", "pay_XYZ"),
        )

    repo = OrderRepository()
    first = repo.add(order())

    with pytest.raises(PaymentAlreadyUsed):
        repo.add(order())

    assert repo.find_by_gateway_payment("pay_XYZ").id == first.id
    assert OrderModel.objects.count() == 1
