"""Unit tests for the HTTP adapters to the catalog service and gateway.

``httpx.Client.get``/``post`` are monkeypatched, so no network is used.
"""

import httpx
import pytest

from apps.orders.domain import Product
from apps.orders.errors import GatewayError, PaymentNotConfigured
from apps.orders.http_adapters import REQUEST_ID_CTX, HttpCatalogClient, HttpGatewayClient, _catalog_cb


class DummyResp:
    """Minimal httpx-like response stub for adapter tests."""

    def __init__(self, status_code=200, json_data=None):
        self.status_code = status_code
        self._json = json_data or {}

    def raise_for_status(self):
        if self.status_code >= 400:
            raise httpx.HTTPStatusError("err", request=None, response=None)

    def json(self):
        return self._json


REFUSED = {"detail": {"decremented": False, "detail": "INSUFFICIENT_STOCK"}}

BODIES = {
    200: {"decremented": True, "stock": 3},
    404: {"detail": "NOT_FOUND"},
    422: REFUSED,
}


@pytest.fixture(autouse=True)
def fast_retries(settings, monkeypatch):
    settings.HTTP_RETRY_MAX = 1
    settings.HTTP_RETRY_BACKOFF_BASE = 0.0
    monkeypatch.setattr("time.sleep", lambda *a, **k: None, raising=True)
    _catalog_cb.on_success()
    yield
    _catalog_cb.on_success()


def test_catalog_get_product(monkeypatch):
    def fake_get(self, url, headers=None, **kw):
        assert url == "http://catalog:9001/products/SKU1"
        return DummyResp(200, {"id": "SKU1", "name": "Shirt", "price_cents": 100, "stock": 5})

    monkeypatch.setattr(httpx.Client, "get", fake_get, raising=True)
    product = HttpCatalogClient(base_url="http://catalog:9001/").get("SKU1")
    assert product == Product(id="SKU1", name="Shirt", price_cents=100, stock=5)


def test_catalog_get_missing_product_is_none(monkeypatch):
    monkeypatch.setattr(httpx.Client, "get", lambda self, url, **kw: DummyResp(404), raising=True)
    assert HttpCatalogClient(base_url="http://x").get("SKU1") is None


@pytest.mark.parametrize("status, expected", [(200, True), (422, False), (404, False)])
def test_catalog_decrement(monkeypatch, status, expected):
    seen = {}

    def fake_post(self, url, json=None, headers=None, **kw):
        seen["url"], seen["json"] = url, json
        return DummyResp(status, BODIES[status])

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)
    assert HttpCatalogClient(base_url="http://x").decrement_if_available("SKU1", 2) is expected
    assert seen == {"url": "http://x/products/SKU1/decrement", "json": {"quantity": 2}}


def test_catalog_business_refusal_is_not_a_circuit_failure(monkeypatch):
    monkeypatch.setattr(_catalog_cb, "fail_threshold", 1)
    monkeypatch.setattr(httpx.Client, "post", lambda self, url, **kw: DummyResp(422, REFUSED), raising=True)

    client = HttpCatalogClient(base_url="http://x")
    client.decrement_if_available("SKU1", 9)
    client.decrement_if_available("SKU1", 9)
    assert _catalog_cb.state == "CLOSED"


def test_catalog_increment(monkeypatch):
    calls = []

    def fake_post(self, url, json=None, headers=None, **kw):
        calls.append((url, json))
        return DummyResp(200, {"incremented": True, "stock": 5})

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)
    HttpCatalogClient(base_url="http://x").increment("SKU1", 2)
    assert calls == [("http://x/products/SKU1/increment", {"quantity": 2})]


def test_catalog_decrement_sends_move_key(monkeypatch):
    seen = {}

    def fake_post(self, url, json=None, headers=None, **kw):
        seen["json"] = json
        return DummyResp(200, BODIES[200])

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)
    HttpCatalogClient(base_url="http://x").decrement_if_available("SKU1", 2, move_key="r1:take:0")
    assert seen["json"] == {"quantity": 2, "move_key": "r1:take:0"}


def test_catalog_validation_422_is_not_a_stock_refusal(monkeypatch):
    body = {"detail": [{"loc": ["body", "quantity"], "msg": "Input should be greater than 0", "type": "greater_than"}]}
    monkeypatch.setattr(httpx.Client, "post", lambda self, url, **kw: DummyResp(422, body), raising=True)

    with pytest.raises(GatewayError):
        HttpCatalogClient(base_url="http://x").decrement_if_available("SKU1", 0)


def test_catalog_422_with_other_detail_is_a_gateway_error(monkeypatch):
    body = {"detail": {"detail": "SOMETHING_ELSE"}}
    monkeypatch.setattr(httpx.Client, "post", lambda self, url, **kw: DummyResp(422, body), raising=True)

    with pytest.raises(GatewayError):
        HttpCatalogClient(base_url="http://x").decrement_if_available("SKU1", 2)


@pytest.mark.parametrize("restored", [True, False])
def test_catalog_reverse_decrement(monkeypatch, restored):
    calls = []

    def fake_post(self, url, json=None, headers=None, **kw):
        calls.append((url, json))
        return DummyResp(200, {"restored": restored})

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)
    got = HttpCatalogClient(base_url="http://x").reverse_decrement("SKU1", 2, "r1:take:0")

    assert got is restored
    assert calls == [("http://x/products/SKU1/reverse", {"quantity": 2, "move_key": "r1:take:0"})]


def test_catalog_network_error_becomes_gateway_error(monkeypatch):
    def fake_get(self, url, **kw):
        raise httpx.ConnectError("boom")

    monkeypatch.setattr(httpx.Client, "get", fake_get, raising=True)
    with pytest.raises(GatewayError):
        HttpCatalogClient(base_url="http://x").get("SKU1")


def test_catalog_propagates_request_id(monkeypatch):
    seen = {}

    def fake_get(self, url, headers=None, **kw):
        seen.update(headers or {})
        return DummyResp(404)

    monkeypatch.setattr(httpx.Client, "get", fake_get, raising=True)
    token = REQUEST_ID_CTX.set("rid-42")
    try:
        HttpCatalogClient(base_url="http://x").get("SKU1")
    finally:
        REQUEST_ID_CTX.reset(token)
    assert seen["X-Request-ID"] == "rid-42"


def test_gateway_create_order(monkeypatch):
    seen = {}

    def fake_post(self, url, json=None, headers=None, **kw):
        seen["url"], seen["json"] = url, json
        return DummyResp(200, {"id": "order_123", "amount": json["amount"], "currency": "INR"})

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)
    client = HttpGatewayClient(base_url="https://gw.test", key_id="k", key_secret="s")

    data = client.create_order(200, "INR", "rcpt_1")

    assert data["id"] == "order_123"
    assert seen["url"] == "https://gw.test/v1/orders"
    assert seen["json"] == {"amount": 200, "currency": "INR", "receipt": "rcpt_1", "payment_capture": 1}


def test_gateway_rejection_is_gateway_error(monkeypatch):
    monkeypatch.setattr(httpx.Client, "post", lambda self, url, **kw: DummyResp(400), raising=True)
    with pytest.raises(GatewayError):
        HttpGatewayClient(base_url="https://gw.test", key_id="k", key_secret="s").create_order(200, "INR", "r")


def test_gateway_network_error_is_gateway_error(monkeypatch):
    def fake_post(self, url, **kw):
        raise httpx.ConnectError("boom")

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)
    with pytest.raises(GatewayError):
        HttpGatewayClient(base_url="https://gw.test", key_id="k", key_secret="s").create_order(200, "INR", "r")


def test_gateway_without_credentials(monkeypatch):
    with pytest.raises(PaymentNotConfigured):
        HttpGatewayClient(base_url="https://gw.test", key_id="", key_secret="").create_order(200, "INR", "r")
