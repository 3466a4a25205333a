"""Service provider helpers for wiring OrderService with ports.

This module exposes small factory functions that return configured
collaborators. When ``settings.USE_HTTP_ADAPTERS`` is truthy the catalog
and payment gateway are reached over HTTP; otherwise a process-wide
in-memory catalog and a gateway stub are used, which suits tests and
local development.
"""

from django.conf import settings

from apps.cart.repository import CartRepository

from .adapters import GatewayStub, InMemoryCatalog
from .cache import OrderCache
from .cancellation import RestockHandler
from .domain import CatalogPort, GatewayPort, OrderService
from .http_adapters import HttpCatalogClient, HttpGatewayClient
from .pricing import StockReconciler
from .repository import OrderRepository
from .verification import PaymentVerifier

# Shared so stock survives across requests when running on stubs.
_stub_catalog = InMemoryCatalog()


def _use_http() -> bool:
    return bool(getattr(settings, "USE_HTTP_ADAPTERS", True))


def get_catalog() -> CatalogPort:
    if _use_http():
        return HttpCatalogClient()
    return _stub_catalog


def get_gateway() -> GatewayPort:
    if _use_http():
        return HttpGatewayClient()
    return GatewayStub()


def get_verifier() -> PaymentVerifier:
    return PaymentVerifier(
        secret=getattr(settings, "GATEWAY_KEY_SECRET", ""),
        webhook_secret=getattr(settings, "GATEWAY_WEBHOOK_SECRET", ""),
    )


def get_order_service() -> OrderService:
    """Return a configured OrderService instance.

    Returns:
        OrderService: wired with the ORM order store and cart, the shared
        cache, and the catalog chosen by ``get_catalog``.
    """
    cache = OrderCache()
    orders = OrderRepository()
    pricing = StockReconciler(get_catalog(), cache)
    return OrderService(
        cart=CartRepository(),
        orders=orders,
        cache=cache,
        pricing=pricing,
        verifier=get_verifier(),
        restock=RestockHandler(orders, pricing, cache),
        currency=getattr(settings, "STORE_CURRENCY", "INR"),
    )
