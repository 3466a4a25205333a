"""In-process stub adapters for the orders domain ports.

These stubs implement the catalog, cart, order store and gateway ports
without any network calls or database. They are intended for unit tests
and local development where deterministic behavior is useful and external
services are not required.
"""

import threading
import uuid
from dataclasses import replace
from typing import Dict, Iterable, List, Optional, Tuple

from django.utils import timezone

from .domain import (
    CartLine,
    CatalogPort,
    GatewayPort,
    Order,
    OrderPage,
    OrderStatus,
    OrderStorePort,
    PaymentStatus,
    Product,
    with_id,
)
from .errors import GatewayError, PaymentAlreadyUsed


class InMemoryCatalog(CatalogPort):
    """Stub implementation of ``CatalogPort``.

    Stock is a lock-guarded counter per product, so the conditional
    decrement is atomic across threads the same way the catalog
    service's conditional UPDATE is. Keyed moves are remembered with
    their outcome, like the catalog service's ``stock_moves`` table.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._products: Dict[str, Product] = {}
        self._moves: Dict[str, Tuple[str, bool]] = {}

    def seed(self, product_id: str, name: str, price_cents: int, stock: int) -> Product:
        product = Product(id=product_id, name=name, price_cents=price_cents, stock=stock)
        with self._lock:
            self._products[product_id] = product
        return product

    def reset(self) -> None:
        with self._lock:
            self._products.clear()
            self._moves.clear()

    def get(self, product_id: str) -> Optional[Product]:
        with self._lock:
            return self._products.get(product_id)

    def decrement_if_available(self, product_id: str, quantity: int, move_key: Optional[str] = None) -> bool:
        with self._lock:
            if move_key in self._moves:
                kind, applied = self._moves[move_key]
                return kind == "decrement" and applied
            product = self._products.get(product_id)
            applied = product is not None and product.stock >= quantity
            if applied:
                self._products[product_id] = replace(product, stock=product.stock - quantity)
            if move_key is not None:
                self._moves[move_key] = ("decrement", applied)
            return applied

    def increment(self, product_id: str, quantity: int, move_key: Optional[str] = None) -> None:
        with self._lock:
            if move_key in self._moves:
                return
            product = self._products.get(product_id)
            if product is None:
                raise KeyError(product_id)
            self._products[product_id] = replace(product, stock=product.stock + quantity)
            if move_key is not None:
                self._moves[move_key] = ("increment", True)

    def reverse_decrement(self, product_id: str, quantity: int, move_key: str) -> bool:
        undo_key = f"{move_key}:undo"
        with self._lock:
            if undo_key in self._moves:
                return self._moves[undo_key][1]
            prior = self._moves.get(move_key)
            restored = prior == ("decrement", True)
            if prior is None:
                self._moves[move_key] = ("void", False)
            if restored:
                product = self._products[product_id]
                self._products[product_id] = replace(product, stock=product.stock + quantity)
            self._moves[undo_key] = ("undo", restored)
            return restored


class InMemoryCart:
    """Stub cart keyed by user id."""

    def __init__(self, lines: Optional[Dict[int, List[CartLine]]] = None):
        self._lines = {uid: list(ls) for uid, ls in (lines or {}).items()}

    def add(self, user_id: int, line: CartLine) -> None:
        self._lines.setdefault(user_id, []).append(line)

    def lines(self, user_id: int) -> List[CartLine]:
        return list(self._lines.get(user_id, []))

    def clear(self, user_id: int) -> None:
        self._lines.pop(user_id, None)


class InMemoryOrderStore(OrderStorePort):
    """Stub order store holding orders in insertion order."""

    def __init__(self):
        self._orders: Dict[uuid.UUID, Order] = {}

    def add(self, order: Order) -> Order:
        payment_id = getattr(order.payment, "gateway_payment_id", None)
        if payment_id and self.find_by_gateway_payment(payment_id) is not None:
            raise PaymentAlreadyUsed("Payment already used for another order")
        stored = with_id(order, uuid.uuid4(), timezone.now())
        self._orders[stored.id] = stored
        return stored

    def get(self, order_id: uuid.UUID) -> Optional[Order]:
        return self._orders.get(order_id)

    def list_for_user(self, user_id: int) -> List[Order]:
        return [o for o in reversed(list(self._orders.values())) if o.user_id == user_id]

    def list_all(self, page: int, page_size: int) -> OrderPage:
        everything = list(reversed(list(self._orders.values())))
        start = (page - 1) * page_size
        return OrderPage(
            results=everything[start:start + page_size],
            count=len(everything),
            page=page,
            page_size=page_size,
        )

    def find_by_gateway_order(self, gateway_order_id: str) -> Optional[Order]:
        for order in reversed(list(self._orders.values())):
            if getattr(order.payment, "gateway_order_id", None) == gateway_order_id:
                return order
        return None

    def find_by_gateway_payment(self, gateway_payment_id: str) -> Optional[Order]:
        for order in self._orders.values():
            if getattr(order.payment, "gateway_payment_id", None) == gateway_payment_id:
                return order
        return None

    def transition(
        self,
        order_id: uuid.UUID,
        expected: Iterable[OrderStatus],
        status: OrderStatus,
        payment_status: Optional[PaymentStatus] = None,
    ) -> Optional[Order]:
        order = self._orders.get(order_id)
        if order is None or order.status not in set(expected):
            return None
        updated = replace(
            order,
            status=status,
            payment_status=payment_status or order.payment_status,
            updated_at=timezone.now(),
        )
        self._orders[order_id] = updated
        return updated


class GatewayStub(GatewayPort):
    """Stub implementation of ``GatewayPort``.

    Returns a gateway-shaped order payload with a generated id. Amounts
    must be positive, matching the real gateway's validation.
    """

    def create_order(self, amount_cents: int, currency: str, receipt: str) -> dict:
        if amount_cents <= 0:
            raise GatewayError("Gateway rejected a non-positive amount")
        return {
            "id": f"order_{uuid.uuid4().hex[:14]}",
            "entity": "order",
            "amount": amount_cents,
            "currency": currency,
            "receipt": receipt,
            "status": "created",
        }
