"""Domain models, ports and service for checkout and the order lifecycle.

This module contains the dataclasses used as DTOs for carts and orders,
protocol definitions (ports) for the collaborators checkout depends on
(catalog, cart store, order store, read cache, payment gateway), and the
domain service that turns a cart into an order and drives it through its
fulfillment and payment state machines.

The service itself performs no framework I/O: every side effect goes
through a port, so tests can wire it with in-process stubs.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Iterable, List, Optional, Protocol, Union

from .errors import (
    EmptyCart,
    Forbidden,
    IllegalStatusTransition,
    InvalidStatusValue,
    NotFound,
    PaymentAlreadyUsed,
)

if TYPE_CHECKING:
    from .cancellation import CancellationResult, RestockHandler
    from .pricing import PricedCart, StockReconciler
    from .verification import PaymentVerdict, PaymentVerifier

logger = logging.getLogger(__name__)


# ---- Enums ----
class OrderStatus(str, Enum):
    """Fulfillment state of an order."""

    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    RETURNED = "returned"


class PaymentStatus(str, Enum):
    """Payment state of an order. Evolves semi-independently of the status."""

    UNPAID = "unpaid"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


CANCELLABLE_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.PROCESSING})

# Orders whose money has been handed back; gateway events no longer apply.
SETTLED_STATUSES = frozenset({OrderStatus.CANCELLED, OrderStatus.RETURNED})

# Forward moves plus the sideways exits. Terminal states have no entry.
ALLOWED_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED, OrderStatus.RETURNED},
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELLED: set(),
    OrderStatus.RETURNED: set(),
}


def parse_status(value: str) -> OrderStatus:
    try:
        return OrderStatus(value)
    except ValueError:
        raise InvalidStatusValue(
            "Invalid order status. Must be one of: "
            + ", ".join(s.value for s in OrderStatus)
        ) from None


def parse_payment_status(value: str) -> PaymentStatus:
    try:
        return PaymentStatus(value)
    except ValueError:
        raise InvalidStatusValue(
            "Invalid payment status. Must be one of: "
            + ", ".join(s.value for s in PaymentStatus)
        ) from None


# ---- Entities / DTOs ----
@dataclass(frozen=True)
class CartLine:
    """A single line of a user's cart.

    Attributes:
        product_id: Catalog identifier (SKU) of the product.
        quantity: Number of units requested, always positive.
        size: Optional size variant; lines for the same product with
            different sizes are distinct.
    """

    product_id: str
    quantity: int
    size: Optional[str] = None


@dataclass(frozen=True)
class Product:
    """Catalog view of a product at the moment it was read."""

    id: str
    name: str
    price_cents: int
    stock: int


@dataclass(frozen=True)
class OrderItem:
    """A priced, immutable snapshot of one order line.

    Name and unit price are copied from the catalog at checkout and are
    never re-read afterwards.
    """

    product_id: str
    product_name: str
    unit_price_cents: int
    quantity: int
    subtotal_cents: int
    size: Optional[str] = None


@dataclass(frozen=True)
class ShippingAddress:
    street: str
    city: str
    state: str
    zip_code: str
    country: str


@dataclass(frozen=True)
class GatewayPayment:
    """Prepaid payment confirmed by the gateway.

    The correlation fields are optional here so the verifier, not the
    parser, decides that incomplete details are an error.
    """

    gateway_order_id: Optional[str] = None
    gateway_payment_id: Optional[str] = None
    gateway_signature: Optional[str] = None
    method: str = "razorpay"


@dataclass(frozen=True)
class CashOnDelivery:
    method: str = "cod"


PaymentInfo = Union[GatewayPayment, CashOnDelivery]


@dataclass
class Order:
    """Container for order data.

    Attributes:
        id: Persistent identifier, or None if not yet saved.
        user_id: Owner of the order.
        items: Snapshot of the purchased lines.
        total_cents: Sum of the line subtotals, in integer minor units.
        currency: ISO currency code.
        status: Current OrderStatus.
        payment_status: Current PaymentStatus.
        shipping_address: Where the order ships.
        payment: Payment method and gateway correlation identifiers.
    """

    id: Optional[uuid.UUID]
    user_id: int
    items: List[OrderItem]
    total_cents: int
    currency: str
    status: OrderStatus
    payment_status: PaymentStatus
    shipping_address: ShippingAddress
    payment: PaymentInfo
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class Requester:
    """Identity issuing a request, as resolved by the authentication layer."""

    user_id: int
    is_admin: bool = False

    def can_access(self, owner_id: int) -> bool:
        return self.is_admin or self.user_id == owner_id


@dataclass
class OrderPage:
    results: List[Order]
    count: int
    page: int
    page_size: int = field(default=20)


# ---- Ports (DIP) ----
class CatalogPort(Protocol):
    """Port describing the catalog operations checkout relies on.

    ``decrement_if_available`` must be atomic per product: it either
    removes ``quantity`` units when at least that many are in stock, or
    leaves the stock untouched and returns False.

    Stock moves carry an optional ``move_key``. A move repeated with the
    same key is applied at most once and reports its first outcome, so a
    caller may retry after a timeout. ``reverse_decrement`` undoes a keyed
    decrement whose outcome the caller never learned: it gives stock back
    if that decrement applied, and otherwise makes sure a late copy of it
    can no longer apply.
    """

    def get(self, product_id: str) -> Optional[Product]:
        raise NotImplementedError()

    def decrement_if_available(self, product_id: str, quantity: int, move_key: Optional[str] = None) -> bool:
        raise NotImplementedError()

    def increment(self, product_id: str, quantity: int, move_key: Optional[str] = None) -> None:
        raise NotImplementedError()

    def reverse_decrement(self, product_id: str, quantity: int, move_key: str) -> bool:
        raise NotImplementedError()


class CartPort(Protocol):
    """Port over a user's cart, read at checkout and cleared afterwards."""

    def lines(self, user_id: int) -> List[CartLine]:
        raise NotImplementedError()

    def clear(self, user_id: int) -> None:
        raise NotImplementedError()


class OrderStorePort(Protocol):
    """Port describing order persistence.

    ``transition`` is a conditional write: it only applies when the
    stored status is one of ``expected`` and returns None otherwise, so
    two concurrent writers cannot both act on the same old state.
    """

    def add(self, order: Order) -> Order:
        raise NotImplementedError()

    def get(self, order_id: uuid.UUID) -> Optional[Order]:
        raise NotImplementedError()

    def list_for_user(self, user_id: int) -> List[Order]:
        raise NotImplementedError()

    def list_all(self, page: int, page_size: int) -> OrderPage:
        raise NotImplementedError()

    def find_by_gateway_order(self, gateway_order_id: str) -> Optional[Order]:
        raise NotImplementedError()

    def find_by_gateway_payment(self, gateway_payment_id: str) -> Optional[Order]:
        raise NotImplementedError()

    def transition(
        self,
        order_id: uuid.UUID,
        expected: Iterable[OrderStatus],
        status: OrderStatus,
        payment_status: Optional[PaymentStatus] = None,
    ) -> Optional[Order]:
        raise NotImplementedError()


class CachePort(Protocol):
    """Read cache with explicit invalidation."""

    def get(self, key: str):
        raise NotImplementedError()

    def set(self, key: str, value, ttl: int) -> None:
        raise NotImplementedError()

    def invalidate(self, *keys: str) -> None:
        raise NotImplementedError()


class GatewayPort(Protocol):
    """Port describing the payment gateway's order creation call."""

    def create_order(self, amount_cents: int, currency: str, receipt: str) -> dict:
        raise NotImplementedError()


def initial_state(verdict: "PaymentVerdict") -> tuple[OrderStatus, PaymentStatus]:
    """Pick the starting status pair for a freshly checked-out order."""
    if verdict.prepaid and verdict.verified:
        return OrderStatus.PROCESSING, PaymentStatus.PAID
    if not verdict.prepaid:
        return OrderStatus.PROCESSING, PaymentStatus.UNPAID
    return OrderStatus.PENDING, PaymentStatus.UNPAID


# ---- Domain service ----
class OrderService:
    """Domain service responsible for checkout and the order lifecycle.

    The service orchestrates pricing, payment verification, stock
    reservation, persistence, cart clearing and cache invalidation. Read
    operations go through the cache and always re-check authorization.
    """

    def __init__(
        self,
        cart: CartPort,
        orders: OrderStorePort,
        cache,
        pricing: "StockReconciler",
        verifier: "PaymentVerifier",
        restock: "RestockHandler",
        currency: str = "INR",
    ):
        """Initialize the service with required collaborators.

        Args:
            cart: CartPort read at checkout and cleared on success.
            orders: OrderStorePort used for persistence.
            cache: OrderCache used for reads and invalidation.
            pricing: StockReconciler computing totals and reserving stock.
            verifier: PaymentVerifier checking gateway signatures.
            restock: RestockHandler used for cancellations.
            currency: Currency every order is priced in.
        """
        self.cart = cart
        self.orders = orders
        self.cache = cache
        self.pricing = pricing
        self.verifier = verifier
        self.restock = restock
        self.currency = currency

    # -- checkout --

    def quote(self, user_id: int) -> "PricedCart":
        """Price the user's current cart without touching stock."""
        lines = self.cart.lines(user_id)
        if not lines:
            raise EmptyCart("Cart is empty")
        return self.pricing.price(lines)

    def checkout(
        self,
        user_id: int,
        shipping_address: ShippingAddress,
        payment: PaymentInfo,
        client_total_cents: Optional[int] = None,
    ) -> Order:
        """Turn the user's cart into a persisted order.

        Steps run strictly in order: price the cart, verify the payment,
        reserve stock, persist, clear the cart, invalidate caches. A
        failure before persistence leaves the cart untouched and creates
        no order; stock reserved by this call is released again when
        persistence fails.

        Raises:
            EmptyCart: The cart has no lines.
            InsufficientStock: A line cannot be covered by current stock.
            TotalMismatch: The client total drifted from the server total.
            MissingPaymentDetails: Gateway correlation data is incomplete.
            InvalidPaymentSignature: The gateway signature does not match.
            PaymentAlreadyUsed: The gateway payment already backs an order.
        """
        lines = self.cart.lines(user_id)
        if not lines:
            raise EmptyCart("Cart is empty")

        priced = self.pricing.price(lines, client_total_cents=client_total_cents)
        verdict = self.verifier.verify(payment)
        if verdict.prepaid and self.orders.find_by_gateway_payment(payment.gateway_payment_id):
            raise PaymentAlreadyUsed("Payment already used for another order")
        status, payment_status = initial_state(verdict)

        self.pricing.reserve(priced)

        order = Order(
            id=None,
            user_id=user_id,
            items=list(priced.items),
            total_cents=priced.total_cents,
            currency=self.currency,
            status=status,
            payment_status=payment_status,
            shipping_address=shipping_address,
            payment=payment,
        )
        try:
            order = self.orders.add(order)
        except Exception:
            logger.exception(
                "order persistence failed, releasing reserved stock",
                extra={"user_id": user_id, "total_cents": priced.total_cents},
            )
            self.pricing.unreserve(priced)
            raise

        # The order exists from here on; a stale cart must not turn into a
        # failed response that invites a duplicate checkout.
        try:
            self.cart.clear(user_id)
        except Exception:
            logger.exception(
                "cart clear failed after checkout",
                extra={"user_id": user_id, "order_id": str(order.id)},
            )
        self.cache.invalidate(
            self.cache.cart_key(user_id), self.cache.orders_key(user_id)
        )

        logger.info(
            "order placed",
            extra={
                "order_id": str(order.id),
                "user_id": user_id,
                "total_cents": order.total_cents,
                "status": order.status.value,
                "payment_status": order.payment_status.value,
            },
        )
        return order

    # -- reads --

    def get_order(self, order_id: uuid.UUID, requester: Requester) -> Order:
        key = self.cache.order_key(order_id)
        order = self.cache.get(key)
        if order is None:
            order = self.orders.get(order_id)
            if order is None:
                raise NotFound("Order not found")
            self._authorize(order, requester, "Not authorized to view this order")
            self.cache.set(key, order, self.cache.order_ttl)
            return order
        self._authorize(order, requester, "Not authorized to view this order")
        return order

    def list_orders(self, user_id: int, requester: Requester) -> List[Order]:
        """Return a user's orders newest-first."""
        if not requester.can_access(user_id):
            raise Forbidden("Not authorized to view these orders")
        key = self.cache.orders_key(user_id)
        orders = self.cache.get(key)
        if orders is None:
            orders = self.orders.list_for_user(user_id)
            self.cache.set(key, orders, self.cache.order_ttl)
        return orders

    def list_all_orders(self, requester: Requester, page: int = 1, page_size: int = 20) -> OrderPage:
        if not requester.is_admin:
            raise Forbidden("Not authorized")
        return self.orders.list_all(page, page_size)

    # -- writes --

    def update_status(
        self,
        order_id: uuid.UUID,
        status: str,
        payment_status: Optional[str],
        requester: Requester,
    ) -> Order:
        """Move an order to a new status (fulfillment staff only).

        Cancelling through this path goes through the restock handler so
        the stock an order took is always given back exactly once.
        """
        if not requester.is_admin:
            raise Forbidden("Only admins can update order status")
        new_status = parse_status(status)
        new_payment = parse_payment_status(payment_status) if payment_status else None

        order = self.orders.get(order_id)
        if order is None:
            raise NotFound("Order not found")

        if new_status is OrderStatus.CANCELLED and order.status is not OrderStatus.CANCELLED:
            order = self.cancel_order(order_id, requester).order
            if new_payment is None or new_payment is order.payment_status:
                return order
            new_status = order.status

        if new_status is not order.status and new_status not in ALLOWED_TRANSITIONS[order.status]:
            raise IllegalStatusTransition(
                f"Cannot move order from {order.status.value} to {new_status.value}"
            )

        updated = self.orders.transition(order_id, {order.status}, new_status, new_payment)
        if updated is None:
            raise IllegalStatusTransition("Order status changed concurrently")

        self.cache.invalidate(
            self.cache.order_key(order_id), self.cache.orders_key(updated.user_id)
        )
        logger.info(
            "order status updated",
            extra={
                "order_id": str(order_id),
                "status": updated.status.value,
                "payment_status": updated.payment_status.value,
            },
        )
        return updated

    def cancel_order(self, order_id: uuid.UUID, requester: Requester) -> "CancellationResult":
        return self.restock.cancel(order_id, requester)

    def apply_gateway_event(self, event: str, gateway_order_id: Optional[str]) -> Optional[Order]:
        """Apply an authenticated gateway webhook event to its order.

        ``payment.captured`` marks the order paid and releases a pending
        order to processing; ``payment.failed`` marks it failed unless it
        was already paid. Other events, events for unknown orders and
        events for cancelled, returned or refunded orders are acknowledged
        without effect.
        """
        if event not in ("payment.captured", "payment.failed") or not gateway_order_id:
            return None
        order = self.orders.find_by_gateway_order(gateway_order_id)
        if order is None:
            logger.warning(
                "gateway event for unknown order",
                extra={"event": event, "gateway_order_id": gateway_order_id},
            )
            return None

        if order.status in SETTLED_STATUSES or order.payment_status is PaymentStatus.REFUNDED:
            logger.warning(
                "gateway event for settled order ignored",
                extra={
                    "event": event,
                    "order_id": str(order.id),
                    "status": order.status.value,
                    "payment_status": order.payment_status.value,
                },
            )
            return order

        if event == "payment.captured":
            if order.payment_status is PaymentStatus.PAID:
                return order
            status = OrderStatus.PROCESSING if order.status is OrderStatus.PENDING else order.status
            payment_status = PaymentStatus.PAID
        else:
            if order.payment_status is not PaymentStatus.UNPAID:
                return order
            status = order.status
            payment_status = PaymentStatus.FAILED

        updated = self.orders.transition(order.id, {order.status}, status, payment_status)
        self.cache.invalidate(
            self.cache.order_key(order.id), self.cache.orders_key(order.user_id)
        )
        return updated

    @staticmethod
    def _authorize(order: Order, requester: Requester, message: str) -> None:
        if not requester.can_access(order.user_id):
            raise Forbidden(message)


def with_id(order: Order, order_id: uuid.UUID, now: datetime) -> Order:
    return replace(order, id=order_id, created_at=now, updated_at=now)
