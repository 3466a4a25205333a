"""Cancellation of orders and the matching restock."""

import logging
import uuid
from dataclasses import dataclass, field
from typing import List

from .domain import (
    CANCELLABLE_STATUSES,
    Order,
    OrderItem,
    OrderStatus,
    OrderStorePort,
    PaymentStatus,
    Requester,
)
from .errors import Forbidden, NotFound, OrderNotCancellable

logger = logging.getLogger(__name__)


@dataclass
class CancellationResult:
    """A cancelled order plus the lines whose stock could not be restored."""

    order: Order
    restock_failed: List[OrderItem] = field(default_factory=list)


class RestockHandler:
    """Cancels reversible orders and gives their stock back.

    The status flip is a conditional write on ``{pending, processing}``,
    so of two concurrent cancellations only one restocks. Restock moves
    are keyed by order and line, so a retried increment restocks once.
    """

    def __init__(self, orders: OrderStorePort, pricing, cache):
        self.orders = orders
        self.pricing = pricing
        self.cache = cache

    def cancel(self, order_id: uuid.UUID, requester: Requester) -> CancellationResult:
        order = self.orders.get(order_id)
        if order is None:
            raise NotFound("Order not found")
        if not requester.can_access(order.user_id):
            raise Forbidden("Not authorized to cancel this order")
        if order.status not in CANCELLABLE_STATUSES:
            raise OrderNotCancellable("Only pending or processing orders can be cancelled")

        # Refund is a marker here; the money moves through the gateway.
        payment_status = PaymentStatus.REFUNDED if order.payment_status is PaymentStatus.PAID else None
        cancelled = self.orders.transition(
            order_id, CANCELLABLE_STATUSES, OrderStatus.CANCELLED, payment_status
        )
        if cancelled is None:
            raise OrderNotCancellable("Order is no longer cancellable")

        failed = self.pricing.release(
            cancelled.items,
            move_keys=[f"cancel:{order_id}:{n}" for n in range(len(cancelled.items))],
        )
        if failed:
            logger.error(
                "cancelled order left unrestocked lines",
                extra={
                    "order_id": str(order_id),
                    "products": [i.product_id for i in failed],
                    "quantities": [i.quantity for i in failed],
                },
            )

        self.cache.invalidate(
            self.cache.order_key(order_id), self.cache.orders_key(cancelled.user_id)
        )
        logger.info(
            "order cancelled",
            extra={
                "order_id": str(order_id),
                "payment_status": cancelled.payment_status.value,
                "requested_by": requester.user_id,
            },
        )
        return CancellationResult(order=cancelled, restock_failed=failed)
