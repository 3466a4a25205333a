"""Repository layer for persisting orders.

This module contains the Django ORM implementation of the order store
port. It maps between ``OrderModel``/``OrderLineModel`` rows and the
domain ``Order`` dataclass so the domain layer is not coupled to Django
ORM details.
"""

import uuid
from typing import Iterable, List, Optional

from django.core.paginator import Paginator
from django.db import IntegrityError, transaction
from django.utils import timezone

from .domain import (
    CashOnDelivery,
    GatewayPayment,
    Order,
    OrderItem,
    OrderPage,
    OrderStatus,
    PaymentStatus,
    ShippingAddress,
)
from .errors import PaymentAlreadyUsed
from .models import OrderLineModel, OrderModel


def _to_domain(obj: OrderModel) -> Order:
    if obj.payment_method == "cod":
        payment = CashOnDelivery()
    else:
        payment = GatewayPayment(
            gateway_order_id=obj.gateway_order_id or None,
            gateway_payment_id=obj.gateway_payment_id or None,
            gateway_signature=obj.gateway_signature or None,
            method=obj.payment_method,
        )
    return Order(
        id=obj.id,
        user_id=obj.user_id,
        items=[
            OrderItem(
                product_id=line.product_id,
                product_name=line.product_name,
                unit_price_cents=line.unit_price_cents,
                quantity=line.quantity,
                subtotal_cents=line.subtotal_cents,
                size=line.size or None,
            )
            for line in obj.lines.all()
        ],
        total_cents=obj.total_cents,
        currency=obj.currency,
        status=OrderStatus(obj.status),
        payment_status=PaymentStatus(obj.payment_status),
        shipping_address=ShippingAddress(**obj.shipping_address),
        payment=payment,
        created_at=obj.created_at,
        updated_at=obj.updated_at,
    )


class OrderRepository:
    """Repository that persists Order domain objects using Django ORM."""

    def _query(self):
        return OrderModel.objects.prefetch_related("lines")

    def add(self, order: Order) -> Order:
        """Persist a new order and its lines in one transaction.

        Args:
            order: Domain ``Order`` without an id.

        Returns:
            The stored order, with id and timestamps assigned.

        Raises:
            PaymentAlreadyUsed: Another order already carries the same
                gateway payment id.
        """
        payment = order.payment
        payment_id = getattr(payment, "gateway_payment_id", None) or ""
        try:
            with transaction.atomic():
                obj = self._insert(order, payment, payment_id)
        except IntegrityError:
            if payment_id and OrderModel.objects.filter(gateway_payment_id=payment_id).exists():
                raise PaymentAlreadyUsed("Payment already used for another order") from None
            raise
        return _to_domain(self._query().get(pk=obj.pk))

    def _insert(self, order: Order, payment, payment_id: str) -> OrderModel:
        now = timezone.now()
        obj = OrderModel.objects.create(
            user_id=order.user_id,
            status=order.status.value,
            payment_status=order.payment_status.value,
            total_cents=order.total_cents,
            currency=order.currency,
            shipping_address={
                "street": order.shipping_address.street,
                "city": order.shipping_address.city,
                "state": order.shipping_address.state,
                "zip_code": order.shipping_address.zip_code,
                "country": order.shipping_address.country,
            },
            payment_method=payment.method,
            gateway_order_id=getattr(payment, "gateway_order_id", None) or "",
            gateway_payment_id=payment_id,
            gateway_signature=getattr(payment, "gateway_signature", None) or "",
            created_at=now,
            updated_at=now,
        )
        OrderLineModel.objects.bulk_create(
            [
                OrderLineModel(
                    order=obj,
                    position=pos,
                    product_id=item.product_id,
                    product_name=item.product_name,
                    unit_price_cents=item.unit_price_cents,
                    size=item.size or "",
                    quantity=item.quantity,
                    subtotal_cents=item.subtotal_cents,
                )
                for pos, item in enumerate(order.items)
            ]
        )
        return obj

    def get(self, order_id: uuid.UUID) -> Optional[Order]:
        obj = self._query().filter(pk=order_id).first()
        return _to_domain(obj) if obj else None

    def list_for_user(self, user_id: int) -> List[Order]:
        return [_to_domain(o) for o in self._query().filter(user_id=user_id).order_by("-created_at")]

    def list_all(self, page: int, page_size: int) -> OrderPage:
        p = Paginator(self._query().order_by("-created_at"), page_size)
        page_obj = p.get_page(page)
        return OrderPage(
            results=[_to_domain(o) for o in page_obj.object_list],
            count=p.count,
            page=page_obj.number,
            page_size=page_size,
        )

    def find_by_gateway_order(self, gateway_order_id: str) -> Optional[Order]:
        obj = self._query().filter(gateway_order_id=gateway_order_id).order_by("-created_at").first()
        return _to_domain(obj) if obj else None

    def find_by_gateway_payment(self, gateway_payment_id: str) -> Optional[Order]:
        obj = self._query().filter(gateway_payment_id=gateway_payment_id).first()
        return _to_domain(obj) if obj else None

    def transition(
        self,
        order_id: uuid.UUID,
        expected: Iterable[OrderStatus],
        status: OrderStatus,
        payment_status: Optional[PaymentStatus] = None,
    ) -> Optional[Order]:
        """Conditionally update status fields.

        The UPDATE only matches while the stored status is one of
        ``expected``; a zero row count means another writer got there
        first and None is returned.
        """
        fields = {"status": status.value, "updated_at": timezone.now()}
        if payment_status is not None:
            fields["payment_status"] = payment_status.value
        matched = OrderModel.objects.filter(
            pk=order_id, status__in=[s.value for s in expected]
        ).update(**fields)
        if not matched:
            return None
        return self.get(order_id)
