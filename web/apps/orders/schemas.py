"""Pydantic schemas for orders.

This module exposes the request/validation schemas used by the checkout
and order APIs, and the read schema used to render orders.
"""

import re
from datetime import datetime
from typing import Annotated, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .domain import CashOnDelivery, GatewayPayment, Order, ShippingAddress


SKU_RE = re.compile(r"^[A-Z0-9_-]{3,32}$")


def normalize_sku(v: str) -> str:
    """Validate and normalize a product id (SKU) to uppercase.

    Raises:
        ValueError: When the SKU does not match the expected pattern.
    """
    v2 = v.strip().upper()
    if not SKU_RE.match(v2):
        raise ValueError("Invalid SKU format")
    return v2


class ShippingAddressIn(BaseModel):
    """Input schema for a shipping address. Every field is required."""

    model_config = ConfigDict(str_strip_whitespace=True)

    street: str = Field(min_length=1, max_length=200)
    city: str = Field(min_length=1, max_length=100)
    state: str = Field(min_length=1, max_length=100)
    zip_code: str = Field(min_length=1, max_length=20)
    country: str = Field(min_length=1, max_length=100)

    def to_domain(self) -> ShippingAddress:
        return ShippingAddress(**self.model_dump())


class GatewayPaymentIn(BaseModel):
    """Prepaid gateway payment.

    The correlation fields are optional at this layer: incomplete details
    are reported by the payment verifier as MISSING_PAYMENT_DETAILS.
    Anything else the client sends (card number, CVV...) is discarded.
    """

    method: Literal["razorpay"]
    gateway_order_id: Optional[str] = Field(default=None, max_length=64)
    gateway_payment_id: Optional[str] = Field(default=None, max_length=64)
    gateway_signature: Optional[str] = Field(default=None, max_length=128)

    def to_domain(self) -> GatewayPayment:
        return GatewayPayment(
            gateway_order_id=self.gateway_order_id,
            gateway_payment_id=self.gateway_payment_id,
            gateway_signature=self.gateway_signature,
        )


class CashOnDeliveryIn(BaseModel):
    method: Literal["cod"]

    def to_domain(self) -> CashOnDelivery:
        return CashOnDelivery()


PaymentInfoIn = Annotated[Union[GatewayPaymentIn, CashOnDeliveryIn], Field(discriminator="method")]


class CheckoutDTO(BaseModel):
    """Schema for checking out the caller's cart.

    Attributes:
        shipping_address: Complete shipping address.
        payment_info: Payment details, tagged by ``method``.
        client_total_cents: Optional total the client displayed, compared
            with the server total as a drift check.
    """

    shipping_address: ShippingAddressIn
    payment_info: PaymentInfoIn
    client_total_cents: Optional[int] = Field(default=None, ge=0)


class StatusUpdateDTO(BaseModel):
    """Schema for the admin status update.

    Values are plain strings so unknown statuses are reported by the
    domain as INVALID_STATUS_VALUE rather than as a schema error.
    """

    status: str = Field(min_length=1, max_length=32)
    payment_status: Optional[str] = Field(default=None, max_length=32)


class OrderItemOut(BaseModel):
    product_id: str
    product_name: str
    unit_price_cents: int
    size: Optional[str] = None
    quantity: int
    subtotal_cents: int


class PaymentInfoOut(BaseModel):
    method: str
    gateway_order_id: Optional[str] = None
    gateway_payment_id: Optional[str] = None


class OrderReadDTO(BaseModel):
    """Read schema for a single order."""

    id: UUID
    user_id: int
    items: list[OrderItemOut]
    total_cents: int
    currency: str
    status: str
    payment_status: str
    shipping_address: ShippingAddressIn
    payment_info: PaymentInfoOut
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.upper()

    @classmethod
    def from_domain(cls, order: Order) -> "OrderReadDTO":
        payment = order.payment
        return cls(
            id=order.id,
            user_id=order.user_id,
            items=[
                OrderItemOut(
                    product_id=i.product_id,
                    product_name=i.product_name,
                    unit_price_cents=i.unit_price_cents,
                    size=i.size,
                    quantity=i.quantity,
                    subtotal_cents=i.subtotal_cents,
                )
                for i in order.items
            ],
            total_cents=order.total_cents,
            currency=order.currency,
            status=order.status.value,
            payment_status=order.payment_status.value,
            shipping_address=ShippingAddressIn(**vars(order.shipping_address)),
            payment_info=PaymentInfoOut(
                method=payment.method,
                gateway_order_id=getattr(payment, "gateway_order_id", None),
                gateway_payment_id=getattr(payment, "gateway_payment_id", None),
            ),
            created_at=order.created_at,
            updated_at=order.updated_at,
        )


def render_order(order: Order) -> dict:
    return OrderReadDTO.from_domain(order).model_dump(mode="json", exclude_none=True)
