"""HTTP views for the payment gateway.

``GatewayOrderView`` opens a payment order at the gateway for the caller's
current cart total; the client completes payment with the gateway and then
checks out with the signed correlation ids.

``GatewayWebhookView`` receives asynchronous gateway events. The raw body
is authenticated with the webhook secret before anything parses it.
"""

import logging
import secrets
from typing import Optional

from django.conf import settings
from pydantic import BaseModel, Field, ValidationError
from rest_framework import status
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.orders import providers
from apps.orders.errors import OrderError
from apps.orders.views import error_response, requester_from, validation_response

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Razorpay-Signature"


class PaymentEntity(BaseModel):
    id: Optional[str] = None
    order_id: Optional[str] = None


class OrderEntity(BaseModel):
    id: Optional[str] = None


class PaymentEnvelope(BaseModel):
    entity: PaymentEntity = Field(default_factory=PaymentEntity)


class OrderEnvelope(BaseModel):
    entity: OrderEntity = Field(default_factory=OrderEntity)


class WebhookPayload(BaseModel):
    payment: Optional[PaymentEnvelope] = None
    order: Optional[OrderEnvelope] = None


class WebhookEventDTO(BaseModel):
    """Envelope of a gateway webhook event.

    Only the fields used to find the order are modelled; anything else the
    gateway sends is ignored.
    """

    event: str
    payload: WebhookPayload = Field(default_factory=WebhookPayload)

    def gateway_order_id(self) -> Optional[str]:
        if self.payload.payment and self.payload.payment.entity.order_id:
            return self.payload.payment.entity.order_id
        if self.payload.order and self.payload.order.entity.id:
            return self.payload.order.entity.id
        return None


class GatewayOrderView(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request):
        requester = requester_from(request)
        try:
            priced = providers.get_order_service().quote(requester.user_id)
            receipt = f"rcpt_{secrets.token_hex(6)}"
            currency = getattr(settings, "STORE_CURRENCY", "INR")
            data = providers.get_gateway().create_order(priced.total_cents, currency, receipt)
        except OrderError as e:
            return error_response(e)

        logger.info(
            "gateway order created",
            extra={"user_id": requester.user_id, "amount": priced.total_cents, "gateway_order_id": data.get("id")},
        )
        return Response(
            {
                "key": getattr(settings, "GATEWAY_KEY_ID", ""),
                "amount": priced.total_cents,
                "currency": currency,
                "data": data,
            },
            status=status.HTTP_200_OK,
        )


class GatewayWebhookView(APIView):
    authentication_classes = []
    permission_classes = [AllowAny]

    def post(self, request):
        # Raw bytes first: the signature covers the body exactly as sent.
        body = request.body
        try:
            providers.get_verifier().verify_webhook(body, request.headers.get(SIGNATURE_HEADER))
        except OrderError as e:
            logger.warning("webhook rejected", extra={"reason": e.code})
            return error_response(e)

        try:
            evt = WebhookEventDTO.model_validate_json(body)
        except ValidationError as e:
            return validation_response(e)
        except ValueError:
            return Response({"detail": "VALIDATION_ERROR"}, status=status.HTTP_400_BAD_REQUEST)

        order = providers.get_order_service().apply_gateway_event(evt.event, evt.gateway_order_id())
        logger.info(
            "webhook processed",
            extra={"event": evt.event, "order_id": str(order.id) if order else None},
        )
        return Response({"ok": True}, status=status.HTTP_200_OK)
