"""Payment authenticity checks.

Two independent checks live here:

- the synchronous checkout check, where the gateway signs
  ``"{gateway_order_id}|{gateway_payment_id}"`` with the account secret;
- the asynchronous webhook check, where the gateway signs the raw request
  body with a separate webhook secret.

Both use HMAC-SHA256, hex-encoded, compared in constant time.
"""

import hashlib
import hmac
from dataclasses import dataclass

from .domain import CashOnDelivery, GatewayPayment, PaymentInfo
from .errors import (
    InvalidPaymentSignature,
    InvalidWebhookSignature,
    MissingPaymentDetails,
    PaymentNotConfigured,
)


def hmac_sha256_hex(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def payment_signature(secret: str, gateway_order_id: str, gateway_payment_id: str) -> str:
    """Signature the gateway attaches to a successful checkout payment."""
    return hmac_sha256_hex(secret, f"{gateway_order_id}|{gateway_payment_id}".encode("utf-8"))


@dataclass(frozen=True)
class PaymentVerdict:
    """Outcome of verifying a payment.

    Attributes:
        prepaid: The method settles before fulfillment (gateway methods).
        verified: The gateway signature was checked and matched.
    """

    prepaid: bool
    verified: bool


class PaymentVerifier:
    """Checks gateway signatures. Makes no decision about order state."""

    def __init__(self, secret: str | None, webhook_secret: str | None = None):
        self.secret = secret or ""
        self.webhook_secret = webhook_secret or ""

    def verify(self, payment: PaymentInfo) -> PaymentVerdict:
        """Verify a checkout payment.

        Raises:
            MissingPaymentDetails: A gateway payment lacks any of its three
                correlation fields.
            InvalidPaymentSignature: The recomputed signature differs.
            PaymentNotConfigured: No gateway secret is configured.
        """
        if isinstance(payment, CashOnDelivery):
            return PaymentVerdict(prepaid=False, verified=False)
        if not isinstance(payment, GatewayPayment):
            raise TypeError(f"unsupported payment type: {type(payment).__name__}")

        if not (payment.gateway_order_id and payment.gateway_payment_id and payment.gateway_signature):
            raise MissingPaymentDetails("Missing gateway payment details")
        if not self.secret:
            raise PaymentNotConfigured("Payment gateway not configured")

        expected = payment_signature(self.secret, payment.gateway_order_id, payment.gateway_payment_id)
        if not hmac.compare_digest(expected.encode("utf-8"), payment.gateway_signature.encode("utf-8")):
            raise InvalidPaymentSignature("Invalid payment signature")
        return PaymentVerdict(prepaid=True, verified=True)

    def verify_webhook(self, body: bytes, signature: str | None) -> None:
        """Authenticate a raw webhook body against the webhook secret.

        Raises:
            PaymentNotConfigured: No webhook secret is configured.
            InvalidWebhookSignature: The signature is missing or differs.
        """
        if not self.webhook_secret:
            raise PaymentNotConfigured("Webhook secret not configured")
        if not signature:
            raise InvalidWebhookSignature("Missing signature")
        expected = hmac_sha256_hex(self.webhook_secret, body)
        if not hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8")):
            raise InvalidWebhookSignature("Invalid webhook signature")
