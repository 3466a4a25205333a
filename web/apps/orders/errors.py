"""Domain errors raised by the checkout and order lifecycle code.

Every error is a ``ValueError`` whose string value is a short, stable code
(for example ``"INSUFFICIENT_STOCK"``). Views translate an error into an
HTTP response using its ``status_code`` and ``code``; an optional
human-readable ``message`` travels alongside.
"""


class OrderError(ValueError):
    """Base class for errors that map to a client-visible response."""

    code = "ORDER_ERROR"
    status_code = 400

    def __init__(self, message: str | None = None):
        super().__init__(self.code)
        self.message = message

    def as_body(self) -> dict:
        body = {"detail": self.code}
        if self.message:
            body["message"] = self.message
        return body


class EmptyCart(OrderError):
    code = "EMPTY_CART"


class InsufficientStock(OrderError):
    code = "INSUFFICIENT_STOCK"

    def __init__(self, product_id: str, message: str | None = None):
        super().__init__(message or f"Not enough stock for product {product_id}")
        self.product_id = product_id


class TotalMismatch(OrderError):
    code = "TOTAL_MISMATCH"

    def __init__(self, client_total_cents: int, total_cents: int):
        super().__init__(
            f"Total mismatch. Client: {client_total_cents} Server: {total_cents}"
        )
        self.client_total_cents = client_total_cents
        self.total_cents = total_cents


class MissingPaymentDetails(OrderError):
    code = "MISSING_PAYMENT_DETAILS"


class InvalidPaymentSignature(OrderError):
    code = "INVALID_PAYMENT_SIGNATURE"


class InvalidWebhookSignature(OrderError):
    code = "INVALID_WEBHOOK_SIGNATURE"


class PaymentAlreadyUsed(OrderError):
    """A gateway payment already backs another order."""

    code = "PAYMENT_ALREADY_USED"
    status_code = 409


class InvalidStatusValue(OrderError):
    code = "INVALID_STATUS_VALUE"


class IllegalStatusTransition(OrderError):
    code = "ILLEGAL_STATUS_TRANSITION"


class OrderNotCancellable(OrderError):
    code = "ORDER_NOT_CANCELLABLE"


class NotFound(OrderError):
    code = "NOT_FOUND"
    status_code = 404


class Forbidden(OrderError):
    code = "FORBIDDEN"
    status_code = 403


class GatewayError(OrderError):
    """An upstream dependency (payment gateway or catalog) failed."""

    code = "GATEWAY_ERROR"
    status_code = 502


class PaymentNotConfigured(OrderError):
    code = "PAYMENT_NOT_CONFIGURED"
    status_code = 503
