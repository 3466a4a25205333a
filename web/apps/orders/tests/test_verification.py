import hashlib
import hmac

import pytest

from apps.orders.domain import CashOnDelivery, GatewayPayment
from apps.orders.errors import (
    InvalidPaymentSignature,
    InvalidWebhookSignature,
    MissingPaymentDetails,
    PaymentNotConfigured,
)
from apps.orders.verification import PaymentVerifier, payment_signature


def test_signature_is_hmac_of_order_and_payment_ids():
    expected = hmac.new(b"s3cret", b"order_1|pay_1", hashlib.sha256).hexdigest()
    assert payment_signature("s3cret", "order_1", "pay_1") == expected


def test_cod_is_not_prepaid():
    verdict = PaymentVerifier("s3cret").verify(CashOnDelivery())
    assert verdict.prepaid is False and verdict.verified is False


def test_valid_gateway_signature_is_verified():
    sig = payment_signature("s3cret", "order_1", "pay_1")
    verdict = PaymentVerifier("s3cret").verify(GatewayPayment("order_1", "pay_1", sig))
    assert verdict.prepaid is True and verdict.verified is True


@pytest.mark.parametrize("field", ["gateway_order_id", "gateway_payment_id"])
def test_changing_either_id_breaks_the_signature(field):
    sig = payment_signature("s3cret", "order_1", "pay_1")
    values = {"gateway_order_id": "order_1", "gateway_payment_id": "pay_1"}
    values[field] = values[field] + "x"
    with pytest.raises(InvalidPaymentSignature):
        PaymentVerifier("s3cret").verify(GatewayPayment(gateway_signature=sig, **values))


def test_wrong_secret_fails():
    sig = payment_signature("other", "order_1", "pay_1")
    with pytest.raises(InvalidPaymentSignature):
        PaymentVerifier("s3cret").verify(GatewayPayment("order_1", "pay_1", sig))


def test_missing_signature_is_missing_details():
    with pytest.raises(MissingPaymentDetails):
        PaymentVerifier("s3cret").verify(GatewayPayment("order_1", "pay_1", None))


def test_unconfigured_secret():
    sig = payment_signature("s3cret", "order_1", "pay_1")
    with pytest.raises(PaymentNotConfigured):
        PaymentVerifier("").verify(GatewayPayment("order_1", "pay_1", sig))


def test_webhook_body_signature():
    body = b'{"event":"payment.captured"}'
    sig = hmac.new(b"wh", body, hashlib.sha256).hexdigest()
    verifier = PaymentVerifier("s3cret", "wh")

    verifier.verify_webhook(body, sig)
    with pytest.raises(InvalidWebhookSignature):
        verifier.verify_webhook(body + b" ", sig)
    with pytest.raises(InvalidWebhookSignature):
        verifier.verify_webhook(body, None)
    with pytest.raises(PaymentNotConfigured):
        PaymentVerifier("s3cret").verify_webhook(body, sig)
