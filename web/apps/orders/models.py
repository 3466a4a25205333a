import uuid
from django.db import models
from django.db.models import Q
from django.utils import timezone


class OrderModel(models.Model):
    # UUID PK exposed in the API
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    # Owner as issued by the identity provider
    user_id = models.BigIntegerField(db_index=True)

    class Status(models.TextChoices):
        PENDING = "pending"
        PROCESSING = "processing"
        SHIPPED = "shipped"
        DELIVERED = "delivered"
        CANCELLED = "cancelled"
        RETURNED = "returned"

    class PaymentStatus(models.TextChoices):
        UNPAID = "unpaid"
        PAID = "paid"
        FAILED = "failed"
        REFUNDED = "refunded"

    status = models.CharField(max_length=32, choices=Status.choices, default=Status.PENDING)
    payment_status = models.CharField(
        max_length=16, choices=PaymentStatus.choices, default=PaymentStatus.UNPAID
    )
    total_cents = models.PositiveBigIntegerField(default=0)
    currency = models.CharField(max_length=3, default="INR")
    shipping_address = models.JSONField(default=dict)

    # Payment correlation only; card data is never stored
    payment_method = models.CharField(max_length=32)
    gateway_order_id = models.CharField(max_length=64, blank=True, default="", db_index=True)
    gateway_payment_id = models.CharField(max_length=64, blank=True, default="")
    gateway_signature = models.CharField(max_length=128, blank=True, default="")

    created_at = models.DateTimeField(default=timezone.now, db_index=True)
    updated_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = "orders"
        ordering = ["-created_at"]
        indexes = [models.Index(fields=["user_id", "-created_at"], name="orders_user_created_idx")]
        constraints = [
            # One gateway payment backs at most one order
            models.UniqueConstraint(
                fields=["gateway_payment_id"],
                condition=~Q(gateway_payment_id=""),
                name="orders_gateway_payment_uniq",
            ),
        ]


class OrderLineModel(models.Model):
    order = models.ForeignKey(OrderModel, related_name="lines", on_delete=models.CASCADE)
    position = models.PositiveIntegerField()
    product_id = models.CharField(max_length=64)
    product_name = models.CharField(max_length=255)
    unit_price_cents = models.PositiveBigIntegerField()
    size = models.CharField(max_length=32, blank=True, default="")
    quantity = models.PositiveIntegerField()
    subtotal_cents = models.PositiveBigIntegerField()

    class Meta:
        db_table = "order_lines"
        ordering = ["position"]


class IdempotencyKey(models.Model):
    # Scoped as "<user_id>:<client key>"
    key = models.CharField(max_length=255, primary_key=True)
    request_hash = models.CharField(max_length=64)
    response_status = models.PositiveSmallIntegerField(default=0)
    response_body = models.JSONField(default=dict)
    order_id = models.UUIDField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "idempotency_keys"
