from django.db import models


class CartItemModel(models.Model):
    user_id = models.BigIntegerField(db_index=True)
    product_id = models.CharField(max_length=64)
    # Empty string means "no size"
    size = models.CharField(max_length=32, blank=True, default="")
    quantity = models.PositiveIntegerField()
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "cart_items"
        ordering = ["created_at", "id"]
        constraints = [
            models.UniqueConstraint(fields=["user_id", "product_id", "size"], name="cart_user_product_size_uniq"),
        ]
