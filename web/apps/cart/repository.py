"""Repository for cart lines.

Implements the cart port consumed by checkout (``lines``/``clear``) plus
the add/remove operations behind the cart API.
"""

from typing import List, Optional

from django.db import transaction
from django.db.models import F

from apps.orders.domain import CartLine

from .models import CartItemModel


class CartRepository:
    """Cart store backed by Django ORM."""

    def lines(self, user_id: int) -> List[CartLine]:
        return [
            CartLine(product_id=row.product_id, quantity=row.quantity, size=row.size or None)
            for row in CartItemModel.objects.filter(user_id=user_id)
        ]

    def quantity_of(self, user_id: int, product_id: str, size: Optional[str]) -> int:
        row = CartItemModel.objects.filter(user_id=user_id, product_id=product_id, size=size or "").first()
        return row.quantity if row else 0

    @transaction.atomic
    def add(self, user_id: int, product_id: str, size: Optional[str], quantity: int) -> CartLine:
        """Add units to the cart, merging with an existing line of the same size."""
        row, created = CartItemModel.objects.select_for_update().get_or_create(
            user_id=user_id,
            product_id=product_id,
            size=size or "",
            defaults={"quantity": quantity},
        )
        if not created:
            CartItemModel.objects.filter(pk=row.pk).update(quantity=F("quantity") + quantity)
            row.refresh_from_db()
        return CartLine(product_id=row.product_id, quantity=row.quantity, size=row.size or None)

    def remove(self, user_id: int, product_id: str) -> int:
        """Remove every line for ``product_id``. Returns how many were deleted."""
        deleted, _ = CartItemModel.objects.filter(user_id=user_id, product_id=product_id).delete()
        return deleted

    def clear(self, user_id: int) -> None:
        CartItemModel.objects.filter(user_id=user_id).delete()
