"""Cart operations: add, view and remove lines.

The cart view is cached under ``cart:{user}``; every mutation drops that
key, and so does checkout when it empties the cart.
"""

import logging
from typing import Optional

from apps.orders.domain import CatalogPort
from apps.orders.errors import InsufficientStock, NotFound

from .repository import CartRepository

logger = logging.getLogger(__name__)


class CartService:
    def __init__(self, repo: CartRepository, catalog: CatalogPort, cache):
        self.repo = repo
        self.catalog = catalog
        self.cache = cache

    def add(self, user_id: int, product_id: str, size: Optional[str], quantity: int):
        """Add ``quantity`` units of a product to the user's cart.

        Raises:
            NotFound: The product is not in the catalog.
            InsufficientStock: Stock cannot cover the resulting cart quantity.
        """
        product = self.catalog.get(product_id)
        if product is None:
            raise NotFound("Product not found")
        wanted = self.repo.quantity_of(user_id, product_id, size) + quantity
        if product.stock < wanted:
            raise InsufficientStock(product_id, "Not enough stock available")

        line = self.repo.add(user_id, product_id, size, quantity)
        self.cache.invalidate(self.cache.cart_key(user_id))
        logger.info(
            "cart line added",
            extra={"user_id": user_id, "product_id": product_id, "quantity": line.quantity},
        )
        return line

    def view(self, user_id: int) -> dict:
        """Return the cart with current product names/prices and a total."""
        key = self.cache.cart_key(user_id)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        items = []
        total = 0
        for line in self.repo.lines(user_id):
            product = self.cache.get_or_set(
                self.cache.product_key(line.product_id),
                lambda pid=line.product_id: self.catalog.get(pid),
                self.cache.order_ttl,
            )
            if product is None:
                # Product left the catalog; checkout will refuse it.
                items.append({
                    "product_id": line.product_id,
                    "size": line.size,
                    "quantity": line.quantity,
                    "available": False,
                })
                continue
            subtotal = product.price_cents * line.quantity
            total += subtotal
            items.append({
                "product_id": line.product_id,
                "product_name": product.name,
                "unit_price_cents": product.price_cents,
                "size": line.size,
                "quantity": line.quantity,
                "subtotal_cents": subtotal,
                "available": product.stock >= line.quantity,
            })

        cart = {"items": items, "total_cents": total}
        self.cache.set(key, cart, self.cache.cart_ttl)
        return cart

    def remove(self, user_id: int, product_id: str) -> None:
        if not self.repo.remove(user_id, product_id):
            raise NotFound("Item not found in cart")
        self.cache.invalidate(self.cache.cart_key(user_id))
