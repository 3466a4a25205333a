"""Read caches for orders and carts, and the keys mutations must drop.

Every mutating operation invalidates an explicit list of keys:

- checkout: ``product:{id}`` per line, ``cart:{user}``, ``orders:{user}``
- status update / webhook event: ``order:{id}``, ``orders:{user}``
- cancellation: ``product:{id}`` per line, ``order:{id}``, ``orders:{user}``
- cart add/remove: ``cart:{user}``
"""

from django.conf import settings
from django.core.cache import caches

ORDER_CACHE_TTL = 15 * 60
CART_CACHE_TTL = 30 * 60


class OrderCache:
    """Thin wrapper over a Django cache backend with explicit invalidation."""

    def __init__(self, backend=None):
        self.backend = backend if backend is not None else caches[getattr(settings, "ORDERS_CACHE_ALIAS", "default")]
        self.order_ttl = getattr(settings, "ORDER_CACHE_TTL", ORDER_CACHE_TTL)
        self.cart_ttl = getattr(settings, "CART_CACHE_TTL", CART_CACHE_TTL)

    @staticmethod
    def order_key(order_id) -> str:
        return f"order:{order_id}"

    @staticmethod
    def orders_key(user_id) -> str:
        return f"orders:{user_id}"

    @staticmethod
    def cart_key(user_id) -> str:
        return f"cart:{user_id}"

    @staticmethod
    def product_key(product_id) -> str:
        return f"product:{product_id}"

    def get(self, key: str):
        return self.backend.get(key)

    def set(self, key: str, value, ttl: int) -> None:
        self.backend.set(key, value, timeout=ttl)

    def get_or_set(self, key: str, factory, ttl: int):
        value = self.backend.get(key)
        if value is None:
            value = factory()
            if value is not None:
                self.backend.set(key, value, timeout=ttl)
        return value

    def invalidate(self, *keys: str) -> None:
        if keys:
            self.backend.delete_many(list(keys))
