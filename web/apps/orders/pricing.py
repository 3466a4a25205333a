"""Authoritative pricing and stock reservation for checkout.

``StockReconciler.price`` reads the catalog for every cart line, checks
stock and computes the server-side total. ``reserve`` then takes the
stock with one atomic conditional decrement per line, giving back what it
already took if a later line cannot be covered.

Every stock move carries a key derived from the reservation id and the
line position (``{reservation}:take:{n}``, ``{reservation}:give:{n}``),
so a retried move is applied once and compensation for a line can never
run twice.
"""

import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence

from .domain import CartLine, CatalogPort, OrderItem
from .errors import InsufficientStock, NotFound, TotalMismatch

logger = logging.getLogger(__name__)

# One currency unit, to absorb client-side rounding.
TOTAL_TOLERANCE_CENTS = 100


@dataclass(frozen=True)
class PricedCart:
    items: List[OrderItem]
    total_cents: int
    reservation_id: str = field(default_factory=lambda: uuid.uuid4().hex)


class StockReconciler:
    """Prices carts from the catalog and reserves their stock.

    Args:
        catalog: CatalogPort used for reads and stock writes.
        cache: OrderCache whose ``product:{id}`` entries go stale when
            stock moves.
        tolerance_cents: Allowed gap between a client total and the
            computed total.
    """

    def __init__(self, catalog: CatalogPort, cache, tolerance_cents: int = TOTAL_TOLERANCE_CENTS):
        self.catalog = catalog
        self.cache = cache
        self.tolerance_cents = tolerance_cents

    def price(self, lines: Sequence[CartLine], client_total_cents: Optional[int] = None) -> PricedCart:
        """Compute line subtotals and the total from current catalog prices.

        Demand is summed per product before checking stock, so two lines
        for different sizes of one product are checked together.

        Raises:
            NotFound: A cart line points at a product the catalog lacks.
            InsufficientStock: Demand for a product exceeds its stock.
            TotalMismatch: ``client_total_cents`` is outside the tolerance.
        """
        products = {}
        demand = defaultdict(int)
        for line in lines:
            if line.product_id not in products:
                product = self.catalog.get(line.product_id)
                if product is None:
                    raise NotFound(f"Product {line.product_id} not found")
                products[line.product_id] = product
            demand[line.product_id] += line.quantity

        for product_id, wanted in demand.items():
            product = products[product_id]
            if product.stock < wanted:
                raise InsufficientStock(product_id, f"Not enough stock for product {product.name}")

        items = []
        for line in lines:
            product = products[line.product_id]
            items.append(
                OrderItem(
                    product_id=product.id,
                    product_name=product.name,
                    unit_price_cents=product.price_cents,
                    quantity=line.quantity,
                    subtotal_cents=product.price_cents * line.quantity,
                    size=line.size,
                )
            )
        total = sum(i.subtotal_cents for i in items)

        if client_total_cents is not None and abs(client_total_cents - total) > self.tolerance_cents:
            raise TotalMismatch(client_total_cents, total)

        return PricedCart(items=items, total_cents=total)

    def reserve(self, priced: PricedCart) -> None:
        """Decrement stock for every line, all or nothing.

        A line whose decrement failed without an answer (the catalog may
        or may not have applied it) is reversed by key before the error
        propagates.

        Raises:
            InsufficientStock: A conditional decrement was refused; lines
                already decremented by this call have been restored.
            GatewayError: The catalog could not be reached; lines already
                decremented have been restored.
        """
        rid = priced.reservation_id
        taken: List[int] = []
        try:
            for n, item in enumerate(priced.items):
                key = f"{rid}:take:{n}"
                try:
                    ok = self.catalog.decrement_if_available(item.product_id, item.quantity, move_key=key)
                except Exception:
                    self._reverse(item, key)
                    raise
                if not ok:
                    raise InsufficientStock(item.product_id)
                taken.append(n)
        except Exception:
            if taken:
                logger.warning(
                    "stock reservation aborted, compensating",
                    extra={"lines": len(taken), "products": [priced.items[n].product_id for n in taken]},
                )
                self.release(
                    [priced.items[n] for n in taken],
                    move_keys=[f"{rid}:give:{n}" for n in taken],
                )
            raise
        finally:
            self._invalidate(priced.items)

    def unreserve(self, priced: PricedCart) -> List[OrderItem]:
        """Give back everything ``reserve`` took for ``priced``."""
        return self.release(
            priced.items,
            move_keys=[f"{priced.reservation_id}:give:{n}" for n in range(len(priced.items))],
        )

    def release(self, items: Iterable[OrderItem], move_keys: Optional[Sequence[str]] = None) -> List[OrderItem]:
        """Give stock back for ``items``, best-effort per line.

        Args:
            items: Lines to restock.
            move_keys: Optional key per line; a keyed restock is applied
                at most once however often it is repeated.

        Returns:
            The lines whose stock could not be restored.
        """
        items = list(items)
        keys = list(move_keys) if move_keys is not None else [None] * len(items)
        failed = []
        for item, key in zip(items, keys):
            try:
                self.catalog.increment(item.product_id, item.quantity, move_key=key)
            except Exception:
                logger.exception(
                    "restock failed",
                    extra={"product_id": item.product_id, "quantity": item.quantity, "move_key": key},
                )
                failed.append(item)
        self._invalidate(items)
        return failed

    def _reverse(self, item: OrderItem, key: str) -> None:
        try:
            self.catalog.reverse_decrement(item.product_id, item.quantity, key)
        except Exception:
            logger.exception(
                "could not reverse stock move with unknown outcome",
                extra={"product_id": item.product_id, "quantity": item.quantity, "move_key": key},
            )

    def _invalidate(self, items: Iterable[OrderItem]) -> None:
        keys = {self.cache.product_key(i.product_id) for i in items}
        self.cache.invalidate(*sorted(keys))
