"""In-memory implementation of the catalog, cart and order collaborators.

Orders are stored in serialized form so readers always get their own
copy. Transactions are serialized by an ``asyncio.Lock`` and work on a
staged copy of stock and orders that is only published when the
transaction block exits without an exception.
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import replace
from typing import Any

from storefront.domain.entities import Order
from storefront.domain.repositories import (
    CartProvider,
    CatalogProduct,
    CatalogReader,
    ConcurrencyConflictError,
    OrderRepository,
    OrderTransaction,
)
from storefront.domain.state_machines import OrderStatus
from storefront.domain.value_objects import CartLine, OrderId


class _MemoryTransaction(OrderTransaction):
    """Staged unit of work over an ``InMemoryStore``."""

    def __init__(self, store: "InMemoryStore") -> None:
        self._store = store
        self.stock = dict(store._stock)
        self.orders = dict(store._orders)
        self.by_key = dict(store._by_idempotency_key)
        self._loaded_versions: dict[str, int] = {}

    async def decrement_stock(self, product_ref: str, quantity: int) -> bool:
        available = self.stock.get(product_ref)
        if available is None or available < quantity:
            return False
        self.stock[product_ref] = available - quantity
        return True

    async def increment_stock(self, product_ref: str, quantity: int) -> None:
        if product_ref in self.stock:
            self.stock[product_ref] += quantity

    async def get_order(self, order_id: OrderId) -> Order | None:
        data = self.orders.get(str(order_id))
        if data is None:
            return None
        self._loaded_versions[str(order_id)] = data["version"]
        return Order.from_dict(data)

    async def get_by_idempotency_key(self, key: str) -> Order | None:
        order_id = self.by_key.get(key)
        if order_id is None:
            return None
        return Order.from_dict(self.orders[order_id])

    async def add(self, order: Order) -> None:
        key = str(order.id)
        if key in self.orders or order.idempotency_key in self.by_key:
            raise ConcurrencyConflictError(f"Order already exists: {order.idempotency_key}")
        self.orders[key] = order.to_dict()
        self.by_key[order.idempotency_key] = key

    async def update(self, order: Order) -> None:
        key = str(order.id)
        current = self.orders.get(key)
        if current is None:
            raise ConcurrencyConflictError(f"Order vanished: {key}")
        expected = self._loaded_versions.get(key, current["version"])
        if current["version"] != expected:
            raise ConcurrencyConflictError(f"Stale order version: {key}")
        self.orders[key] = order.to_dict()
        self._loaded_versions[key] = order.version

    def publish(self) -> None:
        self._store._stock = self.stock
        self._store._orders = self.orders
        self._store._by_idempotency_key = self.by_key


class InMemoryStore(CatalogReader, CartProvider, OrderRepository):
    """Process-local catalog, carts and orders."""

    def __init__(self) -> None:
        self._products: dict[str, CatalogProduct] = {}
        self._stock: dict[str, int] = {}
        self._carts: dict[str, list[CartLine]] = {}
        self._orders: dict[str, dict[str, Any]] = {}
        self._by_idempotency_key: dict[str, str] = {}
        self._lock = asyncio.Lock()

    # -------------------------------------------------------------------------
    # Seeding / test helpers
    # -------------------------------------------------------------------------

    def add_product(self, product: CatalogProduct) -> None:
        self._products[product.product_ref] = product
        self._stock[product.product_ref] = product.stock

    def set_cart(self, user_id: str, lines: list[CartLine]) -> None:
        self._carts[user_id] = list(lines)

    def stock_of(self, product_ref: str) -> int:
        return self._stock[product_ref]

    def order_count(self) -> int:
        return len(self._orders)

    # -------------------------------------------------------------------------
    # CatalogReader
    # -------------------------------------------------------------------------

    async def get_product(self, product_ref: str) -> CatalogProduct | None:
        product = self._products.get(product_ref)
        if product is None:
            return None
        return replace(product, stock=self._stock.get(product_ref, 0))

    # -------------------------------------------------------------------------
    # CartProvider
    # -------------------------------------------------------------------------

    async def get_cart(self, user_id: str) -> list[CartLine]:
        return list(self._carts.get(user_id, []))

    async def clear_cart(self, user_id: str) -> None:
        self._carts.pop(user_id, None)

    # -------------------------------------------------------------------------
    # OrderRepository
    # -------------------------------------------------------------------------

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[OrderTransaction]:
        async with self._lock:
            tx = _MemoryTransaction(self)
            yield tx
            tx.publish()

    async def get(self, order_id: OrderId) -> Order | None:
        data = self._orders.get(str(order_id))
        return Order.from_dict(data) if data else None

    async def get_by_idempotency_key(self, key: str) -> Order | None:
        order_id = self._by_idempotency_key.get(key)
        if order_id is None:
            return None
        return Order.from_dict(self._orders[order_id])

    async def list_for_user(self, user_id: str) -> list[Order]:
        orders = [Order.from_dict(d) for d in self._orders.values() if d["user_id"] == user_id]
        orders.sort(key=lambda o: o.created_at, reverse=True)
        return orders

    async def list_all(
        self,
        page: int = 1,
        page_size: int = 20,
        status: OrderStatus | None = None,
    ) -> tuple[list[Order], int]:
        orders = [
            Order.from_dict(d)
            for d in self._orders.values()
            if status is None or d["status"] == status.value
        ]
        orders.sort(key=lambda o: o.created_at, reverse=True)
        total = len(orders)
        start = (page - 1) * page_size
        return orders[start : start + page_size], total
