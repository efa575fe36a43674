"""Collaborator interfaces consumed by the checkout core.

The catalog, the cart and the order store are external to the core; it
depends only on these abstractions. Concrete implementations live in
``storefront.infrastructure``.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass

from storefront.domain.entities import Order
from storefront.domain.state_machines import OrderStatus
from storefront.domain.value_objects import CartLine, Money, OrderId, ProductCategory, Size


@dataclass(frozen=True)
class CatalogProduct:
    """Catalog view of a product at read time."""

    product_ref: str
    name: str
    category: ProductCategory
    unit_price: Money
    stock: int
    sizes: tuple[Size, ...] = ()
    is_active: bool = True
    discount_price: Money | None = None

    @property
    def is_sized(self) -> bool:
        return bool(self.sizes)

    @property
    def selling_price(self) -> Money:
        """Discount price when one is set, list price otherwise."""
        return self.discount_price or self.unit_price


class ConcurrencyConflictError(Exception):
    """A transaction lost a race and may be retried.

    Raised by stores on serialization failures, lock timeouts, a
    duplicate idempotency key, or a stale order version.
    """


class CatalogReader(ABC):

    @abstractmethod
    async def get_product(self, product_ref: str) -> CatalogProduct | None:
        """Return the current catalog view of a product, or None."""


class CartProvider(ABC):

    @abstractmethod
    async def get_cart(self, user_id: str) -> list[CartLine]:
        """Return a consistent snapshot of the user's cart lines."""

    @abstractmethod
    async def clear_cart(self, user_id: str) -> None:
        """Remove every line from the user's cart."""


class OrderTransaction(ABC):
    """Unit of work against the order store.

    Everything done through one transaction becomes visible together
    when the transaction block exits normally, and not at all otherwise.
    """

    @abstractmethod
    async def decrement_stock(self, product_ref: str, quantity: int) -> bool:
        """Atomically take ``quantity`` units if that many are available.

        Returns:
            True if stock was decremented, False if it was insufficient.
        """

    @abstractmethod
    async def increment_stock(self, product_ref: str, quantity: int) -> None:
        """Give ``quantity`` units back to stock."""

    @abstractmethod
    async def get_order(self, order_id: OrderId) -> Order | None:
        """Read an order inside the transaction."""

    @abstractmethod
    async def get_by_idempotency_key(self, key: str) -> Order | None:
        """Read an order by its idempotency key inside the transaction."""

    @abstractmethod
    async def add(self, order: Order) -> None:
        """Insert a new order."""

    @abstractmethod
    async def update(self, order: Order) -> None:
        """Persist changes to an existing order."""


class OrderRepository(ABC):

    @abstractmethod
    def transaction(self) -> AbstractAsyncContextManager[OrderTransaction]:
        """Open an all-or-nothing unit of work."""

    @abstractmethod
    async def get(self, order_id: OrderId) -> Order | None:
        """Return an order by its ID, or None if not found."""

    @abstractmethod
    async def get_by_idempotency_key(self, key: str) -> Order | None:
        """Return the order committed under an idempotency key, or None."""

    @abstractmethod
    async def list_for_user(self, user_id: str) -> list[Order]:
        """Return a user's orders, newest first."""

    @abstractmethod
    async def list_all(
        self,
        page: int = 1,
        page_size: int = 20,
        status: OrderStatus | None = None,
    ) -> tuple[list[Order], int]:
        """Return one page of all orders (newest first) and the total count."""
