"""SQLAlchemy (async) implementation of the catalog, cart and order collaborators.

Stock is decremented with a single conditional UPDATE so two concurrent
commits can never both take the last unit. Orders carry a unique
idempotency key and an optimistic ``version`` column; losing either race
surfaces as ``ConcurrencyConflictError`` for the orchestrator to retry.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Integer,
    String,
    delete,
    func,
    select,
    update,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

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
from storefront.domain.value_objects import CartLine, Money, OrderId, ProductCategory, Size

logger = structlog.get_logger()

# Base class for models
Base = declarative_base()

JSONType = JSON().with_variant(JSONB(), "postgresql")

# SQLSTATEs for serialization failure and deadlock
_RETRYABLE_SQLSTATES = {"40001", "40P01"}


# ============================================================================
# Models
# ============================================================================


class ProductModel(Base):
    """Catalog product with its live stock counter."""

    __tablename__ = "products"

    product_ref = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False)
    category = Column(String(20), nullable=False)
    unit_price_minor = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="INR")
    stock = Column(Integer, nullable=False, default=0)
    sizes = Column(JSONType, nullable=False, default=list)
    is_active = Column(Boolean, nullable=False, default=True)
    discount_price_minor = Column(Integer, nullable=True)

    def to_domain(self) -> CatalogProduct:
        return CatalogProduct(
            product_ref=self.product_ref,
            name=self.name,
            category=ProductCategory(self.category),
            unit_price=Money(self.unit_price_minor, self.currency),
            stock=self.stock,
            sizes=tuple(Size(s) for s in self.sizes or []),
            is_active=self.is_active,
            discount_price=(
                Money(self.discount_price_minor, self.currency)
                if self.discount_price_minor is not None
                else None
            ),
        )


class CartLineModel(Base):
    """One line of a user's cart."""

    __tablename__ = "cart_lines"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    product_ref = Column(String(64), nullable=False)
    quantity = Column(Integer, nullable=False)
    size = Column(String(20), nullable=True)


class OrderModel(Base):
    """Committed order.

    Query columns are stored flat; the full aggregate is kept in
    ``payload`` so status history and lines round-trip exactly.
    """

    __tablename__ = "orders"

    id = Column(String(36), primary_key=True)
    order_number = Column(String(20), nullable=False, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    status = Column(String(20), nullable=False, index=True)
    idempotency_key = Column(String(64), nullable=False, unique=True)
    total_minor = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False)
    version = Column(Integer, nullable=False, default=1)
    payload = Column(JSONType, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    @classmethod
    def from_domain(cls, order: Order) -> "OrderModel":
        return cls(
            id=str(order.id),
            order_number=order.order_number,
            user_id=order.user_id,
            status=order.status.value,
            idempotency_key=order.idempotency_key,
            total_minor=order.total_amount.amount_minor,
            currency=order.total_amount.currency,
            version=order.version,
            payload=order.to_dict(),
            created_at=order.created_at,
            updated_at=order.updated_at,
        )

    def to_domain(self) -> Order:
        data: dict[str, Any] = dict(self.payload)
        data["version"] = self.version
        return Order.from_dict(data)


# ============================================================================
# Transaction
# ============================================================================


class _SqlTransaction(OrderTransaction):
    """Unit of work bound to one session transaction."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self._loaded_versions: dict[str, int] = {}

    async def decrement_stock(self, product_ref: str, quantity: int) -> bool:
        result = await self.session.execute(
            update(ProductModel)
            .where(ProductModel.product_ref == product_ref, ProductModel.stock >= quantity)
            .values(stock=ProductModel.stock - quantity)
        )
        return result.rowcount == 1

    async def increment_stock(self, product_ref: str, quantity: int) -> None:
        await self.session.execute(
            update(ProductModel)
            .where(ProductModel.product_ref == product_ref)
            .values(stock=ProductModel.stock + quantity)
        )

    async def get_order(self, order_id: OrderId) -> Order | None:
        model = await self.session.get(OrderModel, str(order_id))
        if model is None:
            return None
        self._loaded_versions[model.id] = model.version
        return model.to_domain()

    async def get_by_idempotency_key(self, key: str) -> Order | None:
        result = await self.session.execute(
            select(OrderModel).where(OrderModel.idempotency_key == key)
        )
        model = result.scalar_one_or_none()
        return model.to_domain() if model else None

    async def add(self, order: Order) -> None:
        self.session.add(OrderModel.from_domain(order))
        await self.session.flush()

    async def update(self, order: Order) -> None:
        key = str(order.id)
        stmt = update(OrderModel).where(OrderModel.id == key)
        expected = self._loaded_versions.get(key)
        if expected is not None:
            stmt = stmt.where(OrderModel.version == expected)
        result = await self.session.execute(
            stmt.values(
                status=order.status.value,
                version=order.version,
                payload=order.to_dict(),
                updated_at=order.updated_at,
            )
        )
        if result.rowcount != 1:
            raise ConcurrencyConflictError(f"Stale order version: {key}")
        self._loaded_versions[key] = order.version


def _is_retryable(error: DBAPIError) -> bool:
    sqlstate = getattr(error.orig, "sqlstate", None) or getattr(error.orig, "pgcode", None)
    if sqlstate in _RETRYABLE_SQLSTATES:
        return True
    return "database is locked" in str(error.orig).lower()


# ============================================================================
# Store
# ============================================================================


class SqlAlchemyStore(CatalogReader, CartProvider, OrderRepository):
    """Database-backed catalog, carts and orders."""

    def __init__(self, database_url: str, echo: bool = False) -> None:
        """Initialize store.

        Args:
            database_url: Async SQLAlchemy URL, e.g. ``sqlite+aiosqlite:///./storefront.db``.
            echo: Log SQL statements.
        """
        self.engine = create_async_engine(database_url, echo=echo, pool_pre_ping=True)
        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    async def create_tables(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()

    # -------------------------------------------------------------------------
    # Seeding / test helpers
    # -------------------------------------------------------------------------

    async def add_product(self, product: CatalogProduct) -> None:
        async with self.session_factory() as session, session.begin():
            await session.merge(
                ProductModel(
                    product_ref=product.product_ref,
                    name=product.name,
                    category=product.category.value,
                    unit_price_minor=product.unit_price.amount_minor,
                    currency=product.unit_price.currency,
                    stock=product.stock,
                    sizes=[s.value for s in product.sizes],
                    is_active=product.is_active,
                    discount_price_minor=(
                        product.discount_price.amount_minor if product.discount_price else None
                    ),
                )
            )

    async def set_cart(self, user_id: str, lines: list[CartLine]) -> None:
        async with self.session_factory() as session, session.begin():
            await session.execute(delete(CartLineModel).where(CartLineModel.user_id == user_id))
            session.add_all(
                CartLineModel(
                    user_id=user_id,
                    product_ref=line.product_ref,
                    quantity=line.quantity,
                    size=line.size.value if line.size else None,
                )
                for line in lines
            )

    async def count_products(self) -> int:
        async with self.session_factory() as session:
            result = await session.execute(select(func.count()).select_from(ProductModel))
            return result.scalar_one()

    # -------------------------------------------------------------------------
    # CatalogReader
    # -------------------------------------------------------------------------

    async def get_product(self, product_ref: str) -> CatalogProduct | None:
        async with self.session_factory() as session:
            model = await session.get(ProductModel, product_ref)
            return model.to_domain() if model else None

    # -------------------------------------------------------------------------
    # CartProvider
    # -------------------------------------------------------------------------

    async def get_cart(self, user_id: str) -> list[CartLine]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(CartLineModel)
                .where(CartLineModel.user_id == user_id)
                .order_by(CartLineModel.id)
            )
            return [
                CartLine(
                    product_ref=row.product_ref,
                    quantity=row.quantity,
                    size=Size(row.size) if row.size else None,
                )
                for row in result.scalars()
            ]

    async def clear_cart(self, user_id: str) -> None:
        async with self.session_factory() as session, session.begin():
            await session.execute(delete(CartLineModel).where(CartLineModel.user_id == user_id))

    # -------------------------------------------------------------------------
    # OrderRepository
    # -------------------------------------------------------------------------

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[OrderTransaction]:
        async with self.session_factory() as session:
            try:
                async with session.begin():
                    yield _SqlTransaction(session)
            except IntegrityError as e:
                logger.info("Order transaction conflict", error=str(e.orig))
                raise ConcurrencyConflictError(str(e.orig)) from e
            except DBAPIError as e:
                if _is_retryable(e):
                    logger.info("Order transaction lock conflict", error=str(e.orig))
                    raise ConcurrencyConflictError(str(e.orig)) from e
                raise

    async def get(self, order_id: OrderId) -> Order | None:
        async with self.session_factory() as session:
            model = await session.get(OrderModel, str(order_id))
            return model.to_domain() if model else None

    async def get_by_idempotency_key(self, key: str) -> Order | None:
        async with self.session_factory() as session:
            result = await session.execute(
                select(OrderModel).where(OrderModel.idempotency_key == key)
            )
            model = result.scalar_one_or_none()
            return model.to_domain() if model else None

    async def list_for_user(self, user_id: str) -> list[Order]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(OrderModel)
                .where(OrderModel.user_id == user_id)
                .order_by(OrderModel.created_at.desc())
            )
            return [model.to_domain() for model in result.scalars()]

    async def list_all(
        self,
        page: int = 1,
        page_size: int = 20,
        status: OrderStatus | None = None,
    ) -> tuple[list[Order], int]:
        async with self.session_factory() as session:
            query = select(OrderModel)
            count_query = select(func.count()).select_from(OrderModel)
            if status is not None:
                query = query.where(OrderModel.status == status.value)
                count_query = count_query.where(OrderModel.status == status.value)

            total = (await session.execute(count_query)).scalar_one()
            result = await session.execute(
                query.order_by(OrderModel.created_at.desc())
                .offset((page - 1) * page_size)
                .limit(page_size)
            )
            return [model.to_domain() for model in result.scalars()], total
