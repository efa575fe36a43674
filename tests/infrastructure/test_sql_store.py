"""Tests for the SQLAlchemy store against a SQLite file database."""

import pytest

from storefront.application.order_service import OrderOrchestrator
from storefront.application.payment_verifier import PaymentVerifier
from storefront.application.snapshot_service import CartSnapshotService
from storefront.domain.state_machines import OrderStatus
from storefront.domain.value_objects import CartLine, Money, ShippingAddress, Size
from storefront.infrastructure.notifier import LoggingNotifier, NotificationDispatcher
from storefront.infrastructure.payment_gateway import SimulatedGateway
from storefront.infrastructure.seed import seed_catalog
from storefront.infrastructure.sql_store import SqlAlchemyStore
from tests.conftest import GATEWAY_SECRET
from tests.factories import make_product, open_and_pay


@pytest.fixture
async def sql_store(tmp_path):
    store = SqlAlchemyStore(f"sqlite+aiosqlite:///{tmp_path}/storefront.db")
    await store.create_tables()
    await store.add_product(make_product("prod-a", price=500, stock=10))
    await store.add_product(make_product("prod-x", price=700, stock=1))
    await store.add_product(make_product("shirt", price=1000, stock=5, sizes=(Size.S, Size.M)))
    yield store
    await store.dispose()


@pytest.fixture
def sql_gateway() -> SimulatedGateway:
    return SimulatedGateway(key_secret=GATEWAY_SECRET)


@pytest.fixture
def sql_orchestrator(sql_store: SqlAlchemyStore, sql_gateway: SimulatedGateway) -> OrderOrchestrator:
    return OrderOrchestrator(
        orders=sql_store,
        carts=sql_store,
        snapshots=CartSnapshotService(catalog=sql_store, carts=sql_store),
        gateway=sql_gateway,
        verifier=PaymentVerifier(GATEWAY_SECRET),
        dispatcher=NotificationDispatcher(LoggingNotifier()),
    )


async def stock_of(store: SqlAlchemyStore, product_ref: str) -> int:
    return (await store.get_product(product_ref)).stock


class TestSqlCatalogAndCart:
    """Tests for catalog and cart persistence."""

    @pytest.mark.asyncio
    async def test_product_round_trip(self, sql_store: SqlAlchemyStore) -> None:
        await sql_store.add_product(make_product("sale", price=2000, discount=1500, sizes=(Size.L,)))

        product = await sql_store.get_product("sale")

        assert product.selling_price == Money(1500)
        assert product.sizes == (Size.L,)
        assert await sql_store.get_product("missing") is None

    @pytest.mark.asyncio
    async def test_cart_replace_and_clear(self, sql_store: SqlAlchemyStore) -> None:
        await sql_store.set_cart("user-1", [CartLine("prod-a", 1)])
        await sql_store.set_cart("user-1", [CartLine("shirt", 2, Size.M), CartLine("prod-a", 1)])

        assert await sql_store.get_cart("user-1") == [CartLine("shirt", 2, Size.M), CartLine("prod-a", 1)]

        await sql_store.clear_cart("user-1")
        assert await sql_store.get_cart("user-1") == []

    @pytest.mark.asyncio
    async def test_seed_is_counted(self, sql_store: SqlAlchemyStore) -> None:
        seeded = await seed_catalog(sql_store)
        assert await sql_store.count_products() == 3 + seeded


class TestSqlOrders:
    """Tests for order commits through the orchestrator."""

    @pytest.mark.asyncio
    async def test_commit_decrements_stock_and_clears_cart(
        self,
        sql_store: SqlAlchemyStore,
        sql_orchestrator: OrderOrchestrator,
        sql_gateway: SimulatedGateway,
        address: ShippingAddress,
    ) -> None:
        await sql_store.set_cart("user-1", [CartLine("prod-a", 2), CartLine("shirt", 1, Size.S)])
        _, proof = await open_and_pay(sql_orchestrator, sql_gateway, "user-1", address)

        result = await sql_orchestrator.confirm_payment("user-1", proof)

        assert result.created
        assert await stock_of(sql_store, "prod-a") == 8
        assert await stock_of(sql_store, "shirt") == 4
        assert await sql_store.get_cart("user-1") == []

        stored = await sql_store.get(result.order.id)
        assert stored.to_dict() == result.order.to_dict()

    @pytest.mark.asyncio
    async def test_repeat_confirmation_is_idempotent(
        self,
        sql_store: SqlAlchemyStore,
        sql_orchestrator: OrderOrchestrator,
        sql_gateway: SimulatedGateway,
        address: ShippingAddress,
    ) -> None:
        _, proof = await open_and_pay(sql_orchestrator, sql_gateway, "user-1", address, buy_now=CartLine("prod-a", 1))

        first = await sql_orchestrator.confirm_payment("user-1", proof)
        second = await sql_orchestrator.confirm_payment(None, proof)

        assert second.order.id == first.order.id
        assert not second.created
        assert (await sql_store.list_all())[1] == 1
        assert await stock_of(sql_store, "prod-a") == 9

    @pytest.mark.asyncio
    async def test_last_unit_goes_to_first_commit(
        self,
        sql_store: SqlAlchemyStore,
        sql_orchestrator: OrderOrchestrator,
        sql_gateway: SimulatedGateway,
        address: ShippingAddress,
    ) -> None:
        _, proof_1 = await open_and_pay(sql_orchestrator, sql_gateway, "user-1", address, buy_now=CartLine("prod-x", 1))
        _, proof_2 = await open_and_pay(sql_orchestrator, sql_gateway, "user-2", address, buy_now=CartLine("prod-x", 1))

        assert (await sql_orchestrator.confirm_payment("user-1", proof_1)).success
        result = await sql_orchestrator.confirm_payment("user-2", proof_2)

        assert result.error_code == "STOCK_UNAVAILABLE"
        assert await stock_of(sql_store, "prod-x") == 0
        assert await sql_store.list_for_user("user-2") == []

    @pytest.mark.asyncio
    async def test_failed_line_rolls_back_earlier_decrements(
        self,
        sql_store: SqlAlchemyStore,
        sql_orchestrator: OrderOrchestrator,
        sql_gateway: SimulatedGateway,
        address: ShippingAddress,
    ) -> None:
        await sql_store.set_cart("user-1", [CartLine("prod-a", 2), CartLine("prod-x", 1)])
        _, proof = await open_and_pay(sql_orchestrator, sql_gateway, "user-1", address)
        # Another channel sells the last prod-x after the snapshot
        await sql_store.add_product(make_product("prod-x", price=700, stock=0))

        result = await sql_orchestrator.confirm_payment("user-1", proof)

        assert result.error_code == "STOCK_UNAVAILABLE"
        assert await stock_of(sql_store, "prod-a") == 10

    @pytest.mark.asyncio
    async def test_cancel_and_status_filters(
        self,
        sql_store: SqlAlchemyStore,
        sql_orchestrator: OrderOrchestrator,
        sql_gateway: SimulatedGateway,
        address: ShippingAddress,
    ) -> None:
        _, proof = await open_and_pay(sql_orchestrator, sql_gateway, "user-1", address, buy_now=CartLine("prod-a", 3))
        order = (await sql_orchestrator.confirm_payment("user-1", proof)).order

        cancelled = await sql_orchestrator.cancel("user-1", str(order.id), reason="Wrong size")

        assert cancelled.order.status == OrderStatus.CANCELLED
        assert await stock_of(sql_store, "prod-a") == 10
        orders, total = await sql_store.list_all(status=OrderStatus.CANCELLED)
        assert total == 1
        assert orders[0].version == cancelled.order.version
