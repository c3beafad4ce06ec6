from collections.abc import AsyncIterator
from decimal import Decimal

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from tenantpay.order_service.app.capacity import (
    BookableItem,
    CapacityExceeded,
    CapacityGuard,
    CatalogItem,
    CatalogUnavailable,
    HttpItemCatalog,
    InMemoryItemCatalog,
)
from tenantpay.order_service.app.models import Base, ItemCapacity, OrderStatus
from tenantpay.order_service.app.repository import OrderRepository

ROOM = BookableItem(id=1, tenant_id=1, business_id=9, price=Decimal("80.00"), currency="USD", capacity=5)
MUG = CatalogItem(id=2, tenant_id=1, business_id=9, price=Decimal("3.00"), currency="USD")


@pytest_asyncio.fixture
async def session(tmp_path) -> AsyncIterator[AsyncSession]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'capacity.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(engine, expire_on_commit=False)
    async with factory() as active:
        yield active
    await engine.dispose()


async def _order(repository: OrderRepository, item: CatalogItem, quantity: int, status: OrderStatus) -> int:
    order = await repository.create_order(
        tenant_id=1,
        user_id=3,
        currency="USD",
        lines=[{"item_id": item.id, "business_id": 9, "quantity": quantity, "unit_price_cents": 8000}],
    )
    if status is not OrderStatus.PENDING:
        await repository.flip_status(order.lines[0], status=status)
    return order.id


@pytest.mark.asyncio
async def test_only_completed_orders_consume_capacity(session: AsyncSession) -> None:
    repository = OrderRepository(session)
    guard = CapacityGuard(session, InMemoryItemCatalog([ROOM, MUG]))

    completed = await _order(repository, ROOM, 2, OrderStatus.COMPLETED)
    await _order(repository, ROOM, 2, OrderStatus.PENDING)
    await _order(repository, ROOM, 1, OrderStatus.REFUNDED)

    assert await guard.committed_quantity(ROOM.id) == 2
    assert await guard.committed_quantity(ROOM.id, exclude_order_id=completed) == 0
    assert await guard.check_capacity(ROOM.id, 3) is True
    assert await guard.check_capacity(ROOM.id, 4) is False
    assert await guard.check_capacity(MUG.id, 10_000) is True
    assert await guard.check_capacity(MUG.id, 5_000_000_000) is True
    assert await guard.check_capacity(404, 1) is False


@pytest.mark.asyncio
async def test_line_lookup_loads_order_collections(session: AsyncSession) -> None:
    repository = OrderRepository(session)
    order = await repository.create_order(
        tenant_id=1,
        user_id=3,
        currency="USD",
        lines=[
            {"item_id": ROOM.id, "business_id": 9, "quantity": 1, "unit_price_cents": 8000},
            {"item_id": MUG.id, "business_id": 9, "quantity": 2, "unit_price_cents": 300},
        ],
    )
    first_id, second_id = (line.id for line in order.lines)
    await session.commit()
    session.expunge_all()

    line = await repository.get_line(first_id)
    assert line is not None
    assert [entry.id for entry in line.order.lines] == [first_id, second_id]
    assert line.order.events == []

    assert await repository.delete_line(line) is False
    await repository.add_event(line.order, event_type="line_deleted", actor_type="CUSTOMER", actor_id=3)
    await session.commit()
    session.expunge_all()

    last = await repository.get_line(second_id)
    assert last is not None
    assert [event.type for event in last.order.events] == ["line_deleted"]
    assert await repository.delete_line(last) is True
    await session.commit()
    assert await repository.get_order(order.id) is None


@pytest.mark.asyncio
async def test_ensure_capacity_reports_remaining_and_bumps_lock_row(session: AsyncSession) -> None:
    repository = OrderRepository(session)
    guard = CapacityGuard(session, InMemoryItemCatalog([ROOM, MUG]))
    await _order(repository, ROOM, 4, OrderStatus.COMPLETED)

    await guard.ensure_capacity({ROOM.id: 1, MUG.id: 50})
    with pytest.raises(CapacityExceeded) as excinfo:
        await guard.ensure_capacity({ROOM.id: 2})

    assert excinfo.value.item_id == ROOM.id
    assert excinfo.value.requested == 2
    assert excinfo.value.remaining == 1

    lock = (await session.execute(select(ItemCapacity).where(ItemCapacity.item_id == ROOM.id))).scalar_one()
    await session.refresh(lock)
    assert lock.capacity == 5
    assert lock.version == 2
    assert (await session.execute(select(ItemCapacity).where(ItemCapacity.item_id == MUG.id))).first() is None


@pytest.mark.asyncio
async def test_ensure_capacity_excludes_the_order_being_completed(session: AsyncSession) -> None:
    repository = OrderRepository(session)
    guard = CapacityGuard(session, InMemoryItemCatalog([ROOM]))
    order_id = await _order(repository, ROOM, 5, OrderStatus.COMPLETED)

    await guard.ensure_capacity({ROOM.id: 5}, exclude_order_id=order_id)
    with pytest.raises(CapacityExceeded):
        await guard.ensure_capacity({ROOM.id: 1})


@pytest.mark.asyncio
async def test_http_catalog_maps_responses() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/items/1":
            return httpx.Response(
                200,
                json={"id": 1, "tenantId": 1, "businessId": 9, "price": "80.00", "currency": "usd", "capacity": 5},
            )
        if request.url.path == "/items/2":
            return httpx.Response(200, json={"id": 2, "tenantId": 1, "businessId": 9, "price": 3})
        if request.url.path == "/items/3":
            return httpx.Response(500, json={"detail": "boom"})
        return httpx.Response(404, json={"detail": "Item not found"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        catalog = HttpItemCatalog(client, "http://catalog.test/")

        room = await catalog.get_item(1)
        assert isinstance(room, BookableItem)
        assert room.capacity_limit() == 5
        assert room.currency == "USD"
        assert room.price == Decimal("80.00")

        mug = await catalog.get_item(2)
        assert type(mug) is CatalogItem
        assert mug.capacity_limit() is None
        assert mug.currency == "USD"

        assert await catalog.get_item(99) is None
        with pytest.raises(CatalogUnavailable):
            await catalog.get_item(3)


@pytest.mark.asyncio
async def test_http_catalog_wraps_transport_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(CatalogUnavailable):
            await HttpItemCatalog(client, "http://catalog.test").get_item(1)
