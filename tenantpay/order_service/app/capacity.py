"""Item catalog access and the capacity guard for bookable items."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Protocol

import httpx
from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from .models import ItemCapacity, Order, OrderItem, OrderStatus

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class CatalogItem:
    id: int
    tenant_id: int
    business_id: int
    price: Decimal
    currency: str

    def capacity_limit(self) -> int | None:
        """Items without a capacity concept are unconstrained."""

        return None


@dataclass(frozen=True)
class BookableItem(CatalogItem):
    capacity: int = 0

    def capacity_limit(self) -> int | None:
        return self.capacity


class CatalogUnavailable(RuntimeError):
    """Raised when the remote item catalog cannot be reached."""


class CapacityExceeded(Exception):
    def __init__(self, item_id: int, requested: int, remaining: int) -> None:
        self.item_id = item_id
        self.requested = requested
        self.remaining = remaining
        super().__init__(
            f"item {item_id} has {max(remaining, 0)} unit(s) of capacity left, {requested} requested"
        )


class ItemCatalog(Protocol):
    async def get_item(self, item_id: int) -> CatalogItem | None: ...


class InMemoryItemCatalog:
    """Catalog backed by a dict, used for local runs and tests."""

    def __init__(self, items: Iterable[CatalogItem] = ()) -> None:
        self._items = {item.id: item for item in items}

    def add(self, item: CatalogItem) -> None:
        self._items[item.id] = item

    async def get_item(self, item_id: int) -> CatalogItem | None:
        return self._items.get(item_id)


def item_from_payload(payload: Mapping[str, Any]) -> CatalogItem:
    fields = {
        "id": int(payload["id"]),
        "tenant_id": int(payload["tenantId"]),
        "business_id": int(payload["businessId"]),
        "price": Decimal(str(payload["price"])),
        "currency": str(payload.get("currency") or "USD").upper(),
    }
    if payload.get("capacity") is not None:
        return BookableItem(capacity=int(payload["capacity"]), **fields)
    return CatalogItem(**fields)


class HttpItemCatalog:
    """Resolves items from the catalog service over HTTP."""

    def __init__(self, client: httpx.AsyncClient, base_url: str) -> None:
        self._client = client
        self._base_url = base_url.rstrip("/")

    async def get_item(self, item_id: int) -> CatalogItem | None:
        url = f"{self._base_url}/items/{item_id}"
        try:
            response = await self._client.get(url)
        except httpx.HTTPError as exc:
            _LOGGER.warning("Catalog request failed for item %s: %s", item_id, exc)
            raise CatalogUnavailable(f"catalog lookup failed for item {item_id}") from exc
        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise CatalogUnavailable(f"catalog returned HTTP {response.status_code} for item {item_id}")
        return item_from_payload(response.json())


class CapacityGuard:
    """Checks requested quantities against committed (COMPLETED) bookings.

    ``ensure_capacity`` first bumps the item's lock row so that concurrent
    check-and-commit sequences for the same item serialize on it until the
    surrounding transaction ends.
    """

    def __init__(self, session: AsyncSession, catalog: ItemCatalog) -> None:
        self.session = session
        self.catalog = catalog

    async def committed_quantity(self, item_id: int, *, exclude_order_id: int | None = None) -> int:
        stmt = (
            select(func.coalesce(func.sum(OrderItem.quantity), 0))
            .join(Order, Order.id == OrderItem.order_id)
            .where(OrderItem.item_id == item_id, Order.status == OrderStatus.COMPLETED)
        )
        if exclude_order_id is not None:
            stmt = stmt.where(Order.id != exclude_order_id)
        return int((await self.session.execute(stmt)).scalar_one())

    async def check_capacity(self, item_id: int, requested_qty: int) -> bool:
        item = await self.catalog.get_item(item_id)
        if item is None:
            return False
        if item.capacity_limit() is None:
            return True
        return await self._remaining(item) >= requested_qty

    async def ensure_capacity(
        self,
        requested: Mapping[int, int],
        *,
        items: Mapping[int, CatalogItem] | None = None,
        exclude_order_id: int | None = None,
    ) -> None:
        """Raise :class:`CapacityExceeded` unless every item can take its quantity."""

        for item_id in sorted(requested):
            item = items.get(item_id) if items is not None else None
            if item is None:
                item = await self.catalog.get_item(item_id)
            if item is None or item.capacity_limit() is None:
                continue
            await self._lock(item)
            remaining = await self._remaining(item, exclude_order_id=exclude_order_id)
            if requested[item_id] > remaining:
                _LOGGER.info(
                    "Capacity exceeded for item %s: requested=%s remaining=%s",
                    item_id,
                    requested[item_id],
                    remaining,
                )
                raise CapacityExceeded(item_id, requested[item_id], remaining)

    async def _remaining(self, item: CatalogItem, *, exclude_order_id: int | None = None) -> int:
        """Units still bookable for a capacity-limited ``item``."""

        limit = item.capacity_limit() or 0
        committed = await self.committed_quantity(item.id, exclude_order_id=exclude_order_id)
        return limit - committed

    async def _lock(self, item: CatalogItem) -> None:
        capacity = item.capacity_limit() or 0
        dialect = self.session.bind.dialect.name if self.session.bind is not None else "sqlite"
        insert = pg_insert if dialect == "postgresql" else sqlite_insert
        await self.session.execute(
            insert(ItemCapacity)
            .values(item_id=item.id, capacity=capacity, version=0)
            .on_conflict_do_nothing(index_elements=[ItemCapacity.item_id])
        )
        await self.session.execute(
            update(ItemCapacity)
            .where(ItemCapacity.item_id == item.id)
            .values(version=ItemCapacity.version + 1, capacity=capacity)
            .execution_options(synchronize_session=False)
        )
