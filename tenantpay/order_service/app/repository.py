"""Data access helpers for order service."""

from __future__ import annotations

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload, selectinload

from .models import Order, OrderEvent, OrderItem, OrderStatus, utcnow


class OrderRepository:
    """Persistence helpers for orders, lines and their audit events."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create_order(
        self,
        *,
        tenant_id: int,
        user_id: int,
        currency: str,
        lines: list[dict[str, int]],
    ) -> Order:
        order = Order(
            tenant_id=tenant_id,
            user_id=user_id,
            currency=currency,
            status=OrderStatus.PENDING,
            total_price_cents=sum(entry["unit_price_cents"] * entry["quantity"] for entry in lines),
        )
        self.session.add(order)
        await self.session.flush()

        for entry in lines:
            self.session.add(
                OrderItem(
                    order=order,
                    item_id=entry["item_id"],
                    user_id=user_id,
                    business_id=entry["business_id"],
                    quantity=entry["quantity"],
                    unit_price_cents=entry["unit_price_cents"],
                    currency=currency,
                )
            )
        await self.session.flush()
        await self.session.refresh(order, attribute_names=["lines", "events"])
        return order

    async def get_order(self, order_id: int) -> Order | None:
        result = await self.session.execute(select(Order).where(Order.id == order_id))
        return result.scalar_one_or_none()

    async def get_line(self, line_id: int) -> OrderItem | None:
        """Load a line with its order header, the header's lines and its events."""

        header = joinedload(OrderItem.order)
        stmt = (
            select(OrderItem)
            .options(header.selectinload(Order.lines), header.selectinload(Order.events))
            .where(OrderItem.id == line_id)
        )
        result = await self.session.execute(stmt)
        return result.unique().scalar_one_or_none()

    async def list_orders_for_user(
        self,
        *,
        user_id: int,
        tenant_id: int | None,
        status: OrderStatus | None,
        limit: int,
        offset: int,
    ) -> tuple[list[Order], int]:
        filters = [Order.user_id == user_id]
        if tenant_id is not None:
            filters.append(Order.tenant_id == tenant_id)
        if status is not None:
            filters.append(Order.status == status)

        base: Select[tuple[Order]] = select(Order).where(*filters).order_by(Order.created_at.desc(), Order.id.desc())
        count: Select[tuple[int]] = select(func.count(Order.id)).where(*filters)

        total = (await self.session.execute(count)).scalar_one()
        result = await self.session.execute(base.offset(offset).limit(limit))
        return list(result.scalars().unique()), total

    async def list_lines_for_business(
        self,
        *,
        business_id: int,
        status: OrderStatus | None,
        limit: int,
        offset: int,
    ) -> tuple[list[OrderItem], int]:
        filters = [OrderItem.business_id == business_id]
        if status is not None:
            filters.append(Order.status == status)

        base = (
            select(OrderItem)
            .join(Order, Order.id == OrderItem.order_id)
            .where(*filters)
            .order_by(OrderItem.created_at.desc(), OrderItem.id.desc())
        )
        count = (
            select(func.count(OrderItem.id))
            .join(Order, Order.id == OrderItem.order_id)
            .where(*filters)
        )

        total = (await self.session.execute(count)).scalar_one()
        result = await self.session.execute(base.offset(offset).limit(limit))
        return list(result.scalars().unique()), total

    async def flip_status(self, line: OrderItem, *, status: OrderStatus) -> None:
        """Persist a status flip: header first, then the line."""

        now = utcnow()
        order = line.order
        order.status = status
        order.updated_at = now
        await self.session.flush()
        line.updated_at = now
        await self.session.flush()

    async def add_event(
        self,
        order: Order,
        *,
        event_type: str,
        actor_type: str,
        actor_id: int | None,
        line_id: int | None = None,
        from_status: OrderStatus | None = None,
        to_status: OrderStatus | None = None,
    ) -> OrderEvent:
        entry = OrderEvent(
            order=order,
            line_id=line_id,
            type=event_type,
            from_status=from_status,
            to_status=to_status,
            actor_type=actor_type,
            actor_id=actor_id,
        )
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def delete_line(self, line: OrderItem) -> bool:
        """Delete ``line``; drop its order too when no lines remain.

        Returns ``True`` when the order header was removed as well.
        """

        order = line.order
        order.lines.remove(line)
        await self.session.flush()
        if not order.lines:
            await self.session.delete(order)
            await self.session.flush()
            return True
        return False
