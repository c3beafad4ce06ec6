"""Service layer for the order/booking lifecycle."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field

from tenantpay.common import tenant_context, to_cents

from .capacity import CapacityExceeded, CapacityGuard, CatalogItem, ItemCatalog
from .events import OrderEventPublisher
from .metrics import CAPACITY_REJECTIONS_TOTAL, ORDER_TRANSITIONS_TOTAL, ORDERS_CREATED_TOTAL
from .models import Order, OrderItem, OrderStatus
from .repository import OrderRepository
from .schemas import OrderCreate
from .transitions import OPERATION_ROLES, ActorRole, Operation, TransitionConflict, plan_transition

_LOGGER = logging.getLogger(__name__)


class OrderNotFound(LookupError):
    pass


class OrderLineNotFound(LookupError):
    """The line does not exist or does not belong to the caller."""


class InvalidOrder(ValueError):
    pass


@dataclass(frozen=True)
class Actor:
    """Authenticated caller identity as forwarded by the gateway."""

    user_id: int | None = None
    business_id: int | None = None


@dataclass
class TransitionOutcome:
    line: OrderItem
    previous_status: OrderStatus
    changes: list[tuple[OrderStatus, OrderStatus]] = field(default_factory=list)

    @property
    def order(self) -> Order:
        return self.line.order


def _owns(line: OrderItem, role: ActorRole, actor: Actor) -> bool:
    is_customer = actor.user_id is not None and line.user_id == actor.user_id
    is_business = actor.business_id is not None and line.business_id == actor.business_id
    if role is ActorRole.CUSTOMER:
        return is_customer
    if role is ActorRole.BUSINESS:
        return is_business
    return is_customer or is_business


def _acting_as(role: ActorRole, line: OrderItem, actor: Actor) -> tuple[str, int | None]:
    if role is ActorRole.EITHER:
        role = ActorRole.CUSTOMER if actor.user_id == line.user_id else ActorRole.BUSINESS
    if role is ActorRole.CUSTOMER:
        return ActorRole.CUSTOMER.value, actor.user_id
    return ActorRole.BUSINESS.value, actor.business_id


class OrderService:
    """Creates orders and drives them through the transition table."""

    def __init__(
        self,
        repository: OrderRepository,
        catalog: ItemCatalog,
        publisher: OrderEventPublisher | None = None,
    ) -> None:
        self.repository = repository
        self.catalog = catalog
        self.publisher = publisher
        self.capacity = CapacityGuard(repository.session, catalog)

    async def create_order(self, payload: OrderCreate, *, user_id: int) -> Order:
        requested: dict[int, int] = defaultdict(int)
        for entry in payload.items:
            requested[entry.item_id] += entry.quantity

        items: dict[int, CatalogItem] = {}
        for item_id in requested:
            item = await self.catalog.get_item(item_id)
            if item is None:
                raise InvalidOrder(f"unknown item {item_id}")
            if item.tenant_id != payload.tenant_id:
                raise InvalidOrder(f"item {item_id} does not belong to tenant {payload.tenant_id}")
            items[item_id] = item

        currency = payload.currency or items[payload.items[0].item_id].currency
        mismatched = sorted(item.id for item in items.values() if item.currency != currency)
        if mismatched:
            raise InvalidOrder(f"items {mismatched} are not priced in {currency}")

        try:
            await self.capacity.ensure_capacity(requested, items=items)
        except CapacityExceeded:
            CAPACITY_REJECTIONS_TOTAL.labels(stage="creation").inc()
            raise

        lines = [
            {
                "item_id": entry.item_id,
                "business_id": items[entry.item_id].business_id,
                "quantity": entry.quantity,
                "unit_price_cents": to_cents(items[entry.item_id].price),
            }
            for entry in payload.items
        ]
        order = await self.repository.create_order(
            tenant_id=payload.tenant_id,
            user_id=user_id,
            currency=currency,
            lines=lines,
        )
        await self.repository.add_event(
            order,
            event_type="order_created",
            to_status=OrderStatus.PENDING,
            actor_type=ActorRole.CUSTOMER.value,
            actor_id=user_id,
        )
        ORDERS_CREATED_TOTAL.labels(currency=currency).inc()
        with tenant_context(order.tenant_id):
            _LOGGER.info("Created order %s with %d line(s) for user %s", order.id, len(order.lines), user_id)
        return order

    async def get_order(self, order_id: int, actor: Actor) -> Order:
        order = await self.repository.get_order(order_id)
        if order is None:
            raise OrderNotFound(order_id)
        if actor.user_id is not None and order.user_id == actor.user_id:
            return order
        if actor.business_id is not None and any(line.business_id == actor.business_id for line in order.lines):
            return order
        raise OrderNotFound(order_id)

    async def apply(self, operation: Operation, line_id: int, actor: Actor) -> TransitionOutcome:
        role = OPERATION_ROLES[operation]
        line = await self._resolve_line(line_id, role, actor)
        order = line.order
        outcome = TransitionOutcome(line=line, previous_status=order.status)

        try:
            targets = plan_transition(operation, order.status)
        except TransitionConflict:
            ORDER_TRANSITIONS_TOTAL.labels(operation=operation.value, outcome="conflict").inc()
            raise

        if not targets:
            ORDER_TRANSITIONS_TOTAL.labels(operation=operation.value, outcome="noop").inc()
            return outcome

        if operation is Operation.MARK_PAID:
            await self._ensure_completion_capacity(order)

        actor_type, actor_id = _acting_as(role, line, actor)
        with tenant_context(order.tenant_id):
            for target in targets:
                current = order.status
                await self.repository.flip_status(line, status=target)
                await self.repository.add_event(
                    order,
                    event_type="status_changed",
                    line_id=line.id,
                    from_status=current,
                    to_status=target,
                    actor_type=actor_type,
                    actor_id=actor_id,
                )
                outcome.changes.append((current, target))
                _LOGGER.info(
                    "Order %s %s -> %s via %s by %s %s",
                    order.id,
                    current.value,
                    target.value,
                    operation.value,
                    actor_type.lower(),
                    actor_id,
                )
                if self.publisher is not None:
                    await self.publisher.status_changed(
                        order, line, previous_status=current, actor_type=actor_type, actor_id=actor_id
                    )
        ORDER_TRANSITIONS_TOTAL.labels(operation=operation.value, outcome="applied").inc()
        return outcome

    async def cancel(self, line_id: int, actor: Actor) -> TransitionOutcome:
        return await self.apply(Operation.CANCEL, line_id, actor)

    async def reset_to_pending(self, line_id: int, actor: Actor) -> TransitionOutcome:
        return await self.apply(Operation.RESET_TO_PENDING, line_id, actor)

    async def request_cancel(self, line_id: int, actor: Actor) -> TransitionOutcome:
        return await self.apply(Operation.REQUEST_CANCEL, line_id, actor)

    async def refund_if_eligible(self, line_id: int, actor: Actor) -> TransitionOutcome:
        return await self.apply(Operation.REFUND_IF_ELIGIBLE, line_id, actor)

    async def approve_cancel(self, line_id: int, actor: Actor) -> TransitionOutcome:
        return await self.apply(Operation.APPROVE_CANCEL, line_id, actor)

    async def reject_cancel(self, line_id: int, actor: Actor) -> TransitionOutcome:
        return await self.apply(Operation.REJECT_CANCEL, line_id, actor)

    async def mark_paid(self, line_id: int, actor: Actor) -> TransitionOutcome:
        return await self.apply(Operation.MARK_PAID, line_id, actor)

    async def mark_refunded(self, line_id: int, actor: Actor) -> TransitionOutcome:
        return await self.apply(Operation.MARK_REFUNDED, line_id, actor)

    async def reject_order(self, line_id: int, actor: Actor) -> TransitionOutcome:
        return await self.apply(Operation.REJECT_ORDER, line_id, actor)

    async def unreject_order(self, line_id: int, actor: Actor) -> TransitionOutcome:
        return await self.apply(Operation.UNREJECT_ORDER, line_id, actor)

    async def delete_line(self, line_id: int, actor: Actor) -> bool:
        """Remove a line regardless of status. Returns True when the order went with it."""

        line = await self._resolve_line(line_id, ActorRole.CUSTOMER, actor)
        order = line.order
        order_removed = await self.repository.delete_line(line)
        if not order_removed:
            await self.repository.add_event(
                order,
                event_type="line_deleted",
                line_id=line_id,
                actor_type=ActorRole.CUSTOMER.value,
                actor_id=actor.user_id,
            )
        with tenant_context(order.tenant_id):
            _LOGGER.info("Deleted line %s of order %s (order removed=%s)", line_id, order.id, order_removed)
        return order_removed

    async def check_capacity(self, item_id: int, quantity: int) -> bool:
        return await self.capacity.check_capacity(item_id, quantity)

    async def _resolve_line(self, line_id: int, role: ActorRole, actor: Actor) -> OrderItem:
        line = await self.repository.get_line(line_id)
        if line is None or not _owns(line, role, actor):
            raise OrderLineNotFound(line_id)
        return line

    async def _ensure_completion_capacity(self, order: Order) -> None:
        requested: dict[int, int] = defaultdict(int)
        for line in order.lines:
            requested[line.item_id] += line.quantity
        try:
            await self.capacity.ensure_capacity(requested, exclude_order_id=order.id)
        except CapacityExceeded:
            CAPACITY_REJECTIONS_TOTAL.labels(stage="completion").inc()
            raise
