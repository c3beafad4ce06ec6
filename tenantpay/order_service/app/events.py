"""Event publishing helpers for the order service."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from tenantpay.common.kafka import KafkaProducerStub

from .models import Order, OrderItem, OrderStatus

STATUS_CHANGED_TOPIC = "order.status.changed.v1"
ORDER_COMPLETED_TOPIC = "order.completed.v1"


def _iso(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    else:
        dt = dt.astimezone(timezone.utc)
    return dt.isoformat()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _order_payload(order: Order) -> dict[str, Any]:
    return {
        "id": order.id,
        "tenantId": order.tenant_id,
        "userId": order.user_id,
        "status": order.status.value,
        "currency": order.currency,
        "totalPriceCents": order.total_price_cents,
        "updatedAt": _iso(order.updated_at),
    }


class OrderEventPublisher:
    """Publishes order lifecycle events via the configured Kafka producer."""

    def __init__(self, producer: KafkaProducerStub | None) -> None:
        self._producer = producer

    async def _emit(self, topic: str, key: str, payload: dict[str, Any]) -> None:
        if self._producer is None:
            return
        envelope = {
            "eventType": topic,
            "occurredAt": _now_iso(),
            **payload,
        }
        await self._producer.send(topic, envelope, key=key)

    async def status_changed(
        self,
        order: Order,
        line: OrderItem,
        *,
        previous_status: OrderStatus,
        actor_type: str,
        actor_id: int | None,
    ) -> None:
        await self._emit(
            STATUS_CHANGED_TOPIC,
            str(order.id),
            {
                "order": _order_payload(order),
                "lineId": line.id,
                "businessId": line.business_id,
                "previousStatus": previous_status.value,
                "currentStatus": order.status.value,
                "actorType": actor_type,
                "actorId": actor_id,
            },
        )
        if order.status is OrderStatus.COMPLETED:
            await self._emit(ORDER_COMPLETED_TOPIC, str(order.id), {"order": _order_payload(order)})
