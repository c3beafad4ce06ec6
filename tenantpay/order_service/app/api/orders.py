"""HTTP routes for the order/booking lifecycle."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from tenantpay.common import format_cents

from ..capacity import CapacityExceeded, CatalogUnavailable
from ..dependencies import get_actor, get_business, get_customer, get_order_service, get_repository
from ..models import OrderStatus
from ..repository import OrderRepository
from ..schemas import (
    BusinessLineListResponse,
    BusinessLineResponse,
    CapacityCheckResponse,
    OrderCreate,
    OrderEventResponse,
    OrderListResponse,
    OrderResponse,
    TransitionResponse,
)
from ..services import Actor, InvalidOrder, OrderLineNotFound, OrderNotFound, OrderService, TransitionOutcome
from ..transitions import Operation, TransitionConflict

router = APIRouter(prefix="/orders", tags=["orders"])


def _serialize_line(line) -> dict[str, object]:
    return {
        "id": line.id,
        "orderId": line.order_id,
        "itemId": line.item_id,
        "userId": line.user_id,
        "businessId": line.business_id,
        "quantity": line.quantity,
        "unitPrice": format_cents(line.unit_price_cents),
        "currency": line.currency,
        "createdAt": line.created_at,
        "updatedAt": line.updated_at,
    }


def _serialize_order(order) -> dict[str, object]:
    return {
        "id": order.id,
        "tenantId": order.tenant_id,
        "userId": order.user_id,
        "status": order.status,
        "currency": order.currency,
        "totalPrice": format_cents(order.total_price_cents),
        "lines": [_serialize_line(line) for line in order.lines],
        "createdAt": order.created_at,
        "updatedAt": order.updated_at,
    }


def _serialize_event(event) -> dict[str, object]:
    return {
        "id": event.id,
        "type": event.type,
        "lineId": event.line_id,
        "fromStatus": event.from_status,
        "toStatus": event.to_status,
        "actorType": event.actor_type,
        "actorId": event.actor_id,
        "createdAt": event.created_at,
    }


def _serialize_transition(outcome: TransitionOutcome) -> dict[str, object]:
    return {
        "line": _serialize_line(outcome.line),
        "orderId": outcome.order.id,
        "previousStatus": outcome.previous_status,
        "status": outcome.order.status,
        "changes": [{"from": before, "to": after} for before, after in outcome.changes],
    }


async def _transition(
    service: OrderService,
    operation: Operation,
    line_id: int,
    actor: Actor,
) -> TransitionResponse:
    try:
        outcome = await service.apply(operation, line_id, actor)
    except OrderLineNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order line not found") from None
    except (TransitionConflict, CapacityExceeded) as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except CatalogUnavailable as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    return TransitionResponse.model_validate(_serialize_transition(outcome))


@router.post("", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def create_order(
    payload: OrderCreate,
    actor: Actor = Depends(get_customer),
    service: OrderService = Depends(get_order_service),
) -> OrderResponse:
    try:
        order = await service.create_order(payload, user_id=actor.user_id)
    except InvalidOrder as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except CapacityExceeded as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except CatalogUnavailable as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    return OrderResponse.model_validate(_serialize_order(order))


@router.get("/mine", response_model=OrderListResponse)
async def list_my_orders(
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    tenant_id: int | None = Query(default=None, alias="tenantId"),
    status_filter: OrderStatus | None = Query(default=None, alias="status"),
    actor: Actor = Depends(get_customer),
    repository: OrderRepository = Depends(get_repository),
) -> OrderListResponse:
    orders, total = await repository.list_orders_for_user(
        user_id=actor.user_id,
        tenant_id=tenant_id,
        status=status_filter,
        limit=limit,
        offset=offset,
    )
    items = [OrderResponse.model_validate(_serialize_order(order)) for order in orders]
    return OrderListResponse(items=items, total=total)


@router.get("/business/lines", response_model=BusinessLineListResponse)
async def list_business_lines(
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    status_filter: OrderStatus | None = Query(default=None, alias="status"),
    actor: Actor = Depends(get_business),
    repository: OrderRepository = Depends(get_repository),
) -> BusinessLineListResponse:
    lines, total = await repository.list_lines_for_business(
        business_id=actor.business_id,
        status=status_filter,
        limit=limit,
        offset=offset,
    )
    items = [
        BusinessLineResponse.model_validate(
            {**_serialize_line(line), "orderStatus": line.order.status, "tenantId": line.order.tenant_id}
        )
        for line in lines
    ]
    return BusinessLineListResponse(items=items, total=total)


@router.get("/items/{item_id}/capacity", response_model=CapacityCheckResponse)
async def check_item_capacity(
    item_id: int,
    quantity: int = Query(default=1, ge=1),
    service: OrderService = Depends(get_order_service),
) -> CapacityCheckResponse:
    try:
        allowed = await service.check_capacity(item_id, quantity)
    except CatalogUnavailable as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    return CapacityCheckResponse(itemId=item_id, quantity=quantity, allowed=allowed)


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: int,
    actor: Actor = Depends(get_actor),
    service: OrderService = Depends(get_order_service),
) -> OrderResponse:
    try:
        order = await service.get_order(order_id, actor)
    except OrderNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found") from None
    return OrderResponse.model_validate(_serialize_order(order))


@router.get("/{order_id}/events", response_model=list[OrderEventResponse])
async def get_order_events(
    order_id: int,
    actor: Actor = Depends(get_actor),
    service: OrderService = Depends(get_order_service),
) -> list[OrderEventResponse]:
    try:
        order = await service.get_order(order_id, actor)
    except OrderNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found") from None
    return [OrderEventResponse.model_validate(_serialize_event(event)) for event in order.events]


@router.put("/lines/{line_id}/cancel", response_model=TransitionResponse)
async def cancel_line(
    line_id: int,
    actor: Actor = Depends(get_customer),
    service: OrderService = Depends(get_order_service),
) -> TransitionResponse:
    return await _transition(service, Operation.CANCEL, line_id, actor)


@router.put("/lines/{line_id}/reset-to-pending", response_model=TransitionResponse)
async def reset_line_to_pending(
    line_id: int,
    actor: Actor = Depends(get_customer),
    service: OrderService = Depends(get_order_service),
) -> TransitionResponse:
    return await _transition(service, Operation.RESET_TO_PENDING, line_id, actor)


@router.put("/lines/{line_id}/request-cancel", response_model=TransitionResponse)
async def request_line_cancel(
    line_id: int,
    actor: Actor = Depends(get_customer),
    service: OrderService = Depends(get_order_service),
) -> TransitionResponse:
    return await _transition(service, Operation.REQUEST_CANCEL, line_id, actor)


@router.put("/lines/{line_id}/refund", response_model=TransitionResponse)
async def refund_line_if_eligible(
    line_id: int,
    actor: Actor = Depends(get_actor),
    service: OrderService = Depends(get_order_service),
) -> TransitionResponse:
    return await _transition(service, Operation.REFUND_IF_ELIGIBLE, line_id, actor)


@router.put("/lines/{line_id}/approve-cancel", response_model=TransitionResponse)
async def approve_line_cancel(
    line_id: int,
    actor: Actor = Depends(get_business),
    service: OrderService = Depends(get_order_service),
) -> TransitionResponse:
    return await _transition(service, Operation.APPROVE_CANCEL, line_id, actor)


@router.put("/lines/{line_id}/reject-cancel", response_model=TransitionResponse)
async def reject_line_cancel(
    line_id: int,
    actor: Actor = Depends(get_business),
    service: OrderService = Depends(get_order_service),
) -> TransitionResponse:
    return await _transition(service, Operation.REJECT_CANCEL, line_id, actor)


@router.put("/lines/{line_id}/mark-paid", response_model=TransitionResponse)
async def mark_line_paid(
    line_id: int,
    actor: Actor = Depends(get_business),
    service: OrderService = Depends(get_order_service),
) -> TransitionResponse:
    return await _transition(service, Operation.MARK_PAID, line_id, actor)


@router.put("/lines/{line_id}/mark-refunded", response_model=TransitionResponse)
async def mark_line_refunded(
    line_id: int,
    actor: Actor = Depends(get_business),
    service: OrderService = Depends(get_order_service),
) -> TransitionResponse:
    return await _transition(service, Operation.MARK_REFUNDED, line_id, actor)


@router.put("/lines/{line_id}/reject", response_model=TransitionResponse)
async def reject_line_order(
    line_id: int,
    actor: Actor = Depends(get_business),
    service: OrderService = Depends(get_order_service),
) -> TransitionResponse:
    return await _transition(service, Operation.REJECT_ORDER, line_id, actor)


@router.put("/lines/{line_id}/unreject", response_model=TransitionResponse)
async def unreject_line_order(
    line_id: int,
    actor: Actor = Depends(get_business),
    service: OrderService = Depends(get_order_service),
) -> TransitionResponse:
    return await _transition(service, Operation.UNREJECT_ORDER, line_id, actor)


@router.delete("/lines/{line_id}")
async def delete_line(
    line_id: int,
    actor: Actor = Depends(get_customer),
    service: OrderService = Depends(get_order_service),
) -> Response:
    try:
        await service.delete_line(line_id, actor)
    except OrderLineNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order line not found") from None
    return Response(status_code=status.HTTP_204_NO_CONTENT)
