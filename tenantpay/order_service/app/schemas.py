"""Pydantic schemas for the order service."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, PositiveInt, field_validator

from .models import OrderStatus


class OrderLinePayload(BaseModel):
    item_id: PositiveInt = Field(alias="itemId")
    quantity: PositiveInt

    model_config = ConfigDict(populate_by_name=True)


class OrderCreate(BaseModel):
    tenant_id: PositiveInt = Field(alias="tenantId")
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    items: list[OrderLinePayload] = Field(min_length=1)

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("currency")
    @classmethod
    def _normalize_currency(cls, value: str | None) -> str | None:
        return value.strip().upper() if value is not None else None


class OrderLineResponse(BaseModel):
    id: PositiveInt
    order_id: PositiveInt = Field(alias="orderId")
    item_id: PositiveInt = Field(alias="itemId")
    user_id: int = Field(alias="userId")
    business_id: int = Field(alias="businessId")
    quantity: PositiveInt
    unit_price: Decimal = Field(alias="unitPrice")
    currency: str
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


class OrderResponse(BaseModel):
    id: PositiveInt
    tenant_id: PositiveInt = Field(alias="tenantId")
    user_id: int = Field(alias="userId")
    status: OrderStatus
    currency: str
    total_price: Decimal = Field(alias="totalPrice")
    lines: list[OrderLineResponse]
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


class OrderListResponse(BaseModel):
    items: list[OrderResponse]
    total: int


class StatusChange(BaseModel):
    from_status: OrderStatus = Field(alias="from")
    to_status: OrderStatus = Field(alias="to")

    model_config = ConfigDict(populate_by_name=True)


class TransitionResponse(BaseModel):
    """Outcome of a lifecycle operation on a line's order."""

    line: OrderLineResponse
    order_id: PositiveInt = Field(alias="orderId")
    previous_status: OrderStatus = Field(alias="previousStatus")
    status: OrderStatus
    changes: list[StatusChange]

    model_config = ConfigDict(populate_by_name=True)


class BusinessLineResponse(OrderLineResponse):
    order_status: OrderStatus = Field(alias="orderStatus")
    tenant_id: PositiveInt = Field(alias="tenantId")


class BusinessLineListResponse(BaseModel):
    items: list[BusinessLineResponse]
    total: int


class OrderEventResponse(BaseModel):
    id: PositiveInt
    type: str
    line_id: int | None = Field(default=None, alias="lineId")
    from_status: OrderStatus | None = Field(default=None, alias="fromStatus")
    to_status: OrderStatus | None = Field(default=None, alias="toStatus")
    actor_type: str = Field(alias="actorType")
    actor_id: int | None = Field(default=None, alias="actorId")
    created_at: datetime = Field(alias="createdAt")

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


class CapacityCheckResponse(BaseModel):
    item_id: PositiveInt = Field(alias="itemId")
    quantity: PositiveInt
    allowed: bool

    model_config = ConfigDict(populate_by_name=True)
