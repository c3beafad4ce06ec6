"""Pydantic schemas for the payment service."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, PositiveInt, field_validator


class StartPaymentRequest(BaseModel):
    tenant_id: PositiveInt = Field(alias="tenantId")
    order_id: PositiveInt = Field(alias="orderId")
    payment_method: str = Field(default="", alias="paymentMethod", max_length=32)
    amount: Decimal = Field(gt=Decimal("0"), max_digits=12, decimal_places=2)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    destination_account_id: str | None = Field(default=None, alias="destinationAccountId", max_length=255)

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("currency")
    @classmethod
    def _normalize_currency(cls, value: str | None) -> str | None:
        return value.strip().lower() if value is not None else None


class StartPaymentResponse(BaseModel):
    transaction_id: PositiveInt = Field(alias="transactionId")
    provider_code: str = Field(alias="providerCode")
    provider_payment_id: str | None = Field(default=None, alias="providerPaymentId")
    client_secret: str | None = Field(default=None, alias="clientSecret")
    redirect_url: str | None = Field(default=None, alias="redirectUrl")
    status: str
    publishable_key: str | None = Field(default=None, alias="publishableKey")

    model_config = ConfigDict(populate_by_name=True)


class TransactionResponse(BaseModel):
    id: PositiveInt
    tenant_id: PositiveInt = Field(alias="tenantId")
    order_id: PositiveInt = Field(alias="orderId")
    provider_code: str = Field(alias="providerCode")
    provider_payment_id: str | None = Field(default=None, alias="providerPaymentId")
    amount: Decimal | None = None
    currency: str
    status: str
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True)


class CashConfirmRequest(BaseModel):
    tenant_id: PositiveInt = Field(alias="tenantId")
    order_id: PositiveInt = Field(alias="orderId")
    order_total: Decimal | None = Field(default=None, alias="orderTotal", max_digits=12, decimal_places=2)

    model_config = ConfigDict(populate_by_name=True)


class ManualPaymentRequest(BaseModel):
    tenant_id: PositiveInt = Field(alias="tenantId")
    order_id: PositiveInt = Field(alias="orderId")
    amount: Decimal = Field(gt=Decimal("0"), max_digits=12, decimal_places=2)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    provider_code: str | None = Field(default=None, alias="providerCode", max_length=32)
    provider_payment_id: str | None = Field(default=None, alias="providerPaymentId", max_length=128)

    model_config = ConfigDict(populate_by_name=True)


class PaymentSummaryResponse(BaseModel):
    order_id: PositiveInt = Field(alias="orderId")
    order_total: Decimal = Field(alias="orderTotal")
    paid: Decimal
    remaining: Decimal
    fully_paid: bool = Field(alias="fullyPaid")
    state: str

    model_config = ConfigDict(populate_by_name=True)


class OrderTotalEntry(BaseModel):
    order_id: PositiveInt = Field(alias="orderId")
    order_total: Decimal = Field(alias="orderTotal", max_digits=12, decimal_places=2)

    model_config = ConfigDict(populate_by_name=True)


class BatchSummaryRequest(BaseModel):
    orders: list[OrderTotalEntry] = Field(min_length=1, max_length=500)


class ConfigFieldResponse(BaseModel):
    key: str
    label: str
    type: str
    required: bool
    options: list[str] | None = None
    default: Any = None
    min: float | None = None
    max: float | None = None


class TenantMethodResponse(BaseModel):
    code: str
    name: str
    enabled: bool
    config_schema: list[ConfigFieldResponse] = Field(alias="schema")
    values: dict[str, Any]

    model_config = ConfigDict(populate_by_name=True)


class TenantMethodUpdate(BaseModel):
    enabled: bool
    values: dict[str, Any] | None = None


class PublicMethodResponse(BaseModel):
    code: str
    name: str
    config: dict[str, Any]


class PlatformMethodResponse(BaseModel):
    code: str
    name: str
    enabled: bool


class PlatformMethodUpdate(BaseModel):
    enabled: bool
