"""Contract shared by every payment provider adapter."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, ClassVar, Literal

from .config import ProviderConfig, parse_provider_config

FieldType = Literal["text", "password", "number", "select"]


class GatewayError(RuntimeError):
    """The provider call failed, answered with an error, or omitted a required field."""


@dataclass(frozen=True)
class ConfigField:
    """One entry of a provider's settings form. Never carries a value."""

    key: str
    label: str
    type: FieldType
    required: bool = False
    options: tuple[str, ...] = ()
    default: Any = None
    minimum: float | None = None
    maximum: float | None = None

    @property
    def secret(self) -> bool:
        return self.type == "password"

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "key": self.key,
            "label": self.label,
            "type": self.type,
            "required": self.required,
        }
        if self.options:
            payload["options"] = list(self.options)
        if self.default is not None:
            payload["default"] = self.default
        if self.minimum is not None:
            payload["min"] = self.minimum
        if self.maximum is not None:
            payload["max"] = self.maximum
        return payload


@dataclass(frozen=True)
class CreatePaymentCommand:
    tenant_id: int
    order_id: int
    amount: Decimal
    currency: str
    destination_account_id: str | None = None


@dataclass(frozen=True)
class CreatePaymentResult:
    provider_payment_id: str
    status: str
    client_secret: str | None = None
    redirect_url: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)


class PaymentGateway(ABC):
    """Adapter for one payment provider, keyed by its uppercase code."""

    provider_code: ClassVar[str]
    label: ClassVar[str]

    def code(self) -> str:
        return self.provider_code

    def display_name(self) -> str:
        return self.label

    def parse_config(self, raw: Mapping[str, Any]) -> ProviderConfig:
        return parse_provider_config(self.provider_code, raw)

    @abstractmethod
    def config_schema(self) -> list[ConfigField]: ...

    @abstractmethod
    def public_checkout_config(self, config: ProviderConfig) -> dict[str, Any]: ...

    @abstractmethod
    async def create_payment(self, command: CreatePaymentCommand, config: ProviderConfig) -> CreatePaymentResult: ...
