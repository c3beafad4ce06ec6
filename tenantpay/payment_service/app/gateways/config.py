"""Typed per-provider configuration, validated once when loaded."""

from __future__ import annotations

from collections.abc import Mapping
from decimal import Decimal
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, SecretStr, TypeAdapter, ValidationError, field_validator

SECRET_KEY_PREFIXES = ("sk_", "rk_")


class InvalidProviderConfig(ValueError):
    """Stored or submitted configuration does not satisfy the provider's schema."""


def looks_like_secret_key(value: str | None) -> bool:
    return bool(value) and value.strip().lower().startswith(SECRET_KEY_PREFIXES)


class _ProviderConfigBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)


class StripeConfig(_ProviderConfigBase):
    provider: Literal["STRIPE"] = "STRIPE"
    secret_key: SecretStr = Field(alias="secretKey")
    publishable_key: str = Field(alias="publishableKey", min_length=1)
    webhook_secret: SecretStr = Field(alias="webhookSecret")
    platform_fee_pct: Decimal = Field(default=Decimal("10"), ge=Decimal("0"), le=Decimal("30"), alias="platformFeePct")

    @field_validator("publishable_key")
    @classmethod
    def _reject_secret_publishable(cls, value: str) -> str:
        cleaned = value.strip()
        if looks_like_secret_key(cleaned):
            msg = "publishableKey looks like a secret key"
            raise ValueError(msg)
        return cleaned

    @field_validator("secret_key", "webhook_secret")
    @classmethod
    def _require_secret(cls, value: SecretStr) -> SecretStr:
        if not value.get_secret_value().strip():
            msg = "value must be non-empty"
            raise ValueError(msg)
        return value


class PaypalConfig(_ProviderConfigBase):
    provider: Literal["PAYPAL"] = "PAYPAL"
    client_id: str = Field(alias="clientId", min_length=1)
    client_secret: SecretStr = Field(alias="clientSecret")
    mode: Literal["SANDBOX", "LIVE"] = "SANDBOX"

    @field_validator("mode", mode="before")
    @classmethod
    def _normalize_mode(cls, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            return "SANDBOX"
        return value.strip().upper() if isinstance(value, str) else value


class CashConfig(_ProviderConfigBase):
    provider: Literal["CASH"] = "CASH"
    instructions: str | None = None


ProviderConfig = Annotated[Union[StripeConfig, PaypalConfig, CashConfig], Field(discriminator="provider")]

_PROVIDER_CONFIG_ADAPTER: TypeAdapter[ProviderConfig] = TypeAdapter(ProviderConfig)


def parse_provider_config(provider_code: str, raw: Mapping[str, Any]) -> ProviderConfig:
    """Validate a stored key/value document against ``provider_code``'s schema."""

    try:
        return _PROVIDER_CONFIG_ADAPTER.validate_python({**raw, "provider": provider_code.upper()})
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'][1:]) or 'provider'}: {error['msg']}"
            for error in exc.errors()
        )
        raise InvalidProviderConfig(f"invalid {provider_code.upper()} configuration: {problems}") from exc
