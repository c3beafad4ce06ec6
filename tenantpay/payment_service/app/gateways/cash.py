"""Cash / offline adapter. Funds are collected out of band and confirmed later."""

from __future__ import annotations

from typing import Any

from ..models import TransactionStatus
from .base import ConfigField, CreatePaymentCommand, CreatePaymentResult, PaymentGateway
from .config import CashConfig, ProviderConfig


class CashGateway(PaymentGateway):
    provider_code = "CASH"
    label = "Cash on delivery"

    def config_schema(self) -> list[ConfigField]:
        return [ConfigField("instructions", "Instructions shown at checkout", "text")]

    def public_checkout_config(self, config: ProviderConfig) -> dict[str, Any]:
        if not isinstance(config, CashConfig):
            raise TypeError("expected a cash configuration")
        return {"instructions": config.instructions} if config.instructions else {}

    async def create_payment(self, command: CreatePaymentCommand, config: ProviderConfig) -> CreatePaymentResult:
        reference = f"CASH_ORDER_{command.order_id}"
        return CreatePaymentResult(
            provider_payment_id=reference,
            status=TransactionStatus.OFFLINE_PENDING,
            raw={"reference": reference},
        )
