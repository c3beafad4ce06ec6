"""Stripe adapter: hosted card payments with optional connected-account split."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from decimal import Decimal, ROUND_HALF_UP
from typing import Any

import stripe

from tenantpay.common import provider_span, to_cents

from .base import ConfigField, CreatePaymentCommand, CreatePaymentResult, GatewayError, PaymentGateway
from .config import ProviderConfig, StripeConfig

_LOGGER = logging.getLogger(__name__)


def _field(obj: Any, name: str) -> Any:
    if isinstance(obj, Mapping):
        return obj.get(name)
    return getattr(obj, name, None)


def platform_fee_cents(amount_cents: int, fee_pct: Decimal) -> int:
    return int((Decimal(amount_cents) * fee_pct / Decimal("100")).to_integral_value(rounding=ROUND_HALF_UP))


class StripeGateway(PaymentGateway):
    provider_code = "STRIPE"
    label = "Stripe"

    def __init__(self, stripe_client: Any = stripe) -> None:
        self._stripe = stripe_client

    def config_schema(self) -> list[ConfigField]:
        return [
            ConfigField("secretKey", "Secret key", "password", required=True),
            ConfigField("publishableKey", "Publishable key", "text", required=True),
            ConfigField("webhookSecret", "Webhook signing secret", "password", required=True),
            ConfigField("platformFeePct", "Platform fee (%)", "number", default=10, minimum=0, maximum=30),
        ]

    def public_checkout_config(self, config: ProviderConfig) -> dict[str, Any]:
        if not isinstance(config, StripeConfig):
            raise TypeError("expected a Stripe configuration")
        return {"publishableKey": config.publishable_key}

    def build_intent_params(self, command: CreatePaymentCommand, config: StripeConfig) -> dict[str, Any]:
        amount_cents = to_cents(command.amount)
        params: dict[str, Any] = {
            "amount": amount_cents,
            "currency": (command.currency or "usd").strip().lower(),
            "automatic_payment_methods": {"enabled": True},
            "metadata": {"orderId": str(command.order_id), "tenantId": str(command.tenant_id)},
        }
        if command.destination_account_id:
            params["application_fee_amount"] = platform_fee_cents(amount_cents, config.platform_fee_pct)
            params["transfer_data"] = {"destination": command.destination_account_id}
        return params

    async def create_payment(self, command: CreatePaymentCommand, config: ProviderConfig) -> CreatePaymentResult:
        if not isinstance(config, StripeConfig):
            raise GatewayError("Stripe adapter received a non-Stripe configuration")
        params = self.build_intent_params(command, config)
        with provider_span("stripe.payment_intent.create", provider=self.provider_code, order_id=command.order_id):
            try:
                intent = await asyncio.to_thread(
                    self._stripe.PaymentIntent.create,
                    api_key=config.secret_key.get_secret_value(),
                    **params,
                )
            except stripe.StripeError as exc:
                _LOGGER.warning("Stripe createPayment failed for order %s: %s", command.order_id, exc)
                raise GatewayError(f"Stripe createPayment failed: {exc}") from exc

        intent_id = _field(intent, "id")
        if not intent_id:
            raise GatewayError("Stripe createPayment failed: response has no payment intent id")
        status = str(_field(intent, "status") or "requires_payment_method")
        return CreatePaymentResult(
            provider_payment_id=str(intent_id),
            status=status,
            client_secret=_field(intent, "client_secret"),
            raw={
                "id": intent_id,
                "status": status,
                "amount": _field(intent, "amount"),
                "currency": _field(intent, "currency"),
            },
        )
