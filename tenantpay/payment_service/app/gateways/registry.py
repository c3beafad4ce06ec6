"""Lookup from provider code to adapter."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

import httpx
import stripe

from tenantpay.common import ServiceSettings

from .base import PaymentGateway
from .cash import CashGateway
from .paypal import PaypalGateway
from .stripe_gateway import StripeGateway


class UnknownGateway(ValueError):
    """Blank or unregistered provider code."""


def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


class GatewayRegistry:
    def __init__(self, gateways: Iterable[PaymentGateway]) -> None:
        self._gateways: dict[str, PaymentGateway] = {}
        for gateway in gateways:
            code = normalize_code(gateway.code())
            if code in self._gateways:
                raise ValueError(f"duplicate payment gateway code {code}")
            self._gateways[code] = gateway

    def find(self, code: str | None) -> PaymentGateway | None:
        return self._gateways.get(normalize_code(code))

    def require(self, code: str | None) -> PaymentGateway:
        normalized = normalize_code(code)
        if not normalized:
            raise UnknownGateway("paymentMethod is required")
        gateway = self._gateways.get(normalized)
        if gateway is None:
            raise UnknownGateway(f"Unsupported gateway: {normalized}")
        return gateway

    def all(self) -> list[PaymentGateway]:
        return [self._gateways[code] for code in sorted(self._gateways)]


def build_default_registry(
    settings: ServiceSettings,
    http_client: httpx.AsyncClient,
    *,
    stripe_client: Any = stripe,
) -> GatewayRegistry:
    """Registry with the Stripe, PayPal and cash adapters wired from settings."""

    return GatewayRegistry(
        [
            StripeGateway(stripe_client),
            PaypalGateway(
                http_client,
                live_base_url=settings.paypal_live_base_url,
                sandbox_base_url=settings.paypal_sandbox_base_url,
                brand_name=settings.paypal_brand_name,
                return_url=settings.paypal_return_url,
                cancel_url=settings.paypal_cancel_url,
            ),
            CashGateway(),
        ]
    )
