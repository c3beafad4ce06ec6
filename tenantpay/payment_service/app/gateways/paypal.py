"""PayPal adapter: approval-redirect checkout over the REST API."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any

import httpx

from tenantpay.common import provider_span

from .base import ConfigField, CreatePaymentCommand, CreatePaymentResult, GatewayError, PaymentGateway
from .config import PaypalConfig, ProviderConfig

_LOGGER = logging.getLogger(__name__)

APPROVAL_RELS = ("approve", "payer-action")


def _json_or_text(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {"body": response.text}
    return body if isinstance(body, dict) else {"body": body}


class PaypalGateway(PaymentGateway):
    provider_code = "PAYPAL"
    label = "PayPal"

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        live_base_url: str = "https://api-m.paypal.com",
        sandbox_base_url: str = "https://api-m.sandbox.paypal.com",
        brand_name: str = "Tenantpay",
        return_url: str = "https://example.com/paypal/return",
        cancel_url: str = "https://example.com/paypal/cancel",
    ) -> None:
        self._client = client
        self._live_base_url = live_base_url.rstrip("/")
        self._sandbox_base_url = sandbox_base_url.rstrip("/")
        self._brand_name = brand_name
        self._return_url = return_url
        self._cancel_url = cancel_url

    def config_schema(self) -> list[ConfigField]:
        return [
            ConfigField("clientId", "Client ID", "text", required=True),
            ConfigField("clientSecret", "Client secret", "password", required=True),
            ConfigField("mode", "Mode", "select", options=("SANDBOX", "LIVE"), default="SANDBOX"),
        ]

    def public_checkout_config(self, config: ProviderConfig) -> dict[str, Any]:
        if not isinstance(config, PaypalConfig):
            raise TypeError("expected a PayPal configuration")
        return {"clientId": config.client_id, "mode": config.mode}

    def base_url(self, config: PaypalConfig) -> str:
        return self._live_base_url if config.mode == "LIVE" else self._sandbox_base_url

    async def access_token(self, config: PaypalConfig) -> str:
        response = await self._client.post(
            f"{self.base_url(config)}/v1/oauth2/token",
            data={"grant_type": "client_credentials"},
            auth=(config.client_id, config.client_secret.get_secret_value()),
            headers={"Accept": "application/json"},
        )
        if response.is_error:
            raise GatewayError(f"PayPal token request failed with HTTP {response.status_code}")
        token = _json_or_text(response).get("access_token")
        if not token:
            raise GatewayError("PayPal token response has no access_token")
        return str(token)

    def build_order_body(self, command: CreatePaymentCommand) -> dict[str, Any]:
        return {
            "intent": "CAPTURE",
            "purchase_units": [
                {
                    "amount": {
                        "currency_code": command.currency.strip().upper(),
                        "value": str(command.amount.quantize(Decimal("0.01"))),
                    },
                    "custom_id": str(command.order_id),
                    "description": f"Order #{command.order_id}",
                }
            ],
            "application_context": {
                "brand_name": self._brand_name,
                "return_url": self._return_url,
                "cancel_url": self._cancel_url,
                "user_action": "PAY_NOW",
            },
        }

    async def create_payment(self, command: CreatePaymentCommand, config: ProviderConfig) -> CreatePaymentResult:
        if not isinstance(config, PaypalConfig):
            raise GatewayError("PayPal adapter received a non-PayPal configuration")
        with provider_span("paypal.orders.create", provider=self.provider_code, order_id=command.order_id):
            try:
                token = await self.access_token(config)
                response = await self._client.post(
                    f"{self.base_url(config)}/v2/checkout/orders",
                    json=self.build_order_body(command),
                    headers={"Authorization": f"Bearer {token}", "Content-Type": "application/json"},
                )
            except httpx.HTTPError as exc:
                _LOGGER.warning("PayPal createPayment failed for order %s: %s", command.order_id, exc)
                raise GatewayError(f"PayPal createPayment failed: {exc}") from exc

        body = _json_or_text(response)
        if response.is_error:
            raise GatewayError(f"PayPal createPayment failed with HTTP {response.status_code}")
        approval_url = next(
            (link.get("href") for link in body.get("links") or [] if link.get("rel") in APPROVAL_RELS),
            None,
        )
        if not approval_url:
            raise GatewayError("PayPal order response has no approval link")
        if not body.get("id"):
            raise GatewayError("PayPal order response has no order id")
        return CreatePaymentResult(
            provider_payment_id=str(body["id"]),
            status=str(body.get("status") or "CREATED"),
            redirect_url=approval_url,
            raw=body,
        )

    async def capture_order(self, provider_payment_id: str, config: PaypalConfig) -> tuple[bool, dict[str, Any]]:
        """Capture an approved order. Returns whether PayPal answered 2xx and the raw body.

        Token and transport failures raise :class:`GatewayError`.
        """

        with provider_span("paypal.orders.capture", provider=self.provider_code):
            try:
                token = await self.access_token(config)
                response = await self._client.post(
                    f"{self.base_url(config)}/v2/checkout/orders/{provider_payment_id}/capture",
                    headers={"Authorization": f"Bearer {token}", "Content-Type": "application/json"},
                )
            except httpx.HTTPError as exc:
                _LOGGER.warning("PayPal capture failed for %s: %s", provider_payment_id, exc)
                raise GatewayError(f"PayPal capture failed: {exc}") from exc
        return response.is_success, _json_or_text(response)
