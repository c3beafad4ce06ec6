import json
from decimal import Decimal
from typing import Any

import httpx
import pytest
import stripe

from tenantpay.payment_service.app.gateways.base import CreatePaymentCommand, GatewayError
from tenantpay.payment_service.app.gateways.cash import CashGateway
from tenantpay.payment_service.app.gateways.config import (
    CashConfig,
    InvalidProviderConfig,
    PaypalConfig,
    StripeConfig,
    parse_provider_config,
)
from tenantpay.payment_service.app.gateways.paypal import PaypalGateway
from tenantpay.payment_service.app.gateways.registry import GatewayRegistry, UnknownGateway
from tenantpay.payment_service.app.gateways.stripe_gateway import StripeGateway

STRIPE_VALUES = {"secretKey": "sk_test_abc", "publishableKey": "pk_test_abc", "webhookSecret": "whsec_abc"}
PAYPAL_VALUES = {"clientId": "client-1", "clientSecret": "paypal-secret"}


class FakePaymentIntent:
    def __init__(self, error: Exception | None = None) -> None:
        self.calls: list[dict[str, Any]] = []
        self.error = error

    def create(self, **kwargs: Any) -> dict[str, Any]:
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return {
            "id": "pi_123",
            "status": "requires_payment_method",
            "client_secret": "pi_123_secret_456",
            "amount": kwargs["amount"],
            "currency": kwargs["currency"],
        }


class FakeStripe:
    def __init__(self, error: Exception | None = None) -> None:
        self.PaymentIntent = FakePaymentIntent(error)


def _command(**overrides: Any) -> CreatePaymentCommand:
    values: dict[str, Any] = {"tenant_id": 3, "order_id": 42, "amount": Decimal("49.99"), "currency": "USD"}
    values.update(overrides)
    return CreatePaymentCommand(**values)


class TestProviderConfig:
    def test_stripe_config_parses_and_hides_secrets(self) -> None:
        config = parse_provider_config("stripe", STRIPE_VALUES)

        assert isinstance(config, StripeConfig)
        assert config.publishable_key == "pk_test_abc"
        assert config.platform_fee_pct == Decimal("10")
        assert "sk_test_abc" not in repr(config)

    @pytest.mark.parametrize("publishable", ["sk_live_123", "rk_test_123", " SK_test_1"])
    def test_secret_key_in_publishable_slot_is_rejected(self, publishable: str) -> None:
        with pytest.raises(InvalidProviderConfig, match="publishableKey"):
            parse_provider_config("STRIPE", {**STRIPE_VALUES, "publishableKey": publishable})

    def test_missing_required_field_is_rejected(self) -> None:
        values = {key: value for key, value in STRIPE_VALUES.items() if key != "webhookSecret"}
        with pytest.raises(InvalidProviderConfig, match="webhookSecret"):
            parse_provider_config("STRIPE", values)

    def test_platform_fee_is_bounded(self) -> None:
        with pytest.raises(InvalidProviderConfig):
            parse_provider_config("STRIPE", {**STRIPE_VALUES, "platformFeePct": 31})

    def test_paypal_mode_is_normalized(self) -> None:
        assert parse_provider_config("PAYPAL", PAYPAL_VALUES).mode == "SANDBOX"
        assert parse_provider_config("PAYPAL", {**PAYPAL_VALUES, "mode": "live"}).mode == "LIVE"
        with pytest.raises(InvalidProviderConfig):
            parse_provider_config("PAYPAL", {**PAYPAL_VALUES, "mode": "staging"})

    def test_cash_config_is_optional(self) -> None:
        assert isinstance(parse_provider_config("CASH", {}), CashConfig)


class TestStripeGateway:
    @pytest.mark.asyncio
    async def test_direct_charge_without_destination(self) -> None:
        client = FakeStripe()
        gateway = StripeGateway(client)
        config = gateway.parse_config(STRIPE_VALUES)

        result = await gateway.create_payment(_command(), config)

        (call,) = client.PaymentIntent.calls
        assert call["api_key"] == "sk_test_abc"
        assert call["amount"] == 4999
        assert call["currency"] == "usd"
        assert call["automatic_payment_methods"] == {"enabled": True}
        assert call["metadata"] == {"orderId": "42", "tenantId": "3"}
        assert "application_fee_amount" not in call
        assert "transfer_data" not in call
        assert result.provider_payment_id == "pi_123"
        assert result.client_secret == "pi_123_secret_456"
        assert result.status == "requires_payment_method"

    @pytest.mark.asyncio
    async def test_destination_charge_takes_platform_fee(self) -> None:
        client = FakeStripe()
        gateway = StripeGateway(client)
        config = gateway.parse_config(STRIPE_VALUES)

        await gateway.create_payment(_command(amount=Decimal("50.00"), destination_account_id="acct_9"), config)

        (call,) = client.PaymentIntent.calls
        assert call["application_fee_amount"] == 500
        assert call["transfer_data"] == {"destination": "acct_9"}

    @pytest.mark.asyncio
    async def test_stripe_errors_become_gateway_errors(self) -> None:
        gateway = StripeGateway(FakeStripe(error=stripe.StripeError("card declined")))
        config = gateway.parse_config(STRIPE_VALUES)

        with pytest.raises(GatewayError, match="Stripe createPayment failed"):
            await gateway.create_payment(_command(), config)

    def test_public_config_only_exposes_publishable_key(self) -> None:
        gateway = StripeGateway(FakeStripe())
        config = gateway.parse_config(STRIPE_VALUES)

        assert gateway.public_checkout_config(config) == {"publishableKey": "pk_test_abc"}

    def test_schema_marks_secrets_as_password_fields(self) -> None:
        fields = {field.key: field for field in StripeGateway(FakeStripe()).config_schema()}

        assert fields["secretKey"].secret
        assert fields["webhookSecret"].secret
        assert not fields["publishableKey"].secret
        assert fields["platformFeePct"].as_dict() == {
            "key": "platformFeePct",
            "label": "Platform fee (%)",
            "type": "number",
            "required": False,
            "default": 10,
            "min": 0,
            "max": 30,
        }


def _paypal_handler(requests: list[httpx.Request], *, token: bool = True, approval: bool = True):
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.path == "/v1/oauth2/token":
            return httpx.Response(200, json={"access_token": "tok-1"} if token else {})
        if request.url.path == "/v2/checkout/orders":
            links = [{"rel": "self", "href": "https://paypal.test/orders/PP-1"}]
            if approval:
                links.append({"rel": "payer-action", "href": "https://paypal.test/checkoutnow?token=PP-1"})
            return httpx.Response(201, json={"id": "PP-1", "status": "PAYER_ACTION_REQUIRED", "links": links})
        if request.url.path == "/v2/checkout/orders/PP-1/capture":
            return httpx.Response(201, json={"id": "PP-1", "status": "COMPLETED"})
        return httpx.Response(422, json={"name": "UNPROCESSABLE_ENTITY"})

    return handler


class TestPaypalGateway:
    @pytest.mark.asyncio
    async def test_create_payment_returns_approval_link(self) -> None:
        requests: list[httpx.Request] = []
        async with httpx.AsyncClient(transport=httpx.MockTransport(_paypal_handler(requests))) as client:
            gateway = PaypalGateway(client, sandbox_base_url="https://sandbox.paypal.test")
            config = gateway.parse_config(PAYPAL_VALUES)

            result = await gateway.create_payment(_command(currency="usd"), config)

        assert result.provider_payment_id == "PP-1"
        assert result.redirect_url == "https://paypal.test/checkoutnow?token=PP-1"
        assert result.status == "PAYER_ACTION_REQUIRED"

        token_request, order_request = requests
        assert token_request.url.host == "sandbox.paypal.test"
        assert token_request.headers["Authorization"].startswith("Basic ")
        assert order_request.headers["Authorization"] == "Bearer tok-1"
        body = json.loads(order_request.content)
        assert body["intent"] == "CAPTURE"
        assert body["purchase_units"][0]["amount"] == {"currency_code": "USD", "value": "49.99"}
        assert body["purchase_units"][0]["custom_id"] == "42"

    @pytest.mark.asyncio
    async def test_live_mode_uses_live_host(self) -> None:
        requests: list[httpx.Request] = []
        async with httpx.AsyncClient(transport=httpx.MockTransport(_paypal_handler(requests))) as client:
            gateway = PaypalGateway(client, live_base_url="https://live.paypal.test")
            config = gateway.parse_config({**PAYPAL_VALUES, "mode": "LIVE"})
            await gateway.create_payment(_command(), config)

        assert {request.url.host for request in requests} == {"live.paypal.test"}

    @pytest.mark.asyncio
    async def test_missing_token_or_link_fails(self) -> None:
        for kwargs, message in (({"token": False}, "access_token"), ({"approval": False}, "approval link")):
            requests: list[httpx.Request] = []
            async with httpx.AsyncClient(transport=httpx.MockTransport(_paypal_handler(requests, **kwargs))) as client:
                gateway = PaypalGateway(client)
                with pytest.raises(GatewayError, match=message):
                    await gateway.create_payment(_command(), gateway.parse_config(PAYPAL_VALUES))

    @pytest.mark.asyncio
    async def test_capture_reports_success_and_failure(self) -> None:
        requests: list[httpx.Request] = []
        async with httpx.AsyncClient(transport=httpx.MockTransport(_paypal_handler(requests))) as client:
            gateway = PaypalGateway(client)
            config = gateway.parse_config(PAYPAL_VALUES)

            assert await gateway.capture_order("PP-1", config) == (True, {"id": "PP-1", "status": "COMPLETED"})
            succeeded, body = await gateway.capture_order("PP-2", config)

        assert succeeded is False
        assert body == {"name": "UNPROCESSABLE_ENTITY"}

    def test_public_config_excludes_client_secret(self) -> None:
        gateway = PaypalGateway(httpx.AsyncClient())
        config = gateway.parse_config(PAYPAL_VALUES)

        assert isinstance(config, PaypalConfig)
        assert gateway.public_checkout_config(config) == {"clientId": "client-1", "mode": "SANDBOX"}


@pytest.mark.asyncio
async def test_cash_gateway_is_offline_pending() -> None:
    gateway = CashGateway()
    result = await gateway.create_payment(_command(order_id=7), gateway.parse_config({}))

    assert result.provider_payment_id == "CASH_ORDER_7"
    assert result.status == "OFFLINE_PENDING"
    assert gateway.public_checkout_config(gateway.parse_config({"instructions": "Pay at the desk"})) == {
        "instructions": "Pay at the desk"
    }


def test_registry_normalizes_codes() -> None:
    registry = GatewayRegistry([CashGateway(), StripeGateway(FakeStripe())])

    assert registry.require(" stripe ").code() == "STRIPE"
    assert registry.find("Cash") is not None
    assert registry.find("bitcoin") is None
    assert [gateway.code() for gateway in registry.all()] == ["CASH", "STRIPE"]

    with pytest.raises(UnknownGateway, match="paymentMethod is required"):
        registry.require("  ")
    with pytest.raises(UnknownGateway, match="Unsupported gateway: BITCOIN"):
        registry.require("bitcoin")
    with pytest.raises(ValueError):
        GatewayRegistry([CashGateway(), CashGateway()])
