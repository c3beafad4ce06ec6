import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

import httpx
import pytest
import stripe
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from prometheus_client import REGISTRY

from tenantpay.common import ServiceSettings
from tenantpay.payment_service.app.gateways.cash import CashGateway
from tenantpay.payment_service.app.gateways.paypal import PaypalGateway
from tenantpay.payment_service.app.gateways.registry import GatewayRegistry
from tenantpay.payment_service.app.gateways.stripe_gateway import StripeGateway
from tenantpay.payment_service.app.main import create_app

TENANT = 3
STRIPE_VALUES = {"secretKey": "sk_test_abc", "publishableKey": "pk_test_abc", "webhookSecret": "whsec_abc"}
PAYPAL_VALUES = {"clientId": "client-1", "clientSecret": "paypal-secret"}
DECLINED_PAYPAL_ORDER = "PP-13"


class FakePaymentIntent:
    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []
        self.error: Exception | None = None

    def create(self, **kwargs: Any) -> dict[str, Any]:
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return {"id": f"pi_{len(self.calls)}", "status": "requires_payment_method", "client_secret": "cs_secret"}


class FakeStripe:
    def __init__(self) -> None:
        self.PaymentIntent = FakePaymentIntent()


@dataclass
class FakePaypal:
    requests: list[httpx.Request] = field(default_factory=list)
    token_available: bool = True

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/v1/oauth2/token":
            if not self.token_available:
                return httpx.Response(503, json={"error": "unavailable"})
            return httpx.Response(200, json={"access_token": "tok"})
        if path == "/v2/checkout/orders":
            order_id = json.loads(request.content)["purchase_units"][0]["custom_id"]
            return httpx.Response(
                201,
                json={
                    "id": f"PP-{order_id}",
                    "status": "CREATED",
                    "links": [{"rel": "approve", "href": f"https://paypal.test/approve/PP-{order_id}"}],
                },
            )
        if path.endswith("/capture"):
            paypal_id = path.split("/")[-2]
            if paypal_id == DECLINED_PAYPAL_ORDER:
                return httpx.Response(422, json={"name": "UNPROCESSABLE_ENTITY", "details": [{"issue": "INSTRUMENT_DECLINED"}]})
            return httpx.Response(201, json={"id": paypal_id, "status": "COMPLETED"})
        return httpx.Response(404)

    @property
    def captures(self) -> list[httpx.Request]:
        return [request for request in self.requests if request.url.path.endswith("/capture")]


@dataclass
class Harness:
    client: AsyncClient
    app: FastAPI
    stripe: FakeStripe
    paypal: FakePaypal

    async def configure(self, code: str, values: dict[str, Any] | None = None, *, enabled: bool = True) -> None:
        response = await self.client.put(
            f"/payments/tenants/{TENANT}/methods/{code}", json={"enabled": enabled, "values": values or {}}
        )
        assert response.status_code == 200, response.text

    async def start(self, code: str, order_id: int, amount: str = "49.99", **extra: Any) -> httpx.Response:
        payload = {"tenantId": TENANT, "orderId": order_id, "paymentMethod": code, "amount": amount, "currency": "usd"}
        payload.update(extra)
        return await self.client.post("/payments/start", json=payload)

    async def ledger(self, order_id: int) -> list[dict[str, Any]]:
        response = await self.client.get(f"/payments/orders/{order_id}/transactions")
        assert response.status_code == 200
        return response.json()


@asynccontextmanager
async def _harness(tmp_path) -> AsyncIterator[Harness]:
    settings = ServiceSettings(
        app_name="Payment Service Test",
        enable_metrics=False,
        enable_tracing=False,
        auto_create_schema=True,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'payments.db'}",
    )
    fake_stripe = FakeStripe()
    fake_paypal = FakePaypal()
    paypal_client = AsyncClient(transport=httpx.MockTransport(fake_paypal))

    def registry_factory(_settings: ServiceSettings, _http: AsyncClient) -> GatewayRegistry:
        return GatewayRegistry([StripeGateway(fake_stripe), PaypalGateway(paypal_client), CashGateway()])

    app = create_app(settings, registry_factory=registry_factory)
    try:
        async with lifespan(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                yield Harness(client=client, app=app, stripe=fake_stripe, paypal=fake_paypal)
    finally:
        await paypal_client.aclose()


@pytest.mark.asyncio
async def test_unknown_or_missing_provider_is_rejected_before_ledger_write(tmp_path) -> None:
    async with _harness(tmp_path) as harness:
        unknown = await harness.start("BITCOIN", 100)
        assert unknown.status_code == 400
        assert unknown.json()["detail"] == "Unsupported gateway: BITCOIN"

        blank = await harness.start("  ", 100)
        assert blank.status_code == 400

        unconfigured = await harness.start("stripe", 100)
        assert unconfigured.status_code == 409

        assert await harness.ledger(100) == []
        assert harness.stripe.PaymentIntent.calls == []


@pytest.mark.asyncio
async def test_tenant_config_is_masked_merged_and_validated(tmp_path) -> None:
    async with _harness(tmp_path) as harness:
        saved = await harness.client.put(
            f"/payments/tenants/{TENANT}/methods/stripe", json={"enabled": True, "values": STRIPE_VALUES}
        )
        assert saved.status_code == 200
        assert saved.json()["values"] == {
            "secretKey": "********",
            "publishableKey": "pk_test_abc",
            "webhookSecret": "********",
        }

        listing = await harness.client.get(f"/payments/tenants/{TENANT}/methods")
        methods = {method["code"]: method for method in listing.json()}
        assert set(methods) == {"CASH", "PAYPAL", "STRIPE"}
        assert methods["STRIPE"]["enabled"] is True
        assert methods["PAYPAL"]["enabled"] is False
        assert methods["PAYPAL"]["values"] == {}
        assert [entry["key"] for entry in methods["STRIPE"]["schema"]] == [
            "secretKey",
            "publishableKey",
            "webhookSecret",
            "platformFeePct",
        ]
        assert "sk_test_abc" not in listing.text

        resubmitted = {**saved.json()["values"], "publishableKey": "pk_test_new"}
        await harness.configure("STRIPE", resubmitted)
        started = await harness.start("STRIPE", 101)
        assert started.status_code == 201
        assert started.json()["publishableKey"] == "pk_test_new"
        assert harness.stripe.PaymentIntent.calls[0]["api_key"] == "sk_test_abc"

        bad = await harness.client.put(
            f"/payments/tenants/{TENANT}/methods/STRIPE",
            json={"enabled": True, "values": {"publishableKey": "sk_live_oops"}},
        )
        assert bad.status_code == 400

        incomplete = await harness.client.put(
            f"/payments/tenants/{TENANT}/methods/PAYPAL", json={"enabled": True, "values": {"clientId": "only-id"}}
        )
        assert incomplete.status_code == 400

        unknown = await harness.client.put(f"/payments/tenants/{TENANT}/methods/bitcoin", json={"enabled": True})
        assert unknown.status_code == 404


@pytest.mark.asyncio
async def test_public_view_exposes_only_public_settings(tmp_path) -> None:
    async with _harness(tmp_path) as harness:
        await harness.configure("STRIPE", STRIPE_VALUES)
        await harness.configure("PAYPAL", PAYPAL_VALUES)
        await harness.configure("CASH", {"instructions": "Pay at the front desk"})

        public = await harness.client.get(f"/payments/tenants/{TENANT}/methods/public")
        assert public.status_code == 200
        configs = {method["code"]: method["config"] for method in public.json()}
        assert configs == {
            "CASH": {"instructions": "Pay at the front desk"},
            "PAYPAL": {"clientId": "client-1", "mode": "SANDBOX"},
            "STRIPE": {"publishableKey": "pk_test_abc"},
        }
        for secret in ("sk_test_abc", "whsec_abc", "paypal-secret"):
            assert secret not in public.text

        await harness.configure("PAYPAL", enabled=False)
        public = await harness.client.get(f"/payments/tenants/{TENANT}/methods/public")
        assert {method["code"] for method in public.json()} == {"CASH", "STRIPE"}

        # Disabling keeps the stored values for a later re-enable.
        await harness.configure("PAYPAL", {})
        public = await harness.client.get(f"/payments/tenants/{TENANT}/methods/public")
        assert {method["code"] for method in public.json()} == {"CASH", "PAYPAL", "STRIPE"}


@pytest.mark.asyncio
async def test_stripe_start_records_ledger_entry(tmp_path) -> None:
    async with _harness(tmp_path) as harness:
        await harness.configure("STRIPE", STRIPE_VALUES)

        response = await harness.start("stripe", 200, destinationAccountId="acct_1")
        assert response.status_code == 201
        body = response.json()
        assert body["providerCode"] == "STRIPE"
        assert body["providerPaymentId"] == "pi_1"
        assert body["clientSecret"] == "cs_secret"
        assert body["publishableKey"] == "pk_test_abc"
        assert body["status"] == "REQUIRES_PAYMENT_METHOD"

        (call,) = harness.stripe.PaymentIntent.calls
        assert call["amount"] == 4999
        assert call["application_fee_amount"] == 500
        assert call["transfer_data"] == {"destination": "acct_1"}

        (entry,) = await harness.ledger(200)
        assert entry["id"] == body["transactionId"]
        assert entry["amount"] == "49.99"
        assert entry["currency"] == "usd"
        assert entry["status"] == "REQUIRES_PAYMENT_METHOD"
        assert entry["providerPaymentId"] == "pi_1"

        fetched = await harness.client.get(f"/payments/transactions/{entry['id']}")
        assert fetched.json() == entry
        assert (await harness.client.get("/payments/transactions/9999")).status_code == 404


@pytest.mark.asyncio
async def test_provider_failure_keeps_failed_attempt_on_ledger(tmp_path) -> None:
    async with _harness(tmp_path) as harness:
        await harness.configure("STRIPE", STRIPE_VALUES)
        harness.stripe.PaymentIntent.error = stripe.StripeError("api down")
        labels = {"provider": "STRIPE", "outcome": "failed"}
        failures_before = REGISTRY.get_sample_value("tenantpay_payment_starts_total", labels) or 0.0

        failed = await harness.start("STRIPE", 300)
        assert failed.status_code == 502
        detail = failed.json()["detail"]

        (entry,) = await harness.ledger(300)
        assert entry["status"] == "FAILED"
        assert entry["providerPaymentId"] is None
        assert detail["transactionId"] == entry["id"]

        harness.stripe.PaymentIntent.error = None
        retried = await harness.start("STRIPE", 300)
        assert retried.status_code == 201
        assert [entry["status"] for entry in await harness.ledger(300)] == ["FAILED", "REQUIRES_PAYMENT_METHOD"]
        assert REGISTRY.get_sample_value("tenantpay_payment_starts_total", labels) == failures_before + 1


@pytest.mark.asyncio
async def test_paypal_start_and_capture(tmp_path) -> None:
    async with _harness(tmp_path) as harness:
        await harness.configure("PAYPAL", PAYPAL_VALUES)

        started = await harness.start("paypal", 400, amount="20.00")
        assert started.status_code == 201
        assert started.json()["redirectUrl"] == "https://paypal.test/approve/PP-400"
        assert started.json()["publishableKey"] is None

        captured = await harness.client.post("/payments/paypal/PP-400/capture")
        assert captured.status_code == 200
        assert captured.json()["status"] == "PAID"

        again = await harness.client.post("/payments/paypal/PP-400/capture")
        assert again.status_code == 200
        assert again.json()["status"] == "PAID"
        assert len(harness.paypal.captures) == 1

        summary = await harness.client.get("/payments/orders/400/summary", params={"orderTotal": "20.00"})
        assert summary.json()["fullyPaid"] is True

        missing = await harness.client.post("/payments/paypal/PP-unknown/capture")
        assert missing.status_code == 404


@pytest.mark.asyncio
async def test_paypal_declined_capture_and_outage(tmp_path) -> None:
    async with _harness(tmp_path) as harness:
        await harness.configure("PAYPAL", PAYPAL_VALUES)
        await harness.start("PAYPAL", 13)
        await harness.start("PAYPAL", 14)

        declined = await harness.client.post(f"/payments/paypal/{DECLINED_PAYPAL_ORDER}/capture")
        assert declined.status_code == 200
        assert declined.json()["status"] == "FAILED"

        harness.paypal.token_available = False
        outage = await harness.client.post("/payments/paypal/PP-14/capture")
        assert outage.status_code == 502
        (entry,) = await harness.ledger(14)
        assert entry["status"] == "CREATED"


@pytest.mark.asyncio
async def test_cash_flow_and_reconciliation(tmp_path) -> None:
    async with _harness(tmp_path) as harness:
        await harness.configure("CASH")

        missing = await harness.client.post("/payments/cash/confirm", json={"tenantId": TENANT, "orderId": 500})
        assert missing.status_code == 404

        started = await harness.start("cash", 500, amount="30.00")
        assert started.status_code == 201
        assert started.json()["status"] == "OFFLINE_PENDING"
        assert started.json()["providerPaymentId"] == "CASH_ORDER_500"

        unpaid = await harness.client.get("/payments/orders/500/summary", params={"orderTotal": "30.00"})
        assert unpaid.json() == {
            "orderId": 500,
            "orderTotal": "30.00",
            "paid": "0.00",
            "remaining": "30.00",
            "fullyPaid": False,
            "state": "UNPAID",
        }

        confirmed = await harness.client.post("/payments/cash/confirm", json={"tenantId": TENANT, "orderId": 500})
        assert confirmed.status_code == 200
        assert confirmed.json()["status"] == "PAID"
        repeat = await harness.client.post("/payments/cash/confirm", json={"tenantId": TENANT, "orderId": 500})
        assert (repeat.json()["id"], repeat.json()["status"]) == (confirmed.json()["id"], "PAID")

        paid = await harness.client.get("/payments/orders/500/summary", params={"orderTotal": "30.00"})
        assert paid.json()["state"] == "PAID"
        assert paid.json()["remaining"] == "0.00"


@pytest.mark.asyncio
async def test_manual_payments_and_batch_summaries(tmp_path) -> None:
    async with _harness(tmp_path) as harness:
        manual = await harness.client.post(
            "/payments/manual", json={"tenantId": TENANT, "orderId": 600, "amount": "15.00"}
        )
        assert manual.status_code == 201
        body = manual.json()
        assert body["status"] == "PAID"
        assert body["providerCode"] == "CASH"
        assert body["providerPaymentId"] == "MANUAL_ORDER_600"

        summaries = await harness.client.post(
            "/payments/orders/summaries",
            json={
                "orders": [
                    {"orderId": 600, "orderTotal": "40.00"},
                    {"orderId": 601, "orderTotal": "10.00"},
                    {"orderId": 602, "orderTotal": "0.00"},
                ]
            },
        )
        assert summaries.status_code == 200
        assert [(entry["orderId"], entry["state"], entry["remaining"]) for entry in summaries.json()] == [
            (600, "PARTIALLY_PAID", "25.00"),
            (601, "UNPAID", "10.00"),
            (602, "PAID", "0.00"),
        ]


@pytest.mark.asyncio
async def test_platform_switch_overrides_tenant_settings(tmp_path) -> None:
    async with _harness(tmp_path) as harness:
        await harness.configure("CASH")

        methods = await harness.client.get("/payments/methods")
        assert {entry["code"]: entry["enabled"] for entry in methods.json()} == {
            "CASH": True,
            "PAYPAL": True,
            "STRIPE": True,
        }

        disabled = await harness.client.patch("/payments/methods/cash", json={"enabled": False})
        assert disabled.status_code == 200
        assert disabled.json() == {"code": "CASH", "name": "Cash on delivery", "enabled": False}

        blocked = await harness.start("CASH", 700)
        assert blocked.status_code == 409
        assert await harness.ledger(700) == []

        admin = await harness.client.get(f"/payments/tenants/{TENANT}/methods")
        assert "CASH" not in {method["code"] for method in admin.json()}
        public = await harness.client.get(f"/payments/tenants/{TENANT}/methods/public")
        assert public.json() == []

        assert (await harness.client.patch("/payments/methods/bitcoin", json={"enabled": True})).status_code == 404


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with app.router.lifespan_context(app):
        yield
