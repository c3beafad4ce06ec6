"""Payment orchestration and the follow-up capture/confirmation handlers.

Provider calls are never made while a database transaction is open. Starting a
payment commits a ``CREATED`` ledger entry first, calls the provider, then
finalizes the entry in a second short transaction. If the provider call fails
the entry is marked ``FAILED`` so every attempt stays on the ledger.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tenantpay.common import lifespan_session, tenant_context, to_cents

from .config_store import PaymentConfigStore
from .gateways.base import CreatePaymentCommand, GatewayError, PaymentGateway
from .gateways.config import InvalidProviderConfig, ProviderConfig, looks_like_secret_key
from .gateways.paypal import PaypalGateway
from .gateways.registry import GatewayRegistry
from .metrics import LEDGER_STATUS_CHANGES_TOTAL, PAYMENT_STARTS_TOTAL, PROVIDER_CALL_LATENCY_SECONDS
from .models import PaymentTransaction, TransactionStatus
from .repository import PaymentRepository

_LOGGER = logging.getLogger(__name__)


class TransactionNotFound(LookupError):
    pass


class InvalidPaymentRequest(ValueError):
    pass


class PaymentProviderError(Exception):
    """A provider call failed. ``transaction_id`` names the ledger entry involved, if any."""

    def __init__(self, message: str, *, transaction_id: int | None = None) -> None:
        super().__init__(message)
        self.transaction_id = transaction_id


@dataclass(frozen=True)
class StartPaymentResult:
    transaction_id: int
    provider_code: str
    provider_payment_id: str | None
    status: str
    client_secret: str | None = None
    redirect_url: str | None = None
    publishable_key: str | None = None


def _payload_json(payload: Any) -> str:
    return json.dumps(payload, default=str, sort_keys=True)


def _publishable_key(gateway: PaymentGateway, config: ProviderConfig) -> str | None:
    if gateway.code() != "STRIPE":
        return None
    key = gateway.public_checkout_config(config).get("publishableKey")
    if not key or looks_like_secret_key(key):
        raise InvalidProviderConfig("STRIPE publishableKey is missing or looks like a secret key")
    return key


class PaymentOrchestrator:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession], registry: GatewayRegistry) -> None:
        self.session_factory = session_factory
        self.registry = registry

    async def start_payment(
        self,
        *,
        tenant_id: int,
        order_id: int,
        provider_code: str | None,
        amount: Decimal,
        currency: str | None,
        destination_account_id: str | None = None,
    ) -> StartPaymentResult:
        gateway = self.registry.require(provider_code)
        code = gateway.code()
        if amount is None or amount <= 0:
            raise InvalidPaymentRequest("amount must be positive")
        normalized_currency = (currency or "usd").strip().lower()

        with tenant_context(tenant_id):
            async with lifespan_session(self.session_factory) as session:
                repository = PaymentRepository(session)
                config = await PaymentConfigStore(repository, self.registry).require_enabled(tenant_id, gateway)
                publishable_key = _publishable_key(gateway, config)
                transaction = await repository.create_transaction(
                    tenant_id=tenant_id,
                    order_id=order_id,
                    provider_code=code,
                    amount_cents=to_cents(amount),
                    currency=normalized_currency,
                    status=TransactionStatus.CREATED,
                )
                transaction_id = transaction.id
            LEDGER_STATUS_CHANGES_TOTAL.labels(provider=code, status=TransactionStatus.CREATED).inc()

            command = CreatePaymentCommand(
                tenant_id=tenant_id,
                order_id=order_id,
                amount=amount,
                currency=normalized_currency,
                destination_account_id=destination_account_id or None,
            )
            started = time.perf_counter()
            try:
                result = await gateway.create_payment(command, config)
            except Exception as exc:
                PAYMENT_STARTS_TOTAL.labels(provider=code, outcome="failed").inc()
                await self._mark_failed(transaction_id, exc)
                if isinstance(exc, GatewayError):
                    raise PaymentProviderError(str(exc), transaction_id=transaction_id) from exc
                raise
            finally:
                PROVIDER_CALL_LATENCY_SECONDS.labels(provider=code, operation="create_payment").observe(
                    time.perf_counter() - started
                )

            status = (result.status or TransactionStatus.CREATED).strip().upper()
            async with lifespan_session(self.session_factory) as session:
                repository = PaymentRepository(session)
                transaction = await repository.get_transaction(transaction_id)
                if transaction is None:
                    raise TransactionNotFound(transaction_id)
                await repository.update_transaction(
                    transaction,
                    status=status,
                    provider_payment_id=result.provider_payment_id,
                    raw_payload=_payload_json(result.raw),
                )
            LEDGER_STATUS_CHANGES_TOTAL.labels(provider=code, status=status).inc()
            PAYMENT_STARTS_TOTAL.labels(provider=code, outcome="started").inc()
            _LOGGER.info(
                "Started %s payment %s for order %s (transaction %s, status %s)",
                code,
                result.provider_payment_id,
                order_id,
                transaction_id,
                status,
            )

        return StartPaymentResult(
            transaction_id=transaction_id,
            provider_code=code,
            provider_payment_id=result.provider_payment_id,
            status=status,
            client_secret=result.client_secret,
            redirect_url=result.redirect_url,
            publishable_key=publishable_key,
        )

    async def _mark_failed(self, transaction_id: int, error: Exception) -> None:
        try:
            async with lifespan_session(self.session_factory) as session:
                repository = PaymentRepository(session)
                transaction = await repository.get_transaction(transaction_id)
                if transaction is None:
                    return
                await repository.update_transaction(
                    transaction,
                    status=TransactionStatus.FAILED,
                    raw_payload=_payload_json({"error": str(error), "type": type(error).__name__}),
                )
                LEDGER_STATUS_CHANGES_TOTAL.labels(
                    provider=transaction.provider_code, status=TransactionStatus.FAILED
                ).inc()
        except Exception:
            _LOGGER.exception("Could not mark transaction %s as FAILED", transaction_id)
        else:
            _LOGGER.warning("Transaction %s marked FAILED: %s", transaction_id, error)


class CaptureService:
    """Moves pending ledger entries to a terminal status once funds are confirmed."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], registry: GatewayRegistry) -> None:
        self.session_factory = session_factory
        self.registry = registry

    async def capture_paypal(self, provider_payment_id: str) -> PaymentTransaction:
        gateway = self.registry.require("PAYPAL")
        if not isinstance(gateway, PaypalGateway):
            raise PaymentProviderError("PAYPAL gateway does not support capture")

        async with lifespan_session(self.session_factory) as session:
            repository = PaymentRepository(session)
            transaction = await repository.find_by_provider_payment_id("PAYPAL", provider_payment_id)
            if transaction is None:
                raise TransactionNotFound(provider_payment_id)
            if transaction.status == TransactionStatus.PAID:
                return transaction
            config = await PaymentConfigStore(repository, self.registry).require_enabled(
                transaction.tenant_id, gateway
            )
            transaction_id = transaction.id
            tenant_id = transaction.tenant_id

        with tenant_context(tenant_id):
            started = time.perf_counter()
            try:
                succeeded, payload = await gateway.capture_order(provider_payment_id, config)
            except GatewayError as exc:
                raise PaymentProviderError(str(exc), transaction_id=transaction_id) from exc
            finally:
                PROVIDER_CALL_LATENCY_SECONDS.labels(provider="PAYPAL", operation="capture").observe(
                    time.perf_counter() - started
                )

            status = TransactionStatus.PAID if succeeded else TransactionStatus.FAILED
            async with lifespan_session(self.session_factory) as session:
                repository = PaymentRepository(session)
                transaction = await repository.get_transaction(transaction_id)
                if transaction is None:
                    raise TransactionNotFound(provider_payment_id)
                await repository.update_transaction(transaction, status=status, raw_payload=_payload_json(payload))
            LEDGER_STATUS_CHANGES_TOTAL.labels(provider="PAYPAL", status=status).inc()
            _LOGGER.info("PayPal capture of %s finished with %s", provider_payment_id, status)
        return transaction

    async def confirm_cash(self, *, tenant_id: int, order_id: int, order_total: Decimal | None) -> PaymentTransaction:
        async with lifespan_session(self.session_factory) as session:
            repository = PaymentRepository(session)
            transaction = await repository.latest_for_order(tenant_id=tenant_id, order_id=order_id, provider_code="CASH")
            if transaction is None:
                raise TransactionNotFound(order_id)
            if transaction.status == TransactionStatus.PAID:
                return transaction
            amount_cents = None
            if transaction.amount_cents is None or transaction.amount_cents <= 0:
                if order_total is None or order_total <= 0:
                    raise InvalidPaymentRequest("orderTotal is required when the cash entry has no amount")
                amount_cents = to_cents(order_total)
            await repository.update_transaction(transaction, status=TransactionStatus.PAID, amount_cents=amount_cents)
        LEDGER_STATUS_CHANGES_TOTAL.labels(provider="CASH", status=TransactionStatus.PAID).inc()
        with tenant_context(tenant_id):
            _LOGGER.info("Cash collected for order %s (transaction %s)", order_id, transaction.id)
        return transaction

    async def record_manual_payment(
        self,
        *,
        tenant_id: int,
        order_id: int,
        amount: Decimal,
        currency: str | None = None,
        provider_code: str | None = None,
        provider_payment_id: str | None = None,
    ) -> PaymentTransaction:
        """Write a ``PAID`` entry for money collected outside any provider flow."""

        if amount is None or amount <= 0:
            raise InvalidPaymentRequest("amount must be positive")
        code = (provider_code or "CASH").strip().upper()
        async with lifespan_session(self.session_factory) as session:
            repository = PaymentRepository(session)
            transaction = await repository.create_transaction(
                tenant_id=tenant_id,
                order_id=order_id,
                provider_code=code,
                amount_cents=to_cents(amount),
                currency=(currency or "usd").strip().lower(),
                status=TransactionStatus.PAID,
                provider_payment_id=provider_payment_id or f"MANUAL_ORDER_{order_id}",
                raw_payload=_payload_json({"source": "manual"}),
            )
        LEDGER_STATUS_CHANGES_TOTAL.labels(provider=code, status=TransactionStatus.PAID).inc()
        return transaction
