"""Database helpers for the payment service."""

from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import PaymentMethod, PaymentMethodConfig, PaymentTransaction, TransactionStatus, utcnow


class PaymentRepository:
    """Persistence utilities for the ledger, tenant configs and the method catalog."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    # Ledger -----------------------------------------------------------------------------------

    async def create_transaction(
        self,
        *,
        tenant_id: int,
        order_id: int,
        provider_code: str,
        amount_cents: int | None,
        currency: str,
        status: str = TransactionStatus.CREATED,
        provider_payment_id: str | None = None,
        raw_payload: str | None = None,
    ) -> PaymentTransaction:
        transaction = PaymentTransaction(
            tenant_id=tenant_id,
            order_id=order_id,
            provider_code=provider_code,
            provider_payment_id=provider_payment_id,
            amount_cents=amount_cents,
            currency=currency,
            status=status,
            raw_provider_payload=raw_payload,
        )
        self.session.add(transaction)
        await self.session.flush()
        return transaction

    async def get_transaction(self, transaction_id: int) -> PaymentTransaction | None:
        return await self.session.get(PaymentTransaction, transaction_id)

    async def find_by_provider_payment_id(
        self, provider_code: str, provider_payment_id: str
    ) -> PaymentTransaction | None:
        result = await self.session.execute(
            select(PaymentTransaction)
            .where(
                PaymentTransaction.provider_code == provider_code,
                PaymentTransaction.provider_payment_id == provider_payment_id,
            )
            .order_by(PaymentTransaction.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def latest_for_order(
        self, *, tenant_id: int, order_id: int, provider_code: str
    ) -> PaymentTransaction | None:
        result = await self.session.execute(
            select(PaymentTransaction)
            .where(
                PaymentTransaction.tenant_id == tenant_id,
                PaymentTransaction.order_id == order_id,
                PaymentTransaction.provider_code == provider_code,
            )
            .order_by(PaymentTransaction.created_at.desc(), PaymentTransaction.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_for_order(self, order_id: int, *, tenant_id: int | None = None) -> list[PaymentTransaction]:
        stmt = select(PaymentTransaction).where(PaymentTransaction.order_id == order_id)
        if tenant_id is not None:
            stmt = stmt.where(PaymentTransaction.tenant_id == tenant_id)
        result = await self.session.execute(stmt.order_by(PaymentTransaction.id))
        return list(result.scalars())

    async def update_transaction(
        self,
        transaction: PaymentTransaction,
        *,
        status: str | None = None,
        provider_payment_id: str | None = None,
        amount_cents: int | None = None,
        raw_payload: str | None = None,
    ) -> PaymentTransaction:
        if status is not None:
            transaction.status = status
        if provider_payment_id is not None:
            transaction.provider_payment_id = provider_payment_id
        if amount_cents is not None:
            transaction.amount_cents = amount_cents
        if raw_payload is not None:
            transaction.raw_provider_payload = raw_payload
        transaction.updated_at = utcnow()
        await self.session.flush()
        return transaction

    async def paid_cents(self, order_id: int) -> int:
        result = await self.session.execute(
            select(func.coalesce(func.sum(PaymentTransaction.amount_cents), 0)).where(
                PaymentTransaction.order_id == order_id,
                PaymentTransaction.status == TransactionStatus.PAID,
            )
        )
        return int(result.scalar_one())

    async def paid_cents_by_order(self, order_ids: Iterable[int]) -> dict[int, int]:
        """Sum of PAID amounts per order, in one grouped query."""

        ids = list(set(order_ids))
        if not ids:
            return {}
        result = await self.session.execute(
            select(PaymentTransaction.order_id, func.coalesce(func.sum(PaymentTransaction.amount_cents), 0))
            .where(
                PaymentTransaction.order_id.in_(ids),
                PaymentTransaction.status == TransactionStatus.PAID,
            )
            .group_by(PaymentTransaction.order_id)
        )
        return {order_id: int(total) for order_id, total in result.all()}

    # Tenant configuration ---------------------------------------------------------------------

    async def get_config(self, tenant_id: int, provider_code: str) -> PaymentMethodConfig | None:
        result = await self.session.execute(
            select(PaymentMethodConfig).where(
                PaymentMethodConfig.tenant_id == tenant_id,
                PaymentMethodConfig.provider_code == provider_code,
            )
        )
        return result.scalar_one_or_none()

    async def list_configs(self, tenant_id: int) -> dict[str, PaymentMethodConfig]:
        result = await self.session.execute(
            select(PaymentMethodConfig).where(PaymentMethodConfig.tenant_id == tenant_id)
        )
        return {row.provider_code: row for row in result.scalars()}

    async def save_config(
        self,
        tenant_id: int,
        provider_code: str,
        *,
        enabled: bool,
        config_json: str | None,
    ) -> PaymentMethodConfig:
        row = await self.get_config(tenant_id, provider_code)
        if row is None:
            row = PaymentMethodConfig(
                tenant_id=tenant_id,
                provider_code=provider_code,
                enabled=enabled,
                config_json=config_json or "{}",
            )
            self.session.add(row)
        else:
            row.enabled = enabled
            if config_json is not None:
                row.config_json = config_json
            row.updated_at = utcnow()
        await self.session.flush()
        return row

    # Platform catalog -------------------------------------------------------------------------

    async def list_methods(self) -> dict[str, PaymentMethod]:
        result = await self.session.execute(select(PaymentMethod))
        return {row.code: row for row in result.scalars()}

    async def get_method(self, code: str) -> PaymentMethod | None:
        return await self.session.get(PaymentMethod, code)

    async def set_method_enabled(self, code: str, enabled: bool) -> PaymentMethod:
        row = await self.get_method(code)
        if row is None:
            row = PaymentMethod(code=code, enabled=enabled)
            self.session.add(row)
        else:
            row.enabled = enabled
            row.updated_at = utcnow()
        await self.session.flush()
        return row
