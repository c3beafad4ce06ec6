"""How much of an order has been paid, derived only from the ledger."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from tenantpay.common import format_cents, to_cents

from .repository import PaymentRepository


class PaymentState(str, Enum):
    UNPAID = "UNPAID"
    PARTIALLY_PAID = "PARTIALLY_PAID"
    PAID = "PAID"


@dataclass(frozen=True)
class PaymentSummary:
    order_id: int
    order_total: Decimal
    paid: Decimal
    remaining: Decimal
    fully_paid: bool
    state: PaymentState


def summarize(order_id: int, total_cents: int, paid_cents: int) -> PaymentSummary:
    if total_cents <= 0:
        return PaymentSummary(
            order_id=order_id,
            order_total=format_cents(total_cents),
            paid=format_cents(paid_cents),
            remaining=format_cents(0),
            fully_paid=True,
            state=PaymentState.PAID,
        )
    if paid_cents <= 0:
        state = PaymentState.UNPAID
    elif paid_cents >= total_cents:
        state = PaymentState.PAID
    else:
        state = PaymentState.PARTIALLY_PAID
    return PaymentSummary(
        order_id=order_id,
        order_total=format_cents(total_cents),
        paid=format_cents(paid_cents),
        remaining=format_cents(max(total_cents - paid_cents, 0)),
        fully_paid=paid_cents >= total_cents,
        state=state,
    )


class LedgerReconciler:
    def __init__(self, repository: PaymentRepository) -> None:
        self.repository = repository

    async def summary_for_order(self, order_id: int, order_total: Decimal) -> PaymentSummary:
        paid = await self.repository.paid_cents(order_id)
        return summarize(order_id, to_cents(order_total), paid)

    async def summaries_for_orders(self, totals: Mapping[int, Decimal]) -> dict[int, PaymentSummary]:
        paid = await self.repository.paid_cents_by_order(totals.keys())
        return {
            order_id: summarize(order_id, to_cents(total), paid.get(order_id, 0))
            for order_id, total in totals.items()
        }
