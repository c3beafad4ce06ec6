"""Prometheus metrics for the payment service."""

from __future__ import annotations

from typing import Final

from prometheus_client import Counter, Histogram

PAYMENT_STARTS_TOTAL: Final = Counter(
    "tenantpay_payment_starts_total",
    "Payment start attempts by provider and outcome.",
    labelnames=("provider", "outcome"),
)

PROVIDER_CALL_LATENCY_SECONDS: Final = Histogram(
    "tenantpay_provider_call_latency_seconds",
    "Time spent waiting on payment provider calls.",
    labelnames=("provider", "operation"),
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30),
)

LEDGER_STATUS_CHANGES_TOTAL: Final = Counter(
    "tenantpay_ledger_status_changes_total",
    "Ledger entries written or moved into a status.",
    labelnames=("provider", "status"),
)
