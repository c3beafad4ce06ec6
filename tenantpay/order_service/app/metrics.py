"""Prometheus metrics for the order service."""

from __future__ import annotations

from typing import Final

from prometheus_client import Counter

ORDERS_CREATED_TOTAL: Final = Counter(
    "tenantpay_orders_created_total",
    "Orders created, labelled by currency.",
    labelnames=("currency",),
)

ORDER_TRANSITIONS_TOTAL: Final = Counter(
    "tenantpay_order_transitions_total",
    "Lifecycle operations applied to orders, by outcome.",
    labelnames=("operation", "outcome"),
)

CAPACITY_REJECTIONS_TOTAL: Final = Counter(
    "tenantpay_capacity_rejections_total",
    "Order creations or completions refused for lack of item capacity.",
    labelnames=("stage",),
)
