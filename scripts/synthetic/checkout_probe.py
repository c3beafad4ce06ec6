#!/usr/bin/env python3
"""Synthetic cash checkout probe across the order and payment services.

The probe books one item, starts a cash payment for the resulting order,
confirms the cash collection and checks that the ledger summary reports the
order as fully paid. Optionally verifies that the payment service's Prometheus
counters moved. Intended for scheduled synthetic checks against a staging
tenant that has the CASH method enabled.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import re
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Sequence, Tuple

import httpx

_METRIC_LINE = re.compile(
    r"^(?P<name>[a-zA-Z_:][a-zA-Z0-9_:]*)(?:\{(?P<labels>[^}]*)\})?\s+(?P<value>[-+]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][-+]?\d+)?)$"
)
_LABEL = re.compile(r'(?P<key>[a-zA-Z_][a-zA-Z0-9_]*)="(?P<value>(?:[^"\\]|\\.)*)"')


@dataclass(slots=True)
class MetricSample:
    name: str
    labels: Mapping[str, str]
    value: float


class ProbeError(RuntimeError):
    def __init__(self, message: str, *, context: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.context = dict(context or {})


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Synthetic cash checkout probe")
    parser.add_argument(
        "--order-url",
        default=os.getenv("TENANTPAY_ORDER_URL", "http://127.0.0.1:8001"),
        help="Base URL for the order service (default: %(default)s or TENANTPAY_ORDER_URL)",
    )
    parser.add_argument(
        "--payment-url",
        default=os.getenv("TENANTPAY_PAYMENT_URL", "http://127.0.0.1:8002"),
        help="Base URL for the payment service (default: %(default)s or TENANTPAY_PAYMENT_URL)",
    )
    parser.add_argument("--tenant-id", type=int, default=int(os.getenv("TENANTPAY_PROBE_TENANT", "1")))
    parser.add_argument("--item-id", type=int, default=int(os.getenv("TENANTPAY_PROBE_ITEM", "1")))
    parser.add_argument("--user-id", type=int, default=int(os.getenv("TENANTPAY_PROBE_USER", "1")))
    parser.add_argument("--quantity", type=int, default=1)
    parser.add_argument(
        "--metrics-path",
        default="/metrics",
        help="Path to the payment service Prometheus endpoint (default: %(default)s)",
    )
    parser.add_argument("--skip-metrics", action="store_true", help="Skip verification of Prometheus metric deltas")
    parser.add_argument(
        "--cleanup",
        action="store_true",
        help="Cancel the probe order's line after the check so it does not hold capacity",
    )
    parser.add_argument(
        "--request-timeout",
        type=float,
        default=5.0,
        help="HTTP client timeout in seconds (default: %(default)s)",
    )
    parser.add_argument(
        "--max-start-ms",
        type=float,
        default=float(os.getenv("TENANTPAY_PROBE_MAX_START_MS", "2000")),
        help="Maximum allowed payment start latency in milliseconds (default: %(default)s)",
    )
    return parser.parse_args()


def parse_metrics(text: str) -> List[MetricSample]:
    samples: List[MetricSample] = []
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        match = _METRIC_LINE.match(stripped)
        if not match:
            continue
        labels = {label["key"]: label["value"] for label in _LABEL.finditer(match.group("labels") or "")}
        samples.append(MetricSample(name=match.group("name"), labels=labels, value=float(match.group("value"))))
    return samples


def find_metric_value(samples: Sequence[MetricSample], name: str, *, labels: Mapping[str, str]) -> float:
    for sample in samples:
        if sample.name == name and all(sample.labels.get(key) == value for key, value in labels.items()):
            return sample.value
    return 0.0


async def fetch_metrics(client: httpx.AsyncClient, path: str) -> List[MetricSample]:
    response = await client.get(path)
    response.raise_for_status()
    return parse_metrics(response.text)


def _expect(response: httpx.Response, expected: int, message: str, **context: Any) -> Dict[str, Any]:
    if response.status_code != expected:
        raise ProbeError(message, context={"status_code": response.status_code, "body": response.text, **context})
    return response.json()


async def _create_order(client: httpx.AsyncClient, args: argparse.Namespace) -> Dict[str, Any]:
    response = await client.post(
        "/orders",
        json={"tenantId": args.tenant_id, "items": [{"itemId": args.item_id, "quantity": args.quantity}]},
        headers={"X-User-Id": str(args.user_id)},
    )
    return _expect(response, 201, "Failed to create order", item_id=args.item_id)


async def _start_cash_payment(
    client: httpx.AsyncClient, args: argparse.Namespace, order: Mapping[str, Any]
) -> Tuple[Dict[str, Any], float]:
    start = time.monotonic()
    response = await client.post(
        "/payments/start",
        json={
            "tenantId": args.tenant_id,
            "orderId": order["id"],
            "paymentMethod": "CASH",
            "amount": order["totalPrice"],
            "currency": order["currency"],
        },
    )
    duration = (time.monotonic() - start) * 1000.0
    data = _expect(response, 201, "Failed to start cash payment", order_id=order["id"])
    if data.get("status") != "OFFLINE_PENDING":
        raise ProbeError("Cash payment did not start as OFFLINE_PENDING", context={"payment": data})
    return data, duration


async def _confirm_cash(client: httpx.AsyncClient, args: argparse.Namespace, order_id: int) -> Dict[str, Any]:
    response = await client.post("/payments/cash/confirm", json={"tenantId": args.tenant_id, "orderId": order_id})
    return _expect(response, 200, "Failed to confirm cash payment", order_id=order_id)


async def _summary(client: httpx.AsyncClient, order: Mapping[str, Any]) -> Dict[str, Any]:
    response = await client.get(
        f"/payments/orders/{order['id']}/summary", params={"orderTotal": order["totalPrice"]}
    )
    return _expect(response, 200, "Failed to fetch payment summary", order_id=order["id"])


async def _cancel_line(client: httpx.AsyncClient, args: argparse.Namespace, line_id: int) -> None:
    response = await client.put(f"/orders/lines/{line_id}/cancel", headers={"X-User-Id": str(args.user_id)})
    _expect(response, 200, "Failed to cancel probe order line", line_id=line_id)


async def run_probe(args: argparse.Namespace) -> Dict[str, Any]:
    timeout = httpx.Timeout(args.request_timeout)
    async with httpx.AsyncClient(base_url=args.order_url, timeout=timeout) as orders, httpx.AsyncClient(
        base_url=args.payment_url, timeout=timeout
    ) as payments:
        metric_labels = {"provider": "CASH", "outcome": "started"}
        before = 0.0
        if not args.skip_metrics:
            before = find_metric_value(
                await fetch_metrics(payments, args.metrics_path), "tenantpay_payment_starts_total", labels=metric_labels
            )

        order = await _create_order(orders, args)
        payment, start_ms = await _start_cash_payment(payments, args, order)
        confirmed = await _confirm_cash(payments, args, order["id"])
        summary = await _summary(payments, order)

        if start_ms > args.max_start_ms:
            raise ProbeError(
                "Payment start latency exceeded threshold",
                context={"start_ms": round(start_ms, 2), "threshold_ms": args.max_start_ms},
            )
        if confirmed.get("status") != "PAID" or not summary.get("fullyPaid"):
            raise ProbeError(
                "Order is not fully paid after cash confirmation",
                context={"order_id": order["id"], "transaction": confirmed, "summary": summary},
            )

        delta = None
        if not args.skip_metrics:
            after = find_metric_value(
                await fetch_metrics(payments, args.metrics_path), "tenantpay_payment_starts_total", labels=metric_labels
            )
            delta = after - before
            if delta < 1:
                raise ProbeError("tenantpay_payment_starts_total did not increment", context={"delta": delta})

        if args.cleanup:
            for line in order["lines"]:
                await _cancel_line(orders, args, line["id"])

        return {
            "status": "ok",
            "orderId": order["id"],
            "transactionId": payment["transactionId"],
            "summary": summary,
            "durationsMs": {"start": round(start_ms, 2)},
            "paymentStartsDelta": delta,
        }


async def main_async() -> int:
    args = parse_args()
    try:
        result = await run_probe(args)
    except ProbeError as exc:
        print(json.dumps({"status": "error", "message": str(exc), "context": exc.context}, indent=2, sort_keys=True))
        return 1
    except httpx.HTTPError as exc:
        payload = {"status": "error", "message": str(exc), "context": {"exc_type": exc.__class__.__name__}}
        print(json.dumps(payload, indent=2, sort_keys=True))
        return 1
    print(json.dumps(result, indent=2, sort_keys=True))
    return 0


def main() -> None:
    raise SystemExit(asyncio.run(main_async()))


if __name__ == "__main__":
    main()
