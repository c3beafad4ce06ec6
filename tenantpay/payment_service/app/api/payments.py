"""HTTP endpoints for checkout, capture, the ledger and payment method settings."""

from __future__ import annotations

from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, Query, status

from tenantpay.common import format_cents

from ..config_store import PaymentConfigStore, PaymentMethodUnavailable
from ..dependencies import (
    get_capture_service,
    get_config_store,
    get_orchestrator,
    get_reconciler,
    get_registry,
    get_repository,
)
from ..gateways.config import InvalidProviderConfig
from ..gateways.registry import GatewayRegistry, UnknownGateway
from ..reconciliation import LedgerReconciler, PaymentSummary
from ..repository import PaymentRepository
from ..schemas import (
    BatchSummaryRequest,
    CashConfirmRequest,
    ManualPaymentRequest,
    PaymentSummaryResponse,
    PlatformMethodResponse,
    PlatformMethodUpdate,
    PublicMethodResponse,
    StartPaymentRequest,
    StartPaymentResponse,
    TenantMethodResponse,
    TenantMethodUpdate,
    TransactionResponse,
)
from ..services import (
    CaptureService,
    InvalidPaymentRequest,
    PaymentOrchestrator,
    PaymentProviderError,
    TransactionNotFound,
)

router = APIRouter(prefix="/payments", tags=["payments"])


def _serialize_transaction(transaction) -> dict[str, object]:
    return {
        "id": transaction.id,
        "tenantId": transaction.tenant_id,
        "orderId": transaction.order_id,
        "providerCode": transaction.provider_code,
        "providerPaymentId": transaction.provider_payment_id,
        "amount": None if transaction.amount_cents is None else format_cents(transaction.amount_cents),
        "currency": transaction.currency,
        "status": transaction.status,
        "createdAt": transaction.created_at,
        "updatedAt": transaction.updated_at,
    }


def _serialize_summary(summary: PaymentSummary) -> dict[str, object]:
    return {
        "orderId": summary.order_id,
        "orderTotal": summary.order_total,
        "paid": summary.paid,
        "remaining": summary.remaining,
        "fullyPaid": summary.fully_paid,
        "state": summary.state.value,
    }


def _provider_error(exc: PaymentProviderError) -> HTTPException:
    detail: dict[str, object] = {"message": str(exc)}
    if exc.transaction_id is not None:
        detail["transactionId"] = exc.transaction_id
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=detail)


@router.post("/start", response_model=StartPaymentResponse, status_code=status.HTTP_201_CREATED)
async def start_payment(
    payload: StartPaymentRequest,
    orchestrator: PaymentOrchestrator = Depends(get_orchestrator),
) -> StartPaymentResponse:
    try:
        result = await orchestrator.start_payment(
            tenant_id=payload.tenant_id,
            order_id=payload.order_id,
            provider_code=payload.payment_method,
            amount=payload.amount,
            currency=payload.currency,
            destination_account_id=payload.destination_account_id,
        )
    except (UnknownGateway, InvalidPaymentRequest) as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except (PaymentMethodUnavailable, InvalidProviderConfig) as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except PaymentProviderError as exc:
        raise _provider_error(exc) from exc
    return StartPaymentResponse(
        transactionId=result.transaction_id,
        providerCode=result.provider_code,
        providerPaymentId=result.provider_payment_id,
        clientSecret=result.client_secret,
        redirectUrl=result.redirect_url,
        status=result.status,
        publishableKey=result.publishable_key,
    )


@router.post("/paypal/{provider_payment_id}/capture", response_model=TransactionResponse)
async def capture_paypal_payment(
    provider_payment_id: str,
    capture: CaptureService = Depends(get_capture_service),
) -> TransactionResponse:
    try:
        transaction = await capture.capture_paypal(provider_payment_id)
    except TransactionNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Transaction not found") from None
    except (PaymentMethodUnavailable, InvalidProviderConfig) as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except PaymentProviderError as exc:
        raise _provider_error(exc) from exc
    return TransactionResponse.model_validate(_serialize_transaction(transaction))


@router.post("/cash/confirm", response_model=TransactionResponse)
async def confirm_cash_payment(
    payload: CashConfirmRequest,
    capture: CaptureService = Depends(get_capture_service),
) -> TransactionResponse:
    try:
        transaction = await capture.confirm_cash(
            tenant_id=payload.tenant_id,
            order_id=payload.order_id,
            order_total=payload.order_total,
        )
    except TransactionNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Cash transaction not found") from None
    except InvalidPaymentRequest as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return TransactionResponse.model_validate(_serialize_transaction(transaction))


@router.post("/manual", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED)
async def record_manual_payment(
    payload: ManualPaymentRequest,
    capture: CaptureService = Depends(get_capture_service),
) -> TransactionResponse:
    try:
        transaction = await capture.record_manual_payment(
            tenant_id=payload.tenant_id,
            order_id=payload.order_id,
            amount=payload.amount,
            currency=payload.currency,
            provider_code=payload.provider_code,
            provider_payment_id=payload.provider_payment_id,
        )
    except InvalidPaymentRequest as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return TransactionResponse.model_validate(_serialize_transaction(transaction))


@router.get("/transactions/{transaction_id}", response_model=TransactionResponse)
async def get_transaction(
    transaction_id: int,
    repository: PaymentRepository = Depends(get_repository),
) -> TransactionResponse:
    transaction = await repository.get_transaction(transaction_id)
    if transaction is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Transaction not found")
    return TransactionResponse.model_validate(_serialize_transaction(transaction))


@router.get("/orders/{order_id}/transactions", response_model=list[TransactionResponse])
async def list_order_transactions(
    order_id: int,
    tenant_id: int | None = Query(default=None, alias="tenantId"),
    repository: PaymentRepository = Depends(get_repository),
) -> list[TransactionResponse]:
    transactions = await repository.list_for_order(order_id, tenant_id=tenant_id)
    return [TransactionResponse.model_validate(_serialize_transaction(entry)) for entry in transactions]


@router.get("/orders/{order_id}/summary", response_model=PaymentSummaryResponse)
async def get_order_summary(
    order_id: int,
    order_total: Decimal = Query(alias="orderTotal", max_digits=12, decimal_places=2),
    reconciler: LedgerReconciler = Depends(get_reconciler),
) -> PaymentSummaryResponse:
    summary = await reconciler.summary_for_order(order_id, order_total)
    return PaymentSummaryResponse.model_validate(_serialize_summary(summary))


@router.post("/orders/summaries", response_model=list[PaymentSummaryResponse])
async def get_order_summaries(
    payload: BatchSummaryRequest,
    reconciler: LedgerReconciler = Depends(get_reconciler),
) -> list[PaymentSummaryResponse]:
    totals = {entry.order_id: entry.order_total for entry in payload.orders}
    summaries = await reconciler.summaries_for_orders(totals)
    return [PaymentSummaryResponse.model_validate(_serialize_summary(summaries[order_id])) for order_id in totals]


@router.get("/methods", response_model=list[PlatformMethodResponse])
async def list_platform_methods(
    registry: GatewayRegistry = Depends(get_registry),
    repository: PaymentRepository = Depends(get_repository),
) -> list[PlatformMethodResponse]:
    rows = await repository.list_methods()
    return [
        PlatformMethodResponse(
            code=gateway.code(),
            name=gateway.display_name(),
            enabled=rows[gateway.code()].enabled if gateway.code() in rows else True,
        )
        for gateway in registry.all()
    ]


@router.patch("/methods/{code}", response_model=PlatformMethodResponse)
async def update_platform_method(
    code: str,
    payload: PlatformMethodUpdate,
    registry: GatewayRegistry = Depends(get_registry),
    repository: PaymentRepository = Depends(get_repository),
) -> PlatformMethodResponse:
    gateway = registry.find(code)
    if gateway is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Payment method not found")
    row = await repository.set_method_enabled(gateway.code(), payload.enabled)
    return PlatformMethodResponse(code=gateway.code(), name=gateway.display_name(), enabled=row.enabled)


@router.get("/tenants/{tenant_id}/methods", response_model=list[TenantMethodResponse])
async def list_tenant_methods(
    tenant_id: int,
    store: PaymentConfigStore = Depends(get_config_store),
) -> list[TenantMethodResponse]:
    try:
        methods = await store.admin_view(tenant_id)
    except InvalidProviderConfig as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return [TenantMethodResponse.model_validate(method) for method in methods]


@router.get("/tenants/{tenant_id}/methods/public", response_model=list[PublicMethodResponse])
async def list_public_tenant_methods(
    tenant_id: int,
    store: PaymentConfigStore = Depends(get_config_store),
) -> list[PublicMethodResponse]:
    return [PublicMethodResponse.model_validate(method) for method in await store.public_view(tenant_id)]


@router.put("/tenants/{tenant_id}/methods/{code}", response_model=TenantMethodResponse)
async def save_tenant_method(
    tenant_id: int,
    code: str,
    payload: TenantMethodUpdate,
    store: PaymentConfigStore = Depends(get_config_store),
) -> TenantMethodResponse:
    try:
        method = await store.save(tenant_id, code, enabled=payload.enabled, values=payload.values)
    except UnknownGateway:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Payment method not found") from None
    except InvalidProviderConfig as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except PaymentMethodUnavailable as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return TenantMethodResponse.model_validate(method)
