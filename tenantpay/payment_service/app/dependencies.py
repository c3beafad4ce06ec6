"""Dependency helpers for payment service."""

from __future__ import annotations

from collections.abc import AsyncIterator

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tenantpay.common import lifespan_session

from .config_store import PaymentConfigStore
from .gateways.registry import GatewayRegistry
from .reconciliation import LedgerReconciler
from .repository import PaymentRepository
from .services import CaptureService, PaymentOrchestrator


async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    session_factory: async_sessionmaker[AsyncSession] = request.app.state.session_factory
    async with lifespan_session(session_factory) as session:
        yield session


def get_repository(session: AsyncSession = Depends(get_session)) -> PaymentRepository:
    return PaymentRepository(session)


def get_registry(request: Request) -> GatewayRegistry:
    return request.app.state.gateway_registry


def get_config_store(
    repository: PaymentRepository = Depends(get_repository),
    registry: GatewayRegistry = Depends(get_registry),
) -> PaymentConfigStore:
    return PaymentConfigStore(repository, registry)


def get_reconciler(repository: PaymentRepository = Depends(get_repository)) -> LedgerReconciler:
    return LedgerReconciler(repository)


def get_orchestrator(request: Request, registry: GatewayRegistry = Depends(get_registry)) -> PaymentOrchestrator:
    """Orchestrator owning its own short transactions around provider calls."""

    return PaymentOrchestrator(request.app.state.session_factory, registry)


def get_capture_service(request: Request, registry: GatewayRegistry = Depends(get_registry)) -> CaptureService:
    return CaptureService(request.app.state.session_factory, registry)
