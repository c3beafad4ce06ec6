from contextlib import asynccontextmanager
from typing import Any, Callable

import stripe
from fastapi import FastAPI
from httpx import AsyncClient

from tenantpay.common import (
    DEFAULT_APP_NAME,
    ServiceSettings,
    build_app,
    configure_logging,
    create_schema,
    dispose_engines,
    get_session_factory,
    resolve_database_url,
)

from .api.health import router as health_router
from .api.payments import router as payments_router
from .gateways.registry import GatewayRegistry, build_default_registry
from .models import Base

SERVICE_NAME = "Payment Service"
DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./payment_service.db"

RegistryFactory = Callable[[ServiceSettings, AsyncClient], GatewayRegistry]


def create_app(
    settings: ServiceSettings | None = None,
    *,
    registry_factory: RegistryFactory | None = None,
    stripe_client: Any = stripe,
) -> FastAPI:
    """Create the Payment Service FastAPI application.

    ``registry_factory`` builds the gateway registry from the settings and the
    shared provider HTTP client; the default wires Stripe, PayPal and cash.
    """

    resolved_settings = settings or ServiceSettings()
    if resolved_settings.app_name == DEFAULT_APP_NAME:
        resolved_settings = resolved_settings.model_copy(update={"app_name": SERVICE_NAME})
    configure_logging(resolved_settings)
    database_url = resolve_database_url(resolved_settings, DEFAULT_DATABASE_URL)
    session_factory = get_session_factory(database_url)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        http_client: AsyncClient | None = None
        app.state.session_factory = session_factory
        try:
            if resolved_settings.auto_create_schema:
                await create_schema(database_url, Base.metadata)
            http_client = AsyncClient(timeout=resolved_settings.http_timeout_seconds)
            if registry_factory is not None:
                registry = registry_factory(resolved_settings, http_client)
            else:
                registry = build_default_registry(resolved_settings, http_client, stripe_client=stripe_client)
            app.state.gateway_registry = registry
            yield
        finally:
            app.state.session_factory = None  # type: ignore[assignment]
            app.state.gateway_registry = None
            if http_client is not None:
                await http_client.aclose()
            await dispose_engines()

    app = build_app(resolved_settings, lifespan=lifespan)
    app.include_router(health_router)
    app.include_router(payments_router)
    return app


app = create_app()
