from contextlib import asynccontextmanager

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
from tenantpay.common.kafka import KafkaProducerStub

from .api.health import router as health_router
from .api.orders import router as orders_router
from .capacity import HttpItemCatalog, InMemoryItemCatalog, ItemCatalog
from .events import OrderEventPublisher
from .models import Base

SERVICE_NAME = "Order Service"
DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./order_service.db"


def create_app(
    settings: ServiceSettings | None = None,
    *,
    item_catalog: ItemCatalog | None = None,
) -> FastAPI:
    """Create the Order Service FastAPI application.

    ``item_catalog`` overrides catalog resolution; otherwise the HTTP catalog is
    used when ``catalog_service_url`` is set and an empty in-memory one when not.
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
        kafka_producer: KafkaProducerStub | None = None
        app.state.session_factory = session_factory
        try:
            if resolved_settings.auto_create_schema:
                await create_schema(database_url, Base.metadata)
            catalog = item_catalog
            if catalog is None and resolved_settings.catalog_service_url:
                http_client = AsyncClient(timeout=resolved_settings.http_timeout_seconds)
                catalog = HttpItemCatalog(http_client, resolved_settings.catalog_service_url)
            app.state.item_catalog = catalog or InMemoryItemCatalog()
            kafka_producer = KafkaProducerStub(bootstrap_servers=resolved_settings.kafka_bootstrap_servers)
            await kafka_producer.connect()
            app.state.kafka_producer = kafka_producer
            app.state.event_publisher = OrderEventPublisher(kafka_producer)
            yield
        finally:
            app.state.session_factory = None  # type: ignore[assignment]
            app.state.item_catalog = None
            app.state.event_publisher = None
            app.state.kafka_producer = None
            if http_client is not None:
                await http_client.aclose()
            if kafka_producer is not None:
                await kafka_producer.close()
            await dispose_engines()

    app = build_app(resolved_settings, lifespan=lifespan)
    app.include_router(health_router)
    app.include_router(orders_router)
    return app


app = create_app()
