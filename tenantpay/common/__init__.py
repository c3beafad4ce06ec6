"""Shared utilities for the tenantpay services."""

from .config import DEFAULT_APP_NAME, ServiceSettings, get_settings
from .instrumentation import build_app, instrument_app
from .logging import configure_logging, current_tenant, tenant_context
from .database import (
    create_engine,
    create_schema,
    dispose_engines,
    get_session_factory,
    lifespan_session,
    resolve_database_url,
)
from .kafka import KafkaConsumerStub, KafkaProducerStub
from .money import format_cents, to_cents
from .tracing import provider_span

__all__ = [
    "ServiceSettings",
    "get_settings",
    "build_app",
    "instrument_app",
    "configure_logging",
    "current_tenant",
    "tenant_context",
    "DEFAULT_APP_NAME",
    "create_engine",
    "create_schema",
    "dispose_engines",
    "get_session_factory",
    "lifespan_session",
    "resolve_database_url",
    "KafkaProducerStub",
    "KafkaConsumerStub",
    "format_cents",
    "to_cents",
    "provider_span",
]
