from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_APP_NAME = "tenantpay-service"


class ServiceSettings(BaseSettings):
    """Base settings shared by the order and payment services."""

    app_name: str = Field(default=DEFAULT_APP_NAME)
    environment: Literal["local", "dev", "staging", "prod"] = Field(default="local")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(default="INFO")
    service_host: str = Field(default="0.0.0.0")
    service_port: int = Field(default=8000)
    enable_metrics: bool = Field(default=True)
    enable_tracing: bool = Field(default=False)
    tracing_endpoint: str | None = Field(default=None)
    tracing_protocol: Literal["http/protobuf", "grpc"] = Field(default="http/protobuf")
    tracing_insecure: bool = Field(default=True)
    tracing_sample_rate: float = Field(default=1.0, ge=0.0, le=1.0)
    database_url: str | None = Field(default=None)
    auto_create_schema: bool = Field(default=False)
    kafka_bootstrap_servers: str | None = Field(default=None)
    catalog_service_url: str | None = Field(default=None)
    payment_service_url: str | None = Field(default=None)
    http_timeout_seconds: float = Field(default=5.0, gt=0.0)
    paypal_live_base_url: str = Field(default="https://api-m.paypal.com")
    paypal_sandbox_base_url: str = Field(default="https://api-m.sandbox.paypal.com")
    paypal_brand_name: str = Field(default="Tenantpay")
    paypal_return_url: str = Field(default="https://example.com/paypal/return")
    paypal_cancel_url: str = Field(default="https://example.com/paypal/cancel")

    model_config = SettingsConfigDict(
        env_file=(".env", ".env.local"), env_prefix="TENANTPAY_", extra="ignore"
    )


@lru_cache
def get_settings() -> ServiceSettings:
    """Return cached service settings."""

    return ServiceSettings()
