"""Tenant payment configuration: admin view, merge-on-save and the public projection."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any

from .gateways.base import PaymentGateway
from .gateways.config import InvalidProviderConfig, ProviderConfig, looks_like_secret_key
from .gateways.registry import GatewayRegistry
from .repository import PaymentRepository

_LOGGER = logging.getLogger(__name__)

MASKED_VALUE = "********"


class PaymentMethodUnavailable(Exception):
    """The provider is disabled platform-wide, or not configured/enabled for the tenant."""


def parse_config_json(raw: str | None) -> dict[str, Any]:
    if not raw or not raw.strip():
        return {}
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise InvalidProviderConfig("stored configuration is not valid JSON") from exc
    if not isinstance(value, dict):
        raise InvalidProviderConfig("stored configuration must be a JSON object")
    return value


def to_config_json(values: Mapping[str, Any]) -> str:
    return json.dumps(dict(values), sort_keys=True)


def masked_values(gateway: PaymentGateway, values: Mapping[str, Any]) -> dict[str, Any]:
    """Values keyed by schema field, with password-type fields replaced by a mask."""

    view: dict[str, Any] = {}
    for field in gateway.config_schema():
        if field.key not in values:
            continue
        value = values[field.key]
        view[field.key] = MASKED_VALUE if field.secret and value not in (None, "") else value
    return view


class PaymentConfigStore:
    def __init__(self, repository: PaymentRepository, registry: GatewayRegistry) -> None:
        self.repository = repository
        self.registry = registry

    async def platform_enabled(self, code: str) -> bool:
        row = await self.repository.get_method(code)
        return row is None or row.enabled

    async def require_enabled(self, tenant_id: int, gateway: PaymentGateway) -> ProviderConfig:
        """Return the tenant's validated config for ``gateway`` or raise if it cannot be used."""

        code = gateway.code()
        if not await self.platform_enabled(code):
            raise PaymentMethodUnavailable(f"{code} is disabled on this platform")
        row = await self.repository.get_config(tenant_id, code)
        if row is None:
            raise PaymentMethodUnavailable(f"{code} is not configured for tenant {tenant_id}")
        if not row.enabled:
            raise PaymentMethodUnavailable(f"{code} is disabled for tenant {tenant_id}")
        return gateway.parse_config(parse_config_json(row.config_json))

    async def admin_view(self, tenant_id: int) -> list[dict[str, Any]]:
        platform = await self.repository.list_methods()
        rows = await self.repository.list_configs(tenant_id)
        view = []
        for gateway in self.registry.all():
            code = gateway.code()
            if code in platform and not platform[code].enabled:
                continue
            row = rows.get(code)
            values = parse_config_json(row.config_json) if row is not None else {}
            view.append(
                {
                    "code": code,
                    "name": gateway.display_name(),
                    "enabled": bool(row is not None and row.enabled),
                    "schema": [field.as_dict() for field in gateway.config_schema()],
                    "values": masked_values(gateway, values),
                }
            )
        return view

    async def save(
        self,
        tenant_id: int,
        code: str,
        *,
        enabled: bool,
        values: Mapping[str, Any] | None,
    ) -> dict[str, Any]:
        """Enable (merging ``values`` over what is stored) or disable a provider.

        Masked placeholders are ignored so an admin form can be re-submitted
        unchanged. Enabling validates the merged document; disabling only flips
        the flag and leaves stored values alone.
        """

        gateway = self.registry.require(code)
        code = gateway.code()
        if not await self.platform_enabled(code):
            raise PaymentMethodUnavailable(f"{code} is disabled on this platform")

        row = await self.repository.get_config(tenant_id, code)
        config_json: str | None = None
        if enabled:
            merged = parse_config_json(row.config_json) if row is not None else {}
            for key, value in (values or {}).items():
                if value == MASKED_VALUE:
                    continue
                merged[key] = value
            gateway.parse_config(merged)
            config_json = to_config_json(merged)

        row = await self.repository.save_config(tenant_id, code, enabled=enabled, config_json=config_json)
        _LOGGER.info("Tenant %s %s payment method %s", tenant_id, "enabled" if enabled else "disabled", code)
        return {
            "code": code,
            "name": gateway.display_name(),
            "enabled": row.enabled,
            "schema": [field.as_dict() for field in gateway.config_schema()],
            "values": masked_values(gateway, parse_config_json(row.config_json)),
        }

    async def public_view(self, tenant_id: int) -> list[dict[str, Any]]:
        """Methods a client app may offer at checkout, with only their public settings."""

        platform = await self.repository.list_methods()
        rows = await self.repository.list_configs(tenant_id)
        view = []
        for gateway in self.registry.all():
            code = gateway.code()
            row = rows.get(code)
            if row is None or not row.enabled or (code in platform and not platform[code].enabled):
                continue
            try:
                config = gateway.parse_config(parse_config_json(row.config_json))
            except InvalidProviderConfig as exc:
                _LOGGER.warning("Skipping %s for tenant %s: %s", code, tenant_id, exc)
                continue
            public = gateway.public_checkout_config(config)
            if any(isinstance(value, str) and looks_like_secret_key(value) for value in public.values()):
                _LOGGER.error("Refusing to expose secret-looking %s setting for tenant %s", code, tenant_id)
                continue
            view.append({"code": code, "name": gateway.display_name(), "config": public})
        return view
