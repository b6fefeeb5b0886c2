"""Network interfaces."""

from __future__ import annotations

import logging

from az_relocate.azure_api._auth import _provider_path, _resource_url
from az_relocate.azure_api._request import _arm_get, _arm_put

logger = logging.getLogger(__name__)

NETWORK_API_VERSION = "2024-05-01"


def get_nic_by_id(resource_id: str, tenant_id: str | None = None) -> dict | None:
    """Return the network interface *resource_id*, or ``None``."""
    return _arm_get(_resource_url(resource_id, NETWORK_API_VERSION), tenant_id)


def get_nic(
    subscription_id: str,
    resource_group: str,
    name: str,
    tenant_id: str | None = None,
) -> dict | None:
    """Return the network interface *name* in *resource_group*, or ``None``."""
    path = _provider_path(
        subscription_id, resource_group, "Microsoft.Network", "networkInterfaces", name
    )
    return get_nic_by_id(path, tenant_id)


def create_nic(
    subscription_id: str,
    resource_group: str,
    name: str,
    body: dict,
    tenant_id: str | None = None,
) -> dict:
    """Submit a network interface definition."""
    logger.info("Creating network interface %s/%s", resource_group, name)
    path = _provider_path(
        subscription_id, resource_group, "Microsoft.Network", "networkInterfaces", name
    )
    return _arm_put(_resource_url(path, NETWORK_API_VERSION), body, tenant_id)
