"""Resource group lookup."""

from __future__ import annotations

from az_relocate.azure_api._auth import _resource_url
from az_relocate.azure_api._request import _arm_get

RESOURCES_API_VERSION = "2022-09-01"


def get_resource_group(
    subscription_id: str,
    resource_group: str,
    tenant_id: str | None = None,
) -> dict | None:
    """Return the resource group definition, or ``None`` if it does not exist."""
    path = f"/subscriptions/{subscription_id}/resourceGroups/{resource_group}"
    return _arm_get(_resource_url(path, RESOURCES_API_VERSION), tenant_id)
