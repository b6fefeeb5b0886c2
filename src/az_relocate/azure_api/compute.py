"""Virtual machines, power actions and proximity placement groups."""

from __future__ import annotations

import logging

from az_relocate.azure_api._auth import _provider_path, _resource_url
from az_relocate.azure_api._request import _arm_get, _arm_post, _arm_put

logger = logging.getLogger(__name__)

COMPUTE_API_VERSION = "2024-07-01"


def _vm_path(subscription_id: str, resource_group: str, name: str) -> str:
    return _provider_path(
        subscription_id, resource_group, "Microsoft.Compute", "virtualMachines", name
    )


def get_vm_by_id(
    resource_id: str,
    tenant_id: str | None = None,
    *,
    instance_view: bool = False,
) -> dict | None:
    """Return the VM definition for *resource_id*, or ``None`` if absent.

    With *instance_view* the payload carries ``properties.instanceView``
    (power state, extension statuses).
    """
    url = _resource_url(resource_id, COMPUTE_API_VERSION)
    if instance_view:
        url += "&$expand=instanceView"
    return _arm_get(url, tenant_id)


def get_vm(
    subscription_id: str,
    resource_group: str,
    name: str,
    tenant_id: str | None = None,
    *,
    instance_view: bool = False,
) -> dict | None:
    """Return the VM *name* in *resource_group*, or ``None`` if absent."""
    return get_vm_by_id(
        _vm_path(subscription_id, resource_group, name),
        tenant_id,
        instance_view=instance_view,
    )


def create_vm(
    subscription_id: str,
    resource_group: str,
    name: str,
    body: dict,
    tenant_id: str | None = None,
) -> dict:
    """Submit a VM definition. Provisioning continues asynchronously."""
    logger.info("Creating VM %s/%s", resource_group, name)
    url = _resource_url(_vm_path(subscription_id, resource_group, name), COMPUTE_API_VERSION)
    return _arm_put(url, body, tenant_id)


def deallocate_vm(
    subscription_id: str,
    resource_group: str,
    name: str,
    tenant_id: str | None = None,
) -> None:
    """Request deallocation of a VM. Completion must be polled."""
    logger.info("Deallocating VM %s/%s", resource_group, name)
    path = _vm_path(subscription_id, resource_group, name) + "/deallocate"
    _arm_post(_resource_url(path, COMPUTE_API_VERSION), tenant_id)


def power_state(vm: dict) -> str | None:
    """Return the ``PowerState/...`` suffix from a VM instance view, lower-cased."""
    statuses = vm.get("properties", {}).get("instanceView", {}).get("statuses", [])
    for status in statuses:
        code = status.get("code", "")
        if code.startswith("PowerState/"):
            return code.split("/", 1)[1].lower()
    return None


def get_proximity_placement_group(
    resource_id: str,
    tenant_id: str | None = None,
) -> dict | None:
    """Return a proximity placement group (with its member VM ids)."""
    return _arm_get(_resource_url(resource_id, COMPUTE_API_VERSION), tenant_id)
