"""Managed disks and snapshots."""

from __future__ import annotations

import logging

from az_relocate.azure_api._auth import _provider_path, _resource_url
from az_relocate.azure_api._request import _arm_delete, _arm_get, _arm_put

logger = logging.getLogger(__name__)

DISK_API_VERSION = "2024-03-02"


def _path(subscription_id: str, resource_group: str, kind: str, name: str) -> str:
    return _provider_path(subscription_id, resource_group, "Microsoft.Compute", kind, name)


def get_disk_by_id(resource_id: str, tenant_id: str | None = None) -> dict | None:
    """Return the managed disk *resource_id*, or ``None`` if absent."""
    return _arm_get(_resource_url(resource_id, DISK_API_VERSION), tenant_id)


def get_disk(
    subscription_id: str,
    resource_group: str,
    name: str,
    tenant_id: str | None = None,
) -> dict | None:
    """Return the managed disk *name* in *resource_group*, or ``None``."""
    return get_disk_by_id(_path(subscription_id, resource_group, "disks", name), tenant_id)


def create_disk(
    subscription_id: str,
    resource_group: str,
    name: str,
    body: dict,
    tenant_id: str | None = None,
) -> dict:
    """Submit a managed disk definition."""
    logger.info("Creating disk %s/%s", resource_group, name)
    url = _resource_url(_path(subscription_id, resource_group, "disks", name), DISK_API_VERSION)
    return _arm_put(url, body, tenant_id)


def get_snapshot(
    subscription_id: str,
    resource_group: str,
    name: str,
    tenant_id: str | None = None,
) -> dict | None:
    """Return the snapshot *name*, or ``None``."""
    url = _resource_url(_path(subscription_id, resource_group, "snapshots", name), DISK_API_VERSION)
    return _arm_get(url, tenant_id)


def create_snapshot(
    subscription_id: str,
    resource_group: str,
    name: str,
    body: dict,
    tenant_id: str | None = None,
) -> dict:
    """Submit a snapshot definition."""
    logger.info("Creating snapshot %s/%s", resource_group, name)
    url = _resource_url(_path(subscription_id, resource_group, "snapshots", name), DISK_API_VERSION)
    return _arm_put(url, body, tenant_id)


def delete_snapshot(
    subscription_id: str,
    resource_group: str,
    name: str,
    tenant_id: str | None = None,
) -> None:
    """Delete the snapshot *name*."""
    logger.info("Deleting snapshot %s/%s", resource_group, name)
    url = _resource_url(_path(subscription_id, resource_group, "snapshots", name), DISK_API_VERSION)
    _arm_delete(url, tenant_id)
