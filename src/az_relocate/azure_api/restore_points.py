"""Restore point collections and crash-consistent restore points."""

from __future__ import annotations

import logging

from az_relocate.azure_api._auth import _provider_path, _resource_url
from az_relocate.azure_api._request import _arm_delete, _arm_get, _arm_put
from az_relocate.azure_api.compute import COMPUTE_API_VERSION

logger = logging.getLogger(__name__)


def _collection_path(subscription_id: str, resource_group: str, collection: str) -> str:
    return _provider_path(
        subscription_id, resource_group, "Microsoft.Compute", "restorePointCollections", collection
    )


def create_restore_point_collection(
    subscription_id: str,
    resource_group: str,
    name: str,
    body: dict,
    tenant_id: str | None = None,
) -> dict:
    """Create a restore point collection (``body.properties.source.id`` = VM id)."""
    logger.info("Creating restore point collection %s/%s", resource_group, name)
    url = _resource_url(
        _collection_path(subscription_id, resource_group, name), COMPUTE_API_VERSION
    )
    return _arm_put(url, body, tenant_id)


def get_restore_point_collection(
    subscription_id: str,
    resource_group: str,
    name: str,
    tenant_id: str | None = None,
) -> dict | None:
    """Return the restore point collection *name*, or ``None``."""
    url = _resource_url(
        _collection_path(subscription_id, resource_group, name), COMPUTE_API_VERSION
    )
    return _arm_get(url, tenant_id)


def delete_restore_point_collection(
    subscription_id: str,
    resource_group: str,
    name: str,
    tenant_id: str | None = None,
) -> None:
    """Delete a collection together with every restore point inside it."""
    logger.info("Deleting restore point collection %s/%s", resource_group, name)
    url = _resource_url(
        _collection_path(subscription_id, resource_group, name), COMPUTE_API_VERSION
    )
    _arm_delete(url, tenant_id)


def create_restore_point(
    subscription_id: str,
    resource_group: str,
    collection: str,
    name: str,
    body: dict,
    tenant_id: str | None = None,
) -> dict:
    """Create a restore point inside *collection*."""
    logger.info("Creating restore point %s/%s/%s", resource_group, collection, name)
    path = _collection_path(subscription_id, resource_group, collection) + f"/restorePoints/{name}"
    return _arm_put(_resource_url(path, COMPUTE_API_VERSION), body, tenant_id)


def get_restore_point(
    subscription_id: str,
    resource_group: str,
    collection: str,
    name: str,
    tenant_id: str | None = None,
) -> dict | None:
    """Return a restore point including its captured ``sourceMetadata``."""
    path = _collection_path(subscription_id, resource_group, collection) + f"/restorePoints/{name}"
    return _arm_get(_resource_url(path, COMPUTE_API_VERSION), tenant_id)
