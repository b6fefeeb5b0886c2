"""Thin Azure ARM REST client.

Provides plain-data functions (dicts in, dicts out) over the compute, disk,
network and resource-group providers.  Services import this package as a
whole (``from az_relocate import azure_api``) and call ``azure_api.<name>``
so that tests can patch a single attribute here.
"""

import time as time  # noqa: F401  # re-export for mock patching

import requests as requests  # noqa: F401  # re-export for mock patching

# -- Auth & constants -------------------------------------------------------
from az_relocate.azure_api._auth import (  # noqa: F401
    AZURE_MGMT_URL,
    _get_headers,
    credential,
)

# -- Caches (exposed for test fixtures) -------------------------------------
from az_relocate.azure_api._cache import (  # noqa: F401
    _cache_set,
    _cached,
    _catalog_cache,
)

# -- Pagination --------------------------------------------------------------
from az_relocate.azure_api._pagination import _paginate  # noqa: F401

# -- Compute -----------------------------------------------------------------
from az_relocate.azure_api.compute import (  # noqa: F401
    COMPUTE_API_VERSION,
    create_vm,
    deallocate_vm,
    get_proximity_placement_group,
    get_vm,
    get_vm_by_id,
    power_state,
)

# -- Disks & snapshots -------------------------------------------------------
from az_relocate.azure_api.disks import (  # noqa: F401
    DISK_API_VERSION,
    create_disk,
    create_snapshot,
    delete_snapshot,
    get_disk,
    get_disk_by_id,
    get_snapshot,
)

# -- Network -----------------------------------------------------------------
from az_relocate.azure_api.network import (  # noqa: F401
    NETWORK_API_VERSION,
    create_nic,
    get_nic,
    get_nic_by_id,
)

# -- Resource groups ---------------------------------------------------------
from az_relocate.azure_api.resource_groups import (  # noqa: F401
    RESOURCES_API_VERSION,
    get_resource_group,
)

# -- Restore points ----------------------------------------------------------
from az_relocate.azure_api.restore_points import (  # noqa: F401
    create_restore_point,
    create_restore_point_collection,
    delete_restore_point_collection,
    get_restore_point,
    get_restore_point_collection,
)

# -- SKUs --------------------------------------------------------------------
from az_relocate.azure_api.skus import (  # noqa: F401
    SKUS_API_VERSION,
    _parse_capability_value,
    find_sku,
    get_skus,
)
