"""Resource SKU catalog queries (VM sizes and managed disk SKUs)."""

from __future__ import annotations

import logging
import time

import requests

from az_relocate.azure_api._auth import AZURE_MGMT_URL, _get_headers
from az_relocate.azure_api._cache import _cache_set, _cached
from az_relocate.azure_api._pagination import _paginate

logger = logging.getLogger(__name__)

SKUS_API_VERSION = "2021-07-01"


def _parse_capability_value(value: str) -> str | bool | int | float:
    """Convert an ARM capability string to an appropriate Python type."""
    if value in ("True", "False"):
        return value == "True"
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        pass
    return value


def _fetch_catalog(region: str, subscription_id: str, tenant_id: str | None) -> list[dict]:
    """Fetch the raw ``Microsoft.Compute/skus`` catalog for *region* (cached)."""
    cache_key = f"skus:{subscription_id}:{region}:{tenant_id or ''}"
    cached = _cached(cache_key)
    if cached is not None:
        return cached  # type: ignore[return-value]

    headers = _get_headers(tenant_id)
    url = (
        f"{AZURE_MGMT_URL}/subscriptions/{subscription_id}/providers/"
        f"Microsoft.Compute/skus?api-version={SKUS_API_VERSION}"
        f"&$filter=location eq '{region}'"
    )

    all_skus: list[dict] = []

    # Simple retry with exponential backoff for transient timeouts
    for attempt in range(3):
        try:
            all_skus = _paginate(url, headers, timeout=60)
            break
        except requests.ReadTimeout:
            if attempt < 2:
                wait_time = 2**attempt
                logger.warning(
                    "SKU API timeout, retrying in %ss (attempt %s/3)", wait_time, attempt + 1
                )
                time.sleep(wait_time)
            else:
                raise

    _cache_set(cache_key, all_skus)
    return all_skus


def get_skus(
    region: str,
    subscription_id: str,
    tenant_id: str | None = None,
    resource_type: str = "virtualMachines",
) -> list[dict]:
    """Return SKUs of *resource_type* with zone and restriction info for *region*.

    Each entry has the shape::

        {
            "name": "Standard_D2s_v5",
            "zones": ["1", "2", "3"],
            "restrictedZones": ["3"],
            "locationRestricted": False,
            "zoneCapabilities": {"1": {"UltraSSDAvailable": True}},
            "capabilities": {"vCPUs": 2, ...},
        }

    ``restrictedZones`` collects ``Zone``-type restriction entries;
    ``locationRestricted`` is set by a ``Location``-type restriction that
    covers *region* (the SKU cannot be deployed anywhere in the region).
    """
    filtered: list[dict] = []
    for sku in _fetch_catalog(region, subscription_id, tenant_id):
        if sku.get("resourceType") != resource_type:
            continue

        zones_for_region: list[str] = []
        zone_capabilities: dict[str, dict[str, str | bool | int | float]] = {}
        for loc_info in sku.get("locationInfo", []):
            if loc_info.get("location", "").lower() == region.lower():
                zones_for_region = loc_info.get("zones", [])
                for detail in loc_info.get("zoneDetails", []):
                    caps = {
                        cap.get("name", ""): _parse_capability_value(cap.get("value", ""))
                        for cap in detail.get("capabilities", [])
                        if cap.get("name")
                    }
                    for zone in detail.get("name", []):
                        zone_capabilities.setdefault(zone, {}).update(caps)
                break

        restricted_zones: list[str] = []
        location_restricted = False
        for restriction in sku.get("restrictions", []):
            info = restriction.get("restrictionInfo", {})
            if restriction.get("type") == "Zone":
                restricted_zones.extend(info.get("zones", []))
            elif restriction.get("type") == "Location":
                locations = [loc.lower() for loc in info.get("locations", [])]
                if region.lower() in locations:
                    location_restricted = True

        capabilities: dict[str, str | bool | int | float] = {}
        for cap in sku.get("capabilities", []):
            cap_name = cap.get("name", "")
            if cap_name:
                capabilities[cap_name] = _parse_capability_value(cap.get("value", ""))

        filtered.append(
            {
                "name": sku.get("name"),
                "tier": sku.get("tier"),
                "size": sku.get("size"),
                "family": sku.get("family"),
                "zones": sorted(zones_for_region),
                "restrictedZones": sorted(set(restricted_zones)),
                "locationRestricted": location_restricted,
                "zoneCapabilities": zone_capabilities,
                "capabilities": capabilities,
            }
        )

    return sorted(filtered, key=lambda x: x.get("name") or "")


def find_sku(skus: list[dict], name: str) -> dict | None:
    """Return the catalog entry called *name* (case-insensitive), if any."""
    wanted = name.lower()
    for sku in skus:
        if (sku.get("name") or "").lower() == wanted:
            return sku
    return None
