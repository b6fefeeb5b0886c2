"""Disk SKU classes and resource naming helpers.

Pure functions shared by the validator, the snapshot engine, the disk
provisioner and the VM assembler.  No I/O.
"""

from __future__ import annotations

import hashlib
from datetime import datetime

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

ULTRA_SKU = "UltraSSD_LRS"
PREMIUM_V2_SKU = "PremiumV2_LRS"
PREMIUM_LRS_SKU = "Premium_LRS"

# Ultra and Premium SSD v2 disks: host caching must be "None", and their
# performance settings (IOPS / MBps / tier) follow different rules than the
# classic SKUs, so values are not carried over when converting into them.
ADVANCED_DISK_SKUS: frozenset[str] = frozenset({ULTRA_SKU, PREMIUM_V2_SKU})
CACHING_NONE_SKUS: frozenset[str] = ADVANCED_DISK_SKUS

# Incremental snapshots of these SKUs support instant access.
INSTANT_ACCESS_SKUS: frozenset[str] = ADVANCED_DISK_SKUS

# Snapshot / disk / NIC names are limited to 80 characters, VM names to 64.
MAX_RESOURCE_NAME = 80
MAX_VM_NAME = 64

# Hex digits of the full base name kept when a name has to be shortened.
_NAME_HASH_LENGTH = 6

# Tag linking every created resource to the source resource it replicates.
RELOCATED_FROM_TAG = "relocatedFrom"

_TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"


# ---------------------------------------------------------------------------
# SKU classification
# ---------------------------------------------------------------------------


def _canonical(sku: str) -> str:
    lowered = sku.lower()
    for known in (ULTRA_SKU, PREMIUM_V2_SKU):
        if known.lower() == lowered:
            return known
    return sku


def is_advanced_sku(sku: str | None) -> bool:
    """Return True for the Ultra / Premium SSD v2 class."""
    if not sku:
        return False
    return _canonical(sku) in ADVANCED_DISK_SKUS


def requires_no_caching(sku: str | None) -> bool:
    """Return True if disks of *sku* must use host caching ``None``."""
    if not sku:
        return False
    return _canonical(sku) in CACHING_NONE_SKUS


def supports_instant_access(sku: str | None) -> bool:
    """Return True if incremental snapshots of *sku* can be instant-access."""
    if not sku:
        return False
    return _canonical(sku) in INSTANT_ACCESS_SKUS


def is_zone_redundant(sku: str | None) -> bool:
    """Return True for ``*_ZRS`` SKUs, which cannot be pinned to a zone."""
    return sku is not None and sku.upper().endswith("_ZRS")


def resolve_target_sku(source_sku: str, requested_sku: str | None) -> str:
    """Return the SKU a replica disk is created with (``None`` keeps the source)."""
    return requested_sku or source_sku


def effective_caching(sku: str, caching: str | None) -> str:
    """Host caching for a disk of *sku*: forced to ``None`` on the advanced class."""
    if requires_no_caching(sku):
        return "None"
    return caching or "None"


# ---------------------------------------------------------------------------
# Naming
# ---------------------------------------------------------------------------


def timestamp_suffix(now: datetime) -> str:
    """Fixed-width timestamp used to keep copy artefact names unique."""
    return now.strftime(_TIMESTAMP_FORMAT)


def bounded_name(base: str, suffix: str, max_length: int = MAX_RESOURCE_NAME) -> str:
    """Join *base* and *suffix*, truncating *base* so the result fits *max_length*.

    The suffix is always kept intact.  A truncated base is followed by a short
    hash of the full base, so two long names sharing a prefix stay distinct;
    trailing separators left over by the truncation are stripped.
    """
    if len(base) + len(suffix) <= max_length:
        return f"{base}{suffix}"
    digest = hashlib.sha256(base.encode()).hexdigest()[:_NAME_HASH_LENGTH]
    tail = f"-{digest}{suffix}"
    room = max_length - len(tail)
    if room <= 0:
        return tail[-max_length:]
    trimmed = base[:room].rstrip("-_.")
    return f"{trimmed}{tail}"


def zonal_name(base: str, zone: str, max_length: int = MAX_RESOURCE_NAME) -> str:
    """Name of a replica resource pinned to *zone*, e.g. ``datadisk1-z2``."""
    return bounded_name(base, f"-z{zone}", max_length)
