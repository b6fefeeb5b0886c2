"""Immutable descriptors of source-side resources.

Captured once during validation from ARM payloads (see
``services.facts``) and never mutated afterwards.  Every later stage reads
these instead of re-querying the provider.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

from az_relocate.errors import PlacementGroupStateError

DiskRole = Literal["os", "data"]


@dataclass(frozen=True)
class DiskDescriptor:
    name: str
    id: str
    role: DiskRole
    sku: str
    size_gb: int | None = None
    lun: int | None = None  # data disks only
    iops: int | None = None
    mbps: int | None = None
    tier: str | None = None
    logical_sector_size: int | None = None
    caching: str = "None"
    disk_encryption_set_id: str | None = None
    zones: tuple[str, ...] = ()
    tags: dict[str, str] = field(default_factory=dict)
    os_type: str | None = None
    hyper_v_generation: str | None = None
    security_profile: dict | None = None
    max_shares: int | None = None
    write_accelerator: bool = False
    ade_enabled: bool = False


@dataclass(frozen=True)
class IpConfiguration:
    name: str
    primary: bool
    subnet_id: str | None
    allocation_method: str = "Dynamic"
    address_version: str = "IPv4"
    private_ip: str | None = None
    public_ip_id: str | None = None
    lb_backend_pool_ids: tuple[str, ...] = ()
    lb_inbound_nat_rule_ids: tuple[str, ...] = ()
    app_gateway_pool_ids: tuple[str, ...] = ()
    asg_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class NetworkDescriptor:
    id: str
    name: str
    location: str
    ip_configurations: tuple[IpConfiguration, ...]
    dns_servers: tuple[str, ...] = ()
    accelerated_networking: bool = False
    ip_forwarding: bool = False
    nsg_id: str | None = None
    tags: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class PlacementGroupMember:
    id: str
    zone: str | None
    power_state: str | None  # "running", "deallocated", ... or None if unknown


@dataclass(frozen=True)
class PlacementGroupFacts:
    id: str
    members: tuple[PlacementGroupMember, ...] = ()

    def others(self, source_vm_id: str) -> list[PlacementGroupMember]:
        """Members other than *source_vm_id* (ids compare case-insensitively)."""
        wanted = source_vm_id.lower()
        return [m for m in self.members if m.id.lower() != wanted]

    def pinned_zone(self, source_vm_id: str) -> str | None:
        """Zone the group is pinned to by its zonal members, ignoring the source.

        Raises :class:`PlacementGroupStateError` when zonal members disagree.
        """
        zones = {m.zone for m in self.others(source_vm_id) if m.zone}
        if len(zones) > 1:
            raise PlacementGroupStateError(self.id, list(zones))
        return next(iter(zones), None)


@dataclass(frozen=True)
class SkuAvailability:
    """Zone availability of one SKU in the source region."""

    name: str
    zones: tuple[str, ...] = ()
    restricted_zones: tuple[str, ...] = ()
    location_restricted: bool = False
    zone_capabilities: dict[str, dict] = field(default_factory=dict)

    def available_in(self, zone: str) -> bool:
        return (
            not self.location_restricted
            and zone in self.zones
            and zone not in self.restricted_zones
        )


@dataclass(frozen=True)
class VmFacts:
    """Everything read about the source VM, gathered once."""

    id: str
    name: str
    resource_group: str
    location: str
    vm_size: str
    zone: str | None
    power_state: str | None
    os_disk: DiskDescriptor
    data_disks: tuple[DiskDescriptor, ...]
    nic: NetworkDescriptor | None
    nic_count: int = 1
    placement_group: PlacementGroupFacts | None = None
    availability_set_id: str | None = None
    scale_set_id: str | None = None
    ephemeral_os_disk: bool = False
    identity: dict | None = None
    diagnostics_profile: dict | None = None
    priority: str | None = None
    eviction_policy: str | None = None
    max_price: float | None = None
    security_profile: dict | None = None
    license_type: str | None = None
    plan: dict | None = None
    hibernation_enabled: bool | None = None
    extension_types: tuple[str, ...] = ()
    tags: dict[str, str] = field(default_factory=dict)

    @property
    def disks(self) -> list[DiskDescriptor]:
        return [self.os_disk, *self.data_disks]
