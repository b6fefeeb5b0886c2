"""Fact gathering – read the source VM once and capture immutable descriptors.

Converts ARM payloads for the VM, its managed disks, its primary network
interface and its proximity placement group into the dataclasses of
:mod:`az_relocate.models.resources`.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor

from az_relocate import azure_api
from az_relocate.models.resources import (
    DiskDescriptor,
    DiskRole,
    IpConfiguration,
    NetworkDescriptor,
    PlacementGroupFacts,
    PlacementGroupMember,
    SkuAvailability,
    VmFacts,
)

logger = logging.getLogger(__name__)

_ADE_EXTENSION_MARKER = "azurediskencryption"


# ---------------------------------------------------------------------------
# Small helpers
# ---------------------------------------------------------------------------


def _ref_id(obj: dict | None) -> str | None:
    """Return ``obj["id"]`` for ``{"id": ...}`` sub-resource references."""
    if not obj:
        return None
    ref: str | None = obj.get("id")
    return ref


def _ref_ids(items: list[dict] | None) -> tuple[str, ...]:
    return tuple(i["id"] for i in items or [] if i.get("id"))


def _first_zone(resource: dict) -> str | None:
    zones = resource.get("zones") or []
    return zones[0] if zones else None


def _extension_types(vm: dict) -> tuple[str, ...]:
    """Extension types from the instance view and from child resources."""
    types: list[str] = []
    instance_view = vm.get("properties", {}).get("instanceView", {})
    for ext in instance_view.get("extensions", []):
        if ext.get("type"):
            types.append(ext["type"])
    for child in vm.get("resources", []):
        ext_type = child.get("properties", {}).get("type")
        if ext_type:
            types.append(ext_type)
    return tuple(dict.fromkeys(types))


# ---------------------------------------------------------------------------
# Descriptors
# ---------------------------------------------------------------------------


def disk_descriptor(vm_disk: dict, disk: dict, role: DiskRole) -> DiskDescriptor:
    """Build a :class:`DiskDescriptor` from the VM's disk entry and the disk itself.

    *vm_disk* is ``storageProfile.osDisk`` or one ``storageProfile.dataDisks``
    item and supplies LUN / caching / write accelerator; *disk* is the
    ``Microsoft.Compute/disks`` resource.
    """
    props = disk.get("properties", {})
    encryption = props.get("encryption", {})
    ade_collection = props.get("encryptionSettingsCollection") or {}
    vm_encryption = vm_disk.get("encryptionSettings") or {}
    return DiskDescriptor(
        name=disk["name"],
        id=disk["id"],
        role=role,
        sku=disk.get("sku", {}).get("name", ""),
        size_gb=props.get("diskSizeGB"),
        lun=vm_disk.get("lun") if role == "data" else None,
        iops=props.get("diskIOPSReadWrite"),
        mbps=props.get("diskMBpsReadWrite"),
        tier=props.get("tier"),
        logical_sector_size=props.get("creationData", {}).get("logicalSectorSize"),
        caching=vm_disk.get("caching") or "None",
        disk_encryption_set_id=encryption.get("diskEncryptionSetId"),
        zones=tuple(disk.get("zones") or ()),
        tags=dict(disk.get("tags") or {}),
        os_type=props.get("osType"),
        hyper_v_generation=props.get("hyperVGeneration"),
        security_profile=props.get("securityProfile"),
        max_shares=props.get("maxShares"),
        write_accelerator=bool(vm_disk.get("writeAcceleratorEnabled")),
        ade_enabled=bool(ade_collection.get("enabled") or vm_encryption.get("enabled")),
    )


def network_descriptor(nic: dict) -> NetworkDescriptor:
    """Build a :class:`NetworkDescriptor` from a ``networkInterfaces`` resource."""
    props = nic.get("properties", {})
    ip_configs: list[IpConfiguration] = []
    for cfg in props.get("ipConfigurations", []):
        cfg_props = cfg.get("properties", {})
        ip_configs.append(
            IpConfiguration(
                name=cfg["name"],
                primary=bool(cfg_props.get("primary", len(ip_configs) == 0)),
                subnet_id=_ref_id(cfg_props.get("subnet")),
                allocation_method=cfg_props.get("privateIPAllocationMethod", "Dynamic"),
                address_version=cfg_props.get("privateIPAddressVersion", "IPv4"),
                private_ip=cfg_props.get("privateIPAddress"),
                public_ip_id=_ref_id(cfg_props.get("publicIPAddress")),
                lb_backend_pool_ids=_ref_ids(cfg_props.get("loadBalancerBackendAddressPools")),
                lb_inbound_nat_rule_ids=_ref_ids(cfg_props.get("loadBalancerInboundNatRules")),
                app_gateway_pool_ids=_ref_ids(
                    cfg_props.get("applicationGatewayBackendAddressPools")
                ),
                asg_ids=_ref_ids(cfg_props.get("applicationSecurityGroups")),
            )
        )
    return NetworkDescriptor(
        id=nic["id"],
        name=nic["name"],
        location=nic.get("location", ""),
        ip_configurations=tuple(ip_configs),
        dns_servers=tuple(props.get("dnsSettings", {}).get("dnsServers", [])),
        accelerated_networking=bool(props.get("enableAcceleratedNetworking")),
        ip_forwarding=bool(props.get("enableIPForwarding")),
        nsg_id=_ref_id(props.get("networkSecurityGroup")),
        tags=dict(nic.get("tags") or {}),
    )


def placement_group_facts(group: dict, members: list[dict]) -> PlacementGroupFacts:
    """Build :class:`PlacementGroupFacts` from the group and its member VMs.

    *members* are VM payloads fetched with the instance view expanded.
    """
    return PlacementGroupFacts(
        id=group["id"],
        members=tuple(
            PlacementGroupMember(
                id=vm["id"],
                zone=_first_zone(vm),
                power_state=azure_api.power_state(vm),
            )
            for vm in members
        ),
    )


def sku_availability(sku: dict) -> SkuAvailability:
    """Convert a :func:`azure_api.get_skus` entry."""
    return SkuAvailability(
        name=sku.get("name") or "",
        zones=tuple(sku.get("zones", [])),
        restricted_zones=tuple(sku.get("restrictedZones", [])),
        location_restricted=bool(sku.get("locationRestricted")),
        zone_capabilities=dict(sku.get("zoneCapabilities", {})),
    )


# ---------------------------------------------------------------------------
# Gathering (ARM reads)
# ---------------------------------------------------------------------------


def gather_placement_group_facts(
    group_id: str, tenant_id: str | None = None
) -> PlacementGroupFacts:
    """Read a proximity placement group and the current state of every member VM."""
    group = azure_api.get_proximity_placement_group(group_id, tenant_id)
    if group is None:
        logger.warning("Placement group %s not found; treating it as empty", group_id)
        return PlacementGroupFacts(id=group_id)

    member_ids = _ref_ids(group.get("properties", {}).get("virtualMachines"))
    if not member_ids:
        return placement_group_facts(group, [])

    def _fetch(vm_id: str) -> dict | None:
        return azure_api.get_vm_by_id(vm_id, tenant_id, instance_view=True)

    with ThreadPoolExecutor(max_workers=min(len(member_ids), 8)) as pool:
        fetched = list(pool.map(_fetch, member_ids))

    members = [vm for vm in fetched if vm is not None]
    if len(members) != len(member_ids):
        logger.info(
            "Placement group %s lists %s member(s) that no longer exist",
            group_id,
            len(member_ids) - len(members),
        )
    return placement_group_facts(group, members)


def _fetch_disk(vm_disk: dict, tenant_id: str | None) -> dict:
    disk_id = vm_disk.get("managedDisk", {}).get("id")
    if not disk_id:
        raise LookupError(f"Disk {vm_disk.get('name')} is not a managed disk")
    disk = azure_api.get_disk_by_id(disk_id, tenant_id)
    if disk is None:
        raise LookupError(f"Managed disk {disk_id} not found")
    return disk


def _ephemeral_disk_payload(vm_disk: dict) -> dict:
    managed = vm_disk.get("managedDisk", {})
    return {
        "name": vm_disk.get("name", ""),
        "id": managed.get("id", ""),
        "sku": {"name": managed.get("storageAccountType", "")},
        "properties": {"diskSizeGB": vm_disk.get("diskSizeGB"), "osType": vm_disk.get("osType")},
    }


def gather_vm_facts(
    subscription_id: str,
    resource_group: str,
    vm_name: str,
    tenant_id: str | None = None,
) -> VmFacts | None:
    """Read the source VM and everything it references.

    Returns ``None`` when the VM does not exist.  Unmanaged (VHD-based)
    disks raise :class:`LookupError`.
    """
    vm = azure_api.get_vm(subscription_id, resource_group, vm_name, tenant_id, instance_view=True)
    if vm is None:
        return None

    props = vm.get("properties", {})
    storage = props.get("storageProfile", {})
    os_ref = storage.get("osDisk", {})
    if os_ref.get("diffDiskSettings"):
        # Ephemeral OS disks live on the host cache and have no disk resource.
        os_disk = disk_descriptor(os_ref, _ephemeral_disk_payload(os_ref), "os")
    else:
        os_disk = disk_descriptor(os_ref, _fetch_disk(os_ref, tenant_id), "os")
    data_disks = tuple(
        disk_descriptor(ref, _fetch_disk(ref, tenant_id), "data")
        for ref in sorted(storage.get("dataDisks", []), key=lambda d: d.get("lun", 0))
    )

    nic_refs = props.get("networkProfile", {}).get("networkInterfaces", [])
    primary_ref = next(
        (n for n in nic_refs if n.get("properties", {}).get("primary")),
        nic_refs[0] if nic_refs else None,
    )
    nic = None
    if primary_ref:
        nic_payload = azure_api.get_nic_by_id(primary_ref["id"], tenant_id)
        if nic_payload is not None:
            nic = network_descriptor(nic_payload)

    group_id = _ref_id(props.get("proximityPlacementGroup"))
    group = gather_placement_group_facts(group_id, tenant_id) if group_id else None

    billing = props.get("billingProfile") or {}
    facts = VmFacts(
        id=vm["id"],
        name=vm["name"],
        resource_group=resource_group,
        location=vm["location"],
        vm_size=props.get("hardwareProfile", {}).get("vmSize", ""),
        zone=_first_zone(vm),
        power_state=azure_api.power_state(vm),
        os_disk=os_disk,
        data_disks=data_disks,
        nic=nic,
        nic_count=len(nic_refs),
        placement_group=group,
        availability_set_id=_ref_id(props.get("availabilitySet")),
        scale_set_id=_ref_id(props.get("virtualMachineScaleSet")),
        ephemeral_os_disk=bool(os_ref.get("diffDiskSettings")),
        identity=vm.get("identity"),
        diagnostics_profile=props.get("diagnosticsProfile"),
        priority=props.get("priority"),
        eviction_policy=props.get("evictionPolicy"),
        max_price=billing.get("maxPrice"),
        security_profile=props.get("securityProfile"),
        license_type=props.get("licenseType"),
        plan=vm.get("plan"),
        hibernation_enabled=props.get("additionalCapabilities", {}).get("hibernationEnabled"),
        extension_types=_extension_types(vm),
        tags=dict(vm.get("tags") or {}),
    )
    logger.info(
        "Gathered facts for %s: size=%s zone=%s power=%s disks=%s",
        facts.name,
        facts.vm_size,
        facts.zone or "regional",
        facts.power_state,
        len(facts.disks),
    )
    return facts


def has_ade_extension(facts: VmFacts) -> bool:
    """Return True if an Azure Disk Encryption extension is installed."""
    return any(_ADE_EXTENSION_MARKER in t.lower() for t in facts.extension_types)
