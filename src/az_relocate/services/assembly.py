"""Request bodies for the replica network interface and virtual machine."""

from __future__ import annotations

import logging

from az_relocate.models.migration import DiskOutcome, MigrationPlan
from az_relocate.services._sku_rules import (
    PREMIUM_LRS_SKU,
    RELOCATED_FROM_TAG,
    ULTRA_SKU,
    effective_caching,
)

logger = logging.getLogger(__name__)


def _ref(resource_id: str) -> dict:
    return {"id": resource_id}


# ---------------------------------------------------------------------------
# Network interface
# ---------------------------------------------------------------------------


def build_nic_body(plan: MigrationPlan) -> dict:
    """PUT body for the replica NIC.

    IP configurations keep their subnet, load balancer / application gateway
    backend pools and application security groups.  Private addresses become
    dynamic; public IPs and inbound NAT rules stay with the source NIC, since
    both can only be attached to one interface at a time.
    """
    nic = plan.facts.nic
    if nic is None:
        raise ValueError(f"{plan.facts.name} has no network interface to replicate")

    ip_configs: list[dict] = []
    for cfg in nic.ip_configurations:
        props: dict = {
            "primary": cfg.primary,
            "privateIPAllocationMethod": "Dynamic",
            "privateIPAddressVersion": cfg.address_version,
        }
        if cfg.subnet_id:
            props["subnet"] = _ref(cfg.subnet_id)
        if cfg.lb_backend_pool_ids:
            props["loadBalancerBackendAddressPools"] = [
                _ref(i) for i in cfg.lb_backend_pool_ids
            ]
        if cfg.app_gateway_pool_ids:
            props["applicationGatewayBackendAddressPools"] = [
                _ref(i) for i in cfg.app_gateway_pool_ids
            ]
        if cfg.asg_ids:
            props["applicationSecurityGroups"] = [_ref(i) for i in cfg.asg_ids]
        ip_configs.append({"name": cfg.name, "properties": props})

    properties: dict = {
        "ipConfigurations": ip_configs,
        "enableAcceleratedNetworking": nic.accelerated_networking,
        "enableIPForwarding": nic.ip_forwarding,
    }
    if nic.dns_servers:
        properties["dnsSettings"] = {"dnsServers": list(nic.dns_servers)}
    if nic.nsg_id:
        properties["networkSecurityGroup"] = _ref(nic.nsg_id)

    return {
        "location": plan.facts.location,
        "tags": {**nic.tags, RELOCATED_FROM_TAG: nic.id},
        "properties": properties,
    }


# ---------------------------------------------------------------------------
# Virtual machine
# ---------------------------------------------------------------------------


def _disk_attachment(plan: MigrationPlan, outcome: DiskOutcome) -> dict:
    """Attach *outcome* using the caching mode allowed by its provisioned SKU."""
    source = next(d for d in plan.facts.disks if d.name == outcome.sourceDiskName)
    attachment: dict = {
        "name": outcome.diskName,
        "createOption": "Attach",
        "caching": effective_caching(outcome.sku, source.caching),
        "managedDisk": {"id": outcome.diskId, "storageAccountType": outcome.sku},
    }
    if source.write_accelerator and outcome.sku == PREMIUM_LRS_SKU:
        attachment["writeAcceleratorEnabled"] = True
    if outcome.role == "os":
        if source.os_type:
            attachment["osType"] = source.os_type
    else:
        attachment["lun"] = outcome.lun
    return attachment


def _mirrored_identity(identity: dict | None) -> dict | None:
    """System-assigned identities are re-created; user-assigned ones are re-linked."""
    if not identity or identity.get("type", "None") == "None":
        return None
    mirrored: dict = {"type": identity["type"]}
    user_assigned = identity.get("userAssignedIdentities")
    if user_assigned:
        mirrored["userAssignedIdentities"] = {key: {} for key in user_assigned}
    return mirrored


def build_vm_body(plan: MigrationPlan, disk_outcomes: list[DiskOutcome], nic_id: str) -> dict:
    """PUT body for the replica VM, attaching the provisioned disks and NIC."""
    facts = plan.facts
    os_outcome = next((o for o in disk_outcomes if o.role == "os"), None)
    if os_outcome is None or not os_outcome.diskId:
        raise ValueError(f"No provisioned OS disk for {facts.name}")
    data_outcomes = sorted(
        (o for o in disk_outcomes if o.role == "data"), key=lambda o: o.lun or 0
    )

    properties: dict = {
        "hardwareProfile": {"vmSize": plan.vm_size},
        "storageProfile": {
            "osDisk": _disk_attachment(plan, os_outcome),
            "dataDisks": [_disk_attachment(plan, o) for o in data_outcomes],
        },
        "networkProfile": {
            "networkInterfaces": [{"id": nic_id, "properties": {"primary": True}}]
        },
    }

    if any(o.sku == ULTRA_SKU for o in disk_outcomes):
        properties["additionalCapabilities"] = {"ultraSSDEnabled": True}
    if facts.hibernation_enabled is not None:
        properties.setdefault("additionalCapabilities", {})[
            "hibernationEnabled"
        ] = facts.hibernation_enabled
    if facts.diagnostics_profile:
        properties["diagnosticsProfile"] = facts.diagnostics_profile
    if facts.priority:
        properties["priority"] = facts.priority
        if facts.eviction_policy:
            properties["evictionPolicy"] = facts.eviction_policy
        if facts.max_price is not None:
            properties["billingProfile"] = {"maxPrice": facts.max_price}
    if facts.security_profile:
        properties["securityProfile"] = facts.security_profile
    if facts.license_type:
        properties["licenseType"] = facts.license_type
    if plan.placement.useGroup and plan.placement.groupId:
        properties["proximityPlacementGroup"] = _ref(plan.placement.groupId)

    body: dict = {
        "location": facts.location,
        "zones": [plan.target_zone],
        "tags": {**facts.tags, RELOCATED_FROM_TAG: facts.id},
        "properties": properties,
    }
    identity = _mirrored_identity(facts.identity)
    if identity:
        body["identity"] = identity
    if facts.plan:
        body["plan"] = facts.plan
    logger.debug(
        "Assembled VM body for %s: %s data disk(s), placement group=%s",
        plan.names.vm_name,
        len(data_outcomes),
        plan.placement.groupId if plan.placement.useGroup else None,
    )
    return body
