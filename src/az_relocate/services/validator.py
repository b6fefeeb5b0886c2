"""Pre-flight compatibility validator.

Gathers every source-side fact once, then evaluates independent rules and
collects *all* violations before anything is changed.  Each rule is a plain
function returning a list of :class:`Violation` so it can be tested on its
own.

Rules (deterministic):
- target zone must be one of ``settings.valid_zones``
- scope: target resource group must exist; it must differ from the source
  unless ``allow_same_resource_group``, in which case the replica name must
  differ from the source VM name
- a disk whose *target* SKU requires caching ``None`` must already use it
- the VM size must be offered in the target zone without a restriction
- Ultra / Premium SSD v2 target SKUs must be offered in the target zone
  (Ultra also needs ``UltraSSDAvailable`` on the VM size in that zone)
- Azure Disk Encryption blocks the move
- restore-point strategy: every disk must be restore-point compatible
- placement group: incompatible groups are violations under the ``fail``
  policy and warnings under ``skip``
- topology: multi-NIC, scale-set members and ephemeral OS disks are not
  supported
"""

from __future__ import annotations

import logging

from az_relocate import azure_api
from az_relocate.errors import ValidationError
from az_relocate.models.migration import (
    MigrationPlan,
    MigrationRequest,
    NamingPlan,
    PlacementDecision,
    ValidationReport,
    Violation,
)
from az_relocate.models.resources import DiskDescriptor, SkuAvailability, VmFacts
from az_relocate.services._sku_rules import (
    MAX_VM_NAME,
    ULTRA_SKU,
    is_zone_redundant,
    requires_no_caching,
    resolve_target_sku,
    zonal_name,
)
from az_relocate.services.facts import gather_vm_facts, has_ade_extension, sku_availability
from az_relocate.services.placement import resolve_placement_group
from az_relocate.services.snapshot_engine import check_restore_point_compatibility
from az_relocate.settings import RelocateSettings

logger = logging.getLogger(__name__)


def _target_skus(
    facts: VmFacts, os_sku: str | None, data_sku: str | None
) -> list[tuple[DiskDescriptor, str]]:
    """Pair every source disk with the SKU its replica will use."""
    return [
        (disk, resolve_target_sku(disk.sku, os_sku if disk.role == "os" else data_sku))
        for disk in facts.disks
    ]


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


def check_target_zone(zone: str, settings: RelocateSettings) -> list[Violation]:
    if zone in settings.valid_zones:
        return []
    return [
        Violation(
            kind="zone",
            message=(
                f"Target zone '{zone}' is not valid; expected one of "
                f"{', '.join(settings.valid_zones)}."
            ),
        )
    ]


def check_scope(
    request: MigrationRequest,
    replica_name: str,
    settings: RelocateSettings,
    *,
    target_group_exists: bool,
) -> list[Violation]:
    violations: list[Violation] = []
    target_rg = request.effective_target_resource_group
    if not target_group_exists:
        violations.append(
            Violation(
                kind="scope",
                resource=target_rg,
                message=f"Target resource group '{target_rg}' does not exist.",
            )
        )
    same_group = target_rg.lower() == request.resourceGroup.lower()
    if same_group and not settings.allow_same_resource_group:
        violations.append(
            Violation(
                kind="scope",
                resource=target_rg,
                message=(
                    "Target resource group must differ from the source resource group "
                    f"'{request.resourceGroup}'."
                ),
            )
        )
    elif same_group and replica_name.lower() == request.vmName.lower():
        violations.append(
            Violation(
                kind="scope",
                resource=replica_name,
                message=(
                    f"Replica name '{replica_name}' equals the source VM name in the same "
                    "resource group; choose a different target name or resource group."
                ),
            )
        )
    return violations


def check_caching(
    facts: VmFacts, os_sku: str | None, data_sku: str | None
) -> list[Violation]:
    """Disks going to a caching-``None`` SKU must already have caching ``None``."""
    violations: list[Violation] = []
    for disk, target_sku in _target_skus(facts, os_sku, data_sku):
        if requires_no_caching(target_sku) and disk.caching.lower() != "none":
            violations.append(
                Violation(
                    kind="caching",
                    resource=disk.name,
                    message=(
                        f"{disk.role.upper()} disk {disk.name} targets {target_sku}, which "
                        f"requires host caching 'None', but its caching is '{disk.caching}'."
                    ),
                )
            )
    return violations


def check_vm_sku(
    vm_size: str, zone: str, vm_skus: list[SkuAvailability]
) -> list[Violation]:
    sku = next((s for s in vm_skus if s.name.lower() == vm_size.lower()), None)
    if sku is None:
        message = f"VM size {vm_size} is not offered in this region."
    elif sku.location_restricted:
        message = f"VM size {vm_size} is restricted for this subscription in this region."
    elif zone not in sku.zones:
        available = ", ".join(sku.zones) or "none"
        message = f"VM size {vm_size} is not available in zone {zone} (zones: {available})."
    elif zone in sku.restricted_zones:
        message = f"VM size {vm_size} is restricted in zone {zone} for this subscription."
    else:
        return []
    return [Violation(kind="vm_sku", resource=vm_size, message=message)]


def check_disk_skus(
    facts: VmFacts,
    os_sku: str | None,
    data_sku: str | None,
    vm_size: str,
    zone: str,
    disk_skus: list[SkuAvailability],
    vm_skus: list[SkuAvailability],
) -> list[Violation]:
    """Caching-``None`` class SKUs have narrow zonal footprints; check each one used."""
    violations: list[Violation] = []
    wanted = sorted(
        {sku for _, sku in _target_skus(facts, os_sku, data_sku) if requires_no_caching(sku)}
    )
    for sku_name in wanted:
        entries = [s for s in disk_skus if s.name.lower() == sku_name.lower()]
        if not any(e.available_in(zone) for e in entries):
            violations.append(
                Violation(
                    kind="disk_sku",
                    resource=sku_name,
                    message=f"Disk SKU {sku_name} is not available in zone {zone}.",
                )
            )
        if sku_name == ULTRA_SKU:
            vm_sku = next((s for s in vm_skus if s.name.lower() == vm_size.lower()), None)
            caps = vm_sku.zone_capabilities.get(zone, {}) if vm_sku else {}
            if caps.get("UltraSSDAvailable") is not True:
                violations.append(
                    Violation(
                        kind="vm_sku",
                        resource=vm_size,
                        message=(
                            f"VM size {vm_size} cannot attach {ULTRA_SKU} disks in zone {zone}."
                        ),
                    )
                )
    return violations


def check_encryption(facts: VmFacts) -> list[Violation]:
    """Azure Disk Encryption volumes cannot be transplanted."""
    encrypted = [d.name for d in facts.disks if d.ade_enabled]
    if not encrypted and not has_ade_extension(facts):
        return []
    detail = f" (disks: {', '.join(encrypted)})" if encrypted else ""
    return [
        Violation(
            kind="encryption",
            resource=facts.name,
            message=(
                f"Azure Disk Encryption is enabled on {facts.name}{detail}; "
                "encrypted volumes cannot be relocated."
            ),
        )
    ]


def check_topology(facts: VmFacts, settings: RelocateSettings) -> list[Violation]:
    violations: list[Violation] = []
    if facts.nic_count > 1:
        violations.append(
            Violation(
                kind="topology",
                resource=facts.name,
                message=(
                    f"{facts.name} has {facts.nic_count} network interfaces; "
                    "only one is supported."
                ),
            )
        )
    if facts.nic is None:
        violations.append(
            Violation(
                kind="topology",
                resource=facts.name,
                message=f"{facts.name} has no readable network interface.",
            )
        )
    if facts.scale_set_id:
        violations.append(
            Violation(
                kind="topology",
                resource=facts.name,
                message=f"{facts.name} is a scale set member and cannot be relocated.",
            )
        )
    if facts.ephemeral_os_disk and settings.copy_strategy == "snapshot":
        violations.append(
            Violation(
                kind="topology",
                resource=facts.os_disk.name,
                message=f"OS disk {facts.os_disk.name} is ephemeral and cannot be snapshotted.",
            )
        )
    return violations


def check_restore_point(facts: VmFacts, settings: RelocateSettings) -> list[Violation]:
    if settings.copy_strategy != "restore_point":
        return []
    return check_restore_point_compatibility(facts)


def check_placement(
    decision: PlacementDecision, settings: RelocateSettings
) -> tuple[list[Violation], list[str]]:
    """Apply the placement group policy to a resolver decision."""
    if decision.compatible:
        return [], []
    if settings.placement_group_policy == "skip":
        return [], [f"{decision.detail} The replica will be created outside the group."]
    return [
        Violation(kind="placement_group", resource=decision.groupId, message=decision.detail)
    ], []


# ---------------------------------------------------------------------------
# Warnings (never blocking)
# ---------------------------------------------------------------------------


def collect_warnings(
    facts: VmFacts, zone: str, os_sku: str | None, data_sku: str | None
) -> list[str]:
    warnings: list[str] = []
    if facts.zone == zone:
        warnings.append(f"{facts.name} is already in zone {zone}.")
    if facts.availability_set_id:
        warnings.append(
            f"{facts.name} belongs to an availability set; zonal VMs cannot join it, "
            "so the replica will not."
        )
    if facts.extension_types:
        warnings.append(
            "VM extensions are not replicated: " + ", ".join(facts.extension_types) + "."
        )
    if facts.nic:
        for cfg in facts.nic.ip_configurations:
            if cfg.public_ip_id:
                warnings.append(
                    f"IP configuration {cfg.name} has a public IP; the replica gets none."
                )
            if cfg.allocation_method.lower() == "static":
                warnings.append(
                    f"IP configuration {cfg.name} uses static address {cfg.private_ip}; "
                    "the replica gets a dynamic address."
                )
            if cfg.lb_inbound_nat_rule_ids:
                warnings.append(
                    f"IP configuration {cfg.name} has inbound NAT rules; they stay with the "
                    "source NIC."
                )
    for disk, target_sku in _target_skus(facts, os_sku, data_sku):
        if is_zone_redundant(target_sku):
            warnings.append(
                f"Disk {disk.name} uses {target_sku}; the replica is zone-redundant, "
                "not pinned to a zone."
            )
    return warnings


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


def build_naming_plan(facts: VmFacts, request: MigrationRequest) -> NamingPlan:
    zone = request.targetZone
    same_group = request.effective_target_resource_group.lower() == facts.resource_group.lower()
    if request.targetVmName:
        vm_name = request.targetVmName
    elif same_group:
        vm_name = zonal_name(facts.name, zone, MAX_VM_NAME)
    else:
        vm_name = facts.name
    nic_base = facts.nic.name if facts.nic else f"{vm_name}-nic"
    return NamingPlan(
        vm_name=vm_name,
        nic_name=zonal_name(nic_base, zone),
        disk_names={d.name: zonal_name(d.name, zone) for d in facts.disks},
    )


def validate(
    request: MigrationRequest, settings: RelocateSettings
) -> tuple[ValidationReport, MigrationPlan | None]:
    """Run every rule and return the report plus, when clean, the plan.

    Raises :class:`~az_relocate.errors.PlacementGroupStateError` when the
    placement group's zonal members disagree.
    """
    zone = request.targetZone
    report = ValidationReport(vmName=request.vmName, targetZone=zone)
    report.violations.extend(check_target_zone(zone, settings))

    try:
        facts = gather_vm_facts(
            request.subscriptionId, request.resourceGroup, request.vmName, request.tenantId
        )
    except LookupError as exc:
        report.violations.append(
            Violation(kind="topology", resource=request.vmName, message=str(exc))
        )
        return report, None
    if facts is None:
        report.violations.append(
            Violation(
                kind="scope",
                resource=request.vmName,
                message=f"VM {request.vmName} not found in resource group {request.resourceGroup}.",
            )
        )
        return report, None

    target_rg = request.effective_target_resource_group
    names = build_naming_plan(facts, request)
    vm_size = request.vmSize or facts.vm_size
    target_group = azure_api.get_resource_group(request.subscriptionId, target_rg, request.tenantId)
    vm_skus = [
        sku_availability(s)
        for s in azure_api.get_skus(facts.location, request.subscriptionId, request.tenantId)
    ]
    disk_skus = [
        sku_availability(s)
        for s in azure_api.get_skus(
            facts.location, request.subscriptionId, request.tenantId, resource_type="disks"
        )
    ]
    decision = resolve_placement_group(facts.placement_group, facts.id, zone)
    placement_violations, placement_warnings = check_placement(decision, settings)

    report.violations.extend(
        check_scope(request, names.vm_name, settings, target_group_exists=target_group is not None)
    )
    report.violations.extend(check_caching(facts, request.osDiskSku, request.dataDiskSku))
    report.violations.extend(check_vm_sku(vm_size, zone, vm_skus))
    report.violations.extend(
        check_disk_skus(
            facts, request.osDiskSku, request.dataDiskSku, vm_size, zone, disk_skus, vm_skus
        )
    )
    report.violations.extend(check_encryption(facts))
    report.violations.extend(check_restore_point(facts, settings))
    report.violations.extend(check_topology(facts, settings))
    report.violations.extend(placement_violations)

    report.warnings.extend(collect_warnings(facts, zone, request.osDiskSku, request.dataDiskSku))
    report.warnings.extend(placement_warnings)

    for violation in report.violations:
        logger.info("Violation [%s] %s", violation.kind, violation.message)
    if not report.ok:
        return report, None

    if not decision.compatible:
        decision = decision.model_copy(update={"useGroup": False})
    plan = MigrationPlan(
        request=request,
        facts=facts,
        target_zone=zone,
        target_resource_group=target_rg,
        vm_size=vm_size,
        os_disk_sku=request.osDiskSku,
        data_disk_sku=request.dataDiskSku,
        placement=decision,
        names=names,
        warnings=tuple(report.warnings),
    )
    return report, plan


def require_valid(request: MigrationRequest, settings: RelocateSettings) -> MigrationPlan:
    """Like :func:`validate` but raises :class:`ValidationError` on any violation."""
    report, plan = validate(request, settings)
    if plan is None:
        raise ValidationError(report)
    return plan
