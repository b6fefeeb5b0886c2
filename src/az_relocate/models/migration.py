"""Pydantic models for zone relocation requests, reports and results.

Request/response models use the camelCase field names of the HTTP and MCP
surfaces.  ``MigrationPlan`` is the internal, immutable output of the
validator and is never serialised directly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

from pydantic import BaseModel, Field

from az_relocate.models.resources import DiskDescriptor, VmFacts
from az_relocate.services._sku_rules import resolve_target_sku

# ---------------------------------------------------------------------------
# Request
# ---------------------------------------------------------------------------


class MigrationRequest(BaseModel):
    subscriptionId: str
    tenantId: str | None = None
    resourceGroup: str
    vmName: str
    targetZone: str
    targetResourceGroup: str | None = None
    targetVmName: str | None = None
    vmSize: str | None = None
    osDiskSku: str | None = None
    dataDiskSku: str | None = None
    whatIf: bool = False

    @property
    def effective_target_resource_group(self) -> str:
        return self.targetResourceGroup or self.resourceGroup


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

ViolationKind = Literal[
    "zone",
    "scope",
    "caching",
    "vm_sku",
    "disk_sku",
    "encryption",
    "restore_point",
    "placement_group",
    "topology",
]


class Violation(BaseModel):
    kind: ViolationKind
    message: str
    resource: str | None = None


class ValidationReport(BaseModel):
    vmName: str
    targetZone: str
    violations: list[Violation] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.violations

    def kinds(self) -> set[str]:
        return {v.kind for v in self.violations}


# ---------------------------------------------------------------------------
# Placement group decision
# ---------------------------------------------------------------------------

PlacementReason = Literal[
    "no_group",
    "open",
    "unpinned",
    "pinned_to_target",
    "pinned_to_other_zone",
    "regional_members_running",
]


class PlacementDecision(BaseModel):
    useGroup: bool
    reason: PlacementReason
    groupId: str | None = None
    pinnedZone: str | None = None
    detail: str = ""

    @property
    def compatible(self) -> bool:
        return self.reason in ("no_group", "open", "unpinned", "pinned_to_target")


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

MigrationStage = Literal[
    "validate",
    "quiesce",
    "copy",
    "provision_disks",
    "provision_network",
    "assemble_instance",
    "cleanup",
    "done",
]


class DiskOutcome(BaseModel):
    diskName: str
    sourceDiskName: str
    role: Literal["os", "data"]
    status: Literal["created", "existing", "failed"]
    sku: str
    diskId: str | None = None
    lun: int | None = None
    attempts: int = 0
    error: str | None = None


class MigrationResult(BaseModel):
    vmName: str
    targetZone: str
    whatIf: bool = False
    stage: MigrationStage = "validate"
    diskIds: list[str] = Field(default_factory=list)
    nicId: str | None = None
    vmId: str | None = None
    copyArtifacts: list[str] = Field(default_factory=list)
    diskOutcomes: list[DiskOutcome] = Field(default_factory=list)
    plannedActions: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.stage == "done" and not self.errors


# ---------------------------------------------------------------------------
# Plan (internal)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NamingPlan:
    vm_name: str
    nic_name: str
    disk_names: dict[str, str] = field(default_factory=dict)  # source -> replica


@dataclass(frozen=True)
class MigrationPlan:
    """Validated, read-only bundle consumed by the orchestrator."""

    request: MigrationRequest
    facts: VmFacts
    target_zone: str
    target_resource_group: str
    vm_size: str
    os_disk_sku: str | None
    data_disk_sku: str | None
    placement: PlacementDecision
    names: NamingPlan
    warnings: tuple[str, ...] = ()

    @property
    def subscription_id(self) -> str:
        return self.request.subscriptionId

    @property
    def tenant_id(self) -> str | None:
        return self.request.tenantId

    def effective_sku(self, disk: DiskDescriptor) -> str:
        """SKU the replica of *disk* will be created with."""
        requested = self.os_disk_sku if disk.role == "os" else self.data_disk_sku
        return resolve_target_sku(disk.sku, requested)

    def replica_disk_name(self, disk: DiskDescriptor) -> str:
        return self.names.disk_names[disk.name]
