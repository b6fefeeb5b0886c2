"""Point-in-time copies of the source VM's disks.

Two strategies produce the same thing – one copy handle per source disk –
so the disk provisioner never needs to know which one ran:

* :class:`SnapshotCopyStrategy` takes one incremental snapshot per disk.
  Ultra / Premium SSD v2 snapshots request instant access and are usable
  as soon as they reach an instant-access state.
* :class:`RestorePointCopyStrategy` takes a single crash-consistent restore
  point across all disks, which keeps write order consistent between them.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Collection
from dataclasses import dataclass, field
from datetime import UTC, datetime
from functools import partial
from typing import Protocol

from az_relocate import azure_api
from az_relocate.errors import ProvisioningError, ValidationError
from az_relocate.models.migration import MigrationPlan, ValidationReport, Violation
from az_relocate.models.resources import DiskDescriptor, VmFacts
from az_relocate.services._sku_rules import (
    ADVANCED_DISK_SKUS,
    RELOCATED_FROM_TAG,
    bounded_name,
    supports_instant_access,
    timestamp_suffix,
)
from az_relocate.services.poller import (
    OperationStatus,
    backoff_from_settings,
    resource_status,
    wait_for_operation,
)
from az_relocate.settings import RelocateSettings

logger = logging.getLogger(__name__)

# States in which an instant-access snapshot can already be read from.
INSTANT_ACCESS_READY_STATES: frozenset[str] = frozenset(
    {"InstantAccess", "AvailableWithInstantAccess", "Available"}
)


@dataclass(frozen=True)
class CopyHandle:
    """Where a replica disk copies its data from."""

    source_resource_id: str
    create_option: str  # "Copy" (snapshot) or "Restore" (disk restore point)


class CopySource(Protocol):
    """Anything that can hand out a copy handle per source disk name."""

    def handle_for(self, disk_name: str) -> CopyHandle: ...

    def artifact_ids(self) -> list[str]: ...

    def cleanup(self) -> list[str]: ...


# ---------------------------------------------------------------------------
# Restore point compatibility
# ---------------------------------------------------------------------------


def check_restore_point_compatibility(
    facts: VmFacts,
) -> list[Violation]:
    """Return one violation per disk that cannot join a crash-consistent restore point."""
    violations: list[Violation] = []
    if facts.ephemeral_os_disk:
        violations.append(
            Violation(
                kind="restore_point",
                resource=facts.os_disk.name,
                message=(
                    f"OS disk {facts.os_disk.name} is ephemeral; "
                    "restore points cannot capture ephemeral OS disks."
                ),
            )
        )
    for disk in facts.disks:
        if disk.role == "os" and facts.ephemeral_os_disk:
            continue
        if disk.sku in ADVANCED_DISK_SKUS:
            violations.append(
                Violation(
                    kind="restore_point",
                    resource=disk.name,
                    message=(
                        f"Disk {disk.name} uses {disk.sku}; crash-consistent restore "
                        "points do not support this SKU. Use the snapshot strategy."
                    ),
                )
            )
        if disk.write_accelerator:
            violations.append(
                Violation(
                    kind="restore_point",
                    resource=disk.name,
                    message=(
                        f"Disk {disk.name} has Write Accelerator enabled; "
                        "restore points cannot include write-accelerated disks."
                    ),
                )
            )
        if (disk.max_shares or 1) > 1:
            violations.append(
                Violation(
                    kind="restore_point",
                    resource=disk.name,
                    message=(
                        f"Disk {disk.name} is a shared disk (maxShares={disk.max_shares}); "
                        "restore points cannot include multi-attach disks."
                    ),
                )
            )
    return violations


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


@dataclass
class _CopyContext:
    plan: MigrationPlan
    settings: RelocateSettings
    clock: Callable[[], float] = time.monotonic
    sleep: Callable[[float], None] = time.sleep
    now: Callable[[], datetime] = field(default=lambda: datetime.now(UTC))

    def wait(
        self,
        fetch: Callable[[], OperationStatus | None],
        description: str,
        ready_states: Collection[str] | None = None,
    ) -> None:
        wait_for_operation(
            fetch,
            description=description,
            timeout=self.settings.operation_timeout,
            backoff=backoff_from_settings(self.settings),
            ready_states=ready_states,
            clock=self.clock,
            sleep=self.sleep,
        )


@dataclass
class SnapshotCopyStrategy:
    """Incremental snapshot per disk."""

    context: _CopyContext
    snapshots: dict[str, tuple[str, str]] = field(default_factory=dict)  # disk -> (name, id)

    def _snapshot_body(self, disk: DiskDescriptor) -> dict:
        creation: dict = {"createOption": "Copy", "sourceResourceId": disk.id}
        if supports_instant_access(disk.sku):
            creation["instantAccessDurationMinutes"] = self.context.settings.instant_access_minutes
        return {
            "location": self.context.plan.facts.location,
            "tags": {RELOCATED_FROM_TAG: disk.id},
            "properties": {"creationData": creation, "incremental": True},
        }

    def _status(self, name: str, instant: bool) -> OperationStatus | None:
        plan = self.context.plan
        snapshot = azure_api.get_snapshot(
            plan.subscription_id, plan.target_resource_group, name, plan.tenant_id
        )
        return resource_status(snapshot, "snapshotAccessState" if instant else None)

    def capture(self, disks: list[DiskDescriptor]) -> None:
        """Request every snapshot first, then wait for each to become usable."""
        plan = self.context.plan
        suffix = "-snap-" + timestamp_suffix(self.context.now())
        for disk in disks:
            name = bounded_name(disk.name, suffix)
            try:
                created = azure_api.create_snapshot(
                    plan.subscription_id,
                    plan.target_resource_group,
                    name,
                    self._snapshot_body(disk),
                    plan.tenant_id,
                )
            except Exception as exc:
                raise ProvisioningError(
                    f"Snapshot {name} of disk {disk.name} could not be created: {exc}",
                    resource=name,
                ) from exc
            self.snapshots[disk.name] = (name, created.get("id") or _snapshot_id(plan, name))

        for disk in disks:
            name, _ = self.snapshots[disk.name]
            instant = supports_instant_access(disk.sku)
            self.context.wait(
                partial(self._status, name, instant),
                f"snapshot {name}",
                ready_states=INSTANT_ACCESS_READY_STATES if instant else None,
            )
            logger.info("Snapshot %s of %s is ready", name, disk.name)

    def handle_for(self, disk_name: str) -> CopyHandle:
        if disk_name not in self.snapshots:
            raise ProvisioningError(
                f"No snapshot was taken of disk {disk_name}", resource=disk_name
            )
        _, snapshot_id = self.snapshots[disk_name]
        return CopyHandle(source_resource_id=snapshot_id, create_option="Copy")

    def artifact_ids(self) -> list[str]:
        return [sid for _, sid in self.snapshots.values()]

    def cleanup(self) -> list[str]:
        plan = self.context.plan
        warnings: list[str] = []
        for disk_name, (name, _) in self.snapshots.items():
            try:
                azure_api.delete_snapshot(
                    plan.subscription_id, plan.target_resource_group, name, plan.tenant_id
                )
            except Exception as exc:
                logger.warning("Failed to delete snapshot %s: %s", name, exc)
                warnings.append(f"Snapshot {name} (of {disk_name}) was not deleted: {exc}")
        return warnings


@dataclass
class RestorePointCopyStrategy:
    """One crash-consistent restore point covering every disk."""

    context: _CopyContext
    collection_name: str | None = None
    collection_id: str | None = None
    restore_point_id: str | None = None
    disk_restore_points: dict[str, str] = field(default_factory=dict)  # disk -> id

    def capture(self, disks: list[DiskDescriptor]) -> None:
        plan = self.context.plan
        facts = plan.facts
        blockers = check_restore_point_compatibility(facts)
        if blockers:
            raise ValidationError(
                ValidationReport(
                    vmName=facts.name, targetZone=plan.target_zone, violations=blockers
                )
            )

        stamp = timestamp_suffix(self.context.now())
        collection = bounded_name(f"rpc-{facts.name}", f"-{stamp}")
        point = f"rp-{stamp}"
        sub, rg, tenant = plan.subscription_id, plan.target_resource_group, plan.tenant_id

        try:
            created = azure_api.create_restore_point_collection(
                sub,
                rg,
                collection,
                {"location": facts.location, "properties": {"source": {"id": facts.id}}},
                tenant,
            )
        except Exception as exc:
            raise ProvisioningError(
                f"Restore point collection {collection} could not be created: {exc}",
                resource=collection,
            ) from exc
        self.collection_name = collection
        self.collection_id = created.get("id") or _collection_id(plan, collection)
        self.context.wait(
            lambda: resource_status(
                azure_api.get_restore_point_collection(sub, rg, collection, tenant)
            ),
            f"restore point collection {collection}",
        )

        try:
            azure_api.create_restore_point(
                sub,
                rg,
                collection,
                point,
                {"properties": {"consistencyMode": "CrashConsistent"}},
                tenant,
            )
        except Exception as exc:
            raise ProvisioningError(
                f"Restore point {collection}/{point} could not be created: {exc}",
                resource=point,
            ) from exc
        self.context.wait(
            lambda: resource_status(
                azure_api.get_restore_point(sub, rg, collection, point, tenant)
            ),
            f"restore point {collection}/{point}",
        )

        restore_point = azure_api.get_restore_point(sub, rg, collection, point, tenant) or {}
        self.restore_point_id = restore_point.get("id")
        self.disk_restore_points = _disk_restore_points(restore_point, facts)
        missing = [d.name for d in disks if d.name not in self.disk_restore_points]
        if missing:
            raise ProvisioningError(
                f"Restore point {collection}/{point} did not capture disk(s): "
                f"{', '.join(missing)}",
                resource=point,
                state="Incomplete",
            )
        logger.info(
            "Restore point %s/%s captured %s disk(s)",
            collection,
            point,
            len(self.disk_restore_points),
        )

    def handle_for(self, disk_name: str) -> CopyHandle:
        if disk_name not in self.disk_restore_points:
            raise ProvisioningError(
                f"Restore point {self.collection_name} holds no copy of disk {disk_name}",
                resource=disk_name,
            )
        return CopyHandle(
            source_resource_id=self.disk_restore_points[disk_name], create_option="Restore"
        )

    def artifact_ids(self) -> list[str]:
        return [self.collection_id] if self.collection_id else []

    def cleanup(self) -> list[str]:
        if not self.collection_name:
            return []
        plan = self.context.plan
        try:
            azure_api.delete_restore_point_collection(
                plan.subscription_id,
                plan.target_resource_group,
                self.collection_name,
                plan.tenant_id,
            )
        except Exception as exc:
            logger.warning(
                "Failed to delete restore point collection %s: %s", self.collection_name, exc
            )
            return [f"Restore point collection {self.collection_name} was not deleted: {exc}"]
        return []


CopyStrategy = SnapshotCopyStrategy | RestorePointCopyStrategy


def _snapshot_id(plan: MigrationPlan, name: str) -> str:
    return (
        f"/subscriptions/{plan.subscription_id}/resourceGroups/{plan.target_resource_group}"
        f"/providers/Microsoft.Compute/snapshots/{name}"
    )


def _collection_id(plan: MigrationPlan, name: str) -> str:
    return (
        f"/subscriptions/{plan.subscription_id}/resourceGroups/{plan.target_resource_group}"
        f"/providers/Microsoft.Compute/restorePointCollections/{name}"
    )


def _disk_restore_points(restore_point: dict, facts: VmFacts) -> dict[str, str]:
    """Map source disk name -> disk restore point id from ``sourceMetadata``."""
    storage = (
        restore_point.get("properties", {}).get("sourceMetadata", {}).get("storageProfile", {})
    )
    by_disk_id = {d.id.lower(): d.name for d in facts.disks}
    mapping: dict[str, str] = {}
    for entry in [storage.get("osDisk", {}), *storage.get("dataDisks", [])]:
        drp_id = entry.get("diskRestorePoint", {}).get("id")
        if not drp_id:
            continue
        disk_id = (entry.get("managedDisk", {}).get("id") or "").lower()
        name = by_disk_id.get(disk_id) or entry.get("name")
        if name:
            mapping[name] = drp_id
    return mapping


def create_copy_strategy(
    plan: MigrationPlan,
    settings: RelocateSettings,
    *,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
    now: Callable[[], datetime] | None = None,
) -> CopyStrategy:
    """Instantiate the strategy selected by ``settings.copy_strategy``."""
    context = _CopyContext(plan=plan, settings=settings, clock=clock, sleep=sleep)
    if now is not None:
        context.now = now
    if settings.copy_strategy == "restore_point":
        return RestorePointCopyStrategy(context)
    return SnapshotCopyStrategy(context)
