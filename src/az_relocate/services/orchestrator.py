"""Zone relocation state machine.

``validate → quiesce → copy → provision_disks → provision_network →
assemble_instance → cleanup → done``

Each stage runs only after the previous one succeeded.  In What-If mode the
read-only work (fact gathering, validation, existence checks) runs in full,
while every mutating step is recorded in ``MigrationResult.plannedActions``
and logged instead of being sent to ARM.

Re-running a failed move is safe: replica disks and the NIC are adopted
when they already exist, and only disks without a usable replica are copied
again.  Copy artefacts created before a failure are reported in
``MigrationResult.copyArtifacts`` and cleaned up like on success.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import datetime

import requests

from az_relocate import azure_api
from az_relocate.errors import ConflictError, ProvisioningError, RelocateError
from az_relocate.models.migration import (
    DiskOutcome,
    MigrationPlan,
    MigrationRequest,
    MigrationResult,
    MigrationStage,
)
from az_relocate.models.resources import DiskDescriptor
from az_relocate.services import validator
from az_relocate.services.assembly import build_nic_body, build_vm_body
from az_relocate.services.disk_provisioner import (
    DiskProvisionRequest,
    ZonalDiskProvisioner,
    is_usable_replica,
)
from az_relocate.services.poller import (
    OperationStatus,
    backoff_from_settings,
    resource_status,
    wait_for_operation,
)
from az_relocate.services.snapshot_engine import CopySource, CopyStrategy, create_copy_strategy
from az_relocate.settings import RelocateSettings, get_settings

logger = logging.getLogger(__name__)

QUIESCED_STATES: frozenset[str] = frozenset({"deallocated", "stopped"})

_COPY_ACTION = "Copy disk"


class MigrationOrchestrator:
    """Drive one VM through every relocation stage."""

    def __init__(
        self,
        settings: RelocateSettings | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._clock = clock
        self._sleep = sleep
        self._now = now

    # -- plumbing -----------------------------------------------------------

    def _enter(self, result: MigrationResult, stage: MigrationStage) -> None:
        logger.info("%s: entering stage %s", result.vmName, stage)
        result.stage = stage

    def _plan_action(self, result: MigrationResult, action: str) -> None:
        logger.info("What if: %s", action)
        result.plannedActions.append(action)

    def _wait(
        self,
        fetch: Callable[[], OperationStatus | None],
        description: str,
        ready_states: frozenset[str] | None = None,
    ) -> OperationStatus:
        return wait_for_operation(
            fetch,
            description=description,
            timeout=self.settings.operation_timeout,
            backoff=backoff_from_settings(self.settings),
            ready_states=ready_states,
            clock=self._clock,
            sleep=self._sleep,
        )

    # -- entry point --------------------------------------------------------

    def run(self, request: MigrationRequest) -> MigrationResult:
        """Move ``request.vmName`` into ``request.targetZone``.

        Returns the completed :class:`MigrationResult`.  Any
        :class:`RelocateError` raised carries the partial result in
        ``.result``.
        """
        result = MigrationResult(
            vmName=request.vmName, targetZone=request.targetZone, whatIf=request.whatIf
        )
        copy_source: CopyStrategy | None = None
        try:
            plan = self._validate(request, result)
            self._quiesce(plan, result)
            copy_source = create_copy_strategy(
                plan, self.settings, clock=self._clock, sleep=self._sleep, now=self._now
            )
            self._copy(plan, copy_source, result)
            outcomes = self._provision_disks(plan, copy_source, result)
            nic_id = self._provision_network(plan, result)
            self._assemble(plan, outcomes, nic_id, result)
        except RelocateError as exc:
            self._fail(result, exc, copy_source)
            raise
        except requests.RequestException as exc:
            error = ProvisioningError(
                f"Stage {result.stage} failed: {exc}",
                resource=request.vmName,
                state=_http_state(exc),
            )
            self._fail(result, error, copy_source)
            raise error from exc

        self._cleanup(plan, copy_source, result)
        self._enter(result, "done")
        logger.info(
            "%s relocated to zone %s as %s", request.vmName, plan.target_zone, plan.names.vm_name
        )
        return result

    def _fail(
        self, result: MigrationResult, error: RelocateError, copy_source: CopySource | None
    ) -> None:
        logger.error("%s: stage %s failed: %s", result.vmName, result.stage, error)
        result.errors.append(str(error))
        if isinstance(error, ProvisioningError) and error.outcomes:
            result.diskOutcomes = list(error.outcomes)
        if copy_source is not None:
            result.copyArtifacts = copy_source.artifact_ids()
        if copy_source is not None and not result.whatIf and not self.settings.keep_copies:
            result.warnings.extend(copy_source.cleanup())
        error.result = result

    # -- stages -------------------------------------------------------------

    def _validate(self, request: MigrationRequest, result: MigrationResult) -> MigrationPlan:
        self._enter(result, "validate")
        plan = validator.require_valid(request, self.settings)
        result.warnings.extend(plan.warnings)

        existing = azure_api.get_vm(
            plan.subscription_id, plan.target_resource_group, plan.names.vm_name, plan.tenant_id
        )
        if existing is not None:
            raise ConflictError(
                existing.get("id") or plan.names.vm_name,
                f"VM {plan.names.vm_name} already exists in resource group "
                f"{plan.target_resource_group}; refusing to create a second instance.",
            )
        return plan

    def _power_status(self, plan: MigrationPlan) -> OperationStatus | None:
        facts = plan.facts
        vm = azure_api.get_vm(
            plan.subscription_id,
            facts.resource_group,
            facts.name,
            plan.tenant_id,
            instance_view=True,
        )
        if vm is None:
            return None
        return OperationStatus(
            vm.get("properties", {}).get("provisioningState"), azure_api.power_state(vm)
        )

    def _quiesce(self, plan: MigrationPlan, result: MigrationResult) -> None:
        self._enter(result, "quiesce")
        facts = plan.facts
        if facts.power_state in QUIESCED_STATES:
            logger.info("%s is already %s", facts.name, facts.power_state)
            return
        if result.whatIf:
            self._plan_action(
                result, f"Deallocate VM {facts.name} (currently {facts.power_state})"
            )
            return
        azure_api.deallocate_vm(
            plan.subscription_id, facts.resource_group, facts.name, plan.tenant_id
        )
        self._wait(
            lambda: self._power_status(plan), f"deallocation of {facts.name}", QUIESCED_STATES
        )
        logger.info("%s deallocated", facts.name)

    def _pending_disks(self, plan: MigrationPlan) -> list[DiskDescriptor]:
        """Source disks without a usable replica."""
        pending = []
        for disk in plan.facts.disks:
            replica = plan.replica_disk_name(disk)
            existing = azure_api.get_disk(
                plan.subscription_id, plan.target_resource_group, replica, plan.tenant_id
            )
            if not is_usable_replica(existing):
                pending.append(disk)
            else:
                logger.info("Replica %s of %s already exists; not copying", replica, disk.name)
        return pending

    def _copy(self, plan: MigrationPlan, strategy: CopyStrategy, result: MigrationResult) -> None:
        self._enter(result, "copy")
        pending = self._pending_disks(plan)
        if not pending:
            logger.info("Every replica disk already exists; skipping copy")
            return
        if result.whatIf:
            kind = (
                "crash-consistent restore point"
                if self.settings.copy_strategy == "restore_point"
                else "incremental snapshot"
            )
            for disk in pending:
                self._plan_action(
                    result, f"{_COPY_ACTION} {disk.name} ({disk.sku}) as {kind}"
                )
            return
        strategy.capture(pending)
        result.copyArtifacts = strategy.artifact_ids()

    def _provision_disks(
        self, plan: MigrationPlan, copy_source: CopySource, result: MigrationResult
    ) -> list[DiskOutcome]:
        self._enter(result, "provision_disks")
        disk_requests = [
            DiskProvisionRequest(
                descriptor=disk,
                target_name=plan.replica_disk_name(disk),
                target_sku=plan.effective_sku(disk),
            )
            for disk in plan.facts.disks
        ]
        if result.whatIf:
            for req in disk_requests:
                self._plan_action(
                    result,
                    f"Create {req.descriptor.role} disk {req.target_name} ({req.target_sku}) "
                    f"in zone {plan.target_zone} from {req.descriptor.name}",
                )
            return []

        provisioner = ZonalDiskProvisioner(
            plan, self.settings, copy_source, clock=self._clock, sleep=self._sleep
        )
        os_request = next(r for r in disk_requests if r.descriptor.role == "os")
        data_requests = [r for r in disk_requests if r.descriptor.role == "data"]
        outcomes = provisioner.provision_all(os_request, data_requests)
        result.diskOutcomes = outcomes
        result.diskIds = [o.diskId for o in outcomes if o.diskId]
        return outcomes

    def _provision_network(self, plan: MigrationPlan, result: MigrationResult) -> str | None:
        self._enter(result, "provision_network")
        sub, rg, tenant = plan.subscription_id, plan.target_resource_group, plan.tenant_id
        name = plan.names.nic_name

        existing = azure_api.get_nic(sub, rg, name, tenant)
        if existing is not None:
            logger.info("NIC %s already exists; reusing it", name)
            result.nicId = existing.get("id")
            return result.nicId

        body = build_nic_body(plan)
        if result.whatIf:
            self._plan_action(
                result,
                f"Create NIC {name} in {rg} with {len(body['properties']['ipConfigurations'])} "
                "dynamic IP configuration(s)",
            )
            return None

        created = azure_api.create_nic(sub, rg, name, body, tenant)
        self._wait(
            lambda: resource_status(azure_api.get_nic(sub, rg, name, tenant)), f"NIC {name}"
        )
        result.nicId = created.get("id") or (
            f"/subscriptions/{sub}/resourceGroups/{rg}"
            f"/providers/Microsoft.Network/networkInterfaces/{name}"
        )
        logger.info("NIC %s provisioned", name)
        return result.nicId

    def _assemble(
        self,
        plan: MigrationPlan,
        outcomes: list[DiskOutcome],
        nic_id: str | None,
        result: MigrationResult,
    ) -> None:
        self._enter(result, "assemble_instance")
        sub, rg, tenant = plan.subscription_id, plan.target_resource_group, plan.tenant_id
        name = plan.names.vm_name
        if result.whatIf:
            group = plan.placement.groupId if plan.placement.useGroup else "none"
            self._plan_action(
                result,
                f"Create VM {name} ({plan.vm_size}) in zone {plan.target_zone}, "
                f"placement group {group}",
            )
            return

        body = build_vm_body(plan, outcomes, nic_id or "")
        created = azure_api.create_vm(sub, rg, name, body, tenant)
        self._wait(lambda: resource_status(azure_api.get_vm(sub, rg, name, tenant)), f"VM {name}")
        result.vmId = created.get("id") or (
            f"/subscriptions/{sub}/resourceGroups/{rg}"
            f"/providers/Microsoft.Compute/virtualMachines/{name}"
        )
        logger.info("VM %s created in zone %s", name, plan.target_zone)

    def _cleanup(
        self, plan: MigrationPlan, copy_source: CopySource | None, result: MigrationResult
    ) -> None:
        self._enter(result, "cleanup")
        if copy_source is None:
            return
        if self.settings.keep_copies:
            logger.info("Keeping copy artefacts: %s", ", ".join(copy_source.artifact_ids()))
            return
        if result.whatIf:
            if any(a.startswith(_COPY_ACTION) for a in result.plannedActions):
                self._plan_action(result, f"Delete copy artefacts of {plan.facts.name}")
            return
        result.warnings.extend(copy_source.cleanup())


def _http_state(exc: requests.RequestException) -> str | None:
    response = getattr(exc, "response", None)
    return f"HTTP {response.status_code}" if response is not None else None
