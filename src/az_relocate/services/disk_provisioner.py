"""Zonal managed-disk provisioning from point-in-time copies.

Each replica disk is created from a :class:`CopyHandle` and polled to
completion.  Creation is idempotent by name: a disk that already exists in
the target resource group (typically from an earlier, interrupted run) is
adopted instead of re-created, unless it ended in a terminal failure state,
in which case it is submitted again.  Transient failures are retried a fixed
number of times with a fixed delay.

Data disks may be provisioned concurrently.  Each worker owns exactly one
disk and returns a self-contained :class:`DiskOutcome`; outcomes are only
aggregated once every worker has finished.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

import requests

from az_relocate import azure_api
from az_relocate.errors import OperationFailedError, OperationTimeoutError, ProvisioningError
from az_relocate.models.migration import DiskOutcome, MigrationPlan
from az_relocate.models.resources import DiskDescriptor
from az_relocate.services._sku_rules import (
    RELOCATED_FROM_TAG,
    is_advanced_sku,
    is_zone_redundant,
)
from az_relocate.services.backoff import Backoff
from az_relocate.services.poller import (
    TERMINAL_FAILURE_STATES,
    backoff_from_settings,
    resource_status,
    wait_for_operation,
)
from az_relocate.services.snapshot_engine import CopyHandle, CopySource
from az_relocate.settings import RelocateSettings

logger = logging.getLogger(__name__)

_TRANSIENT_HTTP_STATUS: frozenset[int] = frozenset({409, 429, 500, 502, 503, 504})


@dataclass(frozen=True)
class DiskProvisionRequest:
    descriptor: DiskDescriptor
    target_name: str
    target_sku: str


def build_disk_body(
    descriptor: DiskDescriptor,
    target_sku: str,
    zone: str,
    location: str,
    handle: CopyHandle,
    tags: dict[str, str] | None = None,
) -> dict:
    """Return the ``Microsoft.Compute/disks`` PUT body for a replica disk.

    Size, logical sector size, encryption set, OS metadata and tags are
    inherited from *descriptor*.  Performance settings (IOPS, MBps, tier)
    are inherited only while the SKU stays the same or moves between classic
    SKUs; converting into Ultra / Premium SSD v2 leaves them to the
    provider's defaults for the new SKU.  Zone-redundant SKUs get no zone.
    """
    creation: dict = {
        "createOption": handle.create_option,
        "sourceResourceId": handle.source_resource_id,
    }
    if descriptor.logical_sector_size:
        creation["logicalSectorSize"] = descriptor.logical_sector_size

    props: dict = {"creationData": creation}
    if descriptor.size_gb:
        props["diskSizeGB"] = descriptor.size_gb

    same_sku = target_sku.lower() == descriptor.sku.lower()
    if same_sku:
        if descriptor.iops:
            props["diskIOPSReadWrite"] = descriptor.iops
        if descriptor.mbps:
            props["diskMBpsReadWrite"] = descriptor.mbps
        if descriptor.tier:
            props["tier"] = descriptor.tier
    elif not is_advanced_sku(target_sku) and not is_advanced_sku(descriptor.sku):
        if descriptor.tier and target_sku.lower().startswith("premium_"):
            props["tier"] = descriptor.tier

    if descriptor.disk_encryption_set_id:
        props["encryption"] = {
            "type": "EncryptionAtRestWithCustomerKey",
            "diskEncryptionSetId": descriptor.disk_encryption_set_id,
        }
    if descriptor.role == "os":
        if descriptor.os_type:
            props["osType"] = descriptor.os_type
        if descriptor.hyper_v_generation:
            props["hyperVGeneration"] = descriptor.hyper_v_generation
        if descriptor.security_profile:
            props["securityProfile"] = descriptor.security_profile
    if descriptor.max_shares and descriptor.max_shares > 1:
        props["maxShares"] = descriptor.max_shares

    body: dict = {
        "location": location,
        "sku": {"name": target_sku},
        "tags": {**descriptor.tags, **(tags or {})},
        "properties": props,
    }
    if not is_zone_redundant(target_sku):
        body["zones"] = [zone]
    return body


def is_usable_replica(disk: dict | None) -> bool:
    """True if *disk* exists and did not end in a terminal failure state."""
    if disk is None:
        return False
    return disk.get("properties", {}).get("provisioningState") not in TERMINAL_FAILURE_STATES


def _is_transient(exc: Exception) -> bool:
    if isinstance(exc, OperationFailedError):
        return True
    if isinstance(exc, requests.HTTPError):
        status = exc.response.status_code if exc.response is not None else None
        return status in _TRANSIENT_HTTP_STATUS
    return isinstance(exc, (requests.ConnectionError, requests.Timeout))


class ZonalDiskProvisioner:
    """Create zone-pinned replica disks for one migration plan."""

    def __init__(
        self,
        plan: MigrationPlan,
        settings: RelocateSettings,
        copy_source: CopySource,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.plan = plan
        self.settings = settings
        self.copy_source = copy_source
        self._clock = clock
        self._sleep = sleep

    # -- helpers ------------------------------------------------------------

    def _get(self, name: str) -> dict | None:
        plan = self.plan
        return azure_api.get_disk(
            plan.subscription_id, plan.target_resource_group, name, plan.tenant_id
        )

    def _wait(self, name: str) -> None:
        wait_for_operation(
            lambda: resource_status(self._get(name)),
            description=f"disk {name}",
            timeout=self.settings.operation_timeout,
            backoff=backoff_from_settings(self.settings),
            clock=self._clock,
            sleep=self._sleep,
        )

    def _disk_id(self, name: str) -> str:
        plan = self.plan
        return (
            f"/subscriptions/{plan.subscription_id}/resourceGroups/{plan.target_resource_group}"
            f"/providers/Microsoft.Compute/disks/{name}"
        )

    def _outcome(self, request: DiskProvisionRequest, **kwargs: object) -> DiskOutcome:
        return DiskOutcome(
            diskName=request.target_name,
            sourceDiskName=request.descriptor.name,
            role=request.descriptor.role,
            sku=request.target_sku,
            lun=request.descriptor.lun,
            **kwargs,  # type: ignore[arg-type]
        )

    # -- single disk --------------------------------------------------------

    def provision(self, request: DiskProvisionRequest) -> DiskOutcome:
        """Create (or adopt) one replica disk and wait until it is provisioned.

        Raises :class:`ProvisioningError` carrying the attempt count.
        """
        name = request.target_name
        try:
            existing = self._get(name)
        except requests.RequestException as exc:
            raise ProvisioningError(
                f"Disk {name}: existence check failed: {exc}", resource=name, attempts=0
            ) from exc

        if existing is not None and not is_usable_replica(existing):
            logger.warning(
                "Disk %s is in state %s from an earlier run; submitting it again",
                name,
                existing["properties"]["provisioningState"],
            )
        elif existing is not None:
            logger.info("Disk %s already exists; adopting it", name)
            self._wait(name)
            existing_sku = existing.get("sku", {}).get("name") or request.target_sku
            return self._outcome(
                request,
                status="existing",
                diskId=existing.get("id") or self._disk_id(name),
                attempts=0,
            ).model_copy(update={"sku": existing_sku})

        handle = self.copy_source.handle_for(request.descriptor.name)
        body = build_disk_body(
            request.descriptor,
            request.target_sku,
            self.plan.target_zone,
            self.plan.facts.location,
            handle,
            tags={RELOCATED_FROM_TAG: request.descriptor.id},
        )
        max_attempts = self.settings.disk_create_attempts
        delays = Backoff.fixed(self.settings.disk_retry_delay).delays()
        last_error: Exception | None = None

        for attempt in range(1, max_attempts + 1):
            try:
                created = azure_api.create_disk(
                    self.plan.subscription_id,
                    self.plan.target_resource_group,
                    name,
                    body,
                    self.plan.tenant_id,
                )
                self._wait(name)
            except OperationTimeoutError as exc:
                exc.attempts = attempt
                raise
            except (OperationFailedError, requests.RequestException) as exc:
                if not _is_transient(exc):
                    raise ProvisioningError(
                        f"Disk {name} could not be created (attempt {attempt}): {exc}",
                        resource=name,
                        attempts=attempt,
                    ) from exc
                last_error = exc
                if attempt < max_attempts:
                    delay = next(delays)
                    logger.warning(
                        "Disk %s creation failed (%s), retrying in %ss (attempt %s/%s)",
                        name,
                        exc,
                        delay,
                        attempt,
                        max_attempts,
                    )
                    self._sleep(delay)
                continue
            logger.info("Disk %s provisioned in zone %s", name, self.plan.target_zone)
            return self._outcome(
                request,
                status="created",
                diskId=created.get("id") or self._disk_id(name),
                attempts=attempt,
            )

        raise ProvisioningError(
            f"Disk {name} could not be created after {max_attempts} attempt(s): {last_error}",
            resource=name,
            attempts=max_attempts,
        ) from last_error

    def _provision_safely(self, request: DiskProvisionRequest) -> DiskOutcome:
        """Worker entry point: never raises, always returns an outcome."""
        try:
            return self.provision(request)
        except ProvisioningError as exc:
            logger.error("Disk %s failed: %s", request.target_name, exc)
            return self._outcome(
                request, status="failed", attempts=exc.attempts or 0, error=str(exc)
            )
        except requests.RequestException as exc:
            logger.error("Disk %s failed while polling: %s", request.target_name, exc)
            return self._outcome(request, status="failed", error=str(exc))
        except Exception as exc:
            logger.exception("Disk %s failed unexpectedly", request.target_name)
            return self._outcome(
                request, status="failed", error=f"{type(exc).__name__}: {exc}"
            )

    # -- all disks ----------------------------------------------------------

    def provision_all(
        self,
        os_request: DiskProvisionRequest | None,
        data_requests: list[DiskProvisionRequest],
    ) -> list[DiskOutcome]:
        """Provision the OS disk, then every data disk.

        Data disks run on up to ``settings.max_parallel_disks`` workers.  If
        any disk fails, a :class:`ProvisioningError` listing every disk's
        final outcome is raised after all workers have finished.
        """
        outcomes: list[DiskOutcome] = []
        if os_request is not None:
            outcomes.append(self._provision_safely(os_request))
            if outcomes[0].status == "failed":
                raise _aggregate_failure(outcomes)

        limit = min(self.settings.max_parallel_disks, len(data_requests))
        if limit > 1:
            logger.info(
                "Provisioning %s data disk(s) with %s worker(s)", len(data_requests), limit
            )
            with ThreadPoolExecutor(max_workers=limit) as pool:
                outcomes.extend(pool.map(self._provision_safely, data_requests))
        else:
            outcomes.extend(self._provision_safely(r) for r in data_requests)

        if any(o.status == "failed" for o in outcomes):
            raise _aggregate_failure(outcomes)
        return outcomes


def _aggregate_failure(outcomes: list[DiskOutcome]) -> ProvisioningError:
    failed = [o for o in outcomes if o.status == "failed"]
    lines = [
        f"{o.diskName} ({o.role}): {o.status}" + (f": {o.error}" if o.error else "")
        for o in outcomes
    ]
    return ProvisioningError(
        f"{len(failed)} of {len(outcomes)} disk(s) failed to provision:\n  "
        + "\n  ".join(lines),
        resource=", ".join(o.diskName for o in failed),
        attempts=max((o.attempts for o in failed), default=0),
        outcomes=outcomes,
    )
