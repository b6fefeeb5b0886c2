"""MCP server for az-relocate.

Exposes read-only relocation checks as MCP tools so that AI agents can ask
whether a VM can move into a zone before anyone runs the move.

Run with:
    az-relocate mcp            # stdio transport (default)
    az-relocate mcp --sse      # SSE transport on port 8080
"""

import json
import logging

from mcp.server.fastmcp import FastMCP

from az_relocate import azure_api
from az_relocate.errors import IncompatibilityError
from az_relocate.models.migration import MigrationRequest
from az_relocate.services import validator
from az_relocate.services.facts import gather_placement_group_facts
from az_relocate.services.placement import resolve_placement_group
from az_relocate.settings import get_settings

logger = logging.getLogger(__name__)

mcp = FastMCP(
    "az-relocate",
    instructions=(
        "Azure VM zone relocation checks. "
        "Use validate_zone_move to list every reason a VM cannot be moved into "
        "an availability zone, and check_placement_group to see whether its "
        "proximity placement group can follow it. Nothing is changed by these "
        "tools. All tools require valid Azure credentials via "
        "DefaultAzureCredential (e.g. `az login`)."
    ),
)


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


@mcp.tool()
def validate_zone_move(
    subscription_id: str,
    resource_group: str,
    vm_name: str,
    target_zone: str,
    tenant_id: str | None = None,
    target_resource_group: str | None = None,
    vm_size: str | None = None,
    os_disk_sku: str | None = None,
    data_disk_sku: str | None = None,
) -> str:
    """Check whether a VM can be moved into an availability zone.

    Runs every pre-flight rule (zone, scope, disk caching, VM and disk SKU
    availability, encryption, placement group, topology) and returns all
    violations at once, plus non-blocking warnings.

    Args:
        subscription_id: Subscription of the source VM.
        resource_group: Resource group of the source VM.
        vm_name: Name of the source VM.
        target_zone: Logical zone to move into (``1``, ``2`` or ``3``).
        tenant_id: Optional tenant ID to scope the query.
        target_resource_group: Where the replica goes. Defaults to the source group.
        vm_size: Optional new VM size.
        os_disk_sku: Optional new OS disk SKU (e.g. ``Premium_LRS``).
        data_disk_sku: Optional new data disk SKU (e.g. ``PremiumV2_LRS``).
    """
    request = MigrationRequest(
        subscriptionId=subscription_id,
        tenantId=tenant_id,
        resourceGroup=resource_group,
        vmName=vm_name,
        targetZone=target_zone,
        targetResourceGroup=target_resource_group,
        vmSize=vm_size,
        osDiskSku=os_disk_sku,
        dataDiskSku=data_disk_sku,
        whatIf=True,
    )
    try:
        report, _plan = validator.validate(request, get_settings())
    except IncompatibilityError as exc:
        return json.dumps({"error": str(exc)}, indent=2)
    return json.dumps({**report.model_dump(), "ok": report.ok}, indent=2)


@mcp.tool()
def check_placement_group(
    subscription_id: str,
    resource_group: str,
    vm_name: str,
    target_zone: str,
    tenant_id: str | None = None,
) -> str:
    """Check whether a VM's proximity placement group can follow it into a zone.

    A placement group is pinned to a zone once any zonal VM is in it, and to
    unknown hardware while a regional member is running.  Returns the
    decision (``useGroup``, ``reason``, ``pinnedZone``) and a human-readable
    explanation.

    Args:
        subscription_id: Subscription of the source VM.
        resource_group: Resource group of the source VM.
        vm_name: Name of the source VM.
        target_zone: Logical zone to move into.
        tenant_id: Optional tenant ID to scope the query.
    """
    vm = azure_api.get_vm(subscription_id, resource_group, vm_name, tenant_id)
    if vm is None:
        return json.dumps({"error": f"VM {vm_name} not found in {resource_group}"}, indent=2)
    group_id = vm.get("properties", {}).get("proximityPlacementGroup", {}).get("id")
    group = gather_placement_group_facts(group_id, tenant_id) if group_id else None
    try:
        decision = resolve_placement_group(group, vm["id"], target_zone)
    except IncompatibilityError as exc:
        return json.dumps({"error": str(exc)}, indent=2)
    return json.dumps(
        {**decision.model_dump(), "compatible": decision.compatible}, indent=2
    )
