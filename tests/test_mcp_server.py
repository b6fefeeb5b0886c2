"""Tests for the az-relocate MCP server tools."""

import json
from unittest.mock import patch

import pytest
from factories import RG, VM_ID, vm_payload

from az_relocate.errors import PlacementGroupStateError
from az_relocate.mcp_server import mcp
from az_relocate.models.migration import ValidationReport, Violation
from az_relocate.models.resources import PlacementGroupFacts, PlacementGroupMember

ARGS = {
    "subscription_id": "sub-1",
    "resource_group": RG,
    "vm_name": "vm1",
    "target_zone": "2",
}


# ---------------------------------------------------------------------------
# validate_zone_move
# ---------------------------------------------------------------------------


class TestMcpValidateZoneMove:
    """Tests for the validate_zone_move MCP tool."""

    @pytest.mark.anyio()
    async def test_returns_report_json(self):
        report = ValidationReport(
            vmName="vm1",
            targetZone="2",
            violations=[Violation(kind="encryption", message="ADE enabled")],
        )
        with patch(
            "az_relocate.mcp_server.validator.validate", return_value=(report, None)
        ) as mock_validate:
            content, _ = await mcp.call_tool(
                "validate_zone_move", {**ARGS, "data_disk_sku": "PremiumV2_LRS"}
            )

        data = json.loads(content[0].text)
        assert data["ok"] is False
        assert data["violations"][0]["kind"] == "encryption"
        request = mock_validate.call_args.args[0]
        assert request.dataDiskSku == "PremiumV2_LRS"
        assert request.whatIf is True

    @pytest.mark.anyio()
    async def test_inconsistent_group_is_an_error_payload(self):
        with patch(
            "az_relocate.mcp_server.validator.validate",
            side_effect=PlacementGroupStateError("/ppg/1", ["1", "2"]),
        ):
            content, _ = await mcp.call_tool("validate_zone_move", ARGS)

        data = json.loads(content[0].text)
        assert "different zones" in data["error"]


# ---------------------------------------------------------------------------
# check_placement_group
# ---------------------------------------------------------------------------


class TestMcpCheckPlacementGroup:
    """Tests for the check_placement_group MCP tool."""

    @pytest.mark.anyio()
    async def test_vm_without_group(self):
        with patch("az_relocate.azure_api.get_vm", return_value=vm_payload()):
            content, _ = await mcp.call_tool("check_placement_group", ARGS)

        data = json.loads(content[0].text)
        assert data["reason"] == "no_group"
        assert data["compatible"] is True

    @pytest.mark.anyio()
    async def test_group_pinned_elsewhere(self):
        vm = vm_payload()
        vm["properties"]["proximityPlacementGroup"] = {"id": "/ppg/1"}
        group = PlacementGroupFacts(
            id="/ppg/1",
            members=(
                PlacementGroupMember(id=VM_ID, zone=None, power_state="running"),
                PlacementGroupMember(id="/vm/db", zone="3", power_state="running"),
            ),
        )
        with (
            patch("az_relocate.azure_api.get_vm", return_value=vm),
            patch(
                "az_relocate.mcp_server.gather_placement_group_facts", return_value=group
            ) as mock_gather,
        ):
            content, _ = await mcp.call_tool("check_placement_group", ARGS)

        data = json.loads(content[0].text)
        assert data["compatible"] is False
        assert data["pinnedZone"] == "3"
        mock_gather.assert_called_once_with("/ppg/1", None)

    @pytest.mark.anyio()
    async def test_missing_vm(self):
        with patch("az_relocate.azure_api.get_vm", return_value=None):
            content, _ = await mcp.call_tool("check_placement_group", ARGS)

        data = json.loads(content[0].text)
        assert "not found" in data["error"]
