"""Tests for the pre-flight compatibility validator."""

from unittest.mock import MagicMock, patch

import pytest
from factories import (
    RG,
    fast_settings,
    make_data_disk,
    make_disk,
    make_facts,
    make_request,
    vm_sku,
)

from az_relocate.errors import PlacementGroupStateError, ValidationError
from az_relocate.models.migration import PlacementDecision
from az_relocate.models.resources import PlacementGroupFacts, PlacementGroupMember, SkuAvailability
from az_relocate.services import validator
from az_relocate.services.facts import sku_availability

ULTRA_DISK_SKU = vm_sku("UltraSSD_LRS", zones=("1", "2"))
PV2_DISK_SKU = vm_sku("PremiumV2_LRS", zones=("1", "2", "3"))


def _availability(*entries: dict) -> list[SkuAvailability]:
    return [sku_availability(e) for e in entries]


def _run(facts, request=None, settings=None, vm_skus=None, disk_skus=None, group=True):
    """Run ``validator.validate`` against mocked facts and catalog."""
    vm_skus = vm_skus if vm_skus is not None else [vm_sku()]
    disk_skus = disk_skus if disk_skus is not None else [ULTRA_DISK_SKU, PV2_DISK_SKU]

    def get_skus(region, sub, tenant=None, resource_type="virtualMachines"):
        return disk_skus if resource_type == "disks" else vm_skus

    with (
        patch.object(validator, "gather_vm_facts", return_value=facts),
        patch.multiple(
            "az_relocate.azure_api",
            get_skus=get_skus,
            get_resource_group=MagicMock(return_value={"name": RG} if group else None),
        ),
    ):
        return validator.validate(request or make_request(), settings or fast_settings())


# ---------------------------------------------------------------------------
# Individual rules
# ---------------------------------------------------------------------------


class TestTargetZone:
    def test_valid_zone(self):
        assert validator.check_target_zone("2", fast_settings()) == []

    def test_unknown_zone(self):
        violations = validator.check_target_zone("4", fast_settings())
        assert violations[0].kind == "zone"
        assert "1, 2, 3" in violations[0].message


class TestScope:
    def test_same_group_needs_a_different_name(self):
        violations = validator.check_scope(
            make_request(), "VM1", fast_settings(), target_group_exists=True
        )
        assert [v.kind for v in violations] == ["scope"]

    def test_same_group_with_new_name_is_fine(self):
        assert (
            validator.check_scope(
                make_request(), "vm1-z2", fast_settings(), target_group_exists=True
            )
            == []
        )

    def test_same_group_forbidden_by_policy(self):
        violations = validator.check_scope(
            make_request(),
            "vm1-z2",
            fast_settings(allow_same_resource_group=False),
            target_group_exists=True,
        )
        assert "must differ" in violations[0].message

    def test_missing_target_group(self):
        violations = validator.check_scope(
            make_request(targetResourceGroup="rg-zonal"),
            "vm1",
            fast_settings(),
            target_group_exists=False,
        )
        assert "rg-zonal" in violations[0].message


class TestCaching:
    def test_ultra_with_read_write_caching(self):
        facts = make_facts(os_disk=make_disk(sku="UltraSSD_LRS", caching="ReadWrite"))
        violations = validator.check_caching(facts, None, None)
        assert violations[0].kind == "caching"
        assert "UltraSSD_LRS" in violations[0].message

    def test_conversion_is_checked_against_the_target_sku(self):
        facts = make_facts(data_disks=(make_data_disk(0, sku="Premium_LRS", caching="ReadOnly"),))
        violations = validator.check_caching(facts, None, "PremiumV2_LRS")
        assert [v.resource for v in violations] == ["vm1-data0"]

    def test_classic_skus_keep_their_caching(self):
        facts = make_facts(data_disks=(make_data_disk(0, caching="ReadOnly"),))
        assert validator.check_caching(facts, "Premium_LRS", "Premium_LRS") == []

    def test_advanced_sku_with_caching_none(self):
        facts = make_facts(os_disk=make_disk(sku="PremiumV2_LRS", caching="None"))
        assert validator.check_caching(facts, None, None) == []


class TestVmSku:
    def test_available(self):
        assert validator.check_vm_sku("Standard_D2s_v5", "2", _availability(vm_sku())) == []

    def test_not_offered(self):
        violations = validator.check_vm_sku("Standard_X", "2", _availability(vm_sku()))
        assert "not offered" in violations[0].message

    def test_not_in_zone(self):
        skus = _availability(vm_sku(zones=("1", "3")))
        violations = validator.check_vm_sku("Standard_D2s_v5", "2", skus)
        assert violations[0].kind == "vm_sku"
        assert "zones: 1, 3" in violations[0].message

    def test_restricted_in_zone(self):
        skus = _availability(vm_sku(restrictedZones=["2"]))
        violations = validator.check_vm_sku("Standard_D2s_v5", "2", skus)
        assert "restricted in zone 2" in violations[0].message

    def test_restricted_in_region(self):
        skus = _availability(vm_sku(locationRestricted=True))
        assert validator.check_vm_sku("standard_d2s_v5", "2", skus)


class TestDiskSkus:
    def test_premium_v2_not_in_zone(self):
        facts = make_facts(data_disks=(make_data_disk(0),))
        violations = validator.check_disk_skus(
            facts,
            None,
            "PremiumV2_LRS",
            "Standard_D2s_v5",
            "3",
            _availability(vm_sku("PremiumV2_LRS", zones=("1", "2"))),
            _availability(vm_sku()),
        )
        assert [v.kind for v in violations] == ["disk_sku"]

    def test_ultra_needs_vm_capability(self):
        facts = make_facts(os_disk=make_disk(sku="UltraSSD_LRS", caching="None"))
        without = validator.check_disk_skus(
            facts, None, None, "Standard_D2s_v5", "2",
            _availability(ULTRA_DISK_SKU), _availability(vm_sku()),
        )
        with_cap = validator.check_disk_skus(
            facts, None, None, "Standard_D2s_v5", "2",
            _availability(ULTRA_DISK_SKU),
            _availability(vm_sku(zoneCapabilities={"2": {"UltraSSDAvailable": True}})),
        )
        assert [v.kind for v in without] == ["vm_sku"]
        assert with_cap == []

    def test_classic_skus_are_not_checked(self):
        facts = make_facts()
        assert validator.check_disk_skus(facts, None, None, "x", "2", [], []) == []


class TestEncryptionAndTopology:
    def test_ade_on_disk(self):
        facts = make_facts(os_disk=make_disk(ade_enabled=True))
        violations = validator.check_encryption(facts)
        assert violations[0].kind == "encryption"
        assert "vm1-os" in violations[0].message

    def test_ade_extension(self):
        facts = make_facts(
            extension_types=("Microsoft.Azure.Security.AzureDiskEncryptionForLinux",)
        )
        assert validator.check_encryption(facts)

    def test_topology_blockers_are_all_reported(self):
        facts = make_facts(nic_count=2, scale_set_id="/vmss/1", ephemeral_os_disk=True)
        violations = validator.check_topology(facts, fast_settings())
        assert len(violations) == 3
        assert {v.kind for v in violations} == {"topology"}

    def test_ephemeral_os_is_left_to_restore_point_rule(self):
        facts = make_facts(ephemeral_os_disk=True)
        assert validator.check_topology(facts, fast_settings(copy_strategy="restore_point")) == []


class TestPlacementPolicy:
    DECISION = PlacementDecision(
        useGroup=False,
        reason="pinned_to_other_zone",
        groupId="/ppg/1",
        pinnedZone="3",
        detail="Placement group is pinned to zone 3 by its zonal members.",
    )

    def test_fail_policy_is_a_violation(self):
        violations, warnings = validator.check_placement(self.DECISION, fast_settings())
        assert violations[0].kind == "placement_group"
        assert warnings == []

    def test_skip_policy_is_a_warning(self):
        violations, warnings = validator.check_placement(
            self.DECISION, fast_settings(placement_group_policy="skip")
        )
        assert violations == []
        assert "outside the group" in warnings[0]

    def test_compatible_decision(self):
        decision = PlacementDecision(useGroup=True, reason="open", groupId="/ppg/1")
        assert validator.check_placement(decision, fast_settings()) == ([], [])


class TestWarnings:
    def test_network_and_membership_warnings(self):
        facts = make_facts(
            zone="2",
            availability_set_id="/avset/1",
            extension_types=("CustomScript",),
        )
        warnings = validator.collect_warnings(facts, "2", None, None)
        text = "\n".join(warnings)
        assert "already in zone 2" in text
        assert "availability set" in text
        assert "CustomScript" in text
        assert "public IP" in text
        assert "static address 10.0.0.4" in text
        assert "inbound NAT rules" in text

    def test_zone_redundant_target(self):
        warnings = validator.collect_warnings(make_facts(nic=None), "2", "Premium_ZRS", None)
        assert warnings == [
            "Disk vm1-os uses Premium_ZRS; the replica is zone-redundant, not pinned to a zone."
        ]


# ---------------------------------------------------------------------------
# Naming
# ---------------------------------------------------------------------------


class TestNamingPlan:
    def test_same_group_gets_zonal_suffix(self):
        names = validator.build_naming_plan(make_facts(), make_request())
        assert names.vm_name == "vm1-z2"
        assert names.nic_name == "vm1-nic-z2"
        assert names.disk_names == {"vm1-os": "vm1-os-z2"}

    def test_other_group_keeps_the_vm_name(self):
        names = validator.build_naming_plan(
            make_facts(), make_request(targetResourceGroup="rg-zonal")
        )
        assert names.vm_name == "vm1"

    def test_explicit_target_name_wins(self):
        names = validator.build_naming_plan(make_facts(), make_request(targetVmName="web-a"))
        assert names.vm_name == "web-a"

    def test_long_disk_names_sharing_a_prefix_stay_distinct(self):
        prefix = "sapdb-" + "x" * 74
        disks = (
            make_disk(f"{prefix}-data0", role="data", lun=0),
            make_disk(f"{prefix}-data1", role="data", lun=1),
        )
        names = validator.build_naming_plan(make_facts(data_disks=disks), make_request())
        replicas = [names.disk_names[d.name] for d in disks]
        assert replicas[0] != replicas[1]
        assert all(len(n) <= 80 and n.endswith("-z2") for n in replicas)


# ---------------------------------------------------------------------------
# validate()
# ---------------------------------------------------------------------------


class TestValidate:
    def test_clean_move_produces_a_plan(self):
        report, plan = _run(make_facts())
        assert report.ok
        assert plan is not None
        assert plan.target_zone == "2"
        assert plan.names.vm_name == "vm1-z2"
        assert plan.vm_size == "Standard_D2s_v5"
        assert plan.warnings == tuple(report.warnings)

    def test_independent_violations_are_all_reported(self):
        facts = make_facts(os_disk=make_disk(sku="UltraSSD_LRS", caching="ReadWrite"))
        report, plan = _run(facts, vm_skus=[vm_sku(zones=("1", "3"))])
        assert plan is None
        assert {"vm_sku", "caching"} <= report.kinds()

    def test_ultra_read_write_is_rejected_before_any_write(self):
        facts = make_facts(os_disk=make_disk(sku="UltraSSD_LRS", caching="ReadWrite"))
        writes = MagicMock()
        with patch.multiple(
            "az_relocate.azure_api",
            create_snapshot=writes,
            create_disk=writes,
            deallocate_vm=writes,
        ):
            report, plan = _run(
                facts,
                vm_skus=[vm_sku(zoneCapabilities={"2": {"UltraSSDAvailable": True}})],
            )
        assert plan is None
        assert report.kinds() == {"caching"}
        writes.assert_not_called()

    def test_missing_vm(self):
        report, plan = _run(None)
        assert plan is None
        assert report.kinds() == {"scope"}

    def test_unmanaged_disk(self):
        with patch.object(
            validator, "gather_vm_facts", side_effect=LookupError("Disk d is not a managed disk")
        ):
            report, plan = validator.validate(make_request(), fast_settings())
        assert plan is None
        assert "not a managed disk" in report.violations[0].message

    def test_vm_size_override_is_checked(self):
        report, _ = _run(make_facts(), make_request(vmSize="Standard_E4s_v5"))
        assert report.kinds() == {"vm_sku"}

    def test_pinned_group_fails_under_default_policy(self):
        group = PlacementGroupFacts(
            id="/ppg/1",
            members=(PlacementGroupMember(id="/vm/other", zone="3", power_state="running"),),
        )
        report, plan = _run(make_facts(placement_group=group))
        assert plan is None
        assert report.kinds() == {"placement_group"}
        assert "pinned to zone 3" in report.violations[0].message

    def test_pinned_group_is_dropped_under_skip_policy(self):
        group = PlacementGroupFacts(
            id="/ppg/1",
            members=(PlacementGroupMember(id="/vm/other", zone="3", power_state="running"),),
        )
        report, plan = _run(
            make_facts(placement_group=group),
            settings=fast_settings(placement_group_policy="skip"),
        )
        assert report.ok
        assert plan.placement.useGroup is False
        assert plan.placement.reason == "pinned_to_other_zone"
        assert any("outside the group" in w for w in report.warnings)

    def test_inconsistent_group_raises(self):
        group = PlacementGroupFacts(
            id="/ppg/1",
            members=(
                PlacementGroupMember(id="/vm/a", zone="1", power_state="running"),
                PlacementGroupMember(id="/vm/b", zone="2", power_state="running"),
            ),
        )
        with pytest.raises(PlacementGroupStateError):
            _run(make_facts(placement_group=group))

    def test_restore_point_blockers_under_restore_point_strategy(self):
        facts = make_facts(data_disks=(make_data_disk(0, write_accelerator=True),))
        report, _ = _run(facts, settings=fast_settings(copy_strategy="restore_point"))
        assert report.kinds() == {"restore_point"}

    def test_require_valid_raises_with_report(self):
        with pytest.raises(ValidationError) as exc_info:
            with (
                patch.object(validator, "gather_vm_facts", return_value=make_facts()),
                patch.multiple(
                    "az_relocate.azure_api",
                    get_skus=MagicMock(return_value=[]),
                    get_resource_group=MagicMock(return_value=None),
                ),
            ):
                validator.require_valid(make_request(), fast_settings())
        assert {"scope", "vm_sku"} <= exc_info.value.report.kinds()
        assert "[scope]" in str(exc_info.value)

    def test_facts_are_read_once(self):
        with (
            patch.object(validator, "gather_vm_facts", return_value=make_facts()) as gather,
            patch.multiple(
                "az_relocate.azure_api",
                get_skus=MagicMock(return_value=[vm_sku()]),
                get_resource_group=MagicMock(return_value={"name": RG}),
            ),
        ):
            validator.validate(make_request(), fast_settings())
        gather.assert_called_once_with("sub-1", RG, "vm1", None)
