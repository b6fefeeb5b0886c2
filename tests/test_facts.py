"""Tests for reading source VM facts from ARM payloads."""

from unittest.mock import MagicMock, patch

import pytest
from factories import LOCATION, RG, SUBNET_ID, VM_ID, rid, vm_payload

from az_relocate.services.facts import (
    disk_descriptor,
    gather_vm_facts,
    has_ade_extension,
    network_descriptor,
)

OS_DISK_ID = rid(RG, "Microsoft.Compute", "disks", "vm1-os")
DATA_DISK_ID = rid(RG, "Microsoft.Compute", "disks", "vm1-data0")
NIC_ID = rid(RG, "Microsoft.Network", "networkInterfaces", "vm1-nic")


def _disk(name: str, disk_id: str, sku: str = "Premium_LRS", **props) -> dict:
    return {
        "name": name,
        "id": disk_id,
        "sku": {"name": sku},
        "zones": [],
        "tags": {"team": "db"},
        "properties": {"diskSizeGB": 256, **props},
    }


NIC = {
    "id": NIC_ID,
    "name": "vm1-nic",
    "location": LOCATION,
    "tags": {"app": "web"},
    "properties": {
        "ipConfigurations": [
            {
                "name": "ipconfig1",
                "properties": {
                    "primary": True,
                    "privateIPAllocationMethod": "Static",
                    "privateIPAddress": "10.0.0.4",
                    "subnet": {"id": SUBNET_ID},
                    "publicIPAddress": {"id": "/pip/vm1"},
                    "loadBalancerBackendAddressPools": [{"id": "/lb/pool1"}],
                    "loadBalancerInboundNatRules": [{"id": "/lb/nat1"}],
                    "applicationSecurityGroups": [{"id": "/asg/web"}],
                },
            }
        ],
        "dnsSettings": {"dnsServers": ["10.0.0.10"]},
        "enableAcceleratedNetworking": True,
        "networkSecurityGroup": {"id": "/nsg/vm1"},
    },
}


def _vm(**props) -> dict:
    vm = vm_payload()
    vm["tags"] = {"env": "prod"}
    vm["properties"].update(
        {
            "hardwareProfile": {"vmSize": "Standard_D4s_v5"},
            "storageProfile": {
                "osDisk": {
                    "name": "vm1-os",
                    "caching": "ReadWrite",
                    "managedDisk": {"id": OS_DISK_ID},
                },
                "dataDisks": [
                    {
                        "lun": 0,
                        "name": "vm1-data0",
                        "caching": "None",
                        "writeAcceleratorEnabled": True,
                        "managedDisk": {"id": DATA_DISK_ID},
                    }
                ],
            },
            "networkProfile": {
                "networkInterfaces": [{"id": NIC_ID, "properties": {"primary": True}}]
            },
            **props,
        }
    )
    return vm


def _gather(vm: dict, disks: dict | None = None, nic: dict | None = NIC):
    disks = disks or {
        OS_DISK_ID: _disk("vm1-os", OS_DISK_ID, "StandardSSD_LRS", osType="Linux"),
        DATA_DISK_ID: _disk("vm1-data0", DATA_DISK_ID, diskIOPSReadWrite=1100),
    }
    with patch.multiple(
        "az_relocate.azure_api",
        get_vm=MagicMock(return_value=vm),
        get_disk_by_id=lambda disk_id, tenant_id=None: disks.get(disk_id),
        get_nic_by_id=MagicMock(return_value=nic),
        get_proximity_placement_group=MagicMock(return_value=None),
    ):
        return gather_vm_facts("sub-1", RG, "vm1")


class TestGatherVmFacts:
    def test_regional_vm(self):
        facts = _gather(_vm())
        assert facts.id == VM_ID
        assert facts.vm_size == "Standard_D4s_v5"
        assert facts.zone is None
        assert facts.power_state == "running"
        assert facts.tags == {"env": "prod"}
        assert facts.nic_count == 1
        assert facts.placement_group is None

    def test_disks_combine_vm_and_disk_properties(self):
        facts = _gather(_vm())
        assert facts.os_disk.caching == "ReadWrite"
        assert facts.os_disk.sku == "StandardSSD_LRS"
        assert facts.os_disk.os_type == "Linux"
        data = facts.data_disks[0]
        assert data.lun == 0
        assert data.write_accelerator is True
        assert data.iops == 1100
        assert data.size_gb == 256

    def test_nic_is_captured(self):
        nic = _gather(_vm()).nic
        cfg = nic.ip_configurations[0]
        assert cfg.allocation_method == "Static"
        assert cfg.public_ip_id == "/pip/vm1"
        assert cfg.lb_inbound_nat_rule_ids == ("/lb/nat1",)
        assert nic.dns_servers == ("10.0.0.10",)
        assert nic.nsg_id == "/nsg/vm1"

    def test_missing_vm(self):
        with patch("az_relocate.azure_api.get_vm", return_value=None):
            assert gather_vm_facts("sub-1", RG, "ghost") is None

    def test_unmanaged_disk_raises(self):
        vm = _vm()
        vm["properties"]["storageProfile"]["osDisk"] = {
            "name": "vm1-os",
            "vhd": {"uri": "https://x/vhds/os.vhd"},
        }
        with pytest.raises(LookupError, match="not a managed disk"):
            _gather(vm)

    def test_ephemeral_os_disk(self):
        vm = _vm()
        vm["properties"]["storageProfile"]["osDisk"] = {
            "name": "vm1-os",
            "caching": "ReadOnly",
            "diffDiskSettings": {"option": "Local"},
            "managedDisk": {"storageAccountType": "Standard_LRS"},
        }
        facts = _gather(vm)
        assert facts.ephemeral_os_disk is True
        assert facts.os_disk.sku == "Standard_LRS"

    def test_spot_and_memberships(self):
        facts = _gather(
            _vm(
                priority="Spot",
                evictionPolicy="Deallocate",
                billingProfile={"maxPrice": -1},
                availabilitySet={"id": "/avset/1"},
            )
        )
        assert facts.priority == "Spot"
        assert facts.max_price == -1
        assert facts.availability_set_id == "/avset/1"

    def test_extensions_and_encryption(self):
        vm = _vm()
        vm["resources"] = [
            {"properties": {"type": "AzureDiskEncryptionForLinux"}},
            {"properties": {"type": "CustomScript"}},
        ]
        facts = _gather(vm)
        assert facts.extension_types == ("AzureDiskEncryptionForLinux", "CustomScript")
        assert has_ade_extension(facts)

    def test_nic_read_failure_leaves_nic_empty(self):
        facts = _gather(_vm(), nic=None)
        assert facts.nic is None
        assert facts.nic_count == 1


class TestDescriptors:
    def test_ade_settings_on_disk(self):
        disk = _disk("d", "/disks/d", encryptionSettingsCollection={"enabled": True})
        assert disk_descriptor({"caching": "None"}, disk, "data").ade_enabled

    def test_missing_caching_defaults_to_none(self):
        assert disk_descriptor({}, _disk("d", "/disks/d"), "os").caching == "None"

    def test_first_ip_configuration_is_primary_by_default(self):
        nic = {
            "id": "/nic/1",
            "name": "nic1",
            "properties": {
                "ipConfigurations": [
                    {"name": "a", "properties": {}},
                    {"name": "b", "properties": {}},
                ]
            },
        }
        configs = network_descriptor(nic).ip_configurations
        assert [c.primary for c in configs] == [True, False]
        assert configs[0].allocation_method == "Dynamic"
