# test_vcenter_client.py - pyVmomi collector unit tests (no live vCenter)

import logging
from datetime import datetime
from unittest.mock import MagicMock, patch

import pytest
from pyVmomi import vim

from vdiagram.cache_manager import CacheManager
from vdiagram.models import Inventory, PortGroup
from vdiagram.vcenter_client import (
    UNKNOWN_NETWORK,
    VCenterClient,
    VCenterConnectionError,
    _vlan_from_spec,
    _walk_snapshots,
    adapter_network_name,
    guest_ips,
    resolve_first,
    vm_adapters,
)


def _named(name, **attrs):
    """MagicMock with a .name attribute (name= is reserved by the constructor)"""
    mock = MagicMock(**attrs)
    mock.name = name
    return mock


def _nic(backing, label="Network adapter 1", mac="00:50:56:aa:bb:cc"):
    return vim.vm.device.VirtualVmxnet3(
        key=4000,
        deviceInfo=vim.Description(label=label, summary=""),
        backing=backing,
        macAddress=mac,
    )


class TestResolveFirst:
    """Test ordered discovery strategies"""

    def test_first_non_empty_wins(self):
        second = MagicMock(return_value=["b"])
        third = MagicMock(return_value=["c"])
        result = resolve_first(
            [("one", lambda: []), ("two", second), ("three", third)],
            "port groups",
        )
        assert result == ["b"]
        third.assert_not_called()

    def test_failing_strategy_skipped(self, caplog):
        def broken():
            raise RuntimeError("session expired")

        with caplog.at_level(logging.WARNING):
            result = resolve_first([("inventory", broken), ("switches", lambda: ["x"])], "port groups")
        assert result == ["x"]
        assert "inventory" in caplog.text

    def test_nothing_found(self):
        assert resolve_first([("one", lambda: []), ("two", lambda: [])], "port groups") == []


class TestAdapters:
    """Test ethernet card backing resolution with real pyVmomi data objects"""

    def test_standard_backing(self):
        nic = _nic(vim.vm.device.VirtualEthernetCard.NetworkBackingInfo(deviceName="Prod-Net"))
        assert adapter_network_name(nic, {}, {}) == "Prod-Net"

    def test_distributed_backing(self):
        backing = vim.vm.device.VirtualEthernetCard.DistributedVirtualPortBackingInfo(
            port=vim.dvs.PortConnection(portgroupKey="dvportgroup-11", switchUuid="50 1a")
        )
        nic = _nic(backing)
        assert adapter_network_name(nic, {"dvportgroup-11": "DPG-Web"}, {}) == "DPG-Web"
        assert adapter_network_name(nic, {}, {}) == "dvportgroup-11"

    def test_opaque_backing(self):
        backing = vim.vm.device.VirtualEthernetCard.OpaqueNetworkBackingInfo(
            opaqueNetworkId="seg-1", opaqueNetworkType="nsx.LogicalSwitch"
        )
        assert adapter_network_name(_nic(backing), {}, {"seg-1": "Overlay-App"}) == "Overlay-App"

    def test_empty_backing_is_unknown(self):
        nic = _nic(vim.vm.device.VirtualEthernetCard.NetworkBackingInfo())
        assert adapter_network_name(nic, {}, {}) == UNKNOWN_NETWORK

    def test_vm_adapters_skips_other_devices(self):
        devices = [
            vim.vm.device.VirtualDisk(key=2000),
            _nic(vim.vm.device.VirtualEthernetCard.NetworkBackingInfo(deviceName="Prod-Net")),
            _nic(
                vim.vm.device.VirtualEthernetCard.NetworkBackingInfo(deviceName="Mgmt-Net"),
                label="Network adapter 2",
                mac="00:50:56:aa:bb:cd",
            ),
        ]
        adapters = vm_adapters("web-01", devices, {}, {})
        assert [(a.name, a.network_name, a.mac_address) for a in adapters] == [
            ("Network adapter 1", "Prod-Net", "00:50:56:aa:bb:cc"),
            ("Network adapter 2", "Mgmt-Net", "00:50:56:aa:bb:cd"),
        ]
        assert all(a.vm_name == "web-01" for a in adapters)


class TestGuestData:

    def test_guest_ips_nic_order_then_primary(self):
        vm = MagicMock()
        vm.guest.net = [
            MagicMock(ipAddress=["10.0.1.5", "fe80::1"]),
            MagicMock(ipAddress=["10.0.2.5"]),
        ]
        vm.guest.ipAddress = "10.0.1.5"
        assert guest_ips(vm) == ["10.0.1.5", "fe80::1", "10.0.2.5"]

    def test_primary_ip_only(self):
        vm = MagicMock()
        vm.guest.net = []
        vm.guest.ipAddress = "192.168.1.10"
        assert guest_ips(vm) == ["192.168.1.10"]

    def test_no_guest(self):
        vm = MagicMock()
        vm.guest = None
        assert guest_ips(vm) == []

    def test_snapshot_tree_flattened(self):
        child = _named("after", createTime=datetime(2026, 2, 1), description="", childSnapshotList=[])
        root = _named("before", createTime=datetime(2026, 1, 1), description="base", childSnapshotList=[child])
        snaps = _walk_snapshots("web-01", [root])
        assert [(s.name, s.parent) for s in snaps] == [("before", None), ("after", "before")]
        assert snaps[0].description == "base"

    @pytest.mark.parametrize(
        "spec,vlan",
        [
            (vim.dvs.VmwareDistributedVirtualSwitch.VlanIdSpec(vlanId=20), 20),
            (vim.dvs.VmwareDistributedVirtualSwitch.PvlanSpec(pvlanId=101), 101),
            (vim.dvs.VmwareDistributedVirtualSwitch.TrunkVlanSpec(), 0),
            (None, 0),
        ],
    )
    def test_vlan_from_spec(self, spec, vlan):
        assert _vlan_from_spec(spec) == vlan


class TestPortGroupDiscovery:
    """Test the fallback chain for port group discovery"""

    def test_standard_and_distributed(self):
        pg = MagicMock()
        pg.spec.name = "Prod-Net"
        pg.spec.vlanId = 10
        pg.spec.vswitchName = "vSwitch0"
        host = _named("esx-01")
        host.config.network.portgroup = [pg]

        dvpg = _named("DPG-Web")
        dvpg.config.uplink = False
        dvpg.config.defaultPortConfig.vlan = vim.dvs.VmwareDistributedVirtualSwitch.VlanIdSpec(vlanId=30)
        dvpg.config.distributedVirtualSwitch.name = "DSwitch"
        dvpg.host = [_named("esx-01"), _named("esx-02")]

        uplinks = _named("DSwitch-Uplinks")
        uplinks.config.uplink = True

        client = VCenterClient("vc", "user", "pw")
        result = client.get_port_groups([host], [dvpg, uplinks])
        assert result == [
            PortGroup(name="Prod-Net", vlan_id=10, switch_name="vSwitch0", host="esx-01"),
            PortGroup(name="DPG-Web", vlan_id=30, switch_name="DSwitch", host="esx-01"),
            PortGroup(name="DPG-Web", vlan_id=30, switch_name="DSwitch", host="esx-02"),
        ]

    def test_falls_back_to_switch_traversal(self):
        vsw = _named("vSwitch0")
        vsw.portgroup = ["key-vim.host.PortGroup-VM Network"]
        host = _named("esx-01")
        host.config.network.portgroup = []
        host.config.network.vswitch = [vsw]

        client = VCenterClient("vc", "user", "pw")
        client._get_all_objs = MagicMock(return_value=[])
        result = client.get_port_groups([host], [])
        assert result == [PortGroup(name="VM Network", vlan_id=0, switch_name="vSwitch0", host="esx-01")]


class TestSession:
    """Test connection handling and cache use"""

    def test_connection_failure_wrapped(self):
        with patch("vdiagram.vcenter_client.SmartConnect", side_effect=OSError("connection refused")):
            client = VCenterClient("vc", "user", "pw", verify_ssl=False)
            with pytest.raises(VCenterConnectionError, match="connection refused"):
                client.connect()

    def test_ssl_validation_flag(self):
        with patch("vdiagram.vcenter_client.SmartConnect") as smart_connect:
            VCenterClient("vc", "user", "pw", port=8443, verify_ssl=False).connect()
        kwargs = smart_connect.call_args.kwargs
        assert kwargs["disableSslCertValidation"] is True
        assert kwargs["port"] == 8443

    def test_disconnect(self):
        with patch("vdiagram.vcenter_client.SmartConnect") as smart_connect, patch(
            "vdiagram.vcenter_client.Disconnect"
        ) as disconnect:
            client = VCenterClient("vc", "user", "pw")
            client.connect()
            client.disconnect()
            disconnect.assert_called_once_with(smart_connect.return_value)
            client.disconnect()
            assert disconnect.call_count == 1

    def test_content_requires_session(self):
        with pytest.raises(VCenterConnectionError):
            VCenterClient("vc", "user", "pw").content

    def test_cached_inventory_served_without_connecting(self, tmp_path):
        cache = CacheManager(cache_dir=tmp_path, use_cache=True)
        cached = Inventory(vcenter="vc")
        cache.store(cached)
        with patch("vdiagram.vcenter_client.SmartConnect") as smart_connect:
            result = VCenterClient("vc", "user", "pw", cache_manager=cache).get_inventory()
        assert result == cached
        smart_connect.assert_not_called()
