# conftest.py - shared fixtures for the vdiagram test suite

from datetime import datetime

import pytest

from vdiagram.config import DiagramSettings, Settings, VCenterSettings
from vdiagram.models import (
    Folder,
    Host,
    Inventory,
    NetworkAdapter,
    PortGroup,
    Snapshot,
    VirtualMachine,
    VirtualSwitch,
)
from vdiagram.reports import Thresholds


#==============================================================================
# FIXTURES - Inventory
#==============================================================================

@pytest.fixture
def scenario_vms():
    """VM-A and VM-B on Prod-Net, VM-C on Prod-Net and Mgmt-Net"""
    return [
        VirtualMachine(
            name="VM-A", power_state="poweredOn", num_cpu=2, memory_mb=4096,
            guest_ips=["10.0.1.5"], host="esx-01a.lab", cluster="Cluster-01", datacenter="DC-01",
        ),
        VirtualMachine(
            name="VM-B", power_state="poweredOn", num_cpu=4, memory_mb=8192,
            guest_ips=["10.0.1.9"], host="esx-01a.lab", cluster="Cluster-01", datacenter="DC-01",
        ),
        VirtualMachine(
            name="VM-C", power_state="poweredOff", num_cpu=2, memory_mb=2048,
            guest_ips=["10.0.1.20", "10.0.2.5"], host="esx-02a.lab", cluster="Cluster-01", datacenter="DC-01",
        ),
    ]


@pytest.fixture
def scenario_port_groups():
    """Prod-Net on VLAN 10, Mgmt-Net untagged"""
    return [
        PortGroup(name="Prod-Net", vlan_id=10, switch_name="vSwitch0", host="esx-01a.lab"),
        PortGroup(name="Prod-Net", vlan_id=10, switch_name="vSwitch0", host="esx-02a.lab"),
        PortGroup(name="Mgmt-Net", vlan_id=0, switch_name="vSwitch1", host="esx-02a.lab"),
    ]


@pytest.fixture
def scenario_adapters():
    return [
        NetworkAdapter(vm_name="VM-A", name="Network adapter 1", network_name="Prod-Net", mac_address="00:50:56:00:00:0a"),
        NetworkAdapter(vm_name="VM-B", name="Network adapter 1", network_name="Prod-Net", mac_address="00:50:56:00:00:0b"),
        NetworkAdapter(vm_name="VM-C", name="Network adapter 1", network_name="Prod-Net", mac_address="00:50:56:00:00:0c"),
        NetworkAdapter(vm_name="VM-C", name="Network adapter 2", network_name="Mgmt-Net", mac_address="00:50:56:00:01:0c"),
    ]


@pytest.fixture
def scenario_hosts():
    return [
        Host(
            name="esx-01a.lab", datacenter="DC-01", cluster="Cluster-01",
            connection_state="connected", power_state="poweredOn",
            num_cpu_cores=8, cpu_mhz_per_core=2000, cpu_usage_mhz=14000,
            memory_mb=65536, memory_usage_mb=32768, vm_count=2, version="8.0.2",
        ),
        Host(
            name="esx-02a.lab", datacenter="DC-01", cluster="Cluster-01",
            connection_state="connected", power_state="poweredOn",
            num_cpu_cores=8, cpu_mhz_per_core=2000, cpu_usage_mhz=1000,
            memory_mb=65536, memory_usage_mb=60000, vm_count=1, version="8.0.2",
        ),
    ]


@pytest.fixture
def scenario_inventory(scenario_vms, scenario_port_groups, scenario_adapters, scenario_hosts):
    """Full inventory snapshot built around the three-VM scenario"""
    scenario_vms[0].snapshots = [
        Snapshot(vm_name="VM-A", name="before-patch", created=datetime(2026, 1, 10, 8, 0, 0), description="pre patch"),
        Snapshot(vm_name="VM-A", name="after-patch", created=datetime(2026, 3, 1, 8, 0, 0), parent="before-patch"),
    ]
    scenario_vms[0].created = datetime(2025, 10, 18, 12, 0, 0)
    return Inventory(
        vcenter="vcsa-01a.lab",
        collected_at=datetime(2026, 10, 18, 9, 30, 0),
        vms=scenario_vms,
        hosts=scenario_hosts,
        port_groups=scenario_port_groups,
        adapters=scenario_adapters,
        switches=[
            VirtualSwitch(host="esx-01a.lab", name="vSwitch0"),
            VirtualSwitch(host="esx-02a.lab", name="vSwitch0"),
            VirtualSwitch(host="esx-02a.lab", name="vSwitch1"),
        ],
        folders=[
            Folder(datacenter="DC-01", path="DC-01/vm", vm_names=[], child_folder_count=1),
            Folder(datacenter="DC-01", path="DC-01/vm/Prod", vm_names=["VM-A", "VM-B", "VM-C"]),
        ],
    )


#==============================================================================
# FIXTURES - Settings
#==============================================================================

@pytest.fixture
def settings(tmp_path):
    """Environment-free settings pointing at a temporary output directory"""
    output_dir = tmp_path / "output"
    cache_dir = output_dir / "cache"
    cache_dir.mkdir(parents=True)
    return Settings(
        vcenter=VCenterSettings(host="vcsa-01a.lab", user="administrator@vsphere.local", password="secret"),
        output_dir=output_dir,
        cache_dir=cache_dir,
        use_cached_data=False,
        diagram=DiagramSettings(),
        thresholds=Thresholds(),
    )


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every environment variable the settings loader reads"""
    for name in (
        "APP_CONFIG_FILE", "VCENTER_HOST", "VCENTER_USER", "VCENTER_PASSWORD", "VCENTER_PASSWORD_FILE",
        "VCENTER_PORT", "VCENTER_VERIFY_SSL", "OUTPUT_DIR", "CACHE_DIR", "USE_CACHED_DATA", "CACHE_MAX_AGE_HOURS",
        "LOG_LEVEL", "LOG_DIR",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


#==============================================================================
# PYTEST CONFIGURATION
#==============================================================================

def pytest_configure(config):
    """Configure custom markers"""
    config.addinivalue_line("markers", "unit: fast unit tests without a vCenter")
