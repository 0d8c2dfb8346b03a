from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Set


# ---------------------------------------------------------------------------
# Inventory records (collector output)
# ---------------------------------------------------------------------------


@dataclass
class Snapshot:
    vm_name: str
    name: str
    created: Optional[datetime] = None
    description: str = ""
    parent: Optional[str] = None


@dataclass
class VirtualMachine:
    """
    Normalized representation of a vCenter virtual machine.

    guest_ips holds the addresses exactly as reported by VMware Tools
    (IPv6 and link-local included); filtering happens in the analyzer.
    """

    name: str
    power_state: str = "unknown"
    num_cpu: int = 0
    memory_mb: int = 0
    guest_ips: List[str] = field(default_factory=list)
    tools_status: str = ""
    guest_os: str = ""
    host: Optional[str] = None
    cluster: Optional[str] = None
    datacenter: Optional[str] = None
    folder: Optional[str] = None
    cpu_usage_mhz: int = 0
    guest_memory_usage_mb: int = 0
    provisioned_gb: float = 0.0
    created: Optional[datetime] = None
    template: bool = False
    snapshots: List[Snapshot] = field(default_factory=list)


@dataclass
class NetworkAdapter:
    vm_name: str
    name: str  # device label, e.g. "Network adapter 1"
    network_name: str
    mac_address: str = ""


@dataclass
class PortGroup:
    """A standard or distributed port group. vlan_id 0 means untagged."""

    name: str
    vlan_id: int = 0
    switch_name: str = "Unknown"
    host: Optional[str] = None


@dataclass
class VirtualSwitch:
    host: str
    name: str
    kind: str = "Standard"  # or "Distributed"


@dataclass
class Host:
    name: str
    datacenter: Optional[str] = None
    cluster: Optional[str] = None
    connection_state: str = "unknown"
    power_state: str = "unknown"
    num_cpu_cores: int = 0
    cpu_mhz_per_core: int = 0
    cpu_usage_mhz: int = 0
    memory_mb: int = 0
    memory_usage_mb: int = 0
    vm_count: int = 0
    version: str = ""


@dataclass
class Folder:
    datacenter: str
    path: str  # e.g. "Datacenter/vm/Prod/Web"
    vm_names: List[str] = field(default_factory=list)
    child_folder_count: int = 0


@dataclass
class Inventory:
    """A single read-only snapshot of one vCenter."""

    vcenter: str
    collected_at: Optional[datetime] = None
    vms: List[VirtualMachine] = field(default_factory=list)
    hosts: List[Host] = field(default_factory=list)
    port_groups: List[PortGroup] = field(default_factory=list)
    adapters: List[NetworkAdapter] = field(default_factory=list)
    switches: List[VirtualSwitch] = field(default_factory=list)
    folders: List[Folder] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Topology graph (analyzer output)
# ---------------------------------------------------------------------------


@dataclass
class Network:
    name: str
    vlan_id: int = 0
    switch_name: str = "Unknown"
    vms: Set[str] = field(default_factory=set)
    ips: Set[str] = field(default_factory=set)
    subnets: Set[str] = field(default_factory=set)
    zone: str = "Unclassified"
    isolated: bool = True
    synthesized: bool = False


@dataclass
class VlanGroup:
    vlan_id: int
    networks: Set[str] = field(default_factory=set)
    vms: Set[str] = field(default_factory=set)


@dataclass
class SubnetGroup:
    cidr: str
    networks: Set[str] = field(default_factory=set)
    vms: Set[str] = field(default_factory=set)
    ips: Set[str] = field(default_factory=set)


@dataclass
class SecurityZone:
    name: str
    networks: Set[str] = field(default_factory=set)
    vms: Set[str] = field(default_factory=set)


@dataclass
class GatewayVM:
    name: str
    networks: Set[str] = field(default_factory=set)
    ips: Set[str] = field(default_factory=set)
    adapter_count: int = 0


@dataclass
class TopologyGraph:
    """Grouped view of one inventory snapshot. Built once, never updated."""

    networks: Dict[str, Network] = field(default_factory=dict)
    vlans: Dict[int, VlanGroup] = field(default_factory=dict)
    subnets: Dict[str, SubnetGroup] = field(default_factory=dict)
    zones: Dict[str, SecurityZone] = field(default_factory=dict)
    gateways: Dict[str, GatewayVM] = field(default_factory=dict)
    vms: Dict[str, VirtualMachine] = field(default_factory=dict)
    adapters: Dict[str, List[NetworkAdapter]] = field(default_factory=dict)  # key = VM name
    vm_ips: Dict[str, List[str]] = field(default_factory=dict)  # qualifying IPv4 only


# ---------------------------------------------------------------------------
# Diagram cells (rendering artifacts)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DiagramNode:
    id: str
    label: str
    style: str
    x: int
    y: int
    width: int
    height: int
    parent: str = "1"


@dataclass(frozen=True)
class DiagramEdge:
    id: str
    source: str
    target: str
    label: str = ""
    style: str = ""
    parent: str = "1"
