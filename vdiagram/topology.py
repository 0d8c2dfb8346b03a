import ipaddress
import logging
import re
from collections import defaultdict
from enum import Enum
from typing import Dict, Iterable, List, Sequence, Tuple

from .models import (
    GatewayVM,
    Network,
    NetworkAdapter,
    PortGroup,
    SecurityZone,
    SubnetGroup,
    TopologyGraph,
    VirtualMachine,
    VlanGroup,
)

logger = logging.getLogger(__name__)

UNKNOWN_SWITCH = "Unknown"
DEFAULT_ZONE = "Unclassified"

# Order matters: the first matching rule wins, so "DMZ-Mgmt" lands in DMZ.
ZONE_RULES: List[Tuple[Tuple[str, ...], str]] = [
    (("dmz", "external", "internet"), "DMZ"),
    (("management", "mgmt"), "Management"),
    (("vmotion", "vsan", "storage", "bmc"), "Infrastructure"),
    (("production", "ops"), "Production"),
    (("dev", "test", "qa"), "Development"),
    (("office",), "Corporate"),
    (("guest", "vde"), "Guest"),
]

_DOTTED_QUAD = re.compile(r"^\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}$")
_LINK_LOCAL = ipaddress.ip_network("169.254.0.0/16")


class GroupingMode(str, Enum):
    VLAN = "VLAN"
    SUBNET = "Subnet"
    SECURITY_ZONE = "SecurityZone"

    @classmethod
    def parse(cls, value: str) -> "GroupingMode":
        """Case-insensitive lookup. Layer2Domain is known but has no layout."""
        raw = (value or "").strip().lower()
        for mode in cls:
            if mode.value.lower() == raw:
                return mode
        if raw == "layer2domain":
            raise ValueError("Grouping mode 'Layer2Domain' is not implemented; use VLAN, Subnet or SecurityZone.")
        raise ValueError(f"Unknown grouping mode {value!r} (expected VLAN, Subnet or SecurityZone).")


def qualifying_ipv4(ips: Iterable[str]) -> List[str]:
    """Return the dotted-quad IPv4 addresses outside 169.254.0.0/16, first-seen order, no duplicates."""
    out: List[str] = []
    for raw in ips or []:
        s = str(raw).strip()
        if not _DOTTED_QUAD.match(s):
            continue
        try:
            addr = ipaddress.IPv4Address(s)
        except ValueError:
            continue
        if addr in _LINK_LOCAL:
            continue
        if s not in out:
            out.append(s)
    return out


def subnet_key(ip: str) -> str:
    """Mask an IPv4 address to its /24, e.g. '10.0.1.5' -> '10.0.1.0/24'."""
    return str(ipaddress.ip_network(f"{ip}/24", strict=False))


def classify_zone(network_name: str) -> str:
    name = (network_name or "").lower()
    for patterns, zone in ZONE_RULES:
        if any(p in name for p in patterns):
            return zone
    return DEFAULT_ZONE


def _seed_networks(port_groups: Sequence[PortGroup]) -> Dict[str, Network]:
    networks: Dict[str, Network] = {}
    for pg in port_groups:
        if not pg.name:
            continue
        if pg.name in networks:
            # Standard port groups repeat once per host; the first one defines VLAN and switch.
            existing = networks[pg.name]
            if existing.vlan_id != pg.vlan_id:
                logger.debug(
                    "Port group %s seen with VLAN %s and %s; keeping %s",
                    pg.name,
                    existing.vlan_id,
                    pg.vlan_id,
                    existing.vlan_id,
                )
            continue
        networks[pg.name] = Network(name=pg.name, vlan_id=int(pg.vlan_id or 0), switch_name=pg.switch_name)
    return networks


def analyze_topology(
    vms: Sequence[VirtualMachine],
    port_groups: Sequence[PortGroup],
    adapters: Sequence[NetworkAdapter],
) -> TopologyGraph:
    """Build the grouped topology graph from one inventory snapshot.

    Notes:
      - Every adapter resolves to exactly one network. Networks missing from
        the port group list are synthesized with VLAN 0 on switch "Unknown".
      - Guest IPs are not bound to specific adapters by the guest API, so all
        qualifying IPv4 addresses of a VM are attributed to each of its adapters.
      - A network is isolated when it has at most one VM; a VM is a gateway
        when it is attached to more than one distinct network.
    """
    graph = TopologyGraph()
    graph.networks = _seed_networks(port_groups)
    graph.vms = {vm.name: vm for vm in vms}

    adapters_by_vm: Dict[str, List[NetworkAdapter]] = defaultdict(list)
    for adapter in adapters:
        net_name = adapter.network_name or UNKNOWN_SWITCH
        if net_name not in graph.networks:
            logger.warning(
                "Network %s (adapter %s on %s) not found in port groups; adding it as untagged on switch %s",
                net_name,
                adapter.name,
                adapter.vm_name,
                UNKNOWN_SWITCH,
            )
            graph.networks[net_name] = Network(
                name=net_name, vlan_id=0, switch_name=UNKNOWN_SWITCH, synthesized=True
            )
        adapters_by_vm[adapter.vm_name].append(adapter)

    for vm_name in sorted(adapters_by_vm):
        vm = graph.vms.get(vm_name)
        if vm is None:
            logger.warning("Adapter references VM %s which is not in the VM list; adding placeholder", vm_name)
            vm = VirtualMachine(name=vm_name)
            graph.vms[vm_name] = vm

        vm_adapters = adapters_by_vm[vm_name]
        graph.adapters[vm_name] = vm_adapters
        ips = qualifying_ipv4(vm.guest_ips)
        graph.vm_ips[vm_name] = ips

        for adapter in vm_adapters:
            net = graph.networks[adapter.network_name or UNKNOWN_SWITCH]
            net.vms.add(vm_name)
            for ip in ips:
                cidr = subnet_key(ip)
                net.ips.add(ip)
                net.subnets.add(cidr)
                group = graph.subnets.setdefault(cidr, SubnetGroup(cidr=cidr))
                group.networks.add(net.name)
                group.vms.add(vm_name)
                group.ips.add(ip)

        attached = {a.network_name or UNKNOWN_SWITCH for a in vm_adapters}
        if len(attached) > 1:
            graph.gateways[vm_name] = GatewayVM(
                name=vm_name,
                networks=attached,
                ips=set(ips),
                adapter_count=len(vm_adapters),
            )

    for vm_name in graph.vms:
        graph.vm_ips.setdefault(vm_name, qualifying_ipv4(graph.vms[vm_name].guest_ips))

    for net in graph.networks.values():
        net.isolated = len(net.vms) <= 1
        net.zone = classify_zone(net.name)

        vlan = graph.vlans.setdefault(net.vlan_id, VlanGroup(vlan_id=net.vlan_id))
        vlan.networks.add(net.name)
        vlan.vms.update(net.vms)

        zone = graph.zones.setdefault(net.zone, SecurityZone(name=net.zone))
        zone.networks.add(net.name)
        zone.vms.update(net.vms)

    logger.info(
        "Topology: %s networks, %s VLANs, %s subnets, %s zones, %s gateway VMs, %s isolated networks",
        len(graph.networks),
        len(graph.vlans),
        len(graph.subnets),
        len(graph.zones),
        len(graph.gateways),
        sum(1 for n in graph.networks.values() if n.isolated),
    )
    return graph
