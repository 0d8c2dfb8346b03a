"""Network topology layout: groups -> networks -> VMs, rendered through DiagramBuilder."""
import ipaddress
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Set, Tuple

from .drawio import DiagramBuilder
from .models import TopologyGraph, VirtualMachine
from .topology import GroupingMode

logger = logging.getLogger(__name__)

VM_WIDTH = 200
VM_HEIGHT = 420
VM_GAP = 40
ROW_HEIGHT = 480
NETWORK_X = 20
NETWORK_WIDTH = 240
NETWORK_HEIGHT = 100
VM_START_X = NETWORK_X + NETWORK_WIDTH + 60
MARGIN = 20
LANE_BASE_HEIGHT = 300
LANE_HEADER = 60
GROUP_GAP = 80
DEFAULT_LANE_WIDTH = 2400
ZONE_LANE_WIDTH = 1400
NO_SUBNET_GROUP = "No IPv4"

LANE_STYLE = (
    "swimlane;startSize=40;horizontal=1;fillColor=#f5f5f5;strokeColor=#666666;"
    "fontStyle=1;fontSize=16;rounded=0;"
)
HEADER_STYLE = "text;align=left;verticalAlign=middle;fontStyle=1;fontSize=16;"
NETWORK_STYLE = "rounded=1;whiteSpace=wrap;fontStyle=1;fillColor={fill};strokeColor={stroke};fontColor=#000000;"
VM_STYLE = "rounded=0;whiteSpace=wrap;align=left;verticalAlign=top;spacingLeft=6;fillColor={fill};strokeColor={stroke};fontColor=#000000;"
LEGEND_STYLE = "swimlane;startSize=30;fillColor=#ffffff;strokeColor=#000000;fontStyle=1;"
LEGEND_ITEM_STYLE = "rounded=0;whiteSpace=wrap;align=left;spacingLeft=6;fillColor={fill};strokeColor={stroke};fontColor=#000000;"

VM_COLORS = ("#dae8fc", "#6c8ebf")
GATEWAY_COLORS = ("#ffe6cc", "#d79b00")
POWERED_OFF_COLORS = ("#f5f5f5", "#999999")
ZONE_COLORS: Dict[str, Tuple[str, str]] = {
    "DMZ": ("#f8cecc", "#b85450"),
    "Management": ("#e1d5e7", "#9673a6"),
    "Infrastructure": ("#fff2cc", "#d6b656"),
    "Production": ("#d5e8d4", "#82b366"),
    "Development": ("#dae8fc", "#6c8ebf"),
    "Corporate": ("#b1ddf0", "#10739e"),
    "Guest": ("#fad9d5", "#ae4132"),
    "Unclassified": ("#ffffff", "#000000"),
}


@dataclass
class DiagramOptions:
    grouping: GroupingMode = GroupingMode.VLAN
    swim_lanes: bool = False
    show_isolated: bool = True
    highlight_gateways: bool = False
    lane_width: int = DEFAULT_LANE_WIDTH
    html_labels: bool = True

    @property
    def row_width(self) -> int:
        if self.grouping == GroupingMode.SECURITY_ZONE:
            return ZONE_LANE_WIDTH
        return self.lane_width


@dataclass
class _Group:
    title: str
    networks: List[str]
    # Per network: the VMs shown under it in this group. None shows every attached VM.
    vm_filter: Optional[Dict[str, Set[str]]] = None


def _subnet_sort_key(cidr: str):
    return ipaddress.ip_network(cidr)


def _groups_for(graph: TopologyGraph, mode: GroupingMode) -> List[_Group]:
    groups: List[_Group] = []
    if mode == GroupingMode.VLAN:
        for vlan_id in sorted(graph.vlans):
            title = f"VLAN {vlan_id}" if vlan_id else "VLAN 0 (untagged)"
            groups.append(_Group(title=title, networks=sorted(graph.vlans[vlan_id].networks)))
    elif mode == GroupingMode.SUBNET:
        shown: Dict[str, Set[str]] = {}
        for cidr in sorted(graph.subnets, key=_subnet_sort_key):
            sg = graph.subnets[cidr]
            groups.append(_Group(
                title=cidr,
                networks=sorted(sg.networks),
                vm_filter={n: set(sg.vms) for n in sg.networks},
            ))
            for n in sg.networks:
                shown.setdefault(n, set()).update(graph.networks[n].vms & sg.vms)
        # Networks without a subnet, and VMs left out of every subnet of their network
        leftovers = {
            n.name: n.vms - shown.get(n.name, set())
            for n in graph.networks.values()
            if not n.subnets or n.vms - shown.get(n.name, set())
        }
        if leftovers:
            for name, vms in sorted(leftovers.items()):
                if graph.networks[name].subnets:
                    logger.debug("%d VM(s) on %s have no IPv4 address: %s", len(vms), name, sorted(vms))
            groups.append(_Group(title=NO_SUBNET_GROUP, networks=sorted(leftovers), vm_filter=leftovers))
    elif mode == GroupingMode.SECURITY_ZONE:
        for zone in sorted(graph.zones):
            groups.append(_Group(title=zone, networks=sorted(graph.zones[zone].networks)))
    else:
        raise ValueError(f"Unsupported grouping mode: {mode!r}")
    return groups


def _network_vms(graph: TopologyGraph, network: str, vm_filter: Optional[Dict[str, Set[str]]]) -> List[str]:
    vms = graph.networks[network].vms
    if vm_filter is not None:
        vms = vms & vm_filter.get(network, set())
    return sorted(vms)


def vms_per_row(row_width: int) -> int:
    fits = (row_width - MARGIN - VM_START_X - VM_WIDTH) // (VM_WIDTH + VM_GAP) + 1
    return max(1, fits)


def rows_needed(vm_count: int, row_width: int) -> int:
    per_row = vms_per_row(row_width)
    return max(1, -(-vm_count // per_row))


def vm_label_lines(vm: VirtualMachine, graph: TopologyGraph) -> List[str]:
    """VM name, one block per adapter, then CPU / RAM / power state."""
    ips = graph.vm_ips.get(vm.name, [])
    first_ip = ips[0] if ips else None
    lines = [vm.name]
    for adapter in graph.adapters.get(vm.name, []):
        lines.append(adapter.name)
        if first_ip:
            lines.append(f"IP: {first_ip}")
        lines.append(f"Network: {adapter.network_name}")
        if adapter.mac_address:
            lines.append(f"MAC: {adapter.mac_address}")
    lines.append(f"CPU: {vm.num_cpu}")
    lines.append(f"RAM: {round((vm.memory_mb or 0) / 1024)} GB")
    lines.append(f"Power: {vm.power_state}")
    return lines


def _network_label_lines(graph: TopologyGraph, name: str) -> List[str]:
    net = graph.networks[name]
    lines = [name, f"VLAN {net.vlan_id}", f"Switch: {net.switch_name}", f"Zone: {net.zone}"]
    if net.isolated:
        lines.append("Isolated")
    return lines


class _Layout:
    def __init__(self, graph: TopologyGraph, options: DiagramOptions):
        self.graph = graph
        self.options = options
        self.builder = DiagramBuilder(
            name=f"Network topology by {options.grouping.value}",
            html_labels=options.html_labels,
        )
        self.used_zones: Set[str] = set()
        self.used_gateway = False
        self.used_isolated = False
        self.used_powered_off = False

    def _vm_style(self, vm: VirtualMachine) -> str:
        if self.options.highlight_gateways and vm.name in self.graph.gateways:
            self.used_gateway = True
            fill, stroke = GATEWAY_COLORS
        elif vm.power_state == "poweredOff":
            self.used_powered_off = True
            fill, stroke = POWERED_OFF_COLORS
        else:
            fill, stroke = VM_COLORS
        return VM_STYLE.format(fill=fill, stroke=stroke)

    def _network_style(self, name: str) -> str:
        net = self.graph.networks[name]
        self.used_zones.add(net.zone)
        fill, stroke = ZONE_COLORS.get(net.zone, ZONE_COLORS["Unclassified"])
        style = NETWORK_STYLE.format(fill=fill, stroke=stroke)
        if net.isolated:
            self.used_isolated = True
            style += "dashed=1;"
        return style

    def _visible_networks(self, group: _Group) -> List[str]:
        if self.options.show_isolated:
            return list(group.networks)
        return [n for n in group.networks if not self.graph.networks[n].isolated]

    def place_group(self, group: _Group, top: int) -> int:
        """Lay out one group starting at y=top; returns the height used."""
        networks = self._visible_networks(group)
        if not networks:
            return 0

        row_width = self.options.row_width
        rows = sum(
            rows_needed(len(_network_vms(self.graph, n, group.vm_filter)), row_width) for n in networks
        )

        if self.options.swim_lanes:
            height = LANE_BASE_HEIGHT + rows * ROW_HEIGHT
            parent = self.builder.add_node(group.title, LANE_STYLE, 0, top, row_width, height)
            y = LANE_HEADER
        else:
            height = LANE_HEADER + rows * ROW_HEIGHT
            self.builder.add_node(group.title, HEADER_STYLE, 0, top, row_width, 40)
            parent = "1"
            y = top + LANE_HEADER

        for name in networks:
            net_id = self.builder.add_node(
                self.builder.label(_network_label_lines(self.graph, name)),
                self._network_style(name),
                NETWORK_X,
                y,
                NETWORK_WIDTH,
                NETWORK_HEIGHT,
                parent=parent,
            )
            x = VM_START_X
            for vm_name in _network_vms(self.graph, name, group.vm_filter):
                if x != VM_START_X and x + VM_WIDTH > row_width - MARGIN:
                    x = VM_START_X
                    y += ROW_HEIGHT
                vm = self.graph.vms[vm_name]
                vm_id = self.builder.add_node(
                    self.builder.label(vm_label_lines(vm, self.graph)),
                    self._vm_style(vm),
                    x,
                    y,
                    VM_WIDTH,
                    VM_HEIGHT,
                    parent=parent,
                )
                adapters = [a.name for a in self.graph.adapters.get(vm_name, []) if a.network_name == name]
                self.builder.add_edge(vm_id, net_id, label=", ".join(adapters))
                x += VM_WIDTH + VM_GAP
            y += ROW_HEIGHT

        return height

    def legend_entries(self) -> List[Tuple[str, Tuple[str, str], bool]]:
        entries: List[Tuple[str, Tuple[str, str], bool]] = [("Virtual machine", VM_COLORS, False)]
        if self.used_gateway:
            entries.append(("Gateway VM (attached to more than one network)", GATEWAY_COLORS, False))
        if self.used_powered_off:
            entries.append(("Powered-off VM", POWERED_OFF_COLORS, False))
        if self.used_isolated:
            entries.append(("Isolated network (at most one VM)", ZONE_COLORS["Unclassified"], True))
        for zone in sorted(self.used_zones):
            entries.append((f"Network in zone {zone}", ZONE_COLORS.get(zone, ZONE_COLORS["Unclassified"]), False))
        return entries

    def place_legend(self, top: int) -> None:
        entries = self.legend_entries()
        legend_id = self.builder.add_node("Legend", LEGEND_STYLE, 0, top, 400, 40 + len(entries) * 40)
        for idx, (text, (fill, stroke), dashed) in enumerate(entries):
            style = LEGEND_ITEM_STYLE.format(fill=fill, stroke=stroke)
            if dashed:
                style += "dashed=1;"
            self.builder.add_node(text, style, 10, 35 + idx * 40, 380, 30, parent=legend_id)


def build_network_diagram(graph: TopologyGraph, options: DiagramOptions) -> DiagramBuilder:
    """Lay out the topology graph for the requested grouping mode.

    Groups are emitted in sorted key order, networks by name and VMs by name,
    so identical input produces an identical document.
    """
    layout = _Layout(graph, options)
    top = 0
    placed = 0
    for group in _groups_for(graph, options.grouping):
        height = layout.place_group(group, top)
        if height:
            placed += 1
            top += height + GROUP_GAP
    layout.place_legend(top)
    logger.info(
        "Laid out %s %s groups (swim lanes=%s, isolated shown=%s, gateways highlighted=%s)",
        placed,
        options.grouping.value,
        options.swim_lanes,
        options.show_isolated,
        options.highlight_gateways,
    )
    return layout.builder
