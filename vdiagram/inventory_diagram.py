"""Inventory hierarchy diagram: vCenter -> datacenter -> cluster -> host -> switch -> port group -> VM."""
import logging
from collections import defaultdict
from typing import Dict, List, Optional, Tuple

from .drawio import DiagramBuilder
from .models import Host, Inventory, PortGroup, VirtualMachine

logger = logging.getLogger(__name__)

COLUMN_WIDTH = 260
NODE_WIDTH = 220
NODE_HEIGHT = 60
LEVEL_GAP = 120
STACK_GAP = 20
INDENT = 20

VCENTER_Y = 0
DATACENTER_Y = VCENTER_Y + NODE_HEIGHT + LEVEL_GAP
CLUSTER_Y = DATACENTER_Y + NODE_HEIGHT + LEVEL_GAP
HOST_Y = CLUSTER_Y + NODE_HEIGHT + LEVEL_GAP
STACK_Y = HOST_Y + NODE_HEIGHT + LEVEL_GAP

NO_CLUSTER = "(standalone)"
NO_DATACENTER = "(no datacenter)"
UNKNOWN_SWITCH = "Unknown"

STYLES = {
    "vcenter": "rounded=1;whiteSpace=wrap;fillColor=#1ba1e2;strokeColor=#006eaf;fontColor=#ffffff;fontStyle=1;",
    "datacenter": "rounded=1;whiteSpace=wrap;fillColor=#e1d5e7;strokeColor=#9673a6;fontColor=#000000;fontStyle=1;",
    "cluster": "rounded=1;whiteSpace=wrap;fillColor=#d5e8d4;strokeColor=#82b366;fontColor=#000000;fontStyle=1;",
    "host": "rounded=0;whiteSpace=wrap;fillColor=#fff2cc;strokeColor=#d6b656;fontColor=#000000;",
    "switch": "rounded=0;whiteSpace=wrap;fillColor=#f8cecc;strokeColor=#b85450;fontColor=#000000;",
    "portgroup": "rounded=1;whiteSpace=wrap;fillColor=#dae8fc;strokeColor=#6c8ebf;fontColor=#000000;",
    "vm": "rounded=0;whiteSpace=wrap;fillColor=#ffffff;strokeColor=#666666;fontColor=#000000;",
}


def _switch_key(host: str, switch: str) -> str:
    return f"{host}|{switch}"


def _portgroup_key(host: str, switch: str, portgroup: str) -> str:
    return f"{host}|{switch}|{portgroup}"


def _centered_x(columns: List[int]) -> int:
    """x for a node centred over the given host columns."""
    left = min(columns) * COLUMN_WIDTH
    right = max(columns) * COLUMN_WIDTH + NODE_WIDTH
    return left + (right - left - NODE_WIDTH) // 2


def _host_tree(hosts: List[Host]) -> Dict[str, Dict[str, List[Host]]]:
    tree: Dict[str, Dict[str, List[Host]]] = defaultdict(lambda: defaultdict(list))
    for host in sorted(hosts, key=lambda h: h.name):
        tree[host.datacenter or NO_DATACENTER][host.cluster or NO_CLUSTER].append(host)
    return tree


class _HostColumn:
    """Stacks switches, port groups and VMs under a single host."""

    def __init__(self, builder: DiagramBuilder, host: Host, column: int, host_id: str):
        self.builder = builder
        self.host = host
        self.host_id = host_id
        self.x = column * COLUMN_WIDTH
        self.y = STACK_Y

    def _stack(self, label: str, style: str, indent: int) -> str:
        node_id = self.builder.add_node(
            label, style, self.x + indent, self.y, NODE_WIDTH - indent, NODE_HEIGHT
        )
        self.y += NODE_HEIGHT + STACK_GAP
        return node_id

    def switch(self, name: str, kind: str = "Standard") -> str:
        key = _switch_key(self.host.name, name)
        if key not in self.builder.switch_nodes:
            node_id = self._stack(self.builder.label([name, kind]), STYLES["switch"], 0)
            self.builder.add_edge(self.host_id, node_id)
            self.builder.switch_nodes[key] = node_id
        return self.builder.switch_nodes[key]

    def portgroup(self, switch: str, name: str, vlan_id: int = 0) -> str:
        key = _portgroup_key(self.host.name, switch, name)
        if key not in self.builder.portgroup_nodes:
            switch_id = self.switch(switch)
            node_id = self._stack(self.builder.label([name, f"VLAN {vlan_id}"]), STYLES["portgroup"], INDENT)
            self.builder.add_edge(switch_id, node_id)
            self.builder.portgroup_nodes[key] = node_id
        return self.builder.portgroup_nodes[key]

    def vm(self, vm: VirtualMachine, portgroup_ids: List[str]) -> None:
        node_id = self._stack(
            self.builder.label([vm.name, vm.power_state]), STYLES["vm"], INDENT * 2
        )
        for pg_id in portgroup_ids:
            self.builder.add_edge(pg_id, node_id)


def build_inventory_diagram(inventory: Inventory, html_labels: bool = True) -> DiagramBuilder:
    """Render the vCenter inventory as a tree, one column per host.

    VMs are attached to the port group node on their own host. When the
    port group is unknown on that host it is added under switch "Unknown",
    so no adapter is dropped.
    """
    builder = DiagramBuilder(name=f"Inventory {inventory.vcenter}", html_labels=html_labels)
    tree = _host_tree(inventory.hosts)

    switches_by_host: Dict[str, List[Tuple[str, str]]] = defaultdict(list)
    for sw in sorted(inventory.switches, key=lambda s: (s.host, s.name)):
        switches_by_host[sw.host].append((sw.name, sw.kind))

    portgroups_by_host: Dict[str, Dict[str, PortGroup]] = defaultdict(dict)
    for pg in sorted(inventory.port_groups, key=lambda p: (p.host or "", p.switch_name, p.name)):
        if pg.host:
            portgroups_by_host[pg.host].setdefault(pg.name, pg)

    vms_by_host: Dict[str, List[VirtualMachine]] = defaultdict(list)
    for vm in sorted(inventory.vms, key=lambda v: v.name):
        if vm.host:
            vms_by_host[vm.host].append(vm)
        else:
            logger.warning("VM %s has no host; it is not shown in the hierarchy diagram", vm.name)

    adapters_by_vm: Dict[str, List[str]] = defaultdict(list)
    for adapter in inventory.adapters:
        adapters_by_vm[adapter.vm_name].append(adapter.network_name)

    all_columns: List[int] = []
    column = 0

    # Hosts first: their columns decide where clusters and datacenters go.
    host_ids: Dict[str, str] = {}
    cluster_columns: Dict[Tuple[str, str], List[int]] = {}
    for dc_name in sorted(tree):
        for cluster_name in sorted(tree[dc_name]):
            cols: List[int] = []
            for host in tree[dc_name][cluster_name]:
                host_ids[host.name] = builder.add_node(
                    builder.label([host.name, host.connection_state, host.version]),
                    STYLES["host"],
                    column * COLUMN_WIDTH,
                    HOST_Y,
                    NODE_WIDTH,
                    NODE_HEIGHT,
                )
                col = _HostColumn(builder, host, column, host_ids[host.name])
                for sw_name, kind in switches_by_host.get(host.name, []):
                    col.switch(sw_name, kind)
                    for pg in portgroups_by_host.get(host.name, {}).values():
                        if pg.switch_name == sw_name:
                            col.portgroup(sw_name, pg.name, pg.vlan_id)
                for pg in portgroups_by_host.get(host.name, {}).values():
                    # Port groups whose switch was not reported get their switch on demand.
                    col.portgroup(pg.switch_name, pg.name, pg.vlan_id)
                for vm in vms_by_host.get(host.name, []):
                    pg_ids: List[str] = []
                    for net_name in adapters_by_vm.get(vm.name, []):
                        known: Optional[PortGroup] = portgroups_by_host.get(host.name, {}).get(net_name)
                        if known is not None:
                            pg_ids.append(col.portgroup(known.switch_name, known.name, known.vlan_id))
                        else:
                            logger.warning(
                                "Port group %s of VM %s not found on host %s; placing it under switch %s",
                                net_name,
                                vm.name,
                                host.name,
                                UNKNOWN_SWITCH,
                            )
                            pg_ids.append(col.portgroup(UNKNOWN_SWITCH, net_name, 0))
                    col.vm(vm, pg_ids)
                cols.append(column)
                column += 1
            cluster_columns[(dc_name, cluster_name)] = cols
            all_columns.extend(cols)

    for host_name in sorted(set(vms_by_host) - set(host_ids)):
        logger.warning(
            "Host %s of %s VM(s) is not in the host list; those VMs are not shown",
            host_name,
            len(vms_by_host[host_name]),
        )

    if not all_columns:
        all_columns = [0]

    vcenter_id = builder.add_node(
        builder.label([inventory.vcenter, "vCenter"]),
        STYLES["vcenter"],
        _centered_x(all_columns),
        VCENTER_Y,
        NODE_WIDTH,
        NODE_HEIGHT,
    )
    for dc_name in sorted(tree):
        dc_cols = [c for (dc, _), cols in cluster_columns.items() if dc == dc_name for c in cols]
        dc_id = builder.add_node(
            dc_name, STYLES["datacenter"], _centered_x(dc_cols), DATACENTER_Y, NODE_WIDTH, NODE_HEIGHT
        )
        builder.add_edge(vcenter_id, dc_id)
        for cluster_name in sorted(tree[dc_name]):
            cols = cluster_columns[(dc_name, cluster_name)]
            cluster_id = builder.add_node(
                cluster_name, STYLES["cluster"], _centered_x(cols), CLUSTER_Y, NODE_WIDTH, NODE_HEIGHT
            )
            builder.add_edge(dc_id, cluster_id)
            for host in tree[dc_name][cluster_name]:
                builder.add_edge(cluster_id, host_ids[host.name])

    logger.info(
        "Inventory diagram: %s hosts, %s switches, %s port groups",
        len(host_ids),
        len(builder.switch_nodes),
        len(builder.portgroup_nodes),
    )
    return builder
