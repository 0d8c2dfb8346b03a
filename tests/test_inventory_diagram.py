# test_inventory_diagram.py - inventory hierarchy diagram unit tests

import logging

from vdiagram.inventory_diagram import (
    COLUMN_WIDTH,
    HOST_Y,
    STYLES,
    UNKNOWN_SWITCH,
    VCENTER_Y,
    build_inventory_diagram,
)
from vdiagram.models import Host, Inventory, NetworkAdapter, VirtualMachine


def _by_style(builder, kind):
    return [n for n in builder.nodes if n.style.startswith(STYLES[kind].rstrip(";"))]


def _first_line(node):
    return node.label.split("<br>")[0].split("\n")[0]


class TestHierarchy:
    """Test vCenter -> datacenter -> cluster -> host -> switch -> port group -> VM"""

    def test_node_counts(self, scenario_inventory):
        builder = build_inventory_diagram(scenario_inventory)
        assert len(_by_style(builder, "vcenter")) == 1
        assert len(_by_style(builder, "datacenter")) == 1
        assert len(_by_style(builder, "cluster")) == 1
        assert len(_by_style(builder, "host")) == 2
        assert len(builder.switch_nodes) == 3
        assert len(builder.portgroup_nodes) == 3
        assert len(_by_style(builder, "vm")) == 3

    def test_switches_and_port_groups_deduplicated_per_host(self, scenario_inventory):
        builder = build_inventory_diagram(scenario_inventory)
        assert set(builder.switch_nodes) == {
            "esx-01a.lab|vSwitch0",
            "esx-02a.lab|vSwitch0",
            "esx-02a.lab|vSwitch1",
        }
        assert set(builder.portgroup_nodes) == {
            "esx-01a.lab|vSwitch0|Prod-Net",
            "esx-02a.lab|vSwitch0|Prod-Net",
            "esx-02a.lab|vSwitch1|Mgmt-Net",
        }

    def test_vm_attached_to_port_group_on_its_host(self, scenario_inventory):
        builder = build_inventory_diagram(scenario_inventory)
        vm_c = [n for n in _by_style(builder, "vm") if _first_line(n) == "VM-C"][0]
        sources = {e.source for e in builder.edges if e.target == vm_c.id}
        assert sources == {
            builder.portgroup_nodes["esx-02a.lab|vSwitch0|Prod-Net"],
            builder.portgroup_nodes["esx-02a.lab|vSwitch1|Mgmt-Net"],
        }

    def test_host_columns(self, scenario_inventory):
        builder = build_inventory_diagram(scenario_inventory)
        hosts = sorted(_by_style(builder, "host"), key=lambda n: n.x)
        assert [_first_line(h) for h in hosts] == ["esx-01a.lab", "esx-02a.lab"]
        assert [h.x for h in hosts] == [0, COLUMN_WIDTH]
        assert all(h.y == HOST_Y for h in hosts)

    def test_vcenter_on_top(self, scenario_inventory):
        builder = build_inventory_diagram(scenario_inventory)
        vc = _by_style(builder, "vcenter")[0]
        assert _first_line(vc) == "vcsa-01a.lab"
        assert vc.y == VCENTER_Y

    def test_edges_reference_nodes(self, scenario_inventory):
        builder = build_inventory_diagram(scenario_inventory)
        ids = {n.id for n in builder.nodes}
        assert all(e.source in ids and e.target in ids for e in builder.edges)


class TestMissingData:

    def test_unknown_port_group_goes_under_unknown_switch(self, caplog):
        inventory = Inventory(
            vcenter="vc",
            hosts=[Host(name="esx-01", datacenter="DC", cluster="CL")],
            vms=[VirtualMachine(name="web-01", host="esx-01")],
            adapters=[NetworkAdapter(vm_name="web-01", name="Network adapter 1", network_name="Opaque-Seg")],
        )
        with caplog.at_level(logging.WARNING):
            builder = build_inventory_diagram(inventory)
        assert f"esx-01|{UNKNOWN_SWITCH}" in builder.switch_nodes
        assert f"esx-01|{UNKNOWN_SWITCH}|Opaque-Seg" in builder.portgroup_nodes
        assert "Opaque-Seg" in caplog.text

    def test_vm_on_unlisted_host_is_reported(self, caplog):
        inventory = Inventory(
            vcenter="vc",
            hosts=[Host(name="esx-01", datacenter="DC", cluster="CL")],
            vms=[VirtualMachine(name="web-01", host="esx-99")],
        )
        with caplog.at_level(logging.WARNING):
            builder = build_inventory_diagram(inventory)
        assert _by_style(builder, "vm") == []
        assert "esx-99" in caplog.text

    def test_standalone_host(self):
        inventory = Inventory(vcenter="vc", hosts=[Host(name="esx-01", datacenter="DC")])
        builder = build_inventory_diagram(inventory)
        assert [_first_line(n) for n in _by_style(builder, "cluster")] == ["(standalone)"]

    def test_empty_inventory(self):
        builder = build_inventory_diagram(Inventory(vcenter="vc"))
        assert len(builder.nodes) == 1
        assert builder.edges == []
