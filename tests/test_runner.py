# test_runner.py - run flow tests (inventory sources, preconditions, option merging)

from unittest.mock import patch

import pytest

from vdiagram.cache_manager import CacheManager
from vdiagram.models import Inventory, VirtualMachine
from vdiagram.network_diagram import DEFAULT_LANE_WIDTH
from vdiagram.runner import acquire_inventory, diagram_options, run_report, run_topology
from vdiagram.storage import save_inventory
from vdiagram.topology import GroupingMode


class TestAcquireInventory:
    """Test inventory source selection"""

    def test_from_file(self, settings, tmp_path, scenario_inventory):
        path = save_inventory(tmp_path, scenario_inventory)
        assert acquire_inventory(settings, inventory_file=path) == scenario_inventory

    def test_cached_snapshot_needs_no_credentials(self, settings, scenario_inventory):
        settings.use_cached_data = True
        settings.vcenter.user = None
        settings.vcenter.password = None
        CacheManager(cache_dir=settings.cache_dir).store(scenario_inventory)
        with patch("vdiagram.vcenter_client.SmartConnect") as smart_connect:
            assert acquire_inventory(settings) == scenario_inventory
        smart_connect.assert_not_called()

    def test_server_overrides_configured_host(self, settings, scenario_inventory):
        with patch("vdiagram.runner.VCenterClient") as client_cls:
            client_cls.return_value.get_inventory.return_value = scenario_inventory
            acquire_inventory(settings, server="vcsa-02a.lab")
        assert client_cls.call_args.kwargs["host"] == "vcsa-02a.lab"

    def test_no_host(self, settings):
        settings.vcenter.host = None
        with pytest.raises(RuntimeError, match="No inventory source"):
            acquire_inventory(settings)


class TestPreconditions:
    """Test runs that stop before writing anything"""

    def test_topology_without_adapters(self, settings, tmp_path):
        path = save_inventory(tmp_path, Inventory(vcenter="vc", vms=[VirtualMachine(name="web-01")]))
        rc = run_topology(settings, diagram_options(settings), inventory_file=path)
        assert rc == 1
        assert list(settings.output_dir.glob("*.drawio")) == []

    def test_topology_without_vms(self, settings, tmp_path):
        path = save_inventory(tmp_path, Inventory(vcenter="vc"))
        assert run_topology(settings, diagram_options(settings), inventory_file=path) == 1

    def test_hosts_report_without_hosts(self, settings, tmp_path):
        path = save_inventory(tmp_path, Inventory(vcenter="vc", vms=[VirtualMachine(name="web-01")]))
        assert run_report(settings, "hosts", inventory_file=path) == 1
        assert run_report(settings, "vms", inventory_file=path) == 0
        assert (settings.output_dir / "vc-vms.csv").is_file()


class TestDiagramOptions:
    """Test merging of configured diagram defaults with CLI flags"""

    def test_defaults(self, settings):
        options = diagram_options(settings)
        assert options.grouping is GroupingMode.VLAN
        assert options.swim_lanes is False
        assert options.show_isolated is True
        assert options.lane_width == DEFAULT_LANE_WIDTH
        assert options.html_labels is True

    def test_config_values_used(self, settings):
        settings.diagram.grouping = "subnet"
        settings.diagram.swim_lanes = True
        settings.diagram.lane_width = 3200
        options = diagram_options(settings)
        assert options.grouping is GroupingMode.SUBNET
        assert options.swim_lanes is True
        assert options.lane_width == 3200

    def test_flags_override_config(self, settings):
        settings.diagram.grouping = "Subnet"
        options = diagram_options(
            settings,
            grouping="SecurityZone",
            hide_isolated=True,
            highlight_gateways=True,
            plain_labels=True,
            lane_width=1800,
        )
        assert options.grouping is GroupingMode.SECURITY_ZONE
        assert options.show_isolated is False
        assert options.highlight_gateways is True
        assert options.html_labels is False
        assert options.lane_width == 1800

    def test_bad_grouping(self, settings):
        with pytest.raises(ValueError):
            diagram_options(settings, grouping="Layer2Domain")

    @pytest.mark.parametrize("width", [0, -400])
    def test_non_positive_lane_width_rejected(self, settings, width):
        with pytest.raises(ValueError, match="Lane width"):
            diagram_options(settings, lane_width=width)

    def test_non_positive_configured_lane_width_rejected(self, settings):
        settings.diagram.lane_width = 0
        with pytest.raises(ValueError, match="Lane width"):
            diagram_options(settings)
