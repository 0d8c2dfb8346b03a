import logging
import sys
from pathlib import Path
from typing import Optional

from tabulate import tabulate

from .cache_manager import CacheManager
from .config import Settings
from .inventory_diagram import build_inventory_diagram
from .models import Inventory
from .network_diagram import DiagramOptions, build_network_diagram
from .reports import build_report
from .storage import load_inventory, save_inventory, write_csv
from .topology import GroupingMode, analyze_topology
from .vcenter_client import VCenterClient

logger = logging.getLogger(__name__)


def _fail(message: str) -> int:
    logger.error(message)
    print(message, file=sys.stderr)
    return 1


def acquire_inventory(
    settings: Settings,
    *,
    server: Optional[str] = None,
    inventory_file: Optional[Path] = None,
) -> Inventory:
    """
    Return the inventory snapshot to work on:
    - an inventory JSON file when given,
    - otherwise a live (or cached) collection from the vCenter.

    Raises RuntimeError (VCenterConnectionError included) when no source is usable.
    """
    if inventory_file:
        return load_inventory(inventory_file)

    vc = settings.vcenter
    host = server or vc.host
    if not host:
        raise RuntimeError(
            "No inventory source: pass --server or --inventory, or set vcenter.host / VCENTER_HOST."
        )

    cache_manager = CacheManager(
        cache_dir=Path(settings.cache_dir),
        use_cache=settings.use_cached_data,
        max_age_hours=settings.cache_max_age_hours,
    )
    client = VCenterClient(
        host=host,
        user=vc.user or "",
        password=vc.password or "",
        port=vc.port,
        verify_ssl=vc.verify_ssl,
        cache_manager=cache_manager,
    )
    try:
        if not settings.use_cached_data and not (vc.user and vc.password):
            raise RuntimeError(
                f"vCenter credentials for {host} are not configured "
                "(vcenter.user + vcenter.password/password_file, or VCENTER_USER + VCENTER_PASSWORD)."
            )
        return client.get_inventory()
    finally:
        client.disconnect()


def run_collect(
    settings: Settings,
    *,
    server: Optional[str] = None,
    output: Optional[Path] = None,
) -> int:
    """Collect a snapshot from vCenter and store it as JSON for offline runs."""
    try:
        inventory = acquire_inventory(settings, server=server)
    except RuntimeError as exc:
        return _fail(str(exc))

    if not inventory.vms:
        return _fail(f"No VMs found on {inventory.vcenter}.")

    try:
        path = save_inventory(Path(settings.output_dir), inventory, output)
    except OSError as exc:
        return _fail(f"Failed to write inventory: {exc}")
    print(path)
    return 0


def run_topology(
    settings: Settings,
    options: DiagramOptions,
    *,
    server: Optional[str] = None,
    inventory_file: Optional[Path] = None,
    output: Optional[Path] = None,
) -> int:
    """
    Network topology flow:
    - Acquire the inventory (file, cache or live vCenter).
    - Analyze networks, VLANs, subnets, zones, gateways and isolated networks.
    - Lay out for the requested grouping mode and write the Draw.io file.

    Missing inventory, VMs or adapters stop the run before anything is written.
    """
    try:
        inventory = acquire_inventory(settings, server=server, inventory_file=inventory_file)
    except RuntimeError as exc:
        return _fail(str(exc))

    if not inventory.vms:
        return _fail(f"No VMs found on {inventory.vcenter}.")
    if not inventory.adapters:
        return _fail(f"No network adapters found on {inventory.vcenter}.")

    graph = analyze_topology(inventory.vms, inventory.port_groups, inventory.adapters)
    builder = build_network_diagram(graph, options)

    path = output or Path(settings.output_dir) / f"{inventory.vcenter}-topology-{options.grouping.value}.drawio"
    try:
        builder.write(path)
    except OSError as exc:
        return _fail(f"Failed to write diagram {path}: {exc}")
    print(path)
    return 0


def run_hierarchy(
    settings: Settings,
    *,
    server: Optional[str] = None,
    inventory_file: Optional[Path] = None,
    output: Optional[Path] = None,
    html_labels: bool = True,
) -> int:
    try:
        inventory = acquire_inventory(settings, server=server, inventory_file=inventory_file)
    except RuntimeError as exc:
        return _fail(str(exc))

    if not inventory.vms:
        return _fail(f"No VMs found on {inventory.vcenter}.")

    builder = build_inventory_diagram(inventory, html_labels=html_labels)
    path = output or Path(settings.output_dir) / f"{inventory.vcenter}-hierarchy.drawio"
    try:
        builder.write(path)
    except OSError as exc:
        return _fail(f"Failed to write diagram {path}: {exc}")
    print(path)
    return 0


def run_report(
    settings: Settings,
    report: str,
    *,
    server: Optional[str] = None,
    inventory_file: Optional[Path] = None,
    output: Optional[Path] = None,
    print_table: bool = False,
) -> int:
    try:
        inventory = acquire_inventory(settings, server=server, inventory_file=inventory_file)
    except RuntimeError as exc:
        return _fail(str(exc))

    if report == "hosts":
        if not inventory.hosts:
            return _fail(f"No hosts found on {inventory.vcenter}.")
    elif not inventory.vms:
        return _fail(f"No VMs found on {inventory.vcenter}.")

    try:
        fields, rows = build_report(report, inventory, thresholds=settings.thresholds)
    except ValueError as exc:
        return _fail(str(exc))

    path = output or Path(settings.output_dir) / f"{inventory.vcenter}-{report}.csv"
    try:
        write_csv(path, fields, rows)
    except OSError as exc:
        return _fail(f"Failed to write report {path}: {exc}")

    if print_table:
        print(tabulate([[r.get(f, "") for f in fields] for r in rows], headers=fields, tablefmt="grid"))
    print(path)
    return 0


def diagram_options(
    settings: Settings,
    *,
    grouping: Optional[str] = None,
    swim_lanes: bool = False,
    hide_isolated: bool = False,
    highlight_gateways: bool = False,
    plain_labels: bool = False,
    lane_width: Optional[int] = None,
) -> DiagramOptions:
    """Merge diagram defaults from settings with CLI flags. Raises ValueError on a bad grouping or lane width."""
    d = settings.diagram
    width = lane_width if lane_width is not None else d.lane_width
    if width <= 0:
        raise ValueError(f"Lane width must be greater than 0, got {width}.")
    return DiagramOptions(
        grouping=GroupingMode.parse(grouping or d.grouping),
        swim_lanes=swim_lanes or d.swim_lanes,
        show_isolated=d.show_isolated and not hide_isolated,
        highlight_gateways=highlight_gateways or d.highlight_gateways,
        lane_width=width,
        html_labels=d.html_labels and not plain_labels,
    )
