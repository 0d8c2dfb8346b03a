import argparse
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from .config import load_settings
from .logging_config import configure_logging
from .reports import REPORT_NAMES
from .runner import diagram_options, run_collect, run_hierarchy, run_report, run_topology

logger = logging.getLogger(__name__)


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"{value!r} is not an integer")
    if number <= 0:
        raise argparse.ArgumentTypeError(f"{value} must be greater than 0")
    return number


def _add_source_args(parser: argparse.ArgumentParser) -> None:
    source = parser.add_mutually_exclusive_group()
    source.add_argument("--server", help="vCenter host to query (overrides vcenter.host)")
    source.add_argument("--inventory", type=Path, help="inventory JSON file written by 'collect'")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vdiagram",
        description="vCenter inventory reports and Draw.io network diagrams",
    )
    parser.add_argument("--config", help="YAML config file (default: $APP_CONFIG_FILE, else environment)")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING, ... (default from config)")
    sub = parser.add_subparsers(dest="command", required=True)

    collect = sub.add_parser("collect", help="save an inventory snapshot as JSON")
    collect.add_argument("--server", help="vCenter host to query (overrides vcenter.host)")
    collect.add_argument("--output", type=Path, help="JSON file to write")

    topo = sub.add_parser("topology", help="network topology diagram (Draw.io)")
    _add_source_args(topo)
    topo.add_argument("--grouping", help="VLAN, Subnet or SecurityZone (default from config: VLAN)")
    topo.add_argument("--output", type=Path, help=".drawio file to write")
    topo.add_argument("--swim-lanes", action="store_true", help="draw one container per group")
    topo.add_argument("--hide-isolated", action="store_true", help="leave out networks with at most one VM")
    topo.add_argument("--highlight-gateways", action="store_true", help="style multi-network VMs differently")
    topo.add_argument("--plain-labels", action="store_true", help="newline labels instead of HTML labels")
    topo.add_argument("--lane-width", type=_positive_int, help="row/lane width in pixels for VLAN and Subnet grouping")

    hier = sub.add_parser("hierarchy", help="vCenter inventory hierarchy diagram (Draw.io)")
    _add_source_args(hier)
    hier.add_argument("--output", type=Path, help=".drawio file to write")
    hier.add_argument("--plain-labels", action="store_true", help="newline labels instead of HTML labels")

    report = sub.add_parser("report", help="CSV reports")
    report.add_argument("report", choices=REPORT_NAMES)
    _add_source_args(report)
    report.add_argument("--output", type=Path, help="CSV file to write")
    report.add_argument("--print", dest="print_table", action="store_true", help="also print the rows as a table")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    # Configure logging early so load_settings() warnings/errors are visible.
    configure_logging(args.log_level or os.getenv("LOG_LEVEL", "INFO"))

    try:
        settings = load_settings(args.config)
    except RuntimeError as exc:
        logger.error("%s", exc)
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 1

    configure_logging(args.log_level or settings.log_level, settings.log_dir)

    if args.command == "collect":
        return run_collect(settings, server=args.server, output=args.output)

    if args.command == "topology":
        try:
            options = diagram_options(
                settings,
                grouping=args.grouping,
                swim_lanes=args.swim_lanes,
                hide_isolated=args.hide_isolated,
                highlight_gateways=args.highlight_gateways,
                plain_labels=args.plain_labels,
                lane_width=args.lane_width,
            )
        except ValueError as exc:
            logger.error("%s", exc)
            print(str(exc), file=sys.stderr)
            return 1
        return run_topology(
            settings, options, server=args.server, inventory_file=args.inventory, output=args.output
        )

    if args.command == "hierarchy":
        return run_hierarchy(
            settings,
            server=args.server,
            inventory_file=args.inventory,
            output=args.output,
            html_labels=settings.diagram.html_labels and not args.plain_labels,
        )

    return run_report(
        settings,
        args.report,
        server=args.server,
        inventory_file=args.inventory,
        output=args.output,
        print_table=args.print_table,
    )


if __name__ == "__main__":
    sys.exit(main())
