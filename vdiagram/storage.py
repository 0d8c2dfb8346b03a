import csv
import io
import json
import logging
import os
import tempfile
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .models import (
    Folder,
    Host,
    Inventory,
    NetworkAdapter,
    PortGroup,
    Snapshot,
    VirtualMachine,
    VirtualSwitch,
)

logger = logging.getLogger(__name__)


def write_atomic(path: Path, payload: bytes) -> Path:
    """
    Write bytes to a temporary file next to path, then rename it into place.

    The final path either holds the complete payload or is left untouched.
    """
    path = Path(path)
    tmp_name: Optional[str] = None
    try:
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
        with os.fdopen(fd, "wb") as fh:
            fh.write(payload)
        os.replace(tmp_name, path)
        tmp_name = None
    finally:
        if tmp_name and os.path.exists(tmp_name):
            os.unlink(tmp_name)
    return path


def write_csv(path: Path, fieldnames: Sequence[str], rows: Sequence[Dict[str, Any]]) -> Path:
    """Write report rows as UTF-8 CSV with a header row."""
    buffer = io.StringIO(newline="")
    writer = csv.DictWriter(buffer, fieldnames=list(fieldnames), extrasaction="ignore")
    writer.writeheader()
    for row in rows:
        writer.writerow({k: "" if row.get(k) is None else row.get(k) for k in fieldnames})
    write_atomic(Path(path), buffer.getvalue().encode("utf-8"))
    logger.info("Wrote %s rows to %s", len(rows), path)
    return Path(path)


def read_csv(path: Path) -> List[Dict[str, str]]:
    with open(path, "r", encoding="utf-8", newline="") as fh:
        return list(csv.DictReader(fh))


def _dt_out(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _dt_in(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def inventory_to_dict(inventory: Inventory) -> Dict[str, Any]:
    vms = []
    for vm in inventory.vms:
        item = asdict(vm)
        item["created"] = _dt_out(vm.created)
        item["snapshots"] = [dict(asdict(s), created=_dt_out(s.created)) for s in vm.snapshots]
        vms.append(item)

    return {
        "vcenter": inventory.vcenter,
        "collected_at": _dt_out(inventory.collected_at),
        "vms": vms,
        "hosts": [asdict(h) for h in inventory.hosts],
        "port_groups": [asdict(p) for p in inventory.port_groups],
        "adapters": [asdict(a) for a in inventory.adapters],
        "switches": [asdict(s) for s in inventory.switches],
        "folders": [asdict(f) for f in inventory.folders],
    }


def inventory_from_dict(raw: Dict[str, Any]) -> Inventory:
    if not isinstance(raw, dict) or "vcenter" not in raw:
        raise RuntimeError("Inventory file must be a mapping with a 'vcenter' key")

    vms: List[VirtualMachine] = []
    for item in raw.get("vms") or []:
        item = dict(item)
        snapshots = [
            Snapshot(**dict(s, created=_dt_in(s.get("created")))) for s in item.pop("snapshots", None) or []
        ]
        item["created"] = _dt_in(item.get("created"))
        vms.append(VirtualMachine(snapshots=snapshots, **item))

    return Inventory(
        vcenter=raw["vcenter"],
        collected_at=_dt_in(raw.get("collected_at")),
        vms=vms,
        hosts=[Host(**h) for h in raw.get("hosts") or []],
        port_groups=[PortGroup(**p) for p in raw.get("port_groups") or []],
        adapters=[NetworkAdapter(**a) for a in raw.get("adapters") or []],
        switches=[VirtualSwitch(**s) for s in raw.get("switches") or []],
        folders=[Folder(**f) for f in raw.get("folders") or []],
    )


def save_inventory(data_dir: Path, inventory: Inventory, file_path: Optional[Path] = None) -> Path:
    """
    Persist an inventory snapshot to JSON.

    File naming convention: <vcenter>_inventory.json, unless file_path is given.
    """
    data_dir.mkdir(parents=True, exist_ok=True)
    path = Path(file_path) if file_path else data_dir / f"{inventory.vcenter}_inventory.json"
    logger.info("Saving inventory for %s to %s", inventory.vcenter, path)
    payload = json.dumps(inventory_to_dict(inventory), indent=2, sort_keys=True)
    return write_atomic(path, payload.encode("utf-8"))


def load_inventory(file_path: Path) -> Inventory:
    p = Path(file_path)
    if not p.is_file():
        raise RuntimeError(f"Inventory file not found: {p}")
    logger.info("Loading inventory from %s", p)
    try:
        raw = json.loads(p.read_text(encoding="utf-8"))
    except ValueError as exc:
        raise RuntimeError(f"Failed to parse inventory file {p}: {exc}") from exc
    try:
        return inventory_from_dict(raw)
    except (TypeError, ValueError, AttributeError) as exc:
        raise RuntimeError(f"Inventory file {p} has unexpected fields or values: {exc}") from exc
