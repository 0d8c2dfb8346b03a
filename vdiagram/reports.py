"""Flat report rows (one dict per CSV line) built from an inventory snapshot."""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .models import Folder, Host, Inventory, VirtualMachine
from .topology import qualifying_ipv4, subnet_key

logger = logging.getLogger(__name__)


@dataclass
class Thresholds:
    """Percent thresholds for rightsizing recommendations."""

    vm_cpu_low: float = 20.0
    vm_cpu_high: float = 80.0
    vm_memory_low: float = 30.0
    vm_memory_high: float = 90.0
    host_cpu_high: float = 80.0
    host_memory_high: float = 85.0


VM_FIELDS = [
    "VM", "Power State", "vCPU", "Memory GB", "CPU Usage MHz", "Guest Memory Usage MB",
    "Provisioned GB", "Host", "Cluster", "Datacenter", "Tools Status", "Guest OS",
]
HOST_FIELDS = [
    "Host", "Cluster", "Datacenter", "Connection State", "CPU Cores", "CPU Total MHz",
    "CPU Usage MHz", "CPU Usage %", "Memory GB", "Memory Usage GB", "Memory Usage %",
    "VM Count", "Version",
]
IP_FIELDS = ["VM", "IP Address", "Subnet", "Power State", "Host"]
LIFECYCLE_FIELDS = [
    "VM", "Created", "Age Days", "Snapshot Count", "Oldest Snapshot", "Oldest Snapshot Age Days",
    "Tools Status", "Power State",
]
SNAPSHOT_FIELDS = ["VM", "Snapshot", "Description", "Parent", "Created", "Age Days"]
RIGHTSIZING_FIELDS = ["Scope", "Name", "Metric", "Usage %", "Threshold %", "Recommendation"]
FOLDER_FIELDS = ["Datacenter", "Folder", "Depth", "VM Count", "Child Folders"]


def _pct(part: float, whole: float) -> Optional[float]:
    if not whole:
        return None
    return round(part * 100.0 / whole, 1)


def _date(value: Optional[datetime]) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S") if value else ""


def _age_days(value: Optional[datetime], now: datetime) -> Optional[int]:
    if value is None:
        return None
    if value.tzinfo is not None and now.tzinfo is None:
        value = value.replace(tzinfo=None)
    elif value.tzinfo is None and now.tzinfo is not None:
        now = now.replace(tzinfo=None)
    return (now - value).days


def _each(items: Sequence, kind: str, build: Callable[[object], List[dict]]) -> List[dict]:
    """Apply build() per entity; a failing entity is logged and skipped."""
    rows: List[dict] = []
    for item in items:
        try:
            rows.extend(build(item))
        except Exception as exc:  # noqa: BLE001
            logger.warning("Skipping %s %s: %s", kind, getattr(item, "name", getattr(item, "path", item)), exc)
    return rows


def vm_utilization_rows(vms: Sequence[VirtualMachine]) -> List[dict]:
    def build(vm: VirtualMachine) -> List[dict]:
        return [
            {
                "VM": vm.name,
                "Power State": vm.power_state,
                "vCPU": vm.num_cpu,
                "Memory GB": round(vm.memory_mb / 1024, 2),
                "CPU Usage MHz": vm.cpu_usage_mhz,
                "Guest Memory Usage MB": vm.guest_memory_usage_mb,
                "Provisioned GB": round(vm.provisioned_gb, 2),
                "Host": vm.host or "",
                "Cluster": vm.cluster or "",
                "Datacenter": vm.datacenter or "",
                "Tools Status": vm.tools_status,
                "Guest OS": vm.guest_os,
            }
        ]

    return _each(sorted(vms, key=lambda v: v.name), "VM", build)


def host_utilization_rows(hosts: Sequence[Host]) -> List[dict]:
    def build(host: Host) -> List[dict]:
        cpu_total = host.num_cpu_cores * host.cpu_mhz_per_core
        return [
            {
                "Host": host.name,
                "Cluster": host.cluster or "",
                "Datacenter": host.datacenter or "",
                "Connection State": host.connection_state,
                "CPU Cores": host.num_cpu_cores,
                "CPU Total MHz": cpu_total,
                "CPU Usage MHz": host.cpu_usage_mhz,
                "CPU Usage %": _pct(host.cpu_usage_mhz, cpu_total),
                "Memory GB": round(host.memory_mb / 1024, 2),
                "Memory Usage GB": round(host.memory_usage_mb / 1024, 2),
                "Memory Usage %": _pct(host.memory_usage_mb, host.memory_mb),
                "VM Count": host.vm_count,
                "Version": host.version,
            }
        ]

    return _each(sorted(hosts, key=lambda h: h.name), "host", build)


def vm_ip_rows(vms: Sequence[VirtualMachine]) -> List[dict]:
    """One row per VM per qualifying IPv4 address."""

    def build(vm: VirtualMachine) -> List[dict]:
        return [
            {
                "VM": vm.name,
                "IP Address": ip,
                "Subnet": subnet_key(ip),
                "Power State": vm.power_state,
                "Host": vm.host or "",
            }
            for ip in qualifying_ipv4(vm.guest_ips)
        ]

    return _each(sorted(vms, key=lambda v: v.name), "VM", build)


def lifecycle_rows(vms: Sequence[VirtualMachine], now: datetime) -> List[dict]:
    def build(vm: VirtualMachine) -> List[dict]:
        dated = [s for s in vm.snapshots if s.created is not None]
        oldest = max(dated, key=lambda s: _age_days(s.created, now)) if dated else None
        age = _age_days(vm.created, now)
        oldest_age = _age_days(oldest.created, now) if oldest else None
        return [
            {
                "VM": vm.name,
                "Created": _date(vm.created),
                "Age Days": "" if age is None else age,
                "Snapshot Count": len(vm.snapshots),
                "Oldest Snapshot": oldest.name if oldest else "",
                "Oldest Snapshot Age Days": "" if oldest_age is None else oldest_age,
                "Tools Status": vm.tools_status,
                "Power State": vm.power_state,
            }
        ]

    return _each(sorted((v for v in vms if not v.template), key=lambda v: v.name), "VM", build)


def snapshot_rows(vms: Sequence[VirtualMachine], now: datetime) -> List[dict]:
    def build(vm: VirtualMachine) -> List[dict]:
        rows = []
        for snap in vm.snapshots:
            age = _age_days(snap.created, now)
            rows.append(
                {
                    "VM": vm.name,
                    "Snapshot": snap.name,
                    "Description": snap.description,
                    "Parent": snap.parent or "",
                    "Created": _date(snap.created),
                    "Age Days": "" if age is None else age,
                }
            )
        return rows

    return _each(sorted(vms, key=lambda v: v.name), "VM", build)


def _recommendation(scope: str, name: str, metric: str, usage: float, threshold: float, text: str) -> dict:
    return {
        "Scope": scope,
        "Name": name,
        "Metric": metric,
        "Usage %": usage,
        "Threshold %": threshold,
        "Recommendation": text,
    }


def rightsizing_rows(
    vms: Sequence[VirtualMachine],
    hosts: Sequence[Host],
    thresholds: Thresholds,
) -> List[dict]:
    """Threshold-based recommendations for powered-on VMs and for hosts.

    VM CPU usage is measured against vCPU count times the clock of the host
    the VM runs on; VMs on unknown hosts get memory recommendations only.
    """
    host_mhz: Dict[str, int] = {h.name: h.cpu_mhz_per_core for h in hosts}

    def build_vm(vm: VirtualMachine) -> List[dict]:
        if vm.template or vm.power_state != "poweredOn":
            return []
        rows = []
        cpu = _pct(vm.cpu_usage_mhz, vm.num_cpu * host_mhz.get(vm.host or "", 0))
        if cpu is not None:
            if cpu < thresholds.vm_cpu_low and vm.num_cpu > 1:
                rows.append(_recommendation("VM", vm.name, "CPU", cpu, thresholds.vm_cpu_low, "Reduce vCPU count"))
            elif cpu > thresholds.vm_cpu_high:
                rows.append(_recommendation("VM", vm.name, "CPU", cpu, thresholds.vm_cpu_high, "Add vCPU"))
        mem = _pct(vm.guest_memory_usage_mb, vm.memory_mb)
        if mem is not None:
            if mem < thresholds.vm_memory_low:
                rows.append(_recommendation("VM", vm.name, "Memory", mem, thresholds.vm_memory_low, "Reduce memory"))
            elif mem > thresholds.vm_memory_high:
                rows.append(_recommendation("VM", vm.name, "Memory", mem, thresholds.vm_memory_high, "Add memory"))
        return rows

    def build_host(host: Host) -> List[dict]:
        rows = []
        cpu = _pct(host.cpu_usage_mhz, host.num_cpu_cores * host.cpu_mhz_per_core)
        if cpu is not None and cpu > thresholds.host_cpu_high:
            rows.append(
                _recommendation("Host", host.name, "CPU", cpu, thresholds.host_cpu_high, "Rebalance VMs or add capacity")
            )
        mem = _pct(host.memory_usage_mb, host.memory_mb)
        if mem is not None and mem > thresholds.host_memory_high:
            rows.append(
                _recommendation("Host", host.name, "Memory", mem, thresholds.host_memory_high, "Rebalance VMs or add memory")
            )
        return rows

    rows = _each(sorted(vms, key=lambda v: v.name), "VM", build_vm)
    rows.extend(_each(sorted(hosts, key=lambda h: h.name), "host", build_host))
    return rows


def folder_rows(folders: Sequence[Folder]) -> List[dict]:
    def build(folder: Folder) -> List[dict]:
        return [
            {
                "Datacenter": folder.datacenter,
                "Folder": folder.path,
                "Depth": folder.path.count("/"),
                "VM Count": len(folder.vm_names),
                "Child Folders": folder.child_folder_count,
            }
        ]

    return _each(sorted(folders, key=lambda f: (f.datacenter, f.path)), "folder", build)


REPORT_NAMES = ("vms", "hosts", "ips", "lifecycle", "snapshots", "rightsizing", "folders")


def build_report(
    name: str,
    inventory: Inventory,
    thresholds: Optional[Thresholds] = None,
    now: Optional[datetime] = None,
) -> Tuple[List[str], List[dict]]:
    """Return (field names, rows) for a named report."""
    now = now or datetime.now()
    thresholds = thresholds or Thresholds()
    if name == "vms":
        return VM_FIELDS, vm_utilization_rows(inventory.vms)
    if name == "hosts":
        return HOST_FIELDS, host_utilization_rows(inventory.hosts)
    if name == "ips":
        return IP_FIELDS, vm_ip_rows(inventory.vms)
    if name == "lifecycle":
        return LIFECYCLE_FIELDS, lifecycle_rows(inventory.vms, now)
    if name == "snapshots":
        return SNAPSHOT_FIELDS, snapshot_rows(inventory.vms, now)
    if name == "rightsizing":
        return RIGHTSIZING_FIELDS, rightsizing_rows(inventory.vms, inventory.hosts, thresholds)
    if name == "folders":
        return FOLDER_FIELDS, folder_rows(inventory.folders)
    raise ValueError(f"Unknown report {name!r} (expected one of {', '.join(REPORT_NAMES)})")
