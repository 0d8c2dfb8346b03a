import logging
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, TypeVar

from pyVim.connect import Disconnect, SmartConnect
from pyVmomi import vim

from .cache_manager import CacheManager
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

T = TypeVar("T")

UNKNOWN_NETWORK = "Unknown"


class VCenterConnectionError(RuntimeError):
    """The vCenter could not be reached or refused the login."""


def resolve_first(strategies: Sequence[Tuple[str, Callable[[], List[T]]]], what: str) -> List[T]:
    """Run discovery strategies in order and return the first non-empty result.

    A strategy that raises is logged and skipped; the winning strategy is logged.
    """
    for name, query in strategies:
        try:
            result = query()
        except Exception as exc:  # noqa: BLE001
            logger.warning("%s discovery via %s failed: %s", what, name, exc)
            continue
        if result:
            logger.info("%s discovered via %s (%s found)", what, name, len(result))
            return result
        logger.info("%s discovery via %s returned nothing; trying next strategy", what, name)
    logger.warning("No %s discovered by any strategy", what)
    return []


def _vlan_from_spec(vlan: Any) -> int:
    """VLAN id from a distributed port group's vlan spec. Trunks count as untagged."""
    if isinstance(vlan, vim.dvs.VmwareDistributedVirtualSwitch.VlanIdSpec):
        return int(vlan.vlanId or 0)
    if isinstance(vlan, vim.dvs.VmwareDistributedVirtualSwitch.PvlanSpec):
        return int(vlan.pvlanId or 0)
    return 0


def _datacenter_of(entity: Any) -> Optional[str]:
    node = getattr(entity, "parent", None)
    while node is not None:
        if isinstance(node, vim.Datacenter):
            return node.name
        node = getattr(node, "parent", None)
    return None


def _cluster_of(host: Any) -> Optional[str]:
    parent = getattr(host, "parent", None)
    if isinstance(parent, vim.ClusterComputeResource):
        return parent.name
    return None


def _walk_snapshots(vm_name: str, tree: Iterable[Any], parent: Optional[str] = None) -> List[Snapshot]:
    out: List[Snapshot] = []
    for node in tree or []:
        out.append(
            Snapshot(
                vm_name=vm_name,
                name=node.name,
                created=node.createTime,
                description=node.description or "",
                parent=parent,
            )
        )
        out.extend(_walk_snapshots(vm_name, node.childSnapshotList, node.name))
    return out


def guest_ips(vm: Any) -> List[str]:
    """All guest IPs as reported by VMware Tools, per-NIC order first, then the primary IP."""
    ips: List[str] = []
    guest = vm.guest
    if guest is None:
        return ips
    for nic in guest.net or []:
        for ip in nic.ipAddress or []:
            if ip not in ips:
                ips.append(ip)
    if guest.ipAddress and guest.ipAddress not in ips:
        ips.append(guest.ipAddress)
    return ips


def adapter_network_name(
    device: Any,
    dv_portgroup_names: Dict[str, str],
    opaque_names: Dict[str, str],
) -> str:
    """Network name behind an ethernet card backing (standard, distributed or opaque)."""
    backing = device.backing
    if isinstance(backing, vim.vm.device.VirtualEthernetCard.NetworkBackingInfo):
        if backing.deviceName:
            return backing.deviceName
        if backing.network is not None:
            return backing.network.name
    elif isinstance(backing, vim.vm.device.VirtualEthernetCard.DistributedVirtualPortBackingInfo):
        key = backing.port.portgroupKey if backing.port else None
        if key:
            return dv_portgroup_names.get(key, key)
    elif isinstance(backing, vim.vm.device.VirtualEthernetCard.OpaqueNetworkBackingInfo):
        return opaque_names.get(backing.opaqueNetworkId, backing.opaqueNetworkId or UNKNOWN_NETWORK)
    return UNKNOWN_NETWORK


def vm_adapters(
    vm_name: str,
    devices: Iterable[Any],
    dv_portgroup_names: Dict[str, str],
    opaque_names: Dict[str, str],
) -> List[NetworkAdapter]:
    adapters: List[NetworkAdapter] = []
    for dev in devices or []:
        if not isinstance(dev, vim.vm.device.VirtualEthernetCard):
            continue
        label = dev.deviceInfo.label if dev.deviceInfo else f"Network adapter {len(adapters) + 1}"
        adapters.append(
            NetworkAdapter(
                vm_name=vm_name,
                name=label,
                network_name=adapter_network_name(dev, dv_portgroup_names, opaque_names),
                mac_address=dev.macAddress or "",
            )
        )
    return adapters


class VCenterClient:
    """Read-only vCenter inventory collector built on pyVmomi."""

    def __init__(
        self,
        host: str,
        user: str,
        password: str,
        port: int = 443,
        verify_ssl: bool = True,
        cache_manager: Optional[CacheManager] = None,
    ):
        self.host = host
        self.user = user
        self.password = password
        self.port = port
        self.verify_ssl = verify_ssl
        self.cache_manager = cache_manager
        self.si = None
        self.logger = logging.getLogger(f"{__name__}.{host}")

    # -- session ---------------------------------------------------------

    def connect(self) -> None:
        self.logger.info("Connecting to vCenter %s:%s as %s", self.host, self.port, self.user)
        try:
            self.si = SmartConnect(
                host=self.host,
                user=self.user,
                pwd=self.password,
                port=self.port,
                disableSslCertValidation=not self.verify_ssl,
            )
        except Exception as exc:  # noqa: BLE001
            raise VCenterConnectionError(f"Failed to connect to vCenter {self.host}: {exc}") from exc

    def disconnect(self) -> None:
        if self.si is not None:
            Disconnect(self.si)
            self.si = None
            self.logger.info("Disconnected from %s", self.host)

    @property
    def content(self):
        if self.si is None:
            raise VCenterConnectionError(f"Not connected to vCenter {self.host}")
        return self.si.RetrieveContent()

    def _get_all_objs(self, vimtype: List[Any]) -> List[Any]:
        content = self.content
        container = content.viewManager.CreateContainerView(content.rootFolder, vimtype, True)
        try:
            return list(container.view)
        finally:
            container.Destroy()

    # -- collection ------------------------------------------------------

    def get_inventory(self) -> Inventory:
        """Return a materialized inventory snapshot, from cache when cache mode allows."""
        if self.cache_manager:
            cached = self.cache_manager.load(self.host)
            if cached is not None:
                self.logger.info("Using cached inventory for %s", self.host)
                return cached

        if self.si is None:
            self.connect()

        self.logger.info("Collecting inventory from %s", self.host)
        host_objs = self._get_all_objs([vim.HostSystem])
        dv_portgroups = self._get_all_objs([vim.dvs.DistributedVirtualPortgroup])
        dv_portgroup_names = {pg.key: pg.name for pg in dv_portgroups}
        opaque_names = {
            n.summary.opaqueNetworkId: n.name for n in self._get_all_objs([vim.OpaqueNetwork])
        }

        vms, adapters = self._collect_vms(dv_portgroup_names, opaque_names)
        inventory = Inventory(
            vcenter=self.host,
            collected_at=datetime.now(),
            vms=vms,
            adapters=adapters,
            hosts=self._collect_hosts(host_objs),
            switches=self._collect_switches(host_objs),
            port_groups=self.get_port_groups(host_objs, dv_portgroups),
            folders=self._collect_folders(),
        )
        self.logger.info(
            "Collected %s VMs, %s adapters, %s hosts, %s port groups, %s folders",
            len(inventory.vms),
            len(inventory.adapters),
            len(inventory.hosts),
            len(inventory.port_groups),
            len(inventory.folders),
        )

        if self.cache_manager:
            self.cache_manager.store(inventory)

        return inventory

    def _collect_vms(
        self, dv_portgroup_names: Dict[str, str], opaque_names: Dict[str, str]
    ) -> Tuple[List[VirtualMachine], List[NetworkAdapter]]:
        vms: List[VirtualMachine] = []
        adapters: List[NetworkAdapter] = []
        for vm in self._get_all_objs([vim.VirtualMachine]):
            try:
                summary = vm.summary
                config = vm.config
                host = vm.runtime.host
                storage = summary.storage
                record = VirtualMachine(
                    name=vm.name,
                    power_state=str(summary.runtime.powerState),
                    num_cpu=summary.config.numCpu or 0,
                    memory_mb=summary.config.memorySizeMB or 0,
                    guest_ips=guest_ips(vm),
                    tools_status=str(vm.guest.toolsStatus or "") if vm.guest else "",
                    guest_os=summary.config.guestFullName or "",
                    host=host.name if host else None,
                    cluster=_cluster_of(host) if host else None,
                    datacenter=_datacenter_of(vm),
                    folder=vm.parent.name if vm.parent else None,
                    cpu_usage_mhz=summary.quickStats.overallCpuUsage or 0,
                    guest_memory_usage_mb=summary.quickStats.guestMemoryUsage or 0,
                    provisioned_gb=((storage.committed or 0) + (storage.uncommitted or 0)) / 1024 ** 3
                    if storage
                    else 0.0,
                    created=getattr(config, "createDate", None) if config else None,
                    template=bool(summary.config.template),
                    snapshots=_walk_snapshots(vm.name, vm.snapshot.rootSnapshotList) if vm.snapshot else [],
                )
                vm_nics = vm_adapters(
                    vm.name, config.hardware.device if config else [], dv_portgroup_names, opaque_names
                )
            except Exception as exc:  # noqa: BLE001
                self.logger.warning("Skipping VM %s: %s", getattr(vm, "name", vm), exc)
                continue
            vms.append(record)
            adapters.extend(vm_nics)
        return vms, adapters

    def _collect_hosts(self, host_objs: Sequence[Any]) -> List[Host]:
        hosts: List[Host] = []
        for h in host_objs:
            try:
                hw = h.summary.hardware
                stats = h.summary.quickStats
                product = h.summary.config.product if h.summary.config else None
                hosts.append(
                    Host(
                        name=h.name,
                        datacenter=_datacenter_of(h),
                        cluster=_cluster_of(h),
                        connection_state=str(h.runtime.connectionState),
                        power_state=str(h.runtime.powerState),
                        num_cpu_cores=hw.numCpuCores if hw else 0,
                        cpu_mhz_per_core=hw.cpuMhz if hw else 0,
                        cpu_usage_mhz=stats.overallCpuUsage or 0,
                        memory_mb=int((hw.memorySize or 0) / 1024 ** 2) if hw else 0,
                        memory_usage_mb=stats.overallMemoryUsage or 0,
                        vm_count=len(h.vm or []),
                        version=product.version if product else "",
                    )
                )
            except Exception as exc:  # noqa: BLE001
                self.logger.warning("Skipping host %s: %s", getattr(h, "name", h), exc)
        return hosts

    def _collect_switches(self, host_objs: Sequence[Any]) -> List[VirtualSwitch]:
        switches: List[VirtualSwitch] = []
        for h in host_objs:
            try:
                network = h.config.network if h.config else None
                if network is None:
                    continue
                for vsw in network.vswitch or []:
                    switches.append(VirtualSwitch(host=h.name, name=vsw.name, kind="Standard"))
                for proxy in network.proxySwitch or []:
                    switches.append(VirtualSwitch(host=h.name, name=proxy.dvsName, kind="Distributed"))
            except Exception as exc:  # noqa: BLE001
                self.logger.warning("Skipping switches of host %s: %s", getattr(h, "name", h), exc)
        return switches

    # -- port groups -----------------------------------------------------

    @staticmethod
    def _standard_port_groups(host_name: str, specs: Iterable[Any]) -> List[PortGroup]:
        return [
            PortGroup(
                name=pg.spec.name,
                vlan_id=int(pg.spec.vlanId or 0),
                switch_name=pg.spec.vswitchName or "Unknown",
                host=host_name,
            )
            for pg in specs or []
        ]

    @staticmethod
    def _distributed_port_groups(dv_portgroups: Iterable[Any]) -> List[PortGroup]:
        out: List[PortGroup] = []
        for dvpg in dv_portgroups:
            config = dvpg.config
            if getattr(config, "uplink", False):
                continue
            vlan_id = _vlan_from_spec(getattr(config.defaultPortConfig, "vlan", None))
            switch_name = config.distributedVirtualSwitch.name if config.distributedVirtualSwitch else "Unknown"
            hosts = [h.name for h in dvpg.host or []] or [None]
            for host_name in hosts:
                out.append(PortGroup(name=dvpg.name, vlan_id=vlan_id, switch_name=switch_name, host=host_name))
        return out

    def get_port_groups(self, host_objs: Sequence[Any], dv_portgroups: Sequence[Any]) -> List[PortGroup]:
        """Discover port groups, trying the inventory API, then switch traversal, then host network systems."""

        def via_inventory() -> List[PortGroup]:
            found: List[PortGroup] = []
            for h in host_objs:
                if h.config and h.config.network:
                    found.extend(self._standard_port_groups(h.name, h.config.network.portgroup))
            found.extend(self._distributed_port_groups(dv_portgroups))
            return found

        def via_switches() -> List[PortGroup]:
            found: List[PortGroup] = []
            for dvs in self._get_all_objs([vim.DistributedVirtualSwitch]):
                found.extend(self._distributed_port_groups(dvs.portgroup or []))
            for h in host_objs:
                for vsw in (h.config.network.vswitch or []) if h.config and h.config.network else []:
                    for key in vsw.portgroup or []:
                        # keys look like "key-vim.host.PortGroup-VM Network"
                        name = key.split("PortGroup-", 1)[-1]
                        found.append(PortGroup(name=name, vlan_id=0, switch_name=vsw.name, host=h.name))
            return found

        def via_network_system() -> List[PortGroup]:
            found: List[PortGroup] = []
            for h in host_objs:
                net_sys = h.configManager.networkSystem
                if net_sys is None or net_sys.networkInfo is None:
                    continue
                found.extend(self._standard_port_groups(h.name, net_sys.networkInfo.portgroup))
            return found

        return resolve_first(
            [
                ("inventory", via_inventory),
                ("switches", via_switches),
                ("network-system", via_network_system),
            ],
            "port groups",
        )

    # -- folders ---------------------------------------------------------

    def _collect_folders(self) -> List[Folder]:
        folders: List[Folder] = []

        def walk(folder: Any, dc_name: str, path: str) -> None:
            vm_names: List[str] = []
            children: List[Any] = []
            for child in folder.childEntity or []:
                if isinstance(child, vim.Folder):
                    children.append(child)
                elif isinstance(child, vim.VirtualMachine):
                    vm_names.append(child.name)
            folders.append(
                Folder(datacenter=dc_name, path=path, vm_names=sorted(vm_names), child_folder_count=len(children))
            )
            for child in children:
                walk(child, dc_name, f"{path}/{child.name}")

        for dc in self._get_all_objs([vim.Datacenter]):
            try:
                walk(dc.vmFolder, dc.name, f"{dc.name}/{dc.vmFolder.name}")
            except Exception as exc:  # noqa: BLE001
                self.logger.warning("Skipping folders of datacenter %s: %s", getattr(dc, "name", dc), exc)
        return folders
