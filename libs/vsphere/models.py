"""
Data model shared by the vSphere components.

The backend converts its native objects into these types so the inventory,
placement, clone, template and lifecycle logic never touches pyVmomi directly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class DestinationType(str, Enum):
    HOST = "host"
    CLUSTER = "cluster"
    RESOURCE_POOL = "resource_pool"


class DeviceOperation(str, Enum):
    ADD = "add"
    EDIT = "edit"
    REMOVE = "remove"


class FileOperation(str, Enum):
    CREATE = "create"
    DESTROY = "destroy"


class TaskState(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"


class NetworkOperation(str, Enum):
    NONE = ""
    ADD = "add"
    REMOVE = "remove"


@dataclass(frozen=True)
class ManagedObjectRef:
    """Backend assigned identifier plus type tag, e.g. VirtualMachine:vm-42."""

    type: str
    value: str

    def __str__(self) -> str:
        return f"{self.type}:{self.value}"


# VM handle


@dataclass
class Template:
    name: str = ""
    instance_uuid: str = ""


@dataclass
class Network:
    name: str
    operation: str = NetworkOperation.NONE.value
    device_key: int | None = None


@dataclass
class Disk:
    # size in GB
    size: int
    datastore: str = ""
    controller: str = ""
    provisioning: str = "thin"
    disk_file: str = ""

    @property
    def capacity_kb(self) -> int:
        return self.size * 1024 * 1024

    @property
    def thin_provisioned(self) -> bool:
        return self.provisioning.lower() != "thick"


@dataclass
class Flavor:
    num_cpus: int = 0
    memory_mb: int = 0


@dataclass
class Destination:
    name: str = ""
    type: DestinationType = DestinationType.CLUSTER
    host_system: str = ""
    moid: str = ""


@dataclass
class NetworkSetting:
    ip: str = ""
    subnet_mask: str = ""
    gateway: str = ""
    dns_server: str = ""


@dataclass
class VSphereVM:
    """
    Caller owned configuration of a single VM.

    Operations take the handle by reference and may update `datastore`
    and `Disk.disk_file` as a side effect.
    """

    name: str
    datacenter: str = ""
    host: str = ""
    insecure: bool = True
    template: Template = field(default_factory=Template)
    ovf_path: str = ""
    ova_path_url: str = ""
    networks: list[Network] = field(default_factory=list)
    disks: list[Disk] = field(default_factory=list)
    fixed_disks: list[Disk] = field(default_factory=list)
    flavor: Flavor = field(default_factory=Flavor)
    destination: Destination = field(default_factory=Destination)
    question_responses: dict[str, str] = field(default_factory=dict)
    datastores: list[str] = field(default_factory=list)
    use_linked_clones: bool = False
    use_local_templates: bool = False
    skip_ip_wait: bool = False
    nested_hv: bool = False
    network_setting: NetworkSetting = field(default_factory=NetworkSetting)
    datastore: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> VSphereVM:
        _data = dict(data)
        destination = _data.pop("destination", {}) or {}
        if destination.get("type"):
            destination["type"] = DestinationType(destination["type"])

        return cls(
            template=Template(**(_data.pop("template", {}) or {})),
            networks=[Network(**network) for network in _data.pop("networks", [])],
            disks=[Disk(**disk) for disk in _data.pop("disks", [])],
            fixed_disks=[Disk(**disk) for disk in _data.pop("fixed_disks", [])],
            flavor=Flavor(**(_data.pop("flavor", {}) or {})),
            destination=Destination(**destination),
            network_setting=NetworkSetting(**(_data.pop("network_setting", {}) or {})),
            **_data,
        )


@dataclass(frozen=True)
class SearchFilter:
    name: str = ""
    instance_uuid: str = ""
    search_in_datacenter: bool = True

    @classmethod
    def for_vm(cls, name: str) -> SearchFilter:
        return cls(name=name, search_in_datacenter=True)

    @classmethod
    def for_template(cls, template: Template) -> SearchFilter:
        return cls(name=template.name, instance_uuid=template.instance_uuid, search_in_datacenter=False)


@dataclass
class Location:
    resource_pool: ManagedObjectRef
    networks: list[ManagedObjectRef] = field(default_factory=list)
    host: ManagedObjectRef | None = None


# Inventory objects


@dataclass
class DatacenterInfo:
    ref: ManagedObjectRef
    name: str
    vm_folder: ManagedObjectRef
    host_folder: ManagedObjectRef
    datastores: list[ManagedObjectRef] = field(default_factory=list)
    networks: list[ManagedObjectRef] = field(default_factory=list)


@dataclass
class ComputeResourceInfo:
    ref: ManagedObjectRef
    name: str
    hosts: list[ManagedObjectRef] = field(default_factory=list)
    resource_pool: ManagedObjectRef | None = None
    datastores: list[ManagedObjectRef] = field(default_factory=list)
    networks: list[ManagedObjectRef] = field(default_factory=list)
    drs_enabled: bool | None = None

    @property
    def is_cluster(self) -> bool:
        return self.ref.type == "ClusterComputeResource"


@dataclass
class HostInfo:
    ref: ManagedObjectRef
    name: str
    networks: list[ManagedObjectRef] = field(default_factory=list)
    datastores: list[ManagedObjectRef] = field(default_factory=list)


@dataclass
class ResourcePoolInfo:
    ref: ManagedObjectRef
    name: str
    owner: ManagedObjectRef | None = None
    resource_pools: list[ManagedObjectRef] = field(default_factory=list)


@dataclass
class DatastoreInfo:
    ref: ManagedObjectRef
    name: str


@dataclass
class NetworkInfo:
    ref: ManagedObjectRef
    name: str
    port_group_key: str = ""
    switch_uuid: str = ""


@dataclass
class TaskInfo:
    ref: ManagedObjectRef
    state: TaskState
    error: str = ""
    result: Any = None
    progress: int | None = None

    @property
    def active(self) -> bool:
        return self.state in (TaskState.QUEUED, TaskState.RUNNING)


@dataclass(frozen=True)
class Choice:
    key: str
    summary: str


@dataclass
class Question:
    id: str
    text: str
    choices: list[Choice] = field(default_factory=list)


# Devices


@dataclass
class NetworkBacking:
    network: ManagedObjectRef | None = None
    device_name: str = ""
    port_group_key: str = ""
    switch_uuid: str = ""

    @classmethod
    def from_network(cls, network: NetworkInfo) -> NetworkBacking:
        return cls(
            network=network.ref,
            device_name=network.name,
            port_group_key=network.port_group_key,
            switch_uuid=network.switch_uuid,
        )

    def matches(self, other: NetworkBacking) -> bool:
        if self.port_group_key or other.port_group_key:
            return self.port_group_key == other.port_group_key and self.switch_uuid == other.switch_uuid

        if self.network and other.network:
            return self.network == other.network

        return bool(self.device_name) and self.device_name == other.device_name


@dataclass
class VirtualDevice:
    key: int
    label: str = ""
    controller_key: int | None = None
    unit_number: int | None = None
    # native backend object, used when an existing device is edited or removed
    raw: Any = field(default=None, repr=False, compare=False)


@dataclass
class EthernetCard(VirtualDevice):
    backing: NetworkBacking | None = None
    adapter_type: str = "vmxnet3"
    mac_address: str = ""


@dataclass
class VirtualDiskDevice(VirtualDevice):
    capacity_kb: int = 0
    file_name: str = ""
    datastore: ManagedObjectRef | None = None
    thin_provisioned: bool = True


@dataclass
class DiskController(VirtualDevice):
    kind: str = "scsi"
    bus_number: int = 0
    device_keys: list[int] = field(default_factory=list)

    @property
    def name(self) -> str:
        return f"{self.kind}-{self.key}"


@dataclass
class OtherDevice(VirtualDevice):
    pass


@dataclass
class DeviceChange:
    operation: DeviceOperation
    device: VirtualDevice
    file_operation: FileOperation | None = None


# Specs


@dataclass
class CustomizationSpec:
    ip: str = ""
    subnet_mask: str = ""
    gateways: list[str] = field(default_factory=list)
    dns_servers: list[str] = field(default_factory=list)
    raw: Any = field(default=None, repr=False, compare=False)


@dataclass
class RelocateSpec:
    resource_pool: ManagedObjectRef | None = None
    host: ManagedObjectRef | None = None
    datastore: ManagedObjectRef | None = None
    disk_move_type: str | None = None


@dataclass
class ConfigSpec:
    num_cpus: int | None = None
    memory_mb: int | None = None
    cpu_hot_add_enabled: bool | None = None
    memory_hot_add_enabled: bool | None = None
    nested_hv_enabled: bool | None = None
    device_changes: list[DeviceChange] = field(default_factory=list)


@dataclass
class CloneSpec:
    location: RelocateSpec
    config: ConfigSpec
    customization: CustomizationSpec | None = None
    snapshot: ManagedObjectRef | None = None
    template: bool = False
    power_on: bool = False


@dataclass
class ImportSpecResult:
    # native import spec, submitted back to the backend unchanged apart from unit numbers
    import_spec: Any
    file_items: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass
class VMInfo:
    ref: ManagedObjectRef
    name: str
    power_state: str = "poweredOff"
    guest_state: str = "notRunning"
    tools_running_status: str = "guestToolsNotRunning"
    heartbeat_status: str = "gray"
    num_cpus: int = 0
    memory_mb: int = 0
    devices: list[VirtualDevice] = field(default_factory=list)
    datastores: list[ManagedObjectRef] = field(default_factory=list)
    networks: list[ManagedObjectRef] = field(default_factory=list)
    host: ManagedObjectRef | None = None
    resource_pool: ManagedObjectRef | None = None
    current_snapshot: ManagedObjectRef | None = None
    question: Question | None = None
    ip_addresses: list[str] = field(default_factory=list)
    guest_dns_servers: list[str] = field(default_factory=list)
    recent_tasks: list[ManagedObjectRef] = field(default_factory=list)
    is_template: bool = False
    uuid: str = ""

    @property
    def tools_running(self) -> bool:
        return self.tools_running_status == "guestToolsRunning"

    @property
    def ethernet_cards(self) -> list[EthernetCard]:
        return [device for device in self.devices if isinstance(device, EthernetCard)]

    @property
    def disks(self) -> list[VirtualDiskDevice]:
        return [device for device in self.devices if isinstance(device, VirtualDiskDevice)]

    @property
    def disk_controllers(self) -> list[DiskController]:
        return [device for device in self.devices if isinstance(device, DiskController)]
