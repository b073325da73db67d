from __future__ import annotations

import itertools

from libs.vsphere.models import (
    DatastoreInfo,
    DiskController,
    EthernetCard,
    NetworkBacking,
    NetworkInfo,
    VirtualDevice,
    VirtualDiskDevice,
)

SCSI_RESERVED_UNIT_NUMBER = 7
CONTROLLER_UNITS = {"scsi": 16, "ide": 2, "sata": 30, "nvme": 15}
DEFAULT_DISK_CONTROLLER = "scsi"

_new_device_keys = itertools.count(start=-100, step=-1)


def new_device_key() -> int:
    """Negative keys mark devices that do not exist on the backend yet."""
    return next(_new_device_keys)


def free_unit_numbers(controller: DiskController, devices: list[VirtualDevice]) -> list[int]:
    used = {
        device.unit_number
        for device in devices
        if device.controller_key == controller.key and device.unit_number is not None
    }
    candidates = range(CONTROLLER_UNITS.get(controller.kind, 16))
    return [
        unit
        for unit in candidates
        if unit not in used and not (controller.kind == "scsi" and unit == SCSI_RESERVED_UNIT_NUMBER)
    ]


def find_disk_controller(devices: list[VirtualDevice], name: str = "") -> DiskController:
    """
    Pick the controller a new disk is attached to.

    `name` is a controller kind (scsi, ide, sata, nvme), empty meaning scsi, or the name of a
    specific controller such as "scsi-1000". Kinds resolve to the first controller with a free slot.

    Raises:
        ValueError: When no matching controller with a free slot exists.
    """
    controllers = [device for device in devices if isinstance(device, DiskController)]
    kind = name or DEFAULT_DISK_CONTROLLER

    if kind in CONTROLLER_UNITS:
        for controller in controllers:
            if controller.kind == kind and free_unit_numbers(controller=controller, devices=devices):
                return controller

        raise ValueError(f"no available {kind} controller")

    for controller in controllers:
        if controller.name == name:
            return controller

    raise ValueError(f"{name} is not a valid controller")


def create_disk(
    devices: list[VirtualDevice],
    controller: DiskController,
    datastore: DatastoreInfo,
    capacity_kb: int,
    thin_provisioned: bool = True,
    file_name: str = "",
) -> VirtualDiskDevice:
    if file_name and not file_name.endswith(".vmdk"):
        file_name = f"{file_name}.vmdk"

    units = free_unit_numbers(controller=controller, devices=devices)
    if not units:
        raise ValueError(f"No available unit number on controller {controller.name}")

    return VirtualDiskDevice(
        key=new_device_key(),
        controller_key=controller.key,
        unit_number=units[0],
        capacity_kb=capacity_kb,
        # "[datastore]" lets the backend pick the file name inside the VM directory
        file_name=file_name or f"[{datastore.name}]",
        datastore=datastore.ref,
        thin_provisioned=thin_provisioned,
    )


def new_ethernet_card(network: NetworkInfo, adapter_type: str = "vmxnet3") -> EthernetCard:
    return EthernetCard(
        key=new_device_key(),
        backing=NetworkBacking.from_network(network=network),
        adapter_type=adapter_type,
    )


def select_by_backing(devices: list[VirtualDevice], backing: NetworkBacking) -> list[EthernetCard]:
    return [
        device
        for device in devices
        if isinstance(device, EthernetCard) and device.backing and device.backing.matches(backing)
    ]


def diff_disk_files(after: list[VirtualDevice], before: list[VirtualDevice]) -> list[str]:
    """Backing file names of the disks present in `after` but not in `before`."""
    known_keys = {device.key for device in before}
    return [
        device.file_name
        for device in after
        if isinstance(device, VirtualDiskDevice) and device.key not in known_keys
    ]
