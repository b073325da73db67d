from __future__ import annotations

import dataclasses

from simple_logger.logger import get_logger

from exceptions.exceptions import (
    DiskShrinkNotSupportedError,
    InvalidNetworkOperationError,
    ObjectNotFoundError,
    TaskFailedError,
    VmCloneError,
)
from libs.vsphere.backend import VSphereBackend
from libs.vsphere.customization import CustomizationSpecCache
from libs.vsphere.devices import create_disk, diff_disk_files, find_disk_controller, new_ethernet_card, select_by_backing
from libs.vsphere.inventory import InventoryResolver
from libs.vsphere.lifecycle import LifecycleController
from libs.vsphere.models import (
    CloneSpec,
    ConfigSpec,
    DatacenterInfo,
    DatastoreInfo,
    DestinationType,
    DeviceChange,
    DeviceOperation,
    Disk,
    FileOperation,
    Location,
    NetworkBacking,
    NetworkOperation,
    RelocateSpec,
    SearchFilter,
    Template,
    VMInfo,
    VSphereVM,
)
from libs.vsphere.placement import PlacementSelector
from utilities.naming import local_template_name
from utilities.utils import choose_random

LOGGER = get_logger(__name__)

LINKED_CLONE_DISK_MOVE_TYPE = "createNewChildDiskBacking"


def resize_and_delete_volumes(template: VMInfo, disks: list[Disk]) -> list[DeviceChange]:
    """
    Reconcile the template disks with the requested fixed disks, matched by backing file name.

    Unrequested disks are removed, larger requested sizes are applied, equal sizes are left alone.

    Raises:
        DiskShrinkNotSupportedError: When a requested size is smaller than the disk.
    """
    changes = []
    for disk_device in template.disks:
        requested = next((disk for disk in disks if disk.disk_file == disk_device.file_name), None)
        if requested is None:
            changes.append(DeviceChange(operation=DeviceOperation.REMOVE, device=disk_device))
            continue

        if requested.capacity_kb < disk_device.capacity_kb:
            raise DiskShrinkNotSupportedError(file_name=disk_device.file_name)

        if requested.capacity_kb > disk_device.capacity_kb:
            changes.append(
                DeviceChange(
                    operation=DeviceOperation.EDIT,
                    device=dataclasses.replace(disk_device, capacity_kb=requested.capacity_kb),
                )
            )

    return changes


class CloneOrchestrator:
    def __init__(
        self,
        backend: VSphereBackend,
        inventory: InventoryResolver,
        placement: PlacementSelector,
        lifecycle: LifecycleController,
        customization_cache: CustomizationSpecCache,
    ) -> None:
        self.backend = backend
        self.inventory = inventory
        self.placement = placement
        self.lifecycle = lifecycle
        self.customization_cache = customization_cache

    def clone_from_template(self, vm: VSphereVM, datacenter: DatacenterInfo, usable_datastores: list[str]) -> VMInfo:
        """
        Clone vm.template into vm.name, reconcile its hardware, attach extra disks and power it on.

        Args:
            vm (VSphereVM): The VM handle, vm.datastore is set to the chosen datastore.
            datacenter (DatacenterInfo): Datacenter holding the destination.
            usable_datastores (list[str]): Datastores to pick from, empty lets the backend decide.

        Returns:
            VMInfo: The powered on clone.
        """
        vm.datastore = choose_random(usable_datastores) or ""
        datastore = self.inventory.find_datastore(datacenter=datacenter, name=vm.datastore) if vm.datastore else None

        template = vm.template
        if vm.use_local_templates:
            template = Template(name=local_template_name(template=template.name, datastore=vm.datastore))

        template_info = self.inventory.find_vm(vm=vm, search_filter=SearchFilter.for_template(template=template))
        location = self.placement.resolve_location(vm=vm, datacenter=datacenter)
        relocate_spec = self.relocate_spec(vm=vm, datacenter=datacenter, location=location, datastore=datastore)

        device_changes = self.network_device_specs(vm=vm, template=template_info, location=location)
        if vm.fixed_disks:
            device_changes.extend(resize_and_delete_volumes(template=template_info, disks=vm.fixed_disks))

        config = ConfigSpec(
            num_cpus=vm.flavor.num_cpus if vm.flavor.num_cpus > 0 else template_info.num_cpus,
            memory_mb=vm.flavor.memory_mb if vm.flavor.memory_mb > 0 else template_info.memory_mb,
            cpu_hot_add_enabled=True,
            memory_hot_add_enabled=True,
            nested_hv_enabled=vm.nested_hv,
            device_changes=device_changes,
        )
        customization = self.customization_cache.customization_for(
            backend=self.backend, vm=vm, template=template_info
        )

        if vm.use_linked_clones:
            if not template_info.current_snapshot:
                raise VmCloneError(
                    action=f"Cloning {vm.name}", reason=f"template {template.name} has no snapshot to link clone from"
                )

            relocate_spec.disk_move_type = LINKED_CLONE_DISK_MOVE_TYPE
            clone_spec = CloneSpec(location=relocate_spec, config=config, snapshot=template_info.current_snapshot)
        else:
            clone_spec = CloneSpec(location=relocate_spec, config=config, customization=customization)

        action_name = f"Cloning {vm.name} from {template.name}"
        LOGGER.info(f"{action_name} into datastore '{vm.datastore or 'default'}'")
        task = self.backend.clone_vm(
            template=template_info.ref, folder=datacenter.vm_folder, name=vm.name, spec=clone_spec
        )
        try:
            self.backend.wait_for_task(task=task, action_name=action_name)
        except TaskFailedError as exp:
            raise VmCloneError(action=action_name, reason=exp.reason) from exp

        vm_info = self.inventory.find_vm(vm=vm, search_filter=SearchFilter.for_vm(name=vm.name))
        if vm.disks:
            self.reconfigure_vm(vm=vm, vm_info=vm_info, datacenter=datacenter)

        self.lifecycle.start(vm=vm)
        return self.backend.get_vm(ref=vm_info.ref)

    def relocate_spec(
        self, vm: VSphereVM, datacenter: DatacenterInfo, location: Location, datastore: DatastoreInfo | None
    ) -> RelocateSpec:
        relocate_spec = RelocateSpec(resource_pool=location.resource_pool)

        # DRS enabled clusters place the clone themselves unless a host is requested
        if vm.destination.type == DestinationType.HOST:
            relocate_spec.host = location.host
        elif vm.destination.type == DestinationType.CLUSTER:
            if vm.destination.host_system or not self.placement.is_cluster_drs_enabled(vm=vm, datacenter=datacenter):
                relocate_spec.host = location.host

        if datastore:
            relocate_spec.datastore = datastore.ref

        return relocate_spec

    def network_device_specs(self, vm: VSphereVM, template: VMInfo, location: Location) -> list[DeviceChange]:
        """
        Match the template NICs to vm.networks by position.

        Surplus NICs are removed, matched NICs are re-backed and missing ones are added.
        """
        mapping = self.placement.network_mapping(networks=vm.networks, refs=location.networks)
        changes = []
        index = 0
        for card in template.ethernet_cards:
            if index >= len(vm.networks):
                changes.append(DeviceChange(operation=DeviceOperation.REMOVE, device=card))
                continue

            network = mapping[vm.networks[index].name]
            changes.append(
                DeviceChange(
                    operation=DeviceOperation.EDIT,
                    device=dataclasses.replace(card, backing=NetworkBacking.from_network(network=network)),
                )
            )
            index += 1

        for requested in vm.networks[index:]:
            changes.append(
                DeviceChange(operation=DeviceOperation.ADD, device=new_ethernet_card(network=mapping[requested.name]))
            )

        return changes

    def reconfigure_vm(self, vm: VSphereVM, vm_info: VMInfo, datacenter: DatacenterInfo) -> None:
        """
        Attach vm.disks one by one and record the backing file the backend assigned to each of them.
        """
        if not vm.datastore:
            vm.datastore = choose_random(self.inventory.datastores_for_vm(vm_info=vm_info)) or ""

        for index, disk in enumerate(vm.disks):
            devices = self.backend.get_vm(ref=vm_info.ref).devices
            try:
                controller = find_disk_controller(devices=devices, name=disk.controller)
            except ValueError as exp:
                raise ValueError(f"Failed to get controller while creating Disks[{index}] {disk}: {exp}") from exp

            datastore = self.inventory.find_datastore(datacenter=datacenter, name=disk.datastore or vm.datastore)
            new_disk = create_disk(
                devices=devices,
                controller=controller,
                datastore=datastore,
                capacity_kb=disk.capacity_kb,
                thin_provisioned=disk.thin_provisioned,
            )
            task = self.backend.reconfigure_vm(
                vm=vm_info.ref,
                spec=ConfigSpec(
                    device_changes=[
                        DeviceChange(operation=DeviceOperation.ADD, device=new_disk, file_operation=FileOperation.CREATE)
                    ]
                ),
            )
            self.backend.wait_for_task(task=task, action_name=f"Adding Disks[{index}] to VM {vm.name}")

            new_files = diff_disk_files(after=self.backend.get_vm(ref=vm_info.ref).devices, before=devices)
            if not new_files:
                raise ValueError(f"Failed to find the backing file of Disks[{index}] {disk} on VM {vm.name}")

            disk.disk_file = new_files[0]
            LOGGER.info(f"Disks[{index}] of VM {vm.name} backed by {disk.disk_file}")

    def network_device_change_spec(self, vm: VSphereVM, vm_info: VMInfo) -> list[DeviceChange]:
        """
        NIC changes for an existing VM, from vm.networks operations. Additions come before removals.
        """
        if not vm_info.host:
            raise ValueError(f"host associated with vm {vm_info.name} not found")

        host = self.backend.get_host(ref=vm_info.host)
        available = self.placement.network_infos(refs=host.networks)
        additions = []
        removals = []
        for network in vm.networks:
            if network.operation not in (NetworkOperation.NONE, NetworkOperation.ADD, NetworkOperation.REMOVE):
                raise InvalidNetworkOperationError(
                    f"invalid network device operation: {network.operation} for network: {network.name}"
                )

            if network.name not in available:
                raise ObjectNotFoundError(name=network.name, reason="Could not find the network mapping")

            info = available[network.name]
            if network.operation != NetworkOperation.REMOVE:
                additions.append(DeviceChange(operation=DeviceOperation.ADD, device=new_ethernet_card(network=info)))
                continue

            if network.device_key is None:
                raise InvalidNetworkOperationError(f"Device key not specified for network: {network.name}")

            cards = select_by_backing(devices=vm_info.devices, backing=NetworkBacking.from_network(network=info))
            if not cards:
                raise ObjectNotFoundError(name=network.name, reason="device with network not found")

            card = next((card for card in cards if card.key == network.device_key), None)
            if not card:
                raise ObjectNotFoundError(
                    name=network.name, reason=f"device with key {network.device_key} not found"
                )

            removals.append(DeviceChange(operation=DeviceOperation.REMOVE, device=card))

        return additions + removals

    def reconfigure_networks(self, vm: VSphereVM) -> None:
        vm_info = self.inventory.find_vm(vm=vm, search_filter=SearchFilter.for_vm(name=vm.name))
        changes = self.network_device_change_spec(vm=vm, vm_info=vm_info)
        if not changes:
            return

        task = self.backend.reconfigure_vm(vm=vm_info.ref, spec=ConfigSpec(device_changes=changes))
        self.backend.wait_for_task(task=task, action_name=f"Reconfiguring networks of VM {vm.name}")
