from __future__ import annotations

import enum
import urllib.parse
from dataclasses import dataclass, field

from simple_logger.logger import get_logger

from exceptions.exceptions import ObjectDeletedError, ObjectNotFoundError, TaskFailedError, VmNotFoundError
from libs.vsphere.backend import VSphereBackend
from libs.vsphere.models import (
    ComputeResourceInfo,
    DatacenterInfo,
    DatastoreInfo,
    HostInfo,
    ManagedObjectRef,
    SearchFilter,
    VMInfo,
    VSphereVM,
)
from libs.vsphere.questions import QuestionResponder

LOGGER = get_logger(__name__)

PATH_SEPARATOR = "/"
ESCAPED_PATH_SEPARATOR = "\\/"
FOLDER = "Folder"
VIRTUAL_MACHINE = "VirtualMachine"
COMPUTE_RESOURCE_TYPES = ("ComputeResource", "ClusterComputeResource")


def split_path(path: str) -> list[str]:
    """
    Split an inventory path on unescaped separators.

    "vms\\/test\\/rec/rec\\/1/rhel\\/template\\/vm" -> ["vms/test/rec", "rec/1", "rhel/template/vm"]
    """
    segments: list[str] = []
    for index, part in enumerate(path.split(ESCAPED_PATH_SEPARATOR)):
        pieces = part.split(PATH_SEPARATOR)
        if index == 0:
            segments = pieces
            continue

        segments[-1] = f"{segments[-1]}{PATH_SEPARATOR}{pieces[0]}"
        segments.extend(pieces[1:])

    return segments


def join_path(segments: list[str]) -> str:
    return PATH_SEPARATOR.join(segment.replace(PATH_SEPARATOR, ESCAPED_PATH_SEPARATOR) for segment in segments)


def unescape_name(name: str) -> str:
    return urllib.parse.unquote_plus(name)


class MobSearch(enum.Enum):
    FOUND = "found"
    EMPTY = "empty"
    NOT_FOUND = "not_found"


@dataclass
class MobSearchResult:
    outcome: MobSearch
    ref: ManagedObjectRef | None = None
    subfolders: list[ManagedObjectRef] = field(default_factory=list)


class InventoryResolver:
    """Locates datacenters, VMs, templates and compute resources in the inventory tree."""

    def __init__(self, backend: VSphereBackend, responder: QuestionResponder) -> None:
        self.backend = backend
        self.responder = responder

    def get_datacenter(self, vm: VSphereVM) -> DatacenterInfo:
        for datacenter in self.backend.get_datacenters():
            if datacenter.name == vm.datacenter:
                return datacenter

        raise ObjectNotFoundError(name=vm.datacenter, reason="datacenter not found")

    def find_vm(self, vm: VSphereVM, search_filter: SearchFilter) -> VMInfo:
        """
        Find a VM or template by instance uuid or by (escaped) path, then answer any pending question on it.

        Raises:
            VmNotFoundError: When nothing matches the filter.
        """
        if search_filter.instance_uuid:
            vm_info = self.search_by_uuid(vm=vm, search_filter=search_filter)
        else:
            vm_info = self.search_by_name(vm=vm, search_filter=search_filter)

        self.responder.answer_question(vm=vm, vm_info=vm_info)
        return vm_info

    def exists(self, vm: VSphereVM, search_filter: SearchFilter) -> bool:
        try:
            self.find_vm(vm=vm, search_filter=search_filter)
        except ObjectNotFoundError:
            return False

        return True

    def search_by_uuid(self, vm: VSphereVM, search_filter: SearchFilter) -> VMInfo:
        datacenter_ref = None
        if search_filter.search_in_datacenter:
            datacenter_ref = self.get_datacenter(vm=vm).ref

        ref = self.backend.find_by_uuid(uuid=search_filter.instance_uuid, datacenter=datacenter_ref)
        if not ref:
            raise VmNotFoundError(name=search_filter.instance_uuid, reason="no object with uuid")

        if ref.type != VIRTUAL_MACHINE:
            raise VmNotFoundError(name=search_filter.instance_uuid, reason=f"invalid object with uuid found: {ref}")

        return self.backend.get_vm(ref=ref)

    def search_by_name(self, vm: VSphereVM, search_filter: SearchFilter) -> VMInfo:
        datacenter = self.get_datacenter(vm=vm)
        if search_filter.search_in_datacenter:
            return self.search_tree(folder=datacenter.vm_folder, path=search_filter.name)

        # templates may live in any datacenter, the configured one is searched first
        datacenters = [datacenter] + [dc for dc in self.backend.get_datacenters() if dc.ref != datacenter.ref]
        for _datacenter in datacenters:
            try:
                return self.search_tree(folder=_datacenter.vm_folder, path=search_filter.name)
            except VmNotFoundError:
                LOGGER.debug(f"{search_filter.name} not found in datacenter {_datacenter.name}")

        raise VmNotFoundError(name=search_filter.name, reason="could not find the vm")

    def search_tree(self, folder: ManagedObjectRef, path: str) -> VMInfo:
        """
        Walk the folder tree below `folder` along the segments of `path`.

        Folders are only descended into before the last segment and VMs only match at the last
        segment. Sibling folders with the same name are tried in order before giving up.
        """
        segments = split_path(path)
        last = len(segments) - 1
        pending: list[tuple[ManagedObjectRef, int]] = [(folder, 0)]

        while pending:
            current, depth = pending.pop()
            matched_folders: list[ManagedObjectRef] = []

            for child in self.backend.get_children(folder=current):
                if child.type == FOLDER and depth < last:
                    try:
                        name = self.backend.get_name(ref=child)
                    except ObjectDeletedError:
                        LOGGER.debug(f"Skipping deleted folder {child}")
                        continue

                    if unescape_name(name) == segments[depth]:
                        matched_folders.append(child)

                elif child.type == VIRTUAL_MACHINE and depth == last:
                    try:
                        vm_info = self.backend.get_vm(ref=child)
                    except ObjectDeletedError:
                        LOGGER.debug(f"Skipping deleted VM {child}")
                        continue

                    if unescape_name(vm_info.name) == segments[depth]:
                        return vm_info

            # first matching sibling is explored first
            pending.extend((child, depth + 1) for child in reversed(matched_folders))

        raise VmNotFoundError(name=path, reason="could not find the vm")

    def scan_folder(self, folder: ManagedObjectRef, name: str) -> MobSearchResult:
        children = self.backend.get_children(folder=folder)
        if not children:
            return MobSearchResult(outcome=MobSearch.EMPTY)

        subfolders = []
        for child in children:
            if child.type == FOLDER:
                subfolders.append(child)

            elif child.type in COMPUTE_RESOURCE_TYPES:
                try:
                    child_name = self.backend.get_name(ref=child)
                except ObjectDeletedError:
                    continue

                if child_name == name:
                    return MobSearchResult(outcome=MobSearch.FOUND, ref=child)

        return MobSearchResult(outcome=MobSearch.NOT_FOUND, subfolders=subfolders)

    def find_mob(self, folder: ManagedObjectRef, name: str) -> ManagedObjectRef:
        """Find a compute resource or cluster by plain name anywhere below `folder`."""
        pending = [folder]
        while pending:
            current = pending.pop()
            result = self.scan_folder(folder=current, name=name)
            if result.outcome == MobSearch.FOUND and result.ref:
                return result.ref

            if result.outcome == MobSearch.EMPTY:
                LOGGER.debug(f"Folder {current} is empty")
                continue

            pending.extend(reversed(result.subfolders))

        raise ObjectNotFoundError(name=name, reason="could not find the mob")

    def find_compute_resource(self, datacenter: DatacenterInfo, name: str) -> ComputeResourceInfo:
        return self.backend.get_compute_resource(ref=self.find_mob(folder=datacenter.host_folder, name=name))

    def compute_resources(self, datacenter: DatacenterInfo) -> list[ComputeResourceInfo]:
        resources = []
        pending = [datacenter.host_folder]
        while pending:
            for child in self.backend.get_children(folder=pending.pop()):
                if child.type == FOLDER:
                    pending.append(child)
                elif child.type in COMPUTE_RESOURCE_TYPES:
                    try:
                        resources.append(self.backend.get_compute_resource(ref=child))
                    except ObjectDeletedError:
                        continue

        return resources

    def find_datastore(self, datacenter: DatacenterInfo, name: str) -> DatastoreInfo:
        for ref in datacenter.datastores:
            datastore = self.backend.get_datastore(ref=ref)
            if datastore.name == name:
                return datastore

        raise ObjectNotFoundError(name=name, reason="datastore not found")

    def find_host_system(self, hosts: list[ManagedObjectRef], name: str) -> HostInfo:
        for ref in hosts:
            host = self.backend.get_host(ref=ref)
            if host.name == name:
                return host

        raise ObjectNotFoundError(name=name, reason="host system not found")

    def datastores_for_vm(self, vm_info: VMInfo) -> list[str]:
        return [self.backend.get_datastore(ref=ref).name for ref in vm_info.datastores]

    def list_vms(self, vm: VSphereVM, all_datacenters: bool = False) -> list[tuple[str, VMInfo]]:
        """
        List VMs and templates with their escaped inventory paths.

        When a destination is configured the listing is restricted to VMs running on
        the destination host system, or on any host of the destination cluster.
        """
        if all_datacenters:
            vms = []
            for datacenter in self.backend.get_datacenters():
                vms.extend(self.vms_in_folder(folder=datacenter.vm_folder))
            return vms

        datacenter = self.get_datacenter(vm=vm)
        vms = self.vms_in_folder(folder=datacenter.vm_folder)
        if not vm.destination.name:
            return vms

        if vm.destination.host_system:
            host_names = {vm.destination.host_system}
        else:
            cluster = self.find_compute_resource(datacenter=datacenter, name=vm.destination.name)
            host_names = {self.backend.get_host(ref=ref).name for ref in cluster.hosts}

        return [
            (path, vm_info)
            for path, vm_info in vms
            if vm_info.host and self.backend.get_host(ref=vm_info.host).name in host_names
        ]

    def vms_in_folder(self, folder: ManagedObjectRef) -> list[tuple[str, VMInfo]]:
        vms = []
        pending: list[tuple[ManagedObjectRef, list[str]]] = [(folder, [])]
        while pending:
            current, parents = pending.pop(0)
            for child in self.backend.get_children(folder=current):
                try:
                    if child.type == FOLDER:
                        name = unescape_name(self.backend.get_name(ref=child))
                        pending.append((child, [*parents, name]))

                    elif child.type == VIRTUAL_MACHINE:
                        vm_info = self.backend.get_vm(ref=child)
                        vms.append((join_path([*parents, unescape_name(vm_info.name)]), vm_info))

                except ObjectDeletedError:
                    LOGGER.debug(f"Skipping deleted object {child}")

        return vms

    def set_custom_field(self, vm_info: VMInfo, field_name: str, value: str) -> None:
        key = self.backend.find_custom_field(name=field_name)
        if key is None:
            LOGGER.info(f"Adding custom field {field_name}")
            key = self.backend.add_custom_field(name=field_name, managed_object_type=VIRTUAL_MACHINE)

        self.backend.set_custom_field(ref=vm_info.ref, key=key, value=value)

    def has_active_tasks(self, vm_info: VMInfo) -> bool:
        """True when any recent task of the VM is still queued or running."""
        for task in vm_info.recent_tasks:
            try:
                if self.backend.get_task(ref=task).active:
                    return True
            except ObjectDeletedError:
                continue

        return False

    def wait_for_tasks_to_finish(self, tasks: list[ManagedObjectRef]) -> None:
        for task in tasks:
            try:
                self.backend.wait_for_task(task=task, action_name=f"Task {task.value}")
            except TaskFailedError as exp:
                LOGGER.warning(f"Finished with error: {exp}")
