from __future__ import annotations

import os
import tempfile
import threading
from pathlib import Path
from typing import Any, BinaryIO

import requests
from simple_logger.logger import get_logger

from exceptions.exceptions import BadResponseError, OvfImportError
from libs.vsphere.backend import Lease, VSphereBackend
from libs.vsphere.inventory import InventoryResolver
from libs.vsphere.models import DatacenterInfo, ImportSpecResult, SearchFilter, Template, VSphereVM
from libs.vsphere.placement import PlacementSelector
from utilities.naming import linked_clone_snapshot_name, local_template_name
from utilities.utils import extract_ovf, fetch_archive

LOGGER = get_logger(__name__)

STREAM_VMDK_CONTENT_TYPE = "application/x-vnd.vmware-streamVmdk"
LEASE_PROGRESS_INTERVAL = 10
LINKED_CLONE_SNAPSHOT_DESCRIPTION = "Snapshot used as the source of linked clones."


def reset_unit_numbers(import_spec: Any) -> None:
    """Unit number 0 in an import spec means "unset" to the importer, it must be -1."""
    config_spec = getattr(import_spec, "configSpec", None)
    for device_change in getattr(config_spec, "deviceChange", None) or []:
        device = device_change.device
        if getattr(device, "unitNumber", None) == 0:
            device.unitNumber = -1


class ProgressReader:
    """
    File wrapper counting the bytes read, reporting the upload percentage to the lease
    from a background thread so the lease does not expire during long uploads.
    """

    def __init__(self, fd: BinaryIO, total_bytes: int, lease: Lease, interval: float = LEASE_PROGRESS_INTERVAL) -> None:
        self.fd = fd
        self.total_bytes = total_bytes
        self.lease = lease
        self.interval = interval
        self.bytes_read = 0
        self._done = threading.Event()
        self._thread = threading.Thread(target=self._keep_lease_alive, daemon=True)

    @property
    def percent(self) -> int:
        if not self.total_bytes:
            return 100

        return min(100, int(self.bytes_read * 100 / self.total_bytes))

    def __len__(self) -> int:
        return self.total_bytes

    def read(self, size: int = -1) -> bytes:
        chunk = self.fd.read(size)
        self.bytes_read += len(chunk)
        return chunk

    def start(self) -> None:
        self._thread.start()

    def stop(self) -> None:
        self._done.set()
        if self._thread.is_alive():
            self._thread.join()

    def _keep_lease_alive(self) -> None:
        while not self._done.wait(timeout=self.interval):
            try:
                self.lease.progress(percent=self.percent)
            except Exception as exp:
                LOGGER.warning(f"Failed to update lease progress: {exp}")


def upload_disk(url: str, reader: ProgressReader, length: int, insecure: bool = True) -> None:
    """
    Stream a disk image to an import lease device URL.

    Raises:
        BadResponseError: When the server does not answer 201 Created.
    """
    headers = {
        "Connection": "Keep-Alive",
        "Content-Type": STREAM_VMDK_CONTENT_TYPE,
        "Content-Length": str(length),
    }
    try:
        response = requests.post(url, data=reader, headers=headers, verify=not insecure)
    except requests.RequestException as exp:
        raise BadResponseError(status=0, reason=f"upload to {url} failed: {exp}") from exp

    if response.status_code != 201:
        raise BadResponseError(status=response.status_code, reason=response.reason)


class TemplateProvisioner:
    def __init__(self, backend: VSphereBackend, inventory: InventoryResolver, placement: PlacementSelector) -> None:
        self.backend = backend
        self.inventory = inventory
        self.placement = placement

    def template_for(self, vm: VSphereVM, datastore: str) -> Template:
        if vm.use_local_templates:
            return Template(name=local_template_name(template=vm.template.name, datastore=datastore))

        return vm.template

    def upload_template(self, vm: VSphereVM, datacenter: DatacenterInfo, datastore: str) -> None:
        """
        Import the OVA/OVF of `vm` into `datastore` as a template, or as a snapshotted VM
        when linked clones are used.

        Args:
            vm (VSphereVM): VM handle, either ova_path_url or ovf_path must be set.
            datacenter (DatacenterInfo): Datacenter whose VM folder receives the template.
            datastore (str): Target datastore name, also recorded as vm.datastore.
        """
        template = self.template_for(vm=vm, datastore=datastore)
        vm.datastore = datastore

        with tempfile.TemporaryDirectory() as download_dir:
            ovf_path = Path(vm.ovf_path) if vm.ovf_path else None
            if vm.ova_path_url:
                archive = fetch_archive(url=vm.ova_path_url, download_dir=Path(download_dir), insecure=vm.insecure)
                ovf_path = extract_ovf(archive=archive, destination=Path(download_dir) / "ovf")

            if not ovf_path:
                raise OvfImportError(f"No OVA or OVF given for template {template.name}")

            self.import_ovf(vm=vm, datacenter=datacenter, datastore=datastore, ovf_path=ovf_path, template=template)

        template_info = self.inventory.find_vm(vm=vm, search_filter=SearchFilter.for_template(template=template))

        # linked clones are created from a snapshot of a VM, never from a template
        if vm.use_linked_clones:
            task = self.backend.create_snapshot(
                vm=template_info.ref,
                name=linked_clone_snapshot_name(template=template.name),
                description=LINKED_CLONE_SNAPSHOT_DESCRIPTION,
            )
            self.backend.wait_for_task(task=task, action_name=f"Creating snapshot of {template.name}")
        else:
            self.backend.mark_as_template(vm=template_info.ref)

        LOGGER.info(f"Template {template.name} uploaded to datastore {datastore}")

    def import_ovf(
        self, vm: VSphereVM, datacenter: DatacenterInfo, datastore: str, ovf_path: Path, template: Template
    ) -> None:
        ovf_descriptor = ovf_path.read_text()
        datastore_info = self.inventory.find_datastore(datacenter=datacenter, name=datastore)
        location = self.placement.resolve_location(vm=vm, datacenter=datacenter)
        network_mappings = {
            name: network.ref
            for name, network in self.placement.network_mapping(networks=vm.networks, refs=location.networks).items()
        }

        spec_result = self.backend.create_import_spec(
            ovf_descriptor=ovf_descriptor,
            resource_pool=location.resource_pool,
            datastore=datastore_info.ref,
            host=location.host,
            entity_name=template.name,
            network_mappings=network_mappings,
            disk_provisioning="thin",
        )
        if spec_result.errors:
            raise OvfImportError(f"errors returned from the ovf manager api. Errors: {spec_result.errors}")

        for warning in spec_result.warnings:
            LOGGER.warning(f"OVF import of {template.name}: {warning}")

        reset_unit_numbers(import_spec=spec_result.import_spec)
        lease = self.backend.import_vapp(
            resource_pool=location.resource_pool,
            import_spec=spec_result.import_spec,
            folder=datacenter.vm_folder,
            host=location.host,
        )
        try:
            self.upload_ovf(vm=vm, spec_result=spec_result, lease=lease, ovf_path=ovf_path)
        except Exception as exp:
            lease.abort(reason=str(exp))
            raise

        lease.complete()

    def upload_ovf(self, vm: VSphereVM, spec_result: ImportSpecResult, lease: Lease, ovf_path: Path) -> None:
        # only the first device of the lease is uploaded
        device_urls = lease.wait_ready()
        if not device_urls or not spec_result.file_items:
            raise OvfImportError("import lease has no device to upload")

        url = device_urls[0].replace("*", vm.host, 1)
        disk_path = Path(spec_result.file_items[0])
        if not disk_path.is_absolute():
            disk_path = ovf_path.parent / disk_path

        total_bytes = os.path.getsize(disk_path)
        LOGGER.info(f"Uploading {disk_path} ({total_bytes} bytes) to {url}")
        with disk_path.open("rb") as fd:
            reader = ProgressReader(fd=fd, total_bytes=total_bytes, lease=lease)
            reader.start()
            try:
                upload_disk(url=url, reader=reader, length=total_bytes, insecure=vm.insecure)
            finally:
                reader.stop()
