from __future__ import annotations

import copy
import urllib.parse
from typing import Any, Self

from pyVim.connect import Disconnect, SmartConnect
from pyVmomi import vmodl
from simple_logger.logger import get_logger

from exceptions.exceptions import ClientFailedError, ObjectDeletedError, ParsingURLError
from libs.base_provider import BaseProvider
from libs.vsphere.backend import VSphereBackend
from libs.vsphere.clone import CloneOrchestrator
from libs.vsphere.customization import CustomizationSpecCache
from libs.vsphere.inventory import InventoryResolver
from libs.vsphere.lifecycle import LifecycleController, valid_ipv4_addresses
from libs.vsphere.models import DatacenterInfo, DatastoreInfo, SearchFilter, VMInfo, VSphereVM
from libs.vsphere.placement import PlacementSelector
from libs.vsphere.pyvmomi_backend import PyVmomiBackend
from libs.vsphere.questions import QuestionResponder
from libs.vsphere.template import TemplateProvisioner
from utilities.utils import choose_random

LOGGER = get_logger(__name__)

VSPHERE_PROVIDER_TYPE = "vsphere"


class VMWareProvider(BaseProvider):
    """
    vSphere backend of the lifecycle interface, over pyVmomi.

    https://github.com/vmware/pyvmomi

    Args:
        host (str): vCenter or ESXi address, the SDK endpoint is https://<host>/sdk.
        datacenter (str): Default datacenter of the VM handles passed in.
        insecure (bool): Skip TLS certificate validation.
        backend (VSphereBackend, optional): Already connected backend, connect() is then a no-op.
        customization_cache (CustomizationSpecCache, optional): Shared with other providers on the same vCenter.
    """

    def __init__(
        self,
        host: str,
        username: str,
        password: str,
        datacenter: str = "",
        insecure: bool = True,
        backend: VSphereBackend | None = None,
        customization_cache: CustomizationSpecCache | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(host=host, username=username, password=password, **kwargs)
        self.type = VSPHERE_PROVIDER_TYPE
        self.host = host
        self.username = username
        self.password = password
        self.datacenter = datacenter
        self.insecure = insecure
        self.customization_cache = customization_cache or CustomizationSpecCache()
        self.backend: VSphereBackend | None = None
        if backend:
            self._build_components(backend=backend)

    def _build_components(self, backend: VSphereBackend) -> None:
        self.backend = backend
        self.responder = QuestionResponder(backend=backend)
        self.inventory = InventoryResolver(backend=backend, responder=self.responder)
        self.placement = PlacementSelector(backend=backend, inventory=self.inventory)
        self.lifecycle = LifecycleController(backend=backend, inventory=self.inventory)
        self.templates = TemplateProvisioner(backend=backend, inventory=self.inventory, placement=self.placement)
        self.clone = CloneOrchestrator(
            backend=backend,
            inventory=self.inventory,
            placement=self.placement,
            lifecycle=self.lifecycle,
            customization_cache=self.customization_cache,
        )

    @property
    def sdk_url(self) -> str:
        return f"https://{self.host}/sdk"

    def connect(self) -> Self:
        if self.backend and not self.backend.closed:
            return self

        url = urllib.parse.urlparse(self.sdk_url)
        try:
            port = url.port or 443
        except ValueError as exp:
            raise ParsingURLError(url=self.sdk_url, reason=str(exp)) from exp

        if not url.hostname:
            raise ParsingURLError(url=self.sdk_url, reason="missing host name")

        LOGGER.info(f"Connecting to vSphere {self.sdk_url}")
        try:
            self.api = SmartConnect(
                host=url.hostname,
                user=self.username,
                pwd=self.password,
                port=port,
                disableSslCertValidation=self.insecure,
            )
        except (vmodl.MethodFault, OSError) as exp:
            raise ClientFailedError(f"Failed to connect to {self.sdk_url}: {exp}") from exp

        self._build_components(backend=PyVmomiBackend(si=self.api))
        return self

    def disconnect(self) -> None:
        LOGGER.info(f"Disconnecting VMWareProvider source provider {self.host}")
        if self.backend:
            self.backend.close()

        if self.api:
            Disconnect(si=self.api)
            self.api = None

    @property
    def test(self) -> bool:
        if not self.backend or self.backend.closed:
            return False

        if not self.api:
            return True

        try:
            self.api.RetrieveContent().authorizationManager.description
            return True
        except (vmodl.MethodFault, OSError):
            return False

    def vm(self, vm: VSphereVM | dict[str, Any]) -> VSphereVM:
        """VM handle with the provider defaults filled in."""
        if isinstance(vm, dict):
            vm = VSphereVM.from_dict(vm)

        if not vm.host:
            vm.host = self.host

        if not vm.datacenter:
            vm.datacenter = self.datacenter

        return vm

    def get_datacenter(self, vm: VSphereVM) -> DatacenterInfo:
        return self.inventory.get_datacenter(vm=self.vm(vm))

    def find_vm(self, vm: VSphereVM) -> VMInfo:
        return self.lifecycle.find(vm=self.vm(vm))

    def exists(self, vm: VSphereVM) -> bool:
        vm = self.vm(vm)
        return self.inventory.exists(vm=vm, search_filter=SearchFilter.for_vm(name=vm.name))

    def provision(self, vm: VSphereVM) -> VMInfo:
        """
        Upload the template when missing, then clone it into vm.name and power the clone on.

        When the clone fails after creating the VM, the VM is destroyed before the error is
        re-raised. A VM that already had that name before the call is never touched.
        """
        vm = self.vm(vm)
        datacenter = self.inventory.get_datacenter(vm=vm)
        self.ensure_templates(vm=vm, datacenter=datacenter)

        existed = self.exists(vm=vm)
        try:
            return self.clone.clone_from_template(vm=vm, datacenter=datacenter, usable_datastores=vm.datastores)
        except Exception as exp:
            LOGGER.error(f"Failed to provision VM {vm.name}: {exp}")
            if existed:
                LOGGER.warning(f"VM {vm.name} existed before provisioning, leaving it in place")
            else:
                self._cleanup_failed_vm(vm=vm)
            raise

    def _cleanup_failed_vm(self, vm: VSphereVM) -> None:
        try:
            if self.exists(vm=vm):
                self.lifecycle.destroy(vm=vm)
        except Exception as exp:
            LOGGER.warning(f"Failed to destroy partially provisioned VM {vm.name}: {exp}")

    def ensure_templates(self, vm: VSphereVM, datacenter: DatacenterInfo) -> None:
        if vm.use_local_templates:
            for datastore in vm.datastores:
                self._ensure_template(vm=vm, datacenter=datacenter, datastore=datastore)
            return

        template_filter = SearchFilter.for_template(template=vm.template)
        if self.inventory.exists(vm=vm, search_filter=template_filter):
            return

        datastore = choose_random(vm.datastores)
        if not datastore:
            raise ValueError(f"No datastore to upload template {vm.template.name} to")

        self.templates.upload_template(vm=vm, datacenter=datacenter, datastore=datastore)

    def _ensure_template(self, vm: VSphereVM, datacenter: DatacenterInfo, datastore: str) -> None:
        template = self.templates.template_for(vm=vm, datastore=datastore)
        if self.inventory.exists(vm=vm, search_filter=SearchFilter.for_template(template=template)):
            LOGGER.info(f"Template {template.name} already exists")
            return

        self.templates.upload_template(vm=vm, datacenter=datacenter, datastore=datastore)

    def start_vm(self, vm: VSphereVM) -> None:
        self.lifecycle.start(vm=self.vm(vm))

    def stop_vm(self, vm: VSphereVM) -> None:
        self.lifecycle.halt(vm=self.vm(vm))

    def shutdown_vm(self, vm: VSphereVM) -> None:
        self.lifecycle.shutdown(vm=self.vm(vm))

    def restart_vm(self, vm: VSphereVM) -> None:
        self.lifecycle.restart(vm=self.vm(vm))

    def reset_vm(self, vm: VSphereVM) -> None:
        self.lifecycle.reset(vm=self.vm(vm))

    def suspend_vm(self, vm: VSphereVM) -> None:
        self.lifecycle.suspend(vm=self.vm(vm))

    def resume_vm(self, vm: VSphereVM) -> None:
        self.lifecycle.resume(vm=self.vm(vm))

    def delete_vm(self, vm: VSphereVM) -> None:
        self.lifecycle.destroy(vm=self.vm(vm))

    def get_state(self, vm: VSphereVM) -> str:
        return self.lifecycle.get_vm_state(vm=self.vm(vm))

    def get_power_state(self, vm: VSphereVM) -> str:
        return self.lifecycle.get_power_state(vm=self.vm(vm))

    def get_ips(self, vm: VSphereVM) -> list[str]:
        return self.lifecycle.get_ips(vm=self.vm(vm))

    def list_vms(self, vm: VSphereVM, all_datacenters: bool = False) -> list[str]:
        return [path for path, _ in self.inventory.list_vms(vm=self.vm(vm), all_datacenters=all_datacenters)]

    def reconfigure_networks_on_vm(self, vm: VSphereVM) -> None:
        self.clone.reconfigure_networks(vm=self.vm(vm))

    def set_custom_field(self, vm: VSphereVM, field_name: str, value: str) -> None:
        self.inventory.set_custom_field(vm_info=self.find_vm(vm=vm), field_name=field_name, value=value)

    def has_active_tasks(self, vm: VSphereVM) -> bool:
        return self.inventory.has_active_tasks(vm_info=self.find_vm(vm=vm))

    def wait_for_tasks_to_finish(self, vm: VSphereVM) -> None:
        self.inventory.wait_for_tasks_to_finish(tasks=self.find_vm(vm=vm).recent_tasks)

    def is_cluster_drs_enabled(self, vm: VSphereVM) -> bool:
        vm = self.vm(vm)
        return self.placement.is_cluster_drs_enabled(vm=vm, datacenter=self.inventory.get_datacenter(vm=vm))

    def shared_datastores_in_cluster(self, vm: VSphereVM) -> list[DatastoreInfo]:
        vm = self.vm(vm)
        cluster = self.inventory.find_compute_resource(
            datacenter=self.inventory.get_datacenter(vm=vm), name=vm.destination.name
        )
        return self.placement.shared_datastores_in_cluster(cluster=cluster)

    def datastores_in_host(self, vm: VSphereVM) -> list[DatastoreInfo]:
        vm = self.vm(vm)
        cluster = self.inventory.find_compute_resource(
            datacenter=self.inventory.get_datacenter(vm=vm), name=vm.destination.name
        )
        return self.placement.datastores_in_host(vm=vm, cluster=cluster)

    def datastores_for_vm(self, vm: VSphereVM) -> list[str]:
        return self.inventory.datastores_for_vm(vm_info=self.find_vm(vm=vm))

    def vm_dict(self, **kwargs: Any) -> dict[str, Any]:
        vm = kwargs.get("vm") or VSphereVM(name=kwargs["name"])
        vm_info = self.find_vm(vm=vm)

        result_vm_info = copy.deepcopy(self.VIRTUAL_MACHINE_TEMPLATE)
        result_vm_info["provider_type"] = self.type
        result_vm_info["provider_vm_api"] = vm_info
        result_vm_info["name"] = vm_info.name
        result_vm_info["id"] = vm_info.ref.value
        result_vm_info["uuid"] = vm_info.uuid

        for card in vm_info.ethernet_cards:
            network_name = "Unknown"
            if card.backing:
                network_name = card.backing.device_name or f"DVS-{card.backing.port_group_key}"

            result_vm_info["network_interfaces"].append({
                "name": card.label or "Unknown",
                "macAddress": card.mac_address,
                "network": {"name": network_name},
            })

        for disk in vm_info.disks:
            try:
                storage_name = self.backend.get_datastore(ref=disk.datastore).name if disk.datastore else "Unknown"
            except ObjectDeletedError:
                storage_name = "Unknown"

            result_vm_info["disks"].append({
                "name": disk.label or "Unknown",
                "size_in_kb": disk.capacity_kb,
                "storage": {"name": storage_name},
                "file_name": disk.file_name,
                "device_key": disk.key,
                "unit_number": disk.unit_number,
                "controller_key": disk.controller_key,
            })

        result_vm_info["cpu"]["num_cpus"] = vm_info.num_cpus
        result_vm_info["memory_in_mb"] = vm_info.memory_mb
        result_vm_info["ips"] = valid_ipv4_addresses(addresses=vm_info.ip_addresses)

        if vm_info.power_state == "poweredOn":
            result_vm_info["power_state"] = "on"
        elif vm_info.power_state == "poweredOff":
            result_vm_info["power_state"] = "off"
        else:
            result_vm_info["power_state"] = "other"

        return result_vm_info
