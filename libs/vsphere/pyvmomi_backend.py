from __future__ import annotations

import time
from typing import Any, Callable

from pyVmomi import VmomiSupport, vim, vmodl
from simple_logger.logger import get_logger
from timeout_sampler import TimeoutExpiredError, TimeoutSampler

from exceptions.exceptions import ObjectDeletedError, OvfImportError, PropertyRetrievalError, VSphereApiError
from libs.vsphere.backend import Lease, VSphereBackend
from libs.vsphere.models import (
    Choice,
    CloneSpec,
    ComputeResourceInfo,
    ConfigSpec,
    CustomizationSpec,
    DatacenterInfo,
    DatastoreInfo,
    DeviceChange,
    DiskController,
    EthernetCard,
    HostInfo,
    ImportSpecResult,
    ManagedObjectRef,
    NetworkBacking,
    NetworkInfo,
    OtherDevice,
    Question,
    RelocateSpec,
    ResourcePoolInfo,
    TaskInfo,
    TaskState,
    VirtualDevice,
    VirtualDiskDevice,
    VMInfo,
)

LOGGER = get_logger(__name__)

VIM_NAMESPACE = "urn:vim25"
WAIT_UPDATES_INTERVAL = 5
DISTRIBUTED_PORT_GROUP = "DistributedVirtualPortgroup"
CLUSTER_COMPUTE_RESOURCE = "ClusterComputeResource"

VM_PROPERTIES = [
    "name",
    "runtime.powerState",
    "runtime.host",
    "runtime.question",
    "guest.guestState",
    "guest.toolsRunningStatus",
    "guest.ipAddress",
    "guest.net",
    "guest.ipStack",
    "guestHeartbeatStatus",
    "config.hardware.numCPU",
    "config.hardware.memoryMB",
    "config.hardware.device",
    "config.template",
    "config.instanceUuid",
    "datastore",
    "network",
    "resourcePool",
    "snapshot",
    "recentTask",
]

DISK_CONTROLLER_KINDS = (
    (vim.vm.device.VirtualSCSIController, "scsi"),
    (vim.vm.device.VirtualIDEController, "ide"),
    (vim.vm.device.VirtualSATAController, "sata"),
    (vim.vm.device.VirtualNVMEController, "nvme"),
)


def get_fault_message(fault: Any) -> str:
    """Depending on the fault type, a different attribute carries the message."""
    for attribute in ("localizedMessage", "msg", "message"):
        message = getattr(fault, attribute, None)
        if message:
            return str(message)

    return f"Unknown error type: {fault}"


class PyVmomiLease(Lease):
    def __init__(self, lease: vim.HttpNfcLease) -> None:
        self.lease = lease

    def wait_ready(self, timeout: int = 600) -> list[str]:
        for state in TimeoutSampler(wait_timeout=timeout, sleep=1, func=lambda: self.lease.state):
            if state == vim.HttpNfcLease.State.ready:
                return [device_url.url for device_url in self.lease.info.deviceUrl]

            if state == vim.HttpNfcLease.State.error:
                raise OvfImportError(f"error waiting on the nfc lease: {get_fault_message(self.lease.error)}")

        return []

    def progress(self, percent: int) -> None:
        self.lease.HttpNfcLeaseProgress(percent)

    def complete(self) -> None:
        self.lease.HttpNfcLeaseComplete()

    def abort(self, reason: str) -> None:
        LOGGER.warning(f"Aborting nfc lease: {reason}")
        self.lease.HttpNfcLeaseAbort()


class PyVmomiBackend(VSphereBackend):
    """VSphereBackend over a pyVmomi service instance."""

    def __init__(self, si: vim.ServiceInstance) -> None:
        super().__init__()
        self.si = si
        self.content = si.RetrieveContent()

    # Conversions

    def _mo(self, ref: ManagedObjectRef) -> Any:
        return VmomiSupport.GetWsdlType(VIM_NAMESPACE, ref.type)(ref.value, self.si._stub)

    @staticmethod
    def _ref(managed_object: Any) -> ManagedObjectRef | None:
        if managed_object is None:
            return None

        return ManagedObjectRef(type=managed_object._wsdlName, value=managed_object._moId)

    def _refs(self, managed_objects: Any) -> list[ManagedObjectRef]:
        return [self._ref(managed_object) for managed_object in managed_objects or []]

    def _retrieve(self, ref: ManagedObjectRef, properties: list[str]) -> dict[str, Any]:
        managed_object = self._mo(ref)
        filter_spec = vmodl.query.PropertyCollector.FilterSpec(
            objectSet=[vmodl.query.PropertyCollector.ObjectSpec(obj=managed_object, skip=False)],
            propSet=[vmodl.query.PropertyCollector.PropertySpec(type=type(managed_object), pathSet=properties)],
        )
        try:
            result = self.content.propertyCollector.RetrievePropertiesEx(
                specSet=[filter_spec], options=vmodl.query.PropertyCollector.RetrieveOptions()
            )
        except vmodl.fault.ManagedObjectNotFound as exp:
            raise ObjectDeletedError(ref=ref) from exp
        except vmodl.MethodFault as exp:
            raise PropertyRetrievalError(ref=ref, properties=properties, reason=get_fault_message(exp)) from exp

        if not result or not result.objects:
            raise ObjectDeletedError(ref=ref)

        object_content = result.objects[0]
        for missing in object_content.missingSet or []:
            if isinstance(missing.fault, vmodl.fault.ManagedObjectNotFound):
                raise ObjectDeletedError(ref=ref)

        return {prop.name: prop.val for prop in object_content.propSet or []}

    def _call(self, operation: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except vmodl.fault.ManagedObjectNotFound as exp:
            raise ObjectDeletedError(ref=getattr(exp, "obj", operation)) from exp
        except vmodl.MethodFault as exp:
            raise VSphereApiError(operation=operation, reason=get_fault_message(exp)) from exp

    def _task(self, operation: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> ManagedObjectRef:
        return self._ref(self._call(operation, func, *args, **kwargs))

    # Inventory reads

    def get_datacenters(self) -> list[DatacenterInfo]:
        container = self.content.viewManager.CreateContainerView(self.content.rootFolder, [vim.Datacenter], True)
        try:
            refs = self._refs(getattr(container, "view", []))
        finally:
            container.Destroy()

        datacenters = []
        for ref in refs:
            try:
                props = self._retrieve(ref=ref, properties=["name", "vmFolder", "hostFolder", "datastore", "network"])
            except ObjectDeletedError:
                continue

            datacenters.append(
                DatacenterInfo(
                    ref=ref,
                    name=props["name"],
                    vm_folder=self._ref(props["vmFolder"]),
                    host_folder=self._ref(props["hostFolder"]),
                    datastores=self._refs(props.get("datastore")),
                    networks=self._refs(props.get("network")),
                )
            )

        return datacenters

    def get_children(self, folder: ManagedObjectRef) -> list[ManagedObjectRef]:
        return self._refs(self._retrieve(ref=folder, properties=["childEntity"]).get("childEntity"))

    def get_name(self, ref: ManagedObjectRef) -> str:
        return self._retrieve(ref=ref, properties=["name"]).get("name", "")

    def get_vm(self, ref: ManagedObjectRef) -> VMInfo:
        props = self._retrieve(ref=ref, properties=VM_PROPERTIES)
        snapshot = props.get("snapshot")
        return VMInfo(
            ref=ref,
            name=props.get("name", ""),
            power_state=str(props.get("runtime.powerState", "poweredOff")),
            guest_state=props.get("guest.guestState") or "notRunning",
            tools_running_status=props.get("guest.toolsRunningStatus") or "guestToolsNotRunning",
            heartbeat_status=str(props.get("guestHeartbeatStatus", "gray")),
            num_cpus=props.get("config.hardware.numCPU", 0),
            memory_mb=props.get("config.hardware.memoryMB", 0),
            devices=[self._device(device) for device in props.get("config.hardware.device") or []],
            datastores=self._refs(props.get("datastore")),
            networks=self._refs(props.get("network")),
            host=self._ref(props.get("runtime.host")),
            resource_pool=self._ref(props.get("resourcePool")),
            current_snapshot=self._ref(snapshot.currentSnapshot) if snapshot else None,
            question=self._question(props.get("runtime.question")),
            ip_addresses=self._ip_addresses(props=props),
            guest_dns_servers=[
                address
                for ip_stack in props.get("guest.ipStack") or []
                if ip_stack.dnsConfig
                for address in ip_stack.dnsConfig.ipAddress or []
            ],
            recent_tasks=self._refs(props.get("recentTask")),
            is_template=bool(props.get("config.template")),
            uuid=props.get("config.instanceUuid", ""),
        )

    def get_compute_resource(self, ref: ManagedObjectRef) -> ComputeResourceInfo:
        properties = ["name", "host", "resourcePool", "datastore", "network"]
        if ref.type == CLUSTER_COMPUTE_RESOURCE:
            properties.append("configurationEx")

        props = self._retrieve(ref=ref, properties=properties)
        drs_enabled = None
        configuration = props.get("configurationEx")
        if configuration and configuration.drsConfig:
            drs_enabled = configuration.drsConfig.enabled

        return ComputeResourceInfo(
            ref=ref,
            name=props.get("name", ""),
            hosts=self._refs(props.get("host")),
            resource_pool=self._ref(props.get("resourcePool")),
            datastores=self._refs(props.get("datastore")),
            networks=self._refs(props.get("network")),
            drs_enabled=drs_enabled,
        )

    def get_host(self, ref: ManagedObjectRef) -> HostInfo:
        props = self._retrieve(ref=ref, properties=["name", "network", "datastore"])
        return HostInfo(
            ref=ref,
            name=props.get("name", ""),
            networks=self._refs(props.get("network")),
            datastores=self._refs(props.get("datastore")),
        )

    def get_resource_pool(self, ref: ManagedObjectRef) -> ResourcePoolInfo:
        props = self._retrieve(ref=ref, properties=["name", "owner", "resourcePool"])
        return ResourcePoolInfo(
            ref=ref,
            name=props.get("name", ""),
            owner=self._ref(props.get("owner")),
            resource_pools=self._refs(props.get("resourcePool")),
        )

    def get_network(self, ref: ManagedObjectRef) -> NetworkInfo:
        if ref.type != DISTRIBUTED_PORT_GROUP:
            return NetworkInfo(ref=ref, name=self.get_name(ref=ref))

        props = self._retrieve(ref=ref, properties=["name", "key", "config.distributedVirtualSwitch"])
        switch = props.get("config.distributedVirtualSwitch")
        switch_uuid = self._retrieve(ref=self._ref(switch), properties=["uuid"]).get("uuid", "") if switch else ""
        return NetworkInfo(
            ref=ref, name=props.get("name", ""), port_group_key=props.get("key", ""), switch_uuid=switch_uuid
        )

    def get_datastore(self, ref: ManagedObjectRef) -> DatastoreInfo:
        return DatastoreInfo(ref=ref, name=self.get_name(ref=ref))

    def get_task(self, ref: ManagedObjectRef) -> TaskInfo:
        info = self._retrieve(ref=ref, properties=["info"])["info"]
        result = info.result
        if isinstance(result, vmodl.ManagedObject):
            result = self._ref(result)

        return TaskInfo(
            ref=ref,
            state=TaskState(str(info.state)),
            error=get_fault_message(info.error) if info.error else "",
            result=result,
            progress=info.progress,
        )

    def find_by_uuid(
        self, uuid: str, datacenter: ManagedObjectRef | None = None, instance_uuid: bool = True
    ) -> ManagedObjectRef | None:
        found = self._call(
            "FindByUuid",
            self.content.searchIndex.FindByUuid,
            datacenter=self._mo(datacenter) if datacenter else None,
            uuid=uuid,
            vmSearch=True,
            instanceUuid=instance_uuid,
        )
        return self._ref(found)

    # Tasks

    def clone_vm(
        self, template: ManagedObjectRef, folder: ManagedObjectRef, name: str, spec: CloneSpec
    ) -> ManagedObjectRef:
        return self._task(
            "CloneVM_Task",
            self._mo(template).CloneVM_Task,
            folder=self._mo(folder),
            name=name,
            spec=self._clone_spec(spec=spec),
        )

    def reconfigure_vm(self, vm: ManagedObjectRef, spec: ConfigSpec) -> ManagedObjectRef:
        return self._task("ReconfigVM_Task", self._mo(vm).ReconfigVM_Task, spec=self._config_spec(spec=spec))

    def power_on_vm(self, vm: ManagedObjectRef) -> ManagedObjectRef:
        return self._task("PowerOnVM_Task", self._mo(vm).PowerOnVM_Task)

    def power_off_vm(self, vm: ManagedObjectRef) -> ManagedObjectRef:
        return self._task("PowerOffVM_Task", self._mo(vm).PowerOffVM_Task)

    def reset_vm(self, vm: ManagedObjectRef) -> ManagedObjectRef:
        return self._task("ResetVM_Task", self._mo(vm).ResetVM_Task)

    def suspend_vm(self, vm: ManagedObjectRef) -> ManagedObjectRef:
        return self._task("SuspendVM_Task", self._mo(vm).SuspendVM_Task)

    def destroy_vm(self, vm: ManagedObjectRef) -> ManagedObjectRef:
        return self._task("Destroy_Task", self._mo(vm).Destroy_Task)

    def create_snapshot(
        self, vm: ManagedObjectRef, name: str, description: str, memory: bool = False, quiesce: bool = False
    ) -> ManagedObjectRef:
        return self._task(
            "CreateSnapshot_Task",
            self._mo(vm).CreateSnapshot_Task,
            name=name,
            description=description,
            memory=memory,
            quiesce=quiesce,
        )

    # Synchronous calls

    def shutdown_guest(self, vm: ManagedObjectRef) -> None:
        self._call("ShutdownGuest", self._mo(vm).ShutdownGuest)

    def reboot_guest(self, vm: ManagedObjectRef) -> None:
        self._call("RebootGuest", self._mo(vm).RebootGuest)

    def mark_as_template(self, vm: ManagedObjectRef) -> None:
        self._call("MarkAsTemplate", self._mo(vm).MarkAsTemplate)

    def answer_vm(self, vm: ManagedObjectRef, question_id: str, answer: str) -> None:
        self._call("AnswerVM", self._mo(vm).AnswerVM, questionId=question_id, answerChoice=answer)

    def customization_spec_exists(self, name: str) -> bool:
        manager = self.content.customizationSpecManager
        return bool(self._call("DoesCustomizationSpecExist", manager.DoesCustomizationSpecExist, name=name))

    def create_customization_spec(self, name: str) -> None:
        item = vim.CustomizationSpecItem(
            info=vim.CustomizationSpecInfo(name=name, description="Static IP customization", type="Linux"),
            spec=vim.vm.customization.Specification(
                identity=vim.vm.customization.LinuxPrep(
                    hostName=vim.vm.customization.VirtualMachineNameGenerator(), domain="localdomain"
                ),
                globalIPSettings=vim.vm.customization.GlobalIPSettings(),
                nicSettingMap=[
                    vim.vm.customization.AdapterMapping(
                        adapter=vim.vm.customization.IPSettings(ip=vim.vm.customization.FixedIp())
                    )
                ],
            ),
        )
        manager = self.content.customizationSpecManager
        self._call("CreateCustomizationSpec", manager.CreateCustomizationSpec, item=item)

    def get_customization_spec(self, name: str) -> CustomizationSpec:
        manager = self.content.customizationSpecManager
        native = self._call("GetCustomizationSpec", manager.GetCustomizationSpec, name=name).spec
        adapter = native.nicSettingMap[0].adapter if native.nicSettingMap else None
        return CustomizationSpec(
            ip=(getattr(adapter.ip, "ipAddress", "") or "") if adapter else "",
            subnet_mask=(adapter.subnetMask or "") if adapter else "",
            gateways=list(adapter.gateway or []) if adapter else [],
            dns_servers=list(native.globalIPSettings.dnsServerList or []) if native.globalIPSettings else [],
            raw=native,
        )

    def find_custom_field(self, name: str) -> int | None:
        for field_def in self.content.customFieldsManager.field or []:
            if field_def.name == name:
                return field_def.key

        return None

    def add_custom_field(self, name: str, managed_object_type: str) -> int:
        manager = self.content.customFieldsManager
        field_def = self._call(
            "AddCustomFieldDef",
            manager.AddCustomFieldDef,
            name=name,
            moType=VmomiSupport.GetWsdlType(VIM_NAMESPACE, managed_object_type),
        )
        return field_def.key

    def set_custom_field(self, ref: ManagedObjectRef, key: int, value: str) -> None:
        manager = self.content.customFieldsManager
        self._call("SetField", manager.SetField, entity=self._mo(ref), key=key, value=value)

    # OVF import

    def create_import_spec(
        self,
        ovf_descriptor: str,
        resource_pool: ManagedObjectRef,
        datastore: ManagedObjectRef,
        host: ManagedObjectRef | None,
        entity_name: str,
        network_mappings: dict[str, ManagedObjectRef],
        disk_provisioning: str = "thin",
    ) -> ImportSpecResult:
        params = vim.OvfManager.CreateImportSpecParams(
            entityName=entity_name,
            diskProvisioning=disk_provisioning,
            hostSystem=self._mo(host) if host else None,
            networkMapping=[
                vim.OvfManager.NetworkMapping(name=name, network=self._mo(ref)) for name, ref in network_mappings.items()
            ],
        )
        result = self._call(
            "CreateImportSpec",
            self.content.ovfManager.CreateImportSpec,
            ovfDescriptor=ovf_descriptor,
            resourcePool=self._mo(resource_pool),
            datastore=self._mo(datastore),
            cisp=params,
        )
        return ImportSpecResult(
            import_spec=result.importSpec,
            file_items=[file_item.path for file_item in result.fileItem or []],
            errors=[get_fault_message(error) for error in result.error or []],
            warnings=[get_fault_message(warning) for warning in result.warning or []],
        )

    def import_vapp(
        self,
        resource_pool: ManagedObjectRef,
        import_spec: Any,
        folder: ManagedObjectRef,
        host: ManagedObjectRef | None,
    ) -> Lease:
        lease = self._call(
            "ImportVApp",
            self._mo(resource_pool).ImportVApp,
            spec=import_spec,
            folder=self._mo(folder),
            host=self._mo(host) if host else None,
        )
        return PyVmomiLease(lease=lease)

    # Waits

    def wait_for_property(
        self,
        ref: ManagedObjectRef,
        property_name: str,
        predicate: Callable[[Any], bool],
        timeout: int | None = None,
    ) -> Any:
        managed_object = self._mo(ref)
        collector = self.content.propertyCollector.CreatePropertyCollector()
        filter_spec = vmodl.query.PropertyCollector.FilterSpec(
            objectSet=[vmodl.query.PropertyCollector.ObjectSpec(obj=managed_object)],
            propSet=[vmodl.query.PropertyCollector.PropertySpec(type=type(managed_object), pathSet=[property_name])],
        )
        property_filter = collector.CreateFilter(filter_spec, True)
        deadline = time.monotonic() + timeout if timeout else None
        version = ""
        try:
            while True:
                self.check_cancelled()
                max_wait = WAIT_UPDATES_INTERVAL
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        raise TimeoutExpiredError(f"{property_name} of {ref} did not match within {timeout}s")

                    max_wait = max(1, min(max_wait, int(remaining)))

                # the first call with an empty version returns the current value
                update = collector.WaitForUpdatesEx(
                    version, vmodl.query.PropertyCollector.WaitOptions(maxWaitSeconds=max_wait)
                )
                if not update:
                    continue

                version = update.version
                for filter_update in update.filterSet or []:
                    for object_update in filter_update.objectSet or []:
                        for change in object_update.changeSet or []:
                            if change.name == property_name and predicate(change.val):
                                return change.val
        finally:
            property_filter.Destroy()
            collector.Destroy()

    # Native conversions

    def _question(self, question: Any) -> Question | None:
        if not question:
            return None

        choice_infos = question.choice.choiceInfo if question.choice else []
        return Question(
            id=question.id,
            text=question.text,
            choices=[Choice(key=str(info.key), summary=info.summary) for info in choice_infos or []],
        )

    @staticmethod
    def _ip_addresses(props: dict[str, Any]) -> list[str]:
        addresses = []
        for nic in props.get("guest.net") or []:
            addresses.extend(nic.ipAddress or [])

        primary = props.get("guest.ipAddress")
        if primary and primary not in addresses:
            addresses.insert(0, primary)

        return addresses

    def _backing(self, backing: Any) -> NetworkBacking | None:
        if isinstance(backing, vim.vm.device.VirtualEthernetCard.DistributedVirtualPortBackingInfo):
            return NetworkBacking(port_group_key=backing.port.portgroupKey, switch_uuid=backing.port.switchUuid)

        if isinstance(backing, vim.vm.device.VirtualEthernetCard.NetworkBackingInfo):
            return NetworkBacking(network=self._ref(backing.network), device_name=backing.deviceName or "")

        return None

    def _device(self, device: Any) -> VirtualDevice:
        common = {
            "key": device.key,
            "label": device.deviceInfo.label if device.deviceInfo else "",
            "controller_key": device.controllerKey,
            "unit_number": device.unitNumber,
            "raw": device,
        }
        if isinstance(device, vim.vm.device.VirtualEthernetCard):
            return EthernetCard(
                backing=self._backing(device.backing),
                adapter_type=type(device).__name__,
                mac_address=device.macAddress or "",
                **common,
            )

        if isinstance(device, vim.vm.device.VirtualDisk):
            backing = device.backing
            return VirtualDiskDevice(
                capacity_kb=device.capacityInKB,
                file_name=getattr(backing, "fileName", "") or "",
                datastore=self._ref(getattr(backing, "datastore", None)),
                thin_provisioned=bool(getattr(backing, "thinProvisioned", False)),
                **common,
            )

        for controller_type, kind in DISK_CONTROLLER_KINDS:
            if isinstance(device, controller_type):
                return DiskController(
                    kind=kind, bus_number=device.busNumber, device_keys=list(device.device or []), **common
                )

        return OtherDevice(**common)

    def _native_backing(self, backing: NetworkBacking) -> Any:
        if backing.port_group_key:
            return vim.vm.device.VirtualEthernetCard.DistributedVirtualPortBackingInfo(
                port=vim.dvs.PortConnection(portgroupKey=backing.port_group_key, switchUuid=backing.switch_uuid)
            )

        return vim.vm.device.VirtualEthernetCard.NetworkBackingInfo(
            deviceName=backing.device_name,
            network=self._mo(backing.network) if backing.network else None,
        )

    def _native_device(self, device: VirtualDevice) -> Any:
        if isinstance(device, EthernetCard):
            native = device.raw
            if native is None:
                native = vim.vm.device.VirtualVmxnet3(
                    key=device.key,
                    addressType="generated",
                    connectable=vim.vm.device.VirtualDevice.ConnectInfo(
                        startConnected=True, allowGuestControl=True, connected=True
                    ),
                )

            if device.backing:
                native.backing = self._native_backing(backing=device.backing)

            return native

        if isinstance(device, VirtualDiskDevice):
            native = device.raw
            if native is None:
                native = vim.vm.device.VirtualDisk(
                    key=device.key,
                    controllerKey=device.controller_key,
                    unitNumber=device.unit_number,
                    backing=vim.vm.device.VirtualDisk.FlatVer2BackingInfo(
                        diskMode="persistent",
                        thinProvisioned=device.thin_provisioned,
                        fileName=device.file_name,
                        datastore=self._mo(device.datastore) if device.datastore else None,
                    ),
                )

            native.capacityInKB = device.capacity_kb
            return native

        return device.raw

    def _device_spec(self, change: DeviceChange) -> vim.vm.device.VirtualDeviceSpec:
        spec = vim.vm.device.VirtualDeviceSpec()
        spec.operation = getattr(vim.vm.device.VirtualDeviceSpec.Operation, change.operation.value)
        if change.file_operation:
            spec.fileOperation = getattr(vim.vm.device.VirtualDeviceSpec.FileOperation, change.file_operation.value)

        spec.device = self._native_device(device=change.device)
        return spec

    def _config_spec(self, spec: ConfigSpec) -> vim.vm.ConfigSpec:
        config_spec = vim.vm.ConfigSpec()
        if spec.num_cpus is not None:
            config_spec.numCPUs = spec.num_cpus
        if spec.memory_mb is not None:
            config_spec.memoryMB = spec.memory_mb
        if spec.cpu_hot_add_enabled is not None:
            config_spec.cpuHotAddEnabled = spec.cpu_hot_add_enabled
        if spec.memory_hot_add_enabled is not None:
            config_spec.memoryHotAddEnabled = spec.memory_hot_add_enabled
        if spec.nested_hv_enabled is not None:
            config_spec.nestedHVEnabled = spec.nested_hv_enabled

        config_spec.deviceChange = [self._device_spec(change=change) for change in spec.device_changes]
        return config_spec

    def _relocate_spec(self, spec: RelocateSpec) -> vim.vm.RelocateSpec:
        relocate_spec = vim.vm.RelocateSpec()
        if spec.resource_pool:
            relocate_spec.pool = self._mo(spec.resource_pool)
        if spec.host:
            relocate_spec.host = self._mo(spec.host)
        if spec.datastore:
            relocate_spec.datastore = self._mo(spec.datastore)
        if spec.disk_move_type:
            relocate_spec.diskMoveType = spec.disk_move_type

        return relocate_spec

    @staticmethod
    def _customization_spec(spec: CustomizationSpec) -> vim.vm.customization.Specification:
        native = spec.raw
        if native is None:
            native = vim.vm.customization.Specification(
                identity=vim.vm.customization.LinuxPrep(
                    hostName=vim.vm.customization.VirtualMachineNameGenerator(), domain="localdomain"
                ),
                globalIPSettings=vim.vm.customization.GlobalIPSettings(),
                nicSettingMap=[vim.vm.customization.AdapterMapping(adapter=vim.vm.customization.IPSettings())],
            )

        adapter = native.nicSettingMap[0].adapter
        adapter.ip = vim.vm.customization.FixedIp(ipAddress=spec.ip)
        adapter.subnetMask = spec.subnet_mask
        adapter.gateway = list(spec.gateways)
        native.globalIPSettings.dnsServerList = list(spec.dns_servers)
        return native

    def _clone_spec(self, spec: CloneSpec) -> vim.vm.CloneSpec:
        clone_spec = vim.vm.CloneSpec(
            location=self._relocate_spec(spec=spec.location),
            config=self._config_spec(spec=spec.config),
            powerOn=spec.power_on,
            template=spec.template,
        )
        if spec.customization:
            clone_spec.customization = self._customization_spec(spec=spec.customization)
        if spec.snapshot:
            clone_spec.snapshot = self._mo(spec.snapshot)

        return clone_spec
