from __future__ import annotations

import abc
import threading
from typing import Any, Callable

from simple_logger.logger import get_logger
from timeout_sampler import TimeoutExpiredError, TimeoutSampler

from exceptions.exceptions import OperationCancelledError, TaskFailedError
from libs.vsphere.models import (
    CloneSpec,
    ComputeResourceInfo,
    ConfigSpec,
    CustomizationSpec,
    DatacenterInfo,
    DatastoreInfo,
    HostInfo,
    ImportSpecResult,
    ManagedObjectRef,
    NetworkInfo,
    ResourcePoolInfo,
    TaskInfo,
    TaskState,
    VMInfo,
)

LOGGER = get_logger(__name__)

DEFAULT_TASK_TIMEOUT = 60 * 60


class Lease(abc.ABC):
    """Import lease authorizing the disk upload of an OVF import."""

    @abc.abstractmethod
    def wait_ready(self, timeout: int = 600) -> list[str]:
        """Block until the lease is ready and return its device URLs."""
        pass

    @abc.abstractmethod
    def progress(self, percent: int) -> None:
        pass

    @abc.abstractmethod
    def complete(self) -> None:
        pass

    @abc.abstractmethod
    def abort(self, reason: str) -> None:
        pass


class VSphereBackend(abc.ABC):
    """
    Client capability consumed by the vSphere components.

    Read calls return model objects and raise ObjectDeletedError for vanished
    objects. Mutating calls either return a task reference, to be passed to
    wait_for_task, or complete synchronously.
    """

    def __init__(self) -> None:
        self._cancelled = threading.Event()

    @property
    def closed(self) -> bool:
        return self._cancelled.is_set()

    def close(self) -> None:
        """Cancel every wait in progress on this connection."""
        self._cancelled.set()

    def check_cancelled(self) -> None:
        if self.closed:
            raise OperationCancelledError("vSphere connection was closed")

    # Inventory reads

    @abc.abstractmethod
    def get_datacenters(self) -> list[DatacenterInfo]:
        pass

    @abc.abstractmethod
    def get_children(self, folder: ManagedObjectRef) -> list[ManagedObjectRef]:
        pass

    @abc.abstractmethod
    def get_name(self, ref: ManagedObjectRef) -> str:
        pass

    @abc.abstractmethod
    def get_vm(self, ref: ManagedObjectRef) -> VMInfo:
        pass

    @abc.abstractmethod
    def get_compute_resource(self, ref: ManagedObjectRef) -> ComputeResourceInfo:
        pass

    @abc.abstractmethod
    def get_host(self, ref: ManagedObjectRef) -> HostInfo:
        pass

    @abc.abstractmethod
    def get_resource_pool(self, ref: ManagedObjectRef) -> ResourcePoolInfo:
        pass

    @abc.abstractmethod
    def get_network(self, ref: ManagedObjectRef) -> NetworkInfo:
        pass

    @abc.abstractmethod
    def get_datastore(self, ref: ManagedObjectRef) -> DatastoreInfo:
        pass

    @abc.abstractmethod
    def get_task(self, ref: ManagedObjectRef) -> TaskInfo:
        pass

    @abc.abstractmethod
    def find_by_uuid(
        self, uuid: str, datacenter: ManagedObjectRef | None = None, instance_uuid: bool = True
    ) -> ManagedObjectRef | None:
        pass

    # Tasks

    @abc.abstractmethod
    def clone_vm(
        self, template: ManagedObjectRef, folder: ManagedObjectRef, name: str, spec: CloneSpec
    ) -> ManagedObjectRef:
        pass

    @abc.abstractmethod
    def reconfigure_vm(self, vm: ManagedObjectRef, spec: ConfigSpec) -> ManagedObjectRef:
        pass

    @abc.abstractmethod
    def power_on_vm(self, vm: ManagedObjectRef) -> ManagedObjectRef:
        pass

    @abc.abstractmethod
    def power_off_vm(self, vm: ManagedObjectRef) -> ManagedObjectRef:
        pass

    @abc.abstractmethod
    def reset_vm(self, vm: ManagedObjectRef) -> ManagedObjectRef:
        pass

    @abc.abstractmethod
    def suspend_vm(self, vm: ManagedObjectRef) -> ManagedObjectRef:
        pass

    @abc.abstractmethod
    def destroy_vm(self, vm: ManagedObjectRef) -> ManagedObjectRef:
        pass

    @abc.abstractmethod
    def create_snapshot(
        self, vm: ManagedObjectRef, name: str, description: str, memory: bool = False, quiesce: bool = False
    ) -> ManagedObjectRef:
        pass

    # Synchronous calls

    @abc.abstractmethod
    def shutdown_guest(self, vm: ManagedObjectRef) -> None:
        pass

    @abc.abstractmethod
    def reboot_guest(self, vm: ManagedObjectRef) -> None:
        pass

    @abc.abstractmethod
    def mark_as_template(self, vm: ManagedObjectRef) -> None:
        pass

    @abc.abstractmethod
    def answer_vm(self, vm: ManagedObjectRef, question_id: str, answer: str) -> None:
        pass

    @abc.abstractmethod
    def customization_spec_exists(self, name: str) -> bool:
        pass

    @abc.abstractmethod
    def create_customization_spec(self, name: str) -> None:
        """Create the static IP customization spec under `name`."""
        pass

    @abc.abstractmethod
    def get_customization_spec(self, name: str) -> CustomizationSpec:
        """Return a private copy of the named customization spec."""
        pass

    @abc.abstractmethod
    def find_custom_field(self, name: str) -> int | None:
        pass

    @abc.abstractmethod
    def add_custom_field(self, name: str, managed_object_type: str) -> int:
        pass

    @abc.abstractmethod
    def set_custom_field(self, ref: ManagedObjectRef, key: int, value: str) -> None:
        pass

    # OVF import

    @abc.abstractmethod
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
        pass

    @abc.abstractmethod
    def import_vapp(
        self,
        resource_pool: ManagedObjectRef,
        import_spec: Any,
        folder: ManagedObjectRef,
        host: ManagedObjectRef | None,
    ) -> Lease:
        pass

    # Waits

    @abc.abstractmethod
    def wait_for_property(
        self,
        ref: ManagedObjectRef,
        property_name: str,
        predicate: Callable[[Any], bool],
        timeout: int | None = None,
    ) -> Any:
        """
        Block until `predicate` accepts the value of `property_name`.

        The current value is evaluated first, so an already satisfied predicate returns at once.

        Raises:
            TimeoutExpiredError: When the predicate is not satisfied within `timeout` seconds.
            OperationCancelledError: When the connection is closed while waiting.
        """
        pass

    def wait_for_task(
        self, task: ManagedObjectRef, action_name: str, wait_timeout: int = DEFAULT_TASK_TIMEOUT, sleep: int = 1
    ) -> Any:
        """Waits and provides updates on a vSphere task."""
        info: TaskInfo | None = None
        try:
            for info in TimeoutSampler(
                wait_timeout=wait_timeout,
                sleep=sleep,
                func=self.get_task,
                ref=task,
            ):
                self.check_cancelled()

                if info.state == TaskState.ERROR:
                    raise TaskFailedError(action=action_name, reason=info.error or "unknown error")

                if info.state == TaskState.SUCCESS:
                    LOGGER.info(f"{action_name} completed successfully.")
                    return info.result

                LOGGER.info(f"{action_name} progress: {f'{info.progress}%' if info.progress else 'In progress'}")
        except TimeoutExpiredError:
            LOGGER.error(f"{action_name} did not complete in {wait_timeout}s: {info.error if info else 'no task info'}")
            raise
