from __future__ import annotations

import enum
import ipaddress
import time

from simple_logger.logger import get_logger
from timeout_sampler import TimeoutExpiredError, TimeoutSampler

from exceptions.exceptions import PowerStateChangingError, VmOperationTimeoutError
from libs.vsphere.backend import VSphereBackend
from libs.vsphere.inventory import InventoryResolver
from libs.vsphere.models import SearchFilter, VMInfo, VSphereVM
from utilities.utils import get_ip_wait_timeout

LOGGER = get_logger(__name__)

RETRY_COUNT = 20
SHUTDOWN_POLL_INTERVAL = 5
IP_POLL_INTERVAL = 5
GRAY_STATUS_CHECK_TIMEOUT = 60
GREEN_STATUS_CHECK_TIMEOUT = 10 * 60
GUEST_HEARTBEAT_STATUS = "guestHeartbeatStatus"

STANDBY = "standby"
NOT_RUNNING = "notRunning"
BUSY_GUEST_STATES = ("shuttingdown", "resetting")
VM_STATES = {"poweredOn": "running", "poweredOff": "notRunning", "suspended": "suspended"}
UNKNOWN_STATE = "unknown"


class HeartbeatStatus(enum.IntFlag):
    """
    Guest heartbeat classification.

    gray: tools not installed or not running. red: no heartbeat.
    yellow: intermittent heartbeat. green: guest responding normally.
    """

    GREEN = 1
    YELLOW = 2
    GRAY = 4
    RED = 8

    @classmethod
    def from_status(cls, status: str | None) -> HeartbeatStatus:
        if not status:
            return cls(0)

        return cls.__members__.get(status.upper(), cls(0))


def valid_ipv4_addresses(addresses: list[str]) -> list[str]:
    valid = []
    for address in addresses:
        try:
            if isinstance(ipaddress.ip_address(address), ipaddress.IPv4Address):
                valid.append(address)
        except ValueError:
            continue

    return valid


class LifecycleController:
    def __init__(
        self,
        backend: VSphereBackend,
        inventory: InventoryResolver,
        shutdown_poll_interval: int = SHUTDOWN_POLL_INTERVAL,
        ip_poll_interval: int = IP_POLL_INTERVAL,
    ) -> None:
        self.backend = backend
        self.inventory = inventory
        self.shutdown_poll_interval = shutdown_poll_interval
        self.ip_poll_interval = ip_poll_interval

    def find(self, vm: VSphereVM) -> VMInfo:
        return self.inventory.find_vm(vm=vm, search_filter=SearchFilter.for_vm(name=vm.name))

    def get_state(self, vm: VSphereVM) -> str:
        """Guest state as reported by the backend: running, notRunning, shuttingDown, resetting, standby..."""
        return self.find(vm=vm).guest_state

    def get_power_state(self, vm: VSphereVM) -> str:
        return self.find(vm=vm).power_state

    def get_vm_state(self, vm: VSphereVM) -> str:
        """Power state as running, notRunning, suspended or unknown."""
        return VM_STATES.get(self.get_power_state(vm=vm), UNKNOWN_STATE)

    def get_ips(self, vm: VSphereVM) -> list[str]:
        return valid_ipv4_addresses(addresses=self.find(vm=vm).ip_addresses)

    def start(self, vm: VSphereVM) -> None:
        vm_info = self.find(vm=vm)
        if vm_info.guest_state.lower() in BUSY_GUEST_STATES:
            raise PowerStateChangingError(vm=vm.name, state=vm_info.guest_state)

        self.backend.wait_for_task(task=self.backend.power_on_vm(vm=vm_info.ref), action_name=f"Starting VM {vm.name}")
        if not vm.skip_ip_wait:
            self.wait_for_ip(vm=vm, vm_info=vm_info)

    def halt(self, vm: VSphereVM) -> None:
        # a VM in standby can not be powered off directly
        if self.get_state(vm=vm) == STANDBY:
            self.start(vm=vm)

        vm_info = self.find(vm=vm)
        self.backend.wait_for_task(
            task=self.backend.power_off_vm(vm=vm_info.ref), action_name=f"Stopping VM {vm.name}"
        )

    def shutdown(self, vm: VSphereVM) -> None:
        vm_info = self.find(vm=vm)
        LOGGER.info(f"Shutting down guest of VM {vm.name}")
        self.backend.shutdown_guest(vm=vm_info.ref)

        for _ in range(RETRY_COUNT):
            state = self.get_state(vm=vm)
            if state == NOT_RUNNING:
                LOGGER.info(f"VM {vm.name} is {state}")
                return

            time.sleep(self.shutdown_poll_interval)

        raise VmOperationTimeoutError(vm=vm.name, operation="Shutting down")

    def restart(self, vm: VSphereVM) -> None:
        vm_info = self.find(vm=vm)
        LOGGER.info(f"Rebooting guest of VM {vm.name}")
        self.backend.reboot_guest(vm=vm_info.ref)

        try:
            self.wait_for_guest_status(vm_info=vm_info, status=HeartbeatStatus.GRAY, timeout=GRAY_STATUS_CHECK_TIMEOUT)
        except TimeoutExpiredError:
            # the guest may come back before gray is observed
            LOGGER.warning(f"VM {vm.name} heartbeat did not turn gray during reboot")

        try:
            self.wait_for_guest_status(
                vm_info=vm_info,
                status=HeartbeatStatus.GREEN | HeartbeatStatus.YELLOW,
                timeout=GREEN_STATUS_CHECK_TIMEOUT,
            )
        except TimeoutExpiredError:
            LOGGER.error(f"VM {vm.name} did not come back after reboot")
            raise

    def reset(self, vm: VSphereVM) -> None:
        vm_info = self.find(vm=vm)
        tools_running = vm_info.tools_running
        self.backend.wait_for_task(task=self.backend.reset_vm(vm=vm_info.ref), action_name=f"Resetting VM {vm.name}")

        if not tools_running:
            LOGGER.info(f"VMware tools not running on {vm.name}, skipping heartbeat check")
            return

        self.wait_for_guest_status(
            vm_info=vm_info, status=HeartbeatStatus.GRAY | HeartbeatStatus.RED, timeout=GREEN_STATUS_CHECK_TIMEOUT
        )
        self.wait_for_guest_status(
            vm_info=vm_info, status=HeartbeatStatus.GREEN | HeartbeatStatus.YELLOW, timeout=GREEN_STATUS_CHECK_TIMEOUT
        )

    def suspend(self, vm: VSphereVM) -> None:
        vm_info = self.find(vm=vm)
        self.backend.wait_for_task(
            task=self.backend.suspend_vm(vm=vm_info.ref), action_name=f"Suspending VM {vm.name}"
        )

    def resume(self, vm: VSphereVM) -> None:
        self.start(vm=vm)

    def destroy(self, vm: VSphereVM) -> None:
        vm_info = self.find(vm=vm)
        if vm_info.power_state == "poweredOn":
            self.halt(vm=vm)

        self.backend.wait_for_task(
            task=self.backend.destroy_vm(vm=vm_info.ref), action_name=f"Destroying VM {vm.name}"
        )

    def wait_for_guest_status(self, vm_info: VMInfo, status: HeartbeatStatus, timeout: int | None = None) -> str:
        """Wait until the guest heartbeat is one of the statuses set in `status`."""
        return self.backend.wait_for_property(
            ref=vm_info.ref,
            property_name=GUEST_HEARTBEAT_STATUS,
            predicate=lambda value: bool(HeartbeatStatus.from_status(value) & status),
            timeout=timeout,
        )

    def wait_for_ip(self, vm: VSphereVM, vm_info: VMInfo) -> list[str]:
        timeout = get_ip_wait_timeout()
        LOGGER.info(f"Waiting up to {timeout}s for VM {vm.name} to get an IPv4 address")
        try:
            for sample in TimeoutSampler(
                wait_timeout=timeout,
                sleep=self.ip_poll_interval,
                func=self.backend.get_vm,
                ref=vm_info.ref,
            ):
                self.backend.check_cancelled()
                ips = valid_ipv4_addresses(addresses=sample.ip_addresses)
                if ips:
                    LOGGER.info(f"VM {vm.name} IPs: {ips}")
                    return ips

        except TimeoutExpiredError:
            LOGGER.error(f"failed to wait for VM {vm.name} to get ips")
            raise

        return []
