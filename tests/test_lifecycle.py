import pytest
from timeout_sampler import TimeoutExpiredError

from exceptions.exceptions import OperationCancelledError, PowerStateChangingError, VmOperationTimeoutError
from libs.vsphere.inventory import InventoryResolver
from libs.vsphere.lifecycle import HeartbeatStatus, LifecycleController, valid_ipv4_addresses
from libs.vsphere.models import SearchFilter, VSphereVM
from libs.vsphere.questions import QuestionResponder


@pytest.fixture()
def lifecycle(fake_vsphere):
    inventory = InventoryResolver(backend=fake_vsphere, responder=QuestionResponder(backend=fake_vsphere))
    return LifecycleController(backend=fake_vsphere, inventory=inventory, shutdown_poll_interval=0, ip_poll_interval=0)


@pytest.fixture()
def stopped_vm(fake_vsphere):
    prod = fake_vsphere.folder_of(fake_vsphere.vm_by_name(name="web-01").ref)
    fake_vsphere.add_vm(folder=prod, name="db-01", uuid="db-01-uuid")
    return VSphereVM(name="prod/db-01", datacenter="dc1")


@pytest.fixture()
def running_vm():
    return VSphereVM(name="prod/web-01", datacenter="dc1")


@pytest.mark.parametrize(
    "status, expected",
    [
        pytest.param("green", HeartbeatStatus.GREEN, id="green"),
        pytest.param("YELLOW", HeartbeatStatus.YELLOW, id="upper-case"),
        pytest.param("", HeartbeatStatus(0), id="empty"),
        pytest.param("purple", HeartbeatStatus(0), id="unknown"),
    ],
)
def test_heartbeat_status_from_status(status, expected):
    assert HeartbeatStatus.from_status(status) == expected


def test_valid_ipv4_addresses():
    assert valid_ipv4_addresses(addresses=["fe80::1", "10.0.0.4", "not-an-ip", "192.168.1.1"]) == [
        "10.0.0.4",
        "192.168.1.1",
    ]


def test_start_waits_for_ip(fake_vsphere, lifecycle, stopped_vm):
    lifecycle.start(vm=stopped_vm)

    assert ("power_on_vm", "db-01") in fake_vsphere.calls
    assert lifecycle.get_ips(vm=stopped_vm) == ["192.168.10.20"]
    assert lifecycle.get_vm_state(vm=stopped_vm) == "running"


def test_start_with_busy_guest(fake_vsphere, lifecycle, stopped_vm):
    fake_vsphere.vm_by_name(name="db-01").guest_state = "shuttingDown"
    with pytest.raises(PowerStateChangingError):
        lifecycle.start(vm=stopped_vm)


def test_start_skip_ip_wait(fake_vsphere, lifecycle, stopped_vm):
    fake_vsphere.guest_ips["db-01"] = []
    stopped_vm.skip_ip_wait = True
    lifecycle.start(vm=stopped_vm)

    assert lifecycle.get_power_state(vm=stopped_vm) == "poweredOn"


def test_start_ip_wait_timeout(fake_vsphere, lifecycle, stopped_vm, monkeypatch):
    monkeypatch.setenv("IPWAIT_TIMEOUT", "1s")
    fake_vsphere.guest_ips["db-01"] = ["fe80::2"]
    with pytest.raises(TimeoutExpiredError):
        lifecycle.start(vm=stopped_vm)


def test_halt(fake_vsphere, lifecycle, running_vm):
    lifecycle.halt(vm=running_vm)
    assert lifecycle.get_vm_state(vm=running_vm) == "notRunning"


def test_halt_from_standby_starts_first(fake_vsphere, lifecycle, running_vm):
    fake_vsphere.vm_by_name(name="web-01").guest_state = "standby"
    lifecycle.halt(vm=running_vm)

    operations = [call[0] for call in fake_vsphere.calls]
    assert operations == ["power_on_vm", "power_off_vm"]


def test_shutdown(fake_vsphere, lifecycle, running_vm):
    lifecycle.shutdown(vm=running_vm)
    assert lifecycle.get_state(vm=running_vm) == "notRunning"


def test_shutdown_timeout(fake_vsphere, lifecycle, running_vm):
    fake_vsphere.shutdown_guest = lambda vm: None
    with pytest.raises(VmOperationTimeoutError):
        lifecycle.shutdown(vm=running_vm)


def test_restart(fake_vsphere, lifecycle, running_vm):
    web = fake_vsphere.vm_by_name(name="web-01")
    fake_vsphere.heartbeats[web.ref] = ["gray", "green"]
    lifecycle.restart(vm=running_vm)

    assert ("reboot_guest", "web-01") in fake_vsphere.calls


def test_restart_without_gray_phase(fake_vsphere, lifecycle, running_vm):
    # a fast reboot may never report gray
    lifecycle.restart(vm=running_vm)


def test_restart_guest_never_returns(fake_vsphere, lifecycle, running_vm):
    web = fake_vsphere.vm_by_name(name="web-01")
    fake_vsphere.heartbeats[web.ref] = ["red"]
    with pytest.raises(TimeoutExpiredError):
        lifecycle.restart(vm=running_vm)


def test_reset_without_tools(fake_vsphere, lifecycle, running_vm):
    web = fake_vsphere.vm_by_name(name="web-01")
    web.tools_running_status = "guestToolsNotRunning"
    fake_vsphere.heartbeats[web.ref] = ["red"]
    lifecycle.reset(vm=running_vm)

    assert ("reset_vm", "web-01") in fake_vsphere.calls


def test_reset_with_tools(fake_vsphere, lifecycle, running_vm):
    web = fake_vsphere.vm_by_name(name="web-01")
    fake_vsphere.heartbeats[web.ref] = ["red", "yellow"]
    lifecycle.reset(vm=running_vm)


def test_reset_with_tools_guest_never_returns(fake_vsphere, lifecycle, running_vm):
    web = fake_vsphere.vm_by_name(name="web-01")
    fake_vsphere.heartbeats[web.ref] = ["gray"]
    with pytest.raises(TimeoutExpiredError):
        lifecycle.reset(vm=running_vm)


def test_suspend_and_resume(fake_vsphere, lifecycle, running_vm):
    lifecycle.suspend(vm=running_vm)
    assert lifecycle.get_vm_state(vm=running_vm) == "suspended"

    lifecycle.resume(vm=running_vm)
    assert lifecycle.get_vm_state(vm=running_vm) == "running"


def test_destroy_running_vm(fake_vsphere, lifecycle, running_vm):
    lifecycle.destroy(vm=running_vm)

    assert [call[0] for call in fake_vsphere.calls] == ["power_off_vm", "destroy_vm"]
    assert not lifecycle.inventory.exists(vm=running_vm, search_filter=SearchFilter.for_vm(name=running_vm.name))


def test_destroy_stopped_vm(fake_vsphere, lifecycle, stopped_vm):
    lifecycle.destroy(vm=stopped_vm)
    assert [call[0] for call in fake_vsphere.calls] == ["destroy_vm"]


def test_unknown_power_state(fake_vsphere, lifecycle, running_vm):
    fake_vsphere.vm_by_name(name="web-01").power_state = "migrating"
    assert lifecycle.get_vm_state(vm=running_vm) == "unknown"


def test_closed_backend_cancels_task_waits(fake_vsphere, lifecycle, running_vm):
    fake_vsphere.close()
    with pytest.raises(OperationCancelledError):
        lifecycle.suspend(vm=running_vm)


def test_closed_backend_cancels_property_waits(fake_vsphere, lifecycle, running_vm):
    fake_vsphere.close()
    with pytest.raises(OperationCancelledError):
        lifecycle.restart(vm=running_vm)
