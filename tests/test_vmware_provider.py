import tarfile

import pytest

from exceptions.exceptions import OvfImportError, ParsingURLError, TaskFailedError, VmCloneError
from libs.providers.vmware import VMWareProvider
from libs.vsphere.models import Destination, DestinationType, TaskState, Template, VSphereVM

OVF_DESCRIPTOR = '<Envelope xmlns="http://schemas.dmtf.org/ovf/envelope/1"/>'


@pytest.fixture()
def web_01():
    return VSphereVM(name="prod/web-01")


@pytest.fixture()
def uploads(monkeypatch):
    _uploads = []

    def _upload_disk(url, reader, length, insecure=True):
        _uploads.append(url)

    monkeypatch.setattr("libs.vsphere.template.upload_disk", _upload_disk)
    return _uploads


@pytest.fixture()
def ova_vm(vsphere_vm, tmp_path):
    (tmp_path / "rhel-9.ovf").write_text(OVF_DESCRIPTOR)
    (tmp_path / "disk-0.vmdk").write_bytes(b"disk")
    archive = tmp_path / "rhel-9.ova"
    with tarfile.open(archive, "w") as tar:
        tar.add(tmp_path / "rhel-9.ovf", arcname="rhel-9.ovf")
        tar.add(tmp_path / "disk-0.vmdk", arcname="disk-0.vmdk")

    vsphere_vm.template = Template(name="rhel-9")
    vsphere_vm.ova_path_url = str(archive)
    return vsphere_vm


def test_vm_handle_defaults(vmware_provider):
    vm = vmware_provider.vm({"name": "db-01", "destination": {"name": "esx3", "type": "host"}})
    assert vm.datacenter == "dc1"
    assert vm.host == "vcenter.lab.example.com"
    assert vm.destination == Destination(name="esx3", type=DestinationType.HOST)


def test_provision_from_existing_template(fake_vsphere, vmware_provider, vsphere_vm, uploads):
    vm_info = vmware_provider.provision(vm=vsphere_vm)

    assert vm_info.name == vsphere_vm.name
    assert vmware_provider.get_state(vm=vsphere_vm) == "running"
    assert vmware_provider.get_ips(vm=vsphere_vm) == ["192.168.10.20"]
    assert fake_vsphere.import_specs == []
    assert uploads == []


def test_provision_uploads_missing_template(fake_vsphere, vmware_provider, ova_vm, uploads):
    vmware_provider.provision(vm=ova_vm)

    assert fake_vsphere.vm_by_name(name="rhel-9").is_template
    assert len(uploads) == 1
    assert vmware_provider.exists(vm=ova_vm)


def test_provision_uploads_local_templates(fake_vsphere, vmware_provider, ova_vm, uploads):
    ova_vm.use_local_templates = True
    ova_vm.datastores = ["ds1", "ds2"]
    vmware_provider.provision(vm=ova_vm)

    assert sorted(spec["entity_name"] for spec in fake_vsphere.import_specs) == ["rhel-9-ds1", "rhel-9-ds2"]
    assert ova_vm.template.name == "rhel-9"


def test_provision_skips_existing_local_template(fake_vsphere, vmware_provider, ova_vm, uploads):
    fake_vsphere.add_vm(folder=fake_vsphere.datacenters[0].vm_folder, name="rhel-9-ds1", is_template=True)
    ova_vm.use_local_templates = True
    vmware_provider.provision(vm=ova_vm)

    assert fake_vsphere.import_specs == []


def test_provision_without_datastore(vmware_provider, ova_vm, uploads):
    ova_vm.datastores = []
    with pytest.raises(ValueError, match="No datastore"):
        vmware_provider.provision(vm=ova_vm)


def test_failed_provision_destroys_partial_vm(fake_vsphere, vmware_provider, vsphere_vm):
    fake_vsphere.failing_tasks["power_on_vm"] = "The operation is not allowed in the current state."
    with pytest.raises(TaskFailedError, match="not allowed"):
        vmware_provider.provision(vm=vsphere_vm)

    assert ("destroy_vm", vsphere_vm.name) in fake_vsphere.calls
    assert not vmware_provider.exists(vm=vsphere_vm)


def test_failed_template_upload_has_nothing_to_destroy(fake_vsphere, vmware_provider, vsphere_vm):
    vsphere_vm.template = Template(name="templates/missing-template")
    with pytest.raises(OvfImportError):
        vmware_provider.provision(vm=vsphere_vm)

    assert not [call for call in fake_vsphere.calls if call[0] == "destroy_vm"]


def test_failed_template_upload_keeps_existing_vm(fake_vsphere, vmware_provider, vsphere_vm):
    vsphere_vm.name = "prod/web-01"
    vsphere_vm.template = Template(name="no-such-template")
    with pytest.raises(OvfImportError):
        vmware_provider.provision(vm=vsphere_vm)

    assert fake_vsphere.calls == []
    assert vmware_provider.get_state(vm=vsphere_vm) == "running"


def test_failed_clone_keeps_existing_vm(fake_vsphere, vmware_provider, vsphere_vm):
    vsphere_vm.name = "prod/web-01"
    fake_vsphere.failing_tasks["clone_vm"] = "The name 'web-01' already exists."
    with pytest.raises(VmCloneError, match="already exists"):
        vmware_provider.provision(vm=vsphere_vm)

    assert not [call for call in fake_vsphere.calls if call[0] == "destroy_vm"]
    assert vmware_provider.exists(vm=vsphere_vm)


def test_stop_and_start(fake_vsphere, vmware_provider, web_01):
    vmware_provider.stop_vm(vm=web_01)
    assert vmware_provider.get_state(vm=web_01) == "notRunning"
    assert vmware_provider.get_power_state(vm=web_01) == "poweredOff"

    vmware_provider.start_vm(vm=web_01)
    assert vmware_provider.get_state(vm=web_01) == "running"


def test_suspend_and_resume(vmware_provider, web_01):
    vmware_provider.suspend_vm(vm=web_01)
    assert vmware_provider.get_state(vm=web_01) == "suspended"

    vmware_provider.resume_vm(vm=web_01)
    assert vmware_provider.get_state(vm=web_01) == "running"


def test_shutdown(fake_vsphere, vmware_provider, web_01):
    vmware_provider.shutdown_vm(vm=web_01)
    assert ("shutdown_guest", "web-01") in fake_vsphere.calls
    assert vmware_provider.get_state(vm=web_01) == "notRunning"


def test_restart(fake_vsphere, vmware_provider, web_01):
    vmware_provider.restart_vm(vm=web_01)
    assert ("reboot_guest", "web-01") in fake_vsphere.calls


def test_reset(fake_vsphere, vmware_provider, web_01):
    fake_vsphere.heartbeats[fake_vsphere.vm_by_name(name="web-01").ref] = ["gray", "green"]
    vmware_provider.reset_vm(vm=web_01)
    assert ("reset_vm", "web-01") in fake_vsphere.calls


def test_delete_running_vm(fake_vsphere, vmware_provider, web_01):
    vmware_provider.delete_vm(vm=web_01)

    assert fake_vsphere.calls == [("power_off_vm", "web-01"), ("destroy_vm", "web-01")]
    assert not vmware_provider.exists(vm=web_01)


def test_vm_dict(vmware_provider):
    vm_dict = vmware_provider.vm_dict(name="prod/web-01")

    assert vm_dict["provider_type"] == "vsphere"
    assert vm_dict["name"] == "web-01"
    assert vm_dict["uuid"] == "web-01-uuid"
    assert vm_dict["power_state"] == "on"
    assert vm_dict["ips"] == ["10.1.1.5"]
    assert vm_dict["cpu"]["num_cpus"] == 4
    assert vm_dict["memory_in_mb"] == 4096
    assert [nic["network"]["name"] for nic in vm_dict["network_interfaces"]] == ["VM Network", "dvpg-prod"]


def test_vm_dict_disks(vmware_provider):
    vm_dict = vmware_provider.vm_dict(vm=VSphereVM(name="templates/rhel-template"))

    assert vm_dict["power_state"] == "off"
    assert vm_dict["disks"] == [
        {
            "name": "Hard disk 1",
            "size_in_kb": 10 * 1024 * 1024,
            "storage": {"name": "ds1"},
            "file_name": "[ds1] rhel-template/rhel-template.vmdk",
            "device_key": 2000,
            "unit_number": 0,
            "controller_key": 1000,
        }
    ]


def test_list_vms(vmware_provider, web_01):
    assert vmware_provider.list_vms(vm=web_01) == ["templates/rhel-template", "prod/web-01"]
    assert "shared/shared-template" in vmware_provider.list_vms(vm=web_01, all_datacenters=True)


def test_list_vms_on_destination(vmware_provider):
    vm = VSphereVM(name="", destination=Destination(name="cluster1", host_system="esx2"))
    assert vmware_provider.list_vms(vm=vm) == []


def test_custom_field(fake_vsphere, vmware_provider, web_01):
    vmware_provider.set_custom_field(vm=web_01, field_name="owner", value="qe")
    vmware_provider.set_custom_field(vm=web_01, field_name="owner", value="dev")

    ref = fake_vsphere.vm_by_name(name="web-01").ref
    assert fake_vsphere.custom_fields == {"owner": 1}
    assert fake_vsphere.custom_values[(ref, 1)] == "dev"


def test_active_tasks(fake_vsphere, vmware_provider, web_01):
    vm_info = fake_vsphere.vm_by_name(name="web-01")
    vm_info.recent_tasks = [fake_vsphere.add_task()]
    assert not vmware_provider.has_active_tasks(vm=web_01)

    vm_info.recent_tasks.append(fake_vsphere.add_task(state=TaskState.RUNNING))
    assert vmware_provider.has_active_tasks(vm=web_01)


def test_wait_for_tasks_to_finish_ignores_failed_tasks(fake_vsphere, vmware_provider, web_01):
    fake_vsphere.vm_by_name(name="web-01").recent_tasks = [
        fake_vsphere.add_task(state=TaskState.ERROR, error="snapshot failed"),
        fake_vsphere.add_task(),
    ]
    vmware_provider.wait_for_tasks_to_finish(vm=web_01)


def test_cluster_queries(vmware_provider):
    vm = VSphereVM(name="", destination=Destination(name="cluster1", host_system="esx2"))

    assert vmware_provider.is_cluster_drs_enabled(vm=vm) is False
    assert [datastore.name for datastore in vmware_provider.shared_datastores_in_cluster(vm=vm)] == ["ds1"]
    assert [datastore.name for datastore in vmware_provider.datastores_in_host(vm=vm)] == ["ds1"]


def test_drs_of_standalone_host(vmware_provider):
    with pytest.raises(ValueError):
        vmware_provider.is_cluster_drs_enabled(vm=VSphereVM(name="", destination=Destination(name="esx3")))


def test_datastores_for_vm(vmware_provider, web_01):
    assert vmware_provider.datastores_for_vm(vm=web_01) == ["ds1"]


def test_test_property(fake_vsphere, vmware_provider):
    assert vmware_provider.test
    vmware_provider.disconnect()
    assert fake_vsphere.closed
    assert not vmware_provider.test


@pytest.mark.parametrize(
    "host",
    [
        pytest.param("vcenter.lab.example.com:abc", id="invalid-port"),
        pytest.param("", id="missing-host"),
    ],
)
def test_connect_invalid_url(host):
    provider = VMWareProvider(host=host, username="administrator@vsphere.local", password="password")
    assert not provider.test
    with pytest.raises(ParsingURLError):
        provider.connect()
