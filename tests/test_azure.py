import json
import subprocess

import pytest

from exceptions.exceptions import AzureCLIError, AzureDeploymentError, MissingTemplateParametersError
from libs.azure.models import AzureVM
from libs.azure.templates import LINUX
from libs.providers.azure import resolve_expression

SUCCEEDED_DEPLOYMENT = {"name": "deployment", "properties": {"provisioningState": "Succeeded"}}


class AzCli:
    """Replays canned az responses, keyed by the leading sub command words."""

    def __init__(self, responses=None):
        self.responses = responses or {}
        self.commands = []
        self.retries = []
        self.deployed = []

    def __call__(self, args, timeout=300, retries=3):
        self.commands.append(args)
        self.retries.append(retries)
        if args[:3] == ["deployment", "group", "create"]:
            template_file = args[args.index("--template-file") + 1]
            parameters_file = args[args.index("--parameters") + 1].lstrip("@")
            with open(template_file) as template_fd, open(parameters_file) as parameters_fd:
                self.deployed.append({"template": json.load(template_fd), "parameters": json.load(parameters_fd)})

        for prefix, response in self.responses.items():
            if " ".join(args).startswith(prefix):
                if isinstance(response, Exception):
                    raise response

                return response

        return None


@pytest.fixture()
def az(monkeypatch):
    _az = AzCli(responses={"deployment group create": SUCCEEDED_DEPLOYMENT})
    monkeypatch.setattr("libs.providers.azure.run_az_json", _az)
    return _az


def test_parameters_render_every_template_parameter(azure_vm):
    parameters = azure_vm.parameters()
    assert set(parameters) == set(LINUX["parameters"])
    assert parameters["vm_name"] == {"value": azure_vm.name}
    assert parameters["additional_disk"] == {"value": "false"}
    assert parameters["disk_size"] == {"value": "20"}
    assert parameters["os_file"] == {"value": f"{azure_vm.name}-os.vhd"}


def test_resolve_expression():
    parameters = {"storage_account": {"value": "acct"}, "disk_file": {"value": "d.vhd"}}
    assert resolve_expression(value="[parameters('disk_file')]", parameters=parameters) == "d.vhd"
    assert (
        resolve_expression(
            value="[concat('http://',parameters('storage_account'),'.blob/', parameters('disk_file'))]",
            parameters=parameters,
        )
        == "http://acct.blob/d.vhd"
    )
    assert resolve_expression(value="[resourceGroup().location]", parameters=parameters) == "[resourceGroup().location]"
    assert resolve_expression(value={"lun": 0, "names": ["[parameters('disk_file')]"]}, parameters=parameters) == {
        "lun": 0,
        "names": ["d.vhd"],
    }


def test_no_data_disk_without_additional_disk(azure_provider, azure_vm):
    assert azure_provider.data_disks(parameters=azure_vm.parameters()) == []


def test_no_data_disk_when_additional_disk_unset(azure_provider, azure_vm):
    parameters = azure_vm.parameters()
    del parameters["additional_disk"]
    assert azure_provider.data_disks(parameters=parameters) == []


def test_one_data_disk_with_additional_disk(azure_provider, azure_vm):
    azure_vm.additional_disk = True
    azure_vm.disk_size = 64

    disks = azure_provider.data_disks(parameters=azure_vm.parameters())
    assert disks == [
        {
            "name": "datadisk1",
            "diskSizeGB": 64,
            "lun": 0,
            "vhd": {"uri": f"http://lifecyclestorage.blob.core.windows.net/vhds/{azure_vm.name}-data.vhd"},
            "createOption": "Empty",
        }
    ]
    # the template itself is never modified
    assert LINUX["variables"]["diskAttachment"]["true"]["disks"][0]["diskSizeGB"] == "[parameters('disk_size')]"


def test_provision(az, azure_provider, azure_vm):
    azure_vm.additional_disk = True
    deployment = azure_provider.provision(vm=azure_vm)

    assert deployment == SUCCEEDED_DEPLOYMENT
    create = az.commands[-1]
    assert create[:3] == ["deployment", "group", "create"]
    assert create[create.index("--resource-group") + 1] == "rg-vm-lifecycle"
    assert create[create.index("--name") + 1] == f"{azure_vm.name}-deployment"
    assert az.deployed[0]["template"] == LINUX
    assert az.deployed[0]["parameters"]["additional_disk"] == {"value": "true"}


def test_provision_from_dict(az, azure_provider, azure_vm):
    azure_provider.provision(vm={**azure_vm.__dict__, "deployment_name": "custom-deployment"})
    create = az.commands[-1]
    assert create[create.index("--name") + 1] == "custom-deployment"


def test_provision_missing_parameters(az, azure_provider):
    with pytest.raises(MissingTemplateParametersError) as exc_info:
        azure_provider.provision(vm=AzureVM(name="vm", username="cloud-user"))

    assert "username" not in exc_info.value.missing
    assert "ssh_authorized_key" in exc_info.value.missing
    assert "vm_name" not in exc_info.value.missing
    assert az.commands == []


def test_provision_failed_deployment(az, azure_provider, azure_vm):
    az.responses["deployment group create"] = {"properties": {"provisioningState": "Failed"}}
    with pytest.raises(AzureDeploymentError, match="Failed"):
        azure_provider.provision(vm=azure_vm)


def test_provision_cli_error(az, azure_provider, azure_vm):
    az.responses["deployment group create"] = AzureCLIError("InvalidTemplateDeployment")
    with pytest.raises(AzureDeploymentError, match="InvalidTemplateDeployment"):
        azure_provider.provision(vm=azure_vm)


@pytest.mark.parametrize(
    "method, command",
    [
        pytest.param("start_vm", ["vm", "start"], id="start"),
        pytest.param("stop_vm", ["vm", "deallocate"], id="stop"),
        pytest.param("restart_vm", ["vm", "restart"], id="restart"),
    ],
)
def test_power_operations(az, azure_provider, azure_vm, method, command):
    getattr(azure_provider, method)(vm=azure_vm)
    assert az.commands == [[*command, "--resource-group", "rg-vm-lifecycle", "--name", azure_vm.name]]


def test_delete_vm(az, azure_provider, azure_vm):
    azure_provider.delete_vm(vm=azure_vm)
    assert [command[:3] for command in az.commands] == [
        ["vm", "delete", "--resource-group"],
        ["network", "nic", "delete"],
        ["network", "public-ip", "delete"],
    ]
    assert "--yes" in az.commands[0]
    assert az.commands[1][-1] == "nic-lifecycle"
    assert az.commands[2][-1] == "pip-lifecycle"


@pytest.mark.parametrize(
    "method",
    [
        pytest.param("start_vm", id="start"),
        pytest.param("stop_vm", id="stop"),
        pytest.param("restart_vm", id="restart"),
        pytest.param("delete_vm", id="delete"),
        pytest.param("provision", id="provision"),
    ],
)
def test_state_changing_commands_run_once(az, azure_provider, azure_vm, method):
    getattr(azure_provider, method)(vm=azure_vm)
    assert az.retries
    assert set(az.retries) == {1}


def test_start_vm_is_not_retried_on_transient_error(monkeypatch, azure_provider, azure_vm):
    runs = []

    def _run(cmd, capture_output, text, timeout):
        runs.append(cmd)
        return subprocess.CompletedProcess(args=cmd, returncode=1, stdout="", stderr="Gateway Timeout")

    monkeypatch.setattr(subprocess, "run", _run)
    monkeypatch.setattr("utilities.az_cli.backoff_sleep", lambda attempt: None)
    with pytest.raises(AzureCLIError, match="Gateway Timeout"):
        azure_provider.start_vm(vm=azure_vm)

    assert [cmd[1:3] for cmd in runs] == [["vm", "start"]]


def test_unsupported_operations(azure_provider, azure_vm):
    with pytest.raises(NotImplementedError):
        azure_provider.suspend_vm(vm=azure_vm)


@pytest.mark.parametrize(
    "code, state",
    [
        pytest.param("PowerState/running", "running", id="running"),
        pytest.param("PowerState/deallocated", "notRunning", id="deallocated"),
        pytest.param("PowerState/stopped", "notRunning", id="stopped"),
        pytest.param("PowerState/starting", "starting", id="starting"),
        pytest.param("PowerState/deallocating", "stopping", id="deallocating"),
        pytest.param("PowerState/unknownstate", "unknown", id="unknown"),
    ],
)
def test_get_state(az, azure_provider, azure_vm, code, state):
    az.responses["vm get-instance-view"] = {
        "instanceView": {
            "statuses": [{"code": "ProvisioningState/succeeded"}, {"code": code}],
        }
    }
    assert azure_provider.get_state(vm=azure_vm) == state


def test_get_state_without_power_state(az, azure_provider, azure_vm):
    az.responses["vm get-instance-view"] = {"instanceView": {"statuses": [{"code": "ProvisioningState/creating"}]}}
    assert azure_provider.get_state(vm=azure_vm) == "unknown"


def test_get_ips(az, azure_provider, azure_vm):
    az.responses["vm list-ip-addresses"] = [
        {
            "virtualMachine": {
                "name": azure_vm.name,
                "network": {
                    "privateIpAddresses": ["10.0.0.4"],
                    "publicIpAddresses": [{"ipAddress": "20.1.2.3", "name": "pip-lifecycle"}, {"name": "pending"}],
                },
            }
        }
    ]
    assert azure_provider.get_ips(vm=azure_vm) == ["20.1.2.3", "10.0.0.4"]


def test_vm_dict(az, azure_provider, azure_vm):
    az.responses["vm show"] = {
        "id": f"/subscriptions/x/resourceGroups/rg-vm-lifecycle/providers/Microsoft.Compute/virtualMachines/{azure_vm.name}",
        "vmId": "b2f1c3d4",
        "name": azure_vm.name,
        "powerState": "VM deallocated",
        "publicIps": "",
        "privateIps": "10.0.0.4",
        "hardwareProfile": {"vmSize": "Standard_D2s_v3"},
        "networkProfile": {"networkInterfaces": [{"id": "/subscriptions/x/networkInterfaces/nic-lifecycle"}]},
        "storageProfile": {
            "osDisk": {"name": "osdisk", "diskSizeGb": 30, "vhd": {"uri": "http://acct/vhds/os.vhd"}},
            "dataDisks": [{"name": "datadisk1", "diskSizeGb": 20, "lun": 0}],
        },
    }
    vm_dict = azure_provider.vm_dict(vm=azure_vm)

    assert vm_dict["provider_type"] == "azure"
    assert vm_dict["id"] == "b2f1c3d4"
    assert vm_dict["power_state"] == "off"
    assert vm_dict["ips"] == ["10.0.0.4"]
    assert vm_dict["network_interfaces"][0]["name"] == "nic-lifecycle"
    assert [disk["name"] for disk in vm_dict["disks"]] == ["osdisk", "datadisk1"]
    assert vm_dict["cpu"]["vm_size"] == "Standard_D2s_v3"


def test_connect(az, azure_provider):
    az.responses["account show"] = {"id": azure_provider.subscription, "state": "Enabled"}
    with azure_provider as provider:
        assert provider.account["state"] == "Enabled"
        assert provider.test

    assert az.commands[0] == ["account", "set", "--subscription", azure_provider.subscription]
    assert azure_provider.account is None


def test_connect_with_service_principal(az, azure_provider_data):
    from libs.providers.azure import AzureProvider

    provider = AzureProvider(
        subscription=azure_provider_data["subscription"],
        resource_group=azure_provider_data["resource_group"],
        tenant="tenant-id",
        username="app-id",
        password="secret",
    )
    provider.connect()
    assert az.commands[0] == [
        "login",
        "--service-principal",
        "--username",
        "app-id",
        "--password",
        "secret",
        "--tenant",
        "tenant-id",
    ]


def test_test_property_on_cli_error(az, azure_provider):
    az.responses["account show"] = AzureCLIError("Please run 'az login' to setup account.")
    assert azure_provider.test is False
