from __future__ import annotations

import copy
import json
import os
import re
import tempfile
from typing import Any, Self

from simple_logger.logger import get_logger

from exceptions.exceptions import AzureCLIError, AzureDeploymentError, MissingTemplateParametersError
from libs.azure.models import AzureVM
from libs.azure.templates import LINUX
from libs.base_provider import BaseProvider
from utilities.az_cli import run_az_json

LOGGER = get_logger(__name__)

AZURE_PROVIDER_TYPE = "azure"
DEPLOYMENT_SUCCEEDED = "Succeeded"
POWER_STATE_PREFIX = "PowerState/"
POWER_STATES = {
    "running": "running",
    "deallocated": "notRunning",
    "stopped": "notRunning",
    "starting": "starting",
    "stopping": "stopping",
    "deallocating": "stopping",
}
UNKNOWN_STATE = "unknown"

PARAMETER_EXPRESSION = re.compile(r"^\[parameters\('([^']+)'\)\]$")
CONCAT_EXPRESSION = re.compile(r"^\[concat\((.*)\)\]$")
CONCAT_ARGUMENT = re.compile(r"parameters\('([^']+)'\)|'([^']*)'")


def resolve_expression(value: Any, parameters: dict[str, dict[str, Any]]) -> Any:
    """
    Substitute `[parameters('x')]` and `[concat(...)]` expressions with the given parameter values.

    Only these two forms are understood, anything else is returned unchanged.
    """
    if isinstance(value, dict):
        return {key: resolve_expression(value=_value, parameters=parameters) for key, _value in value.items()}

    if isinstance(value, list):
        return [resolve_expression(value=_value, parameters=parameters) for _value in value]

    if not isinstance(value, str):
        return value

    if match := PARAMETER_EXPRESSION.match(value):
        return parameters.get(match.group(1), {}).get("value", "")

    if match := CONCAT_EXPRESSION.match(value):
        parts = []
        for argument in CONCAT_ARGUMENT.finditer(match.group(1)):
            parameter_name, literal = argument.groups()
            if parameter_name:
                parts.append(str(parameters.get(parameter_name, {}).get("value", "")))
            else:
                parts.append(literal)

        return "".join(parts)

    return value


class AzureProvider(BaseProvider):
    """
    Azure backend of the lifecycle interface, VMs are created from a static ARM template.

    All calls go through the Azure CLI, which must be installed and logged in unless
    service principal credentials are given.

    Args:
        subscription (str): Subscription id or name.
        resource_group (str): Resource group every VM is deployed into.
        tenant (str): Tenant of the service principal in username/password.
        template (dict): ARM template to deploy, defaults to the Linux template.
    """

    def __init__(
        self,
        subscription: str,
        resource_group: str,
        tenant: str = "",
        template: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.type = AZURE_PROVIDER_TYPE
        self.subscription = subscription
        self.resource_group = resource_group
        self.tenant = tenant
        self.template = template or LINUX
        self.account: dict[str, Any] | None = None

    def connect(self) -> Self:
        if self.username and self.password:
            LOGGER.info(f"Logging in to Azure as service principal {self.username}")
            login_args = ["login", "--service-principal", "--username", self.username, "--password", self.password]
            if self.tenant:
                login_args.extend(["--tenant", self.tenant])

            run_az_json(login_args)

        LOGGER.info(f"Using Azure subscription {self.subscription}")
        run_az_json(["account", "set", "--subscription", self.subscription])
        self.account = run_az_json(["account", "show"])
        return self

    def disconnect(self) -> None:
        LOGGER.info(f"Disconnecting AzureProvider {self.subscription}")
        self.account = None

    @property
    def test(self) -> bool:
        try:
            return bool(run_az_json(["account", "show"], retries=1))
        except AzureCLIError:
            return False

    def vm(self, vm: AzureVM | dict[str, Any]) -> AzureVM:
        return AzureVM.from_dict(vm) if isinstance(vm, dict) else vm

    def _vm_args(self, vm: AzureVM) -> list[str]:
        return ["--resource-group", self.resource_group, "--name", vm.name]

    def missing_parameters(self, parameters: dict[str, dict[str, Any]]) -> list[str]:
        missing = []
        for name in self.template.get("parameters", {}):
            value = parameters.get(name, {}).get("value")
            if value is None or value == "":
                missing.append(name)

        return missing

    def data_disks(self, parameters: dict[str, dict[str, Any]]) -> list[dict[str, Any]]:
        """
        Data disks the template attaches for these parameters.

        `additional_disk` selects an entry of the template's disk attachment table,
        "false" or unset attaches none and "true" one empty disk of `disk_size` GB.
        """
        selector = str(parameters.get("additional_disk", {}).get("value") or "false").lower()
        attachment = self.template.get("variables", {}).get("diskAttachment", {}).get(selector, {})
        disks = resolve_expression(value=copy.deepcopy(attachment.get("disks", [])), parameters=parameters)
        for disk in disks:
            if str(disk.get("diskSizeGB", "")).isdigit():
                disk["diskSizeGB"] = int(disk["diskSizeGB"])

        return disks

    def provision(self, vm: AzureVM | dict[str, Any]) -> dict[str, Any]:
        """
        Deploy the template with the VM parameters and wait for the deployment to finish.

        Raises:
            MissingTemplateParametersError: When a template parameter has no value.
            AzureDeploymentError: When the deployment does not succeed.
        """
        vm = self.vm(vm)
        parameters = vm.parameters()
        if missing := self.missing_parameters(parameters=parameters):
            raise MissingTemplateParametersError(missing=missing)

        LOGGER.info(
            f"Deploying VM {vm.name} to resource group {self.resource_group} "
            f"with {len(self.data_disks(parameters=parameters))} data disk(s)"
        )
        with tempfile.TemporaryDirectory() as tmp_dir:
            template_file = os.path.join(tmp_dir, "template.json")
            parameters_file = os.path.join(tmp_dir, "parameters.json")
            with open(template_file, "w") as fd:
                json.dump(self.template, fd)

            with open(parameters_file, "w") as fd:
                json.dump(parameters, fd)

            try:
                deployment = run_az_json(
                    [
                        "deployment",
                        "group",
                        "create",
                        "--resource-group",
                        self.resource_group,
                        "--name",
                        vm.deployment,
                        "--template-file",
                        template_file,
                        "--parameters",
                        f"@{parameters_file}",
                    ],
                    timeout=1800,
                    retries=1,
                )
            except AzureCLIError as exp:
                raise AzureDeploymentError(f"Deployment {vm.deployment} failed: {exp}") from exp

        state = ((deployment or {}).get("properties") or {}).get("provisioningState")
        if state != DEPLOYMENT_SUCCEEDED:
            raise AzureDeploymentError(f"Deployment {vm.deployment} finished with state {state}")

        LOGGER.info(f"VM {vm.name} deployed")
        return deployment

    def start_vm(self, vm: AzureVM | dict[str, Any]) -> None:
        vm = self.vm(vm)
        LOGGER.info(f"Starting VM {vm.name}")
        run_az_json(["vm", "start", *self._vm_args(vm=vm)], retries=1)

    def stop_vm(self, vm: AzureVM | dict[str, Any]) -> None:
        # deallocate releases the compute, stop alone keeps it billed
        vm = self.vm(vm)
        LOGGER.info(f"Deallocating VM {vm.name}")
        run_az_json(["vm", "deallocate", *self._vm_args(vm=vm)], retries=1)

    def restart_vm(self, vm: AzureVM | dict[str, Any]) -> None:
        vm = self.vm(vm)
        LOGGER.info(f"Restarting VM {vm.name}")
        run_az_json(["vm", "restart", *self._vm_args(vm=vm)], retries=1)

    def delete_vm(self, vm: AzureVM | dict[str, Any]) -> None:
        """Delete the VM, then the NIC and public IP the template created for it."""
        vm = self.vm(vm)
        LOGGER.info(f"Deleting VM {vm.name}")
        run_az_json(["vm", "delete", *self._vm_args(vm=vm), "--yes"], retries=1)

        if vm.nic:
            LOGGER.info(f"Deleting NIC {vm.nic}")
            run_az_json(
                ["network", "nic", "delete", "--resource-group", self.resource_group, "--name", vm.nic], retries=1
            )

        if vm.public_ip:
            LOGGER.info(f"Deleting public IP {vm.public_ip}")
            run_az_json(
                ["network", "public-ip", "delete", "--resource-group", self.resource_group, "--name", vm.public_ip],
                retries=1,
            )

    def get_power_state(self, vm: AzureVM | dict[str, Any]) -> str:
        """Raw power state code from the instance view, e.g. 'running' or 'deallocated'."""
        instance_view = run_az_json(["vm", "get-instance-view", *self._vm_args(vm=self.vm(vm))]) or {}
        statuses = (instance_view.get("instanceView") or {}).get("statuses") or []
        for status in statuses:
            code = status.get("code") or ""
            if code.startswith(POWER_STATE_PREFIX):
                return code[len(POWER_STATE_PREFIX) :]

        return ""

    def get_state(self, vm: AzureVM | dict[str, Any]) -> str:
        return POWER_STATES.get(self.get_power_state(vm=vm), UNKNOWN_STATE)

    def get_ips(self, vm: AzureVM | dict[str, Any]) -> list[str]:
        """Public addresses first, then private ones."""
        vm = self.vm(vm)
        public_ips: list[str] = []
        private_ips: list[str] = []
        for entry in run_az_json(["vm", "list-ip-addresses", *self._vm_args(vm=vm)]) or []:
            network = (entry.get("virtualMachine") or {}).get("network") or {}
            public_ips.extend(
                _ip["ipAddress"] for _ip in network.get("publicIpAddresses") or [] if _ip.get("ipAddress")
            )
            private_ips.extend(network.get("privateIpAddresses") or [])

        return public_ips + private_ips

    def vm_dict(self, **kwargs: Any) -> dict[str, Any]:
        vm = kwargs.get("vm") or AzureVM(name=kwargs["name"])
        vm = self.vm(vm)
        vm_info = run_az_json(["vm", "show", "--show-details", *self._vm_args(vm=vm)]) or {}

        result_vm_info = copy.deepcopy(self.VIRTUAL_MACHINE_TEMPLATE)
        result_vm_info["provider_type"] = self.type
        result_vm_info["provider_vm_api"] = vm_info
        result_vm_info["name"] = vm_info.get("name", vm.name)
        result_vm_info["id"] = vm_info.get("vmId") or vm_info.get("id", "")

        for nic in (vm_info.get("networkProfile") or {}).get("networkInterfaces") or []:
            nic_id = nic.get("id", "")
            result_vm_info["network_interfaces"].append({
                "name": nic_id.rsplit("/", 1)[-1] or "Unknown",
                "id": nic_id,
            })

        storage_profile = vm_info.get("storageProfile") or {}
        os_disk = storage_profile.get("osDisk")
        for disk in ([os_disk] if os_disk else []) + (storage_profile.get("dataDisks") or []):
            result_vm_info["disks"].append({
                "name": disk.get("name", "Unknown"),
                "size_in_gb": disk.get("diskSizeGb") or disk.get("diskSizeGB"),
                "lun": disk.get("lun"),
                "uri": (disk.get("vhd") or {}).get("uri", ""),
            })

        result_vm_info["cpu"]["vm_size"] = (vm_info.get("hardwareProfile") or {}).get("vmSize", "")
        result_vm_info["ips"] = [
            _ip.strip()
            for _ip in f"{vm_info.get('publicIps') or ''},{vm_info.get('privateIps') or ''}".split(",")
            if _ip.strip()
        ]

        power_state = vm_info.get("powerState") or ""
        if power_state == "VM running":
            result_vm_info["power_state"] = "on"
        elif power_state in ("VM deallocated", "VM stopped"):
            result_vm_info["power_state"] = "off"
        else:
            result_vm_info["power_state"] = "other"

        return result_vm_info
