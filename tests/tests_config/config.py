from typing import Any

global config

vsphere_provider: dict[str, Any] = {
    "host": "vcenter.lab.example.com",
    "username": "administrator@vsphere.local",
    "password": "<REDACTED>",
    "datacenter": "dc1",
}

vsphere_template: str = "templates/rhel-template"

azure_provider: dict[str, Any] = {
    "subscription": "00000000-0000-0000-0000-000000000000",
    "resource_group": "rg-vm-lifecycle",
}

azure_vm: dict[str, Any] = {
    "username": "cloud-user",
    "password": "<REDACTED>",
    "ssh_authorized_key": "ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIBx7 cloud-user@example",
    "image_publisher": "RedHat",
    "image_offer": "RHEL",
    "image_sku": "9-lvm-gen2",
    "vm_size": "Standard_D2s_v3",
    "network_security_group": "nsg-lifecycle",
    "nic": "nic-lifecycle",
    "public_ip": "pip-lifecycle",
    "subnet": "default",
    "virtual_network": "vnet-lifecycle",
    "storage_account": "lifecyclestorage",
    "storage_container": "vhds",
    "disk_size": 20,
}

for _dir in dir():
    val = locals()[_dir]
    if type(val) not in [bool, list, dict, str, int]:
        continue

    if _dir in ["encoding", "py_file"]:
        continue

    config[_dir] = locals()[_dir]  # type: ignore # noqa: F821
