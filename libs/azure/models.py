from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class AzureVM:
    """
    Caller owned configuration of a VM deployed from an ARM template.

    Every template parameter is rendered, the template defines no defaults.
    `os_file` and `disk_file` default to blob names derived from the VM name.
    """

    name: str
    username: str = ""
    password: str = ""
    ssh_authorized_key: str = ""
    image_publisher: str = ""
    image_offer: str = ""
    image_sku: str = ""
    vm_size: str = ""
    network_security_group: str = ""
    nic: str = ""
    public_ip: str = ""
    subnet: str = ""
    virtual_network: str = ""
    storage_account: str = ""
    storage_container: str = ""
    os_file: str = ""
    disk_file: str = ""
    disk_size: int = 0
    additional_disk: bool = False
    deployment_name: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AzureVM:
        return cls(**data)

    @property
    def deployment(self) -> str:
        return self.deployment_name or f"{self.name}-deployment"

    def parameters(self) -> dict[str, dict[str, str]]:
        """ARM parameters document body, every value wrapped as {"value": ...}."""
        values = {
            "username": self.username,
            "password": self.password,
            "ssh_authorized_key": self.ssh_authorized_key,
            "image_publisher": self.image_publisher,
            "image_offer": self.image_offer,
            "image_sku": self.image_sku,
            "vm_size": self.vm_size,
            "vm_name": self.name,
            "network_security_group": self.network_security_group,
            "nic": self.nic,
            "public_ip": self.public_ip,
            "subnet": self.subnet,
            "virtual_network": self.virtual_network,
            "storage_account": self.storage_account,
            "storage_container": self.storage_container,
            "os_file": self.os_file or f"{self.name}-os.vhd",
            "disk_file": self.disk_file or f"{self.name}-data.vhd",
            "disk_size": str(self.disk_size),
            "additional_disk": "true" if self.additional_disk else "false",
        }
        return {name: {"value": value} for name, value in values.items()}
