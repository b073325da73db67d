from __future__ import annotations

import abc
from typing import Any


class BaseProvider(abc.ABC):
    # Unified Representation of a VM of All Provider Types
    VIRTUAL_MACHINE_TEMPLATE: dict[str, Any] = {
        "id": "",
        "name": "",
        "provider_type": "",  # "vsphere" / "azure"
        "provider_vm_api": None,
        "network_interfaces": [],
        "disks": [],
        "cpu": {},
        "memory_in_mb": 0,
        "ips": [],
        "power_state": "",
    }

    def __init__(
        self,
        username: str | None = None,
        password: str | None = None,
        host: str | None = None,
    ) -> None:
        self.type = ""
        self.username = username
        self.password = password
        self.host = host
        self.api: Any = None

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.disconnect()

    @abc.abstractmethod
    def connect(self) -> Any:
        pass

    @abc.abstractmethod
    def disconnect(self) -> Any:
        pass

    @property
    @abc.abstractmethod
    def test(self) -> bool:
        pass

    @abc.abstractmethod
    def vm_dict(self, **kwargs: Any) -> dict[str, Any]:
        """
        Create a dict for a single vm holding the Network Interface details, Disks, power state and IPs.
        """
        pass

    @abc.abstractmethod
    def provision(self, vm: Any) -> None:
        pass

    @abc.abstractmethod
    def start_vm(self, vm: Any) -> None:
        pass

    @abc.abstractmethod
    def stop_vm(self, vm: Any) -> None:
        pass

    @abc.abstractmethod
    def delete_vm(self, vm: Any) -> None:
        pass

    @abc.abstractmethod
    def get_state(self, vm: Any) -> str:
        pass

    @abc.abstractmethod
    def get_ips(self, vm: Any) -> list[str]:
        pass

    def shutdown_vm(self, vm: Any) -> None:
        raise NotImplementedError(f"{self.type} provider does not support guest shutdown")

    def restart_vm(self, vm: Any) -> None:
        raise NotImplementedError(f"{self.type} provider does not support restart")

    def reset_vm(self, vm: Any) -> None:
        raise NotImplementedError(f"{self.type} provider does not support reset")

    def suspend_vm(self, vm: Any) -> None:
        raise NotImplementedError(f"{self.type} provider does not support suspend")

    def resume_vm(self, vm: Any) -> None:
        raise NotImplementedError(f"{self.type} provider does not support resume")
