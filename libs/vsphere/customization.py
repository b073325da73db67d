from __future__ import annotations

import dataclasses
import threading

from simple_logger.logger import get_logger

from libs.vsphere.backend import VSphereBackend
from libs.vsphere.models import CustomizationSpec, VMInfo, VSphereVM

LOGGER = get_logger(__name__)

STATIC_IP_CUSTOM_SPEC_NAME = "static-ip-spec"


def update_custom_spec(vm: VSphereVM, template: VMInfo, spec: CustomizationSpec) -> CustomizationSpec | None:
    """
    Patch a copy of `spec` with the static IP settings of `vm`.

    The requested DNS server is added in front of the DNS servers the template guest reports.

    Returns:
        CustomizationSpec | None: None when no IP or subnet mask is requested.
    """
    setting = vm.network_setting
    if not setting.ip or not setting.subnet_mask:
        return None

    dns_servers = list(spec.dns_servers)
    if setting.dns_server:
        dns_servers.extend([setting.dns_server, *template.guest_dns_servers])

    return dataclasses.replace(
        spec,
        ip=setting.ip,
        subnet_mask=setting.subnet_mask,
        gateways=[*spec.gateways, setting.gateway] if setting.gateway else list(spec.gateways),
        dns_servers=dns_servers,
    )


class CustomizationSpecCache:
    """
    Owner of the shared static IP customization spec.

    The lock only covers check and create plus reading a private copy, never the clone submission.
    Pass one instance to every provider that shares a backend to keep creation exclusive across them.
    """

    def __init__(self, name: str = STATIC_IP_CUSTOM_SPEC_NAME) -> None:
        self.name = name
        self._lock = threading.Lock()

    def ensure_exists(self, backend: VSphereBackend) -> None:
        if not backend.customization_spec_exists(name=self.name):
            LOGGER.info(f"Creating customization spec {self.name}")
            backend.create_customization_spec(name=self.name)

    def customization_for(self, backend: VSphereBackend, vm: VSphereVM, template: VMInfo) -> CustomizationSpec | None:
        with self._lock:
            self.ensure_exists(backend=backend)
            spec = backend.get_customization_spec(name=self.name)
            return update_custom_spec(vm=vm, template=template, spec=spec)
