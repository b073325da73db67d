from __future__ import annotations

from typing import Any

import pytest
from fakes.fake_vsphere import FakeVSphereBackend, default_inventory
from pytest_testconfig import config as py_config

from libs.azure.models import AzureVM
from libs.providers.azure import AzureProvider
from libs.providers.vmware import VMWareProvider
from libs.vsphere.customization import CustomizationSpecCache
from libs.vsphere.models import Destination, DestinationType, Network, Template, VSphereVM
from utilities.naming import generate_name_with_uuid


@pytest.fixture(scope="session")
def session_uuid():
    return generate_name_with_uuid(name="auto")


@pytest.fixture(scope="session")
def vsphere_provider_data() -> dict[str, Any]:
    return py_config["vsphere_provider"]


@pytest.fixture(scope="session")
def azure_provider_data() -> dict[str, Any]:
    return py_config["azure_provider"]


@pytest.fixture()
def fake_vsphere() -> FakeVSphereBackend:
    return default_inventory()


@pytest.fixture()
def customization_cache() -> CustomizationSpecCache:
    return CustomizationSpecCache()


@pytest.fixture()
def vmware_provider(vsphere_provider_data, fake_vsphere, customization_cache):
    with VMWareProvider(
        host=vsphere_provider_data["host"],
        username=vsphere_provider_data["username"],
        password=vsphere_provider_data["password"],
        datacenter=vsphere_provider_data["datacenter"],
        backend=fake_vsphere,
        customization_cache=customization_cache,
    ) as provider:
        yield provider


@pytest.fixture()
def vsphere_vm(session_uuid, vsphere_provider_data) -> VSphereVM:
    return VSphereVM(
        name=f"{session_uuid}-vm",
        datacenter=vsphere_provider_data["datacenter"],
        host=vsphere_provider_data["host"],
        template=Template(name=py_config["vsphere_template"]),
        networks=[Network(name="VM Network")],
        destination=Destination(name="cluster1", type=DestinationType.CLUSTER),
        datastores=["ds1"],
    )


@pytest.fixture()
def azure_provider(azure_provider_data):
    return AzureProvider(
        subscription=azure_provider_data["subscription"],
        resource_group=azure_provider_data["resource_group"],
    )


@pytest.fixture()
def azure_vm(session_uuid) -> AzureVM:
    return AzureVM.from_dict({"name": f"{session_uuid}-vm", **py_config["azure_vm"]})
