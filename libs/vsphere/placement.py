from __future__ import annotations

from simple_logger.logger import get_logger

from exceptions.exceptions import (
    DestinationNotSupportedError,
    InvalidHostError,
    NoHostsInClusterError,
    NoResourcePoolError,
    NoSuitableHostError,
    ObjectDeletedError,
    ObjectNotFoundError,
)
from libs.vsphere.backend import VSphereBackend
from libs.vsphere.inventory import InventoryResolver
from libs.vsphere.models import (
    ComputeResourceInfo,
    DatacenterInfo,
    DatastoreInfo,
    DestinationType,
    Location,
    ManagedObjectRef,
    Network,
    NetworkInfo,
    ResourcePoolInfo,
    VSphereVM,
)
from utilities.utils import choose_random

LOGGER = get_logger(__name__)

RESOURCE_POOL_DEPTH = 8
SUPPORTED_NETWORK_TYPES = ("Network", "DistributedVirtualPortgroup")


class PlacementSelector:
    """Resolves a destination (host, cluster or resource pool) into a concrete Location."""

    def __init__(self, backend: VSphereBackend, inventory: InventoryResolver) -> None:
        self.backend = backend
        self.inventory = inventory

    def network_infos(self, refs: list[ManagedObjectRef]) -> dict[str, NetworkInfo]:
        """Map network name to network for standard and distributed port group networks."""
        networks = {}
        for ref in refs:
            if ref.type not in SUPPORTED_NETWORK_TYPES:
                raise ValueError(f"Could not retrieve the network name for: {ref.value}")

            network = self.backend.get_network(ref=ref)
            if not network.name:
                raise ValueError(f"Network name empty for: {ref.value}")

            networks[network.name] = network

        return networks

    def network_mapping(self, networks: list[Network], refs: list[ManagedObjectRef]) -> dict[str, NetworkInfo]:
        """
        Resolve every requested network name against the available networks.

        Raises:
            ObjectNotFoundError: When a requested network is not available.
        """
        available = self.network_infos(refs=refs)
        mapping = {}
        for network in networks:
            if network.name not in available:
                raise ObjectNotFoundError(name=network.name, reason="Could not find the network mapping")

            mapping[network.name] = available[network.name]

        return mapping

    def validate_host(self, vm: VSphereVM, host_ref: ManagedObjectRef) -> bool:
        """
        A host is valid when it has every requested network and, once a datastore was chosen, that datastore.
        """
        host = self.backend.get_host(ref=host_ref)
        host_networks = self.network_infos(refs=host.networks)
        if any(network.name not in host_networks for network in vm.networks):
            LOGGER.debug(f"Host {host.name} is missing one of the networks {[nw.name for nw in vm.networks]}")
            return False

        if not vm.datastore:
            return True

        return any(self.backend.get_datastore(ref=ref).name == vm.datastore for ref in host.datastores)

    def filter_hosts(self, vm: VSphereVM, hosts: list[ManagedObjectRef]) -> list[ManagedObjectRef]:
        return [host for host in hosts if self.validate_host(vm=vm, host_ref=host)]

    def resolve_location(self, vm: VSphereVM, datacenter: DatacenterInfo) -> Location:
        destination_type = vm.destination.type
        if destination_type == DestinationType.HOST:
            return self._host_location(vm=vm, datacenter=datacenter)

        if destination_type == DestinationType.CLUSTER:
            return self._cluster_location(vm=vm, datacenter=datacenter)

        if destination_type == DestinationType.RESOURCE_POOL:
            return self._resource_pool_location(vm=vm, datacenter=datacenter)

        raise DestinationNotSupportedError(destination_type=str(destination_type))

    def _host_location(self, vm: VSphereVM, datacenter: DatacenterInfo) -> Location:
        compute_resource = self.inventory.find_compute_resource(datacenter=datacenter, name=vm.destination.name)
        if not compute_resource.hosts:
            raise NoHostsInClusterError(f"No hosts found in {compute_resource.name}")

        host = compute_resource.hosts[0]
        if not self.validate_host(vm=vm, host_ref=host):
            raise InvalidHostError(
                host=vm.destination.name, datastore=vm.datastore, networks=[nw.name for nw in vm.networks]
            )

        if not compute_resource.resource_pool:
            raise NoResourcePoolError("No valid resource pool found on the host")

        return Location(host=host, resource_pool=compute_resource.resource_pool, networks=compute_resource.networks)

    def _cluster_location(self, vm: VSphereVM, datacenter: DatacenterInfo) -> Location:
        cluster = self.inventory.find_compute_resource(datacenter=datacenter, name=vm.destination.name)
        if not cluster.hosts:
            raise NoHostsInClusterError(f"No hosts found in cluster {cluster.name}")

        if vm.destination.host_system:
            host = self.inventory.find_host_system(hosts=cluster.hosts, name=vm.destination.host_system).ref
            if not self.validate_host(vm=vm, host_ref=host):
                raise InvalidHostError(
                    host=vm.destination.host_system, datastore=vm.datastore, networks=[nw.name for nw in vm.networks]
                )
        else:
            host = choose_random(self.filter_hosts(vm=vm, hosts=cluster.hosts))
            if not host:
                raise NoSuitableHostError(f"No suitable hosts found in the cluster {cluster.name}")

        if not cluster.resource_pool:
            raise NoResourcePoolError("No valid resource pool found on the host")

        LOGGER.info(f"Selected host {host} in cluster {cluster.name}")
        return Location(host=host, resource_pool=cluster.resource_pool, networks=cluster.networks)

    def _resource_pool_location(self, vm: VSphereVM, datacenter: DatacenterInfo) -> Location:
        resource_pool = self.find_resource_pool_by_moid(datacenter=datacenter, moid=vm.destination.moid)
        if not resource_pool.owner:
            raise NoResourcePoolError(f"Resource pool {resource_pool.name} has no owner")

        owner = self.backend.get_compute_resource(ref=resource_pool.owner)
        return Location(resource_pool=resource_pool.ref, networks=owner.networks)

    def find_resource_pool_by_moid(self, datacenter: DatacenterInfo, moid: str) -> ResourcePoolInfo:
        """
        Search the pools below every compute resource root pool ("*/Resources/*"), level by level,
        down to RESOURCE_POOL_DEPTH levels.
        """
        level = []
        for compute_resource in self.inventory.compute_resources(datacenter=datacenter):
            if compute_resource.resource_pool:
                level.extend(self.backend.get_resource_pool(ref=compute_resource.resource_pool).resource_pools)

        for _ in range(RESOURCE_POOL_DEPTH):
            next_level = []
            for ref in level:
                try:
                    resource_pool = self.backend.get_resource_pool(ref=ref)
                except ObjectDeletedError:
                    continue

                if resource_pool.ref.value == moid:
                    return resource_pool

                next_level.extend(resource_pool.resource_pools)

            if not next_level:
                break

            level = next_level

        raise ObjectNotFoundError(name=moid, reason="could not find the resourcepool with moref id")

    def is_cluster_drs_enabled(self, vm: VSphereVM, datacenter: DatacenterInfo) -> bool:
        cluster = self.inventory.find_compute_resource(datacenter=datacenter, name=vm.destination.name)
        if cluster.drs_enabled is None:
            raise ValueError(f"error fetching cluster config details for {cluster.name}")

        return cluster.drs_enabled

    def shared_datastores_in_cluster(self, cluster: ComputeResourceInfo) -> list[DatastoreInfo]:
        """Datastores attached to every host of the cluster."""
        if not cluster.hosts:
            return []

        hosts = [self.backend.get_host(ref=ref) for ref in cluster.hosts]
        shared = set(hosts[0].datastores)
        for host in hosts[1:]:
            shared &= set(host.datastores)

        return [self.backend.get_datastore(ref=ref) for ref in hosts[0].datastores if ref in shared]

    def datastores_in_host(self, vm: VSphereVM, cluster: ComputeResourceInfo) -> list[DatastoreInfo]:
        for ref in cluster.hosts:
            host = self.backend.get_host(ref=ref)
            if host.name == vm.destination.host_system:
                return [self.backend.get_datastore(ref=datastore) for datastore in host.datastores]

        raise ObjectNotFoundError(
            name=vm.destination.host_system, reason=f"host not found in cluster {cluster.name}"
        )
