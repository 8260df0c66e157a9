"""Dependencies shared by the federation controllers."""

from collections.abc import Callable
from dataclasses import dataclass, field

from federation_manager.client import DynamicResourceClient, HostClient
from federation_manager.clusterclient import build_cluster_client
from federation_manager.config import ControllerConfig
from federation_manager.dns.endpoints import Resolver, SocketResolver
from federation_manager.informer import ClientFactory, ResourceClient
from federation_manager.models.cluster import ClusterMembership
from federation_manager.models.resource import KUBEFED_CLUSTER, APIResource

HostResourceClients = Callable[[APIResource, str], ResourceClient]
MemberClientFactories = Callable[[APIResource, str], ClientFactory]


@dataclass
class ControllerContext:
    """Everything a controller needs to talk to the host and member clusters.

    ``host_resource_client(resource, namespace)`` returns a list/watch client
    on the host. ``member_client_factory(resource, namespace)`` returns a
    function that connects such a client to a given member cluster.
    """

    host_client: HostClient
    config: ControllerConfig
    host_resource_client: HostResourceClients
    member_client_factory: MemberClientFactories
    resolver: Resolver = field(default_factory=SocketResolver)

    def membership_client(self) -> ResourceClient:
        """List/watch client for the member cluster objects."""
        return self.host_resource_client(KUBEFED_CLUSTER, self.config.federation_namespace)

    @classmethod
    def for_host(cls, host_client: HostClient, config: ControllerConfig) -> "ControllerContext":
        """Wire a context whose clients all go through the real API."""

        def member_client_factory(resource: APIResource, namespace: str) -> ClientFactory:
            def connect(membership: ClusterMembership) -> ResourceClient:
                cluster_client = build_cluster_client(
                    membership,
                    host_client,
                    config.federation_namespace,
                    config.health_check.timeout,
                )
                return DynamicResourceClient(cluster_client.api_client, resource, namespace)

            return connect

        return cls(
            host_client=host_client,
            config=config,
            host_resource_client=host_client.resource_client,
            member_client_factory=member_client_factory,
        )
