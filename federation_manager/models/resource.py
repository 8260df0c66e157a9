"""Resource identities shared by informers, queues and controllers."""

from dataclasses import dataclass
from enum import Enum
from typing import Any


@dataclass(frozen=True)
class QualifiedName:
    """Namespace and name of a resource, used as a queue and store key."""

    namespace: str
    name: str

    def __str__(self) -> str:
        if not self.namespace:
            return self.name
        return f"{self.namespace}/{self.name}"

    @classmethod
    def from_object(cls, obj: dict[str, Any]) -> "QualifiedName":
        metadata = obj.get("metadata") or {}
        return cls(namespace=metadata.get("namespace") or "", name=metadata.get("name", ""))


def object_key(obj: dict[str, Any]) -> str:
    """Store key of an unstructured object."""
    return str(QualifiedName.from_object(obj))


class ReconciliationStatus(Enum):
    """Outcome of a single reconcile pass."""

    ALL_OK = "AllOk"
    ERROR = "Error"
    NOT_SYNCED = "NotSynced"
    NEEDS_RECHECK = "NeedsRecheck"


@dataclass(frozen=True)
class APIResource:
    """Identifies a resource type served by a cluster."""

    group: str
    version: str
    kind: str
    plural: str
    namespaced: bool = True

    @property
    def api_version(self) -> str:
        if not self.group:
            return self.version
        return f"{self.group}/{self.version}"


KUBEFED_GROUP = "core.kubefed.io"
MULTICLUSTER_DNS_GROUP = "multiclusterdns.kubefed.io"

KUBEFED_CLUSTER = APIResource(KUBEFED_GROUP, "v1beta1", "KubeFedCluster", "kubefedclusters")
SERVICE_DNS_RECORD = APIResource(
    MULTICLUSTER_DNS_GROUP, "v1alpha1", "ServiceDNSRecord", "servicednsrecords"
)
INGRESS_DNS_RECORD = APIResource(
    MULTICLUSTER_DNS_GROUP, "v1alpha1", "IngressDNSRecord", "ingressdnsrecords"
)
DNS_ENDPOINT = APIResource(MULTICLUSTER_DNS_GROUP, "v1alpha1", "DNSEndpoint", "dnsendpoints")
DOMAIN = APIResource(MULTICLUSTER_DNS_GROUP, "v1alpha1", "Domain", "domains")
FEDERATED_TYPE_CONFIG = APIResource(
    KUBEFED_GROUP, "v1beta1", "FederatedTypeConfig", "federatedtypeconfigs"
)

SERVICE = APIResource("", "v1", "Service", "services")
ENDPOINTS = APIResource("", "v1", "Endpoints", "endpoints")
INGRESS = APIResource("networking.k8s.io", "v1", "Ingress", "ingresses")
