"""Aggregates member cluster service load balancers into ServiceDNSRecord status."""

from federation_manager.controllers.base import FederatedRecordController
from federation_manager.controllers.context import ControllerContext
from federation_manager.exceptions import KubernetesError
from federation_manager.logging_config import get_logger
from federation_manager.models.cluster import ClusterMembership
from federation_manager.models.dns import (
    ClusterDNS,
    LoadBalancerStatus,
    ServiceDNSRecord,
    ServiceDNSRecordStatus,
)
from federation_manager.models.resource import (
    DOMAIN,
    ENDPOINTS,
    SERVICE,
    SERVICE_DNS_RECORD,
    QualifiedName,
    ReconciliationStatus,
)

logger = get_logger(__name__)


def load_balancer_from_object(obj: dict | None) -> LoadBalancerStatus:
    """Read ``status.loadBalancer`` of a service or ingress, sorted by IP then hostname."""
    if not obj:
        return LoadBalancerStatus()
    raw = ((obj.get("status") or {}).get("loadBalancer")) or {}
    return LoadBalancerStatus.model_validate(raw).sorted()


def has_ready_addresses(endpoints: dict | None) -> bool:
    """Whether an Endpoints object lists at least one ready address."""
    if not endpoints:
        return False
    return any(subset.get("addresses") for subset in endpoints.get("subsets") or [])


def merge_cluster_dns(
    ready_entries: list[ClusterDNS],
    previous: list[ClusterDNS],
    unready_clusters: list[ClusterMembership],
) -> list[ClusterDNS]:
    """Combine fresh entries for ready clusters with entries kept for unready ones.

    An unready cluster keeps its previously recorded entry with the load
    balancer cleared, so its zone and region names fall back by CNAME to
    shards in healthy clusters. Unready clusters never recorded before get
    no entry.
    """
    entries = list(ready_entries)
    unready = {cluster.name for cluster in unready_clusters}
    for entry in previous:
        if entry.cluster in unready:
            logger.debug(f"Cluster {entry.cluster} is offline, preserving its DNS entry without targets")
            entries.append(entry.model_copy(update={"load_balancer": LoadBalancerStatus()}))
    return sorted(entries, key=lambda e: e.cluster)


class ServiceDNSController(FederatedRecordController):
    """Keeps each ServiceDNSRecord's per-cluster DNS status current.

    A cluster contributes its service's load balancer only while that
    service is backed by at least one ready endpoint address.
    """

    name = "service-dns"
    record_resource = SERVICE_DNS_RECORD

    def __init__(self, context: ControllerContext):
        super().__init__(context)
        self.service_informer = self._federated_informer(SERVICE, lifecycle=True)
        self.endpoints_informer = self._federated_informer(ENDPOINTS)

    def _domain(self, record: ServiceDNSRecord) -> str:
        domain = self.host_client.get_object(DOMAIN, self.config.federation_namespace, record.domain_ref)
        if domain is None:
            raise KubernetesError(
                f"Domain {record.domain_ref} referenced by {record.namespace}/{record.name} not found"
            )
        return domain.get("domain", "")

    def _cluster_dns(self, cluster: ClusterMembership, key: str) -> ClusterDNS:
        status = cluster.status
        entry = ClusterDNS(
            cluster=cluster.name,
            zones=list(status.zones) if status else [],
            region=(status.region or "") if status else "",
        )
        endpoints, _ = self.endpoints_informer.get_target_store().get_by_key(cluster.name, key)
        if has_ready_addresses(endpoints):
            service, _ = self.service_informer.get_target_store().get_by_key(cluster.name, key)
            entry.load_balancer = load_balancer_from_object(service)
        return entry

    def reconcile(self, qualified_name: QualifiedName) -> ReconciliationStatus:
        if not self.is_synced():
            return ReconciliationStatus.NOT_SYNCED

        key = str(qualified_name)
        cached = self.record_informer.store.get(key)
        if cached is None:
            return ReconciliationStatus.ALL_OK
        record = ServiceDNSRecord.from_object(cached)

        try:
            domain = self._domain(record)
        except KubernetesError as e:
            logger.error(f"Failed to get domain for ServiceDNSRecord {key}: {e.message}")
            return ReconciliationStatus.ERROR

        ready_entries = [
            self._cluster_dns(cluster, key) for cluster in self.service_informer.get_ready_clusters()
        ]
        entries = merge_cluster_dns(
            ready_entries, record.status.dns, self.service_informer.get_unready_clusters()
        )
        status = ServiceDNSRecordStatus(domain=domain, dns=entries)

        if status != record.status:
            try:
                self.host_client.patch_object_status(
                    SERVICE_DNS_RECORD, record.namespace, record.name, status.to_api()
                )
            except KubernetesError as e:
                logger.error(f"Error updating ServiceDNSRecord {key}: {e.message}")
                return ReconciliationStatus.ERROR
            logger.info(f"Updated DNS status of ServiceDNSRecord {key} ({len(entries)} cluster(s))")
        return ReconciliationStatus.ALL_OK
