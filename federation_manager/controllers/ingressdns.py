"""Aggregates member cluster ingress load balancers into IngressDNSRecord status."""

from federation_manager.controllers.base import FederatedRecordController
from federation_manager.controllers.context import ControllerContext
from federation_manager.controllers.servicedns import load_balancer_from_object
from federation_manager.exceptions import KubernetesError
from federation_manager.logging_config import get_logger
from federation_manager.models.dns import ClusterDNS, IngressDNSRecord, IngressDNSRecordStatus
from federation_manager.models.resource import (
    INGRESS,
    INGRESS_DNS_RECORD,
    QualifiedName,
    ReconciliationStatus,
)

logger = get_logger(__name__)


class IngressDNSController(FederatedRecordController):
    name = "ingress-dns"
    record_resource = INGRESS_DNS_RECORD

    def __init__(self, context: ControllerContext):
        super().__init__(context)
        self.ingress_informer = self._federated_informer(INGRESS, lifecycle=True)

    def reconcile(self, qualified_name: QualifiedName) -> ReconciliationStatus:
        if not self.is_synced():
            return ReconciliationStatus.NOT_SYNCED

        key = str(qualified_name)
        cached = self.record_informer.store.get(key)
        if cached is None:
            return ReconciliationStatus.ALL_OK
        record = IngressDNSRecord.from_object(cached)

        store = self.ingress_informer.get_target_store()
        entries = []
        for cluster in self.ingress_informer.get_ready_clusters():
            ingress, found = store.get_by_key(cluster.name, key)
            if not found:
                continue
            entries.append(ClusterDNS(cluster=cluster.name, load_balancer=load_balancer_from_object(ingress)))
        status = IngressDNSRecordStatus(dns=sorted(entries, key=lambda e: e.cluster))

        if status != record.status:
            try:
                self.host_client.patch_object_status(
                    INGRESS_DNS_RECORD, record.namespace, record.name, status.to_api()
                )
            except KubernetesError as e:
                logger.error(f"Error updating IngressDNSRecord {key}: {e.message}")
                return ReconciliationStatus.ERROR
        return ReconciliationStatus.ALL_OK
