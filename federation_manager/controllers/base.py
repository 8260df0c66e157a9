"""Shared plumbing for controllers that aggregate member state into a host record."""

import threading
import time

from federation_manager import metrics
from federation_manager.controllers.context import ControllerContext
from federation_manager.delivery import DelayingDeliverer, DelayingDelivererItem
from federation_manager.informer import ClusterLifecycleHandlers, FederatedInformer, ResourceInformer
from federation_manager.logging_config import get_logger
from federation_manager.models.cluster import ClusterMembership
from federation_manager.models.resource import APIResource, QualifiedName, ReconciliationStatus
from federation_manager.worker import ReconcileWorker

logger = get_logger(__name__)

ALL_CLUSTERS_KEY = "ALL_CLUSTERS"


class FederatedRecordController:
    """Reconciles host records from objects observed in every ready member cluster.

    Subclasses name the record resource, create their federated informers
    with ``_federated_informer`` and implement ``reconcile``. A member
    cluster joining or leaving schedules a sweep over all records after
    ``cluster_available_delay`` or ``cluster_unavailable_delay``.
    """

    name = "record"
    record_resource: APIResource

    def __init__(self, context: ControllerContext):
        self.context = context
        self.config = context.config
        self.host_client = context.host_client
        self.worker = ReconcileWorker(self.name, self._timed_reconcile, self.config.worker)
        self.cluster_deliverer = DelayingDeliverer(f"{self.name}-clusters")
        self.record_informer = ResourceInformer(
            f"{self.name}-records",
            context.host_resource_client(self.record_resource, self.config.target_namespace),
            on_add=self.worker.enqueue_object,
            on_update=lambda old, new: self.worker.enqueue_object(new),
            on_delete=self.worker.enqueue_object,
        )
        self.federated_informers: list[FederatedInformer] = []

    def _federated_informer(self, resource: APIResource, lifecycle: bool = False) -> FederatedInformer:
        handlers = None
        if lifecycle:
            handlers = ClusterLifecycleHandlers(
                cluster_available=self._cluster_available,
                cluster_unavailable=self._cluster_unavailable,
            )
        informer = FederatedInformer(
            f"{self.name}-{resource.plural}",
            self.context.membership_client(),
            self.context.member_client_factory(resource, self.config.target_namespace),
            trigger=self.worker.enqueue_object,
            handlers=handlers,
        )
        self.federated_informers.append(informer)
        return informer

    def _cluster_available(self, cluster: ClusterMembership) -> None:
        self.cluster_deliverer.deliver_after(ALL_CLUSTERS_KEY, None, self.config.cluster_available_delay)

    def _cluster_unavailable(self, cluster: ClusterMembership, last_known_objects: list[dict]) -> None:
        self.cluster_deliverer.deliver_after(ALL_CLUSTERS_KEY, None, self.config.cluster_unavailable_delay)

    def is_synced(self) -> bool:
        """True once records and every ready cluster's objects have been listed."""
        if not self.record_informer.has_synced():
            return False
        for informer in self.federated_informers:
            if not informer.clusters_synced():
                return False
            ready = informer.get_ready_clusters()
            if not informer.get_target_store().clusters_synced(ready):
                return False
        return True

    def reconcile_on_cluster_change(self, item: DelayingDelivererItem | None = None) -> None:
        """Requeue every record, retrying the sweep later if caches are not synced."""
        if not self.is_synced():
            self.cluster_deliverer.deliver_after(ALL_CLUSTERS_KEY, None, self.config.cluster_available_delay)
        for obj in self.record_informer.store.values():
            self.worker.enqueue_with_delay(QualifiedName.from_object(obj), self.config.small_delay)

    def _timed_reconcile(self, qualified_name: QualifiedName) -> ReconciliationStatus:
        start = time.monotonic()
        try:
            return self.reconcile(qualified_name)
        finally:
            metrics.update_duration_from_start(metrics.RECONCILE_FEDERATED_RESOURCES, start)

    def reconcile(self, qualified_name: QualifiedName) -> ReconciliationStatus:
        raise NotImplementedError

    def start(self, stop_event: threading.Event) -> None:
        logger.info(f"Starting {self.name} controller")
        self.record_informer.start()
        for informer in self.federated_informers:
            informer.start()
        self.cluster_deliverer.start_with_handler(self.reconcile_on_cluster_change)
        self.worker.run(stop_event)

    def stop(self) -> None:
        logger.info(f"Stopping {self.name} controller")
        self.cluster_deliverer.stop()
        for informer in self.federated_informers:
            informer.stop()
        self.record_informer.stop()

    def run(self, stop_event: threading.Event) -> None:
        """Run until ``stop_event`` is set."""
        self.start(stop_event)
        stop_event.wait()
        self.stop()
        self.worker.join(timeout=5)
