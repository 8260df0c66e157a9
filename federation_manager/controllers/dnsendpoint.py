"""Publishes DNSEndpoint objects synthesized from service and ingress DNS records."""

import threading
from collections.abc import Callable

from federation_manager.controllers.context import ControllerContext
from federation_manager.dns.endpoints import (
    Resolver,
    SynthesisResult,
    generate_ingress_endpoints,
    generate_service_endpoints,
)
from federation_manager.exceptions import KubernetesError
from federation_manager.informer import ResourceInformer
from federation_manager.logging_config import get_logger
from federation_manager.models.dns import (
    IngressDNSRecord,
    ServiceDNSRecord,
    endpoints_from_object,
    endpoints_to_api,
)
from federation_manager.models.resource import (
    DNS_ENDPOINT,
    INGRESS_DNS_RECORD,
    SERVICE_DNS_RECORD,
    APIResource,
    QualifiedName,
    ReconciliationStatus,
)
from federation_manager.worker import ReconcileWorker

logger = get_logger(__name__)

Synthesizer = Callable[[dict, Resolver], SynthesisResult]


def synthesize_service(obj: dict, resolver: Resolver) -> SynthesisResult:
    return generate_service_endpoints(ServiceDNSRecord.from_object(obj), resolver)


def synthesize_ingress(obj: dict, resolver: Resolver) -> SynthesisResult:
    return generate_ingress_endpoints(IngressDNSRecord.from_object(obj), resolver)


def dns_endpoint_name(kind: str, name: str) -> str:
    """Name of the DNSEndpoint object owned by a record of the given kind."""
    return f"{kind}-{name}"


class DNSEndpointController:
    """Keeps one DNSEndpoint per DNS record in step with the record's status.

    Args:
        context: Shared controller dependencies
        kind: Prefix for the DNSEndpoint names, e.g. ``service``
        record_resource: Record type to watch on the host
        synthesize: Builds endpoints from a record object
    """

    def __init__(
        self,
        context: ControllerContext,
        kind: str,
        record_resource: APIResource,
        synthesize: Synthesizer,
    ):
        self.kind = kind
        self.host_client = context.host_client
        self.resolver = context.resolver
        self.synthesize = synthesize
        self.worker = ReconcileWorker(f"{kind}-dnsendpoint", self.reconcile, context.config.worker)
        self.record_informer = ResourceInformer(
            f"{kind}-dnsendpoint-records",
            context.host_resource_client(record_resource, context.config.target_namespace),
            on_add=self.worker.enqueue_object,
            on_update=lambda old, new: self.worker.enqueue_object(new),
            on_delete=self.worker.enqueue_object,
        )

    def reconcile(self, qualified_name: QualifiedName) -> ReconciliationStatus:
        key = str(qualified_name)
        namespace = qualified_name.namespace
        name = dns_endpoint_name(self.kind, qualified_name.name)
        logger.debug(f"Processing change to {self.kind} DNSEndpoint {key}")

        try:
            record = self.record_informer.store.get(key)
            if record is None:
                if self.host_client.delete_object(DNS_ENDPOINT, namespace, name):
                    logger.info(f"Deleted DNSEndpoint {namespace}/{name}")
                return ReconciliationStatus.ALL_OK

            result = self.synthesize(record, self.resolver)
            for host in result.unresolved:
                logger.warning(f"Could not resolve {host} for {self.kind} record {key}")

            existing = self.host_client.get_object(DNS_ENDPOINT, namespace, name)
            if existing is None:
                self.host_client.create_object(
                    DNS_ENDPOINT,
                    namespace,
                    {
                        "apiVersion": DNS_ENDPOINT.api_version,
                        "kind": DNS_ENDPOINT.kind,
                        "metadata": {"name": name, "namespace": namespace},
                        "spec": {"endpoints": endpoints_to_api(result.endpoints)},
                    },
                )
                logger.info(f"Created DNSEndpoint {namespace}/{name}")
            elif endpoints_from_object(existing) != result.endpoints:
                existing.setdefault("spec", {})["endpoints"] = endpoints_to_api(result.endpoints)
                self.host_client.replace_object(DNS_ENDPOINT, namespace, name, existing)
                logger.info(f"Updated DNSEndpoint {namespace}/{name}")
        except KubernetesError as e:
            logger.error(f"Error processing {self.kind} DNSEndpoint {key}: {e.message}")
            return ReconciliationStatus.ERROR
        if result.unresolved:
            return ReconciliationStatus.NEEDS_RECHECK
        return ReconciliationStatus.ALL_OK

    def run(self, stop_event: threading.Event) -> None:
        logger.info(f"Starting {self.kind} DNSEndpoint controller")
        self.record_informer.start()
        # Deletions are only recognizable against a synced store
        while not self.record_informer.wait_for_sync(timeout=1):
            if stop_event.is_set():
                self.record_informer.stop()
                return
        self.worker.run(stop_event)
        stop_event.wait()
        self.record_informer.stop()
        self.worker.join(timeout=5)
        logger.info(f"Stopped {self.kind} DNSEndpoint controller")


def service_dns_endpoint_controller(context: ControllerContext) -> DNSEndpointController:
    return DNSEndpointController(context, "service", SERVICE_DNS_RECORD, synthesize_service)


def ingress_dns_endpoint_controller(context: ControllerContext) -> DNSEndpointController:
    return DNSEndpointController(context, "ingress", INGRESS_DNS_RECORD, synthesize_ingress)
