"""Tests for the IngressDNSRecord status controller."""

from unittest.mock import Mock

from federation_manager.config import ControllerConfig
from federation_manager.controllers.context import ControllerContext
from federation_manager.controllers.ingressdns import IngressDNSController
from federation_manager.models.dns import IngressDNSRecordStatus
from federation_manager.models.resource import INGRESS_DNS_RECORD, QualifiedName, ReconciliationStatus

SHOP = QualifiedName("default", "shop")


def ingress(ip):
    return {
        "metadata": {"name": "shop", "namespace": "default"},
        "status": {"loadBalancer": {"ingress": [{"ip": ip}]}},
    }


def test_status_lists_ready_clusters_serving_the_ingress(federation_clients, make_cluster, wait_for):
    federation_clients.memberships = [
        make_cluster("c2"),
        make_cluster("c1"),
        make_cluster("c3"),
        make_cluster("c4", ready=False),
    ]
    federation_clients.member_objects = {
        "c1": {"Ingress": [ingress("10.0.0.1")]},
        "c2": {"Ingress": [ingress("10.0.0.2")]},
        "c4": {"Ingress": [ingress("10.0.0.4")]},
    }
    federation_clients.host_objects["IngressDNSRecord"] = [
        {
            "metadata": {"name": "shop", "namespace": "default"},
            "spec": {"hosts": ["shop.example.com"]},
        }
    ]
    host_client = Mock()
    context = ControllerContext(
        host_client=host_client,
        config=ControllerConfig().apply_minimized_latency(),
        host_resource_client=federation_clients.host_resource_client,
        member_client_factory=federation_clients.member_client_factory,
    )
    controller = IngressDNSController(context)
    controller.record_informer.start()
    controller.ingress_informer.start()
    try:
        assert wait_for(controller.is_synced)

        assert controller.reconcile(SHOP) == ReconciliationStatus.ALL_OK
        assert controller.reconcile(QualifiedName("default", "missing")) == ReconciliationStatus.ALL_OK
    finally:
        controller.ingress_informer.stop()
        controller.record_informer.stop()

    host_client.patch_object_status.assert_called_once()
    resource, namespace, name, patched = host_client.patch_object_status.call_args.args
    assert (resource, namespace, name) == (INGRESS_DNS_RECORD, "default", "shop")
    status = IngressDNSRecordStatus.model_validate(patched)
    assert [entry.cluster for entry in status.dns] == ["c1", "c2"]
    assert [entry.load_balancer.ingress[0].ip for entry in status.dns] == ["10.0.0.1", "10.0.0.2"]
