"""Starts and stops every federation controller together."""

import functools
import threading

from federation_manager.clusterclient import build_cluster_client
from federation_manager.controllers.context import ControllerContext
from federation_manager.controllers.dnsendpoint import (
    ingress_dns_endpoint_controller,
    service_dns_endpoint_controller,
)
from federation_manager.controllers.ingressdns import IngressDNSController
from federation_manager.controllers.servicedns import ServiceDNSController
from federation_manager.controllers.typeconfig import FederatedTypeConfigController
from federation_manager.health import ClusterHealthMonitor
from federation_manager.logging_config import get_logger

logger = get_logger(__name__)


class ControllerManager:
    """Owns the health monitor, the DNS controllers and the type config controller.

    The type config controller starts a sync controller per federated type.

    Each runs on its own thread until the shared stop event is set.
    """

    def __init__(self, context: ControllerContext):
        self.context = context
        config = context.config
        self.health_monitor = ClusterHealthMonitor(
            context.host_client,
            config.health_check,
            functools.partial(
                build_cluster_client,
                host_client=context.host_client,
                fed_namespace=config.federation_namespace,
                timeout=config.health_check.timeout,
            ),
            membership_client=context.membership_client(),
        )
        self.controllers = {
            "cluster-health": self.health_monitor,
            "service-dns": ServiceDNSController(context),
            "ingress-dns": IngressDNSController(context),
            "service-dnsendpoint": service_dns_endpoint_controller(context),
            "ingress-dnsendpoint": ingress_dns_endpoint_controller(context),
            "federatedtypeconfig": FederatedTypeConfigController(context),
        }
        self._threads: list[threading.Thread] = []

    def start(self, stop_event: threading.Event) -> None:
        for name, controller in self.controllers.items():
            thread = threading.Thread(target=controller.run, args=(stop_event,), name=name, daemon=True)
            thread.start()
            self._threads.append(thread)
        logger.info(f"Started {len(self._threads)} controllers")

    def run(self, stop_event: threading.Event) -> None:
        """Start everything and block until ``stop_event`` is set and controllers exit."""
        self.start(stop_event)
        stop_event.wait()
        logger.info("Stop requested, waiting for controllers to exit")
        for thread in self._threads:
            thread.join(timeout=10)
            if thread.is_alive():
                logger.warning(f"Controller {thread.name} did not stop in time")
