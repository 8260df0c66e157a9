"""Starts and stops one sync controller per enabled FederatedTypeConfig."""

import copy
import threading
from collections.abc import Callable
from dataclasses import dataclass

from federation_manager.controllers.context import ControllerContext
from federation_manager.controllers.sync import SyncController
from federation_manager.exceptions import KubernetesError
from federation_manager.informer import ResourceInformer
from federation_manager.logging_config import get_logger
from federation_manager.models.federation import (
    CONTROLLER_NOT_RUNNING,
    CONTROLLER_RUNNING,
    FederatedTypeConfig,
    FederatedTypeConfigStatus,
)
from federation_manager.models.resource import FEDERATED_TYPE_CONFIG, QualifiedName, ReconciliationStatus
from federation_manager.worker import ReconcileWorker

logger = get_logger(__name__)

TYPE_CONFIG_FINALIZER = "core.kubefed.io/federated-type-config"

SyncControllerFactory = Callable[[ControllerContext, FederatedTypeConfig], SyncController]


@dataclass
class RunningController:
    controller: SyncController
    stop_event: threading.Event
    thread: threading.Thread


class FederatedTypeConfigController:
    """Reconciles FederatedTypeConfig objects in the federation namespace.

    Propagation of a namespaced target type runs while its type config has
    propagation enabled. Cluster-scoped target types are never propagated.
    A finalizer keeps the type config around until its sync controller has
    been stopped.
    """

    def __init__(
        self,
        context: ControllerContext,
        sync_controller_factory: SyncControllerFactory = SyncController,
    ):
        self.context = context
        self.host_client = context.host_client
        self.sync_controller_factory = sync_controller_factory
        self.worker = ReconcileWorker("federatedtypeconfig", self.reconcile, context.config.worker)
        self.informer = ResourceInformer(
            "federatedtypeconfigs",
            context.host_resource_client(FEDERATED_TYPE_CONFIG, context.config.federation_namespace),
            on_add=self.worker.enqueue_object,
            on_update=lambda old, new: self.worker.enqueue_object(new),
            on_delete=self.worker.enqueue_object,
        )
        self._running: dict[str, RunningController] = {}
        self._lock = threading.Lock()

    def is_running(self, name: str) -> bool:
        with self._lock:
            return name in self._running

    def reconcile(self, qualified_name: QualifiedName) -> ReconciliationStatus:
        key = str(qualified_name)
        cached = self.informer.store.get(key)
        if cached is None:
            # Removed without our finalizer being honoured
            self._stop_sync_controller(qualified_name.name)
            return ReconciliationStatus.ALL_OK

        try:
            type_config = FederatedTypeConfig.from_object(cached)
        except ValueError as e:
            logger.error(f"Invalid FederatedTypeConfig {key}: {e}")
            return ReconciliationStatus.ERROR
        if type_config.name != type_config.expected_name():
            logger.error(
                f"FederatedTypeConfig {key} must be named {type_config.expected_name()} after its target type"
            )
            return ReconciliationStatus.ERROR

        if type_config.deleting:
            self._stop_sync_controller(type_config.name)
            try:
                remaining = [f for f in type_config.finalizers if f != TYPE_CONFIG_FINALIZER]
                self._set_finalizers(cached, type_config, remaining)
            except KubernetesError as e:
                logger.error(f"Failed to remove finalizer from FederatedTypeConfig {key}: {e.message}")
                return ReconciliationStatus.ERROR
            return ReconciliationStatus.ALL_OK

        try:
            if TYPE_CONFIG_FINALIZER not in type_config.finalizers:
                finalizers = sorted(type_config.finalizers + [TYPE_CONFIG_FINALIZER])
                self._set_finalizers(cached, type_config, finalizers)
        except KubernetesError as e:
            logger.error(f"Failed to ensure finalizer for FederatedTypeConfig {key}: {e.message}")
            return ReconciliationStatus.ERROR

        kind = type_config.target_type.kind
        should_run = type_config.propagation_enabled
        if should_run and not type_config.target_type.namespaced:
            logger.info(f"Not propagating cluster-scoped {kind}")
            should_run = False

        running = self.is_running(type_config.name)
        if should_run and not running:
            self._start_sync_controller(type_config)
        elif running and not should_run:
            self._stop_sync_controller(type_config.name)

        status = FederatedTypeConfigStatus(
            observed_generation=type_config.generation,
            propagation_controller=CONTROLLER_RUNNING if should_run else CONTROLLER_NOT_RUNNING,
        )
        if status != type_config.status:
            try:
                self.host_client.patch_object_status(
                    FEDERATED_TYPE_CONFIG, type_config.namespace, type_config.name, status.to_api()
                )
            except KubernetesError as e:
                logger.error(f"Could not update status of FederatedTypeConfig {key}: {e.message}")
                return ReconciliationStatus.ERROR
        return ReconciliationStatus.ALL_OK

    def _set_finalizers(self, cached: dict, type_config: FederatedTypeConfig, finalizers: list[str]) -> None:
        body = copy.deepcopy(cached)
        body.setdefault("metadata", {})["finalizers"] = finalizers
        self.host_client.replace_object(FEDERATED_TYPE_CONFIG, type_config.namespace, type_config.name, body)

    def _start_sync_controller(self, type_config: FederatedTypeConfig) -> None:
        controller = self.sync_controller_factory(self.context, type_config)
        stop_event = threading.Event()
        thread = threading.Thread(
            target=controller.run, args=(stop_event,), name=f"{type_config.name}-sync", daemon=True
        )
        with self._lock:
            self._running[type_config.name] = RunningController(controller, stop_event, thread)
        thread.start()
        logger.info(f"Started sync controller for {type_config.target_type.kind}")

    def _stop_sync_controller(self, name: str) -> None:
        with self._lock:
            running = self._running.pop(name, None)
        if running is None:
            return
        logger.info(f"Stopping sync controller for {name}")
        running.stop_event.set()

    def shut_down(self) -> None:
        """Stop every sync controller and wait for them to exit."""
        with self._lock:
            running = list(self._running.values())
            self._running.clear()
        for entry in running:
            entry.stop_event.set()
        for entry in running:
            entry.thread.join(timeout=10)

    def run(self, stop_event: threading.Event) -> None:
        logger.info("Starting FederatedTypeConfig controller")
        self.informer.start()
        while not self.informer.wait_for_sync(timeout=1):
            if stop_event.is_set():
                self.informer.stop()
                return
        self.worker.run(stop_event)
        stop_event.wait()
        self.shut_down()
        self.informer.stop()
        self.worker.join(timeout=5)
        logger.info("Stopped FederatedTypeConfig controller")
