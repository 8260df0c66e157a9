"""Propagates federated resources to the member clusters they are placed in."""

import copy
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any, Protocol

from federation_manager.controllers.base import FederatedRecordController
from federation_manager.controllers.context import ControllerContext
from federation_manager.exceptions import KubernetesError
from federation_manager.logging_config import get_logger
from federation_manager.models.federation import (
    OVERRIDE_ADD,
    OVERRIDE_REMOVE,
    OVERRIDE_REPLACE,
    FederatedObject,
    FederatedTypeConfig,
    OverridePatch,
)
from federation_manager.models.resource import APIResource, QualifiedName, ReconciliationStatus

logger = get_logger(__name__)

SYNC_FINALIZER = "kubefed.io/sync-controller"
MANAGED_LABEL = "kubefed.io/managed"

OPERATION_ADD = "add"
OPERATION_UPDATE = "update"
OPERATION_DELETE = "delete"

# Top-level fields owned by the API server rather than the template
_SERVER_FIELDS = {"apiVersion", "kind", "metadata", "status"}


class ResourceWriter(Protocol):
    def create(self, namespace: str, body: dict) -> dict: ...

    def replace(self, namespace: str, name: str, body: dict) -> dict: ...

    def delete(self, namespace: str, name: str) -> bool: ...


@dataclass
class FederatedOperation:
    """A write to perform in one member cluster."""

    type: str
    cluster: str
    obj: dict


def compute_placement(fed: FederatedObject, ready_clusters: list[str]) -> tuple[list[str], list[str]]:
    """Split the ready clusters into those the object is placed in and the rest.

    Returns:
        Tuple of (selected, unselected), both sorted
    """
    placed = set(fed.placement)
    selected = sorted(name for name in ready_clusters if name in placed)
    unselected = sorted(name for name in ready_clusters if name not in placed)
    return selected, unselected


def _pointer_tokens(path: str) -> list[str]:
    if not path.startswith("/"):
        raise ValueError(f"Override path {path!r} must start with '/'")
    return [token.replace("~1", "/").replace("~0", "~") for token in path[1:].split("/")]


def _list_index(container: list, token: str, allow_end: bool) -> int:
    if allow_end and token == "-":
        return len(container)
    try:
        index = int(token)
    except ValueError as e:
        raise ValueError(f"{token!r} is not a list index") from e
    limit = len(container) if allow_end else len(container) - 1
    if index < 0 or index > limit:
        raise ValueError(f"List index {index} is out of range")
    return index


def apply_overrides(obj: dict[str, Any], patches: list[OverridePatch]) -> dict[str, Any]:
    """Apply JSON-pointer overrides to a copy of ``obj``.

    ``replace`` and ``add`` create missing parent objects along the path;
    ``remove`` of a missing field is an error, as is any list index out of range.

    Raises:
        ValueError: If a patch cannot be applied
    """
    result = copy.deepcopy(obj)
    for patch in patches:
        tokens = _pointer_tokens(patch.path)
        parent: Any = result
        for token in tokens[:-1]:
            if isinstance(parent, list):
                parent = parent[_list_index(parent, token, allow_end=False)]
            elif isinstance(parent, dict):
                if patch.op == OVERRIDE_REMOVE and token not in parent:
                    raise ValueError(f"Override path {patch.path} does not exist")
                parent = parent.setdefault(token, {})
            else:
                raise ValueError(f"Override path {patch.path} crosses a scalar")

        last = tokens[-1]
        if patch.op == OVERRIDE_REMOVE:
            if isinstance(parent, list):
                del parent[_list_index(parent, last, allow_end=False)]
            elif isinstance(parent, dict) and last in parent:
                del parent[last]
            else:
                raise ValueError(f"Override path {patch.path} does not exist")
        elif patch.op in (OVERRIDE_ADD, OVERRIDE_REPLACE):
            value = copy.deepcopy(patch.value)
            if isinstance(parent, list):
                if patch.op == OVERRIDE_ADD:
                    parent.insert(_list_index(parent, last, allow_end=True), value)
                else:
                    parent[_list_index(parent, last, allow_end=False)] = value
            elif isinstance(parent, dict):
                parent[last] = value
            else:
                raise ValueError(f"Override path {patch.path} crosses a scalar")
        else:
            raise ValueError(f"Unsupported override operation {patch.op!r}")
    return result


def desired_object(fed: FederatedObject, target: APIResource, cluster: str) -> dict[str, Any]:
    """Build the object a cluster should hold: the template, named after the federated object."""
    obj = copy.deepcopy(fed.template)
    obj["apiVersion"] = target.api_version
    obj["kind"] = target.kind
    metadata = obj.setdefault("metadata", {})
    metadata["name"] = fed.name
    if target.namespaced:
        metadata["namespace"] = fed.namespace
    else:
        metadata.pop("namespace", None)
    metadata.setdefault("labels", {})[MANAGED_LABEL] = "true"
    return apply_overrides(obj, fed.overrides_for(cluster))


def is_managed(obj: dict[str, Any]) -> bool:
    labels = (obj.get("metadata") or {}).get("labels") or {}
    return labels.get(MANAGED_LABEL) == "true"


def needs_update(desired: dict[str, Any], cluster_obj: dict[str, Any]) -> bool:
    """Whether a cluster's object differs from what the template asks for.

    Template fields are compared exactly. Labels and annotations only need to
    be present; the cluster may carry more.
    """
    for key, value in desired.items():
        if key in _SERVER_FIELDS:
            continue
        if cluster_obj.get(key) != value:
            return True
    desired_meta = desired.get("metadata") or {}
    cluster_meta = cluster_obj.get("metadata") or {}
    for field_name in ("labels", "annotations"):
        wanted = desired_meta.get(field_name) or {}
        present = cluster_meta.get(field_name) or {}
        if any(present.get(k) != v for k, v in wanted.items()):
            return True
    return False


def object_for_update(desired: dict[str, Any], cluster_obj: dict[str, Any]) -> dict[str, Any]:
    """Carry over what an update must keep from the cluster's copy."""
    obj = copy.deepcopy(desired)
    cluster_meta = cluster_obj.get("metadata") or {}
    if cluster_meta.get("resourceVersion"):
        obj["metadata"]["resourceVersion"] = cluster_meta["resourceVersion"]
    # A service's cluster IP is immutable once allocated
    if desired.get("kind") == "Service":
        cluster_ip = (cluster_obj.get("spec") or {}).get("clusterIP")
        if cluster_ip:
            obj.setdefault("spec", {})["clusterIP"] = cluster_ip
    return obj


def _with_finalizers(obj: dict[str, Any], finalizers: list[str]) -> dict[str, Any]:
    updated = copy.deepcopy(obj)
    updated.setdefault("metadata", {})["finalizers"] = finalizers
    return updated


class SyncController(FederatedRecordController):
    """Keeps the target objects of one federated type in step with their templates.

    A federated object is propagated to the ready clusters named by its
    placement, with that cluster's overrides applied. Managed copies in
    ready clusters it is no longer placed in are deleted. Deleting the
    federated object removes every managed copy before its finalizer is
    released.
    """

    def __init__(self, context: ControllerContext, type_config: FederatedTypeConfig):
        self.type_config = type_config
        self.target_resource = type_config.target_type.to_api_resource()
        self.record_resource = type_config.federated_type.to_api_resource()
        self.name = f"{self.target_resource.kind.lower()}-sync"
        super().__init__(context)
        self.target_informer = self._federated_informer(self.target_resource, lifecycle=True)

    def reconcile(self, qualified_name: QualifiedName) -> ReconciliationStatus:
        if not self.is_synced():
            return ReconciliationStatus.NOT_SYNCED

        key = str(qualified_name)
        kind = self.record_resource.kind
        cached = self.record_informer.store.get(key)
        if cached is None:
            return ReconciliationStatus.ALL_OK
        try:
            fed = FederatedObject.from_object(cached)
        except ValueError as e:
            logger.error(f"Ignoring malformed {kind} {key}: {e}")
            return ReconciliationStatus.ERROR

        if fed.deleting:
            return self._handle_deletion(cached, fed, key)

        try:
            self._ensure_finalizer(cached, fed)
        except KubernetesError as e:
            logger.error(f"Failed to ensure finalizer for {kind} {key}: {e.message}")
            return ReconciliationStatus.ERROR

        ready = [cluster.name for cluster in self.target_informer.get_ready_clusters()]
        selected, unselected = compute_placement(fed, ready)
        try:
            operations = self._cluster_operations(fed, key, selected, unselected)
        except ValueError as e:
            logger.error(f"Failed to compute the objects of {kind} {key}: {e}")
            return ReconciliationStatus.ERROR

        if not operations:
            return ReconciliationStatus.ALL_OK
        failures = self._execute(operations, key)
        if failures:
            logger.error(f"Failed to propagate {kind} {key} to {', '.join(failures)}")
            return ReconciliationStatus.ERROR
        return ReconciliationStatus.ALL_OK

    def _cluster_operations(
        self, fed: FederatedObject, key: str, selected: list[str], unselected: list[str]
    ) -> list[FederatedOperation]:
        store = self.target_informer.get_target_store()
        operations = []
        for cluster in selected:
            desired = desired_object(fed, self.target_resource, cluster)
            cluster_obj, found = store.get_by_key(cluster, key)
            if not found:
                operations.append(FederatedOperation(OPERATION_ADD, cluster, desired))
            elif needs_update(desired, cluster_obj):
                operations.append(
                    FederatedOperation(OPERATION_UPDATE, cluster, object_for_update(desired, cluster_obj))
                )
        for cluster in unselected:
            cluster_obj, found = store.get_by_key(cluster, key)
            if found and is_managed(cluster_obj):
                operations.append(FederatedOperation(OPERATION_DELETE, cluster, cluster_obj))
        return operations

    def _execute(self, operations: list[FederatedOperation], key: str) -> list[str]:
        """Run the operations in parallel and return the clusters where one failed."""
        with ThreadPoolExecutor(
            max_workers=len(operations), thread_name_prefix=f"{self.name}-update"
        ) as pool:
            futures = {pool.submit(self._apply, op, key): op for op in operations}
            wait(futures)
        failures = []
        for future, op in futures.items():
            error = future.exception()
            if error is not None:
                logger.error(
                    f"Failed to {op.type} {self.target_resource.kind} {key} in cluster {op.cluster}: {error}"
                )
                failures.append(op.cluster)
        return sorted(failures)

    def _apply(self, op: FederatedOperation, key: str) -> None:
        writer: ResourceWriter | None = self.target_informer.client_for_cluster(op.cluster)
        if writer is None:
            raise KubernetesError(f"Cluster {op.cluster} is no longer available")
        metadata = op.obj.get("metadata") or {}
        namespace = metadata.get("namespace") or ""
        if op.type == OPERATION_ADD:
            writer.create(namespace, op.obj)
        elif op.type == OPERATION_UPDATE:
            writer.replace(namespace, metadata["name"], op.obj)
        else:
            writer.delete(namespace, metadata["name"])
        logger.info(f"{op.type.capitalize()} {self.target_resource.kind} {key} in cluster {op.cluster}")

    def _ensure_finalizer(self, cached: dict, fed: FederatedObject) -> None:
        if SYNC_FINALIZER in fed.finalizers:
            return
        body = _with_finalizers(cached, sorted(fed.finalizers + [SYNC_FINALIZER]))
        self.host_client.replace_object(self.record_resource, fed.namespace, fed.name, body)

    def _handle_deletion(self, cached: dict, fed: FederatedObject, key: str) -> ReconciliationStatus:
        """Delete managed copies; release the finalizer once none is left."""
        if SYNC_FINALIZER not in fed.finalizers:
            return ReconciliationStatus.ALL_OK

        store = self.target_informer.get_target_store()
        operations = []
        for cluster in self.target_informer.get_ready_clusters():
            cluster_obj, found = store.get_by_key(cluster.name, key)
            if found and is_managed(cluster_obj):
                operations.append(FederatedOperation(OPERATION_DELETE, cluster.name, cluster_obj))

        if operations:
            if self._execute(operations, key):
                return ReconciliationStatus.ERROR
            # Confirm the copies are gone before releasing the finalizer
            return ReconciliationStatus.NEEDS_RECHECK

        finalizers = [f for f in fed.finalizers if f != SYNC_FINALIZER]
        try:
            self.host_client.replace_object(
                self.record_resource, fed.namespace, fed.name, _with_finalizers(cached, finalizers)
            )
        except KubernetesError as e:
            logger.error(f"Failed to remove finalizer from {self.record_resource.kind} {key}: {e.message}")
            return ReconciliationStatus.ERROR
        logger.info(f"Released {self.record_resource.kind} {key} after deleting its copies")
        return ReconciliationStatus.ALL_OK
