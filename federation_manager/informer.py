"""List-then-watch informers and the per-member-cluster fan-out."""

import queue
import threading
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from kubernetes.client.rest import ApiException

from federation_manager.exceptions import KubernetesError
from federation_manager.logging_config import get_logger
from federation_manager.models.cluster import ClusterMembership, is_cluster_ready
from federation_manager.models.resource import object_key

logger = get_logger(__name__)

INITIAL_WATCH_BACKOFF = 1.0
MAX_WATCH_BACKOFF = 30.0
DEFAULT_WATCH_TIMEOUT = 60

ObjectHandler = Callable[[dict], None]


class ResourceClient(Protocol):
    """What an informer needs from the API: a full list and a watch from a version."""

    def list(self) -> tuple[list[dict], str]: ...

    def watch(self, resource_version: str, timeout_seconds: int) -> Iterator[tuple[str, dict]]: ...

    def stop(self) -> None: ...


class WatchExpired(Exception):
    """The watch resource version is too old; a relist is needed."""


class ThreadSafeStore:
    """Objects indexed by ``namespace/name``."""

    def __init__(self):
        self._items: dict[str, dict] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> dict | None:
        with self._lock:
            return self._items.get(key)

    def put(self, obj: dict) -> dict | None:
        """Store ``obj`` and return the object it replaced."""
        key = object_key(obj)
        with self._lock:
            old = self._items.get(key)
            self._items[key] = obj
        return old

    def delete(self, obj: dict) -> dict | None:
        with self._lock:
            return self._items.pop(object_key(obj), None)

    def values(self) -> list[dict]:
        with self._lock:
            return list(self._items.values())

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._items)

    def replace(self, objects: list[dict]) -> tuple[list[dict], list[tuple[dict, dict]], list[dict]]:
        """Replace the contents with a fresh list.

        Returns:
            Tuple of (added, updated as (old, new) pairs, deleted)
        """
        fresh = {object_key(obj): obj for obj in objects}
        with self._lock:
            old_items = self._items
            self._items = fresh
        added = [obj for key, obj in fresh.items() if key not in old_items]
        updated = [(old_items[key], obj) for key, obj in fresh.items() if key in old_items]
        deleted = [obj for key, obj in old_items.items() if key not in fresh]
        return added, updated, deleted


class ResourceInformer:
    """Keeps a store in sync with one resource type through list-then-watch.

    Runs on its own thread. Errors are logged and retried with exponential
    backoff; they never reach the handlers' callers.
    """

    def __init__(
        self,
        name: str,
        client: ResourceClient,
        on_add: ObjectHandler | None = None,
        on_update: Callable[[dict, dict], None] | None = None,
        on_delete: ObjectHandler | None = None,
        watch_timeout: int = DEFAULT_WATCH_TIMEOUT,
    ):
        self.name = name
        self.client = client
        self.store = ThreadSafeStore()
        self.watch_timeout = watch_timeout
        self._on_add = on_add
        self._on_update = on_update
        self._on_delete = on_delete
        self._synced = threading.Event()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        self._thread = threading.Thread(target=self._run, name=f"{self.name}-informer", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        self.client.stop()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=5)

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def has_synced(self) -> bool:
        return self._synced.is_set()

    def wait_for_sync(self, timeout: float | None = None) -> bool:
        return self._synced.wait(timeout)

    def _dispatch(self, handler, *args) -> None:
        if handler is None:
            return
        try:
            handler(*args)
        except Exception:
            logger.exception(f"Event handler of {self.name} informer failed")

    def _run(self) -> None:
        backoff = INITIAL_WATCH_BACKOFF
        while not self._stop.is_set():
            try:
                resource_version = self._list()
                backoff = INITIAL_WATCH_BACKOFF
                while not self._stop.is_set():
                    resource_version = self._watch(resource_version)
            except WatchExpired:
                logger.debug(f"Watch of {self.name} expired, relisting")
            except Exception as e:
                if self._stop.is_set():
                    break
                logger.warning(f"List/watch of {self.name} failed, retrying in {backoff:.0f}s: {e}")
                self._stop.wait(backoff)
                backoff = min(backoff * 2, MAX_WATCH_BACKOFF)
        logger.debug(f"Stopped {self.name} informer")

    def _list(self) -> str:
        objects, resource_version = self.client.list()
        added, updated, deleted = self.store.replace(objects)
        for obj in added:
            self._dispatch(self._on_add, obj)
        for old, new in updated:
            self._dispatch(self._on_update, old, new)
        for obj in deleted:
            self._dispatch(self._on_delete, obj)
        if not self._synced.is_set():
            logger.debug(f"{self.name} informer synced with {len(objects)} object(s)")
            self._synced.set()
        return resource_version

    def _watch(self, resource_version: str) -> str:
        """Consume one watch stream and return the last resource version seen."""
        try:
            for event_type, obj in self.client.watch(resource_version, self.watch_timeout):
                if self._stop.is_set():
                    break
                if event_type == "ERROR":
                    if obj.get("code") == 410:
                        raise WatchExpired()
                    raise KubernetesError(f"Watch of {self.name} failed", obj.get("message"))
                resource_version = (obj.get("metadata") or {}).get("resourceVersion", resource_version)
                if event_type in ("ADDED", "MODIFIED"):
                    old = self.store.put(obj)
                    if old is None:
                        self._dispatch(self._on_add, obj)
                    else:
                        self._dispatch(self._on_update, old, obj)
                elif event_type == "DELETED":
                    self.store.delete(obj)
                    self._dispatch(self._on_delete, obj)
        except ApiException as e:
            if e.status == 410:
                raise WatchExpired() from e
            raise
        return resource_version


class ClusterEventType(Enum):
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"


@dataclass
class ClusterLifecycleEvent:
    type: ClusterEventType
    cluster: ClusterMembership
    last_known_objects: list[dict] = field(default_factory=list)


@dataclass
class ClusterLifecycleHandlers:
    """Callbacks run when a member cluster joins or leaves the ready set."""

    cluster_available: Callable[[ClusterMembership], None] | None = None
    cluster_unavailable: Callable[[ClusterMembership, list[dict]], None] | None = None


ClientFactory = Callable[[ClusterMembership], ResourceClient]


class FederatedInformer:
    """Fans one resource type out over every ready member cluster.

    Watches the membership objects on the host. Each cluster that becomes
    Ready gets its own list/watch pipeline and store partition; a cluster
    that stops being Ready, or is removed, has its pipeline stopped and its
    partition dropped. Every such transition produces exactly one lifecycle
    event, which a dispatcher thread hands to the handlers outside of this
    informer's lock.

    Args:
        name: Name used for logging and thread names
        cluster_client: List/watch client for membership objects on the host
        client_factory: Builds a list/watch client for a member cluster
        trigger: Called with every object added, changed or removed in a member
        handlers: Lifecycle callbacks
    """

    def __init__(
        self,
        name: str,
        cluster_client: ResourceClient,
        client_factory: ClientFactory,
        trigger: ObjectHandler,
        handlers: ClusterLifecycleHandlers | None = None,
        watch_timeout: int = DEFAULT_WATCH_TIMEOUT,
    ):
        self.name = name
        self.client_factory = client_factory
        self.trigger = trigger
        self.handlers = handlers or ClusterLifecycleHandlers()
        self.watch_timeout = watch_timeout
        self.events: queue.Queue[ClusterLifecycleEvent | None] = queue.Queue()
        self._lock = threading.Lock()
        self._target_informers: dict[str, ResourceInformer] = {}
        self._dispatcher: threading.Thread | None = None
        self._cluster_informer = ResourceInformer(
            f"{name}-clusters",
            cluster_client,
            on_add=self._cluster_changed,
            on_update=lambda old, new: self._cluster_changed(new),
            on_delete=self._cluster_deleted,
            watch_timeout=watch_timeout,
        )

    def start(self) -> None:
        self._dispatcher = threading.Thread(
            target=self._dispatch_events, name=f"{self.name}-lifecycle", daemon=True
        )
        self._dispatcher.start()
        self._cluster_informer.start()

    def stop(self) -> None:
        logger.info(f"Stopping {self.name} federated informer")
        self._cluster_informer.stop()
        with self._lock:
            informers = list(self._target_informers.values())
            self._target_informers.clear()
        for informer in informers:
            informer.stop()
        self.events.put(None)
        if self._dispatcher is not None:
            self._dispatcher.join(timeout=5)

    def clusters_synced(self) -> bool:
        """True once memberships and every running member pipeline have listed."""
        if not self._cluster_informer.has_synced():
            return False
        with self._lock:
            informers = list(self._target_informers.values())
        return all(informer.has_synced() for informer in informers)

    def _memberships(self) -> list[ClusterMembership]:
        memberships = []
        for obj in self._cluster_informer.store.values():
            try:
                memberships.append(ClusterMembership.from_object(obj))
            except ValueError as e:
                logger.warning(f"Ignoring malformed cluster object {object_key(obj)}: {e}")
        return sorted(memberships, key=lambda m: m.name)

    def get_ready_clusters(self) -> list[ClusterMembership]:
        return [m for m in self._memberships() if is_cluster_ready(m.status)]

    def get_unready_clusters(self) -> list[ClusterMembership]:
        return [m for m in self._memberships() if not is_cluster_ready(m.status)]

    def get_target_store(self) -> "FederatedReadOnlyStore":
        return FederatedReadOnlyStore(self)

    def target_informer(self, cluster_name: str) -> ResourceInformer | None:
        with self._lock:
            return self._target_informers.get(cluster_name)

    def client_for_cluster(self, cluster_name: str) -> ResourceClient | None:
        """The client the cluster's pipeline was built with, for writes to that cluster."""
        informer = self.target_informer(cluster_name)
        return informer.client if informer is not None else None

    def _cluster_changed(self, obj: dict) -> None:
        try:
            membership = ClusterMembership.from_object(obj)
        except ValueError as e:
            logger.warning(f"Ignoring malformed cluster object {object_key(obj)}: {e}")
            return
        if is_cluster_ready(membership.status):
            self._add_cluster(membership)
        else:
            self._remove_cluster(membership)

    def _cluster_deleted(self, obj: dict) -> None:
        try:
            membership = ClusterMembership.from_object(obj)
        except ValueError:
            return
        self._remove_cluster(membership)

    def _add_cluster(self, membership: ClusterMembership) -> None:
        with self._lock:
            if membership.name in self._target_informers:
                return
        try:
            client = self.client_factory(membership)
        except Exception as e:
            logger.error(f"Could not connect {self.name} informer to cluster {membership.name}: {e}")
            return

        informer = ResourceInformer(
            f"{self.name}-{membership.name}",
            client,
            on_add=self.trigger,
            on_update=self._trigger_on_change,
            on_delete=self.trigger,
            watch_timeout=self.watch_timeout,
        )
        with self._lock:
            if membership.name in self._target_informers:
                return
            self._target_informers[membership.name] = informer
            informer.start()
        logger.info(f"Cluster {membership.name} is available to {self.name} informer")
        self.events.put(ClusterLifecycleEvent(ClusterEventType.AVAILABLE, membership))

    def _remove_cluster(self, membership: ClusterMembership) -> None:
        with self._lock:
            informer = self._target_informers.pop(membership.name, None)
        if informer is None:
            return
        informer.stop()
        logger.info(f"Cluster {membership.name} is no longer available to {self.name} informer")
        self.events.put(
            ClusterLifecycleEvent(ClusterEventType.UNAVAILABLE, membership, informer.store.values())
        )

    def _trigger_on_change(self, old: dict, new: dict) -> None:
        if old != new:
            self.trigger(new)

    def _dispatch_events(self) -> None:
        while True:
            event = self.events.get()
            if event is None:
                return
            try:
                if event.type == ClusterEventType.AVAILABLE:
                    if self.handlers.cluster_available:
                        self.handlers.cluster_available(event.cluster)
                elif self.handlers.cluster_unavailable:
                    self.handlers.cluster_unavailable(event.cluster, event.last_known_objects)
            except Exception:
                logger.exception(f"Lifecycle handler of {self.name} informer failed")


class FederatedReadOnlyStore:
    """Read access to the per-cluster partitions of a federated informer.

    A cluster without a running pipeline has no partition. Lookups against
    it report "not found" and ``has_cluster`` tells that apart from an
    object that is simply absent.
    """

    def __init__(self, informer: FederatedInformer):
        self._informer = informer

    def has_cluster(self, cluster_name: str) -> bool:
        return self._informer.target_informer(cluster_name) is not None

    def get_by_key(self, cluster_name: str, key: str) -> tuple[dict | None, bool]:
        informer = self._informer.target_informer(cluster_name)
        if informer is None:
            return None, False
        obj = informer.store.get(key)
        return obj, obj is not None

    def list_from_cluster(self, cluster_name: str) -> list[dict]:
        informer = self._informer.target_informer(cluster_name)
        if informer is None:
            return []
        return informer.store.values()

    def clusters_synced(self, clusters: list[ClusterMembership]) -> bool:
        """True if every given cluster has a pipeline that completed its first list."""
        for cluster in clusters:
            informer = self._informer.target_informer(cluster.name)
            if informer is None or not informer.has_synced():
                return False
        return True
