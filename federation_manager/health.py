"""Periodic member cluster health probing with hysteresis."""

import threading
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field

from federation_manager import metrics
from federation_manager.clusterclient import ClusterClient
from federation_manager.config import ClusterHealthCheckConfig
from federation_manager.exceptions import ClusterClientError, ConfigMalformedError, KubernetesError
from federation_manager.informer import ResourceClient, ResourceInformer
from federation_manager.logging_config import get_logger
from federation_manager.models.cluster import ClusterMembership, ClusterStatus, is_cluster_ready

logger = get_logger(__name__)

ClientBuilder = Callable[[ClusterMembership], ClusterClient]


@dataclass
class ClusterRuntimeData:
    """What the health monitor remembers about one member cluster between probes."""

    client: ClusterClient
    cached_membership: ClusterMembership
    last_status: ClusterStatus | None = None
    # Consecutive probes whose readiness matched the most recent probe
    result_run: int = 0
    last_probe_ready: bool | None = None
    # Client built since the last probe; a failed build is not retried until the next tick
    client_fresh: bool = True
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)


def threshold_adjusted_status(
    raw: ClusterStatus, runtime: ClusterRuntimeData, config: ClusterHealthCheckConfig
) -> ClusterStatus:
    """Decide which status to publish for a fresh probe result.

    A change of readiness is published only once ``failure_threshold``
    (towards not ready) or ``success_threshold`` (towards ready)
    consecutive probes agree on it. Until then the previously published
    conditions are kept, stamped with the new probe time. Transition
    times only move on a genuine transition.

    Updates ``runtime.result_run`` and ``runtime.last_probe_ready``.
    """
    raw_ready = is_cluster_ready(raw)
    previous = runtime.last_status
    repeat = runtime.last_probe_ready == raw_ready
    runtime.last_probe_ready = raw_ready

    if previous is None:
        runtime.result_run = 1
        return raw

    published_ready = is_cluster_ready(previous)
    probe_time = raw.conditions[0].last_probe_time if raw.conditions else None

    if raw_ready == published_ready:
        runtime.result_run = runtime.result_run + 1 if repeat else 1
        return _carry_transition_times(raw, previous)

    run = runtime.result_run + 1 if repeat else 1
    threshold = config.success_threshold if raw_ready else config.failure_threshold
    if run < threshold:
        runtime.result_run = run
        return _with_probe_time(previous, probe_time)

    runtime.result_run = 1
    return raw


def _carry_transition_times(raw: ClusterStatus, previous: ClusterStatus) -> ClusterStatus:
    # Same type with a different status is a transition of that condition
    transitions = {(c.type, c.status): c.last_transition_time for c in previous.conditions}
    conditions = [
        c.model_copy(
            update={
                "last_transition_time": transitions.get((c.type, c.status)) or c.last_transition_time
            }
        )
        for c in raw.conditions
    ]
    return raw.model_copy(update={"conditions": conditions})


def _with_probe_time(previous: ClusterStatus, probe_time) -> ClusterStatus:
    if probe_time is None:
        return previous.model_copy(deep=True)
    conditions = [c.model_copy(update={"last_probe_time": probe_time}) for c in previous.conditions]
    return previous.model_copy(update={"conditions": conditions})


class ClusterHealthMonitor:
    """Probes every member cluster once per period and publishes its status.

    Membership changes arrive through a watch on the host cluster's
    membership objects. Each tick fans out one thread per known cluster
    and waits for all of them before the next tick starts.

    Args:
        host_client: HostClient used to list memberships and write status
        config: Probe timing and thresholds
        client_builder: Builds a ClusterClient for a membership; may raise
            ConfigMalformedError
        membership_client: List/watch client for membership objects
    """

    def __init__(
        self,
        host_client,
        config: ClusterHealthCheckConfig,
        client_builder: ClientBuilder,
        membership_client: ResourceClient | None = None,
    ):
        self.host_client = host_client
        self.config = config
        self.client_builder = client_builder
        self._clusters: dict[str, ClusterRuntimeData] = {}
        self._lock = threading.Lock()
        self._informer = None
        if membership_client is not None:
            self._informer = ResourceInformer(
                "cluster-health",
                membership_client,
                on_add=self._on_membership_added,
                on_update=self._on_membership_updated,
                on_delete=self._on_membership_deleted,
            )

    def runtime_data(self, name: str) -> ClusterRuntimeData | None:
        with self._lock:
            return self._clusters.get(name)

    def cluster_names(self) -> list[str]:
        with self._lock:
            return sorted(self._clusters)

    def _build_client(self, membership: ClusterMembership) -> ClusterClient:
        start = time.monotonic()
        try:
            return self.client_builder(membership)
        except ConfigMalformedError as e:
            logger.warning(f"Cluster {membership.name} has a malformed configuration: {e.message}")
            return ClusterClient(membership.name, None, self.config.timeout)
        finally:
            metrics.update_duration_from_start(metrics.CLUSTER_CLIENT_CONNECTION, start)

    def add_to_cluster_set(self, membership: ClusterMembership) -> None:
        """Start tracking a cluster, keeping its last published status if any."""
        client = self._build_client(membership)
        with self._lock:
            if membership.name in self._clusters:
                return
            self._clusters[membership.name] = ClusterRuntimeData(
                client=client, cached_membership=membership, last_status=membership.status
            )
        logger.info(f"Added cluster {membership.name} to health monitoring")

    def update_cluster_set(self, membership: ClusterMembership) -> None:
        """Refresh a tracked cluster, rebuilding its client only if its connection changed."""
        with self._lock:
            data = self._clusters.get(membership.name)
        if data is None:
            self.add_to_cluster_set(membership)
            return
        if data.cached_membership.spec_fingerprint() == membership.spec_fingerprint():
            return
        client = self._build_client(membership)
        with data.lock:
            data.client = client
            data.client_fresh = True
            data.cached_membership = membership
        logger.info(f"Rebuilt client for updated cluster {membership.name}")

    def del_from_cluster_set(self, name: str) -> None:
        with self._lock:
            removed = self._clusters.pop(name, None)
        if removed is not None:
            logger.info(f"Removed cluster {name} from health monitoring")

    def _on_membership_added(self, obj: dict) -> None:
        self.add_to_cluster_set(ClusterMembership.from_object(obj))

    def _on_membership_updated(self, old: dict, new: dict) -> None:
        self.update_cluster_set(ClusterMembership.from_object(new))

    def _on_membership_deleted(self, obj: dict) -> None:
        self.del_from_cluster_set(ClusterMembership.from_object(obj).name)

    def update_cluster_status(self) -> None:
        """Run one probe round over every tracked cluster."""
        try:
            memberships = self.host_client.list_clusters()
        except KubernetesError as e:
            logger.error(f"Failed to list member clusters: {e.message}")
            return

        for membership in memberships:
            with self._lock:
                known = membership.name in self._clusters
            if not known:
                self.add_to_cluster_set(membership)

        # Entries missing from this list are left to the membership watch
        listed = {membership.name for membership in memberships}
        with self._lock:
            snapshot = [
                (name, self._clusters[name]) for name in sorted(self._clusters) if name in listed
            ]
        if not snapshot:
            return

        with ThreadPoolExecutor(max_workers=len(snapshot), thread_name_prefix="cluster-probe") as pool:
            futures = [pool.submit(self._update_individual_cluster_status, name, data) for name, data in snapshot]
            wait(futures)
        for future in futures:
            if future.exception() is not None:
                logger.error(f"Cluster probe failed unexpectedly: {future.exception()}")

    def _update_individual_cluster_status(self, name: str, data: ClusterRuntimeData) -> None:
        start = time.monotonic()
        with data.lock:
            if not data.client.configured and not data.client_fresh:
                # Credentials may have been fixed since the last tick
                data.client = self._build_client(data.cached_membership)
            data.client_fresh = False

            raw = data.client.get_cluster_status()
            status = threshold_adjusted_status(raw, data, self.config)
            status = self._with_topology(status, data)
            data.last_status = status

        try:
            self.host_client.patch_cluster_status(name, status)
        except KubernetesError as e:
            logger.error(f"Failed to update status of cluster {name}: {e.message}")
        metrics.update_duration_from_start(metrics.CLUSTER_HEALTH_STATUS, start)

    def _with_topology(self, status: ClusterStatus, data: ClusterRuntimeData) -> ClusterStatus:
        previous = data.last_status
        zones = list(previous.zones) if previous else []
        region = previous.region if previous else None

        if is_cluster_ready(status):
            try:
                probed_zones, probed_region = data.client.get_cluster_zones()
            except ClusterClientError as e:
                logger.warning(f"Failed to get zones and region for cluster {data.client.cluster_name}: {e.message}")
            else:
                if probed_zones:
                    zones = probed_zones
                if probed_region:
                    region = probed_region

        return status.model_copy(update={"zones": zones, "region": region})

    def run(self, stop_event: threading.Event) -> None:
        """Probe every ``period`` seconds until ``stop_event`` is set."""
        logger.info(f"Starting cluster health monitor (period {self.config.period}s)")
        if self._informer is not None:
            self._informer.start()
        try:
            while not stop_event.is_set():
                self.update_cluster_status()
                stop_event.wait(self.config.period)
        finally:
            if self._informer is not None:
                self._informer.stop()
            logger.info("Stopped cluster health monitor")
