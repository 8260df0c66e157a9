"""Prometheus metrics for the federation controllers."""

import time

from prometheus_client import Counter, Histogram, start_http_server

from federation_manager.logging_config import get_logger

logger = get_logger(__name__)

# Durations above this are also logged
SLOW_FUNCTION_THRESHOLD = 5.0

CLUSTER_HEALTH_STATUS = "clusterHealthStatus"
CLUSTER_CLIENT_CONNECTION = "clusterClientConnection"
RECONCILE_FEDERATED_RESOURCES = "reconcile:federatedResources"

CLUSTER_READY = Counter(
    "federation_cluster_ready_total",
    "Number of times a member cluster probe reported ready",
    ["cluster"],
)

CLUSTER_NOT_READY = Counter(
    "federation_cluster_not_ready_total",
    "Number of times a member cluster probe reported not ready",
    ["cluster"],
)

CLUSTER_OFFLINE = Counter(
    "federation_cluster_offline_total",
    "Number of times a member cluster probe could not reach the cluster",
    ["cluster"],
)

FUNCTION_DURATION = Histogram(
    "federation_function_duration_seconds",
    "Time taken by controller functions in seconds",
    ["function"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 30.0, 60.0],
)


def register_cluster_ready(cluster: str) -> None:
    """Record a ready probe result."""
    CLUSTER_READY.labels(cluster=cluster).inc()


def register_cluster_not_ready(cluster: str) -> None:
    """Record a not ready probe result."""
    CLUSTER_NOT_READY.labels(cluster=cluster).inc()


def register_cluster_offline(cluster: str) -> None:
    """Record an unreachable probe result."""
    CLUSTER_OFFLINE.labels(cluster=cluster).inc()


def update_duration(function: str, duration: float) -> None:
    """Observe how long a named function took."""
    if duration > SLOW_FUNCTION_THRESHOLD:
        logger.info(f"Function {function} took {duration:.2f}s to complete")
    FUNCTION_DURATION.labels(function=function).observe(duration)


def update_duration_from_start(function: str, start: float) -> None:
    """Observe the time elapsed since ``start`` (a ``time.monotonic()`` value)."""
    update_duration(function, time.monotonic() - start)


def serve(port: int) -> None:
    """Expose the default registry over HTTP."""
    start_http_server(port)
    logger.info(f"Serving metrics on port {port}")
