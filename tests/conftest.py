"""Pytest configuration and shared fixtures."""

import queue
import threading
import time
from datetime import datetime, timezone

import pytest
from hypothesis import Verbosity, settings

from federation_manager.exceptions import KubernetesError
from federation_manager.models.resource import object_key

# Configure Hypothesis for property-based testing
settings.register_profile("default", max_examples=100, verbosity=Verbosity.normal)
settings.register_profile("ci", max_examples=1000, verbosity=Verbosity.verbose)
settings.register_profile("dev", max_examples=10, verbosity=Verbosity.verbose)

# Load the default profile
settings.load_profile("default")


class FakeResourceClient:
    """In-memory stand-in for a list/watch client.

    ``emit`` changes the listed objects and pushes a watch event.
    Writes are recorded in ``writes`` as (operation, key) pairs and echoed
    back as watch events.
    """

    def __init__(self, objects=None):
        self.objects = {object_key(obj): obj for obj in objects or []}
        self.list_calls = 0
        self.fail_list = False
        self.writes: list[tuple[str, str]] = []
        self.fail_writes = False
        self._events = queue.Queue()
        self._stopped = threading.Event()
        self._lock = threading.Lock()

    def list(self):
        with self._lock:
            self.list_calls += 1
            if self.fail_list:
                raise RuntimeError("list failed")
            return list(self.objects.values()), str(self.list_calls)

    def watch(self, resource_version, timeout_seconds):
        deadline = time.monotonic() + timeout_seconds
        while not self._stopped.is_set() and time.monotonic() < deadline:
            try:
                event = self._events.get(timeout=0.02)
            except queue.Empty:
                continue
            yield event

    def stop(self):
        self._stopped.set()

    def emit(self, event_type, obj):
        with self._lock:
            if event_type == "DELETED":
                self.objects.pop(object_key(obj), None)
            else:
                self.objects[object_key(obj)] = obj
        self._events.put((event_type, obj))

    def _write(self, operation, key):
        if self.fail_writes:
            raise KubernetesError(f"{operation} of {key} failed")
        self.writes.append((operation, key))

    def create(self, namespace, body):
        self._write("create", object_key(body))
        self.emit("ADDED", body)
        return body

    def replace(self, namespace, name, body):
        self._write("replace", object_key(body))
        self.emit("MODIFIED", body)
        return body

    def delete(self, namespace, name):
        key = f"{namespace}/{name}" if namespace else name
        self._write("delete", key)
        obj = self.objects.get(key)
        if obj is None:
            return False
        self.emit("DELETED", obj)
        return True


def cluster_object(name, ready=True, zones=None, region=None, namespace="kube-federation-system"):
    """Build a KubeFedCluster object as the API would return it."""
    obj = {
        "apiVersion": "core.kubefed.io/v1beta1",
        "kind": "KubeFedCluster",
        "metadata": {"name": name, "namespace": namespace},
        "spec": {"apiEndpoint": f"https://{name}.example.com", "secretRef": {"name": f"{name}-secret"}},
    }
    if ready is not None:
        stamp = datetime(2024, 1, 1, tzinfo=timezone.utc).isoformat()
        obj["status"] = {
            "conditions": [
                {
                    "type": "Ready",
                    "status": "True" if ready else "False",
                    "lastProbeTime": stamp,
                    "lastTransitionTime": stamp,
                }
            ],
            "zones": zones or [],
            "region": region or "",
        }
    return obj


def wait_until(condition, timeout=5.0, interval=0.01):
    """Poll ``condition`` until it is truthy or ``timeout`` expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(interval)
    return bool(condition())


@pytest.fixture
def resource_client():
    """Factory for fake list/watch clients."""
    return FakeResourceClient


@pytest.fixture
def make_cluster():
    """Factory for KubeFedCluster objects."""
    return cluster_object


@pytest.fixture
def wait_for():
    return wait_until


class FakeFederationClients:
    """Fake host and member list/watch clients for wiring a ControllerContext.

    Every call hands out a fresh client since a stopped fake stays stopped.
    ``host_objects`` and ``member_objects`` are keyed by resource kind.
    ``member_clients`` holds the latest client per cluster and kind.
    """

    def __init__(self):
        self.memberships: list[dict] = []
        self.host_objects: dict[str, list[dict]] = {}
        self.member_objects: dict[str, dict[str, list[dict]]] = {}
        self.membership_clients: list[FakeResourceClient] = []
        self.host_clients: dict[str, FakeResourceClient] = {}
        self.member_clients: dict[str, dict[str, FakeResourceClient]] = {}

    def host_resource_client(self, resource, namespace):
        if resource.kind == "KubeFedCluster":
            client = FakeResourceClient(self.memberships)
            self.membership_clients.append(client)
            return client
        client = FakeResourceClient(self.host_objects.get(resource.kind, []))
        self.host_clients[resource.kind] = client
        return client

    def member_client_factory(self, resource, namespace):
        def connect(membership):
            objects = self.member_objects.get(membership.name, {}).get(resource.kind, [])
            client = FakeResourceClient(objects)
            self.member_clients.setdefault(membership.name, {})[resource.kind] = client
            return client

        return connect


@pytest.fixture
def federation_clients():
    return FakeFederationClients()
