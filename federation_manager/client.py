"""Access to the host cluster and generic list/watch over any resource."""

import base64
from collections.abc import Iterator
from typing import Any

from kubernetes import client, config, watch
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException
from kubernetes.dynamic import DynamicClient

from federation_manager.exceptions import ConfigurationError, KubernetesError
from federation_manager.logging_config import get_logger
from federation_manager.models.cluster import ClusterMembership, ClusterStatus
from federation_manager.models.resource import KUBEFED_CLUSTER, APIResource

logger = get_logger(__name__)


def load_api_client(kubeconfig: str | None = None, context: str | None = None) -> client.ApiClient:
    """Create an API client from a kubeconfig file, falling back to in-cluster config.

    Raises:
        ConfigurationError: If neither configuration source is usable
    """
    configuration = client.Configuration()
    try:
        config.load_kube_config(
            config_file=kubeconfig, context=context, client_configuration=configuration
        )
    except (ConfigException, FileNotFoundError, TypeError) as e:
        if kubeconfig:
            raise ConfigurationError(f"Failed to load kubeconfig {kubeconfig}", str(e))
        logger.debug(f"No usable kubeconfig ({e}), trying in-cluster configuration")
        try:
            config.load_incluster_config(client_configuration=configuration)
        except ConfigException as incluster_error:
            raise ConfigurationError(
                "Failed to load Kubernetes configuration",
                "Pass --kubeconfig or run inside a cluster with a service account",
            ) from incluster_error
    return client.ApiClient(configuration)


def is_not_found(error: ApiException) -> bool:
    return error.status == 404


class HostClient:
    """Typed operations against the host cluster's API.

    Custom resources are handled as plain dictionaries, the way the API
    returns them.
    """

    def __init__(self, api_client: client.ApiClient, namespace: str):
        self.api_client = api_client
        self.namespace = namespace
        self.core_api = client.CoreV1Api(api_client)
        self.custom_api = client.CustomObjectsApi(api_client)

    def list_clusters(self) -> list[ClusterMembership]:
        """List member clusters registered in the federation namespace."""
        try:
            result = self.custom_api.list_namespaced_custom_object(
                KUBEFED_CLUSTER.group,
                KUBEFED_CLUSTER.version,
                self.namespace,
                KUBEFED_CLUSTER.plural,
            )
        except ApiException as e:
            raise KubernetesError("Failed to list member clusters", str(e)) from e
        return [ClusterMembership.from_object(item) for item in result.get("items", [])]

    def patch_cluster_status(self, name: str, status: ClusterStatus) -> None:
        """Write a cluster's status subresource."""
        try:
            self.custom_api.patch_namespaced_custom_object_status(
                KUBEFED_CLUSTER.group,
                KUBEFED_CLUSTER.version,
                self.namespace,
                KUBEFED_CLUSTER.plural,
                name,
                {"status": status.to_api()},
            )
        except ApiException as e:
            raise KubernetesError(f"Failed to update status of cluster {name}", str(e)) from e

    def get_secret(self, name: str, namespace: str | None = None) -> dict[str, str]:
        """Read a secret and return its decoded data.

        Raises:
            KubernetesError: If the secret cannot be read
        """
        namespace = namespace or self.namespace
        try:
            secret = self.core_api.read_namespaced_secret(name, namespace)
        except ApiException as e:
            raise KubernetesError(f"Failed to read secret {namespace}/{name}", str(e)) from e
        return {
            key: base64.b64decode(value).decode("utf-8")
            for key, value in (secret.data or {}).items()
        }

    def get_object(self, resource: APIResource, namespace: str, name: str) -> dict | None:
        """Fetch a custom object, returning None when it does not exist."""
        try:
            return self.custom_api.get_namespaced_custom_object(
                resource.group, resource.version, namespace, resource.plural, name
            )
        except ApiException as e:
            if is_not_found(e):
                return None
            raise KubernetesError(
                f"Failed to get {resource.kind} {namespace}/{name}", str(e)
            ) from e

    def create_object(self, resource: APIResource, namespace: str, body: dict) -> dict:
        try:
            return self.custom_api.create_namespaced_custom_object(
                resource.group, resource.version, namespace, resource.plural, body
            )
        except ApiException as e:
            name = body.get("metadata", {}).get("name")
            raise KubernetesError(
                f"Failed to create {resource.kind} {namespace}/{name}", str(e)
            ) from e

    def replace_object(self, resource: APIResource, namespace: str, name: str, body: dict) -> dict:
        try:
            return self.custom_api.replace_namespaced_custom_object(
                resource.group, resource.version, namespace, resource.plural, name, body
            )
        except ApiException as e:
            raise KubernetesError(
                f"Failed to update {resource.kind} {namespace}/{name}", str(e)
            ) from e

    def delete_object(self, resource: APIResource, namespace: str, name: str) -> bool:
        """Delete a custom object.

        Returns:
            False if the object was already gone
        """
        try:
            self.custom_api.delete_namespaced_custom_object(
                resource.group, resource.version, namespace, resource.plural, name
            )
        except ApiException as e:
            if is_not_found(e):
                return False
            raise KubernetesError(
                f"Failed to delete {resource.kind} {namespace}/{name}", str(e)
            ) from e
        return True

    def patch_object_status(
        self, resource: APIResource, namespace: str, name: str, status: dict[str, Any]
    ) -> None:
        try:
            self.custom_api.patch_namespaced_custom_object_status(
                resource.group, resource.version, namespace, resource.plural, name, {"status": status}
            )
        except ApiException as e:
            raise KubernetesError(
                f"Failed to update status of {resource.kind} {namespace}/{name}", str(e)
            ) from e

    def resource_client(self, resource: APIResource, namespace: str = "") -> "DynamicResourceClient":
        """List/watch client for a resource on the host cluster."""
        return DynamicResourceClient(self.api_client, resource, namespace)


class DynamicResourceClient:
    """List, watch and write one resource type through the dynamic client.

    Discovery happens lazily on first use, so constructing one never touches
    the network.
    """

    def __init__(self, api_client: client.ApiClient, resource: APIResource, namespace: str = ""):
        self._api_client = api_client
        self.resource = resource
        self.namespace = namespace or None
        self._api = None
        self._watcher: watch.Watch | None = None

    def _resource_api(self):
        if self._api is None:
            dynamic = DynamicClient(self._api_client)
            self._api = dynamic.resources.get(
                api_version=self.resource.api_version, kind=self.resource.kind
            )
        return self._api

    def list(self) -> tuple[list[dict], str]:
        """List all objects.

        Returns:
            Tuple of (objects, resource version of the list)
        """
        result = self._resource_api().get(namespace=self.namespace).to_dict()
        resource_version = (result.get("metadata") or {}).get("resourceVersion", "")
        return result.get("items") or [], resource_version

    def watch(self, resource_version: str, timeout_seconds: int) -> Iterator[tuple[str, dict]]:
        """Stream (event type, object) pairs until the server closes the watch."""
        self._watcher = watch.Watch()
        try:
            for event in self._resource_api().watch(
                namespace=self.namespace,
                resource_version=resource_version,
                timeout=timeout_seconds,
                watcher=self._watcher,
            ):
                yield event["type"], event["raw_object"]
        finally:
            self._watcher = None

    def create(self, namespace: str, body: dict) -> dict:
        name = (body.get("metadata") or {}).get("name")
        try:
            return self._resource_api().create(body=body, namespace=namespace or None).to_dict()
        except ApiException as e:
            raise KubernetesError(f"Failed to create {self.resource.kind} {namespace}/{name}", str(e)) from e

    def replace(self, namespace: str, name: str, body: dict) -> dict:
        try:
            return self._resource_api().replace(body=body, name=name, namespace=namespace or None).to_dict()
        except ApiException as e:
            raise KubernetesError(f"Failed to update {self.resource.kind} {namespace}/{name}", str(e)) from e

    def delete(self, namespace: str, name: str) -> bool:
        """Delete an object.

        Returns:
            False if the object was already gone
        """
        try:
            self._resource_api().delete(name=name, namespace=namespace or None)
        except ApiException as e:
            if is_not_found(e):
                return False
            raise KubernetesError(f"Failed to delete {self.resource.kind} {namespace}/{name}", str(e)) from e
        return True

    def stop(self) -> None:
        """Interrupt an open watch stream."""
        watcher = self._watcher
        if watcher is not None:
            watcher.stop()
