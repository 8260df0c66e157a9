"""Client for probing a single member cluster."""

import base64

import yaml
from kubernetes import client, config
from kubernetes.config.config_exception import ConfigException

from federation_manager import metrics
from federation_manager.exceptions import ClusterClientError, ConfigMalformedError, KubernetesError
from federation_manager.logging_config import get_logger
from federation_manager.models.cluster import (
    REGION_LABELS,
    ZONE_LABELS,
    ClusterMembership,
    ClusterStatus,
    config_malformed_status,
    not_ready_status,
    offline_status,
    ready_status,
    utc_now,
)

logger = get_logger(__name__)

USER_AGENT = "federation-manager/cluster-controller"


def build_cluster_configuration(
    membership: ClusterMembership, host_client, fed_namespace: str
) -> client.Configuration:
    """Build an API client configuration for a member cluster.

    Credentials come from the secret referenced by the membership. The
    secret holds either a ``kubeconfig`` or a ``token`` (with an optional
    ``ca.crt``).

    Args:
        membership: Member cluster to connect to
        host_client: HostClient used to read the credentials secret
        fed_namespace: Namespace holding the credentials secret

    Returns:
        Configuration for the member cluster

    Raises:
        ConfigMalformedError: If the endpoint or credentials are unusable
    """
    if not membership.api_endpoint:
        raise ConfigMalformedError(membership.name, "No API endpoint")
    if membership.secret_ref is None:
        raise ConfigMalformedError(
            membership.name,
            "No credentials secret",
            "Set spec.secretRef.name on the cluster object",
        )

    try:
        secret = host_client.get_secret(membership.secret_ref.name, fed_namespace)
    except KubernetesError as e:
        raise ConfigMalformedError(membership.name, "Could not read credentials", e.message) from e

    configuration = client.Configuration()
    try:
        if "kubeconfig" in secret:
            kubeconfig = yaml.safe_load(secret["kubeconfig"])
            config.load_kube_config_from_dict(kubeconfig, client_configuration=configuration)
            configuration.host = membership.api_endpoint
        elif "token" in secret:
            config.load_kube_config_from_dict(
                _token_kubeconfig(membership, secret), client_configuration=configuration
            )
        else:
            raise ConfigMalformedError(
                membership.name, "Credentials secret has no token or kubeconfig"
            )
    except (ConfigException, yaml.YAMLError) as e:
        raise ConfigMalformedError(membership.name, "Invalid credentials", str(e)) from e

    if membership.proxy_url:
        configuration.proxy = membership.proxy_url
    return configuration


def _token_kubeconfig(membership: ClusterMembership, secret: dict[str, str]) -> dict:
    cluster_entry = {"server": membership.api_endpoint}
    if membership.ca_bundle:
        cluster_entry["certificate-authority-data"] = membership.ca_bundle
    elif secret.get("ca.crt"):
        cluster_entry["certificate-authority-data"] = base64.b64encode(
            secret["ca.crt"].encode("utf-8")
        ).decode("ascii")
    if membership.skip_tls_verify:
        cluster_entry["insecure-skip-tls-verify"] = True

    return {
        "apiVersion": "v1",
        "kind": "Config",
        "clusters": [{"name": membership.name, "cluster": cluster_entry}],
        "users": [{"name": membership.name, "user": {"token": secret["token"].strip()}}],
        "contexts": [
            {"name": membership.name, "context": {"cluster": membership.name, "user": membership.name}}
        ],
        "current-context": membership.name,
    }


class ClusterClient:
    """Health and topology probes for one member cluster.

    A client without an ``api_client`` stands for a cluster whose
    configuration could not be turned into a connection.
    """

    def __init__(self, cluster_name: str, api_client: client.ApiClient | None, timeout: float):
        self.cluster_name = cluster_name
        self.api_client = api_client
        self.timeout = timeout
        if api_client is not None:
            api_client.user_agent = USER_AGENT
            self.core_api = client.CoreV1Api(api_client)
            self.version_api = client.VersionApi(api_client)
        else:
            self.core_api = None
            self.version_api = None

    @property
    def configured(self) -> bool:
        return self.api_client is not None

    def _healthz(self) -> str:
        response = self.api_client.call_api(
            "/healthz",
            "GET",
            auth_settings=["BearerToken"],
            _return_http_data_only=True,
            _preload_content=False,
            _request_timeout=self.timeout,
        )
        return response.data.decode("utf-8").strip()

    def get_cluster_status(self) -> ClusterStatus:
        """Probe /healthz and translate the answer into a raw status.

        Never raises: an unreachable cluster is reported as Offline.
        """
        now = utc_now()
        if not self.configured:
            metrics.register_cluster_not_ready(self.cluster_name)
            return config_malformed_status(now)

        try:
            body = self._healthz()
        except Exception as e:
            logger.warning(f"Failed to do cluster health check for cluster {self.cluster_name}: {e}")
            metrics.register_cluster_offline(self.cluster_name)
            return offline_status(now, str(e))

        if body.lower() != "ok":
            metrics.register_cluster_not_ready(self.cluster_name)
            return not_ready_status(now)

        metrics.register_cluster_ready(self.cluster_name)
        version = None
        try:
            version = self.version_api.get_code(_request_timeout=self.timeout).git_version
        except Exception as e:
            logger.warning(f"Failed to get Kubernetes version of cluster {self.cluster_name}: {e}")
        return ready_status(now, version)

    def get_cluster_zones(self) -> tuple[list[str], str]:
        """Read zones and region from the member cluster's node labels.

        Returns:
            Tuple of (sorted unique zones, region of the first node)

        Raises:
            ClusterClientError: If nodes cannot be listed
        """
        if not self.configured:
            raise ClusterClientError(self.cluster_name, "No usable client")
        try:
            nodes = self.core_api.list_node(_request_timeout=self.timeout)
        except Exception as e:
            raise ClusterClientError(self.cluster_name, "Failed to list nodes", str(e)) from e

        zones = set()
        region = ""
        for i, node in enumerate(nodes.items):
            labels = node.metadata.labels or {}
            if i == 0:
                region = _first_label(labels, REGION_LABELS)
            zone = _first_label(labels, ZONE_LABELS)
            if zone:
                zones.add(zone)
        return sorted(zones), region


def _first_label(labels: dict[str, str], keys: tuple[str, ...]) -> str:
    for key in keys:
        if labels.get(key):
            return labels[key]
    return ""


def build_cluster_client(
    membership: ClusterMembership, host_client, fed_namespace: str, timeout: float
) -> ClusterClient:
    """Connect to a member cluster.

    Raises:
        ConfigMalformedError: If the membership cannot be turned into a connection
    """
    configuration = build_cluster_configuration(membership, host_client, fed_namespace)
    return ClusterClient(membership.name, client.ApiClient(configuration), timeout)
