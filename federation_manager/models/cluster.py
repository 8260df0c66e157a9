"""Data models for member cluster membership and health status."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

# Labels read from member cluster nodes, newest first
ZONE_LABELS = ("topology.kubernetes.io/zone", "failure-domain.beta.kubernetes.io/zone")
REGION_LABELS = ("topology.kubernetes.io/region", "failure-domain.beta.kubernetes.io/region")


class ConditionType(str, Enum):
    """Kinds of cluster condition."""

    READY = "Ready"
    OFFLINE = "Offline"
    CONFIG_MALFORMED = "ConfigMalformed"


class ConditionStatus(str, Enum):
    TRUE = "True"
    FALSE = "False"


class ConditionReason(str, Enum):
    CLUSTER_READY = "ClusterReady"
    CLUSTER_NOT_READY = "ClusterNotReady"
    CLUSTER_REACHABLE = "ClusterReachable"
    CLUSTER_NOT_REACHABLE = "ClusterNotReachable"
    CLUSTER_CONFIG_MALFORMED = "ClusterConfigMalformed"


HEALTHZ_OK_MESSAGE = "/healthz responded with ok"
HEALTHZ_NOT_OK_MESSAGE = "/healthz responded without ok"
NOT_REACHABLE_MESSAGE = "cluster is not reachable"
REACHABLE_MESSAGE = "cluster is reachable"
CONFIG_MALFORMED_MESSAGE = "cluster's configuration may be malformed"


def utc_now() -> datetime:
    """Current time truncated to seconds, the resolution the API server stores."""
    return datetime.now(timezone.utc).replace(microsecond=0)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ClusterCondition(_CamelModel):
    """One observed condition of a member cluster."""

    type: ConditionType
    status: ConditionStatus
    reason: str | None = None
    message: str | None = None
    last_probe_time: datetime
    last_transition_time: datetime | None = None


class ClusterStatus(_CamelModel):
    """Published health and topology of a member cluster."""

    conditions: list[ClusterCondition] = Field(default_factory=list)
    zones: list[str] = Field(default_factory=list)
    region: str | None = None
    kubernetes_version: str | None = None

    def get_condition(self, condition_type: ConditionType) -> ClusterCondition | None:
        """Return the first condition of the given type, if any."""
        for condition in self.conditions:
            if condition.type == condition_type:
                return condition
        return None

    def to_api(self) -> dict[str, Any]:
        """Serialize to the camelCase form stored on the cluster object."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def is_cluster_ready(status: ClusterStatus | None) -> bool:
    """Check whether a status carries a Ready condition set to True."""
    if status is None:
        return False
    condition = status.get_condition(ConditionType.READY)
    return condition is not None and condition.status == ConditionStatus.TRUE


def ready_status(probe_time: datetime, version: str | None = None) -> ClusterStatus:
    return ClusterStatus(
        conditions=[
            ClusterCondition(
                type=ConditionType.READY,
                status=ConditionStatus.TRUE,
                reason=ConditionReason.CLUSTER_READY.value,
                message=HEALTHZ_OK_MESSAGE,
                last_probe_time=probe_time,
                last_transition_time=probe_time,
            )
        ],
        kubernetes_version=version,
    )


def not_ready_status(probe_time: datetime) -> ClusterStatus:
    return ClusterStatus(
        conditions=[
            ClusterCondition(
                type=ConditionType.READY,
                status=ConditionStatus.FALSE,
                reason=ConditionReason.CLUSTER_NOT_READY.value,
                message=HEALTHZ_NOT_OK_MESSAGE,
                last_probe_time=probe_time,
                last_transition_time=probe_time,
            ),
            ClusterCondition(
                type=ConditionType.OFFLINE,
                status=ConditionStatus.FALSE,
                reason=ConditionReason.CLUSTER_REACHABLE.value,
                message=REACHABLE_MESSAGE,
                last_probe_time=probe_time,
                last_transition_time=probe_time,
            ),
        ]
    )


def offline_status(probe_time: datetime, error: str | None = None) -> ClusterStatus:
    message = NOT_REACHABLE_MESSAGE if not error else f"{NOT_REACHABLE_MESSAGE}: {error}"
    return ClusterStatus(
        conditions=[
            ClusterCondition(
                type=ConditionType.OFFLINE,
                status=ConditionStatus.TRUE,
                reason=ConditionReason.CLUSTER_NOT_REACHABLE.value,
                message=message,
                last_probe_time=probe_time,
                last_transition_time=probe_time,
            )
        ]
    )


def config_malformed_status(probe_time: datetime) -> ClusterStatus:
    return ClusterStatus(
        conditions=[
            ClusterCondition(
                type=ConditionType.CONFIG_MALFORMED,
                status=ConditionStatus.TRUE,
                reason=ConditionReason.CLUSTER_CONFIG_MALFORMED.value,
                message=CONFIG_MALFORMED_MESSAGE,
                last_probe_time=probe_time,
                last_transition_time=probe_time,
            )
        ]
    )


class SecretReference(_CamelModel):
    name: str


class ClusterMembership(_CamelModel):
    """A member cluster registered with the federation control plane.

    Mirrors the host's KubeFedCluster object. Everything except ``status``
    is owned by the user who joined the cluster.
    """

    name: str
    namespace: str | None = None
    resource_version: str | None = None
    api_endpoint: str = ""
    secret_ref: SecretReference | None = None
    ca_bundle: str | None = None
    proxy_url: str | None = None
    disabled_tls_validations: list[str] = Field(default_factory=list)
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)
    status: ClusterStatus | None = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate cluster name is not empty."""
        if not v:
            raise ValueError("cluster name cannot be empty")
        return v

    @property
    def skip_tls_verify(self) -> bool:
        return "*" in self.disabled_tls_validations

    def spec_fingerprint(self) -> tuple:
        """Fields whose change requires rebuilding the cluster client."""
        return (
            self.api_endpoint,
            self.secret_ref.name if self.secret_ref else None,
            self.ca_bundle,
            self.proxy_url,
            tuple(self.disabled_tls_validations),
            tuple(sorted(self.labels.items())),
            tuple(sorted(self.annotations.items())),
        )

    @classmethod
    def from_object(cls, obj: dict[str, Any]) -> "ClusterMembership":
        """Build a membership from a KubeFedCluster object as returned by the API."""
        metadata = obj.get("metadata") or {}
        spec = obj.get("spec") or {}
        status = obj.get("status")
        return cls(
            name=metadata.get("name", ""),
            namespace=metadata.get("namespace"),
            resource_version=metadata.get("resourceVersion"),
            api_endpoint=spec.get("apiEndpoint", ""),
            secret_ref=spec.get("secretRef"),
            ca_bundle=spec.get("caBundle"),
            proxy_url=spec.get("proxyURL"),
            disabled_tls_validations=spec.get("disabledTLSValidations") or [],
            labels=metadata.get("labels") or {},
            annotations=metadata.get("annotations") or {},
            status=ClusterStatus.model_validate(status) if status else None,
        )
