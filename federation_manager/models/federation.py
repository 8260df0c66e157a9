"""Data models for federated type configuration and federated objects."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from federation_manager.models.resource import APIResource

PROPAGATION_ENABLED = "Enabled"
PROPAGATION_DISABLED = "Disabled"

CONTROLLER_RUNNING = "Running"
CONTROLLER_NOT_RUNNING = "NotRunning"

SCOPE_NAMESPACED = "Namespaced"
SCOPE_CLUSTER = "Cluster"

OVERRIDE_ADD = "add"
OVERRIDE_REPLACE = "replace"
OVERRIDE_REMOVE = "remove"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_api(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


def _meta(obj: dict[str, Any]) -> dict[str, Any]:
    return obj.get("metadata") or {}


class TypeSpec(_CamelModel):
    """Group, version and kind of a resource type plus its plural name and scope."""

    group: str = ""
    version: str
    kind: str
    plural_name: str
    scope: str = SCOPE_NAMESPACED

    @property
    def namespaced(self) -> bool:
        return self.scope == SCOPE_NAMESPACED

    def to_api_resource(self) -> APIResource:
        return APIResource(self.group, self.version, self.kind, self.plural_name, self.namespaced)


class FederatedTypeConfigStatus(_CamelModel):
    observed_generation: int = 0
    propagation_controller: str = CONTROLLER_NOT_RUNNING


class FederatedTypeConfig(_CamelModel):
    """Enables propagation of one target type through its federated counterpart."""

    name: str
    namespace: str = ""
    generation: int = 0
    finalizers: list[str] = Field(default_factory=list)
    deleting: bool = False
    target_type: TypeSpec
    federated_type: TypeSpec
    propagation: str = PROPAGATION_ENABLED
    status: FederatedTypeConfigStatus = Field(default_factory=FederatedTypeConfigStatus)

    @property
    def propagation_enabled(self) -> bool:
        return self.propagation == PROPAGATION_ENABLED

    def expected_name(self) -> str:
        """The name a type config must carry: ``<plural>.<group>``, or the plural for the core group."""
        if not self.target_type.group:
            return self.target_type.plural_name
        return f"{self.target_type.plural_name}.{self.target_type.group}"

    @classmethod
    def from_object(cls, obj: dict[str, Any]) -> "FederatedTypeConfig":
        """Parse a FederatedTypeConfig object.

        Raises:
            ValueError: If the target or federated type is missing or incomplete
        """
        metadata = _meta(obj)
        spec = obj.get("spec") or {}
        return cls(
            name=metadata.get("name", ""),
            namespace=metadata.get("namespace") or "",
            generation=metadata.get("generation") or 0,
            finalizers=list(metadata.get("finalizers") or []),
            deleting=metadata.get("deletionTimestamp") is not None,
            target_type=TypeSpec.model_validate(spec.get("targetType") or {}),
            federated_type=TypeSpec.model_validate(spec.get("federatedType") or {}),
            propagation=spec.get("propagation") or PROPAGATION_ENABLED,
            status=FederatedTypeConfigStatus.model_validate(obj.get("status") or {}),
        )


class OverridePatch(_CamelModel):
    """One change applied to the template for a single cluster.

    ``path`` is a JSON pointer such as ``/spec/replicas``.
    """

    op: str = OVERRIDE_REPLACE
    path: str
    value: Any = None


class ClusterOverride(_CamelModel):
    cluster_name: str
    cluster_overrides: list[OverridePatch] = Field(default_factory=list)


class FederatedObject(_CamelModel):
    """A federated resource: a template, the clusters it is placed in and per-cluster overrides."""

    name: str
    namespace: str = ""
    finalizers: list[str] = Field(default_factory=list)
    deleting: bool = False
    template: dict[str, Any] = Field(default_factory=dict)
    placement: list[str] = Field(default_factory=list)
    overrides: list[ClusterOverride] = Field(default_factory=list)

    def overrides_for(self, cluster: str) -> list[OverridePatch]:
        patches = []
        for override in self.overrides:
            if override.cluster_name == cluster:
                patches.extend(override.cluster_overrides)
        return patches

    @classmethod
    def from_object(cls, obj: dict[str, Any]) -> "FederatedObject":
        metadata = _meta(obj)
        spec = obj.get("spec") or {}
        placement = (spec.get("placement") or {}).get("clusters") or []
        return cls(
            name=metadata.get("name", ""),
            namespace=metadata.get("namespace") or "",
            finalizers=list(metadata.get("finalizers") or []),
            deleting=metadata.get("deletionTimestamp") is not None,
            template=spec.get("template") or {},
            placement=[cluster["name"] for cluster in placement if cluster.get("name")],
            overrides=[ClusterOverride.model_validate(o) for o in spec.get("overrides") or []],
        )
