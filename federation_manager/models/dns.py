"""Data models for multi-cluster DNS records and endpoints."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

DEFAULT_DNS_TTL = 180

RECORD_TYPE_A = "A"
RECORD_TYPE_CNAME = "CNAME"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_api(self) -> dict[str, Any]:
        # Defaults are kept so that a merge patch clears emptied lists
        return self.model_dump(mode="json", by_alias=True)


class Endpoint(_CamelModel):
    """A single DNS record to be published by an external DNS provider."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    dns_name: str = Field(alias="dnsName")
    targets: tuple[str, ...] = ()
    record_type: str = ""
    record_ttl: int = Field(default=0, alias="recordTTL")
    labels: dict[str, str] = Field(default_factory=dict)


class LoadBalancerIngress(_CamelModel):
    ip: str = ""
    hostname: str = ""


class LoadBalancerStatus(_CamelModel):
    ingress: list[LoadBalancerIngress] = Field(default_factory=list)

    def sorted(self) -> "LoadBalancerStatus":
        """Return a copy with ingress ordered by IP, then hostname."""
        return LoadBalancerStatus(ingress=sorted(self.ingress, key=lambda i: (i.ip, i.hostname)))


class ClusterDNS(_CamelModel):
    """Where a federated service or ingress is reachable in one member cluster."""

    cluster: str
    zones: list[str] = Field(default_factory=list)
    region: str = ""
    load_balancer: LoadBalancerStatus = Field(default_factory=LoadBalancerStatus)


class ServiceDNSRecordStatus(_CamelModel):
    domain: str = ""
    dns: list[ClusterDNS] = Field(default_factory=list)


class ServiceDNSRecord(_CamelModel):
    """Request to publish DNS for a federated service."""

    name: str
    namespace: str = ""
    domain_ref: str = ""
    record_ttl: int = Field(default=0, alias="recordTTL")
    dns_prefix: str = ""
    external_name: str = ""
    status: ServiceDNSRecordStatus = Field(default_factory=ServiceDNSRecordStatus)

    @classmethod
    def from_object(cls, obj: dict[str, Any]) -> "ServiceDNSRecord":
        metadata = obj.get("metadata") or {}
        spec = obj.get("spec") or {}
        return cls(
            name=metadata.get("name", ""),
            namespace=metadata.get("namespace") or "",
            domain_ref=spec.get("domainRef", ""),
            record_ttl=spec.get("recordTTL") or 0,
            dns_prefix=spec.get("dnsPrefix", ""),
            external_name=spec.get("externalName", ""),
            status=ServiceDNSRecordStatus.model_validate(obj.get("status") or {}),
        )


class IngressDNSRecordStatus(_CamelModel):
    dns: list[ClusterDNS] = Field(default_factory=list)


class IngressDNSRecord(_CamelModel):
    """Request to publish DNS for the hosts of a federated ingress."""

    name: str
    namespace: str = ""
    hosts: list[str] = Field(default_factory=list)
    record_ttl: int = Field(default=0, alias="recordTTL")
    status: IngressDNSRecordStatus = Field(default_factory=IngressDNSRecordStatus)

    @classmethod
    def from_object(cls, obj: dict[str, Any]) -> "IngressDNSRecord":
        metadata = obj.get("metadata") or {}
        spec = obj.get("spec") or {}
        return cls(
            name=metadata.get("name", ""),
            namespace=metadata.get("namespace") or "",
            hosts=spec.get("hosts") or [],
            record_ttl=spec.get("recordTTL") or 0,
            status=IngressDNSRecordStatus.model_validate(obj.get("status") or {}),
        )


def endpoints_from_object(obj: dict[str, Any]) -> list[Endpoint]:
    """Read the endpoints out of a DNSEndpoint object."""
    spec = obj.get("spec") or {}
    return [Endpoint.model_validate(ep) for ep in spec.get("endpoints") or []]


def endpoints_to_api(endpoints: list[Endpoint]) -> list[dict[str, Any]]:
    return [ep.model_dump(mode="json", by_alias=True, exclude_defaults=True) for ep in endpoints]
