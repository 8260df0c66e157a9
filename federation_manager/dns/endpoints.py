"""Synthesis of DNS endpoints from per-cluster load balancer status.

Service records are published at three levels. For a service ``name`` in
``namespace`` federated under ``domain_ref``:

    zone:   name.namespace.domain_ref.svc.<zone>.<region>.<domain>
    region: name.namespace.domain_ref.svc.<region>.<domain>
    global: name.namespace.domain_ref.svc.<domain>

A level with healthy targets is an A record. A level without any is a
CNAME to the level above it, so clients in a zone with no healthy shard
are sent to the nearest level that has one.
"""

import ipaddress
import socket
from dataclasses import dataclass, field
from typing import Protocol

from federation_manager.exceptions import ResolutionError
from federation_manager.logging_config import get_logger
from federation_manager.models.dns import (
    DEFAULT_DNS_TTL,
    RECORD_TYPE_A,
    RECORD_TYPE_CNAME,
    ClusterDNS,
    Endpoint,
    IngressDNSRecord,
    LoadBalancerStatus,
    ServiceDNSRecord,
)

logger = get_logger(__name__)


class Resolver(Protocol):
    """Resolves a hostname to IP addresses."""

    def lookup_host(self, host: str) -> list[str]: ...


class SocketResolver:
    """Resolver backed by the system's name service."""

    def lookup_host(self, host: str) -> list[str]:
        try:
            infos = socket.getaddrinfo(host, None, proto=socket.IPPROTO_TCP)
        except OSError as e:
            raise ResolutionError(f"Failed to resolve {host}", str(e)) from e
        return sorted({info[4][0] for info in infos})


@dataclass
class SynthesisResult:
    """Endpoints built for a record plus the hostnames that could not be resolved."""

    endpoints: list[Endpoint] = field(default_factory=list)
    unresolved: list[str] = field(default_factory=list)


def _is_ip(target: str) -> bool:
    try:
        ipaddress.ip_address(target)
    except ValueError:
        return False
    return True


def extract_load_balancer_targets(lb: LoadBalancerStatus) -> list[str]:
    """Collect the IPs and hostnames of a load balancer, in ingress order."""
    targets = []
    for ingress in lb.ingress:
        if ingress.ip:
            targets.append(ingress.ip)
        if ingress.hostname:
            targets.append(ingress.hostname)
    return targets


def get_resolved_targets(targets: list[str], resolver: Resolver) -> tuple[list[str], list[str]]:
    """Replace hostnames with their addresses.

    Resolution is best-effort: a hostname that fails to resolve is skipped
    and reported, and the remaining targets are still returned.

    Returns:
        Tuple of (sorted unique addresses, hostnames that failed to resolve)
    """
    resolved: set[str] = set()
    unresolved: list[str] = []
    for target in targets:
        if _is_ip(target):
            resolved.add(target)
            continue
        try:
            resolved.update(resolver.lookup_host(target))
        except ResolutionError as e:
            logger.error(f"Failed to resolve {target}: {e.details or e.message}")
            unresolved.append(target)
    return sorted(resolved), unresolved


def _level_endpoint(
    name: str,
    targets: list[str],
    uplevel: str,
    ttl: int,
    labels: dict[str, str],
    resolver: Resolver,
    result: SynthesisResult,
) -> Endpoint:
    addresses, unresolved = get_resolved_targets(targets, resolver)
    result.unresolved.extend(unresolved)
    # Only resolved addresses make an A record; hostnames that failed count as no backend
    if addresses:
        return Endpoint(
            dns_name=name, targets=tuple(addresses), record_type=RECORD_TYPE_A, record_ttl=ttl, labels=labels
        )
    return Endpoint(
        dns_name=name, targets=(uplevel,), record_type=RECORD_TYPE_CNAME, record_ttl=ttl, labels=labels
    )


def _targets_where(dns: list[ClusterDNS], predicate) -> list[str]:
    targets = []
    for cluster_dns in dns:
        if predicate(cluster_dns):
            targets.extend(extract_load_balancer_targets(cluster_dns.load_balancer))
    return targets


def generate_service_endpoints(record: ServiceDNSRecord, resolver: Resolver) -> SynthesisResult:
    """Build the zone, region and global endpoints of a service DNS record."""
    result = SynthesisResult()
    labels: dict[str, str] = {}
    if record.external_name:
        common_prefix = ".".join([record.external_name, record.namespace, record.domain_ref, "svc"])
        labels["serviceName"] = record.name
    else:
        common_prefix = ".".join([record.name, record.namespace, record.domain_ref, "svc"])

    domain = record.status.domain
    ttl = record.record_ttl or DEFAULT_DNS_TTL
    global_name = f"{common_prefix}.{domain}"
    dns = record.status.dns

    endpoints: list[Endpoint] = []
    for cluster_dns in dns:
        region = cluster_dns.region
        region_name = f"{common_prefix}.{region}.{domain}"
        region_targets = _targets_where(dns, lambda d: d.region == region)
        global_targets = _targets_where(dns, lambda d: True)

        for zone in cluster_dns.zones:
            zone_name = f"{common_prefix}.{zone}.{region}.{domain}"
            zone_targets = _targets_where(dns, lambda d: zone in d.zones)
            endpoints.append(
                _level_endpoint(zone_name, zone_targets, region_name, ttl, labels, resolver, result)
            )

        endpoints.append(
            _level_endpoint(region_name, region_targets, global_name, ttl, labels, resolver, result)
        )
        # Nowhere to go up from the global level, so an empty global CNAME is dropped on merge
        endpoints.append(_level_endpoint(global_name, global_targets, "", ttl, labels, resolver, result))

        if record.dns_prefix:
            endpoints.append(
                Endpoint(
                    dns_name=f"{record.dns_prefix}.{domain}",
                    targets=(global_name,),
                    record_type=RECORD_TYPE_CNAME,
                    record_ttl=ttl,
                )
            )

    result.endpoints = dedupe_and_merge_endpoints(endpoints)
    result.unresolved = sorted(set(result.unresolved))
    return result


def generate_ingress_endpoints(record: IngressDNSRecord, resolver: Resolver) -> SynthesisResult:
    """Build one A record per ingress host over every cluster's load balancer."""
    result = SynthesisResult()
    ttl = record.record_ttl or DEFAULT_DNS_TTL
    targets = _targets_where(record.status.dns, lambda d: True)

    endpoints = []
    if targets:
        addresses, unresolved = get_resolved_targets(targets, resolver)
        result.unresolved = sorted(set(unresolved))
        for host in record.hosts:
            endpoints.append(
                Endpoint(dns_name=host, targets=tuple(addresses), record_type=RECORD_TYPE_A, record_ttl=ttl)
            )

    result.endpoints = dedupe_and_merge_endpoints(endpoints)
    return result


def dedupe_and_merge_endpoints(endpoints: list[Endpoint]) -> list[Endpoint]:
    """Normalize a list of endpoints.

    Sorts by DNS name, strips empty targets, drops endpoints left without
    targets, and merges endpoints sharing a DNS name into one whose targets
    are sorted and unique. The result does not depend on input order and
    merging it again changes nothing.
    """
    merged: dict[str, Endpoint] = {}
    for endpoint in sorted(endpoints, key=lambda ep: ep.dns_name):
        targets = [t for t in endpoint.targets if t]
        if not targets:
            continue
        existing = merged.get(endpoint.dns_name)
        if existing is None:
            merged[endpoint.dns_name] = endpoint.model_copy(update={"targets": tuple(sorted(set(targets)))})
        else:
            union = sorted(set(existing.targets) | set(targets))
            merged[endpoint.dns_name] = existing.model_copy(update={"targets": tuple(union)})
    return [merged[name] for name in sorted(merged)]
