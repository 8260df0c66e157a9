"""Tests for DNS endpoint synthesis."""

import socket

import pytest

from federation_manager.dns.endpoints import (
    SocketResolver,
    dedupe_and_merge_endpoints,
    extract_load_balancer_targets,
    generate_ingress_endpoints,
    generate_service_endpoints,
    get_resolved_targets,
)
from federation_manager.exceptions import ResolutionError
from federation_manager.models.dns import (
    RECORD_TYPE_A,
    RECORD_TYPE_CNAME,
    ClusterDNS,
    Endpoint,
    IngressDNSRecord,
    IngressDNSRecordStatus,
    LoadBalancerIngress,
    LoadBalancerStatus,
    ServiceDNSRecord,
    ServiceDNSRecordStatus,
)

PREFIX = "web.default.mydomain.svc"


class FakeResolver:
    """Resolves from a fixed table; anything else fails."""

    def __init__(self, table=None):
        self.table = table or {}
        self.lookups = []

    def lookup_host(self, host):
        self.lookups.append(host)
        if host not in self.table:
            raise ResolutionError(f"Failed to resolve {host}", "no such host")
        return self.table[host]


def lb(*targets):
    ingress = []
    for target in targets:
        if target[0].isdigit():
            ingress.append(LoadBalancerIngress(ip=target))
        else:
            ingress.append(LoadBalancerIngress(hostname=target))
    return LoadBalancerStatus(ingress=ingress)


def service_record(dns, **kwargs):
    fields = {"name": "web", "namespace": "default", "domain_ref": "mydomain"}
    fields.update(kwargs)
    return ServiceDNSRecord(
        status=ServiceDNSRecordStatus(domain="example.com", dns=dns),
        **fields,
    )


def by_name(endpoints):
    return {ep.dns_name: ep for ep in endpoints}


class TestServiceEndpoints:
    """Test the zone, region and global records of a service."""

    def test_zone_without_backend_falls_back_to_region(self):
        """One live zone and one empty zone in the same region."""
        record = service_record(
            [
                ClusterDNS(cluster="c1", zones=["z1"], region="r1", load_balancer=lb("10.0.0.1")),
                ClusterDNS(cluster="c2", zones=["z2"], region="r1"),
            ]
        )

        result = generate_service_endpoints(record, FakeResolver())

        endpoints = by_name(result.endpoints)
        assert list(endpoints) == [
            f"{PREFIX}.example.com",
            f"{PREFIX}.r1.example.com",
            f"{PREFIX}.z1.r1.example.com",
            f"{PREFIX}.z2.r1.example.com",
        ]
        zone_a = endpoints[f"{PREFIX}.z1.r1.example.com"]
        assert (zone_a.record_type, zone_a.targets) == (RECORD_TYPE_A, ("10.0.0.1",))
        zone_b = endpoints[f"{PREFIX}.z2.r1.example.com"]
        assert (zone_b.record_type, zone_b.targets) == (RECORD_TYPE_CNAME, (f"{PREFIX}.r1.example.com",))
        region = endpoints[f"{PREFIX}.r1.example.com"]
        assert (region.record_type, region.targets) == (RECORD_TYPE_A, ("10.0.0.1",))
        global_record = endpoints[f"{PREFIX}.example.com"]
        assert (global_record.record_type, global_record.targets) == (RECORD_TYPE_A, ("10.0.0.1",))
        assert result.unresolved == []

    def test_no_backend_anywhere_has_no_global_record(self):
        record = service_record(
            [
                ClusterDNS(cluster="c1", zones=["z1"], region="r1"),
                ClusterDNS(cluster="c2", zones=["z2"], region="r2"),
            ]
        )

        endpoints = by_name(generate_service_endpoints(record, FakeResolver()).endpoints)

        assert f"{PREFIX}.example.com" not in endpoints
        assert endpoints[f"{PREFIX}.r1.example.com"].targets == (f"{PREFIX}.example.com",)
        assert endpoints[f"{PREFIX}.z2.r2.example.com"].targets == (f"{PREFIX}.r2.example.com",)
        assert all(ep.record_type == RECORD_TYPE_CNAME for ep in endpoints.values())

    def test_empty_region_falls_back_to_global(self):
        record = service_record(
            [
                ClusterDNS(cluster="c1", zones=["z1"], region="r1", load_balancer=lb("10.0.0.1")),
                ClusterDNS(cluster="c2", zones=["z2"], region="r2", load_balancer=lb("10.0.0.2")),
                ClusterDNS(cluster="c3", zones=["z3"], region="r3"),
            ]
        )

        endpoints = by_name(generate_service_endpoints(record, FakeResolver()).endpoints)

        assert endpoints[f"{PREFIX}.example.com"].targets == ("10.0.0.1", "10.0.0.2")
        assert endpoints[f"{PREFIX}.r3.example.com"].record_type == RECORD_TYPE_CNAME
        assert endpoints[f"{PREFIX}.r3.example.com"].targets == (f"{PREFIX}.example.com",)
        assert endpoints[f"{PREFIX}.r1.example.com"].targets == ("10.0.0.1",)

    def test_clusters_sharing_a_zone_are_unioned(self):
        record = service_record(
            [
                ClusterDNS(cluster="c1", zones=["z1"], region="r1", load_balancer=lb("10.0.0.2")),
                ClusterDNS(cluster="c2", zones=["z1"], region="r1", load_balancer=lb("10.0.0.1")),
            ]
        )

        endpoints = by_name(generate_service_endpoints(record, FakeResolver()).endpoints)

        assert endpoints[f"{PREFIX}.z1.r1.example.com"].targets == ("10.0.0.1", "10.0.0.2")
        assert len(endpoints) == 3

    def test_ttl_defaults_and_override(self):
        dns = [ClusterDNS(cluster="c1", zones=["z1"], region="r1", load_balancer=lb("10.0.0.1"))]

        default = generate_service_endpoints(service_record(dns), FakeResolver()).endpoints
        custom = generate_service_endpoints(service_record(dns, record_ttl=300), FakeResolver()).endpoints

        assert {ep.record_ttl for ep in default} == {180}
        assert {ep.record_ttl for ep in custom} == {300}

    def test_dns_prefix_adds_cname_to_global(self):
        record = service_record(
            [ClusterDNS(cluster="c1", zones=["z1"], region="r1", load_balancer=lb("10.0.0.1"))],
            dns_prefix="www",
        )

        endpoints = by_name(generate_service_endpoints(record, FakeResolver()).endpoints)

        prefixed = endpoints["www.example.com"]
        assert prefixed.record_type == RECORD_TYPE_CNAME
        assert prefixed.targets == (f"{PREFIX}.example.com",)

    def test_external_name_replaces_service_name_and_labels(self):
        record = service_record(
            [ClusterDNS(cluster="c1", zones=["z1"], region="r1", load_balancer=lb("10.0.0.1"))],
            external_name="shop",
        )

        endpoints = generate_service_endpoints(record, FakeResolver()).endpoints

        assert all(ep.dns_name.startswith("shop.default.mydomain.svc") for ep in endpoints)
        assert all(ep.labels == {"serviceName": "web"} for ep in endpoints)

    def test_hostnames_are_resolved(self):
        resolver = FakeResolver({"lb.aws.example": ["52.0.0.2", "52.0.0.1"]})
        record = service_record(
            [ClusterDNS(cluster="c1", zones=["z1"], region="r1", load_balancer=lb("lb.aws.example"))]
        )

        endpoints = by_name(generate_service_endpoints(record, resolver).endpoints)

        assert endpoints[f"{PREFIX}.z1.r1.example.com"].targets == ("52.0.0.1", "52.0.0.2")

    def test_resolution_failure_returns_partial_result(self):
        record = service_record(
            [
                ClusterDNS(
                    cluster="c1", zones=["z1"], region="r1", load_balancer=lb("10.0.0.1", "gone.example")
                )
            ]
        )

        result = generate_service_endpoints(record, FakeResolver())

        assert result.unresolved == ["gone.example"]
        assert by_name(result.endpoints)[f"{PREFIX}.z1.r1.example.com"].targets == ("10.0.0.1",)

    def test_zone_with_only_unresolvable_hostnames_falls_back_to_region(self):
        record = service_record(
            [
                ClusterDNS(cluster="c1", zones=["z1"], region="r1", load_balancer=lb("10.0.0.1")),
                ClusterDNS(cluster="c2", zones=["z2"], region="r1", load_balancer=lb("gone.example")),
            ]
        )

        result = generate_service_endpoints(record, FakeResolver())
        endpoints = by_name(result.endpoints)

        assert result.unresolved == ["gone.example"]
        z2 = endpoints[f"{PREFIX}.z2.r1.example.com"]
        assert z2.record_type == RECORD_TYPE_CNAME
        assert z2.targets == (f"{PREFIX}.r1.example.com",)
        assert endpoints[f"{PREFIX}.z1.r1.example.com"].targets == ("10.0.0.1",)
        assert endpoints[f"{PREFIX}.r1.example.com"].record_type == RECORD_TYPE_A
        assert endpoints[f"{PREFIX}.r1.example.com"].targets == ("10.0.0.1",)

    def test_region_with_only_unresolvable_hostnames_falls_back_to_global(self):
        record = service_record(
            [
                ClusterDNS(cluster="c1", zones=["z1"], region="r1", load_balancer=lb("10.0.0.1")),
                ClusterDNS(cluster="c2", zones=["z2"], region="r2", load_balancer=lb("gone.example")),
            ]
        )

        endpoints = by_name(generate_service_endpoints(record, FakeResolver()).endpoints)

        r2 = endpoints[f"{PREFIX}.r2.example.com"]
        assert r2.record_type == RECORD_TYPE_CNAME
        assert r2.targets == (f"{PREFIX}.example.com",)
        assert endpoints[f"{PREFIX}.example.com"].targets == ("10.0.0.1",)


class TestIngressEndpoints:
    """Test the per-host records of an ingress."""

    def test_one_record_per_host_over_all_clusters(self):
        record = IngressDNSRecord(
            name="shop",
            namespace="default",
            hosts=["shop.example.com", "api.example.com"],
            status=IngressDNSRecordStatus(
                dns=[
                    ClusterDNS(cluster="c1", load_balancer=lb("10.0.0.2")),
                    ClusterDNS(cluster="c2", load_balancer=lb("10.0.0.1")),
                ]
            ),
        )

        endpoints = generate_ingress_endpoints(record, FakeResolver()).endpoints

        assert [ep.dns_name for ep in endpoints] == ["api.example.com", "shop.example.com"]
        assert all(ep.targets == ("10.0.0.1", "10.0.0.2") for ep in endpoints)
        assert all(ep.record_type == RECORD_TYPE_A for ep in endpoints)

    def test_no_targets_no_records(self):
        record = IngressDNSRecord(
            name="shop",
            hosts=["shop.example.com"],
            status=IngressDNSRecordStatus(dns=[ClusterDNS(cluster="c1")]),
        )

        assert generate_ingress_endpoints(record, FakeResolver()).endpoints == []


class TestMerge:
    """Test normalization of endpoint lists."""

    def test_merges_same_name_and_drops_empty(self):
        endpoints = [
            Endpoint(dns_name="b.example.com", targets=("10.0.0.2", ""), record_type=RECORD_TYPE_A),
            Endpoint(dns_name="a.example.com", targets=("",), record_type=RECORD_TYPE_CNAME),
            Endpoint(dns_name="b.example.com", targets=("10.0.0.1", "10.0.0.2"), record_type=RECORD_TYPE_A),
        ]

        merged = dedupe_and_merge_endpoints(endpoints)

        assert merged == [
            Endpoint(dns_name="b.example.com", targets=("10.0.0.1", "10.0.0.2"), record_type=RECORD_TYPE_A)
        ]

    def test_empty_input(self):
        assert dedupe_and_merge_endpoints([]) == []


class TestResolution:
    """Test target extraction and resolution."""

    def test_extract_keeps_ips_and_hostnames(self):
        status = LoadBalancerStatus(
            ingress=[LoadBalancerIngress(ip="10.0.0.1", hostname="lb.example"), LoadBalancerIngress(ip="10.0.0.2")]
        )

        assert extract_load_balancer_targets(status) == ["10.0.0.1", "lb.example", "10.0.0.2"]

    def test_ips_are_not_looked_up(self):
        resolver = FakeResolver()

        resolved, unresolved = get_resolved_targets(["10.0.0.1", "fd00::1", "10.0.0.1"], resolver)

        assert resolved == ["10.0.0.1", "fd00::1"]
        assert unresolved == []
        assert resolver.lookups == []

    def test_socket_resolver_collects_addresses(self, monkeypatch):
        def fake_getaddrinfo(host, port, proto=0):
            return [
                (socket.AF_INET, socket.SOCK_STREAM, proto, "", ("10.1.0.2", 0)),
                (socket.AF_INET, socket.SOCK_STREAM, proto, "", ("10.1.0.1", 0)),
                (socket.AF_INET, socket.SOCK_STREAM, proto, "", ("10.1.0.2", 0)),
            ]

        monkeypatch.setattr(socket, "getaddrinfo", fake_getaddrinfo)

        assert SocketResolver().lookup_host("lb.example") == ["10.1.0.1", "10.1.0.2"]

    def test_socket_resolver_raises_resolution_error(self, monkeypatch):
        def failing_getaddrinfo(host, port, proto=0):
            raise socket.gaierror("Name or service not known")

        monkeypatch.setattr(socket, "getaddrinfo", failing_getaddrinfo)

        with pytest.raises(ResolutionError):
            SocketResolver().lookup_host("missing.example")
