"""Data models for cluster membership, resource keys, DNS records and federated types."""

from federation_manager.models.cluster import (
    ClusterCondition,
    ClusterMembership,
    ClusterStatus,
    ConditionStatus,
    ConditionType,
    is_cluster_ready,
)
from federation_manager.models.dns import (
    ClusterDNS,
    Endpoint,
    IngressDNSRecord,
    LoadBalancerIngress,
    LoadBalancerStatus,
    ServiceDNSRecord,
)
from federation_manager.models.federation import FederatedObject, FederatedTypeConfig
from federation_manager.models.resource import APIResource, QualifiedName, ReconciliationStatus

__all__ = [
    "APIResource",
    "ClusterCondition",
    "ClusterDNS",
    "ClusterMembership",
    "ClusterStatus",
    "ConditionStatus",
    "ConditionType",
    "Endpoint",
    "FederatedObject",
    "FederatedTypeConfig",
    "IngressDNSRecord",
    "LoadBalancerIngress",
    "LoadBalancerStatus",
    "QualifiedName",
    "ReconciliationStatus",
    "ServiceDNSRecord",
    "is_cluster_ready",
]
