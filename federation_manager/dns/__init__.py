"""Multi-cluster DNS endpoint synthesis."""

from federation_manager.dns.endpoints import (
    Resolver,
    SocketResolver,
    SynthesisResult,
    dedupe_and_merge_endpoints,
    generate_ingress_endpoints,
    generate_service_endpoints,
)

__all__ = [
    "Resolver",
    "SocketResolver",
    "SynthesisResult",
    "dedupe_and_merge_endpoints",
    "generate_ingress_endpoints",
    "generate_service_endpoints",
]
