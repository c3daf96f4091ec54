"""Cluster module - provider lifecycle and instance pool."""

from .instance import (
    CONNECTION_VARIABLE,
    ClusterInstance,
    InstanceStatus,
    cluster_bindings,
    provider_variable,
)
from .pool import ClusterProviderPool, PoolClosedError, ProviderStartError

__all__ = [
    "CONNECTION_VARIABLE",
    "ClusterInstance",
    "InstanceStatus",
    "cluster_bindings",
    "provider_variable",
    "ClusterProviderPool",
    "PoolClosedError",
    "ProviderStartError",
]
