"""Cluster instance handles and their connection bindings."""

import re
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from ..config.schema import ClusterProviderSpec

# Environment variable carrying a cluster's connection artifact
CONNECTION_VARIABLE = "KUBECONFIG"


class InstanceStatus(str, Enum):
    """Lifecycle state of a cluster instance."""
    STARTING = "starting"
    READY = "ready"
    FAILED = "failed"
    STOPPED = "stopped"


@dataclass
class ClusterInstance:
    """A live cluster produced by a provider.

    Owned by the ClusterProviderPool from acquisition until release.
    """
    id: str
    provider: ClusterProviderSpec
    status: InstanceStatus = InstanceStatus.STARTING
    config_path: Optional[str] = None
    output: str = ""
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @property
    def provider_name(self) -> str:
        return self.provider.name

    @property
    def is_ready(self) -> bool:
        return self.status == InstanceStatus.READY

    def append_output(self, text: str) -> None:
        if not text:
            return
        with self._lock:
            self.output += text if text.endswith("\n") else text + "\n"

    def bindings(self) -> dict[str, str]:
        """Environment bindings exposing this instance's connection artifact."""
        if not self.config_path:
            return {}
        return {CONNECTION_VARIABLE: self.config_path}

    def __str__(self) -> str:
        return f"{self.id} ({self.status.value})"


def provider_variable(provider_name: str) -> str:
    """Per-provider connection variable, e.g. KUBECONFIG_A_PROVIDER."""
    suffix = re.sub(r"[^A-Za-z0-9]", "_", provider_name).upper()
    return f"{CONNECTION_VARIABLE}_{suffix}"


def cluster_bindings(cluster_set: list[ClusterInstance]) -> dict[str, str]:
    """Environment bindings for a whole cluster-set.

    KUBECONFIG points at the first ready cluster; every participant is also
    bound under its provider-specific variable.
    """
    bindings: dict[str, str] = {}
    for instance in cluster_set:
        if not instance.is_ready or not instance.config_path:
            continue
        bindings.setdefault(CONNECTION_VARIABLE, instance.config_path)
        bindings[provider_variable(instance.provider_name)] = instance.config_path
    return bindings
