"""Configuration data models for cloudtest runs.

Defines dataclasses for the cluster providers, executions and reporting
settings loaded from a YAML configuration file.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class ExecutionKind(str, Enum):
    """Supported execution kinds."""
    GO = "go"
    SHELL = "shell"


class ProviderScript(str, Enum):
    """Cluster provider lifecycle actions."""
    START = "start"
    CONFIG = "config"
    STOP = "stop"


VALID_EXECUTION_KINDS = {e.value for e in ExecutionKind}
REQUIRED_PROVIDER_SCRIPTS = {ProviderScript.START.value, ProviderScript.CONFIG.value}

DEFAULT_RUN_TIMEOUT = 3600
DEFAULT_EXECUTION_TIMEOUT = 300
DEFAULT_SCRIPT_TIMEOUT = 300
DEFAULT_WORKERS = 4


@dataclass
class ClusterProviderSpec:
    """A named source of cluster instances, driven by lifecycle scripts."""
    name: str
    scripts: dict[str, str] = field(default_factory=dict)
    instances: int = 1
    enabled: bool = True
    env: list[str] = field(default_factory=list)
    timeout: int = DEFAULT_SCRIPT_TIMEOUT

    def script(self, action: str) -> str:
        """Lifecycle script for action, or an empty string if not declared."""
        return self.scripts.get(action, "") or ""


@dataclass
class ExecutionSource:
    """Selection of Go tests for an execution."""
    tests: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)


@dataclass
class Execution:
    """A declared unit of test work."""
    name: str
    timeout: int = DEFAULT_EXECUTION_TIMEOUT
    kind: str = ExecutionKind.GO.value
    package_root: str = ""
    source: ExecutionSource = field(default_factory=ExecutionSource)
    run: str = ""
    env: list[str] = field(default_factory=list)
    on_fail: str = ""
    cluster_count: int = 1
    cluster_selector: list[str] = field(default_factory=list)

    def __post_init__(self):
        self.kind = (self.kind or ExecutionKind.GO.value).lower()


@dataclass
class Reporting:
    """Where run results are written."""
    junit_report_file: Optional[str] = None


@dataclass
class CloudTestConfig:
    """Run-wide configuration."""
    timeout: int = DEFAULT_RUN_TIMEOUT
    config_root: str = ".tests"
    executions: list[Execution] = field(default_factory=list)
    providers: list[ClusterProviderSpec] = field(default_factory=list)
    reporting: Reporting = field(default_factory=Reporting)
    workers: int = DEFAULT_WORKERS

    def provider(self, name: str) -> Optional[ClusterProviderSpec]:
        """Look up a provider by name."""
        for provider in self.providers:
            if provider.name == name:
                return provider
        return None


@dataclass
class ValidationError:
    """A single validation error."""
    path: str
    message: str
    severity: str = "error"  # "error" or "warning"


@dataclass
class ValidationResult:
    """Result of configuration validation."""
    valid: bool
    errors: list[ValidationError] = field(default_factory=list)
    warnings: list[ValidationError] = field(default_factory=list)

    @property
    def error_count(self) -> int:
        return len(self.errors)

    @property
    def warning_count(self) -> int:
        return len(self.warnings)

    def __str__(self) -> str:
        if self.valid:
            msg = "Valid"
            if self.warnings:
                msg += f" ({self.warning_count} warnings)"
            return msg
        return f"Invalid: {self.error_count} errors, {self.warning_count} warnings"
