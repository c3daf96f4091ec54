"""Config module - YAML run configuration parsing."""

from .schema import (
    ClusterProviderSpec,
    CloudTestConfig,
    Execution,
    ExecutionKind,
    ExecutionSource,
    ProviderScript,
    Reporting,
    ValidationError,
    ValidationResult,
)
from .parser import parse_config, parse_config_data
from .validator import validate_config

__all__ = [
    "ClusterProviderSpec",
    "CloudTestConfig",
    "Execution",
    "ExecutionKind",
    "ExecutionSource",
    "ProviderScript",
    "Reporting",
    "ValidationError",
    "ValidationResult",
    "parse_config",
    "parse_config_data",
    "validate_config",
]
