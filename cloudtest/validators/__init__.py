"""Validators module - cluster readiness checks."""

from .cluster_validator import (
    ClusterValidator,
    NoopValidationFactory,
    NoopValidator,
    RetryConfig,
    ScriptValidationFactory,
    ScriptValidator,
    ValidationFactory,
)

__all__ = [
    "ClusterValidator",
    "NoopValidationFactory",
    "NoopValidator",
    "RetryConfig",
    "ScriptValidationFactory",
    "ScriptValidator",
    "ValidationFactory",
]
