"""cloudtest - run test executions against provider-managed clusters."""

from .config import CloudTestConfig, ClusterProviderSpec, Execution, ExecutionSource, Reporting
from .reporting import Failure, Report, Suite, TestCase
from .runner import Arguments, FailedTestsError, perform_testing

__version__ = "0.1.0"

__all__ = [
    "CloudTestConfig",
    "ClusterProviderSpec",
    "Execution",
    "ExecutionSource",
    "Reporting",
    "Failure",
    "Report",
    "Suite",
    "TestCase",
    "Arguments",
    "FailedTestsError",
    "perform_testing",
]
